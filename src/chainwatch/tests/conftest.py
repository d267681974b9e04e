"""
Pytest configuration and shared fixtures for Chainwatch tests.
"""

from typing import Callable

import pytest

from chainwatch.laundering.alerting import AlertConfig, AlertGenerator
from chainwatch.laundering.flow import FlowAnalysisConfig
from chainwatch.laundering.sources import InMemoryLedger
from chainwatch.laundering.types import (
    AddressRiskProfile,
    FlowPattern,
    PatternType,
    TransferKind,
    TransferRecord,
)

BASE_TIME = 1_700_000_000_000
HOUR = 60 * 60 * 1000


class FakeClock:
    """Controllable epoch-millis clock."""

    def __init__(self, now: int = BASE_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_transfer() -> Callable[..., TransferRecord]:
    """Factory for transfers with sequential tx ids."""
    counter = {"n": 0}

    def _make(
        src: str,
        dst: str,
        amount: int = 100,
        hours: float = 0,
        tx_id: str = None,
        asset: str = "ETH",
        kind: TransferKind = TransferKind.DIRECT,
    ) -> TransferRecord:
        counter["n"] += 1
        return TransferRecord(
            from_address=src,
            to_address=dst,
            amount=amount,
            asset=asset,
            timestamp=BASE_TIME + int(hours * HOUR),
            tx_id=tx_id or f"0xtx{counter['n']:04d}",
            kind=kind,
        )

    return _make


@pytest.fixture
def make_pattern(make_transfer) -> Callable[..., FlowPattern]:
    """Factory for patterns over a simple chain of addresses."""

    def _make(
        addresses: list[str],
        score: float = 0.96,
        pattern_type: PatternType = PatternType.LAYERING,
        amount: int = 100,
    ) -> FlowPattern:
        flows = [
            make_transfer(src, dst, amount=amount, hours=i)
            for i, (src, dst) in enumerate(zip(addresses, addresses[1:]))
        ]
        return FlowPattern.from_flows(pattern_type, score, flows)

    return _make


@pytest.fixture
def layering_chain(make_transfer) -> list[TransferRecord]:
    """A -> B -> C -> D -> E, 100 units each, one hour apart."""
    return [
        make_transfer("A", "B", 100, hours=0),
        make_transfer("B", "C", 100, hours=1),
        make_transfer("C", "D", 100, hours=2),
        make_transfer("D", "E", 100, hours=3),
    ]


@pytest.fixture
def smurfing_fanout(make_transfer) -> list[TransferRecord]:
    """X sends 1,000 units to each of 12 distinct addresses within 12 hours."""
    return [make_transfer("X", f"R{i:02d}", 1_000, hours=i) for i in range(12)]


@pytest.fixture
def alert_generator(clock) -> AlertGenerator:
    """Alert generator on a fixed clock with neutral value/time weights."""
    return AlertGenerator(
        AlertConfig(),
        clock=clock,
        value_weight=lambda value: 0.0,
        time_weight=lambda duration: 0.0,
    )


@pytest.fixture
def flow_config() -> FlowAnalysisConfig:
    return FlowAnalysisConfig(min_flow_value=10, max_hops=5)


@pytest.fixture
def ledger(layering_chain) -> InMemoryLedger:
    """Ledger holding the layering chain and a risky profile for A."""
    return InMemoryLedger(
        layering_chain,
        [AddressRiskProfile(address="A", risk_score=60)],
    )
