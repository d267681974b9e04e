"""
Money-laundering detection orchestrator.

Fetches profiles and flows for an address (or group of addresses), runs
every typology detector, filters by confidence and hands the surviving
patterns to the alert generator.
"""

import asyncio
import logging
from typing import Iterable, Optional, Sequence

from chainwatch.laundering.alerting import AlertConfig, AlertGenerator
from chainwatch.laundering.flow import FlowAnalysisConfig, FlowAnalyzer
from chainwatch.laundering.matchers import PatternMatcher
from chainwatch.laundering.sources import ProfileSource, TransferSource
from chainwatch.laundering.types import (
    AddressRiskProfile,
    DetectionResult,
    DetectionStats,
    FlowPattern,
    MoneyLaunderingError,
    TimeRange,
    TransferRecord,
    empty_distribution,
)

logger = logging.getLogger(__name__)


class MoneyLaunderingDetector:
    """
    Detects laundering typologies for addresses.

    Usage:
        detector = MoneyLaunderingDetector(ledger, ledger)
        result = await detector.analyze_address("0xabc...")
        for alert in result.alerts:
            ...
    """

    def __init__(
        self,
        transfer_source: TransferSource,
        profile_source: ProfileSource,
        flow_config: Optional[FlowAnalysisConfig] = None,
        alert_config: Optional[AlertConfig] = None,
        matcher: Optional[PatternMatcher] = None,
        alert_generator: Optional[AlertGenerator] = None,
    ):
        self.flow_config = flow_config or FlowAnalysisConfig()
        self.profile_source = profile_source
        self.flow_analyzer = FlowAnalyzer(self.flow_config, transfer_source)
        self.matcher = matcher or PatternMatcher()
        self.alert_generator = alert_generator or AlertGenerator(alert_config)

    async def analyze_address(
        self,
        address: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> DetectionResult:
        """
        Analyze the flows of a single address.

        Args:
            address: Address to analyze
            start_time: Window start (epoch millis)
            end_time: Window end (epoch millis)

        Returns:
            DetectionResult with new alerts and summary statistics

        Raises:
            MoneyLaunderingError: if any stage fails; no partial result
        """
        try:
            profile = await self.profile_source.get_profile(address)
            flows = await self.flow_analyzer.analyze_flows(address, start_time, end_time)
            return self._detect(flows, [profile], profile.risk_score)
        except Exception as e:
            logger.error(f"Analysis failed for {address}: {e}")
            raise MoneyLaunderingError(
                f"Failed to analyze address {address}: {e}",
                stage=getattr(e, "stage", "") or "analyze_address",
                addresses=[address],
                cause=e,
            ) from e

    async def analyze_address_group(
        self,
        addresses: Sequence[str],
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> DetectionResult:
        """
        Analyze a group of addresses as one flow set.

        Profiles and flows are fetched concurrently. Flows are merged,
        deduplicated by (tx_id, from, to) and ordered by timestamp; the
        base risk is the highest profile risk in the group.
        """
        addresses = list(addresses)
        if not addresses:
            raise ValueError("Address group must not be empty")

        try:
            profiles = await asyncio.gather(
                *(self.profile_source.get_profile(a) for a in addresses)
            )
            flow_lists = await asyncio.gather(
                *(self.flow_analyzer.analyze_flows(a, start_time, end_time) for a in addresses)
            )
            flows = merge_flows(f for flow_list in flow_lists for f in flow_list)
            base_risk = max(p.risk_score for p in profiles)
            return self._detect(flows, list(profiles), base_risk)
        except Exception as e:
            joined = ", ".join(addresses)
            logger.error(f"Group analysis failed for [{joined}]: {e}")
            raise MoneyLaunderingError(
                f"Failed to analyze address group [{joined}]: {e}",
                stage=getattr(e, "stage", "") or "analyze_address_group",
                addresses=addresses,
                cause=e,
            ) from e

    def _detect(
        self,
        flows: list[TransferRecord],
        profiles: list[AddressRiskProfile],
        base_risk_score: float,
    ) -> DetectionResult:
        patterns = self.detect_patterns(flows, base_risk_score)
        alerts = self.alert_generator.generate_alerts(patterns, profiles)
        stats = calculate_stats(flows, patterns)

        logger.info(
            f"Analyzed {stats.total_flows} flows across {stats.unique_addresses} "
            f"addresses: {len(patterns)} patterns, {len(alerts)} new alerts"
        )
        return DetectionResult(alerts=alerts, stats=stats, patterns=patterns)

    def detect_patterns(
        self,
        flows: list[TransferRecord],
        base_risk_score: float,
    ) -> list[FlowPattern]:
        """Run all detectors and keep patterns at or above the minimum confidence."""
        patterns = self.matcher.detect_all(flows, base_risk_score)
        threshold = self.flow_config.min_pattern_confidence
        return [p for p in patterns if p.score >= threshold]


def merge_flows(flows: Iterable[TransferRecord]) -> list[TransferRecord]:
    """Order flows by timestamp and drop repeats of the same (tx_id, from, to)."""
    unique: dict[tuple[str, str, str], TransferRecord] = {}
    for flow in sorted(flows, key=lambda f: f.timestamp):
        unique.setdefault(flow.dedup_key, flow)
    return list(unique.values())


def calculate_stats(
    flows: Sequence[TransferRecord],
    patterns: Sequence[FlowPattern],
) -> DetectionStats:
    """Summary statistics over the analyzed flows and detected patterns."""
    if not flows:
        return DetectionStats()

    addresses = set()
    for flow in flows:
        addresses.add(flow.from_address)
        addresses.add(flow.to_address)

    distribution = empty_distribution()
    for pattern in patterns:
        distribution[pattern.type] += 1

    average_hops = (
        sum(len(p.flows) for p in patterns) / len(patterns) if patterns else 0.0
    )
    timestamps = [f.timestamp for f in flows]

    return DetectionStats(
        total_flows=len(flows),
        total_value=sum(f.amount for f in flows),
        unique_addresses=len(addresses),
        pattern_distribution=distribution,
        average_hops=average_hops,
        time_range=TimeRange(start=min(timestamps), end=max(timestamps)),
    )
