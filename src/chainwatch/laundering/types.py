"""
Core data types for money-laundering flow detection.

Defines:
- Transfer records as fetched from a ledger
- Flow patterns emitted by the typology detectors
- Alerts emitted by the alert generator
- Detection results and summary statistics
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional


class TransferKind(str, Enum):
    """How value moved in a single transfer."""

    DIRECT = "direct"
    SPLIT = "split"
    MERGE = "merge"
    SWAP = "swap"
    BRIDGE = "bridge"


class PatternType(str, Enum):
    """Money-laundering typologies."""

    LAYERING = "layering"
    STRUCTURING = "structuring"
    MIXING = "mixing"
    SMURFING = "smurfing"
    CYCLING = "cycling"


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordinal position, LOW == 0."""
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [
    AlertSeverity.LOW,
    AlertSeverity.MEDIUM,
    AlertSeverity.HIGH,
    AlertSeverity.CRITICAL,
]


class AddressRole(str, Enum):
    """Role of an address within a detected pattern."""

    SOURCE = "source"
    INTERMEDIARY = "intermediary"
    DESTINATION = "destination"


class MoneyLaunderingError(Exception):
    """
    Raised when a detection call cannot complete.

    Wraps the underlying cause. The message names the failing stage and
    the target address(es).
    """

    def __init__(
        self,
        message: str,
        stage: str = "",
        addresses: Optional[Iterable[str]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.stage = stage
        self.addresses = list(addresses or [])
        self.cause = cause


@dataclass(frozen=True)
class TransferRecord:
    """A single transfer between two addresses."""

    from_address: str
    to_address: str
    amount: int
    asset: str
    timestamp: int  # epoch millis
    tx_id: str
    kind: TransferKind = TransferKind.DIRECT
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError(f"Transfer {self.tx_id} has negative amount {self.amount}")

    @property
    def edge_key(self) -> tuple[str, str]:
        return (self.from_address, self.to_address)

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        return (self.tx_id, self.from_address, self.to_address)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransferRecord":
        """Build a transfer from its to_dict() form."""
        return cls(
            from_address=data["from_address"],
            to_address=data["to_address"],
            amount=int(data["amount"]),
            asset=data.get("asset", "ETH"),
            timestamp=int(data["timestamp"]),
            tx_id=data["tx_id"],
            kind=TransferKind(data.get("kind", TransferKind.DIRECT.value)),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_address": self.from_address,
            "to_address": self.to_address,
            "amount": str(self.amount),
            "asset": self.asset,
            "timestamp": self.timestamp,
            "tx_id": self.tx_id,
            "kind": self.kind.value,
            "metadata": self.metadata,
        }


@dataclass
class Evidence:
    """
    One piece of supporting evidence for a pattern.

    `value` is the strength of the indicator in [0, 1]; `weight` is its
    importance when evidence is combined into a score.
    """

    type: str
    weight: float
    value: float
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def weighted_value(self) -> float:
        return self.weight * self.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "weight": self.weight,
            "value": self.value,
            "data": self.data,
        }


def participants_of(flows: Iterable[TransferRecord]) -> list[str]:
    """Ordered union of from/to addresses across flows."""
    seen: dict[str, None] = {}
    for flow in flows:
        seen.setdefault(flow.from_address)
        seen.setdefault(flow.to_address)
    return list(seen)


@dataclass
class FlowPattern:
    """A detected laundering typology with its supporting transfers."""

    type: PatternType
    score: float
    flows: list[TransferRecord]
    participants: list[str]
    start_time: int
    end_time: int
    total_value: int
    evidence: list[Evidence] = field(default_factory=list)

    @classmethod
    def from_flows(
        cls,
        pattern_type: PatternType,
        score: float,
        flows: list[TransferRecord],
        evidence: Optional[list[Evidence]] = None,
    ) -> "FlowPattern":
        """Derive participants, time bounds and value from the flows."""
        if not flows:
            raise ValueError("A flow pattern needs at least one flow")
        timestamps = [f.timestamp for f in flows]
        return cls(
            type=pattern_type,
            score=score,
            flows=list(flows),
            participants=participants_of(flows),
            start_time=min(timestamps),
            end_time=max(timestamps),
            total_value=sum(f.amount for f in flows),
            evidence=list(evidence or []),
        )

    @property
    def duration(self) -> int:
        return self.end_time - self.start_time

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "score": self.score,
            "flows": [f.to_dict() for f in self.flows],
            "participants": self.participants,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_value": str(self.total_value),
            "evidence": [e.to_dict() for e in self.evidence],
        }


@dataclass
class AddressRiskProfile:
    """Risk context for an address, supplied by a profile store."""

    address: str
    risk_score: float = 0.0  # 0 to 100
    first_seen: Optional[int] = None
    last_active: Optional[int] = None
    total_transactions: int = 0
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.risk_score = min(100.0, max(0.0, float(self.risk_score)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "risk_score": self.risk_score,
            "first_seen": self.first_seen,
            "last_active": self.last_active,
            "total_transactions": self.total_transactions,
            "tags": self.tags,
            "metadata": self.metadata,
        }


@dataclass
class AlertAddress:
    """An address referenced by an alert."""

    address: str
    role: AddressRole
    profile: Optional[AddressRiskProfile] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "role": self.role.value,
            "profile": self.profile.to_dict() if self.profile else None,
        }


@dataclass
class MoneyLaunderingAlert:
    """An alert raised for a qualifying flow pattern."""

    id: str
    timestamp: int
    severity: AlertSeverity
    pattern: FlowPattern
    risk_score: float
    addresses: list[AlertAddress]
    description: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def address_set(self) -> set[str]:
        return {a.address for a in self.addresses}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "severity": self.severity.value,
            "pattern": self.pattern.to_dict(),
            "risk_score": self.risk_score,
            "addresses": [a.to_dict() for a in self.addresses],
            "description": self.description,
            "metadata": self.metadata,
        }


@dataclass
class TimeRange:
    start: int = 0
    end: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}


def empty_distribution() -> dict[PatternType, int]:
    return {pattern_type: 0 for pattern_type in PatternType}


@dataclass
class DetectionStats:
    """Summary statistics for one analysis call."""

    total_flows: int = 0
    total_value: int = 0
    unique_addresses: int = 0
    pattern_distribution: dict[PatternType, int] = field(default_factory=empty_distribution)
    average_hops: float = 0.0
    time_range: TimeRange = field(default_factory=TimeRange)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_flows": self.total_flows,
            "total_value": str(self.total_value),
            "unique_addresses": self.unique_addresses,
            "pattern_distribution": {
                k.value: v for k, v in self.pattern_distribution.items()
            },
            "average_hops": self.average_hops,
            "time_range": self.time_range.to_dict(),
        }


@dataclass
class DetectionResult:
    """Alerts and statistics returned by the detector."""

    alerts: list[MoneyLaunderingAlert]
    stats: DetectionStats
    patterns: list[FlowPattern] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alerts": [a.to_dict() for a in self.alerts],
            "stats": self.stats.to_dict(),
            "patterns": [p.to_dict() for p in self.patterns],
        }
