"""
Evidence analysis and scoring for flow patterns.

Each typology has an evidence analyzer that turns a candidate set of
transfers into weighted Evidence entries, each with a strength in [0, 1].
A scoring strategy then folds the evidence and the base address risk into
a confidence in [0, 1].

Scoring strategies are plain callables so a detector can be given a
different heuristic without touching its control flow.
"""

import math
from statistics import mean, pstdev
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from chainwatch.laundering.types import Evidence, TransferRecord

if TYPE_CHECKING:
    from chainwatch.laundering.matchers import PatternConfig


ScoringStrategy = Callable[[Sequence[Evidence], float], float]

# How much a maximally risky address (100) can lift a pattern score
BASE_RISK_INFLUENCE = 0.5

# Value weight saturates at 10^24 base units (1M tokens at 18 decimals)
VALUE_SCALE_DIGITS = 24
MAX_VALUE_WEIGHT = 0.1

# Time weight approaches its cap for patterns spanning several days
TIME_SCALE_MS = 3 * 24 * 60 * 60 * 1000
MAX_TIME_WEIGHT = 0.05


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    if value != value:  # NaN
        return low
    return max(low, min(high, value))


def _ratio(small: float, large: float) -> float:
    """small / large in [0, 1]; 0 when large is 0."""
    if large <= 0:
        return 0.0
    return clamp(small / large)


def _gaps(flows: Sequence[TransferRecord]) -> list[int]:
    return [b.timestamp - a.timestamp for a, b in zip(flows, flows[1:])]


def weighted_score(evidence: Sequence[Evidence]) -> float:
    """Weighted mean of evidence strengths, 0 when there is no weight."""
    total_weight = sum(max(0.0, e.weight) for e in evidence)
    if total_weight <= 0:
        return 0.0
    return clamp(sum(max(0.0, e.weight) * clamp(e.value) for e in evidence) / total_weight)


def default_strategy(evidence: Sequence[Evidence], base_risk_score: float) -> float:
    """
    Evidence score lifted towards 1 by the base address risk (0-100).

    Monotonic non-decreasing in every evidence value and in the base risk.
    """
    score = weighted_score(evidence)
    risk = clamp((base_risk_score or 0.0) / 100.0)
    return clamp(score + (1.0 - score) * BASE_RISK_INFLUENCE * risk)


def evidence_only_strategy(evidence: Sequence[Evidence], base_risk_score: float) -> float:
    """Ignore address risk entirely."""
    return weighted_score(evidence)


def value_weight(total_value: Optional[int]) -> float:
    """Log-scaled weight for the value moved by a pattern."""
    if not total_value or total_value <= 0:
        return 0.0
    digits = math.log10(1 + total_value)
    return MAX_VALUE_WEIGHT * clamp(digits / VALUE_SCALE_DIGITS)


def time_weight(duration_ms: Optional[int]) -> float:
    """Saturating weight for how long a pattern spans."""
    if not duration_ms or duration_ms <= 0:
        return 0.0
    return MAX_TIME_WEIGHT * (1.0 - math.exp(-duration_ms / TIME_SCALE_MS))


def analyze_layering(
    flows: Sequence[TransferRecord],
    config: "PatternConfig",
) -> list[Evidence]:
    """Evidence for a chain of hops A -> B -> C -> ..."""
    if not flows:
        return []
    amounts = [f.amount for f in flows]
    gaps = _gaps(flows)
    mean_gap = mean(gaps) if gaps else 0
    addresses = {flows[0].from_address} | {f.to_address for f in flows}

    return [
        Evidence(
            type="hop_depth",
            weight=0.3,
            value=clamp(len(flows) / (config.min_flow_count + 1)),
            data={"hops": len(flows)},
        ),
        Evidence(
            type="value_preservation",
            weight=0.3,
            value=_ratio(min(amounts), max(amounts)),
            data={"min_amount": str(min(amounts)), "max_amount": str(max(amounts))},
        ),
        Evidence(
            type="velocity",
            weight=0.25,
            value=clamp(1.0 - _ratio(mean_gap, config.max_time_gap)),
            data={"mean_gap_ms": mean_gap},
        ),
        Evidence(
            type="distinct_intermediaries",
            weight=0.15,
            value=_ratio(len(addresses), len(flows) + 1),
            data={"address_count": len(addresses)},
        ),
    ]


def _sub_threshold(amount: int) -> bool:
    """Amount sits in the top fifth below a power of ten (e.g. 8,000-9,999)."""
    if amount <= 0:
        return False
    threshold = 10 ** len(str(amount))
    return amount >= threshold * 0.8


def analyze_structuring(
    flows: Sequence[TransferRecord],
    config: "PatternConfig",
) -> list[Evidence]:
    """Evidence for many similar, threshold-avoiding transfers in a window."""
    if not flows:
        return []
    amounts = [f.amount for f in flows]
    span = max(f.timestamp for f in flows) - min(f.timestamp for f in flows)
    senders: dict[str, int] = {}
    for f in flows:
        senders[f.from_address] = senders.get(f.from_address, 0) + 1
    dominant = max(senders.values())
    sub_threshold = sum(1 for a in amounts if _sub_threshold(a))

    return [
        Evidence(
            type="amount_similarity",
            weight=0.35,
            value=_ratio(min(amounts), max(amounts)),
            data={"min_amount": str(min(amounts)), "max_amount": str(max(amounts))},
        ),
        Evidence(
            type="temporal_density",
            weight=0.25,
            value=clamp(1.0 - _ratio(span, config.max_time_gap)),
            data={"span_ms": span},
        ),
        Evidence(
            type="sub_threshold_amounts",
            weight=0.25,
            value=_ratio(sub_threshold, len(amounts)),
            data={"sub_threshold_count": sub_threshold},
        ),
        Evidence(
            type="source_concentration",
            weight=0.15,
            value=_ratio(dominant, len(flows)),
            data={"sender_count": len(senders)},
        ),
    ]


def analyze_mixing(
    inbound: Sequence[TransferRecord],
    outbound: Sequence[TransferRecord],
    config: "PatternConfig",
) -> list[Evidence]:
    """Evidence for a many-in, many-out merge point."""
    if not inbound or not outbound:
        return []
    in_total = sum(f.amount for f in inbound)
    out_total = sum(f.amount for f in outbound)
    counterparties = {f.from_address for f in inbound} | {f.to_address for f in outbound}
    in_center = mean(f.timestamp for f in inbound)
    out_center = mean(f.timestamp for f in outbound)
    turnaround = abs(out_center - in_center)

    return [
        Evidence(
            type="fan_balance",
            weight=0.25,
            value=_ratio(min(len(inbound), len(outbound)), max(len(inbound), len(outbound))),
            data={"inbound_count": len(inbound), "outbound_count": len(outbound)},
        ),
        Evidence(
            type="value_conservation",
            weight=0.35,
            value=_ratio(min(in_total, out_total), max(in_total, out_total)),
            data={"inbound_value": str(in_total), "outbound_value": str(out_total)},
        ),
        Evidence(
            type="counterparty_diversity",
            weight=0.2,
            value=_ratio(len(counterparties), len(inbound) + len(outbound)),
            data={"counterparty_count": len(counterparties)},
        ),
        Evidence(
            type="turnaround",
            weight=0.2,
            value=clamp(1.0 - _ratio(turnaround, config.max_time_gap)),
            data={"turnaround_ms": turnaround},
        ),
    ]


def analyze_smurfing(
    flows: Sequence[TransferRecord],
    config: "PatternConfig",
) -> list[Evidence]:
    """Evidence for a one-to-many fan-out."""
    if not flows:
        return []
    amounts = [f.amount for f in flows]
    recipients = {f.to_address for f in flows}
    span = max(f.timestamp for f in flows) - min(f.timestamp for f in flows)
    avg = mean(amounts)
    variation = pstdev(amounts) / avg if avg > 0 else 1.0

    return [
        Evidence(
            type="fan_out",
            weight=0.35,
            value=_ratio(len(recipients), len(flows)),
            data={"recipient_count": len(recipients)},
        ),
        Evidence(
            type="burst",
            weight=0.25,
            value=clamp(1.0 - 0.5 * _ratio(span, config.max_time_gap)),
            data={"span_ms": span},
        ),
        Evidence(
            type="amount_uniformity",
            weight=0.25,
            value=clamp(1.0 - variation),
            data={"coefficient_of_variation": variation},
        ),
        Evidence(
            type="volume",
            weight=0.15,
            value=_ratio(len(flows), config.min_flow_count),
            data={"flow_count": len(flows)},
        ),
    ]


def analyze_cycling(
    flows: Sequence[TransferRecord],
    config: "PatternConfig",
) -> list[Evidence]:
    """Evidence for value returning to its origin."""
    if not flows:
        return []
    first, last = flows[0], flows[-1]
    gaps = _gaps(flows)
    ordered = sum(1 for g in gaps if g >= 0)
    span = max(f.timestamp for f in flows) - min(f.timestamp for f in flows)

    return [
        Evidence(
            type="closure",
            weight=0.3,
            value=1.0 if last.to_address == first.from_address else 0.0,
            data={"origin": first.from_address},
        ),
        Evidence(
            type="value_retention",
            weight=0.3,
            value=_ratio(min(first.amount, last.amount), max(first.amount, last.amount)),
            data={"sent": str(first.amount), "returned": str(last.amount)},
        ),
        Evidence(
            type="temporal_order",
            weight=0.2,
            value=_ratio(ordered, len(gaps)) if gaps else 1.0,
            data={"ordered_hops": ordered},
        ),
        Evidence(
            type="speed",
            weight=0.2,
            value=clamp(1.0 - _ratio(span, len(flows) * config.max_time_gap)),
            data={"span_ms": span},
        ),
    ]
