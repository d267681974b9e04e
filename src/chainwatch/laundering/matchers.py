"""
Money-laundering typology detectors.

Implements detection for:
- Layering - value hopping through a chain of addresses
- Structuring - many similar amounts inside a short window
- Mixing - many-in, many-out merge points
- Smurfing - one-to-many fan-out from a split point
- Cycling - value returning to its origin

Every detector shares one harness: it proposes candidate flow sets,
analyzes their evidence, scores them and keeps those above its minimum
confidence.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

import networkx as nx

from chainwatch.laundering import scoring
from chainwatch.laundering.flow import FlowGraph
from chainwatch.laundering.types import (
    Evidence,
    FlowPattern,
    PatternType,
    TransferRecord,
)

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000


@dataclass
class PatternConfig:
    """Thresholds for one typology."""

    min_confidence: float
    max_time_gap: int  # millis
    min_flow_count: int
    max_flow_count: int


DEFAULT_PATTERN_CONFIGS: dict[PatternType, PatternConfig] = {
    PatternType.LAYERING: PatternConfig(0.7, 24 * HOUR_MS, 3, 10),
    PatternType.STRUCTURING: PatternConfig(0.8, 12 * HOUR_MS, 5, 20),
    PatternType.MIXING: PatternConfig(0.75, 6 * HOUR_MS, 4, 15),
    PatternType.SMURFING: PatternConfig(0.85, 48 * HOUR_MS, 10, 50),
    PatternType.CYCLING: PatternConfig(0.9, 72 * HOUR_MS, 3, 8),
}


@dataclass
class Candidate:
    """A flow set proposed by a detector, plus detector-specific context."""

    flows: list[TransferRecord]
    context: dict[str, Any] = field(default_factory=dict)


class Detector(ABC):
    """Base class for typology detectors."""

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        strategy: scoring.ScoringStrategy = scoring.default_strategy,
    ):
        self.config = config or DEFAULT_PATTERN_CONFIGS[self.pattern_type]
        self.strategy = strategy

    @property
    @abstractmethod
    def pattern_type(self) -> PatternType:
        """Typology this detector reports."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of the typology."""
        pass

    @abstractmethod
    def find_candidates(self, flows: Sequence[TransferRecord]) -> Iterable[Candidate]:
        """Propose candidate flow sets from the full flow list."""
        pass

    @abstractmethod
    def analyze_evidence(self, candidate: Candidate) -> list[Evidence]:
        """Build evidence entries for a candidate."""
        pass

    def in_range(self, count: int) -> bool:
        return self.config.min_flow_count <= count <= self.config.max_flow_count

    def accepts(self, candidate: Candidate) -> bool:
        """Whether a candidate's size qualifies it for scoring."""
        return bool(candidate.flows) and self.in_range(len(candidate.flows))

    def detect(
        self,
        flows: Sequence[TransferRecord],
        base_risk_score: float = 0.0,
    ) -> list[FlowPattern]:
        """
        Detect this typology in a flow list.

        Args:
            flows: Transfers to analyze (not modified)
            base_risk_score: Risk of the analyzed address(es), 0-100

        Returns:
            Patterns scoring at or above the detector's minimum confidence
        """
        if len(flows) < 2:
            return []

        patterns = []
        for candidate in self.find_candidates(flows):
            if not self.accepts(candidate):
                continue

            evidence = self.analyze_evidence(candidate)
            score = scoring.clamp(self.strategy(evidence, base_risk_score))
            if score < self.config.min_confidence:
                continue

            patterns.append(
                FlowPattern.from_flows(self.pattern_type, score, candidate.flows, evidence)
            )

        return patterns


def _by_time(flows: Iterable[TransferRecord]) -> list[TransferRecord]:
    return sorted(flows, key=lambda f: f.timestamp)


class LayeringDetector(Detector):
    """
    Detect layering chains.

    For every flow taken as a chain start, later flows extend the chain
    while they leave the chain's current tail address and arrive within
    max_time_gap of the previous hop. Every chain length in range is
    reported, so overlapping chains may all qualify.
    """

    @property
    def pattern_type(self) -> PatternType:
        return PatternType.LAYERING

    @property
    def description(self) -> str:
        return "Value moved through a chain of addresses in quick succession"

    def find_candidates(self, flows: Sequence[TransferRecord]) -> Iterable[Candidate]:
        ordered = _by_time(flows)
        gap = self.config.max_time_gap

        for i in range(len(ordered) - self.config.min_flow_count + 1):
            chain = [ordered[i]]
            for nxt in ordered[i + 1:]:
                tail = chain[-1]
                if nxt.timestamp - tail.timestamp > gap:
                    break
                if nxt.from_address != tail.to_address:
                    continue
                chain.append(nxt)
                if len(chain) > self.config.max_flow_count:
                    break
                if self.in_range(len(chain)):
                    yield Candidate(flows=list(chain))

    def analyze_evidence(self, candidate: Candidate) -> list[Evidence]:
        return scoring.analyze_layering(candidate.flows, self.config)


class StructuringDetector(Detector):
    """
    Detect structuring.

    Flows are cut into consecutive, non-overlapping windows of
    max_time_gap. Inside a window, flows with similar amounts are grouped;
    a group of the right size is a candidate.
    """

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        strategy: scoring.ScoringStrategy = scoring.default_strategy,
        amount_tolerance: float = 0.1,
    ):
        super().__init__(config, strategy)
        self.amount_tolerance = amount_tolerance

    @property
    def pattern_type(self) -> PatternType:
        return PatternType.STRUCTURING

    @property
    def description(self) -> str:
        return "Many similar amounts within a short window"

    def group_by_time_window(
        self, flows: Sequence[TransferRecord]
    ) -> list[list[TransferRecord]]:
        windows: list[list[TransferRecord]] = []
        current: list[TransferRecord] = []
        window_start = 0

        for flow in _by_time(flows):
            if current and flow.timestamp - window_start >= self.config.max_time_gap:
                windows.append(current)
                current = []
            if not current:
                window_start = flow.timestamp
            current.append(flow)

        if current:
            windows.append(current)
        return windows

    def group_similar_amounts(
        self, flows: Sequence[TransferRecord]
    ) -> list[list[TransferRecord]]:
        """Bucket flows whose amount is within tolerance of the bucket's smallest."""
        groups: list[list[TransferRecord]] = []
        current: list[TransferRecord] = []
        anchor = 0

        for flow in sorted(flows, key=lambda f: (f.amount, f.timestamp)):
            if current and flow.amount > anchor * (1 + self.amount_tolerance):
                groups.append(current)
                current = []
            if not current:
                anchor = flow.amount
            current.append(flow)

        if current:
            groups.append(current)
        return [_by_time(g) for g in groups]

    def find_candidates(self, flows: Sequence[TransferRecord]) -> Iterable[Candidate]:
        for window in self.group_by_time_window(flows):
            if len(window) < self.config.min_flow_count:
                continue
            for group in self.group_similar_amounts(window):
                yield Candidate(flows=group)

    def analyze_evidence(self, candidate: Candidate) -> list[Evidence]:
        return scoring.analyze_structuring(candidate.flows, self.config)


def _inbound_outbound(
    flows: Sequence[TransferRecord],
) -> tuple[dict[str, list[TransferRecord]], dict[str, list[TransferRecord]]]:
    inbound: dict[str, list[TransferRecord]] = {}
    outbound: dict[str, list[TransferRecord]] = {}
    for flow in flows:
        inbound.setdefault(flow.to_address, []).append(flow)
        outbound.setdefault(flow.from_address, []).append(flow)
    return inbound, outbound


class MixingDetector(Detector):
    """
    Detect mixing through merge points.

    A merge point receives many flows and sends many flows; the candidate
    is the union of its inbound and outbound flows.
    """

    @property
    def pattern_type(self) -> PatternType:
        return PatternType.MIXING

    @property
    def description(self) -> str:
        return "Funds pooled at an address and redistributed"

    def find_merge_points(self, flows: Sequence[TransferRecord]) -> list[str]:
        inbound, outbound = _inbound_outbound(flows)
        return [
            address for address in inbound
            if self.in_range(len(inbound[address]))
            and self.in_range(len(outbound.get(address, [])))
        ]

    def find_candidates(self, flows: Sequence[TransferRecord]) -> Iterable[Candidate]:
        inbound, outbound = _inbound_outbound(flows)
        for address in self.find_merge_points(flows):
            ins, outs = inbound[address], outbound[address]
            yield Candidate(
                flows=ins + outs,
                context={"address": address, "inbound": ins, "outbound": outs},
            )

    def accepts(self, candidate: Candidate) -> bool:
        # Bounds apply to each side, not to the union
        return self.in_range(len(candidate.context["inbound"])) and self.in_range(
            len(candidate.context["outbound"])
        )

    def analyze_evidence(self, candidate: Candidate) -> list[Evidence]:
        return scoring.analyze_mixing(
            candidate.context["inbound"], candidate.context["outbound"], self.config
        )


class SmurfingDetector(Detector):
    """
    Detect smurfing through split points.

    A split point sends a bounded number of flows; the candidate is
    exactly those outbound flows.
    """

    @property
    def pattern_type(self) -> PatternType:
        return PatternType.SMURFING

    @property
    def description(self) -> str:
        return "Funds split across many recipients"

    def find_split_points(self, flows: Sequence[TransferRecord]) -> list[str]:
        _, outbound = _inbound_outbound(flows)
        return [a for a, outs in outbound.items() if self.in_range(len(outs))]

    def find_candidates(self, flows: Sequence[TransferRecord]) -> Iterable[Candidate]:
        _, outbound = _inbound_outbound(flows)
        for address in self.find_split_points(flows):
            yield Candidate(flows=_by_time(outbound[address]), context={"address": address})

    def analyze_evidence(self, candidate: Candidate) -> list[Evidence]:
        return scoring.analyze_smurfing(candidate.flows, self.config)


class CyclingDetector(Detector):
    """
    Detect cycling.

    Finds simple cycles in the flow graph whose edge count is in range.
    Each cycle is reported once, starting at the edge carrying its
    earliest transfer, with one transfer per edge chosen to follow the
    previous hop in time where possible.
    """

    @property
    def pattern_type(self) -> PatternType:
        return PatternType.CYCLING

    @property
    def description(self) -> str:
        return "Funds returned to their origin through intermediaries"

    def find_cycles(self, graph: FlowGraph) -> list[list[str]]:
        cycles = []
        for cycle in nx.simple_cycles(graph.graph, length_bound=self.config.max_flow_count):
            if self.in_range(len(cycle)):
                cycles.append(cycle)
        return cycles

    def cycle_flows(self, graph: FlowGraph, cycle: list[str]) -> list[TransferRecord]:
        edges = list(zip(cycle, cycle[1:] + cycle[:1]))
        earliest = [min(t.timestamp for t in graph.transfers_between(*e)) for e in edges]
        start = earliest.index(min(earliest))
        edges = edges[start:] + edges[:start]

        chosen: list[TransferRecord] = []
        for src, dst in edges:
            transfers = _by_time(graph.transfers_between(src, dst))
            after = chosen[-1].timestamp if chosen else None
            pick = next(
                (t for t in transfers if after is None or t.timestamp >= after),
                transfers[0],
            )
            chosen.append(pick)
        return chosen

    def find_candidates(self, flows: Sequence[TransferRecord]) -> Iterable[Candidate]:
        graph = FlowGraph.from_transfers(flows)
        for cycle in self.find_cycles(graph):
            yield Candidate(flows=self.cycle_flows(graph, cycle), context={"cycle": cycle})

    def analyze_evidence(self, candidate: Candidate) -> list[Evidence]:
        return scoring.analyze_cycling(candidate.flows, self.config)


class PatternMatcher:
    """
    Runs a set of typology detectors over the same flows.

    Usage:
        matcher = PatternMatcher()
        patterns = matcher.detect_all(flows, base_risk_score=40)
    """

    def __init__(self, detectors: Optional[list[Detector]] = None):
        self.detectors = detectors or [
            LayeringDetector(),
            StructuringDetector(),
            MixingDetector(),
            SmurfingDetector(),
            CyclingDetector(),
        ]

    def detect_all(
        self,
        flows: Sequence[TransferRecord],
        base_risk_score: float = 0.0,
    ) -> list[FlowPattern]:
        """Run every detector and concatenate their patterns in detector order."""
        flows = list(flows)
        patterns = []
        for detector in self.detectors:
            found = detector.detect(flows, base_risk_score)
            logger.debug(f"{detector.pattern_type.value}: found {len(found)} patterns")
            patterns.extend(found)
        return patterns

    def detect_pattern(
        self,
        pattern_type: PatternType,
        flows: Sequence[TransferRecord],
        base_risk_score: float = 0.0,
    ) -> list[FlowPattern]:
        """Run the detector for one typology."""
        for detector in self.detectors:
            if detector.pattern_type == pattern_type:
                return detector.detect(list(flows), base_risk_score)

        raise ValueError(f"Unknown pattern type: {pattern_type}")

    def add_detector(self, detector: Detector) -> None:
        self.detectors.append(detector)
