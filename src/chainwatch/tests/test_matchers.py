"""
Tests for typology detectors and the pattern matcher.
"""

import pytest

from chainwatch.laundering.flow import FlowGraph
from chainwatch.laundering.matchers import (
    DEFAULT_PATTERN_CONFIGS,
    HOUR_MS,
    CyclingDetector,
    LayeringDetector,
    MixingDetector,
    PatternConfig,
    PatternMatcher,
    SmurfingDetector,
    StructuringDetector,
)
from chainwatch.laundering.scoring import evidence_only_strategy
from chainwatch.laundering.types import PatternType, participants_of


def assert_pattern_consistent(pattern):
    """Derived pattern fields agree with its flows."""
    timestamps = [f.timestamp for f in pattern.flows]
    assert pattern.flows
    assert set(pattern.participants) == set(participants_of(pattern.flows))
    assert len(pattern.participants) == len(set(pattern.participants))
    assert pattern.start_time == min(timestamps)
    assert pattern.end_time == max(timestamps)
    assert pattern.start_time <= pattern.end_time
    assert pattern.total_value == sum(f.amount for f in pattern.flows)
    assert 0.0 <= pattern.score <= 1.0


class TestLayeringDetector:
    """Tests for layering chains."""

    def test_four_hop_chain_detected(self, layering_chain):
        """A -> B -> C -> D -> E within four hours is layering."""
        patterns = LayeringDetector().detect(layering_chain)

        full = [p for p in patterns if len(p.flows) == 4]
        assert len(full) == 1
        assert full[0].type == PatternType.LAYERING
        assert full[0].total_value == 400
        assert full[0].participants == ["A", "B", "C", "D", "E"]
        assert full[0].score >= DEFAULT_PATTERN_CONFIGS[PatternType.LAYERING].min_confidence

    def test_overlapping_chains_reported(self, layering_chain):
        patterns = LayeringDetector().detect(layering_chain)

        chains = sorted(tuple(f.tx_id for f in p.flows) for p in patterns)
        assert len(chains) == 3
        for pattern in patterns:
            assert_pattern_consistent(pattern)

    def test_minimum_length_chain_from_first_flow(self, make_transfer):
        """A chain of exactly the minimum length is found."""
        flows = [
            make_transfer("A", "B", hours=0),
            make_transfer("B", "C", hours=1),
            make_transfer("C", "D", hours=2),
        ]
        patterns = LayeringDetector().detect(flows)

        assert len(patterns) == 1
        assert len(patterns[0].flows) == 3

    def test_time_gap_breaks_chain(self, make_transfer):
        flows = [
            make_transfer("A", "B", hours=0),
            make_transfer("B", "C", hours=1),
            make_transfer("C", "D", hours=30),
        ]
        assert LayeringDetector().detect(flows) == []

    def test_unconnected_flows_skipped(self, make_transfer):
        """Flows not leaving the chain tail are skipped, not fatal."""
        flows = [
            make_transfer("A", "B", hours=0),
            make_transfer("X", "Y", hours=0.5),
            make_transfer("B", "C", hours=1),
            make_transfer("C", "D", hours=2),
        ]
        patterns = LayeringDetector().detect(flows)

        assert any(
            [f.to_address for f in p.flows] == ["B", "C", "D"] for p in patterns
        )

    def test_chain_length_bounded(self, make_transfer):
        config = PatternConfig(0.0, 24 * HOUR_MS, 3, 4)
        names = "ABCDEFG"
        flows = [
            make_transfer(names[i], names[i + 1], hours=i) for i in range(6)
        ]
        patterns = LayeringDetector(config).detect(flows)

        assert len(patterns) == 7
        assert all(3 <= len(p.flows) <= 4 for p in patterns)

    def test_scoring_strategy_is_pluggable(self, layering_chain):
        detector = LayeringDetector(strategy=lambda evidence, base: 0.0)
        assert detector.detect(layering_chain) == []

    def test_base_risk_never_lowers_score(self, layering_chain):
        quiet = LayeringDetector().detect(layering_chain, base_risk_score=0)
        risky = LayeringDetector().detect(layering_chain, base_risk_score=100)

        for low, high in zip(quiet, risky):
            assert high.score >= low.score

    def test_evidence_only_strategy_ignores_risk(self, layering_chain):
        detector = LayeringDetector(strategy=evidence_only_strategy)
        quiet = detector.detect(layering_chain, base_risk_score=0)
        risky = detector.detect(layering_chain, base_risk_score=100)

        assert [p.score for p in quiet] == [p.score for p in risky]


class TestStructuringDetector:
    """Tests for structuring."""

    def test_similar_sub_threshold_amounts(self, make_transfer):
        """Six transfers of 9,000-9,500 within an hour are structuring."""
        amounts = [9_000, 9_100, 9_200, 9_300, 9_400, 9_500]
        flows = [
            make_transfer("S", f"T{i}", amount, hours=i / 6)
            for i, amount in enumerate(amounts)
        ]
        patterns = StructuringDetector().detect(flows)

        assert len(patterns) == 1
        assert patterns[0].type == PatternType.STRUCTURING
        assert len(patterns[0].flows) == 6
        evidence = {e.type: e.value for e in patterns[0].evidence}
        assert evidence["sub_threshold_amounts"] == 1.0
        assert_pattern_consistent(patterns[0])

    def test_time_windows_do_not_overlap(self, make_transfer):
        flows = [
            make_transfer("S", "T", hours=h) for h in (0, 5, 12, 13, 30)
        ]
        windows = StructuringDetector().group_by_time_window(flows)

        assert [len(w) for w in windows] == [2, 2, 1]
        all_ids = [f.tx_id for w in windows for f in w]
        assert len(all_ids) == len(set(all_ids)) == 5

    def test_amount_groups_anchor_on_smallest(self, make_transfer):
        flows = [
            make_transfer("S", "T", amount, hours=i)
            for i, amount in enumerate([200, 111, 105, 100])
        ]
        groups = StructuringDetector().group_similar_amounts(flows)

        assert [[f.amount for f in g] for g in groups] == [[105, 100], [111], [200]]

    def test_dissimilar_amounts_not_grouped(self, make_transfer):
        flows = [
            make_transfer("S", f"T{i}", 10 ** (i + 2), hours=i) for i in range(6)
        ]
        assert StructuringDetector().detect(flows) == []


class TestMixingDetector:
    """Tests for merge-point mixing."""

    @pytest.fixture
    def merge_point(self, make_transfer):
        inbound = [make_transfer(f"I{i}", "M", 100, hours=i / 4) for i in range(4)]
        outbound = [make_transfer("M", f"O{i}", 100, hours=1 + i / 4) for i in range(4)]
        return inbound + outbound

    def test_merge_point_detected(self, merge_point):
        patterns = MixingDetector().detect(merge_point)

        assert len(patterns) == 1
        assert patterns[0].type == PatternType.MIXING
        assert len(patterns[0].flows) == 8
        assert len(patterns[0].participants) == 9
        assert_pattern_consistent(patterns[0])

    def test_merge_points_need_both_sides(self, merge_point):
        inbound_only = [f for f in merge_point if f.to_address == "M"]
        assert MixingDetector().find_merge_points(inbound_only) == []
        assert MixingDetector().find_merge_points(merge_point) == ["M"]

    def test_unbalanced_value_scores_lower(self, make_transfer):
        inbound = [make_transfer(f"I{i}", "M", 100, hours=i / 4) for i in range(4)]
        outbound = [make_transfer("M", f"O{i}", 10, hours=1 + i / 4) for i in range(4)]
        detector = MixingDetector(PatternConfig(0.0, 6 * HOUR_MS, 4, 15))

        balanced = detector.detect(
            inbound + [make_transfer("M", f"O{i}", 100, hours=1 + i / 4) for i in range(4)]
        )
        leaky = detector.detect(inbound + outbound)

        assert leaky[0].score < balanced[0].score


class TestSmurfingDetector:
    """Tests for fan-out smurfing."""

    def test_fan_out_detected(self, smurfing_fanout):
        """X sends to twelve recipients within twelve hours."""
        patterns = SmurfingDetector().detect(smurfing_fanout)

        assert len(patterns) == 1
        assert patterns[0].type == PatternType.SMURFING
        assert len(patterns[0].participants) == 13
        assert patterns[0].participants[0] == "X"
        assert patterns[0].total_value == 12_000
        assert_pattern_consistent(patterns[0])

    def test_too_few_recipients(self, smurfing_fanout):
        assert SmurfingDetector().detect(smurfing_fanout[:9]) == []

    def test_candidate_flows_ordered_by_time(self, smurfing_fanout):
        patterns = SmurfingDetector().detect(list(reversed(smurfing_fanout)))

        timestamps = [f.timestamp for f in patterns[0].flows]
        assert timestamps == sorted(timestamps)


class TestCyclingDetector:
    """Tests for cycles returning value to the origin."""

    def test_three_hop_cycle(self, make_transfer):
        flows = [
            make_transfer("B", "C", 95, hours=1),
            make_transfer("C", "A", 90, hours=2),
            make_transfer("A", "B", 100, hours=0),
        ]
        patterns = CyclingDetector().detect(flows)

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.type == PatternType.CYCLING
        assert [f.from_address for f in pattern.flows] == ["A", "B", "C"]
        assert pattern.flows[-1].to_address == "A"
        assert_pattern_consistent(pattern)

    def test_two_party_round_trip_too_short(self, make_transfer):
        flows = [make_transfer("A", "B", hours=0), make_transfer("B", "A", hours=1)]
        assert CyclingDetector().detect(flows) == []

    def test_cycle_flows_follow_time_order(self, make_transfer):
        flows = [
            make_transfer("A", "B", 100, hours=0),
            make_transfer("A", "B", 100, hours=5),
            make_transfer("B", "C", 100, hours=3),
            make_transfer("C", "A", 100, hours=4),
        ]
        detector = CyclingDetector()
        graph = FlowGraph.from_transfers(flows)

        (cycle,) = detector.find_cycles(graph)
        chosen = detector.cycle_flows(graph, cycle)

        assert [f.timestamp for f in chosen] == sorted(f.timestamp for f in chosen)
        assert chosen[0].tx_id == flows[0].tx_id


class TestPatternMatcher:
    """Tests for running all detectors together."""

    def test_empty_and_single_flow_inputs(self, make_transfer):
        matcher = PatternMatcher()
        assert matcher.detect_all([]) == []
        assert matcher.detect_all([make_transfer("A", "B")]) == []

    def test_detect_all_in_detector_order(self, layering_chain, smurfing_fanout):
        patterns = PatternMatcher().detect_all(layering_chain + smurfing_fanout)

        types = [p.type for p in patterns]
        assert PatternType.LAYERING in types
        assert PatternType.SMURFING in types
        assert types.index(PatternType.LAYERING) < types.index(PatternType.SMURFING)

    def test_input_not_mutated(self, layering_chain):
        flows = list(reversed(layering_chain))
        before = list(flows)

        PatternMatcher().detect_all(flows)

        assert flows == before

    def test_detect_single_pattern(self, smurfing_fanout):
        patterns = PatternMatcher().detect_pattern(PatternType.SMURFING, smurfing_fanout)
        assert [p.type for p in patterns] == [PatternType.SMURFING]

    def test_unknown_pattern_type(self, layering_chain):
        matcher = PatternMatcher([LayeringDetector()])
        with pytest.raises(ValueError):
            matcher.detect_pattern(PatternType.CYCLING, layering_chain)

    def test_add_detector(self, layering_chain):
        matcher = PatternMatcher([SmurfingDetector()])
        assert matcher.detect_all(layering_chain) == []

        matcher.add_detector(LayeringDetector())

        assert matcher.detect_all(layering_chain)
