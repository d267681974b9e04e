"""
Flow analysis for tracing value movement from a seed address.

Builds a directed flow graph from fetched transfers, enumerates bounded
paths from the seed and extracts the transfers lying on those paths.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

import networkx as nx

from chainwatch.laundering.sources import TransferSource
from chainwatch.laundering.types import MoneyLaunderingError, TransferRecord

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class FlowAnalysisConfig:
    """Configuration for flow extraction."""

    min_flow_value: int = 0
    max_hops: int = 5
    time_window_days: int = 30
    min_pattern_confidence: float = 0.8
    excluded_addresses: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self):
        self.excluded_addresses = frozenset(self.excluded_addresses)


class FlowGraph:
    """
    Directed graph of addresses with per-edge transfer lists.

    Nodes are addresses. An edge a -> b exists when at least one transfer
    went from a to b; the transfers are kept in arrival order under the
    edge's "transfers" attribute.
    """

    def __init__(self):
        self.graph = nx.DiGraph()

    @classmethod
    def from_transfers(cls, transfers: Iterable[TransferRecord]) -> "FlowGraph":
        flow_graph = cls()
        for transfer in transfers:
            flow_graph.add_transfer(transfer)
        return flow_graph

    def add_transfer(self, transfer: TransferRecord) -> None:
        src, dst = transfer.edge_key
        if self.graph.has_edge(src, dst):
            self.graph[src][dst]["transfers"].append(transfer)
        else:
            self.graph.add_edge(src, dst, transfers=[transfer])

    @property
    def nodes(self) -> set[str]:
        return set(self.graph.nodes)

    @property
    def edge_count(self) -> int:
        return self.graph.number_of_edges()

    def has_edge(self, src: str, dst: str) -> bool:
        return self.graph.has_edge(src, dst)

    def successors(self, address: str) -> list[str]:
        if address not in self.graph:
            return []
        return list(self.graph.successors(address))

    def transfers_between(self, src: str, dst: str) -> list[TransferRecord]:
        if not self.graph.has_edge(src, dst):
            return []
        return self.graph[src][dst]["transfers"]

    def edges(self) -> Iterator[tuple[str, str, list[TransferRecord]]]:
        for src, dst, data in self.graph.edges(data=True):
            yield src, dst, data["transfers"]


class FlowAnalyzer:
    """
    Extracts the transfers relevant to a seed address.

    Usage:
        analyzer = FlowAnalyzer(FlowAnalysisConfig(max_hops=4), ledger)
        flows = await analyzer.analyze_flows("0xabc...")
    """

    def __init__(self, config: FlowAnalysisConfig, source: TransferSource):
        self.config = config
        self.source = source

    async def analyze_flows(
        self,
        address: str,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
    ) -> list[TransferRecord]:
        """
        Analyze the flows reachable from an address.

        Args:
            address: Seed address
            start_time: Window start (epoch millis). Defaults to
                end_time minus the configured time window when only
                end_time is given.
            end_time: Window end (epoch millis)

        Returns:
            Deduplicated transfers lying on paths from the seed
        """
        if start_time is None and end_time is not None:
            start_time = end_time - self.config.time_window_days * DAY_MS

        try:
            transfers = await self.source.fetch_transfer_activity(
                address, start_time, end_time
            )
            graph = self.build_graph(transfers)
            paths = self.enumerate_paths(graph, address)
            flows = self.extract_flows(paths, graph)
        except Exception as e:
            logger.error(f"Flow analysis failed for {address}: {e}")
            raise MoneyLaunderingError(
                f"Failed to analyze flows for address {address}: {e}",
                stage="analyze_flows",
                addresses=[address],
                cause=e,
            ) from e

        logger.debug(
            f"{address}: {len(transfers)} transfers, {graph.edge_count} edges, "
            f"{len(paths)} paths, {len(flows)} flows"
        )
        return flows

    def build_graph(self, transfers: Iterable[TransferRecord]) -> FlowGraph:
        """Build the flow graph, skipping transfers touching excluded addresses."""
        excluded = self.config.excluded_addresses
        graph = FlowGraph()
        for transfer in transfers:
            if transfer.from_address in excluded or transfer.to_address in excluded:
                continue
            graph.add_transfer(transfer)
        return graph

    def enumerate_paths(
        self,
        graph: FlowGraph,
        start: str,
        max_hops: Optional[int] = None,
    ) -> list[list[str]]:
        """
        Enumerate address paths from start using an explicit DFS stack.

        A node is never revisited within the same path. Paths stop
        extending at max_hops edges. Every path with more than one node is
        returned.
        """
        max_hops = self.config.max_hops if max_hops is None else max_hops
        if start not in graph.graph or max_hops < 1:
            return []

        paths: list[list[str]] = []
        stack: list[list[str]] = [[start]]

        while stack:
            path = stack.pop()
            if len(path) > 1:
                paths.append(path)
            if len(path) - 1 >= max_hops:
                continue

            # Reversed so successors are explored in insertion order
            for nxt in reversed(graph.successors(path[-1])):
                if nxt not in path:
                    stack.append(path + [nxt])

        return paths

    def extract_flows(
        self,
        paths: list[list[str]],
        graph: FlowGraph,
    ) -> list[TransferRecord]:
        """Collect transfers on every path edge once, dropping small ones."""
        flows: list[TransferRecord] = []
        processed: set[tuple[str, str]] = set()

        for path in paths:
            for src, dst in zip(path, path[1:]):
                if (src, dst) in processed:
                    continue
                processed.add((src, dst))
                flows.extend(
                    t for t in graph.transfers_between(src, dst)
                    if t.amount >= self.config.min_flow_value
                )

        return flows
