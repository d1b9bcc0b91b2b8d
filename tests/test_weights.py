"""Tests for weights.py"""

import threading

import pytest

from network import EdgeCandidate, Network, NetworkNode
from suitability import SuitabilityScore
from weights import Direction, GraphEdge, haversine_m, prune_edges, resolve


# --- Helpers -------------------------------------------------------------- #

class FakeSampler:
    """Elevation lookup from a fixed table, counting calls per coordinate."""

    def __init__(self, heights):
        self.heights = heights
        self.calls = {}

    def elevation_at(self, lat, lon):
        self.calls[(lat, lon)] = self.calls.get((lat, lon), 0) + 1
        return self.heights[(lat, lon)]


def _network(coords, pairs, oneway=False, tier=4):
    nodes = [NetworkNode(i, 1000 + i, lat, lon) for i, (lat, lon) in enumerate(coords)]
    candidates = [EdgeCandidate(a, b, SuitabilityScore(tier), oneway, 1) for a, b in pairs]
    return Network(nodes, candidates)


# --- Tests ---------------------------------------------------------------- #

class TestHaversine:
    def test_zero_distance(self):
        assert haversine_m(39.95, -75.16, 39.95, -75.16) == 0.0

    def test_one_millidegree_at_equator(self):
        assert haversine_m(0.0, 0.0, 0.0, 0.001) == pytest.approx(111.195, abs=0.01)

    def test_symmetric(self):
        assert haversine_m(39.95, -75.16, 40.0, -75.0) == pytest.approx(haversine_m(40.0, -75.0, 39.95, -75.16))


class TestResolve:
    def setup_method(self):
        self.sampler = FakeSampler({(0.0, 0.0): 10.0, (0.0, 0.001): 15.0, (0.001, 0.001): 12.0})

    def test_two_way_candidate_is_mirrored(self):
        network = _network([(0.0, 0.0), (0.0, 0.001)], [(0, 1)])
        graph = resolve(network, self.sampler)
        forward, reverse = graph.edges
        assert (forward.source, forward.target, forward.direction) == (0, 1, Direction.FORWARD)
        assert (reverse.source, reverse.target, reverse.direction) == (1, 0, Direction.REVERSE)
        assert forward.distance == pytest.approx(111.2, abs=0.1)
        assert reverse.distance == forward.distance
        assert forward.ascent == pytest.approx(5.0)
        assert reverse.ascent == 0.0
        assert forward.suitability == reverse.suitability == SuitabilityScore(4)

    def test_oneway_candidate_single_edge(self):
        network = _network([(0.0, 0.001), (0.0, 0.0)], [(0, 1)], oneway=True)
        graph = resolve(network, self.sampler)
        assert len(graph.edges) == 1
        edge = graph.edges[0]
        assert edge.direction == Direction.ONEWAY
        assert edge.ascent == 0.0

    def test_node_elevation_resolved_once(self):
        network = _network([(0.0, 0.0), (0.0, 0.001), (0.001, 0.001)], [(0, 1), (1, 2), (2, 0)])
        graph = resolve(network, self.sampler)
        assert all(count == 1 for count in self.sampler.calls.values())
        assert [n.elevation for n in graph.nodes] == [10.0, 15.0, 12.0]

    def test_ascent_never_negative(self):
        network = _network([(0.0, 0.0), (0.0, 0.001), (0.001, 0.001)], [(0, 1), (1, 2), (2, 0)])
        graph = resolve(network, self.sampler)
        assert all(e.ascent >= 0 for e in graph.edges)

    def test_edges_sorted_by_source_and_target(self):
        network = _network([(0.0, 0.0), (0.0, 0.001), (0.001, 0.001)], [(2, 0), (1, 2), (0, 1)])
        graph = resolve(network, self.sampler)
        keys = [(e.source, e.target) for e in graph.edges]
        assert keys == sorted(keys)

    def test_thread_pool_matches_sequential(self):
        network = _network([(0.0, 0.0), (0.0, 0.001), (0.001, 0.001)], [(0, 1), (1, 2), (2, 0)])
        sequential = resolve(network, FakeSampler(self.sampler.heights), workers=1)
        pooled = resolve(network, FakeSampler(self.sampler.heights), workers=4)
        assert pooled == sequential


    def test_thread_pool_samples_nodes_concurrently(self):
        barrier = threading.Barrier(2, timeout=5.0)

        class MeetingSampler(FakeSampler):
            def elevation_at(self, lat, lon):
                # both lookups must be in flight at once to get past the barrier
                barrier.wait()
                return super().elevation_at(lat, lon)

        network = _network([(0.0, 0.0), (0.0, 0.001)], [(0, 1)])
        graph = resolve(network, MeetingSampler(self.sampler.heights), workers=2)
        assert [n.elevation for n in graph.nodes] == [10.0, 15.0]

    def test_sampler_error_propagates_from_pool(self):
        network = _network([(0.0, 0.0), (5.0, 5.0)], [(0, 1)])
        with pytest.raises(KeyError):
            resolve(network, FakeSampler(self.sampler.heights), workers=4)


class TestPruneEdges:
    def _edge(self, source, target, tier, distance=100.0, ascent=1.0, direction=Direction.FORWARD):
        return GraphEdge(source, target, distance, ascent, SuitabilityScore(tier), direction)

    def test_exact_duplicates_removed(self):
        edges = [self._edge(0, 1, 3), self._edge(0, 1, 3)]
        assert len(prune_edges(edges)) == 1

    def test_dominated_parallel_removed(self):
        better = self._edge(0, 1, 5)
        worse = self._edge(0, 1, 2)
        assert prune_edges([worse, better]) == [better]

    def test_incomparable_parallels_kept(self):
        flat_long = self._edge(0, 1, 3, distance=200.0, ascent=0.0)
        steep_short = self._edge(0, 1, 3, distance=100.0, ascent=9.0)
        assert len(prune_edges([flat_long, steep_short])) == 2

    def test_opposite_directions_are_not_parallel(self):
        edges = [self._edge(0, 1, 3), self._edge(1, 0, 3, direction=Direction.REVERSE)]
        assert len(prune_edges(edges)) == 2
