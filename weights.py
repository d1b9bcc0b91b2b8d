"""
weights.py — Turn edge candidates into directed, weighted graph edges.

Each candidate gets a great-circle distance, a per-direction ascent taken from
the elevation sampler, and the suitability it was classified with.  Two-way
candidates become a FORWARD/REVERSE pair; one-way candidates a single ONEWAY
edge.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence

from config import EARTH_RADIUS_M
from network import EdgeCandidate, Network
from suitability import SuitabilityScore

logger = logging.getLogger(__name__)


class Direction(Enum):
    ONEWAY = "oneway"
    FORWARD = "forward"
    REVERSE = "reverse"


@dataclass(frozen=True)
class GraphNode:
    id: int
    osm_id: int
    lat: float
    lon: float
    elevation: float


@dataclass(frozen=True)
class GraphEdge:
    source: int
    target: int
    distance: float
    ascent: float
    suitability: SuitabilityScore
    direction: Direction


@dataclass(frozen=True)
class Graph:
    nodes: List[GraphNode]
    edges: List[GraphEdge]


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance in meters between two points."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.asin(math.sqrt(min(1.0, a)))


def ascent(source: GraphNode, target: GraphNode) -> float:
    """Height gained going from source to target; never negative."""
    return max(0.0, target.elevation - source.elevation)


def edge_sort_key(edge: GraphEdge):
    return (edge.source, edge.target, edge.distance, edge.ascent,
            -edge.suitability.tier, edge.direction.value)


def resolve_nodes(network: Network, sampler, mapper=map) -> List[GraphNode]:
    """Attach an elevation to every network node (one lookup per node).

    ``mapper`` is ``map`` or an executor's ``map``; results keep node order.
    """
    def attach(n):
        return GraphNode(n.id, n.osm_id, n.lat, n.lon, sampler.elevation_at(n.lat, n.lon))

    nodes = list(mapper(attach, network.nodes))
    logger.info(f"Resolved elevation for {len(nodes)} nodes")
    return nodes


def resolve_candidate(candidate: EdgeCandidate, nodes: Sequence[GraphNode]) -> List[GraphEdge]:
    a = nodes[candidate.source]
    b = nodes[candidate.target]
    distance = haversine_m(a.lat, a.lon, b.lat, b.lon)
    if candidate.oneway:
        return [GraphEdge(a.id, b.id, distance, ascent(a, b), candidate.suitability, Direction.ONEWAY)]
    return [
        GraphEdge(a.id, b.id, distance, ascent(a, b), candidate.suitability, Direction.FORWARD),
        GraphEdge(b.id, a.id, distance, ascent(b, a), candidate.suitability, Direction.REVERSE),
    ]


def _dominates(a: GraphEdge, b: GraphEdge) -> bool:
    return (a.distance <= b.distance and a.ascent <= b.ascent
            and a.suitability >= b.suitability)


def prune_edges(edges: Sequence[GraphEdge]) -> List[GraphEdge]:
    """Sort edges by (source, target) and drop duplicate or dominated parallels.

    Among edges joining the same pair of nodes, an edge is dropped when an
    earlier sibling is at least as short, as flat and as suitable.
    """
    ordered = sorted(edges, key=edge_sort_key)
    kept: List[GraphEdge] = []
    group: List[GraphEdge] = []
    for edge in ordered:
        if group and (group[0].source, group[0].target) != (edge.source, edge.target):
            group = []
        if any(_dominates(other, edge) for other in group):
            continue
        group.append(edge)
        kept.append(edge)
    dropped = len(ordered) - len(kept)
    if dropped:
        logger.info(f"Deleted {dropped} duplicate or dominated edges, {len(kept)} edges left")
    return kept


def resolve(network: Network, sampler, workers: int = 1) -> Graph:
    """Compute node elevations and edge weights for an assembled network.

    With ``workers`` > 1 both the elevation lookups and the per-candidate
    weights run on a thread pool.
    """
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="resolve") as executor:
            nodes = resolve_nodes(network, sampler, executor.map)
            logger.info(f"Calculating distances and height differences on {len(network.candidates)} candidates")
            batches = list(executor.map(lambda c: resolve_candidate(c, nodes), network.candidates))
    else:
        nodes = resolve_nodes(network, sampler)
        logger.info(f"Calculating distances and height differences on {len(network.candidates)} candidates")
        batches = [resolve_candidate(c, nodes) for c in network.candidates]

    edges = prune_edges([edge for batch in batches for edge in batch])
    return Graph(nodes, edges)
