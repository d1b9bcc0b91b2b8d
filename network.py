"""
network.py — Assemble graph nodes and edge candidates from the primitive stream.

The stream is consumed exactly once.  Nodes are remembered in a registry as
they arrive; every rideable way is cut into one candidate per consecutive
pair of node references.  Only nodes touched by a kept candidate become graph
nodes, numbered densely in the order they were first referenced.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from errors import DanglingReferenceError
from osm_source import OsmNode, OsmWay, Primitive
from suitability import SuitabilityScore, classify, oneway_direction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkNode:
    id: int
    osm_id: int
    lat: float
    lon: float


@dataclass(frozen=True)
class EdgeCandidate:
    source: int
    target: int
    suitability: SuitabilityScore
    oneway: bool
    way_id: int


@dataclass
class Network:
    nodes: List[NetworkNode]
    candidates: List[EdgeCandidate]
    stats: Dict[str, object] = field(default_factory=dict)


class NodeRegistry:
    """External node id -> (lat, lon) for every node seen in the stream."""

    def __init__(self):
        self._coords: Dict[int, Tuple[float, float]] = {}
        self._lock = threading.Lock()

    def add(self, node: OsmNode) -> None:
        with self._lock:
            self._coords.setdefault(node.id, (node.lat, node.lon))

    def get(self, osm_id: int) -> Optional[Tuple[float, float]]:
        return self._coords.get(osm_id)

    def __contains__(self, osm_id) -> bool:
        return osm_id in self._coords

    def __len__(self) -> int:
        return len(self._coords)


def is_relevant(tags: Mapping[str, str]) -> bool:
    """Only street-like ways (highway=*, not an area) can become edges."""
    return "highway" in tags and tags.get("area") != "yes"


def assemble(primitives: Iterable[Primitive],
             classifier: Callable[[Mapping[str, str]], SuitabilityScore] = classify,
             registry: Optional[NodeRegistry] = None) -> Network:
    """Build the node set and edge candidates from a single pass over ``primitives``.

    Raises DanglingReferenceError once the stream is exhausted if a kept way
    references a node that never appeared.
    """
    registry = registry if registry is not None else NodeRegistry()
    internal_ids: Dict[int, int] = {}
    referenced: Dict[int, int] = {}
    pending = []
    ways_seen = ways_kept = ways_unusable = ways_ignored = 0
    highway_counts: Dict[str, int] = {}

    for primitive in primitives:
        if isinstance(primitive, OsmNode):
            registry.add(primitive)
            continue
        if not isinstance(primitive, OsmWay):
            continue

        ways_seen += 1
        tags = primitive.tags
        if not is_relevant(tags):
            ways_ignored += 1
            continue
        suitability = classifier(tags)
        if suitability.unusable:
            ways_unusable += 1
            logger.debug(f"Discarding way {primitive.id} (highway={tags.get('highway')}): unusable for bicycles")
            continue

        for ref in primitive.node_ids:
            referenced.setdefault(ref, primitive.id)
        direction = oneway_direction(tags)
        refs = primitive.node_ids if direction >= 0 else primitive.node_ids[::-1]
        emitted = 0
        for a, b in zip(refs, refs[1:]):
            if a == b:
                continue
            internal_ids.setdefault(a, len(internal_ids))
            internal_ids.setdefault(b, len(internal_ids))
            pending.append((primitive.id, a, b, suitability, direction != 0))
            emitted += 1

        if emitted:
            ways_kept += 1
            highway = tags["highway"]
            highway_counts[highway] = highway_counts.get(highway, 0) + 1

    logger.info(f"Collected {len(pending)} edge candidates from {ways_kept} of {ways_seen} ways "
                f"({ways_unusable} unusable, {ways_ignored} not streets)")

    for osm_id, way_id in referenced.items():
        if osm_id not in registry:
            raise DanglingReferenceError(way_id, osm_id)

    nodes: List[NetworkNode] = []
    for osm_id, node_id in internal_ids.items():
        lat, lon = registry.get(osm_id)
        nodes.append(NetworkNode(node_id, osm_id, lat, lon))
    logger.info(f"Collected {len(nodes)} nodes (of {len(registry)} in the extract)")

    candidates = [
        EdgeCandidate(internal_ids[a], internal_ids[b], suitability, oneway, way_id)
        for way_id, a, b, suitability, oneway in pending
    ]
    stats = {
        "ways_seen": ways_seen,
        "ways_kept": ways_kept,
        "ways_unusable": ways_unusable,
        "ways_ignored": ways_ignored,
        "highway_types": highway_counts,
    }
    return Network(nodes, candidates, stats)
