"""
graph_writer.py — Serialise a cycle graph to disk and read it back.

File layout (UTF-8 text, optionally gzipped):

    # Built by: cyclegraph
    # metrics: distance, ascent, suitability

    3
    <node count>
    <edge count>
    <id> <osm_id> <lat> <lon> <elevation> 0                            one line per node
    <source> <target> <distance> <ascent> <suitability> <direction>   one line per edge

Nodes are written by ascending id, edges by (source, target).  Coordinates
carry 7 decimals, meters 2, so a re-read graph matches within 1e-6 degrees
and 0.01 m.  Nothing time-dependent is written: identical graphs give
identical bytes.
"""

import gzip
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator

from config import COORD_DECIMALS, GRAPH_BUILT_BY, GRAPH_METRICS, METER_DECIMALS
from errors import DecodeError, GraphIOError, SourceIOError
from suitability import SuitabilityScore
from weights import Direction, Graph, GraphEdge, GraphNode, edge_sort_key

logger = logging.getLogger(__name__)

_GZIP_MAGIC = b"\x1f\x8b"


def check_graph(graph: Graph) -> None:
    """Raise ValueError if node ids are not dense or an edge points nowhere."""
    ids = sorted(n.id for n in graph.nodes)
    if ids != list(range(len(ids))):
        raise ValueError("graph node ids are not dense and unique")
    count = len(ids)
    for edge in graph.edges:
        if not (0 <= edge.source < count and 0 <= edge.target < count):
            raise ValueError(f"edge {edge.source}->{edge.target} references a missing node")
        if edge.ascent < 0:
            raise ValueError(f"edge {edge.source}->{edge.target} has negative ascent {edge.ascent}")


def format_graph(graph: Graph) -> Iterator[str]:
    """Yield the lines of the graph file in their final order."""
    nodes = sorted(graph.nodes, key=lambda n: n.id)
    edges = sorted(graph.edges, key=edge_sort_key)

    yield f"# Built by: {GRAPH_BUILT_BY}\n"
    yield f"# metrics: {', '.join(GRAPH_METRICS)}\n"
    yield "\n"
    yield f"{len(GRAPH_METRICS)}\n"
    yield f"{len(nodes)}\n"
    yield f"{len(edges)}\n"
    for n in nodes:
        yield (f"{n.id} {n.osm_id} {n.lat:.{COORD_DECIMALS}f} {n.lon:.{COORD_DECIMALS}f} "
               f"{n.elevation:.{METER_DECIMALS}f} 0\n")
    for e in edges:
        yield (f"{e.source} {e.target} {e.distance:.{METER_DECIMALS}f} {e.ascent:.{METER_DECIMALS}f} "
               f"{e.suitability.tier} {e.direction.value}\n")


def _write_lines(fh, graph: Graph) -> None:
    for line in format_graph(graph):
        fh.write(line.encode("utf-8"))


def _discard(tmp_path: str) -> None:
    try:
        os.unlink(tmp_path)
    except FileNotFoundError:
        pass


def write_graph(graph: Graph, path, compress: bool = False) -> Path:
    """Write ``graph`` to ``path`` so that the file is either complete or absent.

    The graph goes to a temporary file next to the destination, which is
    renamed over it only after everything has been flushed to disk.
    """
    path = Path(path)
    check_graph(graph)
    directory = path.parent

    try:
        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=directory)
    except OSError as exc:
        raise GraphIOError(f"cannot create output file in {directory}: {exc}") from exc

    try:
        with os.fdopen(fd, "wb") as raw:
            if compress:
                with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
                    _write_lines(gz, graph)
            else:
                _write_lines(raw, graph)
            raw.flush()
            os.fsync(raw.fileno())
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, path)
    except OSError as exc:
        _discard(tmp_path)
        raise GraphIOError(f"cannot write graph to {path}: {exc}") from exc
    except BaseException:
        _discard(tmp_path)
        raise

    logger.info(f"Graph with {len(graph.nodes)} nodes and {len(graph.edges)} edges saved to {path}"
                f"{' (gzipped)' if compress else ''}")
    return path


def _read_lines(path: Path):
    try:
        with open(path, "rb") as f:
            compressed = f.read(2) == _GZIP_MAGIC
        opener = gzip.open if compressed else open
        with opener(path, "rt", encoding="utf-8") as f:
            return f.read().splitlines()
    except (EOFError, gzip.BadGzipFile, UnicodeDecodeError) as exc:
        raise DecodeError(f"{path}: corrupt graph file ({exc})") from exc
    except OSError as exc:
        raise SourceIOError(f"cannot read graph file {path}: {exc}") from exc


def read_graph(path) -> Graph:
    """Parse a file produced by write_graph (plain or gzipped)."""
    path = Path(path)
    body = [line for line in _read_lines(path) if line.strip() and not line.startswith("#")]

    try:
        metric_count, node_count, edge_count = (int(v) for v in body[:3])
        if metric_count != len(GRAPH_METRICS):
            raise DecodeError(f"{path}: expected {len(GRAPH_METRICS)} metrics, found {metric_count}")
        if len(body) != 3 + node_count + edge_count:
            raise DecodeError(f"{path}: expected {node_count} nodes and {edge_count} edges, "
                              f"found {len(body) - 3} records")

        nodes = []
        for line in body[3:3 + node_count]:
            node_id, osm_id, lat, lon, elevation, _ = line.split()
            nodes.append(GraphNode(int(node_id), int(osm_id), float(lat), float(lon), float(elevation)))

        edges = []
        for line in body[3 + node_count:]:
            source, target, distance, ascent, tier, direction = line.split()
            edges.append(GraphEdge(int(source), int(target), float(distance), float(ascent),
                                   SuitabilityScore(int(tier)), Direction(direction)))
    except ValueError as exc:
        raise DecodeError(f"{path}: malformed graph record ({exc})") from exc

    return Graph(nodes, edges)
