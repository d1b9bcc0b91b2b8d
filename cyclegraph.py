#!/usr/bin/env python3
"""
cyclegraph.py — Build a bicycle routing graph from an OSM extract and SRTM tiles.

Stages:
  1. Read      — stream nodes and ways out of the street-network file
  2. Assemble  — keep rideable ways, number their nodes, cut them into edge candidates
  3. Check     — make sure every graph node lies inside the terrain tiles
  4. Resolve   — elevation per node; distance, ascent and suitability per edge
  5. Write     — serialise the graph atomically (optionally gzipped)

Usage:
    python3 cyclegraph.py region.osm.pbf srtm/ region.graph
    python3 cyclegraph.py -z region.osm srtm/ region.graph.gz
    python3 cyclegraph.py --workers 8 --log-file build.log region.osm.pbf srtm/ region.graph

Exit status is 0 on success and 1 on any extraction error; no output file is
left behind when the run fails.
"""

import argparse
import json
import logging
import sys
from typing import Optional, Tuple

from config import LOG_FORMAT, PREFETCH, WORKERS
from elevation import ElevationSampler, tile_key, tile_name
from errors import ExtractionError, MissingTileError
from graph_writer import write_graph
from network import Network, assemble
from osm_source import read_primitives
from weights import Direction, Graph, resolve

logger = logging.getLogger(__name__)


# ── Logging ──────────────────────────────────────────────────────────

def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


# ── Pipeline ─────────────────────────────────────────────────────────

def check_coverage(network: Network, sampler: ElevationSampler) -> None:
    """Fail before any tile is decoded if a node lies outside the terrain tiles."""
    outside = sampler.uncovered((n.lat, n.lon) for n in network.nodes)
    if outside is not None:
        lat, lon = outside
        raise MissingTileError(lat, lon, f"{tile_name(tile_key(lat, lon))}.hgt")


def build_graph(source, tile_dir, workers: int = 1, prefetch: int = 0,
                sampler: Optional[ElevationSampler] = None) -> Tuple[Graph, Network]:
    """Run stages 1-4 and return the finished graph with its assembled network."""
    if sampler is None:
        sampler = ElevationSampler(tile_dir)
    primitives = read_primitives(source, prefetch=prefetch)
    network = assemble(primitives)
    check_coverage(network, sampler)
    graph = resolve(network, sampler, workers=workers)
    return graph, network


def graph_statistics(graph: Graph, network: Optional[Network] = None) -> dict:
    """Return summary figures about a built graph."""
    suitability = {}
    oneway = 0
    length_m = ascent_m = 0.0
    for edge in graph.edges:
        key = str(edge.suitability)
        suitability[key] = suitability.get(key, 0) + 1
        if edge.direction is Direction.ONEWAY:
            oneway += 1
        if edge.direction is not Direction.REVERSE:
            length_m += edge.distance
        ascent_m += edge.ascent

    stats = {
        "nodes": len(graph.nodes),
        "edges": len(graph.edges),
        "oneway_edges": oneway,
        "suitability": dict(sorted(suitability.items())),
        "total_length_km": round(length_m / 1000.0, 2),
        "total_ascent_m": round(ascent_m, 2),
    }
    if network is not None:
        stats.update(network.stats)
    return stats


def run(source, tile_dir, output, compress: bool = False,
        workers: int = WORKERS, prefetch: int = PREFETCH) -> dict:
    """Build the graph for one input pair and write it to ``output``."""
    graph, network = build_graph(source, tile_dir, workers=workers, prefetch=prefetch)
    write_graph(graph, output, compress=compress)
    stats = graph_statistics(graph, network)
    logger.info(f"Graph statistics: {json.dumps(stats, indent=2)}")
    return stats


# ── Main ─────────────────────────────────────────────────────────────

def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="cyclegraph",
        description="Extract a bicycle routing graph with distance, ascent and suitability costs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    p.add_argument("source", metavar="STREET-NETWORK-FILE",
                   help="OSM extract (.osm.pbf, .osm[.gz|.bz2] or Overpass .json)")
    p.add_argument("tile_dir", metavar="TERRAIN-TILE-DIRECTORY",
                   help="Directory with SRTM .hgt tiles")
    p.add_argument("output", metavar="OUTPUT-GRAPH-FILE",
                   help="File to write the graph to")
    p.add_argument("-z", "--zip", action="store_true",
                   help="Save the graph gzipped")
    p.add_argument("--workers", type=int, default=WORKERS,
                   help=f"Threads used to resolve edge weights (default {WORKERS})")
    p.add_argument("--prefetch", type=int, default=PREFETCH,
                   help=f"Decoded primitives buffered ahead of the assembler, 0 = none (default {PREFETCH})")
    p.add_argument("--log-file", metavar="PATH",
                   help="Also write the log to this file")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Log debug detail")
    args = p.parse_args(argv)
    if args.workers < 1:
        p.error("--workers must be at least 1")
    if args.prefetch < 0:
        p.error("--prefetch must not be negative")
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        setup_logging(args.verbose, args.log_file)
    except OSError as exc:
        print(f"error: cannot open log file {args.log_file}: {exc}", file=sys.stderr)
        return 1

    try:
        run(args.source, args.tile_dir, args.output, compress=args.zip,
            workers=args.workers, prefetch=args.prefetch)
    except ExtractionError as exc:
        logger.debug("Extraction failed", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("error: interrupted, no graph written", file=sys.stderr)
        return 130

    logger.info("Pipeline completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
