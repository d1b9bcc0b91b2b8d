"""
osm_source.py — Stream OSM node and way primitives out of a street-network extract.

Supported inputs (chosen by file suffix):
  *.osm.pbf / *.pbf        decoded by osmium in a background thread
  *.osm / *.xml [.gz|.bz2] streamed with ElementTree.iterparse
  *.json                   an Overpass API [out:json] dump (loaded whole)

Every reader yields OsmNode and OsmWay objects lazily and only once; relations
and other elements are skipped.
"""

import bz2
import gzip
import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Iterable, Iterator, Mapping, Union
from xml.etree import ElementTree as ET

import osmium

from config import PREFETCH
from errors import DecodeError, SourceIOError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OsmNode:
    id: int
    lat: float
    lon: float


@dataclass(frozen=True)
class OsmWay:
    id: int
    node_ids: tuple
    tags: Mapping[str, str] = field(default_factory=dict, hash=False)


Primitive = Union[OsmNode, OsmWay]
Emit = Callable[[Primitive], None]


# ── Primitive construction ───────────────────────────────────────────

def _make_node(node_id, lat, lon, path) -> OsmNode:
    try:
        node = OsmNode(int(node_id), float(lat), float(lon))
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"{path}: node {node_id} has no valid id/lat/lon ({exc})") from exc
    if not (-90.0 <= node.lat <= 90.0 and -180.0 <= node.lon <= 180.0):
        raise DecodeError(f"{path}: node {node_id} has out-of-range coordinate ({lat}, {lon})")
    return node


def _make_way(way_id, refs, tags, path):
    """Build an OsmWay, or return None for a way too short to form an edge."""
    try:
        way_id = int(way_id)
        node_ids = tuple(int(ref) for ref in refs)
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"{path}: way {way_id} has a malformed id or node reference ({exc})") from exc
    if len(node_ids) < 2:
        logger.warning(f"Skipping way {way_id}: only {len(node_ids)} node reference(s)")
        return None
    return OsmWay(way_id, node_ids, MappingProxyType(dict(tags)))


# ── OSM XML ──────────────────────────────────────────────────────────

def _open_binary(path: Path):
    name = path.name.lower()
    if name.endswith(".gz"):
        return gzip.open(path, "rb")
    if name.endswith(".bz2"):
        return bz2.open(path, "rb")
    return open(path, "rb")


def _way_tags(elem, path) -> dict:
    tags = {}
    for tag in elem.iter("tag"):
        key = tag.get("k")
        if key is None:
            raise DecodeError(f"{path}: way {elem.get('id')} has a tag without a key")
        tags[key] = tag.get("v", "")
    return tags


def iter_osm_xml(path) -> Iterator[Primitive]:
    """Stream nodes and ways from an OSM XML file without building the whole tree.

    Each finished <node>/<way>/<relation> is dropped from the root as soon as
    it has been converted, so memory stays flat on large extracts.
    """
    path = Path(path)
    try:
        fh = _open_binary(path)
    except OSError as exc:
        raise SourceIOError(f"cannot open street-network file {path}: {exc}") from exc

    nodes = ways = 0
    with fh:
        try:
            root = None
            for event, elem in ET.iterparse(fh, events=("start", "end")):
                if event == "start":
                    if root is None:
                        root = elem
                    continue
                if elem.tag == "node":
                    yield _make_node(elem.get("id"), elem.get("lat"), elem.get("lon"), path)
                    nodes += 1
                elif elem.tag == "way":
                    refs = [nd.get("ref") for nd in elem.iter("nd")]
                    way = _make_way(elem.get("id"), refs, _way_tags(elem, path), path)
                    if way is not None:
                        yield way
                        ways += 1
                elif elem.tag != "relation":
                    continue
                root.clear()
        except ET.ParseError as exc:
            raise DecodeError(f"{path}: malformed OSM XML ({exc})") from exc
        except (EOFError, gzip.BadGzipFile) as exc:
            raise DecodeError(f"{path}: truncated or corrupt compressed stream ({exc})") from exc
        except OSError as exc:
            raise SourceIOError(f"error reading {path}: {exc}") from exc

    logger.info(f"Read {nodes} nodes and {ways} ways from {path}")


# ── Overpass JSON ────────────────────────────────────────────────────

def iter_overpass_json(path) -> Iterator[Primitive]:
    """Yield nodes and ways from an Overpass '[out:json]' response saved to disk."""
    path = Path(path)
    try:
        with open(path, "rb") as f:
            data = json.load(f)
    except OSError as exc:
        raise SourceIOError(f"cannot read street-network file {path}: {exc}") from exc
    except ValueError as exc:
        raise DecodeError(f"{path}: malformed JSON ({exc})") from exc

    elements = data.get("elements") if isinstance(data, dict) else None
    if not isinstance(elements, list):
        raise DecodeError(f"{path}: expected an Overpass document with an 'elements' list")

    nodes = ways = 0
    for elem in elements:
        if not isinstance(elem, dict):
            raise DecodeError(f"{path}: element is not an object: {elem!r}")
        kind = elem.get("type")
        if kind == "node":
            yield _make_node(elem.get("id"), elem.get("lat"), elem.get("lon"), path)
            nodes += 1
        elif kind == "way":
            tags = elem.get("tags") or {}
            if not isinstance(tags, dict):
                raise DecodeError(f"{path}: way {elem.get('id')} has malformed tags")
            way = _make_way(elem.get("id"), elem.get("nodes") or [], tags, path)
            if way is not None:
                yield way
                ways += 1

    logger.info(f"Read {nodes} nodes and {ways} ways from {path}")


# ── PBF (osmium) ─────────────────────────────────────────────────────

class _PbfHandler(osmium.SimpleHandler):
    """Osmium handler that converts every node and way into a primitive."""

    def __init__(self, path: Path, emit: Emit):
        super().__init__()
        self.path = path
        self.emit = emit
        self.nodes = 0
        self.ways = 0

    def node(self, n):
        location = n.location
        if not location.valid():
            raise DecodeError(f"{self.path}: node {n.id} has an invalid location")
        self.emit(OsmNode(n.id, location.lat, location.lon))
        self.nodes += 1

    def way(self, w):
        tags = {tag.k: tag.v for tag in w.tags}
        way = _make_way(w.id, [nd.ref for nd in w.nodes], tags, self.path)
        if way is not None:
            self.emit(way)
            self.ways += 1


def decode_pbf(path, emit: Emit) -> None:
    """Push every node and way of a PBF file into ``emit``."""
    path = Path(path)
    handler = _PbfHandler(path, emit)
    try:
        handler.apply_file(str(path), locations=False)
    except RuntimeError as exc:
        # osmium reports corrupt blobs and unreadable files as RuntimeError
        raise DecodeError(f"{path}: cannot decode PBF ({exc})") from exc
    except OSError as exc:
        raise SourceIOError(f"error reading {path}: {exc}") from exc
    logger.info(f"Read {handler.nodes} nodes and {handler.ways} ways from {path}")


# ── Bounded channel ──────────────────────────────────────────────────

class _ChannelClosed(Exception):
    """Raised inside the producer once the consumer has gone away."""


class _Failure:
    def __init__(self, exc: BaseException):
        self.exc = exc


_DONE = object()


class PrimitiveChannel:
    """Run a decoder in a background thread and hand primitives over a bounded queue.

    The producer is called with an ``emit`` callable.  ``emit`` blocks while the
    queue is full and raises once the channel is closed, which unwinds the
    decoder.  A producer exception is re-raised in the consuming thread.
    """

    def __init__(self, producer: Callable[[Emit], None], maxsize: int = PREFETCH, name: str = "osm-decoder"):
        self._queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._producer = producer
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._consumed = False

    def _offer(self, item) -> bool:
        while not self._closed.is_set():
            try:
                self._queue.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _emit(self, item: Primitive) -> None:
        if not self._offer(item):
            raise _ChannelClosed()

    def _run(self) -> None:
        try:
            self._producer(self._emit)
        except _ChannelClosed:
            return
        except Exception as exc:
            self._offer(_Failure(exc))
            return
        self._offer(_DONE)

    def __iter__(self) -> Iterator[Primitive]:
        if self._consumed:
            raise RuntimeError("a primitive channel can only be consumed once")
        self._consumed = True
        return self._consume()

    def _consume(self) -> Iterator[Primitive]:
        self._thread.start()
        try:
            while True:
                item = self._queue.get()
                if item is _DONE:
                    return
                if isinstance(item, _Failure):
                    raise item.exc
                yield item
        finally:
            self.close()

    def close(self) -> None:
        self._closed.set()
        if self._thread.is_alive():
            self._thread.join(timeout=5.0)


def _pump(primitives: Iterable[Primitive], emit: Emit) -> None:
    for primitive in primitives:
        emit(primitive)


# ── Entry point ──────────────────────────────────────────────────────

def source_format(path) -> str:
    """Return 'pbf', 'xml' or 'json' for a street-network file name."""
    name = Path(path).name.lower()
    if name.endswith(".pbf"):
        return "pbf"
    for suffix in (".gz", ".bz2"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    if name.endswith((".osm", ".xml")):
        return "xml"
    if name.endswith(".json"):
        return "json"
    raise SourceIOError(f"unrecognised street-network format: {path}")


def read_primitives(path, prefetch: int = 0) -> Iterator[Primitive]:
    """Open a street-network file and return a lazy, single-use primitive iterator.

    ``prefetch`` > 0 decodes in a background thread behind a queue of that
    size.  PBF input is always decoded that way.
    """
    path = Path(path)
    if not path.is_file():
        raise SourceIOError(f"street-network file not found: {path}")
    kind = source_format(path)
    logger.info(f"Extracting data out of: {path} ({kind})")

    if kind == "pbf":
        return iter(PrimitiveChannel(lambda emit: decode_pbf(path, emit), maxsize=prefetch or PREFETCH))

    decoder = iter_osm_xml if kind == "xml" else iter_overpass_json
    if prefetch > 0:
        return iter(PrimitiveChannel(lambda emit: _pump(decoder(path), emit), maxsize=prefetch))
    return decoder(path)
