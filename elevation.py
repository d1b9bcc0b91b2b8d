"""
elevation.py — Sample terrain height from one-degree SRTM tiles.

Tiles are named after their south-west corner (N47E008.hgt, S12W077.hgt) and
hold a square grid of big-endian int16 samples with the first row on the
north edge.  Neighbouring tiles share their edge rows/columns, so a point on a
tile border can be answered by either tile.
"""

import gzip
import logging
import math
import re
import threading
import zipfile
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Tuple

import numpy as np
from shapely.geometry import Point, box
from shapely.ops import unary_union
from shapely.prepared import prep

from config import HGT_SUFFIXES, HGT_VOID
from errors import DecodeError, MissingTileError, SourceIOError

logger = logging.getLogger(__name__)

TileKey = Tuple[int, int]

_TILE_NAME_RE = re.compile(r"^([NS])(\d{2})([EW])(\d{3})$")


# ── Tile naming ──────────────────────────────────────────────────────

def tile_key(lat: float, lon: float) -> TileKey:
    """Integer south-west corner of the tile containing (lat, lon)."""
    return math.floor(lat), math.floor(lon)


def tile_name(key: TileKey) -> str:
    lat, lon = key
    ns = "N" if lat >= 0 else "S"
    ew = "E" if lon >= 0 else "W"
    return f"{ns}{abs(lat):02d}{ew}{abs(lon):03d}"


def parse_tile_name(filename: str) -> Optional[TileKey]:
    """Return the tile key for an SRTM file name, or None if it is not one."""
    lowered = filename.lower()
    for suffix in HGT_SUFFIXES:
        if lowered.endswith(suffix):
            stem = filename[: -len(suffix)].upper()
            break
    else:
        return None
    m = _TILE_NAME_RE.match(stem)
    if not m:
        return None
    lat = int(m.group(2)) * (1 if m.group(1) == "N" else -1)
    lon = int(m.group(4)) * (1 if m.group(3) == "E" else -1)
    return lat, lon


# ── Raster reader ────────────────────────────────────────────────────

def read_hgt(path) -> np.ndarray:
    """Read an .hgt / .hgt.gz / .hgt.zip tile into a float grid (voids as NaN)."""
    path = Path(path)
    name = path.name.lower()
    try:
        if name.endswith(".gz"):
            with gzip.open(path, "rb") as f:
                data = f.read()
        elif name.endswith(".zip"):
            with zipfile.ZipFile(path) as zf:
                members = [m for m in zf.namelist() if m.lower().endswith(".hgt")]
                if not members:
                    raise DecodeError(f"{path}: archive contains no .hgt file")
                data = zf.read(members[0])
        else:
            data = path.read_bytes()
    except (EOFError, gzip.BadGzipFile, zipfile.BadZipFile) as exc:
        raise DecodeError(f"{path}: corrupt terrain tile ({exc})") from exc
    except OSError as exc:
        raise SourceIOError(f"cannot read terrain tile {path}: {exc}") from exc

    samples = len(data) // 2
    side = math.isqrt(samples)
    if len(data) % 2 or side < 2 or side * side != samples:
        raise DecodeError(f"{path}: {len(data)} bytes is not a square grid of 16-bit samples")

    grid = np.frombuffer(data, dtype=">i2").reshape((side, side)).astype(np.float64)
    grid[grid == HGT_VOID] = np.nan
    return grid


# ── Tile cache ───────────────────────────────────────────────────────

class TileCache:
    """Decoded tiles keyed by south-west corner.  Lives for one run, never evicts."""

    def __init__(self):
        self._tiles: Dict[TileKey, np.ndarray] = {}
        self._lock = threading.Lock()

    def get(self, key: TileKey, load: Callable[[], np.ndarray]) -> np.ndarray:
        """Return the cached tile, calling ``load`` exactly once on first access."""
        tile = self._tiles.get(key)
        if tile is not None:
            return tile
        with self._lock:
            tile = self._tiles.get(key)
            if tile is None:
                tile = load()
                self._tiles[key] = tile
        return tile

    def clear(self) -> None:
        with self._lock:
            self._tiles.clear()

    def __contains__(self, key) -> bool:
        return key in self._tiles

    def __len__(self) -> int:
        return len(self._tiles)


# ── Sampler ──────────────────────────────────────────────────────────

class ElevationSampler:
    """Answer elevation_at(lat, lon) from the tiles found in ``tile_dir``."""

    def __init__(self, tile_dir, cache: Optional[TileCache] = None,
                 reader: Callable[[Path], np.ndarray] = read_hgt):
        self.tile_dir = Path(tile_dir)
        self.cache = cache if cache is not None else TileCache()
        self.reader = reader
        self.tiles = self._scan()
        self._memo: Dict[Tuple[float, float], float] = {}
        self._memo_lock = threading.Lock()
        self._pending: Dict[Tuple[float, float], threading.Lock] = {}

    def _scan(self) -> Dict[TileKey, Path]:
        if not self.tile_dir.is_dir():
            raise SourceIOError(f"terrain tile directory not found: {self.tile_dir}")
        try:
            entries = sorted(self.tile_dir.iterdir())
        except OSError as exc:
            raise SourceIOError(f"cannot list terrain tile directory {self.tile_dir}: {exc}") from exc

        tiles: Dict[TileKey, Path] = {}
        for entry in entries:
            key = parse_tile_name(entry.name)
            # sorted() puts N00E000.hgt ahead of N00E000.hgt.gz
            if key is not None and key not in tiles:
                tiles[key] = entry
        logger.info(f"Found {len(tiles)} terrain tiles in {self.tile_dir}")
        return tiles

    def _candidate_keys(self, lat: float, lon: float):
        south, west = tile_key(lat, lon)
        yield south, west
        on_lat_edge = lat == south
        on_lon_edge = lon == west
        if on_lat_edge:
            yield south - 1, west
        if on_lon_edge:
            yield south, west - 1
        if on_lat_edge and on_lon_edge:
            yield south - 1, west - 1

    def _tile_for(self, lat: float, lon: float) -> Tuple[TileKey, np.ndarray]:
        for key in self._candidate_keys(lat, lon):
            path = self.tiles.get(key)
            if path is not None:
                return key, self.cache.get(key, lambda: self._load(path))
        raise MissingTileError(lat, lon, f"{tile_name(tile_key(lat, lon))}.hgt")

    def _load(self, path: Path) -> np.ndarray:
        grid = self.reader(path)
        logger.info(f"Loaded terrain tile {path.name} ({grid.shape[0]}x{grid.shape[1]})")
        return grid

    @staticmethod
    def _interpolate(grid: np.ndarray, key: TileKey, lat: float, lon: float) -> Optional[float]:
        """Bilinear interpolation between the four samples around (lat, lon).

        Void samples are left out and the remaining weights re-normalised.
        Returns None when all four samples are void.
        """
        rows, cols = grid.shape
        south, west = key
        row = (south + 1 - lat) * (rows - 1)
        col = (lon - west) * (cols - 1)
        r0 = max(0, min(int(math.floor(row)), rows - 2))
        c0 = max(0, min(int(math.floor(col)), cols - 2))
        dr = row - r0
        dc = col - c0

        corners = (
            (grid[r0, c0], (1 - dr) * (1 - dc)),
            (grid[r0, c0 + 1], (1 - dr) * dc),
            (grid[r0 + 1, c0], dr * (1 - dc)),
            (grid[r0 + 1, c0 + 1], dr * dc),
        )
        valid = [(float(h), w) for h, w in corners if not math.isnan(h)]
        if not valid:
            return None
        total = sum(w for _, w in valid)
        if total <= 0.0:
            # the query sits exactly on a void sample; fall back to its neighbours
            return sum(h for h, _ in valid) / len(valid)
        return sum(h * w for h, w in valid) / total

    def _sample(self, lat: float, lon: float) -> float:
        key, grid = self._tile_for(lat, lon)
        height = self._interpolate(grid, key, lat, lon)
        if height is None:
            raise MissingTileError(lat, lon, f"{tile_name(key)}.hgt", reason="only void terrain samples")
        return height

    def elevation_at(self, lat: float, lon: float) -> float:
        """Elevation in meters at (lat, lon); each coordinate is sampled once.

        Memoised coordinates are read without locking.  A miss takes a lock
        private to that coordinate, so different coordinates are sampled in
        parallel.
        """
        coord = (lat, lon)
        height = self._memo.get(coord)
        if height is not None:
            return height

        with self._memo_lock:
            pending = self._pending.setdefault(coord, threading.Lock())
        try:
            with pending:
                height = self._memo.get(coord)
                if height is None:
                    height = self._sample(lat, lon)
                    self._memo[coord] = height
        finally:
            with self._memo_lock:
                self._pending.pop(coord, None)
        return height

    @property
    def sampled(self) -> int:
        """Number of distinct coordinates sampled so far."""
        return len(self._memo)

    # ── Coverage ─────────────────────────────────────────────────────

    def coverage(self):
        """Union of the one-degree boxes of every tile in the directory."""
        return unary_union([box(west, south, west + 1, south + 1) for south, west in self.tiles])

    def uncovered(self, points: Iterable[Tuple[float, float]]) -> Optional[Tuple[float, float]]:
        """Return the first (lat, lon) outside every tile, or None if all are covered."""
        if not self.tiles:
            return next(iter(points), None)
        area = prep(self.coverage())
        for lat, lon in points:
            if not area.covers(Point(lon, lat)):
                return lat, lon
        return None
