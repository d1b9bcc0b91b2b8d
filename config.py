# config.py — cyclegraph extraction configuration
# Edit this file to change suitability policy, terrain handling, output format, etc.

# ── Suitability tiers ────────────────────────────────────────────────
# Higher tier = friendlier for cyclists.  Tiers are clamped to this range.
MIN_TIER = 0
MAX_TIER = 6

# Tier used when the highway class is absent or not listed below.
DEFAULT_TIER = 0

# Base tier per highway class, before bicycle and sidewalk adjustments.
HIGHWAY_BASE_TIER = {
    "cycleway": 6,
    "living_street": 5,
    "service": 5,
    "track": 5,
    "platform": 5,
    "pedestrian": 5,
    "path": 5,
    "footway": 5,
    "residential": 4,
    "unclassified": 4,
    "traffic_island": 4,
    "tertiary": 3,
    "tertiary_link": 3,
    "road": 3,
    "bridleway": 3,
    "secondary": 2,
    "secondary_link": 2,
    "primary": 1,
    "primary_link": 1,
}

# Highway classes a bicycle may not use unless the way says otherwise.
HOSTILE_HIGHWAYS = {
    "motorway",
    "motorway_link",
    "trunk",
    "trunk_link",
    "proposed",
    "construction",
    "raceway",
    "rest_area",
    "elevator",
    "corridor",
    "steps",
}

# bicycle=* values that lift the hostile-highway exclusion.
BICYCLE_ACCESS_OVERRIDE = {"yes", "designated", "permissive"}

# Tier shift applied for an explicit bicycle=* tag.
BICYCLE_TIER_SHIFT = {
    "designated": 2,
    "yes": 1,
    "permissive": 1,
    "dismount": -2,
    "no": -3,
}

# Keys that mark a cycleway on (or beside) the way.
CYCLEWAY_KEYS = ("cycleway", "cycleway:left", "cycleway:right", "cycleway:both")

# cycleway=* values that mean "there is no cycleway".
NO_CYCLEWAY_VALUES = {"no", "none"}

# Sidewalk keys and the values that count as a usable sidewalk.
SIDEWALK_KEYS = ("sidewalk", "sidewalk:left", "sidewalk:right", "sidewalk:both")
SIDEWALK_PERMISSIVE = {"yes", "both", "left", "right", "separate"}

# ── One-way handling ─────────────────────────────────────────────────
ONEWAY_FORWARD_VALUES = {"yes", "true", "1"}
ONEWAY_REVERSE_VALUES = {"-1", "reverse"}
ONEWAY_NONE_VALUES = {"no", "false", "0"}

# Highway classes / junctions that are one-way unless tagged otherwise.
IMPLIED_ONEWAY_HIGHWAYS = {"motorway"}
IMPLIED_ONEWAY_JUNCTIONS = {"roundabout"}

# ── Terrain tiles ────────────────────────────────────────────────────
# SRTM .hgt tiles: big-endian int16 samples, north row first.
HGT_SUFFIXES = (".hgt", ".hgt.gz", ".hgt.zip")
HGT_VOID = -32768

# ── Geometry ─────────────────────────────────────────────────────────
# Mean earth radius in meters used for great-circle distances.
EARTH_RADIUS_M = 6_371_007.2

# ── Output ───────────────────────────────────────────────────────────
GRAPH_BUILT_BY = "cyclegraph"
GRAPH_METRICS = ("distance", "ascent", "suitability")
COORD_DECIMALS = 7
METER_DECIMALS = 2

# ── Concurrency ──────────────────────────────────────────────────────
# Threads used to resolve edge weights (1 = sequential).
WORKERS = 4

# Size of the bounded queue between decoder and assembler (0 = no channel).
PREFETCH = 10_000

# ── Logging ──────────────────────────────────────────────────────────
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
