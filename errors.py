"""Fatal errors raised while extracting a cycle graph.

Every error here aborts the run; the CLI turns them into a one-line message
and a non-zero exit status.
"""


class ExtractionError(Exception):
    """Base class for all extraction failures."""


class DecodeError(ExtractionError):
    """The street-network stream or a terrain tile is malformed or truncated."""


class SourceIOError(ExtractionError, IOError):
    """An input file or the terrain directory could not be read."""


class GraphIOError(ExtractionError, IOError):
    """The output graph could not be written."""


class MissingTileError(ExtractionError):
    """No terrain tile covers a coordinate."""

    def __init__(self, lat: float, lon: float, tile: str, reason: str = "no terrain tile"):
        self.lat = lat
        self.lon = lon
        self.tile = tile
        super().__init__(f"{reason} for coordinate ({lat}, {lon}) (expected {tile})")


class DanglingReferenceError(ExtractionError):
    """A way references a node id that never appeared in the stream."""

    def __init__(self, way_id: int, node_id: int):
        self.way_id = way_id
        self.node_id = node_id
        super().__init__(f"way {way_id} references unknown node {node_id}")
