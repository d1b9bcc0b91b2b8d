"""Tests for osm_source.py"""

import bz2
import gzip
import json
import os
import tempfile
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from errors import DecodeError, SourceIOError
from osm_source import (
    OsmNode, OsmWay, PrimitiveChannel, _PbfHandler, decode_pbf, iter_osm_xml,
    iter_overpass_json, read_primitives, source_format,
)


# --- Sample fixtures ------------------------------------------------------ #

SAMPLE_OSM_XML = """\
<?xml version="1.0" encoding="UTF-8"?>
<osm version="0.6">
  <node id="1" lat="39.95" lon="-75.16"/>
  <node id="2" lat="39.96" lon="-75.15">
    <tag k="highway" v="traffic_signals"/>
  </node>
  <node id="3" lat="39.97" lon="-75.14"/>
  <way id="101">
    <nd ref="1"/>
    <nd ref="2"/>
    <nd ref="3"/>
    <tag k="highway" v="residential"/>
    <tag k="name" v="Spruce Street"/>
  </way>
  <way id="102">
    <nd ref="3"/>
    <tag k="highway" v="footway"/>
  </way>
  <relation id="900">
    <member type="way" ref="101" role=""/>
    <tag k="route" v="bicycle"/>
  </relation>
</osm>
"""

SAMPLE_OVERPASS = {
    "elements": [
        {"type": "node", "id": 10, "lat": 39.95, "lon": -75.16},
        {"type": "node", "id": 11, "lat": 39.96, "lon": -75.15},
        {"type": "way", "id": 201, "nodes": [10, 11], "tags": {"highway": "cycleway"}},
        {"type": "relation", "id": 300, "members": []},
    ]
}


# --- Helpers -------------------------------------------------------------- #

def _write_tmp(content, suffix, mode="w"):
    """Write content to a temp file with the given suffix and return the path."""
    fd, path = tempfile.mkstemp(suffix=suffix)
    with os.fdopen(fd, mode) as f:
        f.write(content)
    return path


# --- Tests ---------------------------------------------------------------- #

class TestSourceFormat:
    def test_known_suffixes(self):
        assert source_format("region.osm.pbf") == "pbf"
        assert source_format("region.osm") == "xml"
        assert source_format("region.osm.gz") == "xml"
        assert source_format("region.xml.bz2") == "xml"
        assert source_format("overpass.json") == "json"

    def test_unknown_suffix(self):
        with pytest.raises(SourceIOError):
            source_format("region.shp")


class TestOsmXml:
    def setup_method(self):
        self.xml_path = _write_tmp(SAMPLE_OSM_XML, ".osm")

    def teardown_method(self):
        os.unlink(self.xml_path)

    def test_yields_nodes_then_ways(self):
        primitives = list(iter_osm_xml(self.xml_path))
        assert primitives[:3] == [
            OsmNode(1, 39.95, -75.16),
            OsmNode(2, 39.96, -75.15),
            OsmNode(3, 39.97, -75.14),
        ]
        way = primitives[3]
        assert isinstance(way, OsmWay)
        assert way.id == 101
        assert way.node_ids == (1, 2, 3)
        assert way.tags == {"highway": "residential", "name": "Spruce Street"}

    def test_way_tags_are_read_only(self):
        way = list(iter_osm_xml(self.xml_path))[3]
        with pytest.raises(TypeError):
            way.tags["highway"] = "motorway"

    def test_single_node_way_skipped(self):
        ids = [p.id for p in iter_osm_xml(self.xml_path) if isinstance(p, OsmWay)]
        assert ids == [101]

    def test_relations_ignored(self):
        primitives = list(iter_osm_xml(self.xml_path))
        assert len(primitives) == 4

    def test_is_lazy(self):
        stream = iter_osm_xml(self.xml_path)
        assert next(stream) == OsmNode(1, 39.95, -75.16)
        stream.close()

    def test_gzip_input(self):
        gz_path = _write_tmp(gzip.compress(SAMPLE_OSM_XML.encode()), ".osm.gz", mode="wb")
        try:
            assert len(list(read_primitives(gz_path))) == 4
        finally:
            os.unlink(gz_path)

    def test_bz2_input(self):
        bz_path = _write_tmp(bz2.compress(SAMPLE_OSM_XML.encode()), ".osm.bz2", mode="wb")
        try:
            assert len(list(read_primitives(bz_path))) == 4
        finally:
            os.unlink(bz_path)


class TestMalformedXml:
    def _decode(self, content, suffix=".osm", mode="w"):
        path = _write_tmp(content, suffix, mode)
        try:
            return list(iter_osm_xml(path))
        finally:
            os.unlink(path)

    def test_truncated_document(self):
        with pytest.raises(DecodeError):
            self._decode(SAMPLE_OSM_XML[: len(SAMPLE_OSM_XML) // 2])

    def test_not_xml(self):
        with pytest.raises(DecodeError):
            self._decode("<<<not valid xml>>>")

    def test_node_without_coordinates(self):
        with pytest.raises(DecodeError, match="node 5"):
            self._decode('<osm><node id="5" lat="abc"/></osm>')

    def test_node_out_of_range(self):
        with pytest.raises(DecodeError):
            self._decode('<osm><node id="5" lat="91.0" lon="0.0"/></osm>')

    def test_bad_node_reference(self):
        with pytest.raises(DecodeError, match="way 7"):
            self._decode('<osm><way id="7"><nd ref="x"/><nd ref="2"/></way></osm>')

    def test_truncated_gzip(self):
        data = gzip.compress(SAMPLE_OSM_XML.encode())
        with pytest.raises(DecodeError):
            self._decode(data[: len(data) // 2], suffix=".osm.gz", mode="wb")


class TestOverpassJson:
    def setup_method(self):
        self.json_path = _write_tmp(json.dumps(SAMPLE_OVERPASS), ".json")

    def teardown_method(self):
        os.unlink(self.json_path)

    def test_parses_elements(self):
        primitives = list(iter_overpass_json(self.json_path))
        assert primitives[0] == OsmNode(10, 39.95, -75.16)
        assert primitives[2].node_ids == (10, 11)
        assert primitives[2].tags == {"highway": "cycleway"}
        assert len(primitives) == 3

    def test_missing_elements(self):
        path = _write_tmp(json.dumps({"version": 0.6}), ".json")
        try:
            with pytest.raises(DecodeError):
                list(iter_overpass_json(path))
        finally:
            os.unlink(path)

    def test_invalid_json(self):
        path = _write_tmp("{not json", ".json")
        try:
            with pytest.raises(DecodeError):
                list(iter_overpass_json(path))
        finally:
            os.unlink(path)


class TestReadPrimitives:
    def test_missing_file(self):
        with pytest.raises(SourceIOError):
            read_primitives("/nonexistent/region.osm")

    def test_prefetch_channel_gives_same_sequence(self):
        path = _write_tmp(SAMPLE_OSM_XML, ".osm")
        try:
            assert list(read_primitives(path, prefetch=2)) == list(read_primitives(path))
        finally:
            os.unlink(path)

    def test_prefetch_channel_propagates_decode_error(self):
        path = _write_tmp("<osm><node id='1' lat='x' lon='0'/></osm>", ".osm")
        try:
            with pytest.raises(DecodeError):
                list(read_primitives(path, prefetch=4))
        finally:
            os.unlink(path)


class TestPrimitiveChannel:
    def test_bounded_handoff(self):
        def producer(emit):
            for i in range(50):
                emit(OsmNode(i, 0.0, 0.0))

        ids = [p.id for p in PrimitiveChannel(producer, maxsize=3)]
        assert ids == list(range(50))

    def test_consumer_can_stop_early(self):
        produced = []

        def producer(emit):
            for i in range(10_000):
                emit(OsmNode(i, 0.0, 0.0))
                produced.append(i)

        channel = PrimitiveChannel(producer, maxsize=2)
        stream = iter(channel)
        assert next(stream).id == 0
        stream.close()
        assert len(produced) < 10_000

    def test_single_use(self):
        channel = PrimitiveChannel(lambda emit: None, maxsize=1)
        assert list(channel) == []
        with pytest.raises(RuntimeError):
            iter(channel)

    def test_producer_error_reaches_consumer(self):
        def producer(emit):
            emit(OsmNode(1, 0.0, 0.0))
            raise DecodeError("broken blob")

        with pytest.raises(DecodeError, match="broken blob"):
            list(PrimitiveChannel(producer, maxsize=1))


class TestPbf:
    def test_handler_converts_objects(self):
        emitted = []
        handler = _PbfHandler("region.osm.pbf", emitted.append)
        location = SimpleNamespace(lat=47.5, lon=8.25, valid=lambda: True)
        handler.node(SimpleNamespace(id=4, location=location))
        handler.way(SimpleNamespace(
            id=40,
            nodes=[SimpleNamespace(ref=4), SimpleNamespace(ref=5)],
            tags=[SimpleNamespace(k="highway", v="path")],
        ))
        assert emitted == [OsmNode(4, 47.5, 8.25), OsmWay(40, (4, 5), {"highway": "path"})]

    def test_handler_rejects_invalid_location(self):
        handler = _PbfHandler("region.osm.pbf", lambda p: None)
        location = SimpleNamespace(lat=0.0, lon=0.0, valid=lambda: False)
        with pytest.raises(DecodeError):
            handler.node(SimpleNamespace(id=4, location=location))

    def test_decoder_failure_becomes_decode_error(self):
        with patch.object(_PbfHandler, "apply_file", side_effect=RuntimeError("bad blob")):
            with pytest.raises(DecodeError, match="bad blob"):
                decode_pbf("region.osm.pbf", lambda p: None)
