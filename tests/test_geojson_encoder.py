"""Tests for the streaming GeoJSON encoder."""

import json
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from duckdb_featureserv.data.errors import Upstream
from duckdb_featureserv.data.models import SemanticType
from duckdb_featureserv.data.planner import RowLayout
from duckdb_featureserv.data.source import RowStream
from duckdb_featureserv.service.serializers.geojson import (
    encode_value,
    feature_document,
    feature_json,
    stream_feature_collection,
)

POINT = '{"type":"Point","coordinates":[1.123456789012345,2.0]}'

LAYOUT = RowLayout(
    property_names=("id", "name"),
    property_types=(SemanticType.INTEGER, SemanticType.STRING),
    geometry_index=2,
    id_index=0,
)


def no_links(count):
    return []


class TestEncodeValue:
    @pytest.mark.parametrize(
        "value,kind,expected",
        [
            (None, SemanticType.INTEGER, "null"),
            (7, SemanticType.INTEGER, "7"),
            (1.5, SemanticType.FLOATING, "1.5"),
            (float("nan"), SemanticType.FLOATING, "null"),
            (float("inf"), SemanticType.FLOATING, "null"),
            (Decimal("12.340"), SemanticType.FLOATING, "12.340"),
            (True, SemanticType.BOOLEAN, "true"),
            ("Zion", SemanticType.STRING, '"Zion"'),
            ('{"a": [1, 2]}', SemanticType.JSON, '{"a": [1, 2]}'),
            ("not json", SemanticType.JSON, '"not json"'),
            ({"a": 1}, SemanticType.JSON, '{"a": 1}'),
            (b"\x01\xff", SemanticType.OTHER, '"01ff"'),
            (date(2024, 5, 1), SemanticType.TIMESTAMP, '"2024-05-01"'),
        ],
    )
    def test_values(self, value, kind, expected):
        assert encode_value(value, kind) == expected

    def test_naive_timestamp_is_utc(self):
        value = datetime(2024, 1, 2, 3, 4, 5)
        assert encode_value(value, SemanticType.TIMESTAMP) == '"2024-01-02T03:04:05Z"'

    def test_aware_timestamp_converted_to_utc(self):
        value = datetime(2024, 1, 2, 5, 4, 5, tzinfo=timezone(timedelta(hours=2)))
        assert encode_value(value, SemanticType.TIMESTAMP) == '"2024-01-02T03:04:05Z"'

    def test_other_falls_back_to_string(self):
        assert encode_value([1, 2], SemanticType.OTHER) == '"[1, 2]"'


class TestFeature:
    def test_geometry_inlined_verbatim(self):
        text = feature_json((42, "Zion", POINT), LAYOUT)
        assert POINT in text
        feature = json.loads(text)
        assert feature["id"] == 42
        assert feature["properties"] == {"id": 42, "name": "Zion"}

    def test_null_geometry(self):
        feature = json.loads(feature_json((1, None, None), LAYOUT))
        assert feature["geometry"] is None
        assert feature["properties"]["name"] is None

    def test_no_primary_key_omits_id(self):
        layout = RowLayout(("name",), (SemanticType.STRING,), geometry_index=1)
        feature = json.loads(feature_json(("x", POINT), layout))
        assert "id" not in feature

    def test_appended_primary_key(self):
        layout = RowLayout(("name",), (SemanticType.STRING,), geometry_index=1, id_index=2)
        feature = json.loads(feature_json(("x", POINT, "abc"), layout))
        assert feature["id"] == "abc"
        assert feature["properties"] == {"name": "x"}

    def test_document_has_links(self):
        doc = json.loads(feature_document((1, "a", POINT), LAYOUT, [{"rel": "self"}]))
        assert doc["type"] == "Feature"
        assert doc["links"] == [{"rel": "self"}]


class TestFeatureCollection:
    def test_stream(self):
        rows = [(1, "a", POINT), (2, "b", POINT)]
        stream = RowStream(LAYOUT, iter(rows))
        text = "".join(stream_feature_collection(stream, lambda n: [{"rel": "self", "n": n}]))
        doc = json.loads(text)
        assert doc["type"] == "FeatureCollection"
        assert [f["id"] for f in doc["features"]] == [1, 2]
        assert doc["numberReturned"] == 2
        assert doc["links"] == [{"rel": "self", "n": 2}]
        assert "numberMatched" not in doc

    def test_empty(self):
        text = "".join(stream_feature_collection(RowStream(LAYOUT, iter(())), no_links))
        assert json.loads(text) == {
            "type": "FeatureCollection",
            "features": [],
            "numberReturned": 0,
            "links": [],
        }

    def test_error_truncates_output(self):
        def rows():
            yield (1, "a", POINT)
            raise Upstream("connection lost")

        stream = RowStream(LAYOUT, rows())
        text = "".join(stream_feature_collection(stream, no_links))
        assert text.startswith('{"type":"FeatureCollection","features":[')
        assert "numberReturned" not in text
        with pytest.raises(ValueError):
            json.loads(text)

    def test_stream_closed_when_consumer_stops(self):
        closed = []

        def rows():
            try:
                yield (1, "a", POINT)
                yield (2, "b", POINT)
            finally:
                closed.append(True)

        chunks = stream_feature_collection(RowStream(LAYOUT, rows()), no_links)
        next(chunks)
        next(chunks)
        chunks.close()
        assert closed == [True]
