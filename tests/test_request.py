"""Tests for request descriptor construction."""

import pytest
from pydantic import ValidationError

from duckdb_featureserv.data.errors import (
    InvalidBbox,
    InvalidRequest,
    NoPrimaryKey,
    NotFound,
    OutOfRange,
    UnknownProperty,
    UnsupportedCRS,
)
from duckdb_featureserv.data.geometry import crs_uri, parse_crs
from duckdb_featureserv.data.request import (
    GeometryTransform,
    SortKey,
    build_descriptor,
    parse_bbox,
    parse_transforms,
)


class TestDefaults:
    def test_defaults_from_config(self, parks, config):
        d = build_descriptor(parks, config)
        assert d.collection_id == "public.parks"
        assert d.limit == 10
        assert d.offset == 0
        assert d.crs == 4326
        assert d.bbox is None
        assert d.properties == ()
        assert d.precision is None

    def test_default_precision_from_config(self, parks, config):
        config = config.with_overrides("features", default_precision=6)
        assert build_descriptor(parks, config).precision == 6

    def test_descriptor_is_immutable(self, parks, config):
        d = build_descriptor(parks, config)
        with pytest.raises(ValidationError):
            d.limit = 5


class TestBbox:
    def test_empty_is_absent(self):
        assert parse_bbox("") is None
        assert parse_bbox(None) is None

    def test_2d_and_3d(self):
        assert parse_bbox("1,2,3,4") == (1.0, 2.0, 3.0, 4.0)
        assert len(parse_bbox("1,2,3,4,5,6")) == 6

    @pytest.mark.parametrize("text", ["1,2,3", "1,2,3,4,5", "a,b,c,d", "0,0,NaN,1", "0,0,inf,1"])
    def test_invalid(self, text):
        with pytest.raises(InvalidBbox):
            parse_bbox(text)


class TestCrs:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("3857", 3857),
            ("EPSG:3857", 3857),
            ("http://www.opengis.net/def/crs/EPSG/0/3857", 3857),
            ("http://www.opengis.net/def/crs/OGC/1.3/CRS84", 4326),
            (4326, 4326),
        ],
    )
    def test_parse(self, value, expected):
        assert parse_crs(value) == expected

    def test_garbage(self):
        with pytest.raises(UnsupportedCRS):
            parse_crs("mercator")

    def test_unsupported_crs(self, parks, config):
        with pytest.raises(UnsupportedCRS):
            build_descriptor(parks, config, crs="2154")

    def test_native_crs_always_admitted(self, parks, config):
        lambert = parks.model_copy(update={"srid": 2154})
        assert build_descriptor(lambert, config, crs="2154").crs == 2154

    def test_unknown_native_crs_served_as_stored(self, parks, config):
        unknown = parks.model_copy(update={"srid": 0})
        assert build_descriptor(unknown, config).crs == 0
        with pytest.raises(UnsupportedCRS):
            build_descriptor(unknown, config, crs="3857")

    def test_uris(self):
        assert crs_uri(4326).endswith("/CRS84")
        assert crs_uri(3857) == "http://www.opengis.net/def/crs/EPSG/0/3857"


class TestPaging:
    def test_limit_clamped(self, parks, config):
        assert build_descriptor(parks, config, limit="20000").limit == 10000

    def test_limit_zero(self, parks, config):
        assert build_descriptor(parks, config, limit="0").limit == 0

    @pytest.mark.parametrize("name", ["limit", "offset"])
    def test_negative(self, parks, config, name):
        with pytest.raises(OutOfRange):
            build_descriptor(parks, config, **{name: "-1"})

    def test_not_an_integer(self, parks, config):
        with pytest.raises(InvalidRequest):
            build_descriptor(parks, config, limit="ten")

    @pytest.mark.parametrize("value", ["-1", "16"])
    def test_precision_range(self, parks, config, value):
        with pytest.raises(OutOfRange):
            build_descriptor(parks, config, precision=value)


class TestProperties:
    def test_selection(self, parks, config):
        assert build_descriptor(parks, config, properties="name, id").properties == ("name", "id")

    def test_empty_means_all(self, parks, config):
        assert build_descriptor(parks, config, properties="").properties == ()

    def test_unknown(self, parks, config):
        with pytest.raises(UnknownProperty):
            build_descriptor(parks, config, properties="area")

    def test_geometry_column_is_not_a_property(self, parks, config):
        with pytest.raises(UnknownProperty):
            build_descriptor(parks, config, properties="geom")


class TestSortby:
    def test_forms(self, parks, config):
        d = build_descriptor(parks, config, sortby="-name,+id")
        assert d.sortby == (SortKey(property="name", direction="DESC"), SortKey(property="id"))
        d = build_descriptor(parks, config, sortby="name:desc,id:ASC")
        assert [k.direction for k in d.sortby] == ["DESC", "ASC"]

    def test_unknown(self, parks, config):
        with pytest.raises(UnknownProperty):
            build_descriptor(parks, config, sortby="area")

    def test_bad_direction(self, parks, config):
        with pytest.raises(InvalidRequest):
            build_descriptor(parks, config, sortby="name:sideways")


class TestTransforms:
    def test_pipeline(self):
        assert parse_transforms("ST_Simplify,0.5|centroid") == (
            GeometryTransform(name="simplify", args=(0.5,)),
            GeometryTransform(name="centroid"),
        )

    def test_unknown_function(self):
        with pytest.raises(InvalidRequest):
            parse_transforms("ST_Union")

    @pytest.mark.parametrize("text", ["simplify", "buffer,1,2", "centroid,1", "simplify,abc"])
    def test_bad_arguments(self, text):
        with pytest.raises(OutOfRange):
            parse_transforms(text)


class TestItemId:
    def test_coerced_to_pk_type(self, parks, config):
        assert build_descriptor(parks, config, item_id="42").item_id == 42

    def test_uncoercible_id_is_not_found(self, parks, config):
        with pytest.raises(NotFound):
            build_descriptor(parks, config, item_id="abc")

    def test_no_primary_key(self, parks_no_pk, config):
        with pytest.raises(NoPrimaryKey):
            build_descriptor(parks_no_pk, config, item_id="42")


class TestFilter:
    def test_filter_is_bound(self, parks, config):
        d = build_descriptor(parks, config, filter="id = 3")
        assert d.filter.value == 3

    def test_blank_filter_is_absent(self, parks, config):
        assert build_descriptor(parks, config, filter="  ").filter is None
