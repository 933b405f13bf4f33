"""
CRS handling and the in-memory geometry pipeline.

Handles:
- CRS parameter parsing (SRID, ``EPSG:n``, OGC URIs) and CRS URIs
- The closed vocabulary of geometry transforms
- Reprojection, transforms and precision with Shapely/pyproj
  (used by the mock source; the DuckDB source does this in SQL)
"""

import re
from functools import lru_cache
from typing import Iterable, Optional

import pyproj
import shapely
from shapely.geometry import box
from shapely.ops import transform as shapely_transform

from .errors import UnsupportedCRS

WGS84 = 4326
CRS84_URI = "http://www.opengis.net/def/crs/OGC/1.3/CRS84"
EPSG_URI_PREFIX = "http://www.opengis.net/def/crs/EPSG/0/"

_EPSG_RE = re.compile(r"^(?:EPSG:)?(\d+)$", re.IGNORECASE)
_EPSG_URI_RE = re.compile(
    r"^https?://www\.opengis\.net/def/crs/EPSG/[^/]+/(\d+)$", re.IGNORECASE
)
_CRS84_RE = re.compile(
    r"^(?:https?://www\.opengis\.net/def/crs/OGC/[^/]+/CRS84|OGC:CRS84|CRS84)$",
    re.IGNORECASE,
)

# name -> (SQL function, argument count)
TRANSFORM_FUNCTIONS = {
    "simplify": ("ST_Simplify", 1),
    "simplifypreservetopology": ("ST_SimplifyPreserveTopology", 1),
    "buffer": ("ST_Buffer", 1),
    "centroid": ("ST_Centroid", 0),
    "pointonsurface": ("ST_PointOnSurface", 0),
}


def parse_crs(value) -> int:
    """Parse a CRS query value into an integer SRID."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value or "").strip()
    if _CRS84_RE.match(text):
        return WGS84
    match = _EPSG_RE.match(text) or _EPSG_URI_RE.match(text)
    if not match:
        raise UnsupportedCRS(f"Unrecognised CRS: {value!r}")
    return int(match.group(1))


def crs_uri(srid: int) -> str:
    """OGC URI for ``srid``; 4326 is reported as CRS84 (lon/lat order)."""
    if srid == WGS84:
        return CRS84_URI
    return f"{EPSG_URI_PREFIX}{srid}"


def epsg_code(srid: int) -> str:
    return f"EPSG:{srid}"


def check_crs(srid: int, native_srid: int, supported: Iterable[int]) -> int:
    """Admit ``srid`` if it is native or in the supported set."""
    if srid == native_srid or srid in set(supported):
        return srid
    raise UnsupportedCRS(f"CRS {srid} is not supported for this collection")


def needs_transform(from_srid: int, to_srid: int) -> bool:
    """No reprojection between equal CRSes or out of an unknown one."""
    return from_srid != 0 and to_srid != 0 and from_srid != to_srid


@lru_cache(maxsize=64)
def get_transformer(from_srid: int, to_srid: int) -> pyproj.Transformer:
    return pyproj.Transformer.from_crs(
        epsg_code(from_srid), epsg_code(to_srid), always_xy=True
    )


def reproject(geom, from_srid: int, to_srid: int):
    """Reproject a Shapely geometry using pyproj."""
    if geom is None or not needs_transform(from_srid, to_srid):
        return geom
    transformer = get_transformer(from_srid, to_srid)
    return shapely_transform(transformer.transform, geom)


def bbox_geometry(bbox: tuple, bbox_srid: int, native_srid: int):
    """Rectangle for a 2D or 3D bbox, in native coordinates. Z is dropped."""
    if len(bbox) == 6:
        xmin, ymin, _, xmax, ymax, _ = bbox
    else:
        xmin, ymin, xmax, ymax = bbox
    return reproject(box(xmin, ymin, xmax, ymax), bbox_srid, native_srid)


def apply_transform(geom, name: str, args: tuple):
    if name == "simplify":
        return geom.simplify(args[0], preserve_topology=False)
    if name == "simplifypreservetopology":
        return geom.simplify(args[0], preserve_topology=True)
    if name == "buffer":
        return geom.buffer(args[0])
    if name == "centroid":
        return geom.centroid
    if name == "pointonsurface":
        return geom.representative_point()
    raise ValueError(f"Unknown geometry transform {name!r}")


def reduce_precision(geom, precision: Optional[int]):
    """Snap coordinates to ``precision`` decimal places."""
    if geom is None or precision is None:
        return geom
    return shapely.set_precision(geom, 10 ** -precision)


def to_geojson(geom) -> Optional[str]:
    """GeoJSON geometry text, or None for a NULL geometry."""
    if geom is None:
        return None
    return shapely.to_geojson(geom)
