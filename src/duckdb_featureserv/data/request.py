"""
Request descriptor construction.

Turns raw query-string values into an immutable ``RequestDescriptor``
validated against one collection. Everything the planner and the mock
source need is resolved here; nothing downstream re-parses user input.
"""

import math
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict

from ..config import Config
from .errors import (
    InvalidBbox,
    InvalidRequest,
    NoPrimaryKey,
    NotFound,
    OutOfRange,
    UnknownProperty,
    UnsupportedCRS,
)
from .filters import bind_filter, parse_filter
from .geometry import TRANSFORM_FUNCTIONS, check_crs, parse_crs
from .models import Collection, SemanticType

MAX_PRECISION = 15


class SortKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    property: str
    direction: Literal["ASC", "DESC"] = "ASC"


class GeometryTransform(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    args: tuple[float, ...] = ()


class RequestDescriptor(BaseModel):
    """Validated, typed form of one items or item request."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    collection_id: str
    item_id: Any = None
    bbox: Optional[tuple[float, ...]] = None
    bbox_crs: int = 4326
    crs: int = 4326
    filter_crs: int = 4326
    properties: tuple[str, ...] = ()
    filter: Any = None
    sortby: tuple[SortKey, ...] = ()
    limit: int = 10
    offset: int = 0
    precision: Optional[int] = None
    transforms: tuple[GeometryTransform, ...] = ()


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_int(value, name: str, minimum: int = 0, maximum: Optional[int] = None) -> Optional[int]:
    """Parse a non-negative integer parameter; blank means absent."""
    if _blank(value):
        return None
    try:
        number = int(str(value).strip())
    except ValueError:
        raise InvalidRequest(f"Parameter {name} must be an integer: {value!r}") from None
    if number < minimum or (maximum is not None and number > maximum):
        bounds = f">= {minimum}" if maximum is None else f"in {minimum}..{maximum}"
        raise OutOfRange(f"Parameter {name} must be {bounds}, got {number}")
    return number


def parse_bbox(value) -> Optional[tuple[float, ...]]:
    """``minx,miny,maxx,maxy`` or the 6-value 3D form."""
    if _blank(value):
        return None
    parts = [p.strip() for p in str(value).split(",")]
    if len(parts) not in (4, 6):
        raise InvalidBbox(f"bbox must have 4 or 6 values, got {len(parts)}")
    try:
        coords = tuple(float(p) for p in parts)
    except ValueError:
        raise InvalidBbox(f"bbox values must be numbers: {value!r}") from None
    if not all(math.isfinite(c) for c in coords):
        raise InvalidBbox("bbox values must be finite")
    return coords


def parse_properties(value, collection: Collection) -> tuple[str, ...]:
    if _blank(value):
        return ()
    names = [n.strip() for n in str(value).split(",") if n.strip()]
    for name in names:
        if collection.get_property(name) is None:
            raise UnknownProperty(f"Unknown property {name!r}")
    return tuple(names)


def parse_sortby(value, collection: Collection) -> tuple[SortKey, ...]:
    """``name``, ``+name``, ``-name``, ``name:asc`` or ``name:desc``."""
    if _blank(value):
        return ()
    keys = []
    for item in str(value).split(","):
        item = item.strip()
        if not item:
            continue
        direction = "ASC"
        if item[0] in "+-":
            direction = "DESC" if item[0] == "-" else "ASC"
            item = item[1:].strip()
        elif ":" in item:
            item, _, suffix = item.rpartition(":")
            suffix = suffix.strip().upper()
            if suffix not in ("ASC", "DESC"):
                raise InvalidRequest(f"Invalid sort direction {suffix!r}")
            direction = suffix
        if collection.get_property(item) is None:
            raise UnknownProperty(f"Unknown sort property {item!r}")
        keys.append(SortKey(property=item, direction=direction))
    return tuple(keys)


def parse_transforms(value) -> tuple[GeometryTransform, ...]:
    """``simplify,0.1|centroid``; names from a closed vocabulary."""
    if _blank(value):
        return ()
    transforms = []
    for step in str(value).split("|"):
        parts = [p.strip() for p in step.split(",")]
        name = parts[0].lower()
        if name.startswith("st_"):
            name = name[3:]
        if name not in TRANSFORM_FUNCTIONS:
            raise InvalidRequest(f"Unknown geometry transform {parts[0]!r}")
        _, arity = TRANSFORM_FUNCTIONS[name]
        raw_args = [a for a in parts[1:] if a]
        if len(raw_args) != arity:
            raise OutOfRange(f"Transform {name} takes {arity} argument(s)")
        try:
            args = tuple(float(a) for a in raw_args)
        except ValueError:
            raise OutOfRange(f"Transform {name} arguments must be numbers") from None
        if not all(math.isfinite(a) for a in args):
            raise OutOfRange(f"Transform {name} arguments must be finite")
        transforms.append(GeometryTransform(name=name, args=args))
    return tuple(transforms)


def coerce_item_id(value, collection: Collection) -> Any:
    """Convert a path item id to the primary key's type."""
    if collection.primary_key is None:
        raise NoPrimaryKey(f"Collection {collection.id} has no primary key")
    kind = collection.column_type(collection.primary_key)
    text = str(value)
    try:
        if kind == SemanticType.INTEGER:
            return int(text)
        if kind == SemanticType.FLOATING:
            return float(text)
    except ValueError:
        raise NotFound(f"Feature not found: {value}") from None
    return text


def supported_crs(config: Config) -> set[int]:
    return set(config.features.supported_crs) | {config.features.default_crs}


def _crs(value, default: int, collection: Collection, config: Config) -> int:
    if _blank(value):
        return default
    return check_crs(parse_crs(value), collection.srid, supported_crs(config))


def _output_crs(value, collection: Collection, config: Config) -> int:
    """Geometries of a collection with unknown SRID are only served as stored."""
    if collection.srid == 0:
        if not _blank(value):
            raise UnsupportedCRS(
                f"Collection {collection.id} has no declared CRS; crs cannot be applied"
            )
        return 0
    return _crs(value, config.features.default_crs, collection, config)


def build_descriptor(
    collection: Collection,
    config: Config,
    *,
    item_id=None,
    bbox=None,
    bbox_crs=None,
    crs=None,
    filter=None,
    filter_crs=None,
    limit=None,
    offset=None,
    properties=None,
    sortby=None,
    precision=None,
    transform=None,
) -> RequestDescriptor:
    """Validate raw parameter values for ``collection``."""
    features = config.features
    paging = config.paging

    effective_limit = parse_int(limit, "limit")
    if effective_limit is None:
        effective_limit = paging.limit_default
    effective_limit = min(effective_limit, paging.limit_max)

    effective_precision = parse_int(precision, "precision", 0, MAX_PRECISION)
    if effective_precision is None:
        effective_precision = features.default_precision

    tree = None
    if not _blank(filter):
        tree = bind_filter(parse_filter(filter), collection)

    return RequestDescriptor(
        collection_id=collection.id,
        item_id=coerce_item_id(item_id, collection) if item_id is not None else None,
        bbox=parse_bbox(bbox),
        bbox_crs=_crs(bbox_crs, 4326, collection, config),
        crs=_output_crs(crs, collection, config),
        filter_crs=_crs(filter_crs, features.default_crs, collection, config),
        properties=parse_properties(properties, collection),
        filter=tree,
        sortby=parse_sortby(sortby, collection),
        limit=effective_limit,
        offset=parse_int(offset, "offset") or 0,
        precision=effective_precision,
        transforms=parse_transforms(transform),
    )
