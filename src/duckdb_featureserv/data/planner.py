"""
Query planner.

Builds one parameterised DuckDB statement per request. The result rows
have a fixed layout: the projected properties in order, the geometry as
GeoJSON text, then the primary key when it was not already projected.

Literals never appear in the SQL text; every value is a ``?`` parameter.
Parameters are ordered projection first, then WHERE, then LIMIT/OFFSET.
"""

from dataclasses import dataclass
from typing import Optional

from .errors import NoPrimaryKey
from .filters import render_sql
from .geometry import TRANSFORM_FUNCTIONS, epsg_code, needs_transform
from .identifiers import quote_identifier, quote_qualified
from .models import Collection, SemanticType
from .request import RequestDescriptor


@dataclass(frozen=True)
class RowLayout:
    """Positions of the columns in a planned result row."""

    property_names: tuple[str, ...]
    property_types: tuple[SemanticType, ...]
    geometry_index: int
    id_index: Optional[int] = None


@dataclass(frozen=True)
class QueryPlan:
    sql: str
    params: tuple
    layout: RowLayout


def _projected_properties(descriptor: RequestDescriptor, collection: Collection) -> list[str]:
    if descriptor.properties:
        return list(descriptor.properties)
    return collection.property_names


def geometry_expression(descriptor: RequestDescriptor, collection: Collection, params: list) -> str:
    """Geometry column wrapped in transforms, reprojection, precision and GeoJSON."""
    expr = quote_identifier(collection.geometry_column, trusted=True)
    for step in descriptor.transforms:
        function, _ = TRANSFORM_FUNCTIONS[step.name]
        if step.args:
            marks = ", ".join("?" for _ in step.args)
            expr = f"{function}({expr}, {marks})"
            params.extend(step.args)
        else:
            expr = f"{function}({expr})"
    if needs_transform(collection.srid, descriptor.crs):
        expr = f"ST_Transform({expr}, ?, ?, always_xy := true)"
        params.extend([epsg_code(collection.srid), epsg_code(descriptor.crs)])
    if descriptor.precision is not None:
        expr = f"ST_ReducePrecision({expr}, ?)"
        params.append(10 ** -descriptor.precision)
    return f"ST_AsGeoJSON({expr})"


def bbox_clause(descriptor: RequestDescriptor, collection: Collection, params: list) -> str:
    """Intersection of the native geometry with the request bbox."""
    bbox = descriptor.bbox
    if len(bbox) == 6:
        coords = [bbox[0], bbox[1], bbox[3], bbox[4]]
    else:
        coords = list(bbox)
    envelope = "ST_MakeEnvelope(?, ?, ?, ?)"
    params.extend(coords)
    if needs_transform(descriptor.bbox_crs, collection.srid):
        envelope = f"ST_Transform({envelope}, ?, ?, always_xy := true)"
        params.extend([epsg_code(descriptor.bbox_crs), epsg_code(collection.srid)])
    geom = quote_identifier(collection.geometry_column, trusted=True)
    return f"ST_Intersects({geom}, {envelope})"


def build_layout(descriptor: RequestDescriptor, collection: Collection) -> RowLayout:
    """Row layout shared by every source: properties, geometry, then the key."""
    names = _projected_properties(descriptor, collection)
    pk = collection.primary_key
    if pk is None:
        id_index = None
    elif pk in names:
        id_index = names.index(pk)
    else:
        id_index = len(names) + 1
    return RowLayout(
        property_names=tuple(names),
        property_types=tuple(collection.column_type(n) for n in names),
        geometry_index=len(names),
        id_index=id_index,
    )


def _select(descriptor: RequestDescriptor, collection: Collection, params: list):
    layout = build_layout(descriptor, collection)
    columns = [quote_identifier(n, trusted=True) for n in layout.property_names]
    columns.append(geometry_expression(descriptor, collection, params))
    if layout.id_index is not None and layout.id_index > layout.geometry_index:
        columns.append(quote_identifier(collection.primary_key, trusted=True))
    table = quote_qualified(collection.schema_name, collection.table, trusted=True)
    return f"SELECT {', '.join(columns)} FROM {table}", layout


def _where(conditions: list[str]) -> str:
    if not conditions:
        return ""
    return " WHERE " + " AND ".join(conditions)


def plan_items(descriptor: RequestDescriptor, collection: Collection) -> QueryPlan:
    """Plan the items query: filter, bbox, ordering and paging."""
    params: list = []
    select, layout = _select(descriptor, collection, params)

    conditions = []
    if descriptor.filter is not None:
        conditions.append(render_sql(descriptor.filter, params))
    if descriptor.bbox is not None:
        conditions.append(bbox_clause(descriptor, collection, params))

    if descriptor.sortby:
        order = ", ".join(
            f"{quote_identifier(key.property, trusted=True)} {key.direction}"
            for key in descriptor.sortby
        )
        order_by = f" ORDER BY {order}"
    elif collection.primary_key is not None:
        order_by = f" ORDER BY {quote_identifier(collection.primary_key, trusted=True)} ASC"
    else:
        order_by = ""

    params.extend([descriptor.limit, descriptor.offset])
    sql = f"{select}{_where(conditions)}{order_by} LIMIT ? OFFSET ?"
    return QueryPlan(sql=sql, params=tuple(params), layout=layout)


def plan_item(descriptor: RequestDescriptor, collection: Collection) -> QueryPlan:
    """Plan the single-feature query by primary key."""
    if collection.primary_key is None:
        raise NoPrimaryKey(f"Collection {collection.id} has no primary key")
    params: list = []
    select, layout = _select(descriptor, collection, params)
    params.append(descriptor.item_id)
    pk = quote_identifier(collection.primary_key, trusted=True)
    sql = f"{select}{_where([f'{pk} = ?'])}"
    return QueryPlan(sql=sql, params=tuple(params), layout=layout)
