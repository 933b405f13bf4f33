"""
Mock data source for ``--test`` mode and the API tests.

Serves three generated point grids and evaluates request descriptors in
memory: filters with SQL three-valued logic, bbox with Shapely, and the
geometry pipeline with Shapely/pyproj. Rows come out in the same layout
the DuckDB planner produces.
"""

import logging
from typing import Optional

from shapely.geometry import Point

from ..config import Config
from .catalog import CatalogBase
from .errors import NoPrimaryKey
from .filters import evaluate
from .geometry import (
    WGS84,
    apply_transform,
    bbox_geometry,
    reduce_precision,
    reproject,
    to_geojson,
)
from .models import Collection, Extent, PropertyColumn, SemanticType
from .planner import build_layout
from .request import RequestDescriptor
from .source import RowStream

logger = logging.getLogger(__name__)

MOCK_EXTENT = Extent(xmin=-120.0, ymin=20.0, xmax=-40.0, ymax=60.0)

MOCK_GRIDS = {
    "mock_a": 3,
    "mock_b": 10,
    "mock_c": 100,
}

MOCK_PROPERTIES = (
    PropertyColumn(name="id", sql_type="INTEGER", semantic_type=SemanticType.INTEGER, nullable=False),
    PropertyColumn(name="prop_a", sql_type="VARCHAR", semantic_type=SemanticType.STRING),
    PropertyColumn(name="prop_b", sql_type="INTEGER", semantic_type=SemanticType.INTEGER),
    PropertyColumn(name="prop_c", sql_type="VARCHAR", semantic_type=SemanticType.STRING),
    PropertyColumn(name="prop_d", sql_type="DOUBLE", semantic_type=SemanticType.FLOATING),
)


def mock_collection(name: str, size: int) -> Collection:
    return Collection(
        schema_name="main",
        table=name,
        id=name,
        geometry_column="geom",
        geometry_type="Point",
        srid=WGS84,
        properties=MOCK_PROPERTIES,
        primary_key="id",
        extent=MOCK_EXTENT,
        row_count_estimate=size * size,
        title=f"Test {name}",
        description=f"Generated {size}x{size} grid of points",
    )


def make_grid(size: int, extent: Extent = MOCK_EXTENT) -> list[dict]:
    """A ``size`` x ``size`` grid of point features inside ``extent``."""
    dx = (extent.xmax - extent.xmin) / size
    dy = (extent.ymax - extent.ymin) / size
    features = []
    for row in range(size):
        for col in range(size):
            fid = row * size + col + 1
            features.append({
                "id": fid,
                "prop_a": f"propA_{fid}",
                "prop_b": fid,
                "prop_c": f"propC_{fid % 10}",
                "prop_d": fid / 10.0,
                "geom": Point(
                    extent.xmin + (col + 0.5) * dx,
                    extent.ymin + (row + 0.5) * dy,
                ),
            })
    return features


class MockCatalog(CatalogBase):
    def __init__(self, grids: Optional[dict] = None):
        super().__init__()
        self.grids = dict(grids or MOCK_GRIDS)
        self.refresh()

    def refresh(self) -> int:
        collections = [mock_collection(name, size) for name, size in self.grids.items()]
        self.cache.replace(collections)
        return len(collections)


def _sorted(rows: list[dict], descriptor: RequestDescriptor, collection: Collection) -> list[dict]:
    keys = [(k.property, k.direction) for k in descriptor.sortby]
    if not keys and collection.primary_key:
        keys = [(collection.primary_key, "ASC")]
    # Stable sorts applied from the last key to the first; NULLs sort last.
    for name, direction in reversed(keys):
        if direction == "DESC":
            rows.sort(key=lambda r: (r.get(name) is not None, r.get(name)), reverse=True)
        else:
            rows.sort(key=lambda r: (r.get(name) is None, r.get(name)))
    return rows


class MockSource:
    """In-memory source over the generated mock collections."""

    def __init__(self, config: Config, grids: Optional[dict] = None):
        self.config = config
        self.catalog = MockCatalog(grids)
        self._data = {name: make_grid(size) for name, size in self.catalog.grids.items()}

    def features(self, descriptor: RequestDescriptor) -> RowStream:
        collection = self.catalog.get(descriptor.collection_id)
        rows = list(self._data.get(collection.id, []))

        if descriptor.filter is not None:
            rows = [r for r in rows if evaluate(descriptor.filter, r) is True]
        if descriptor.bbox is not None:
            envelope = bbox_geometry(descriptor.bbox, descriptor.bbox_crs, collection.srid)
            rows = [r for r in rows if r["geom"] is not None and r["geom"].intersects(envelope)]

        rows = _sorted(rows, descriptor, collection)
        page = rows[descriptor.offset:descriptor.offset + descriptor.limit]
        logger.debug("Mock %s: %d matched, %d returned", collection.id, len(rows), len(page))
        return self._stream(page, descriptor, collection)

    def feature(self, descriptor: RequestDescriptor) -> RowStream:
        collection = self.catalog.get(descriptor.collection_id)
        if collection.primary_key is None:
            raise NoPrimaryKey(f"Collection {collection.id} has no primary key")
        rows = [
            r for r in self._data.get(collection.id, [])
            if r.get(collection.primary_key) == descriptor.item_id
        ]
        return self._stream(rows[:1], descriptor, collection)

    def _stream(self, rows, descriptor: RequestDescriptor, collection: Collection) -> RowStream:
        layout = build_layout(descriptor, collection)
        return RowStream(layout, (self._encode(r, descriptor, collection, layout) for r in rows))

    def _encode(self, row: dict, descriptor: RequestDescriptor, collection: Collection, layout) -> tuple:
        geom = row.get(collection.geometry_column)
        if geom is not None:
            for step in descriptor.transforms:
                geom = apply_transform(geom, step.name, step.args)
            geom = reproject(geom, collection.srid, descriptor.crs)
            geom = reduce_precision(geom, descriptor.precision)
        values = [row.get(name) for name in layout.property_names]
        values.append(to_geojson(geom))
        if layout.id_index is not None and layout.id_index > layout.geometry_index:
            values.append(row.get(collection.primary_key))
        return tuple(values)

    def close(self) -> None:
        pass
