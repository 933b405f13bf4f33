"""
Spatial table discovery.

Finds every table with a GEOMETRY column through DuckDB's
``information_schema``, applies the include/exclude lists and publishes
the resulting ``Collection`` records into a ``CollectionCache``.

Any error on the core catalog queries aborts the refresh and leaves the
previous cache untouched. Geometry type, SRID, primary key, extent and
row count are best-effort: failures fall back to defaults and discovery
carries on.
"""

import logging
import re
from typing import Iterable, Optional, Protocol

import duckdb

from ..config import DatabaseConfig
from .cache import CollectionCache
from .errors import NotFound, Upstream
from .identifiers import quote_identifier, quote_qualified
from .models import (
    DEFAULT_SCHEMA,
    Collection,
    Extent,
    PropertyColumn,
    classify_sql_type,
    collection_id,
)

logger = logging.getLogger(__name__)

GEOMETRY_COLUMNS_SQL = """
    SELECT table_schema, table_name, column_name, data_type
    FROM information_schema.columns
    WHERE table_catalog = current_database()
      AND upper(data_type) LIKE 'GEOMETRY%'
    ORDER BY table_schema, table_name, ordinal_position
"""

TABLE_COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable
    FROM information_schema.columns
    WHERE table_catalog = current_database()
      AND table_schema = ? AND table_name = ?
    ORDER BY ordinal_position
"""

PRIMARY_KEY_SQL = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
      ON kcu.constraint_name = tc.constraint_name
     AND kcu.table_schema = tc.table_schema
     AND kcu.table_name = tc.table_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = ? AND tc.table_name = ?
    ORDER BY kcu.ordinal_position
    LIMIT 1
"""

ROW_ESTIMATE_SQL = """
    SELECT estimated_size
    FROM duckdb_tables()
    WHERE database_name = current_database()
      AND schema_name = ? AND table_name = ?
"""

_GEOMETRY_TYPE_NAMES = {
    "POINT": "Point",
    "LINESTRING": "LineString",
    "POLYGON": "Polygon",
    "MULTIPOINT": "MultiPoint",
    "MULTILINESTRING": "MultiLineString",
    "MULTIPOLYGON": "MultiPolygon",
}

_TYPE_CRS_RE = re.compile(r"(EPSG|ESRI)\s*:\s*(\d+)", re.IGNORECASE)


class Catalog(Protocol):
    """What the HTTP layer needs from a collection catalog."""

    def list(self) -> list[Collection]: ...

    def get(self, collection_id: str) -> Collection: ...

    def refresh(self) -> int: ...


def matches_pattern(pattern: str, schema: str, table: str, cid: str) -> bool:
    """A pattern is a schema name or ``schema.table``; case-insensitive."""
    wanted = pattern.strip().lower()
    if not wanted:
        return False
    return wanted in (schema.lower(), f"{schema}.{table}".lower(), cid.lower())


def is_included(
    schema: str,
    table: str,
    includes: Iterable[str] = (),
    excludes: Iterable[str] = (),
    default_schema: str = DEFAULT_SCHEMA,
) -> bool:
    """Exclude wins; otherwise included when no includes or one matches."""
    cid = collection_id(schema, table, default_schema)
    if any(matches_pattern(p, schema, table, cid) for p in excludes):
        return False
    includes = [p for p in includes if p.strip()]
    if not includes:
        return True
    return any(matches_pattern(p, schema, table, cid) for p in includes)


def srid_from_type(data_type: str) -> Optional[int]:
    """CRS carried by a parameterised GEOMETRY type, e.g. GEOMETRY('EPSG:3857')."""
    if not data_type:
        return None
    if "CRS84" in data_type.upper():
        return 4326
    match = _TYPE_CRS_RE.search(data_type)
    return int(match.group(2)) if match else None


class CatalogBase:
    """Shared list/get over a ``CollectionCache``."""

    def __init__(self, cache: Optional[CollectionCache] = None):
        self.cache = cache or CollectionCache()

    def list(self) -> list[Collection]:
        return self.cache.list()

    def get(self, collection_id: str) -> Collection:
        collection = self.cache.get(collection_id)
        if collection is None:
            raise NotFound(f"Collection not found: {collection_id}")
        return collection


class DuckDBCatalog(CatalogBase):
    """Catalog discovered from the DuckDB system catalog."""

    def __init__(self, pool, settings: DatabaseConfig, default_schema: str = DEFAULT_SCHEMA):
        super().__init__()
        self.pool = pool
        self.settings = settings
        self.default_schema = default_schema

    def refresh(self) -> int:
        """Re-run discovery and replace the cache; keeps the old one on error."""
        try:
            with self.pool.acquire() as conn:
                collections = self._discover(conn)
        except duckdb.Error as e:
            logger.error("Catalog refresh failed, keeping previous catalog: %s", e)
            raise Upstream(f"Catalog discovery failed: {e}", e) from e
        self.cache.replace(collections)
        logger.info("Catalog refreshed: %d collections", len(collections))
        return len(collections)

    def _discover(self, conn) -> list[Collection]:
        rows = conn.execute(GEOMETRY_COLUMNS_SQL).fetchall()

        geometry_columns: dict[tuple[str, str], list[tuple[str, str]]] = {}
        for schema, table, column, data_type in rows:
            geometry_columns.setdefault((schema, table), []).append((column, data_type))

        collections = []
        for (schema, table), columns in geometry_columns.items():
            if not is_included(
                schema,
                table,
                self.settings.table_includes,
                self.settings.table_excludes,
                self.default_schema,
            ):
                logger.debug("Excluding table %s.%s", schema, table)
                continue
            if len(columns) > 1:
                logger.info(
                    "Table %s.%s has %d geometry columns; serving %s",
                    schema, table, len(columns), columns[0][0],
                )
            collections.append(self._describe(conn, schema, table, columns))
            logger.debug("Admitted table %s.%s", schema, table)
        return collections

    def _describe(self, conn, schema: str, table: str, geometry_columns) -> Collection:
        geom_col, geom_sql_type = geometry_columns[0]
        skipped = {name for name, _ in geometry_columns}

        properties = []
        for name, data_type, is_nullable in conn.execute(
            TABLE_COLUMNS_SQL, [schema, table]
        ).fetchall():
            if name in skipped:
                continue
            properties.append(
                PropertyColumn(
                    name=name,
                    sql_type=data_type or "",
                    semantic_type=classify_sql_type(data_type),
                    nullable=str(is_nullable).upper() != "NO",
                )
            )

        primary_key = self._primary_key(conn, schema, table)
        if primary_key is not None and primary_key not in [p.name for p in properties]:
            primary_key = None

        qualified = quote_qualified(schema, table, trusted=True)
        geom = quote_identifier(geom_col, trusted=True)

        return Collection(
            schema_name=schema,
            table=table,
            id=collection_id(schema, table, self.default_schema),
            geometry_column=geom_col,
            geometry_type=self._geometry_type(conn, qualified, geom),
            srid=self._srid(conn, qualified, geom, geom_sql_type),
            properties=tuple(properties),
            primary_key=primary_key,
            extent=self._extent(conn, qualified, geom),
            row_count_estimate=self._row_estimate(conn, schema, table),
            title=table,
            description=f"Data for table {schema}.{table}",
        )

    def _primary_key(self, conn, schema: str, table: str) -> Optional[str]:
        try:
            row = conn.execute(PRIMARY_KEY_SQL, [schema, table]).fetchone()
        except duckdb.Error as e:
            logger.warning("Primary key lookup failed for %s.%s: %s", schema, table, e)
            return None
        return row[0] if row else None

    def _geometry_type(self, conn, qualified: str, geom: str) -> str:
        sql = (
            f"SELECT DISTINCT ST_GeometryType({geom}) FROM {qualified} "
            f"WHERE {geom} IS NOT NULL LIMIT 2"
        )
        try:
            rows = conn.execute(sql).fetchall()
        except duckdb.Error as e:
            logger.warning("Geometry type lookup failed for %s: %s", qualified, e)
            return "Geometry"
        if len(rows) != 1:
            return "Geometry"
        return _GEOMETRY_TYPE_NAMES.get(str(rows[0][0]).upper(), "Geometry")

    def _srid(self, conn, qualified: str, geom: str, data_type: str) -> int:
        declared = srid_from_type(data_type)
        if declared is not None:
            return declared
        sql = f"SELECT ST_SRID({geom}) FROM {qualified} WHERE {geom} IS NOT NULL LIMIT 1"
        try:
            row = conn.execute(sql).fetchone()
        except duckdb.Error:
            row = None
        if row and row[0]:
            return int(row[0])
        return self.settings.assumed_srid

    def _extent(self, conn, qualified: str, geom: str) -> Optional[Extent]:
        if not self.settings.compute_extents:
            return None
        sql = (
            f"SELECT MIN(ST_XMin({geom})), MIN(ST_YMin({geom})), "
            f"MAX(ST_XMax({geom})), MAX(ST_YMax({geom})) FROM {qualified}"
        )
        try:
            row = conn.execute(sql).fetchone()
        except duckdb.Error as e:
            logger.warning("Failed to compute extent for %s: %s", qualified, e)
            return None
        if not row or row[0] is None:
            return None
        return Extent(xmin=row[0], ymin=row[1], xmax=row[2], ymax=row[3])

    def _row_estimate(self, conn, schema: str, table: str) -> Optional[int]:
        try:
            row = conn.execute(ROW_ESTIMATE_SQL, [schema, table]).fetchone()
        except duckdb.Error as e:
            logger.warning("Row estimate failed for %s.%s: %s", schema, table, e)
            return None
        return int(row[0]) if row and row[0] is not None else None
