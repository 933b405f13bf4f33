"""
Pydantic records describing collections.

These are the cached catalog entries; they are immutable once built so
the catalog can hand the same instances to concurrent requests.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator

DEFAULT_SCHEMA = "main"

GEOMETRY_TYPES = (
    "Point",
    "LineString",
    "Polygon",
    "MultiPoint",
    "MultiLineString",
    "MultiPolygon",
    "Geometry",
)


class SemanticType(str, Enum):
    """Reduced column type set used for filtering and JSON encoding."""

    INTEGER = "integer"
    FLOATING = "floating"
    STRING = "string"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    JSON = "json"
    OTHER = "other"


_INTEGER_TYPES = {
    "TINYINT", "SMALLINT", "INTEGER", "INT", "BIGINT", "HUGEINT",
    "UTINYINT", "USMALLINT", "UINTEGER", "UBIGINT", "UHUGEINT",
    "INT1", "INT2", "INT4", "INT8", "SHORT", "LONG",
}
_FLOAT_TYPES = {"FLOAT", "REAL", "DOUBLE", "FLOAT4", "FLOAT8", "NUMERIC"}
_STRING_TYPES = {"VARCHAR", "TEXT", "STRING", "CHAR", "BPCHAR"}
_TIMESTAMP_PREFIXES = ("TIMESTAMP", "DATE", "TIME")


def classify_sql_type(sql_type: str) -> SemanticType:
    """Map a DuckDB ``information_schema`` data type to a semantic type."""
    if not sql_type:
        return SemanticType.OTHER
    base = sql_type.strip().upper()
    if base.startswith("DECIMAL") or base.startswith("NUMERIC"):
        return SemanticType.FLOATING
    base = base.split("(")[0].strip()
    if base in _INTEGER_TYPES:
        return SemanticType.INTEGER
    if base in _FLOAT_TYPES:
        return SemanticType.FLOATING
    if base in _STRING_TYPES:
        return SemanticType.STRING
    if base in ("BOOLEAN", "BOOL", "LOGICAL"):
        return SemanticType.BOOLEAN
    if base == "JSON":
        return SemanticType.JSON
    if base.startswith(_TIMESTAMP_PREFIXES):
        return SemanticType.TIMESTAMP
    return SemanticType.OTHER


def collection_id(schema: str, table: str, default_schema: str = DEFAULT_SCHEMA) -> str:
    """External id: ``schema.table``, or just ``table`` in the default schema."""
    if schema == default_schema:
        return table
    return f"{schema}.{table}"


class PropertyColumn(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    sql_type: str = ""
    semantic_type: SemanticType = SemanticType.OTHER
    nullable: bool = True


class Extent(BaseModel):
    """Axis-aligned bounding rectangle in native CRS coordinates."""

    model_config = ConfigDict(frozen=True)

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def as_list(self) -> list[float]:
        return [self.xmin, self.ymin, self.xmax, self.ymax]


class Collection(BaseModel):
    """A spatial table exposed as a feature collection."""

    model_config = ConfigDict(frozen=True)

    schema_name: str
    table: str
    id: str
    geometry_column: str
    geometry_type: str = "Geometry"
    srid: int = 0
    properties: tuple[PropertyColumn, ...] = ()
    primary_key: Optional[str] = None
    extent: Optional[Extent] = None
    row_count_estimate: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode="after")
    def _check_columns(self):
        names = [p.name for p in self.properties]
        if self.geometry_column in names:
            raise ValueError(
                f"Geometry column {self.geometry_column!r} listed as a property"
            )
        if self.geometry_type not in GEOMETRY_TYPES:
            raise ValueError(f"Unknown geometry type {self.geometry_type!r}")
        return self

    @property
    def property_names(self) -> list[str]:
        return [p.name for p in self.properties]

    def get_property(self, name: str) -> Optional[PropertyColumn]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def column_type(self, name: str) -> SemanticType:
        prop = self.get_property(name)
        return prop.semantic_type if prop else SemanticType.OTHER
