"""Catalog and query translation layer shared by every endpoint."""

from .catalog import Catalog, DuckDBCatalog
from .models import Collection, PropertyColumn, SemanticType
from .planner import QueryPlan, plan_item, plan_items
from .request import RequestDescriptor, build_descriptor
from .source import DuckDBSource, RowStream, open_source

__all__ = [
    "Catalog",
    "DuckDBCatalog",
    "Collection",
    "PropertyColumn",
    "SemanticType",
    "QueryPlan",
    "plan_item",
    "plan_items",
    "RequestDescriptor",
    "build_descriptor",
    "DuckDBSource",
    "RowStream",
    "open_source",
]
