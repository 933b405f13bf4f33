"""DuckDB Feature Server - OGC API Features over an embedded DuckDB file."""

__version__ = "0.1.0"
APP_NAME = "duckdb_featureserv"
