"""
Shared test fixtures.

Provides collection records, a mock-backed FastAPI client, a fake
DB-API style connection for discovery tests, and an in-memory DuckDB
database with the spatial extension (skipped when it cannot load).
"""

import contextlib

import pytest
from fastapi.testclient import TestClient

from duckdb_featureserv.config import Config
from duckdb_featureserv.data.models import Collection, PropertyColumn, SemanticType


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def parks():
    """public.parks(id:int pk, name:text, geom:Polygon 4326)."""
    return Collection(
        schema_name="public",
        table="parks",
        id="public.parks",
        geometry_column="geom",
        geometry_type="Polygon",
        srid=4326,
        properties=(
            PropertyColumn(name="id", sql_type="INTEGER", semantic_type=SemanticType.INTEGER, nullable=False),
            PropertyColumn(name="name", sql_type="VARCHAR", semantic_type=SemanticType.STRING),
        ),
        primary_key="id",
    )


@pytest.fixture
def parks_no_pk(parks):
    return parks.model_copy(update={"primary_key": None})


@pytest.fixture
def mock_source(config):
    from duckdb_featureserv.data.mock import MockSource

    return MockSource(config)


@pytest.fixture
def client(config, mock_source):
    """FastAPI test client over the mock collections."""
    from duckdb_featureserv.service.app import create_app

    return TestClient(create_app(config, mock_source))


class FakeResult:
    def __init__(self, rows):
        self.rows = list(rows)

    def fetchall(self):
        return list(self.rows)

    def fetchone(self):
        return self.rows[0] if self.rows else None


class FakeConnection:
    """Answers queries from canned rows keyed by a SQL fragment.

    An answer may be a list of rows, a callable taking the bound
    parameters, or an exception to raise.
    """

    def __init__(self, answers: dict):
        self.answers = answers
        self.calls = []

    def execute(self, sql, params=None):
        self.calls.append((sql, params))
        for fragment, answer in self.answers.items():
            if fragment in sql:
                if isinstance(answer, Exception):
                    raise answer
                rows = answer(params) if callable(answer) else answer
                return FakeResult(rows)
        return FakeResult([])


class FakePool:
    def __init__(self, connection):
        self.connection = connection

    @contextlib.contextmanager
    def acquire(self):
        yield self.connection


def _parks_and_secrets_columns(params):
    return {
        ("public", "parks"): [
            ("id", "INTEGER", "NO"),
            ("name", "VARCHAR", "YES"),
            ("geom", "GEOMETRY", "YES"),
        ],
        ("private", "secrets"): [
            ("id", "INTEGER", "NO"),
            ("code", "VARCHAR", "YES"),
            ("geom", "GEOMETRY", "YES"),
        ],
    }.get(tuple(params), [])


@pytest.fixture
def discovery_answers():
    """Catalog rows for public.parks and private.secrets."""
    return {
        "upper(data_type) LIKE": [
            ("private", "secrets", "geom", "GEOMETRY"),
            ("public", "parks", "geom", "GEOMETRY('EPSG:4326')"),
        ],
        "ORDER BY ordinal_position": _parks_and_secrets_columns,
        "PRIMARY KEY": [("id",)],
        "ST_GeometryType": [("POLYGON",)],
        "ST_XMin": [(-10.0, -5.0, 10.0, 5.0)],
        "duckdb_tables()": [(3,)],
    }


@pytest.fixture
def make_pool():
    """Build a pool over a ``FakeConnection`` answering ``answers``."""

    def factory(answers):
        return FakePool(FakeConnection(answers))

    return factory


@pytest.fixture
def spatial_conn():
    """In-memory DuckDB with spatial loaded and a few tables."""
    duckdb = pytest.importorskip("duckdb")
    from duckdb_featureserv.data.database import load_spatial
    from duckdb_featureserv.data.errors import Upstream

    conn = duckdb.connect()
    try:
        load_spatial(conn)
    except Upstream as e:
        conn.close()
        pytest.skip(f"DuckDB spatial extension unavailable: {e}")

    conn.execute("CREATE TABLE parks (id INTEGER PRIMARY KEY, name VARCHAR, geom GEOMETRY)")
    conn.execute(
        """
        INSERT INTO parks VALUES
            (1, 'Yosemite', ST_GeomFromText('POLYGON((-120 37, -119 37, -119 38, -120 38, -120 37))')),
            (2, 'Zion', ST_GeomFromText('POLYGON((-113 37, -112 37, -112 38, -113 38, -113 37))')),
            (3, 'Acadia', ST_GeomFromText('POLYGON((-69 44, -68 44, -68 45, -69 45, -69 44))')),
            (4, 'Unmapped', NULL)
        """
    )
    conn.execute("CREATE SCHEMA private")
    conn.execute("CREATE TABLE private.secrets (id INTEGER, geom GEOMETRY)")
    conn.execute("CREATE TABLE plain (id INTEGER, label VARCHAR)")
    yield conn
    conn.close()
