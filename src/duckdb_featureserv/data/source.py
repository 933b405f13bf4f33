"""
Feature sources.

A source pairs a catalog with feature retrieval. ``features()`` and
``feature()`` return a ``RowStream`` whose rows follow the planner's
``RowLayout``; the HTTP layer hands the stream to the GeoJSON encoder.
"""

import logging
from typing import Callable, Iterator, Optional, Protocol

import duckdb

from ..config import Config
from .catalog import Catalog, DuckDBCatalog
from .database import ConnectionPool, open_database
from .errors import Upstream
from .planner import QueryPlan, RowLayout, plan_item, plan_items
from .request import RequestDescriptor

logger = logging.getLogger(__name__)

FETCH_BATCH_SIZE = 1000


class RowStream:
    """Lazily consumed result rows plus their layout.

    ``close()`` may be called at any point, before or during iteration;
    it stops iteration and runs ``on_close`` exactly once (for DuckDB,
    returning the pooled cursor). Exhausting the rows closes the stream.
    """

    def __init__(
        self,
        layout: RowLayout,
        rows: Iterator[tuple],
        on_close: Optional[Callable[[], None]] = None,
    ):
        self.layout = layout
        self._rows = rows
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self):
        return self

    def __next__(self) -> tuple:
        if self._closed:
            raise StopIteration
        try:
            return next(self._rows)
        except BaseException:
            self.close()
            raise

    def first(self) -> Optional[tuple]:
        """Return the first row (or None) and close the stream."""
        try:
            return next(self, None)
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            close = getattr(self._rows, "close", None)
            if close is not None:
                close()
        finally:
            if self._on_close is not None:
                self._on_close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class FeatureSource(Protocol):
    catalog: Catalog

    def features(self, descriptor: RequestDescriptor) -> RowStream: ...

    def feature(self, descriptor: RequestDescriptor) -> RowStream: ...

    def close(self) -> None: ...


class DuckDBSource:
    """Runs planned statements against the pooled DuckDB database."""

    def __init__(self, pool: ConnectionPool, config: Config):
        self.pool = pool
        self.config = config
        self.catalog = DuckDBCatalog(pool, config.database)

    def features(self, descriptor: RequestDescriptor) -> RowStream:
        collection = self.catalog.get(descriptor.collection_id)
        return self.execute(plan_items(descriptor, collection))

    def feature(self, descriptor: RequestDescriptor) -> RowStream:
        collection = self.catalog.get(descriptor.collection_id)
        return self.execute(plan_item(descriptor, collection))

    def execute(self, plan: QueryPlan) -> RowStream:
        """Run ``plan`` now; rows are fetched as the stream is consumed."""
        logger.debug("SQL: %s params=%r", plan.sql, plan.params)
        cursor = self.pool.checkout()
        try:
            cursor.execute(plan.sql, list(plan.params))
        except duckdb.Error as e:
            self.pool.release(cursor)
            logger.error("Query failed: %s", e)
            raise Upstream(str(e), e) from e
        return RowStream(
            plan.layout,
            self._fetch(cursor),
            on_close=lambda: self.pool.release(cursor),
        )

    def _fetch(self, cursor):
        while True:
            try:
                batch = cursor.fetchmany(FETCH_BATCH_SIZE)
            except duckdb.Error as e:
                logger.error("Fetching rows failed: %s", e)
                raise Upstream(str(e), e) from e
            if not batch:
                return
            yield from batch

    def close(self) -> None:
        self.pool.close()


def open_source(config: Config, test_mode: bool = False):
    """Build the configured source and load its catalog."""
    if test_mode:
        from .mock import MockSource

        logger.info("Serving generated mock collections")
        return MockSource(config)

    source = DuckDBSource(open_database(config), config)
    try:
        source.catalog.refresh()
    except Upstream:
        source.close()
        raise
    return source
