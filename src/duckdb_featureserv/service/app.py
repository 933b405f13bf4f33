"""
FastAPI application implementing OGC API - Features.

Endpoints:
- /
- /conformance
- /collections
- /collections/{collection_id}
- /collections/{collection_id}/items
- /collections/{collection_id}/items/{item_id}

Collection ids are ``table`` for the default schema, ``schema.table``
otherwise.
"""

import contextlib
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Config
from ..data.errors import FeatureServError, Internal
from ..data.source import FeatureSource
from .routes import collections, features

logger = logging.getLogger(__name__)


def create_app(config: Config, source: FeatureSource) -> FastAPI:
    """Build the app around an already loaded feature source."""

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        source.close()

    app = FastAPI(
        title=config.metadata.title,
        description=config.metadata.description,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.source = source

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.server.cors_origins),
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def log_request_timing(request: Request, call_next):
        """Log request timing for performance monitoring."""
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        # Only log feature requests (the slow path) at INFO level
        if "/items" in request.url.path or elapsed > 1.0:
            logger.info(
                "%s %s → %d (%.2fs)",
                request.method,
                request.url,
                response.status_code,
                elapsed,
            )
        return response

    @app.exception_handler(FeatureServError)
    async def feature_serv_error(request: Request, exc: FeatureServError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error for %s %s", request.method, request.url)
        error = Internal(f"Internal server error: {exc}")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    app.include_router(collections.router)
    app.include_router(features.router)
    return app
