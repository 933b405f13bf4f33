"""
Landing page, conformance and collection metadata routes.
"""

from fastapi import APIRouter, Request

from ..links import base_url
from ..metadata import (
    build_collection,
    build_collections,
    build_conformance,
    build_landing,
)

router = APIRouter()


@router.get("/")
def landing(request: Request):
    config = request.app.state.config
    return build_landing(config, base_url(request, config))


@router.get("/conformance")
def conformance():
    return build_conformance()


@router.get("/collections")
def list_collections(request: Request):
    """All collections, sorted by id."""
    config = request.app.state.config
    collections = request.app.state.source.catalog.list()
    return build_collections(collections, config, base_url(request, config))


@router.get("/collections/{collection_id}")
def get_collection(request: Request, collection_id: str):
    config = request.app.state.config
    collection = request.app.state.source.catalog.get(collection_id)
    return build_collection(collection, config, base_url(request, config))
