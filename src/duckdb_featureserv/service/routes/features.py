"""
Feature routes.

Translates OGC API query parameters into a request descriptor, runs it
through the configured source, and streams the GeoJSON response.
"""

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ...data.errors import NotFound
from ...data.geometry import crs_uri
from ...data.planner import build_layout
from ...data.request import build_descriptor
from ...data.source import RowStream
from ..links import base_url, item_links, items_links
from ..serializers import geojson

router = APIRouter()


def _crs_header(srid: int) -> dict:
    if srid == 0:
        return {}
    return {"Content-Crs": f"<{crs_uri(srid)}>"}


@router.get("/collections/{collection_id}/items")
def get_items(
    request: Request,
    collection_id: str,
    bbox: str = None,
    bbox_crs: str = Query(None, alias="bbox-crs"),
    crs: str = None,
    filter: str = None,
    filter_crs: str = Query(None, alias="filter-crs"),
    limit: str = None,
    offset: str = None,
    properties: str = None,
    sortby: str = None,
    precision: str = None,
    transform: str = None,
):
    """
    Feature query, the workhorse endpoint.

    All validation happens before any SQL runs, so bad parameters are
    reported as 400s with an error body rather than a broken stream.
    """
    config = request.app.state.config
    source = request.app.state.source
    collection = source.catalog.get(collection_id)

    descriptor = build_descriptor(
        collection,
        config,
        bbox=bbox,
        bbox_crs=bbox_crs,
        crs=crs,
        filter=filter,
        filter_crs=filter_crs,
        limit=limit,
        offset=offset,
        properties=properties,
        sortby=sortby,
        precision=precision,
        transform=transform,
    )

    if descriptor.limit == 0:
        stream = RowStream(build_layout(descriptor, collection), iter(()))
    else:
        stream = source.features(descriptor)

    links = items_links(
        base_url(request, config),
        collection.id,
        list(request.query_params.multi_items()),
        descriptor.limit,
        descriptor.offset,
    )
    return StreamingResponse(
        geojson.stream_feature_collection(stream, links),
        media_type=geojson.MEDIA_TYPE,
        headers=_crs_header(descriptor.crs),
        # Returns the cursor even if the body is never iterated
        background=BackgroundTask(stream.close),
    )


@router.get("/collections/{collection_id}/items/{item_id}")
def get_item(
    request: Request,
    collection_id: str,
    item_id: str,
    crs: str = None,
    properties: str = None,
    precision: str = None,
    transform: str = None,
):
    """Single feature by primary key."""
    config = request.app.state.config
    source = request.app.state.source
    collection = source.catalog.get(collection_id)

    descriptor = build_descriptor(
        collection,
        config,
        item_id=item_id,
        crs=crs,
        properties=properties,
        precision=precision,
        transform=transform,
    )

    stream = source.feature(descriptor)
    row = stream.first()
    if row is None:
        raise NotFound(f"Feature not found: {collection.id}/{item_id}")

    links = item_links(base_url(request, config), collection.id, item_id)
    return Response(
        content=geojson.feature_document(row, stream.layout, links),
        media_type=geojson.MEDIA_TYPE,
        headers=_crs_header(descriptor.crs),
    )
