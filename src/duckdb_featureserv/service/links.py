"""
Link building for landing, collection and items responses.

The encoder never computes URLs; it is handed ``items_links`` results,
which depend on how many features were actually written.
"""

from typing import Callable, Optional
from urllib.parse import urlencode

from fastapi import Request

from ..config import Config

JSON = "application/json"
GEOJSON = "application/geo+json"


def base_url(request: Request, config: Config) -> str:
    """Public base URL: configured ``url_base``, else derived from the request.

    Behind a reverse proxy, X-Forwarded-Host and X-Forwarded-Proto are
    used to reconstruct the external URL.
    """
    if config.server.url_base:
        return config.server.url_base.rstrip("/")
    host = request.headers.get("x-forwarded-host") or request.headers.get("host", "localhost")
    proto = request.headers.get("x-forwarded-proto", request.url.scheme)
    root = request.scope.get("root_path", "")
    return f"{proto}://{host}{root}".rstrip("/")


def link(href: str, rel: str, media_type: str = JSON, title: Optional[str] = None) -> dict:
    entry = {"href": href, "rel": rel, "type": media_type}
    if title:
        entry["title"] = title
    return entry


def with_query(url: str, params: list[tuple[str, str]]) -> str:
    if not params:
        return url
    return f"{url}?{urlencode(params)}"


def collection_url(base: str, collection_id: str) -> str:
    return f"{base}/collections/{collection_id}"


def landing_links(base: str) -> list[dict]:
    return [
        link(f"{base}/", "self", title="This document"),
        link(f"{base}/conformance", "conformance", title="Conformance classes"),
        link(f"{base}/collections", "data", title="Feature collections"),
    ]


def collection_links(base: str, collection_id: str) -> list[dict]:
    url = collection_url(base, collection_id)
    return [
        link(url, "self", title="This collection"),
        link(f"{url}/items", "items", GEOJSON, title="Features"),
    ]


def items_links(
    base: str,
    collection_id: str,
    query: list[tuple[str, str]],
    limit: int,
    offset: int,
) -> Callable[[int], list[dict]]:
    """Links for an items page; ``next`` only when the page came back full."""
    items_url = f"{collection_url(base, collection_id)}/items"
    kept = [(k, v) for k, v in query if k not in ("limit", "offset")]

    def page(new_offset: int) -> str:
        return with_query(items_url, kept + [("limit", str(limit)), ("offset", str(new_offset))])

    def build(number_returned: int) -> list[dict]:
        links = [
            link(with_query(items_url, query), "self", GEOJSON, title="This document"),
            link(collection_url(base, collection_id), "collection", title="The collection"),
        ]
        if limit > 0 and number_returned == limit:
            links.append(link(page(offset + limit), "next", GEOJSON, title="Next page"))
        if offset > 0:
            links.append(link(page(max(offset - limit, 0)), "prev", GEOJSON, title="Previous page"))
        return links

    return build


def item_links(base: str, collection_id: str, item_id: str) -> list[dict]:
    url = collection_url(base, collection_id)
    return [
        link(f"{url}/items/{item_id}", "self", GEOJSON, title="This feature"),
        link(url, "collection", title="The collection"),
    ]
