"""
Build OGC API - Features metadata responses.

These are the relatively static JSON documents for the landing page,
conformance, and collection descriptors.
"""

from ..config import Config
from ..data.geometry import crs_uri
from ..data.models import Collection
from ..data.request import supported_crs
from .links import collection_links, landing_links, link

CONFORMANCE_CLASSES = [
    "http://www.opengis.net/spec/ogcapi-features-1/1.0/conf/core",
    "http://www.opengis.net/spec/ogcapi-features-1/1.0/conf/geojson",
    "http://www.opengis.net/spec/ogcapi-features-2/1.0/conf/crs",
]


def build_landing(config: Config, base: str) -> dict:
    return {
        "title": config.metadata.title,
        "description": config.metadata.description,
        "links": landing_links(base),
    }


def build_conformance() -> dict:
    return {"conformsTo": list(CONFORMANCE_CLASSES)}


def _crs_list(collection: Collection, config: Config) -> list[str]:
    codes = supported_crs(config)
    if collection.srid:
        codes.add(collection.srid)
    return [crs_uri(code) for code in sorted(codes)]


def build_collection(collection: Collection, config: Config, base: str) -> dict:
    """Descriptor for one collection."""
    descriptor = {
        "id": collection.id,
        "title": collection.title or collection.id,
        "description": collection.description or "",
        "itemType": "feature",
        "geometryType": collection.geometry_type,
        "crs": _crs_list(collection, config),
        "links": collection_links(base, collection.id),
    }
    if collection.srid:
        descriptor["storageCrs"] = crs_uri(collection.srid)
    if collection.extent is not None:
        spatial = {"bbox": [collection.extent.as_list()]}
        if collection.srid:
            spatial["crs"] = crs_uri(collection.srid)
        descriptor["extent"] = {"spatial": spatial}
    if collection.row_count_estimate is not None:
        descriptor["itemCountEstimate"] = collection.row_count_estimate
    return descriptor


def build_collections(collections: list[Collection], config: Config, base: str) -> dict:
    return {
        "collections": [build_collection(c, config, base) for c in collections],
        "links": [link(f"{base}/collections", "self", title="This document")],
    }
