"""Feature response serializers."""

from . import geojson

__all__ = ["geojson"]
