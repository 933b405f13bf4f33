"""
Stream rows -> GeoJSON FeatureCollection / Feature text.

Rows follow a ``RowLayout``. The geometry column already holds GeoJSON
text from the source and is spliced in verbatim; properties are encoded
per their semantic type. Nothing is materialised beyond one feature.
"""

import json
import logging
import math
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Callable, Iterator, Optional

from ...data.errors import FeatureServError
from ...data.models import SemanticType

logger = logging.getLogger(__name__)

MEDIA_TYPE = "application/geo+json"


def _timestamp(value) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat() + "Z"
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


def _number(value) -> str:
    if isinstance(value, Decimal):
        return str(value) if value.is_finite() else "null"
    value = float(value)
    if not math.isfinite(value):
        return "null"
    return json.dumps(value)


def _json_text(value) -> str:
    if isinstance(value, str):
        try:
            json.loads(value)
        except ValueError:
            return json.dumps(value)
        return value
    return json.dumps(value, default=str)


def encode_value(value, semantic_type: Optional[SemanticType] = None) -> str:
    """JSON text for one property value."""
    if value is None:
        return "null"
    if semantic_type is None:
        semantic_type = _infer_type(value)
    if semantic_type == SemanticType.INTEGER:
        return str(int(value))
    if semantic_type == SemanticType.FLOATING:
        return _number(value)
    if semantic_type == SemanticType.BOOLEAN:
        return "true" if value else "false"
    if semantic_type == SemanticType.TIMESTAMP:
        return json.dumps(_timestamp(value))
    if semantic_type == SemanticType.JSON:
        return _json_text(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return json.dumps(bytes(value).hex())
    return json.dumps(str(value))


def _infer_type(value) -> SemanticType:
    if isinstance(value, bool):
        return SemanticType.BOOLEAN
    if isinstance(value, int):
        return SemanticType.INTEGER
    if isinstance(value, (float, Decimal)):
        return SemanticType.FLOATING
    if isinstance(value, (datetime, date, time)):
        return SemanticType.TIMESTAMP
    return SemanticType.STRING


def feature_json(row: tuple, layout) -> str:
    """One Feature object as JSON text."""
    props = ",".join(
        f"{json.dumps(name)}:{encode_value(row[i], layout.property_types[i])}"
        for i, name in enumerate(layout.property_names)
    )
    geometry = row[layout.geometry_index]
    parts = ['"type":"Feature"']
    if layout.id_index is not None:
        parts.append(f'"id":{encode_value(row[layout.id_index])}')
    parts.append(f'"geometry":{geometry if geometry is not None else "null"}')
    parts.append(f'"properties":{{{props}}}')
    return "{" + ",".join(parts) + "}"


def feature_document(row: tuple, layout, links: list) -> str:
    """A single Feature response with its links."""
    text = feature_json(row, layout)
    return text[:-1] + f',"links":{json.dumps(links)}}}'


def stream_feature_collection(stream, links: Callable[[int], list]) -> Iterator[str]:
    """Yield a FeatureCollection piece by piece.

    ``links`` is called with the number of features written once the
    rows are exhausted. If the row stream fails part way, the error is
    logged and output stops without the closing brackets, leaving the
    client with a visibly truncated document.
    """
    count = 0
    try:
        yield '{"type":"FeatureCollection","features":['
        for row in stream:
            yield ("," if count else "") + feature_json(row, stream.layout)
            count += 1
    except FeatureServError as e:
        logger.error("Feature stream aborted after %d features: %s", count, e)
        return
    finally:
        stream.close()
    yield f'],"numberReturned":{count},"links":{json.dumps(links(count))}}}'
