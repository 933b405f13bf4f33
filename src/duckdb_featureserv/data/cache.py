"""
Collection metadata cache.

Readers never lock: ``snapshot()`` returns the current read-only mapping,
and ``replace()`` swaps in a whole new mapping with a single attribute
assignment, so a reader sees either the old or the new catalog in full.
"""

import logging
import threading
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .models import Collection

logger = logging.getLogger(__name__)


class CollectionCache:
    """Mapping from exact-case collection id to ``Collection``."""

    def __init__(self, collections: Iterable[Collection] = ()):
        self._write_lock = threading.Lock()
        self._mapping: Mapping[str, Collection] = MappingProxyType({})
        if collections:
            self.replace(collections)

    def snapshot(self) -> Mapping[str, Collection]:
        return self._mapping

    def get(self, collection_id: str) -> Optional[Collection]:
        return self._mapping.get(collection_id)

    def list(self) -> list[Collection]:
        mapping = self._mapping
        return [mapping[key] for key in sorted(mapping)]

    def replace(self, collections: Iterable[Collection]) -> Mapping[str, Collection]:
        """Build a new mapping and publish it atomically.

        Later entries with the same exact id replace earlier ones.
        """
        fresh: dict[str, Collection] = {}
        folded: dict[str, str] = {}
        for collection in collections:
            key = collection.id.lower()
            if key in folded and folded[key] != collection.id:
                logger.warning(
                    "Collections %r and %r differ only in case; both are "
                    "served under their exact ids",
                    folded[key],
                    collection.id,
                )
            folded[key] = collection.id
            fresh[collection.id] = collection
        with self._write_lock:
            self._mapping = MappingProxyType(fresh)
        return self._mapping

    def __len__(self) -> int:
        return len(self._mapping)

    def __contains__(self, collection_id: str) -> bool:
        return collection_id in self._mapping
