"""
Record collection access.

The store is an external, read-only collaborator: each query reads the
whole collection and coerces every document into a record

    {"id": str, "title": str, "mean": float, "variance": float}

Stored documents carry 'mean' and 'var' as numbers or numeric strings.
Unparseable values become 0 and a missing title becomes "No Title".
"""

import os
import math
import numbers
import re
import time
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from .errors import StoreReadError

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = os.environ.get("SCORE_COLLECTION", "book_score")
DEFAULT_TITLE = "No Title"

# Seconds; unset means no bound on collection reads
_timeout = os.environ.get("STORE_READ_TIMEOUT")
STORE_READ_TIMEOUT = float(_timeout) if _timeout else None

# Leading decimal or Infinity literal, after optional whitespace
_LEADING_NUMBER = re.compile(r"\s*([+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?))")


class CollectionStore(ABC):
    """Read-only accessor for named document collections."""

    @abstractmethod
    async def get_all(self, collection_name: str) -> List[Dict]:
        """Return every document in the collection, each including its 'id'."""


class InMemoryCollectionStore(CollectionStore):
    """Collections held in process memory, keyed by collection name."""

    def __init__(self, collections: Optional[Dict[str, Iterable[Dict]]] = None):
        self._collections = {
            name: [dict(doc) for doc in docs]
            for name, docs in (collections or {}).items()
        }

    async def get_all(self, collection_name: str) -> List[Dict]:
        return [dict(doc) for doc in self._collections.get(collection_name, [])]


class FirestoreCollectionStore(CollectionStore):
    """Google Cloud Firestore collections, read with the async client."""

    def __init__(self, project: Optional[str] = None, client=None):
        if client is None:
            from google.cloud import firestore
            client = firestore.AsyncClient(project=project)
        self._client = client

    async def get_all(self, collection_name: str) -> List[Dict]:
        documents = []
        async for snapshot in self._client.collection(collection_name).stream():
            data = snapshot.to_dict() or {}
            data["id"] = snapshot.id
            documents.append(data)
        return documents


def _parse_float(value) -> float:
    """
    Numeric value of a stored field, reading the leading number of a
    string ("0.5abc" → 0.5). Anything without one, and NaN, gives 0.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, numbers.Real):
        parsed = float(value)
    elif isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if match is None:
            return 0.0
        parsed = float(match.group(1))
    else:
        return 0.0
    return 0.0 if math.isnan(parsed) else parsed


def coerce_record(document: Dict) -> Dict:
    """Normalize a stored document into a record with numeric mean/variance."""
    return {
        "id": str(document.get("id", "")),
        "title": document.get("title") or DEFAULT_TITLE,
        "mean": _parse_float(document.get("mean")),
        "variance": _parse_float(document.get("var")),
    }


async def load_records(store: CollectionStore,
                       collection_name: str = DEFAULT_COLLECTION,
                       timeout: Optional[float] = STORE_READ_TIMEOUT) -> List[Dict]:
    """
    Read a whole collection and coerce its documents into records.

    Raises:
        StoreReadError: If the read fails or exceeds the timeout.
    """
    started = time.perf_counter()
    try:
        documents = await asyncio.wait_for(store.get_all(collection_name), timeout=timeout)
    except Exception as e:
        logger.error(f"Reading collection '{collection_name}' failed: {e!r}")
        raise StoreReadError(f"Could not read collection '{collection_name}': {e!r}") from e

    records = [coerce_record(doc) for doc in documents]
    logger.info(
        f"Read {len(records)} records from '{collection_name}' in "
        f"{(time.perf_counter() - started) * 1000:.1f} ms"
    )
    return records
