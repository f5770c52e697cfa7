"""
Mood search engine.

Orchestrates the image → coordinate → nearest-record pipeline:
    1. Extract a feature vector (pixel grid or network activations)
    2. Compute mean/variance statistics and their normalized forms
    3. Offset the normalized pair by a mood label → (x, y)
    4. Score every stored record by distance to (x, y) → ranked results

Every entry point returns a result of the same shape on success and on
degraded paths, so callers never need to special-case failures. Only a
network model that cannot be loaded is raised to the caller.
"""

import copy
import math
import numbers
import time
import logging
from datetime import datetime, timezone
from typing import List, Optional

from .emotion import map_emotion_to_coordinate
from .errors import InvalidInputError, ModelLoadError, StoreReadError
from .network_features import ModelService, extract_network_vector
from .pixel_features import DEFAULT_DIMENSIONS, extract_pixel_vector
from .scoring import find_nearest
from .stats import NETWORK_VARIANCE_BOUNDS, PIXEL_VARIANCE_BOUNDS, calculate_stats
from .store import DEFAULT_COLLECTION, STORE_READ_TIMEOUT, CollectionStore, load_records

logger = logging.getLogger(__name__)

DEFAULT_NEIGHBORS = 2


def _query_value(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidInputError(f"Query {name} must be numeric, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidInputError(f"Query {name} must be finite, got {value!r}")
    return value


class SearchEngine:
    """
    Turns images into mood-biased coordinates and finds the closest
    stored records.
    """

    def __init__(self,
                 store: CollectionStore,
                 model_service: Optional[ModelService] = None,
                 collection_name: str = DEFAULT_COLLECTION,
                 store_timeout: Optional[float] = STORE_READ_TIMEOUT):
        """
        Args:
            store: Collection store holding (title, mean, var) documents.
            model_service: Network model provider for image2vec_dnn().
                Without one, network extraction raises ModelLoadError.
            collection_name: Collection to search.
            store_timeout: Seconds allowed for a collection read, or None.
        """
        self.store = store
        self.model_service = model_service
        self.collection_name = collection_name
        self.store_timeout = store_timeout
        self._history: List[dict] = []

    @property
    def history(self) -> List[dict]:
        """Past process_image() requests, oldest first."""
        return list(self._history)

    def image2vec(self, image, emotion: Optional[str] = None,
                  dimensions: int = DEFAULT_DIMENSIONS) -> dict:
        """
        Pixel-grid embedding of an image, biased by a mood label.

        Returns:
            Dict with 'vector', 'metadata' and 'stats' (mean, variance,
            normalized_mean, normalized_variance, x, y).
        """
        result = extract_pixel_vector(image, dimensions)

        if "error" in result["metadata"]:
            stats = calculate_stats([])
        else:
            stats = calculate_stats(result["vector"], variance_bounds=PIXEL_VARIANCE_BOUNDS)

        x, y = map_emotion_to_coordinate(
            emotion, stats["normalized_mean"], stats["normalized_variance"]
        )
        stats["x"] = x
        stats["y"] = y

        logger.info(
            f"image2vec: mean={stats['mean']:.4f} var={stats['variance']:.4f} "
            f"emotion={emotion!r} → ({x:.4f}, {y:.4f})"
        )
        result["stats"] = stats
        return result

    async def image2vec_dnn(self, image, dimensions: int = DEFAULT_DIMENSIONS) -> dict:
        """
        Network-activation embedding of an image.

        Returns:
            Dict with 'vector', 'metadata' and 'stats'.

        Raises:
            ModelLoadError: If no model service is configured or the
                model fails to load.
        """
        if self.model_service is None:
            raise ModelLoadError("No model service configured for network extraction")

        result = await extract_network_vector(image, self.model_service, dimensions)

        if "error" in result["metadata"]:
            stats = calculate_stats([])
        else:
            stats = calculate_stats(result["vector"], variance_bounds=NETWORK_VARIANCE_BOUNDS)

        logger.info(
            f"image2vec_dnn: mean={stats['mean']:.4f} var={stats['variance']:.4f} "
            f"normalized=({stats['normalized_mean']:.4f}, {stats['normalized_variance']:.4f})"
        )
        result["stats"] = stats
        return result

    async def load_collection(self) -> List[dict]:
        """
        All stored records, coerced to numeric mean/variance.

        Raises:
            StoreReadError: If the collection cannot be read.
        """
        return await load_records(self.store, self.collection_name, self.store_timeout)

    async def find_nearest_image(self, mean, variance, n: int = DEFAULT_NEIGHBORS) -> dict:
        """
        Find the stored records closest to (mean, variance).

        Invalid query values and store failures give an empty result
        rather than raising; store reads are never retried.

        Returns:
            Dict with 'nearest' (scored record or None) and
            'sorted_results' (top-n {'id', 'title'} dicts).
        """
        empty = {"nearest": None, "sorted_results": []}

        try:
            query = (_query_value(mean, "mean"), _query_value(variance, "variance"))
        except InvalidInputError as e:
            logger.error(f"Invalid nearest-record query: {e}")
            return empty

        started = time.perf_counter()
        try:
            records = await self.load_collection()
        except StoreReadError as e:
            logger.error(f"Nearest-record search aborted: {e}")
            return empty

        found = find_nearest(query, records, n)

        logger.info(
            f"Nearest-record query ({query[0]:.4f}, {query[1]:.4f}) over "
            f"{len(records)} records → {len(found['ranked'])} results in "
            f"{(time.perf_counter() - started) * 1000:.1f} ms"
        )

        return {"nearest": found["nearest"], "sorted_results": found["ranked"]}

    async def process_image(self, image, emotion: Optional[str] = None,
                            n: int = DEFAULT_NEIGHBORS,
                            filename: Optional[str] = None) -> dict:
        """
        Full request: embed the image, then query the closest records.

        The query is only issued after extraction has completed. The
        request is appended to the history log.

        Returns:
            Dict with 'embedding' (image2vec result), 'nearest' and
            'sorted_results'.
        """
        embedding = self.image2vec(image, emotion)

        self._history.append({
            "filename": filename,
            "emotion": emotion,
            "embedding": copy.deepcopy(embedding),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

        search = await self.find_nearest_image(
            embedding["stats"]["x"], embedding["stats"]["y"], n
        )

        return {
            "embedding": embedding,
            "nearest": search["nearest"],
            "sorted_results": search["sorted_results"],
        }
