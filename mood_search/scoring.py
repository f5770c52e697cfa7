"""
Brute-force nearest-neighbor scoring over (mean, variance) coordinates.

Every record in the collection is scored against the query on every call;
there is no index. Distance is plain 2-D Euclidean:

    sqrt((x - mean)^2 + (y - variance)^2)

Ranking is a stable ascending sort. Records whose mean or variance is not
numeric get a NaN distance and always sort after every finite distance,
in collection order.
"""

import math
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def _as_float(value) -> float:
    """Float value of a record field, NaN when it is not numeric."""
    if isinstance(value, bool):
        return float("nan")
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def euclidean_distance(x: float, y: float, mean: float, variance: float) -> float:
    """Distance between a query point and a record's (mean, variance)."""
    return math.hypot(x - mean, y - variance)


def score_records(query: Tuple[float, float], records: Iterable[dict]) -> List[dict]:
    """
    Attach a distance to every record, preserving collection order.

    Args:
        query: (x, y) query coordinate.
        records: Dicts with 'id', 'title', 'mean' and 'variance'.

    Returns:
        List of scored record dicts (id, title, mean, variance, distance).
    """
    records = list(records)
    if not records:
        return []

    x, y = query
    scored = []
    for r in records:
        mean = _as_float(r.get("mean"))
        variance = _as_float(r.get("variance"))
        scored.append({
            "id": r.get("id"),
            "title": r.get("title"),
            "mean": mean,
            "variance": variance,
            "distance": euclidean_distance(x, y, mean, variance),
        })
    return scored


def rank_by_distance(scored: Sequence[dict]) -> List[dict]:
    """
    Sort scored records by distance (ascending).

    Ties keep collection order. NaN distances go last, also in collection
    order; the stable argsort places NaN after all finite values.
    """
    if not scored:
        return []
    distances = np.array([r["distance"] for r in scored], dtype=np.float64)
    order = np.argsort(distances, kind="stable")
    return [scored[i] for i in order]


def find_nearest(query: Tuple[float, float],
                 records: Iterable[dict],
                 n: int = 2) -> dict:
    """
    Find the records closest to a query coordinate.

    Args:
        query: (x, y) query coordinate.
        records: Collection records (id, title, mean, variance).
        n: Number of ranked entries to return.

    Returns:
        Dict with 'nearest' (closest scored record with a finite distance,
        or None) and 'ranked' (top-n {'id', 'title'} dicts).
    """
    ranked = rank_by_distance(score_records(query, records))

    nearest: Optional[dict] = None
    if ranked and not math.isnan(ranked[0]["distance"]):
        nearest = ranked[0]

    top = ranked[:max(n, 0)]
    for place, record in enumerate(top, start=1):
        logger.info(
            f"#{place}: id={record['id']} title={record['title']} "
            f"distance={record['distance']:.4f}"
        )

    return {
        "nearest": nearest,
        "ranked": [{"id": r["id"], "title": r["title"]} for r in top],
    }
