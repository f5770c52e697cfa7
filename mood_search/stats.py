"""
Mean/variance statistics for feature vectors.

Variance is the population variance. Normalized values are mapped onto
[0, 1] against fixed bounds and are NOT clamped: raw values beyond the
bounds produce normalized values outside [0, 1].

Variance bounds depend on the extractor that produced the vector. Pixel
vectors live in [0, 1], so their variance can never exceed 0.25. Network
activations are unbounded ReLU outputs; their bound is a tuning constant.
"""

import os
import logging
from typing import Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

MEAN_BOUNDS = (0.0, 1.0)
PIXEL_VARIANCE_BOUNDS = (0.0, float(os.environ.get("PIXEL_VARIANCE_MAX", "0.25")))
NETWORK_VARIANCE_BOUNDS = (0.0, float(os.environ.get("NETWORK_VARIANCE_MAX", "0.1")))


def default_stats() -> dict:
    """Stats for an empty vector: zero raw values, centered normalized values."""
    return {
        "mean": 0.0,
        "variance": 0.0,
        "normalized_mean": 0.5,
        "normalized_variance": 0.5,
    }


def normalize_value(value: float, min_value: float, max_value: float) -> float:
    """Map value onto [0, 1] relative to the bounds; 0.5 if the bounds coincide."""
    if min_value == max_value:
        return 0.5
    return (value - min_value) / (max_value - min_value)


def calculate_stats(vector: Optional[Sequence[float]],
                    variance_bounds: Tuple[float, float] = PIXEL_VARIANCE_BOUNDS,
                    mean_bounds: Tuple[float, float] = MEAN_BOUNDS) -> dict:
    """
    Compute raw and normalized mean/variance of a feature vector.

    Args:
        vector: Feature values. None or empty yields default_stats().
        variance_bounds: (min, max) used to normalize the variance.
        mean_bounds: (min, max) used to normalize the mean.

    Returns:
        Dict with mean, variance, normalized_mean, normalized_variance.
    """
    if vector is None or len(vector) == 0:
        return default_stats()

    values = np.asarray(vector, dtype=np.float64)
    mean = float(values.sum() / values.size)
    variance = float(np.sum((values - mean) ** 2) / values.size)

    return {
        "mean": mean,
        "variance": variance,
        "normalized_mean": normalize_value(mean, *mean_bounds),
        "normalized_variance": normalize_value(variance, *variance_bounds),
    }
