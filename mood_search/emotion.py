"""
Mood-biased plotting coordinates.

Each mood label shifts the normalized (mean, variance) pair toward one
quadrant of the unit square:

    喜 (joy)      → (+d, +d)
    怒 (anger)    → (-d, +d)
    哀 (sorrow)   → (-d, -d)
    楽 (pleasure) → (+d, -d)

Unknown labels apply no offset. The result is clamped per axis to
[0.001, 0.999] so plotted points never sit on the border.
"""

import os
import math
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

EMOTION_OFFSET = float(os.environ.get("EMOTION_OFFSET", "0.2"))

EMOTION_OFFSETS = {
    "喜": (EMOTION_OFFSET, EMOTION_OFFSET),
    "怒": (-EMOTION_OFFSET, EMOTION_OFFSET),
    "哀": (-EMOTION_OFFSET, -EMOTION_OFFSET),
    "楽": (EMOTION_OFFSET, -EMOTION_OFFSET),
}

COORDINATE_MIN = 0.001
COORDINATE_MAX = 0.999


def clamp_coordinate(value: float) -> float:
    """Hard floor/ceiling into [COORDINATE_MIN, COORDINATE_MAX]."""
    if math.isnan(value):
        return 0.5
    return min(max(value, COORDINATE_MIN), COORDINATE_MAX)


def emotion_offset(emotion: Optional[str]) -> Tuple[float, float]:
    """Offset for a mood label; (0, 0) for anything unrecognized."""
    if emotion is None:
        return 0.0, 0.0
    offset = EMOTION_OFFSETS.get(emotion)
    if offset is None:
        logger.warning(f"Unknown emotion {emotion!r}, no offset applied")
        return 0.0, 0.0
    return offset


def map_emotion_to_coordinate(emotion: Optional[str],
                              normalized_mean: float,
                              normalized_variance: float) -> Tuple[float, float]:
    """
    Shift normalized stats by the mood offset and clamp into the unit square.

    Returns:
        (x, y) with both values in [0.001, 0.999].
    """
    dx, dy = emotion_offset(emotion)
    x = clamp_coordinate(float(normalized_mean) + dx)
    y = clamp_coordinate(float(normalized_variance) + dy)
    logger.debug(f"Emotion {emotion!r}: ({normalized_mean:.4f}, {normalized_variance:.4f}) → ({x:.4f}, {y:.4f})")
    return x, y
