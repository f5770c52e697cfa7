"""
Grid-based pixel feature extraction.

The image is resampled onto a fixed square canvas and split into a
sqrt(D) × sqrt(D) grid. Each region contributes one value: the average
of (R + G + B) / 3 over its pixels, scaled by 1/255 so the vector lies
in [0, 1].

Region boundaries are floor(i * region_size), so when the canvas is not
an exact multiple of the grid the regions in a row or column can differ
by a pixel in width (64 / 3 gives bounds 0, 21, 42, 64). Keep this
arithmetic unchanged; stored vectors depend on it.
"""

import os
import math
import time
import logging
from datetime import datetime, timezone

import numpy as np

from .errors import InvalidInputError
from .preprocessing import load_image, image_size, resize_square

logger = logging.getLogger(__name__)

PIXEL_CANVAS_SIZE = int(os.environ.get("PIXEL_CANVAS_SIZE", "64"))
DEFAULT_DIMENSIONS = 16


def regions_per_side(dimensions: int) -> int:
    """
    Grid side length for a vector of the given length.

    Raises:
        InvalidInputError: If dimensions is not a positive perfect square.
    """
    if not isinstance(dimensions, int) or dimensions <= 0:
        raise InvalidInputError(f"dimensions must be positive, got {dimensions}")
    side = math.isqrt(dimensions)
    if side * side != dimensions:
        raise InvalidInputError(f"dimensions must be a perfect square, got {dimensions}")
    return side


def region_bounds(size: int, side: int) -> list:
    """Pixel boundaries of the grid regions along one axis (side + 1 entries)."""
    region_size = size / side
    return [int(math.floor(i * region_size)) for i in range(side + 1)]


def _zero_result(dimensions: int, error: str, image=None,
                 size: int = PIXEL_CANVAS_SIZE, side=None) -> dict:
    return {
        "vector": [0.0] * max(int(dimensions), 0),
        "metadata": {
            "error": error,
            "image_size": image_size(image),
            "processed_size": size,
            "regions_per_side": side,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


def extract_pixel_vector(image,
                         dimensions: int = DEFAULT_DIMENSIONS,
                         size: int = PIXEL_CANVAS_SIZE) -> dict:
    """
    Reduce an image to a grid of average-intensity values.

    Args:
        image: RGB/RGBA/grayscale array, encoded image bytes, or a path.
        dimensions: Vector length; must be a perfect square.
        size: Side of the square canvas the image is resampled onto.

    Returns:
        Dict with 'vector' (list of floats, length dimensions) and
        'metadata' (image_size, processed_size, regions_per_side,
        timestamp). Invalid input or a processing failure gives a zero
        vector with metadata['error'] set instead of raising.
    """
    started = time.perf_counter()

    try:
        side = regions_per_side(dimensions)
        image_np = load_image(image)
    except InvalidInputError as e:
        logger.error(f"Invalid image for pixel extraction: {e}")
        return _zero_result(dimensions, str(e), image, size)

    try:
        canvas = resize_square(image_np, size).astype(np.float64)
        bounds = region_bounds(size, side)

        vector = []
        for reg_y in range(side):
            y0, y1 = bounds[reg_y], bounds[reg_y + 1]
            for reg_x in range(side):
                x0, x1 = bounds[reg_x], bounds[reg_x + 1]
                region = canvas[y0:y1, x0:x1, :3]
                count = region.shape[0] * region.shape[1]
                if count > 0:
                    vector.append(float(region.sum() / (3 * count) / 255.0))

        # Pad, then trim to exactly `dimensions` entries
        vector.extend([0.0] * (dimensions - len(vector)))
        vector = vector[:dimensions]

    except Exception as e:
        logger.error(f"Pixel feature extraction failed: {e}")
        return _zero_result(dimensions, str(e), image_np, size, side)

    logger.info(
        f"Pixel extraction: {dimensions}d vector from "
        f"{image_np.shape[1]}x{image_np.shape[0]} image in "
        f"{(time.perf_counter() - started) * 1000:.1f} ms"
    )

    return {
        "vector": vector,
        "metadata": {
            "image_size": image_size(image_np),
            "processed_size": size,
            "regions_per_side": side,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }
