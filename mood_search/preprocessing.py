"""
Image preprocessing for feature extraction.

Images are handled as raster buffers: height × width × channels uint8
arrays in RGB order. Grayscale and RGBA inputs are converted on the way
in so that every extractor sees the same layout.
"""

import os
import logging
from typing import Union

import cv2
import numpy as np

from .errors import InvalidInputError

logger = logging.getLogger(__name__)

# Network input resolution and scaling ((x / 127.5) - 1 maps [0, 255] onto [-1, 1])
NETWORK_INPUT_SIZE = int(os.environ.get("NETWORK_INPUT_SIZE", "224"))
NETWORK_PIXEL_SCALE = 127.5


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Ensure image is uint8."""
    if image_np.dtype != np.uint8:
        if image_np.size and image_np.max() <= 1.0:
            image_np = (image_np * 255).astype(np.uint8)
        else:
            image_np = np.clip(image_np, 0, 255).astype(np.uint8)
    return image_np


def to_rgb(image_np: np.ndarray) -> np.ndarray:
    """
    Convert a grayscale, RGB or RGBA raster to a 3-channel RGB uint8 array.

    Raises:
        InvalidInputError: If the array is not a 2-D or 3-D raster.
    """
    image_np = np.ascontiguousarray(normalize_image(np.asarray(image_np)))

    if image_np.ndim == 2:
        return cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)
    if image_np.ndim != 3:
        raise InvalidInputError(f"Expected a 2-D or 3-D raster, got shape {image_np.shape}")

    channels = image_np.shape[2]
    if channels == 3:
        return image_np
    if channels == 4:
        return cv2.cvtColor(image_np, cv2.COLOR_RGBA2RGB)
    if channels == 1:
        return cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)

    raise InvalidInputError(f"Unsupported channel count: {channels}")


def decode_image(data: Union[bytes, bytearray, str, os.PathLike]) -> np.ndarray:
    """
    Decode an encoded image (bytes) or an image file path into an RGB array.

    Raises:
        InvalidInputError: If the data cannot be decoded.
    """
    if isinstance(data, (bytes, bytearray)):
        buffer = np.frombuffer(bytes(data), dtype=np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
        source = f"{len(data)} bytes"
    else:
        source = os.fspath(data)
        image = cv2.imread(source, cv2.IMREAD_COLOR)

    if image is None:
        raise InvalidInputError(f"Could not decode image from {source}")

    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def load_image(image) -> np.ndarray:
    """
    Accept an array, encoded bytes or a path and return an RGB raster.

    Raises:
        InvalidInputError: If no image is given, it has zero width or
            height, or it cannot be read as a numeric raster.
    """
    if image is None:
        raise InvalidInputError("No image provided")

    if isinstance(image, (bytes, bytearray, str, os.PathLike)):
        image_np = decode_image(image)
    else:
        try:
            image_np = np.asarray(image)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Image is not a raster: {e}") from e

    if image_np.ndim < 2 or image_np.shape[0] == 0 or image_np.shape[1] == 0:
        raise InvalidInputError(f"Image has zero natural dimensions: {image_np.shape}")

    try:
        return to_rgb(image_np)
    except (TypeError, ValueError, cv2.error) as e:
        raise InvalidInputError(f"Image is not a numeric raster ({image_np.dtype}): {e}") from e


def image_size(image) -> dict:
    """Natural width/height of a raster, or zeros when there is none."""
    shape = getattr(image, "shape", None)
    if shape is None or len(shape) < 2:
        return {"width": 0, "height": 0}
    return {"width": int(shape[1]), "height": int(shape[0])}


def resize_square(image_np: np.ndarray, size: int) -> np.ndarray:
    """Resample an RGB raster onto a size × size canvas."""
    h, w = image_np.shape[:2]
    if h == size and w == size:
        return image_np
    return cv2.resize(image_np, (size, size), interpolation=cv2.INTER_AREA)


def preprocess_for_network(image_np: np.ndarray,
                           input_size: int = NETWORK_INPUT_SIZE) -> np.ndarray:
    """
    Prepare an RGB raster as network input.

    Process:
        1. Bilinear resize to input_size × input_size
        2. Scale [0, 255] onto [-1, 1] via (x / 127.5) - 1
        3. Add a leading batch axis

    Returns:
        Float32 tensor of shape (1, input_size, input_size, 3).
    """
    resized = cv2.resize(image_np, (input_size, input_size),
                         interpolation=cv2.INTER_LINEAR)
    tensor = resized.astype(np.float32) / NETWORK_PIXEL_SCALE - 1.0
    return np.expand_dims(tensor, axis=0)
