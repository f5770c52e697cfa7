"""
Network-based feature extraction.

A pre-trained image-classification network (MobileNet v1 by default)
supplies penultimate-layer activations, which are uniformly stride
subsampled down to a short feature vector. This is subsampling, not
pooling: entry i is activations[min(i * step, L - 1)] with
step = floor(L / dimensions).

The network is loaded lazily through a ModelService. Loading is
single-flight: callers arriving while a load is in progress await the
same load and receive the same model instance.
"""

import os
import time
import asyncio
import inspect
import logging
from enum import Enum
from datetime import datetime, timezone
from typing import Callable, Optional

import numpy as np

from .errors import InvalidInputError, ModelLoadError
from .preprocessing import (
    NETWORK_INPUT_SIZE, load_image, image_size, preprocess_for_network,
)

logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = 16

# MobileNet v1 width multiplier and the layer whose activations are used
MOBILENET_ALPHA = float(os.environ.get("MOBILENET_ALPHA", "0.25"))
MOBILENET_FEATURE_LAYER = "conv_pw_13_relu"
MOBILENET_WEIGHTS_PATH = os.environ.get("MOBILENET_WEIGHTS_PATH", "models/mobilenet.h5")

# Seconds; unset means no bound on model loading
_timeout = os.environ.get("MODEL_LOAD_TIMEOUT")
MODEL_LOAD_TIMEOUT = float(_timeout) if _timeout else None


class ModelState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def load_mobilenet(weights_path: Optional[str] = MOBILENET_WEIGHTS_PATH,
                   alpha: float = MOBILENET_ALPHA,
                   input_size: int = NETWORK_INPUT_SIZE):
    """
    Build MobileNet v1 truncated at its last pointwise convolution.

    Local weights are preferred; when weights_path does not exist the
    ImageNet weights are downloaded by Keras.

    Returns:
        Keras model mapping (1, input_size, input_size, 3) inputs to
        conv_pw_13_relu activations.
    """
    import tensorflow as tf

    if weights_path and os.path.exists(weights_path):
        weights = weights_path
        logger.info(f"Using local MobileNet weights: {weights_path}")
    else:
        weights = "imagenet"
        logger.info("No local MobileNet weights, using remote ImageNet weights")

    base = tf.keras.applications.MobileNet(
        input_shape=(input_size, input_size, 3),
        alpha=alpha,
        include_top=False,
        weights=weights,
    )
    layer = base.get_layer(MOBILENET_FEATURE_LAYER)
    return tf.keras.Model(inputs=base.inputs, outputs=layer.output)


class ModelService:
    """
    Owns the lifecycle of the feature-extraction network.

    States: uninitialized → loading → ready | failed. A failed load may
    be retried by calling load() again. A load that times out leaves its
    loader running, and the retry awaits that loader instead of starting
    a second one.
    """

    def __init__(self,
                 loader: Callable = load_mobilenet,
                 load_timeout: Optional[float] = MODEL_LOAD_TIMEOUT,
                 model_type: str = "MobileNet"):
        """
        Args:
            loader: Zero-argument callable returning a model with a
                predict(tensor) method. May be a coroutine function;
                plain callables run in a worker thread.
            load_timeout: Seconds to wait for the loader, or None.
            model_type: Label recorded in extraction metadata.
        """
        self._loader = loader
        self.load_timeout = load_timeout
        self.model_type = model_type
        self.state = ModelState.UNINITIALIZED
        self._model = None
        self._pending: Optional[asyncio.Future] = None
        self._loader_task: Optional[asyncio.Future] = None

    @property
    def model(self):
        return self._model

    async def load(self):
        """
        Return the ready model, loading it on first use.

        Raises:
            ModelLoadError: If the loader fails or times out.
        """
        if self._model is not None:
            return self._model

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load())
        else:
            logger.info("Model load already in progress, waiting")

        # shield: a cancelled waiter must not cancel the shared load
        return await asyncio.shield(self._pending)

    async def _run_loader(self):
        if inspect.iscoroutinefunction(self._loader):
            return await self._loader()
        return await asyncio.to_thread(self._loader)

    def _loader_finished(self, task: asyncio.Future):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None and task is not self._loader_task:
            logger.warning(f"Abandoned model loader failed: {error!r}")

    async def _load(self):
        self.state = ModelState.LOADING
        started = time.perf_counter()

        # A loader left running by a timed-out attempt is awaited, not restarted
        task = self._loader_task
        if task is None or task.get_loop() is not asyncio.get_running_loop():
            logger.info(f"Loading {self.model_type} model")
            task = asyncio.ensure_future(self._run_loader())
            task.add_done_callback(self._loader_finished)
            self._loader_task = task
        else:
            logger.info(f"Waiting on {self.model_type} loader from a previous attempt")

        try:
            model = await asyncio.wait_for(asyncio.shield(task), timeout=self.load_timeout)
        except asyncio.CancelledError:
            self.state = ModelState.UNINITIALIZED
            self._pending = None
            raise
        except asyncio.TimeoutError as e:
            self.state = ModelState.FAILED
            self._pending = None
            if task.done():
                self._loader_task = None
            logger.error(f"Model load timed out after {self.load_timeout}s")
            raise ModelLoadError(
                f"Timed out loading {self.model_type} model after {self.load_timeout}s"
            ) from e
        except Exception as e:
            self.state = ModelState.FAILED
            self._pending = None
            self._loader_task = None
            logger.error(f"Model load failed: {e!r}")
            raise ModelLoadError(f"Could not load {self.model_type} model: {e!r}") from e

        self._model = model
        self.state = ModelState.READY
        self._pending = None
        self._loader_task = None
        logger.info(
            f"{self.model_type} model ready in "
            f"{(time.perf_counter() - started) * 1000:.1f} ms"
        )
        return model


def subsample_activations(activations, dimensions: int = DEFAULT_DIMENSIONS) -> list:
    """
    Uniform stride subsampling of a flat activation vector.

    Args:
        activations: Activation values (any shape; flattened in C order).
        dimensions: Number of values to keep.

    Returns:
        List of floats of length dimensions.

    Raises:
        ValueError: If there are no activations.
    """
    flat = np.asarray(activations, dtype=np.float64).ravel()
    length = flat.size
    if length == 0:
        raise ValueError("Cannot subsample an empty activation vector")

    step = length // dimensions
    return [float(flat[min(i * step, length - 1)]) for i in range(dimensions)]


def _zero_result(dimensions: int, error: str, image=None,
                 model_type: str = "MobileNet") -> dict:
    return {
        "vector": [0.0] * max(int(dimensions), 0),
        "metadata": {
            "error": error,
            "image_size": image_size(image),
            "original_length": 0,
            "model_type": model_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


async def extract_network_vector(image,
                                 model_service: ModelService,
                                 dimensions: int = DEFAULT_DIMENSIONS) -> dict:
    """
    Extract a feature vector from network activations.

    Args:
        image: RGB/RGBA/grayscale array, encoded image bytes, or a path.
        model_service: Service providing the loaded network.
        dimensions: Vector length.

    Returns:
        Dict with 'vector' and 'metadata' (image_size, original_length,
        model_type, timestamp). Invalid input or a prediction failure
        gives a zero vector with metadata['error'] set.

    Raises:
        ModelLoadError: If the network cannot be loaded.
    """
    if not isinstance(dimensions, int) or dimensions <= 0:
        logger.error(f"Invalid dimensions for network extraction: {dimensions}")
        return _zero_result(dimensions, f"dimensions must be positive, got {dimensions}",
                            image, model_service.model_type)

    try:
        image_np = load_image(image)
    except InvalidInputError as e:
        logger.error(f"Invalid image for network extraction: {e}")
        return _zero_result(dimensions, str(e), image, model_service.model_type)

    model = await model_service.load()

    started = time.perf_counter()
    try:
        tensor = preprocess_for_network(image_np)
        activations = await asyncio.to_thread(model.predict, tensor)
        flat = np.asarray(activations).ravel()
        vector = subsample_activations(flat, dimensions)
    except Exception as e:
        logger.error(f"Network feature extraction failed: {e!r}")
        return _zero_result(dimensions, str(e), image_np, model_service.model_type)

    logger.info(
        f"Network extraction: {flat.size} activations → {dimensions}d vector in "
        f"{(time.perf_counter() - started) * 1000:.1f} ms"
    )

    return {
        "vector": vector,
        "metadata": {
            "image_size": image_size(image_np),
            "original_length": int(flat.size),
            "model_type": model_service.model_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }
