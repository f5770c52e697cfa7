"""Shared test fixtures for mood search tests."""

import asyncio

import numpy as np
import cv2
import pytest

from mood_search.store import InMemoryCollectionStore


@pytest.fixture
def red_image():
    """Generate a uniform 64x64 red-ish image."""
    return np.full((64, 64, 3), (200, 30, 30), dtype=np.uint8)


@pytest.fixture
def gray_image():
    """Generate a uniform 64x64 mid-gray image."""
    return np.full((64, 64, 3), 128, dtype=np.uint8)


@pytest.fixture
def quadrant_image():
    """Generate a 64x64 image with black left half and white right half."""
    img = np.zeros((64, 64, 3), dtype=np.uint8)
    img[:, 32:] = 255
    return img


@pytest.fixture
def circle_image():
    """Generate a 200x150 white circle on black background."""
    img = np.zeros((150, 200, 3), dtype=np.uint8)
    cv2.circle(img, (100, 75), 50, (255, 255, 255), -1)
    return img


@pytest.fixture
def noise_image():
    """Generate a 120x80 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (80, 120, 3), dtype=np.uint8)


@pytest.fixture
def encoded_png(red_image):
    """PNG-encoded bytes of the red image (OpenCV expects BGR)."""
    ok, buffer = cv2.imencode(".png", cv2.cvtColor(red_image, cv2.COLOR_RGB2BGR))
    assert ok
    return buffer.tobytes()


@pytest.fixture
def score_documents():
    """Stored documents as they come out of the book_score collection."""
    return [
        {"id": "a", "title": "Spring", "mean": "0.5", "var": "0.5"},
        {"id": "b", "title": "Winter", "mean": 0.1, "var": 0.1},
        {"id": "c", "mean": "0.9", "var": "0.2"},
        {"id": "d", "title": "Broken", "mean": "n/a", "var": None},
    ]


@pytest.fixture
def memory_store(score_documents):
    return InMemoryCollectionStore({"book_score": score_documents})


class FakeModel:
    """Stand-in network returning fixed activations."""

    def __init__(self, activations=None):
        self.activations = (
            np.arange(1024, dtype=np.float32) / 1024
            if activations is None else np.asarray(activations)
        )
        self.inputs = []

    def predict(self, tensor):
        self.inputs.append(tensor)
        return self.activations.reshape(1, -1)


@pytest.fixture
def fake_model():
    return FakeModel()


def run(coro):
    """Drive a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)
