"""Tests for the SearchEngine entry points."""

import numpy as np
import pytest

from conftest import FakeModel, run
from mood_search.engine import SearchEngine
from mood_search.errors import ModelLoadError
from mood_search.network_features import ModelService
from mood_search.store import CollectionStore, InMemoryCollectionStore


class FailingStore(CollectionStore):
    def __init__(self):
        self.calls = 0

    async def get_all(self, collection_name):
        self.calls += 1
        raise ConnectionError("store offline")


class TestImage2Vec:
    """Tests for pixel embedding with mood offsets."""

    def test_stats_and_coordinates(self, gray_image, memory_store):
        engine = SearchEngine(memory_store)
        result = engine.image2vec(gray_image, "喜")

        stats = result["stats"]
        assert len(result["vector"]) == 16
        assert stats["mean"] == pytest.approx(128 / 255)
        assert stats["variance"] == pytest.approx(0.0)
        assert stats["x"] == pytest.approx(128 / 255 + 0.2)
        assert stats["y"] == pytest.approx(0.2)

    def test_pixel_variance_bound(self, quadrant_image, memory_store):
        stats = SearchEngine(memory_store).image2vec(quadrant_image)["stats"]
        # half black, half white → variance 0.25 → top of the pixel bound
        assert stats["variance"] == pytest.approx(0.25)
        assert stats["normalized_variance"] == pytest.approx(1.0)
        assert stats["y"] == 0.999

    def test_invalid_image_same_shape(self, memory_store):
        result = SearchEngine(memory_store).image2vec(None, "哀")
        assert result["vector"] == [0.0] * 16
        assert "error" in result["metadata"]
        assert result["stats"]["mean"] == 0.0
        assert result["stats"]["normalized_mean"] == 0.5
        assert result["stats"]["x"] == pytest.approx(0.3)
        assert result["stats"]["y"] == pytest.approx(0.3)

    @pytest.mark.parametrize("image", [
        [[1, 2, 3], [4, 5]],
        np.array([["a", "b"], ["c", "d"]]),
    ])
    def test_malformed_raster_default_stats(self, image, memory_store):
        result = SearchEngine(memory_store).image2vec(image, "喜")
        assert result["vector"] == [0.0] * 16
        assert "error" in result["metadata"]
        assert result["stats"]["normalized_mean"] == 0.5
        assert result["stats"]["x"] == pytest.approx(0.7)
        assert result["stats"]["y"] == pytest.approx(0.7)


class TestImage2VecDnn:
    """Tests for network embedding."""

    def test_uses_network_bounds(self, red_image, memory_store):
        activations = np.tile([0.0, 0.2], 512)
        service = ModelService(loader=lambda: FakeModel(activations))
        engine = SearchEngine(memory_store, model_service=service)

        result = run(engine.image2vec_dnn(red_image, dimensions=16))
        # step = 64 → every sampled index is even → all zeros
        assert result["vector"] == [0.0] * 16
        assert result["stats"]["normalized_variance"] == 0.0
        assert "x" not in result["stats"]

    def test_normalized_against_network_bound(self, red_image, memory_store):
        activations = np.tile([0.0, 0.4], 8)
        service = ModelService(loader=lambda: FakeModel(activations))
        engine = SearchEngine(memory_store, model_service=service)

        stats = run(engine.image2vec_dnn(red_image, dimensions=16))["stats"]
        assert stats["variance"] == pytest.approx(0.04)
        assert stats["normalized_variance"] == pytest.approx(0.4)

    def test_without_model_service(self, red_image, memory_store):
        with pytest.raises(ModelLoadError):
            run(SearchEngine(memory_store).image2vec_dnn(red_image))

    def test_invalid_image_default_stats(self, memory_store, fake_model):
        engine = SearchEngine(memory_store, model_service=ModelService(loader=lambda: fake_model))
        result = run(engine.image2vec_dnn(None))
        assert result["vector"] == [0.0] * 16
        assert result["stats"]["normalized_variance"] == 0.5


class TestFindNearestImage:
    """Tests for the store-backed nearest-record query."""

    def test_exact_match(self, memory_store):
        result = run(SearchEngine(memory_store).find_nearest_image(0.5, 0.5, 1))
        assert result["nearest"]["id"] == "a"
        assert result["nearest"]["title"] == "Spring"
        assert result["nearest"]["distance"] == pytest.approx(0.0)
        assert result["sorted_results"] == [{"id": "a", "title": "Spring"}]

    def test_ranked_results(self, memory_store):
        result = run(SearchEngine(memory_store).find_nearest_image(0.0, 0.0, 4))
        # "d" has unparseable mean/var → coerced to (0, 0)
        assert [r["id"] for r in result["sorted_results"]] == ["d", "b", "a", "c"]

    def test_empty_collection(self):
        engine = SearchEngine(InMemoryCollectionStore({"book_score": []}))
        assert run(engine.find_nearest_image(0.5, 0.5)) == {"nearest": None, "sorted_results": []}

    def test_custom_collection(self):
        store = InMemoryCollectionStore({"other": [{"id": "z", "title": "Z", "mean": 1, "var": 1}]})
        engine = SearchEngine(store, collection_name="other")
        assert run(engine.find_nearest_image(1.0, 1.0))["nearest"]["id"] == "z"

    @pytest.mark.parametrize("mean,variance", [
        ("0.5", 0.5), (None, 0.5), (0.5, float("nan")), (True, 0.5), (float("inf"), 0.1),
    ])
    def test_invalid_query_empty_result(self, memory_store, mean, variance):
        result = run(SearchEngine(memory_store).find_nearest_image(mean, variance))
        assert result == {"nearest": None, "sorted_results": []}

    def test_numpy_scalars_accepted(self, memory_store):
        result = run(SearchEngine(memory_store).find_nearest_image(
            np.float32(0.5), np.float64(0.5), 1
        ))
        assert result["nearest"]["id"] == "a"

    def test_store_failure_not_retried(self):
        store = FailingStore()
        result = run(SearchEngine(store).find_nearest_image(0.5, 0.5))
        assert result == {"nearest": None, "sorted_results": []}
        assert store.calls == 1

    def test_load_collection(self, memory_store):
        records = run(SearchEngine(memory_store).load_collection())
        assert len(records) == 4
        assert all(set(r) == {"id", "title", "mean", "variance"} for r in records)


class TestProcessImage:
    """Tests for the full request flow."""

    def test_full_flow(self, gray_image, memory_store):
        engine = SearchEngine(memory_store)
        result = run(engine.process_image(gray_image, "哀", n=2, filename="gray.png"))

        stats = result["embedding"]["stats"]
        assert stats["x"] == pytest.approx(128 / 255 - 0.2)
        assert stats["y"] == 0.001
        # (0.302, 0.001) is closest to b at (0.1, 0.1)
        assert result["nearest"]["id"] == "b"
        assert [r["id"] for r in result["sorted_results"]] == ["b", "d"]

    def test_history_appended(self, red_image, gray_image, memory_store):
        engine = SearchEngine(memory_store)
        run(engine.process_image(red_image, "喜", filename="red.png"))
        run(engine.process_image(gray_image, "楽", filename="gray.png"))

        history = engine.history
        assert [h["filename"] for h in history] == ["red.png", "gray.png"]
        assert [h["emotion"] for h in history] == ["喜", "楽"]
        assert all("timestamp" in h for h in history)

        history.clear()
        assert len(engine.history) == 2

    def test_store_failure_keeps_embedding(self, gray_image):
        result = run(SearchEngine(FailingStore()).process_image(gray_image, "喜"))
        assert len(result["embedding"]["vector"]) == 16
        assert result["nearest"] is None
        assert result["sorted_results"] == []

    def test_history_isolated_from_result(self, gray_image, memory_store):
        engine = SearchEngine(memory_store)
        result = run(engine.process_image(gray_image, "喜", filename="gray.png"))

        result["embedding"]["vector"][0] = 99.0
        result["embedding"]["stats"]["x"] = -1.0
        result["embedding"]["metadata"]["image_size"]["width"] = 0

        logged = engine.history[0]["embedding"]
        assert logged["vector"][0] == pytest.approx(128 / 255)
        assert logged["stats"]["x"] == pytest.approx(128 / 255 + 0.2)
        assert logged["metadata"]["image_size"]["width"] == 64
