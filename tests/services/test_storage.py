"""
Tests for the persisted state stores
"""

import pytest

from genorch.models.generation import GenerationCategory, ModelRecord
from genorch.services.generation.health import ModelHealthTracker
from genorch.services.generation.priority import PrioritySelector
from genorch.services.generation.storage import (
    PRIORITIES_KEY, DiskCacheStateStore, InMemoryStateStore
)


@pytest.fixture
def disk_store(tmp_path):
    store = DiskCacheStateStore(directory=str(tmp_path / "state"))
    yield store
    store.close()


class TestInMemoryStateStore:

    @pytest.mark.unit
    def test_returns_copies(self):
        store = InMemoryStateStore()
        store.save_priorities({GenerationCategory.VIDEO: ["a", "b"]})
        store.save_model_records({"a": ModelRecord("a", success_count=1)})

        store.load_priorities()[GenerationCategory.VIDEO].append("c")
        store.load_model_records()["a"].success_count = 99

        assert store.load_priorities()[GenerationCategory.VIDEO] == ["a", "b"]
        assert store.load_model_records()["a"].success_count == 1


class TestDiskCacheStateStore:

    @pytest.mark.unit
    def test_priorities_round_trip(self, disk_store):
        disk_store.save_priorities({GenerationCategory.IMAGE: ["x", "y"]})

        assert disk_store.load_priorities() == {GenerationCategory.IMAGE: ["x", "y"]}

    @pytest.mark.unit
    def test_unknown_category_dropped(self, disk_store):
        disk_store.cache.set(PRIORITIES_KEY, {"hologram": ["h"], "video": ["v"]})

        assert disk_store.load_priorities() == {GenerationCategory.VIDEO: ["v"]}

    @pytest.mark.unit
    def test_empty_store(self, disk_store):
        assert disk_store.load_priorities() == {}
        assert disk_store.load_model_records() == {}

    @pytest.mark.unit
    async def test_state_survives_reopen(self, tmp_path):
        directory = str(tmp_path / "state")
        store = DiskCacheStateStore(directory=directory)
        tracker = ModelHealthTracker(store, failure_threshold=3)
        selector = PrioritySelector(tracker, store=store)
        for _ in range(3):
            await tracker.record("sora-2-kie", False, "HTTP 503")
        selector.move_up(GenerationCategory.VIDEO, "sora-2-kie")
        store.close()

        reopened = DiskCacheStateStore(directory=directory)
        try:
            tracker = ModelHealthTracker(reopened, failure_threshold=3)
            selector = PrioritySelector(tracker, store=reopened)

            assert not tracker.get_health("sora-2-kie").healthy
            assert selector.get_priority(GenerationCategory.VIDEO)[0] == "sora-2-kie"
            assert reopened.load_model_records()["sora-2-kie"].last_error == "HTTP 503"
        finally:
            reopened.close()
