"""
Unit tests for model health tracking
"""

import asyncio

import pytest

from genorch.models.generation import OutcomeKind
from genorch.services.generation.health import ModelHealthTracker


@pytest.fixture
def tracker(store):
    return ModelHealthTracker(store, failure_threshold=3, content_policy_affects_health=False)


class TestModelHealthTracker:

    @pytest.mark.unit
    def test_unknown_model_is_healthy_without_data(self, tracker):
        health = tracker.get_health("sora-2-kie")

        assert health.healthy
        assert health.success_rate == 0.0
        assert health.consecutive_failures == 0

    @pytest.mark.unit
    async def test_three_consecutive_failures_mark_unhealthy(self, tracker):
        await tracker.record("m", True)
        await tracker.record("m", False)
        await tracker.record("m", False)
        assert tracker.get_health("m").healthy

        await tracker.record("m", False)

        health = tracker.get_health("m")
        assert not health.healthy
        assert health.consecutive_failures == 3
        assert health.success_rate == pytest.approx(0.25)

    @pytest.mark.unit
    async def test_success_resets_consecutive_failures(self, tracker):
        for _ in range(5):
            await tracker.record("m", False)
        assert not tracker.is_healthy("m")

        snapshot = await tracker.record("m", True)

        assert snapshot.healthy
        assert snapshot.consecutive_failures == 0
        assert snapshot.failure_count == 5
        assert snapshot.success_count == 1

    @pytest.mark.unit
    async def test_content_policy_does_not_hurt_health_by_default(self, tracker):
        for _ in range(4):
            await tracker.record_outcome("m", OutcomeKind.CONTENT_POLICY, "flagged")

        health = tracker.get_health("m")
        assert health.healthy
        assert health.failure_count == 0
        assert health.success_rate == 0.0

    @pytest.mark.unit
    async def test_content_policy_counts_when_configured(self, store):
        tracker = ModelHealthTracker(store, failure_threshold=3, content_policy_affects_health=True)

        for _ in range(3):
            await tracker.record_outcome("m", OutcomeKind.CONTENT_POLICY, "flagged")

        assert not tracker.get_health("m").healthy

    @pytest.mark.unit
    async def test_concurrent_records_are_not_lost(self, tracker):
        await asyncio.gather(*[tracker.record("m", i % 2 == 0) for i in range(100)])

        health = tracker.get_health("m")
        assert health.success_count == 50
        assert health.failure_count == 50

    @pytest.mark.unit
    async def test_reset_one_model(self, tracker):
        for _ in range(3):
            await tracker.record("a", False)
        await tracker.record("b", False)

        await tracker.reset("a")

        assert tracker.get_health("a").healthy
        assert tracker.get_health("a").failure_count == 0
        assert tracker.get_health("b").failure_count == 1

    @pytest.mark.unit
    async def test_reset_all(self, tracker):
        await tracker.record("a", False)
        await tracker.record("b", True)

        await tracker.reset()

        assert tracker.snapshot() == {}

    @pytest.mark.unit
    async def test_records_survive_restart(self, store):
        tracker = ModelHealthTracker(store, failure_threshold=3)
        for _ in range(3):
            await tracker.record("m", False, "HTTP 500")

        restored = ModelHealthTracker(store, failure_threshold=3)

        assert not restored.get_health("m").healthy
        assert store.load_model_records()["m"].last_error == "HTTP 500"

    @pytest.mark.unit
    async def test_snapshot_is_a_copy(self, tracker):
        await tracker.record("m", True)
        snapshot = tracker.snapshot()

        await tracker.record("m", False)

        assert snapshot["m"].failure_count == 0
        assert tracker.get_health("m").failure_count == 1
