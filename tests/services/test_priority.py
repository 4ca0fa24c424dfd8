"""
Unit tests for priority lists, selection and fallback
"""

import pytest

from genorch.core.exceptions import AllModelsFailedError, ConfigurationError
from genorch.models.generation import GenerationCategory, ModelSpec, OutcomeKind
from genorch.services.generation.health import ModelHealthTracker
from genorch.services.generation.priority import (
    FallbackExecutor, ModelCatalog, PrioritySelector, default_catalog,
    merge_priority_list
)
from tests.conftest import PolicyViolation

IMAGE = GenerationCategory.IMAGE


@pytest.fixture
def catalog():
    return ModelCatalog([
        ModelSpec("img-a", IMAGE, display_name="A", default_priority=1),
        ModelSpec("img-b", IMAGE, display_name="B", default_priority=2),
        ModelSpec("img-c", IMAGE, display_name="C", default_priority=3),
    ])


@pytest.fixture
def health(store):
    return ModelHealthTracker(store, failure_threshold=3)


@pytest.fixture
def selector(health, catalog, store):
    return PrioritySelector(health, catalog, store)


async def break_model(health, model_id):
    for _ in range(3):
        await health.record(model_id, False)


class TestMergePriorityList:

    @pytest.mark.unit
    def test_drops_stale_and_appends_new(self):
        merged = merge_priority_list(["b", "stale", "a"], ["a", "b", "c"])
        assert merged == ["b", "a", "c"]

    @pytest.mark.unit
    def test_no_saved_list(self):
        assert merge_priority_list(None, ["a", "b"]) == ["a", "b"]

    @pytest.mark.unit
    def test_duplicates_collapse(self):
        assert merge_priority_list(["a", "a", "b"], ["a", "b"]) == ["a", "b"]


class TestPrioritySelector:

    @pytest.mark.unit
    def test_default_order(self, selector):
        assert selector.get_priority(IMAGE) == ["img-a", "img-b", "img-c"]

    @pytest.mark.unit
    def test_loads_and_merges_saved_order(self, health, catalog, store):
        store.save_priorities({IMAGE: ["img-c", "img-retired", "img-a"]})

        selector = PrioritySelector(health, catalog, store)

        assert selector.get_priority(IMAGE) == ["img-c", "img-a", "img-b"]

    @pytest.mark.unit
    def test_select_first_healthy(self, selector):
        selection = selector.select(IMAGE)

        assert selection.model_id == "img-a"
        assert not selection.degraded
        assert selection.skipped == []

    @pytest.mark.unit
    async def test_select_skips_unhealthy(self, selector, health):
        await break_model(health, "img-a")

        selection = selector.select(IMAGE)

        assert selection.model_id == "img-b"
        assert selection.skipped == ["img-a"]

    @pytest.mark.unit
    async def test_all_unhealthy_fails_open(self, selector, health):
        for model_id in ("img-a", "img-b", "img-c"):
            await break_model(health, model_id)

        selection = selector.select(IMAGE)

        assert selection.model_id == "img-a"
        assert selection.degraded

    @pytest.mark.unit
    def test_empty_category(self, selector):
        with pytest.raises(ConfigurationError):
            selector.select(GenerationCategory.AUDIO)

    @pytest.mark.unit
    def test_move_up_and_down(self, selector, store):
        assert selector.move_up(IMAGE, "img-c") == ["img-a", "img-c", "img-b"]
        assert selector.move_down(IMAGE, "img-a") == ["img-c", "img-a", "img-b"]
        assert store.load_priorities()[IMAGE] == ["img-c", "img-a", "img-b"]

    @pytest.mark.unit
    def test_move_at_edges_is_noop(self, selector):
        assert selector.move_up(IMAGE, "img-a") == ["img-a", "img-b", "img-c"]
        assert selector.move_down(IMAGE, "img-c") == ["img-a", "img-b", "img-c"]

    @pytest.mark.unit
    def test_move_unknown_model(self, selector):
        with pytest.raises(ConfigurationError):
            selector.move_up(IMAGE, "img-z")

    @pytest.mark.unit
    def test_set_priority_merges(self, selector, store):
        order = selector.set_priority(IMAGE, ["img-b", "img-unknown"])

        assert order == ["img-b", "img-a", "img-c"]
        assert store.load_priorities()[IMAGE] == order

    @pytest.mark.unit
    def test_reset_to_default(self, selector):
        selector.set_priority(IMAGE, ["img-c", "img-b", "img-a"])

        assert selector.reset_to_default(IMAGE) == ["img-a", "img-b", "img-c"]

    @pytest.mark.unit
    def test_candidates(self, selector):
        assert selector.candidates(IMAGE, "img-b") == ["img-b", "img-c"]
        assert selector.candidates(IMAGE, "img-z") == ["img-a", "img-b", "img-c"]
        assert selector.candidates(IMAGE) == ["img-a", "img-b", "img-c"]

    @pytest.mark.unit
    def test_default_catalog_has_one_model_per_provider(self):
        catalog = default_catalog()
        providers = [catalog.get(m).provider for m in catalog.default_order(GenerationCategory.VIDEO)]

        assert len(providers) == len(set(providers)) == 5

    @pytest.mark.unit
    def test_default_catalog_respects_enabled_providers(self):
        catalog = default_catalog(enabled_providers=["kie", "sutu"], default_provider="yunwu")

        assert catalog.default_order(GenerationCategory.VIDEO) == ["sora-2-kie", "sora-2-sutu"]
        assert "sora-2-yunwu" not in catalog

    @pytest.mark.unit
    def test_default_provider_leads_default_order(self, health, store):
        catalog = default_catalog(default_provider="sutu")
        selector = PrioritySelector(health, catalog, store)

        assert selector.get_priority(GenerationCategory.VIDEO)[:2] == ["sora-2-sutu", "sora-2-yunwu"]
        assert selector.select(GenerationCategory.VIDEO).model_id == "sora-2-sutu"

    @pytest.mark.unit
    def test_duplicate_catalog_entry(self, catalog):
        with pytest.raises(ConfigurationError):
            catalog.add(ModelSpec("img-a", IMAGE))


class TestFallbackExecutor:

    @pytest.fixture
    def hops(self):
        return []

    @pytest.fixture
    def executor(self, selector, health, hops):
        return FallbackExecutor(selector, health, on_fallback=lambda *hop: hops.append(hop))

    @pytest.mark.unit
    async def test_first_model_succeeds(self, executor, health):
        async def operation(model_id):
            return f"image from {model_id}"

        result = await executor.execute(IMAGE, operation)

        assert result.data == "image from img-a"
        assert not result.fell_back
        assert health.get_health("img-a").success_count == 1

    @pytest.mark.unit
    async def test_falls_back_to_next_model(self, executor, health, hops):
        async def operation(model_id):
            if model_id == "img-a":
                raise RuntimeError("503 overloaded")
            return model_id

        result = await executor.execute(IMAGE, operation)

        assert result.model_id == "img-b"
        assert result.fallback_chain == ["img-a", "img-b"]
        assert result.attempts == 2
        assert hops == [("img-a", "img-b", "503 overloaded")]
        assert health.get_health("img-a").failure_count == 1

    @pytest.mark.unit
    async def test_starts_at_initial_model(self, executor):
        calls = []

        async def operation(model_id):
            calls.append(model_id)
            return model_id

        await executor.execute(IMAGE, operation, initial_model="img-b")

        assert calls == ["img-b"]

    @pytest.mark.unit
    async def test_unhealthy_models_tried_last(self, executor, health):
        await break_model(health, "img-a")
        calls = []

        async def operation(model_id):
            calls.append(model_id)
            raise RuntimeError("down")

        with pytest.raises(AllModelsFailedError):
            await executor.execute(IMAGE, operation)

        assert calls == ["img-b", "img-c", "img-a"]

    @pytest.mark.unit
    async def test_all_models_fail(self, executor):
        async def operation(model_id):
            raise RuntimeError(f"{model_id} down")

        with pytest.raises(AllModelsFailedError) as exc_info:
            await executor.execute(IMAGE, operation)

        assert [m for m, _ in exc_info.value.errors] == ["img-a", "img-b", "img-c"]
        assert str(exc_info.value.last_error) == "img-c down"

    @pytest.mark.unit
    async def test_content_policy_stops_the_chain(self, executor, health, hops):
        calls = []

        async def operation(model_id):
            calls.append(model_id)
            raise PolicyViolation()

        with pytest.raises(PolicyViolation):
            await executor.execute(IMAGE, operation)

        assert calls == ["img-a"]
        assert hops == []
        assert health.get_health("img-a").failure_count == 0
        assert health.store.load_model_records()["img-a"].content_policy_count == 1

    @pytest.mark.unit
    async def test_records_outcome_kind(self, executor, health, mocker):
        spy = mocker.spy(health, "record_outcome")

        async def operation(model_id):
            return "ok"

        await executor.execute(IMAGE, operation)

        spy.assert_called_once_with("img-a", OutcomeKind.SUCCESS)
