"""
Model priority lists, selection and fallback

Each category carries a user-ordered list of model ids. Selection returns
the first healthy model in that order and fails open to the most preferred
model when nothing is healthy. The fallback executor walks the same order
when a call on the selected model fails.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from genorch.core.config import settings
from genorch.core.exceptions import (
    AllModelsFailedError, ConfigurationError, ContentPolicyError
)
from genorch.models.generation import (
    GenerationCategory, ModelSpec, OutcomeKind, ProviderName, Selection
)
from .health import ModelHealthTracker
from .storage import InMemoryStateStore, StateStore

logger = logging.getLogger(__name__)

FallbackCallback = Callable[[str, str, str], None]
ModelOperation = Callable[[str], Awaitable[Any]]


class ModelCatalog:
    """Selectable models per category"""

    def __init__(self, specs: Iterable[ModelSpec] = ()):
        self._specs: Dict[str, ModelSpec] = {}
        for spec in specs:
            self.add(spec)

    def add(self, spec: ModelSpec):
        if spec.id in self._specs:
            raise ConfigurationError(f"Duplicate model id in catalog: {spec.id}")
        self._specs[spec.id] = spec

    def get(self, model_id: str) -> ModelSpec:
        spec = self._specs.get(model_id)
        if spec is None:
            raise ConfigurationError(f"Unknown model: {model_id}")
        return spec

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._specs

    def available(self, category: GenerationCategory) -> List[ModelSpec]:
        """Models of a category in default-priority order"""
        category = GenerationCategory(category)
        specs = [spec for spec in self._specs.values() if spec.category == category]
        return sorted(specs, key=lambda spec: spec.default_priority)

    def default_order(self, category: GenerationCategory) -> List[str]:
        return [spec.id for spec in self.available(category)]

    def categories(self) -> List[GenerationCategory]:
        return sorted({spec.category for spec in self._specs.values()}, key=lambda c: c.value)


DEFAULT_CATALOG_SPECS = [
    ModelSpec("sora-2-yunwu", GenerationCategory.VIDEO, ProviderName.YUNWU, "Sora 2 (Yunwu)", 1),
    ModelSpec("sora-2-kie", GenerationCategory.VIDEO, ProviderName.KIE, "Sora 2 (KIE AI)", 2),
    ModelSpec("sora-2-dayuapi", GenerationCategory.VIDEO, ProviderName.DAYUAPI, "Sora 2 (Dayuapi)", 3),
    ModelSpec("sora-2-sutu", GenerationCategory.VIDEO, ProviderName.SUTU, "Sora 2 (Sutu)", 4),
    ModelSpec("sora-2-yijiapi", GenerationCategory.VIDEO, ProviderName.YIJIAPI, "Sora 2 (Yijiapi)", 5),
]


def default_catalog(
    enabled_providers: Optional[Iterable[str]] = None,
    default_provider: Optional[str] = None
) -> ModelCatalog:
    """Built-in models of the enabled providers, default provider first"""
    if enabled_providers is None:
        enabled_providers = settings.ENABLED_PROVIDERS
    default_provider = default_provider or settings.DEFAULT_PROVIDER

    enabled = {str(name).strip().lower() for name in enabled_providers}
    specs = [spec for spec in DEFAULT_CATALOG_SPECS if spec.provider.value in enabled]
    specs.sort(key=lambda spec: (spec.provider.value != default_provider, spec.default_priority))

    return ModelCatalog(
        replace(spec, default_priority=rank) for rank, spec in enumerate(specs, start=1)
    )


def merge_priority_list(saved: Optional[List[str]], available: List[str]) -> List[str]:
    """Reconcile a saved order with the models that currently exist

    Saved entries that are no longer available are dropped, newly available
    models are appended in the order given, surviving entries keep their
    relative order.
    """
    available_set = set(available)
    merged = []
    for model_id in saved or []:
        if model_id in available_set and model_id not in merged:
            merged.append(model_id)
    for model_id in available:
        if model_id not in merged:
            merged.append(model_id)
    return merged


class PrioritySelector:
    """User priority lists plus health-aware selection"""

    def __init__(
        self,
        health: ModelHealthTracker,
        catalog: Optional[ModelCatalog] = None,
        store: Optional[StateStore] = None
    ):
        self.health = health
        self.catalog = catalog or default_catalog()
        self.store = store or InMemoryStateStore()

        saved = self.store.load_priorities()
        self._priorities: Dict[GenerationCategory, List[str]] = {}
        for category in GenerationCategory:
            self._priorities[category] = merge_priority_list(
                saved.get(category), self.catalog.default_order(category)
            )

    def get_priority(self, category: GenerationCategory) -> List[str]:
        return list(self._priorities[GenerationCategory(category)])

    def set_priority(self, category: GenerationCategory, order: List[str]) -> List[str]:
        category = GenerationCategory(category)
        merged = merge_priority_list(order, self.catalog.default_order(category))
        self._priorities[category] = merged
        self._save()
        logger.info(f"Priority for {category.value} set to {merged}")
        return list(merged)

    def move_up(self, category: GenerationCategory, model_id: str) -> List[str]:
        return self._move(category, model_id, -1)

    def move_down(self, category: GenerationCategory, model_id: str) -> List[str]:
        return self._move(category, model_id, 1)

    def reset_to_default(self, category: GenerationCategory) -> List[str]:
        category = GenerationCategory(category)
        self._priorities[category] = self.catalog.default_order(category)
        self._save()
        logger.info(f"Priority for {category.value} reset to default")
        return self.get_priority(category)

    def candidates(self, category: GenerationCategory, start_model: Optional[str] = None) -> List[str]:
        """Fallback chain, starting at start_model when it is listed"""
        order = self.get_priority(category)
        if start_model and start_model in order:
            return order[order.index(start_model):]
        return order

    def select(self, category: GenerationCategory) -> Selection:
        category = GenerationCategory(category)
        order = self._priorities[category]
        if not order:
            raise ConfigurationError(f"No models available for category {category.value}")

        health = self.health.snapshot()
        skipped = []
        for model_id in order:
            snapshot = health.get(model_id)
            if snapshot is None or snapshot.healthy:
                return Selection(model_id=model_id, category=category, skipped=skipped)
            skipped.append(model_id)

        logger.warning(
            f"All {category.value} models are unhealthy, using {order[0]} anyway"
        )
        return Selection(model_id=order[0], category=category, degraded=True, skipped=skipped)

    def _move(self, category: GenerationCategory, model_id: str, offset: int) -> List[str]:
        category = GenerationCategory(category)
        order = self._priorities[category]
        if model_id not in order:
            raise ConfigurationError(f"Model {model_id} is not in the {category.value} priority list")

        index = order.index(model_id)
        target = index + offset
        if 0 <= target < len(order):
            order[index], order[target] = order[target], order[index]
            self._save()
        return list(order)

    def _save(self):
        self.store.save_priorities(self._priorities)


@dataclass
class FallbackResult:
    """Outcome of a call that may have hopped between models"""
    data: Any
    model_id: str
    fallback_chain: List[str] = field(default_factory=list)

    @property
    def attempts(self) -> int:
        return len(self.fallback_chain)

    @property
    def fell_back(self) -> bool:
        return len(self.fallback_chain) > 1


class FallbackExecutor:
    """Run an operation against the priority chain until one model succeeds"""

    def __init__(
        self,
        selector: PrioritySelector,
        health: ModelHealthTracker,
        on_fallback: Optional[FallbackCallback] = None
    ):
        self.selector = selector
        self.health = health
        self.on_fallback = on_fallback

    async def execute(
        self,
        category: GenerationCategory,
        operation: ModelOperation,
        initial_model: Optional[str] = None
    ) -> FallbackResult:
        category = GenerationCategory(category)
        chain = self._ordered_chain(category, initial_model)
        if not chain:
            raise ConfigurationError(f"No models available for category {category.value}")

        attempted: List[str] = []
        errors = []

        for index, model_id in enumerate(chain):
            attempted.append(model_id)
            try:
                data = await operation(model_id)
            except ContentPolicyError as e:
                await self.health.record_outcome(model_id, OutcomeKind.CONTENT_POLICY, str(e))
                raise
            except Exception as e:
                logger.error(f"{category.value} call on {model_id} failed: {e}")
                await self.health.record_outcome(model_id, OutcomeKind.FAILURE, str(e))
                errors.append((model_id, e))

                if index + 1 < len(chain):
                    next_model = chain[index + 1]
                    logger.warning(f"Falling back {category.value}: {model_id} -> {next_model} ({e})")
                    if self.on_fallback:
                        self.on_fallback(model_id, next_model, str(e))
                continue

            await self.health.record_outcome(model_id, OutcomeKind.SUCCESS)
            if len(attempted) > 1:
                logger.info(f"{category.value} served by {model_id} after {' -> '.join(attempted)}")
            return FallbackResult(data=data, model_id=model_id, fallback_chain=attempted)

        raise AllModelsFailedError(category.value, errors)

    def _ordered_chain(self, category: GenerationCategory, initial_model: Optional[str]) -> List[str]:
        """Candidates with healthy models first, each group in priority order"""
        chain = self.selector.candidates(category, initial_model)
        health = self.health.snapshot()
        healthy = [m for m in chain if m not in health or health[m].healthy]
        unhealthy = [m for m in chain if m in health and not health[m].healthy]
        return healthy + unhealthy
