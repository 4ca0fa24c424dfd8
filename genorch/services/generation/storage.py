"""
Persisted state for priority lists and model health

The core never owns durable storage; it loads and saves through one of these
stores. Jobs themselves are never persisted.
"""

import abc
import copy
import logging
from typing import Dict, List, Optional

from diskcache import Cache

from genorch.core.config import settings
from genorch.models.generation import GenerationCategory, ModelRecord

logger = logging.getLogger(__name__)

PRIORITIES_KEY = "genorch:priorities"
MODEL_RECORDS_KEY = "genorch:model_records"


class StateStore(abc.ABC):
    """Load/save hooks for state that survives a restart"""

    @abc.abstractmethod
    def load_priorities(self) -> Dict[GenerationCategory, List[str]]:
        pass

    @abc.abstractmethod
    def save_priorities(self, priorities: Dict[GenerationCategory, List[str]]):
        pass

    @abc.abstractmethod
    def load_model_records(self) -> Dict[str, ModelRecord]:
        pass

    @abc.abstractmethod
    def save_model_records(self, records: Dict[str, ModelRecord]):
        pass

    def close(self):
        pass


class InMemoryStateStore(StateStore):
    """Process-local store, used by default and in tests"""

    def __init__(self):
        self._priorities: Dict[GenerationCategory, List[str]] = {}
        self._records: Dict[str, ModelRecord] = {}

    def load_priorities(self) -> Dict[GenerationCategory, List[str]]:
        return {category: list(order) for category, order in self._priorities.items()}

    def save_priorities(self, priorities: Dict[GenerationCategory, List[str]]):
        self._priorities = {
            GenerationCategory(category): list(order) for category, order in priorities.items()
        }

    def load_model_records(self) -> Dict[str, ModelRecord]:
        return copy.deepcopy(self._records)

    def save_model_records(self, records: Dict[str, ModelRecord]):
        self._records = copy.deepcopy(records)


class DiskCacheStateStore(StateStore):
    """diskcache-backed store so priorities and health survive restarts"""

    def __init__(self, directory: Optional[str] = None, size_limit: Optional[int] = None):
        self.directory = directory or settings.STATE_CACHE_DIR
        self.cache = Cache(self.directory, size_limit=size_limit or settings.STATE_CACHE_SIZE_LIMIT)

    def load_priorities(self) -> Dict[GenerationCategory, List[str]]:
        stored = self.cache.get(PRIORITIES_KEY) or {}
        priorities = {}
        for category, order in stored.items():
            try:
                priorities[GenerationCategory(category)] = list(order)
            except ValueError:
                logger.warning(f"Dropping stored priority list for unknown category {category!r}")
        return priorities

    def save_priorities(self, priorities: Dict[GenerationCategory, List[str]]):
        self.cache.set(
            PRIORITIES_KEY,
            {GenerationCategory(category).value: list(order) for category, order in priorities.items()}
        )

    def load_model_records(self) -> Dict[str, ModelRecord]:
        stored = self.cache.get(MODEL_RECORDS_KEY) or {}
        records = {}
        for model_id, data in stored.items():
            try:
                records[model_id] = ModelRecord.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Discarding corrupt health record for {model_id}: {e}")
        return records

    def save_model_records(self, records: Dict[str, ModelRecord]):
        self.cache.set(MODEL_RECORDS_KEY, {model_id: record.to_dict() for model_id, record in records.items()})

    def close(self):
        self.cache.close()
