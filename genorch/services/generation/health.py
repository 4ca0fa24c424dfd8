"""
Model health tracking

Keeps per-model success/failure counters and derives a healthy flag from the
run of consecutive failures. Counters only move forward; an operator reset is
the only way to clear them.
"""

import asyncio
import logging
import time
from collections import defaultdict
from typing import Dict, Optional

from genorch.core.config import settings
from genorch.models.generation import HealthSnapshot, ModelRecord, OutcomeKind
from .storage import InMemoryStateStore, StateStore

logger = logging.getLogger(__name__)


class ModelHealthTracker:
    """Per-model health bookkeeping with an injected state store"""

    def __init__(
        self,
        store: Optional[StateStore] = None,
        failure_threshold: Optional[int] = None,
        content_policy_affects_health: Optional[bool] = None
    ):
        self.store = store or InMemoryStateStore()
        self.failure_threshold = failure_threshold or settings.HEALTH_FAILURE_THRESHOLD
        if content_policy_affects_health is None:
            content_policy_affects_health = settings.CONTENT_POLICY_AFFECTS_HEALTH
        self.content_policy_affects_health = content_policy_affects_health

        self._records: Dict[str, ModelRecord] = self.store.load_model_records()
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def record(self, model_id: str, success: bool, error: Optional[str] = None) -> HealthSnapshot:
        outcome = OutcomeKind.SUCCESS if success else OutcomeKind.FAILURE
        return await self.record_outcome(model_id, outcome, error)

    async def record_outcome(
        self,
        model_id: str,
        outcome: OutcomeKind,
        error: Optional[str] = None
    ) -> HealthSnapshot:
        """Apply one terminal outcome to a model's record"""
        outcome = OutcomeKind(outcome)

        async with self._locks[model_id]:
            record = self._records.get(model_id)
            if record is None:
                record = ModelRecord(model_id=model_id)
                self._records[model_id] = record

            now = time.time()
            was_healthy = self._is_healthy(record)

            if outcome == OutcomeKind.SUCCESS:
                record.success_count += 1
                record.consecutive_failures = 0
                record.last_success_at = now
            elif outcome == OutcomeKind.CONTENT_POLICY and not self.content_policy_affects_health:
                record.content_policy_count += 1
                record.last_error = error
            else:
                if outcome == OutcomeKind.CONTENT_POLICY:
                    record.content_policy_count += 1
                record.failure_count += 1
                record.consecutive_failures += 1
                record.last_failure_at = now
                record.last_error = error

            self._persist()
            snapshot = self._snapshot_of(record)

        if was_healthy and not snapshot.healthy:
            logger.warning(
                f"Model {model_id} marked unhealthy after {record.consecutive_failures} consecutive failures"
            )
        elif not was_healthy and snapshot.healthy:
            logger.info(f"Model {model_id} recovered")

        return snapshot

    def get_health(self, model_id: str) -> HealthSnapshot:
        record = self._records.get(model_id)
        if record is None:
            return HealthSnapshot(model_id=model_id, healthy=True, success_rate=0.0, consecutive_failures=0)
        return self._snapshot_of(record)

    def snapshot(self) -> Dict[str, HealthSnapshot]:
        """Consistent copy of every known model's health"""
        return {model_id: self._snapshot_of(record) for model_id, record in self._records.items()}

    def is_healthy(self, model_id: str) -> bool:
        return self.get_health(model_id).healthy

    async def reset(self, model_id: Optional[str] = None):
        """Operator reset of one model, or of every model when no id is given"""
        if model_id is None:
            self._records.clear()
            logger.info("Reset health records for all models")
        else:
            async with self._locks[model_id]:
                self._records.pop(model_id, None)
            logger.info(f"Reset health record for {model_id}")
        self._persist()

    def _is_healthy(self, record: ModelRecord) -> bool:
        return record.consecutive_failures < self.failure_threshold

    def _snapshot_of(self, record: ModelRecord) -> HealthSnapshot:
        total = record.success_count + record.failure_count
        success_rate = record.success_count / total if total else 0.0
        return HealthSnapshot(
            model_id=record.model_id,
            healthy=self._is_healthy(record),
            success_rate=success_rate,
            consecutive_failures=record.consecutive_failures,
            success_count=record.success_count,
            failure_count=record.failure_count
        )

    def _persist(self):
        self.store.save_model_records(self._records)
