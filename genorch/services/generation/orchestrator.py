"""
Generation orchestrator

Entry point for callers: submit jobs, observe and cancel them, run task
groups, pick models and record their outcomes. Every submitted job gets its
own polling task; results flow back into model health when the job ends.
"""

import abc
import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Set, Union

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)

from genorch.core.config import settings
from genorch.core.exceptions import (
    ConfigurationError, JobNotFoundError, ProviderError,
    TaskGroupNotFoundError, TransportError
)
from genorch.core.http_client import ProxyHTTPClient
from genorch.models.generation import (
    CanonicalConfig, GenerationCategory, GenerationJob, HealthSnapshot,
    JobStatus, OutcomeKind, ProviderName, SegmentDescriptor, Selection,
    SubmitResult
)
from .base_provider import BaseGenerationProvider, get_provider
from .health import ModelHealthTracker
from .normalizer import normalize_status
from .poller import JobCallback, JobPoller, PollState
from .priority import (
    FallbackCallback, FallbackExecutor, FallbackResult, ModelCatalog,
    ModelOperation, PrioritySelector
)
from .storage import InMemoryStateStore, StateStore
from .task_group import TaskGroup, TaskGroupCoordinator

logger = logging.getLogger(__name__)


class CredentialProvider(abc.ABC):
    """Supplies the API key for a provider"""

    @abc.abstractmethod
    def get_api_key(self, provider: ProviderName) -> str:
        pass


class SettingsCredentialProvider(CredentialProvider):
    """Reads ``<PROVIDER>_API_KEY`` from settings"""

    def __init__(self, source=None):
        self.source = source or settings

    def get_api_key(self, provider: ProviderName) -> str:
        provider = ProviderName(provider)
        field_name = f"{provider.value.upper()}_API_KEY"
        api_key = getattr(self.source, field_name, "")
        if not api_key:
            raise ConfigurationError(f"{field_name} is not configured")
        return api_key


class StaticCredentialProvider(CredentialProvider):
    """Keys handed over directly, e.g. from a settings screen"""

    def __init__(self, keys: Dict[Any, str]):
        self.keys = {ProviderName(name): key for name, key in keys.items()}

    def get_api_key(self, provider: ProviderName) -> str:
        api_key = self.keys.get(ProviderName(provider))
        if not api_key:
            raise ConfigurationError(f"No API key configured for {ProviderName(provider).value}")
        return api_key


class GenerationOrchestrator:
    """Facade over providers, polling, health and priority selection"""

    def __init__(
        self,
        credentials: Optional[CredentialProvider] = None,
        store: Optional[StateStore] = None,
        catalog: Optional[ModelCatalog] = None,
        providers: Optional[Dict[ProviderName, BaseGenerationProvider]] = None,
        http_client: Optional[ProxyHTTPClient] = None,
        poll_interval: Optional[float] = None,
        poll_backoff_factor: Optional[float] = None,
        poll_max_interval: Optional[float] = None,
        submit_max_attempts: Optional[int] = None,
        task_group_concurrency: Optional[int] = None,
        on_progress: Optional[JobCallback] = None,
        on_fallback: Optional[FallbackCallback] = None,
        health: Optional[ModelHealthTracker] = None
    ):
        self.credentials = credentials or SettingsCredentialProvider()
        self.store = store or InMemoryStateStore()
        self.http_client = http_client or ProxyHTTPClient()
        self._providers: Dict[ProviderName, BaseGenerationProvider] = {
            ProviderName(name): provider for name, provider in (providers or {}).items()
        }

        self.health = health or ModelHealthTracker(self.store)
        self.selector = PrioritySelector(self.health, catalog, self.store)
        self.fallback = FallbackExecutor(self.selector, self.health, on_fallback)
        self.task_groups = TaskGroupCoordinator(self, task_group_concurrency)

        self.poll_interval = settings.POLL_INTERVAL if poll_interval is None else poll_interval
        self.poll_backoff_factor = poll_backoff_factor or settings.POLL_BACKOFF_FACTOR
        self.poll_max_interval = poll_max_interval or settings.POLL_MAX_INTERVAL
        self.submit_max_attempts = submit_max_attempts or settings.SUBMIT_MAX_ATTEMPTS
        self.on_progress = on_progress

        self._jobs: Dict[str, GenerationJob] = {}
        self._pollers: Dict[str, JobPoller] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._group_tasks: Set[asyncio.Task] = set()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Stop local polling and release the HTTP session"""
        for poller in self._pollers.values():
            poller.cancel()
        for group in self.task_groups.groups.values():
            group.cancelled = True
        tasks = [task for task in self._tasks.values() if not task.done()]
        tasks.extend(task for task in self._group_tasks if not task.done())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.http_client.close()
        for provider in self._providers.values():
            if provider.http_client is not self.http_client:
                await provider.http_client.close()
        self.store.close()

    # Jobs

    async def submit(
        self,
        category: GenerationCategory,
        prompt: str,
        config: Union[CanonicalConfig, Dict[str, Any], None] = None,
        reference_asset: Optional[str] = None,
        model_id: Optional[str] = None
    ) -> str:
        """Submit one job and start polling it; returns the provider job id"""
        category = GenerationCategory(category)
        config = self._canonical_config(config)
        if not prompt or not prompt.strip():
            raise ConfigurationError("Prompt must not be empty")

        if model_id is None:
            model_id = self.selector.select(category).model_id

        spec = self.selector.catalog.get(model_id)
        if spec.category != category:
            raise ConfigurationError(f"Model {model_id} does not serve {category.value}")
        if spec.provider is None:
            raise ConfigurationError(f"Model {model_id} has no provider adapter")

        provider = self._get_provider(spec.provider)
        api_key = self.credentials.get_api_key(spec.provider)

        try:
            submitted = await self._submit_with_retry(provider, prompt, reference_asset, config, api_key)
        except (ProviderError, TransportError) as e:
            logger.error(f"Submission to {provider.name.value} for {model_id} failed: {e}")
            await self.health.record_outcome(model_id, OutcomeKind.FAILURE, str(e))
            raise

        initial = normalize_status(provider.name, submitted.status)
        job = GenerationJob(
            id=submitted.id,
            provider=provider.name,
            category=category,
            config=config,
            prompt=prompt,
            model_id=model_id,
            reference_asset=reference_asset,
            status=initial if initial == JobStatus.PROCESSING else JobStatus.QUEUED,
            progress=submitted.progress if initial == JobStatus.PROCESSING else 0,
        )
        self._start_polling(job, provider, api_key)

        logger.info(f"Submitted {category.value} job {job.id} to {provider.name.value} ({model_id})")
        return job.id

    def get_status(self, job_id: str) -> GenerationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def wait(self, job_id: str) -> GenerationJob:
        """Wait until the job is terminal or its polling was cancelled"""
        job = self.get_status(job_id)
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return job

    def cancel(self, job_id: str):
        """Stop polling a job locally; the provider is not told"""
        self.get_status(job_id)
        poller = self._pollers.get(job_id)
        if poller:
            poller.cancel()

    async def resubmit(self, job_id: str) -> str:
        """Submit a new job with the same inputs as an existing one"""
        job = self.get_status(job_id)
        if not job.is_terminal and not self._pollers[job_id].cancelled:
            raise ConfigurationError(f"Job {job_id} is still {job.status.value}, cancel it before resubmitting")

        logger.info(f"Resubmitting job {job_id}")
        return await self.submit(
            job.category,
            job.prompt,
            job.config,
            reference_asset=job.reference_asset,
            model_id=job.model_id
        )

    def poll_state(self, job_id: str) -> PollState:
        self.get_status(job_id)
        return self._pollers[job_id].state

    # Models

    def select_model(self, category: GenerationCategory) -> Selection:
        return self.selector.select(category)

    async def record_outcome(
        self,
        model_id: str,
        success: Union[bool, OutcomeKind],
        error: Optional[str] = None
    ) -> HealthSnapshot:
        if isinstance(success, bool):
            return await self.health.record(model_id, success, error)
        return await self.health.record_outcome(model_id, success, error)

    def get_model_health(self, model_id: str) -> HealthSnapshot:
        return self.health.get_health(model_id)

    async def submit_with_fallback(
        self,
        category: GenerationCategory,
        operation: ModelOperation,
        initial_model: Optional[str] = None
    ) -> FallbackResult:
        """Run a caller-supplied per-model operation along the priority chain"""
        return await self.fallback.execute(category, operation, initial_model)

    # Task groups

    async def submit_task_group(
        self,
        shots: Sequence[SegmentDescriptor],
        config: Union[CanonicalConfig, Dict[str, Any], None] = None,
        category: GenerationCategory = GenerationCategory.VIDEO,
        model_id: Optional[str] = None,
        wait: bool = True
    ) -> TaskGroup:
        group = self.task_groups.create_group(shots, self._canonical_config(config), category, model_id)
        if wait:
            await self.task_groups.run(group)
        else:
            task = asyncio.create_task(self.task_groups.run(group))
            self._group_tasks.add(task)
            task.add_done_callback(self._group_tasks.discard)
        return group

    def get_task_group(self, group_id: str) -> TaskGroup:
        group = self.task_groups.groups.get(group_id)
        if group is None:
            raise TaskGroupNotFoundError(group_id)
        return group

    def cancel_task_group(self, group_id: str):
        self.task_groups.cancel(self.get_task_group(group_id))

    async def retry_segment(self, group_id: str, segment_id: str) -> Optional[GenerationJob]:
        return await self.task_groups.retry_segment(self.get_task_group(group_id), segment_id)

    # Internals

    def _canonical_config(self, config) -> CanonicalConfig:
        if isinstance(config, CanonicalConfig):
            return config
        return CanonicalConfig.from_dict(config)

    def _get_provider(self, name: ProviderName) -> BaseGenerationProvider:
        name = ProviderName(name)
        if name not in self._providers:
            self._providers[name] = get_provider(name, http_client=self.http_client)
        return self._providers[name]

    async def _submit_with_retry(
        self,
        provider: BaseGenerationProvider,
        prompt: str,
        reference_asset: Optional[str],
        config: CanonicalConfig,
        api_key: str
    ) -> SubmitResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.submit_max_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=settings.SUBMIT_RETRY_MIN_WAIT,
                max=settings.SUBMIT_RETRY_MAX_WAIT
            ),
            retry=retry_if_exception_type(TransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )
        async for attempt in retrying:
            with attempt:
                return await provider.submit_task(prompt, reference_asset, config, api_key)

    def _start_polling(self, job: GenerationJob, provider: BaseGenerationProvider, api_key: str):
        poller = JobPoller(
            provider,
            job,
            api_key,
            interval=self.poll_interval,
            backoff_factor=self.poll_backoff_factor,
            max_interval=self.poll_max_interval,
            on_progress=self.on_progress
        )
        self._jobs[job.id] = job
        self._pollers[job.id] = poller
        self._tasks[job.id] = asyncio.create_task(self._run_poller(poller))

    async def _run_poller(self, poller: JobPoller) -> GenerationJob:
        job = await poller.run()
        if job.is_terminal and job.model_id:
            error = job.error.message if job.error else None
            await self.health.record_outcome(job.model_id, job.outcome, error)
        return job
