"""
Generation Services Package

Provider adapters for the Sora 2 back-ends, status normalization, job
polling, model health and priority selection, task groups and the
orchestrator that ties them together.
"""

from .providers import (
    KieProvider,
    YunwuProvider,
    DayuapiProvider,
    SutuProvider,
    YijiapiProvider
)

from .base_provider import BaseGenerationProvider, get_provider, register_provider
from .health import ModelHealthTracker
from .priority import FallbackExecutor, FallbackResult, ModelCatalog, PrioritySelector
from .poller import JobPoller, PollState
from .storage import DiskCacheStateStore, InMemoryStateStore, StateStore
from .task_group import TaskGroup, TaskGroupCoordinator, build_story_prompt
from .orchestrator import (
    CredentialProvider,
    GenerationOrchestrator,
    SettingsCredentialProvider,
    StaticCredentialProvider
)

__all__ = [
    "KieProvider",
    "YunwuProvider",
    "DayuapiProvider",
    "SutuProvider",
    "YijiapiProvider",
    "BaseGenerationProvider",
    "get_provider",
    "register_provider",
    "ModelHealthTracker",
    "FallbackExecutor",
    "FallbackResult",
    "ModelCatalog",
    "PrioritySelector",
    "JobPoller",
    "PollState",
    "DiskCacheStateStore",
    "InMemoryStateStore",
    "StateStore",
    "TaskGroup",
    "TaskGroupCoordinator",
    "build_story_prompt",
    "CredentialProvider",
    "GenerationOrchestrator",
    "SettingsCredentialProvider",
    "StaticCredentialProvider",
]
