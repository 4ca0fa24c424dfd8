import asyncio
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from genorch.core.exceptions import ContentPolicyError
from genorch.models.generation import (
    CanonicalConfig, JobStatus, ProviderName, StatusResult, SubmitResult
)
from genorch.services.generation.base_provider import BaseGenerationProvider
from genorch.services.generation.orchestrator import (
    GenerationOrchestrator, StaticCredentialProvider
)
from genorch.services.generation.storage import InMemoryStateStore


def queued() -> StatusResult:
    return StatusResult(task_id="", status=JobStatus.QUEUED, progress=0)


def processing(progress: int) -> StatusResult:
    return StatusResult(task_id="", status=JobStatus.PROCESSING, progress=progress)


def completed(url: str = "https://cdn.example.com/video.mp4") -> StatusResult:
    return StatusResult(
        task_id="", status=JobStatus.COMPLETED, progress=100, video_url=url, quality="standard"
    )


def failed(reason: str = "upstream exploded", content_policy: bool = False) -> StatusResult:
    return StatusResult(
        task_id="",
        status=JobStatus.ERROR,
        is_compliant=not content_policy,
        violation_reason=reason if content_policy else None,
        error_message=reason
    )


class FakeProvider(BaseGenerationProvider):
    """Scripted provider: every task replays a list of status results

    Items are StatusResult templates or exceptions to raise; the last item
    repeats once the script runs out.
    """

    display_name = "Fake"

    def __init__(self, name: ProviderName = ProviderName.YUNWU):
        super().__init__()
        self.name = name
        self.default_script: List[Any] = [completed()]
        self.scripts_by_prompt: Dict[str, List[Any]] = {}
        self.submit_errors: List[Exception] = []
        self.submitted: List[Dict[str, Any]] = []
        self.checks: List[str] = []
        self.active = 0
        self.max_active = 0
        self._scripts: Dict[str, List[Any]] = {}
        self._terminal: set = set()

    def script(self, *items, prompt: Optional[str] = None):
        if prompt is None:
            self.default_script = list(items)
        else:
            self.scripts_by_prompt[prompt] = list(items)

    def transform_config(self, config: CanonicalConfig) -> Dict[str, Any]:
        return config.to_dict()

    async def submit_task(self, prompt, reference_asset, config, api_key) -> SubmitResult:
        self.submitted.append({
            "prompt": prompt,
            "reference_asset": reference_asset,
            "config": config,
            "api_key": api_key
        })
        await asyncio.sleep(0)
        if self.submit_errors:
            raise self.submit_errors.pop(0)

        task_id = f"{self.name.value}-task-{len(self.submitted)}"
        self._scripts[task_id] = list(self.scripts_by_prompt.get(prompt, self.default_script))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        return SubmitResult(id=task_id, status="queued", progress=0, created_at=0.0)

    async def check_status(self, task_id, api_key, on_progress=None) -> StatusResult:
        self.checks.append(task_id)
        await asyncio.sleep(0)

        script = self._scripts[task_id]
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, BaseException):
            self._finish(task_id)
            raise item

        result = StatusResult(**{**item.__dict__, "task_id": task_id})
        if result.status.is_terminal:
            self._finish(task_id)
        self._report_progress(on_progress, result.progress)
        return result

    def _finish(self, task_id: str):
        if task_id not in self._terminal:
            self._terminal.add(task_id)
            self.active -= 1


class PolicyViolation(ContentPolicyError):
    def __init__(self, provider: str = "fake"):
        super().__init__(provider, "prompt flagged by moderation")


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def credentials():
    return StaticCredentialProvider({name: f"{name.value}-key" for name in ProviderName})


@pytest.fixture
def fake_providers():
    return {name: FakeProvider(name) for name in ProviderName}


@pytest.fixture
def fake_provider(fake_providers):
    """Provider behind the default first-choice video model"""
    return fake_providers[ProviderName.YUNWU]


@pytest_asyncio.fixture
async def orchestrator(credentials, store, fake_providers):
    orch = GenerationOrchestrator(
        credentials=credentials,
        store=store,
        providers=fake_providers,
        poll_interval=0
    )
    yield orch
    await orch.close()


@pytest.fixture
def mock_http_client(mocker):
    """Stand-in for ProxyHTTPClient with a scripted ``request``"""
    client = mocker.Mock()
    client.request = mocker.AsyncMock()
    client.close = mocker.AsyncMock()
    return client
