"""
Base provider class for generation back-ends
"""

import abc
import logging
from typing import Any, Callable, Dict, List, Optional, Type

from genorch.core.exceptions import ConfigurationError, ProviderError
from genorch.core.http_client import ProxyHTTPClient
from genorch.models.generation import (
    CanonicalConfig, JobStatus, ProviderName, StatusResult, SubmitResult
)
from .normalizer import failure_message, is_content_policy_reason

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

# Upstream model names per provider: (standard, hd)
MODEL_NAMES: Dict[ProviderName, Dict[str, str]] = {
    ProviderName.YUNWU: {"sd": "sora-2-all", "hd": "sora-2-pro-all"},
    ProviderName.SUTU: {"sd": "sora2-new", "hd": "sora2-pro"},
    ProviderName.KIE: {"sd": "sora-2-image-to-video", "hd": "sora-2-pro-image-to-video"},
    ProviderName.YIJIAPI: {"sd": "sora-2-yijia", "hd": "sora-2-pro-25s-yijia"},
    ProviderName.DAYUAPI: {"sd": "sora-2", "hd": "sora-2-pro"},
}

DEFAULT_MODEL_NAME = "sora-2"


def get_model_name(provider: ProviderName, hd: bool) -> str:
    """Upstream model name for a provider and quality tier"""
    names = MODEL_NAMES.get(ProviderName(provider))
    if not names:
        logger.warning(f"No model names configured for {provider}, using {DEFAULT_MODEL_NAME}")
        return DEFAULT_MODEL_NAME
    return names["hd" if hd else "sd"]


class BaseGenerationProvider(abc.ABC):
    """Base class for all generation providers

    One instance per back-end. ``submit_task`` and ``check_status`` are each
    exactly one round-trip through the proxy client: no caching, no retry.
    """

    name: ProviderName
    display_name: str = ""

    def __init__(self, http_client: Optional[ProxyHTTPClient] = None):
        self.http_client = http_client or ProxyHTTPClient()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.http_client.close()

    @abc.abstractmethod
    def transform_config(self, config: CanonicalConfig) -> Dict[str, Any]:
        """Convert the canonical config into provider fields"""
        pass

    @abc.abstractmethod
    async def submit_task(
        self,
        prompt: str,
        reference_asset: Optional[str],
        config: CanonicalConfig,
        api_key: str
    ) -> SubmitResult:
        """Submit a generation task"""
        pass

    @abc.abstractmethod
    async def check_status(
        self,
        task_id: str,
        api_key: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> StatusResult:
        """Query one task and return its normalized status"""
        pass

    def _require_key(self, api_key: Optional[str]) -> str:
        if not api_key:
            raise ConfigurationError(f"{self.display_name or self.name.value} API key not configured")
        return api_key

    async def _call(
        self,
        method: str,
        path: str,
        api_key: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        action: str = "request"
    ) -> Dict[str, Any]:
        """One proxy round-trip; non-2xx or non-JSON bodies raise ProviderError"""
        response = await self.http_client.request(
            self.name.value,
            method,
            path,
            api_key=self._require_key(api_key),
            payload=payload,
            params=params
        )

        if not response.ok:
            logger.error(f"{self.display_name} {action} failed: HTTP {response.status}")
            raise ProviderError(
                self.name.value,
                response.status,
                body=response.text,
                message=f"{action} failed: {response.text[:200]}"
            )

        if not isinstance(response.data, dict):
            raise ProviderError(
                self.name.value,
                response.status,
                body=response.text,
                message=f"{action} returned a non-JSON body"
            )

        return response.data

    @staticmethod
    def _report_progress(on_progress: Optional[ProgressCallback], progress: int):
        if on_progress:
            on_progress(progress)

    def _error_result(
        self,
        task_id: str,
        reason: Any,
        progress: int = 0,
        raw: Any = None
    ) -> StatusResult:
        """Terminal failure result with the provider reason kept verbatim"""
        message = failure_message(reason)
        policy = is_content_policy_reason(message)
        return StatusResult(
            task_id=task_id,
            status=JobStatus.ERROR,
            progress=progress,
            quality="unknown",
            is_compliant=not policy,
            violation_reason=message if policy else None,
            error_message=message,
            raw=raw
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name.value!r})"


def coerce_progress(value: Any) -> int:
    """Clamp a provider progress value into 0..100"""
    try:
        progress = int(float(value))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, progress))


# Provider registry for dynamic lookup
PROVIDER_REGISTRY: Dict[ProviderName, Type[BaseGenerationProvider]] = {}


def register_provider(name: ProviderName, provider_class: Type[BaseGenerationProvider]):
    """Register a provider class in the registry"""
    PROVIDER_REGISTRY[ProviderName(name)] = provider_class


def get_provider_class(name: Any) -> Type[BaseGenerationProvider]:
    try:
        key = ProviderName(name)
    except ValueError:
        key = None

    if key is None or key not in PROVIDER_REGISTRY:
        supported = ", ".join(p.value for p in PROVIDER_REGISTRY)
        raise ConfigurationError(f"Unknown provider: {name} (supported: {supported})")

    return PROVIDER_REGISTRY[key]


def get_provider(name: Any, **kwargs) -> BaseGenerationProvider:
    """Get a provider instance by name"""
    provider_class = get_provider_class(name)
    return provider_class(**kwargs)


def get_registered_providers() -> List[ProviderName]:
    return list(PROVIDER_REGISTRY.keys())


def is_provider_available(name: Any) -> bool:
    try:
        get_provider_class(name)
    except ConfigurationError:
        return False
    return True
