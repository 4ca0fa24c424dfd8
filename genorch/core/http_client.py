"""
HTTP client for the local provider proxy

Every provider call is a single round-trip through this client. It never
retries: retry policy belongs to the caller of the provider adapters.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
import aiohttp

from genorch.core.config import settings
from genorch.core.exceptions import TransportError

logger = logging.getLogger(__name__)


@dataclass
class ProxyResponse:
    """Raw response from the proxy"""
    status: int
    text: str
    data: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HTTPClientConfig:
    """Configuration for the proxy client"""

    def __init__(
        self,
        base_url: str = None,
        timeout: int = None,
        user_agent: str = None,
        headers: Dict[str, str] = None,
        limit_per_host: int = 10
    ):
        self.base_url = base_url or settings.PROXY_BASE_URL
        self.timeout = timeout or settings.PROVIDER_REQUEST_TIMEOUT
        self.user_agent = user_agent or settings.PROVIDER_USER_AGENT
        self.headers = headers or {}
        self.limit_per_host = limit_per_host


class ProxyHTTPClient:
    """aiohttp client bound to the provider proxy"""

    def __init__(self, config: HTTPClientConfig = None):
        self.config = config or HTTPClientConfig()
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._create_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _create_session(self):
        if self._session and not self._session.closed:
            return

        headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
            **self.config.headers
        }
        connector = aiohttp.TCPConnector(limit=100, limit_per_host=self.config.limit_per_host)
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers=headers
        )

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def build_url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def request(
        self,
        provider: str,
        method: str,
        path: str,
        api_key: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None
    ) -> ProxyResponse:
        """Perform one request; network failures become TransportError"""
        await self._create_session()

        url = self.build_url(path)
        headers = {"X-API-Key": api_key}
        if payload is not None:
            headers["Content-Type"] = "application/json"

        try:
            async with self._session.request(
                method=method,
                url=url,
                json=payload,
                params=params,
                headers=headers
            ) as response:
                text = await response.text()
                return ProxyResponse(
                    status=response.status,
                    text=text,
                    data=_parse_json(text)
                )

        except asyncio.TimeoutError as e:
            logger.error(f"{provider} {method} {path} timed out after {self.config.timeout}s")
            raise TransportError(provider, f"timed out after {self.config.timeout}s", e)
        except aiohttp.ClientError as e:
            logger.error(f"{provider} {method} {path} failed: {e}")
            raise TransportError(provider, str(e), e)


def _parse_json(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None
