"""
Concrete implementations of generation providers

Every provider is reached through the local proxy with an ``X-API-Key``
header and a JSON body. Config defaults per provider:

- kie: landscape/portrait, n_frames = duration, watermark always removed
- yunwu: orientation, integer duration, size large (hd) / medium
- dayuapi: everything encoded in the model name
- sutu: pro tier when hd (15s or 25s), standard tier otherwise (10s or 15s)
- yijiapi: pixel size, 1080p only for hd landscape
"""

import json
import logging
import time
from typing import Any, Dict, Optional

from genorch.core.exceptions import ProviderError
from genorch.models.generation import (
    AspectRatio, CanonicalConfig, JobStatus, ProviderName, StatusResult,
    SubmitResult, VideoDuration
)
from .base_provider import (
    BaseGenerationProvider,
    ProgressCallback,
    coerce_progress,
    get_model_name,
    register_provider
)
from .normalizer import normalize_status

logger = logging.getLogger(__name__)


def _orientation(config: CanonicalConfig) -> str:
    return "landscape" if config.aspect_ratio == AspectRatio.LANDSCAPE else "portrait"


def _require_task_id(provider: ProviderName, task_id: Any, result: Any) -> str:
    if not task_id:
        raise ProviderError(provider.value, 500, body=result, message="response did not include a task id")
    return str(task_id)


class KieProvider(BaseGenerationProvider):
    """KIE AI Sora 2 provider

    Parameters are wrapped in an ``input`` object and responses use a
    ``{code, msg, data}`` envelope. The finished video URL lives inside
    ``data.resultJson``, a JSON *string*.
    """

    name = ProviderName.KIE
    display_name = "KIE AI"

    # KIE reports no usable percentage, progress is estimated from state
    PROGRESS_BY_STATE = {
        "waiting": 10,
        "queuing": 20,
        "generating": 60,
        "success": 100,
        "fail": 0,
    }

    def transform_config(self, config: CanonicalConfig) -> Dict[str, Any]:
        return {
            "aspect_ratio": _orientation(config),
            "n_frames": config.duration.value,
            "remove_watermark": True,
        }

    async def submit_task(
        self,
        prompt: str,
        reference_asset: Optional[str],
        config: CanonicalConfig,
        api_key: str
    ) -> SubmitResult:
        provider_config = self.transform_config(config)
        model = get_model_name(self.name, config.hd)

        task_input = {"prompt": prompt, **provider_config}
        if reference_asset:
            task_input["image_urls"] = [reference_asset]

        result = await self._call(
            "POST", "/api/kie/create", api_key,
            payload={"model": model, "input": task_input},
            action="submit"
        )

        if result.get("code") != 200:
            raise ProviderError(
                self.name.value,
                result.get("code") or 500,
                body=result,
                message=f"KIE API returned an error: {result.get('msg')}"
            )

        task_id = _require_task_id(self.name, (result.get("data") or {}).get("taskId"), result)
        logger.info(f"KIE AI task submitted: {task_id} (model={model})")

        return SubmitResult(id=task_id, status="queued", progress=0, created_at=time.time())

    async def check_status(
        self,
        task_id: str,
        api_key: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> StatusResult:
        data = await self._call(
            "GET", "/api/kie/query", api_key,
            params={"taskId": task_id},
            action="status check"
        )

        if data.get("code") != 200:
            return self._error_result(
                task_id, data.get("message") or data.get("msg") or "Status query failed", raw=data
            )

        task_data = data.get("data") or {}
        state = task_data.get("state") or task_data.get("status")
        status = normalize_status(self.name, state)
        progress = self.PROGRESS_BY_STATE.get(state, 50)

        self._report_progress(on_progress, progress)

        if status == JobStatus.ERROR:
            reason = task_data.get("failMsg") or task_data.get("error") or task_data.get("message")
            return self._error_result(task_id, reason, progress, raw=data)

        video_url = self._extract_video_url(task_data)
        duration = task_data.get("duration") or task_data.get("n_frames")

        return StatusResult(
            task_id=task_id,
            status=status,
            progress=progress,
            video_url=video_url,
            duration=str(duration) if duration is not None else None,
            quality="standard",
            raw=data
        )

    def _extract_video_url(self, task_data: Dict[str, Any]) -> Optional[str]:
        result_json = task_data.get("resultJson")
        if result_json:
            try:
                result_obj = json.loads(result_json) if isinstance(result_json, str) else result_json
            except ValueError:
                logger.error(f"KIE AI resultJson could not be parsed: {str(result_json)[:200]}")
                result_obj = {}
            urls = result_obj.get("resultUrls") if isinstance(result_obj, dict) else None
            if isinstance(urls, list) and urls:
                return urls[0]

        output = task_data.get("output")
        if isinstance(output, dict) and output.get("url"):
            return output["url"]
        return task_data.get("videoUrl") or task_data.get("url") or task_data.get("video_url")


class YunwuProvider(BaseGenerationProvider):
    """Yunwu provider

    Status responses nest everything under a ``detail`` object.
    """

    name = ProviderName.YUNWU
    display_name = "Yunwu API"

    def transform_config(self, config: CanonicalConfig) -> Dict[str, Any]:
        return {
            "orientation": _orientation(config),
            "duration": config.seconds,
            "size": "large" if config.hd else "medium",
            "watermark": False,
        }

    async def submit_task(
        self,
        prompt: str,
        reference_asset: Optional[str],
        config: CanonicalConfig,
        api_key: str
    ) -> SubmitResult:
        payload = {
            "prompt": prompt,
            "model": get_model_name(self.name, config.hd),
            "images": [reference_asset] if reference_asset else [],
            **self.transform_config(config)
        }

        result = await self._call("POST", "/api/yunwu/create", api_key, payload=payload, action="submit")
        task_id = _require_task_id(self.name, result.get("id"), result)
        logger.info(f"Yunwu task submitted: {task_id}")

        return SubmitResult(
            id=task_id,
            status=result.get("status") or "pending",
            progress=0,
            created_at=time.time()
        )

    async def check_status(
        self,
        task_id: str,
        api_key: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> StatusResult:
        data = await self._call(
            "GET", "/api/yunwu/query", api_key,
            params={"id": task_id},
            action="status check"
        )

        detail = data.get("detail") or {}
        progress = coerce_progress(detail.get("progress_pct"))
        generations = detail.get("generations") or []
        video_url = generations[0].get("url") if generations and isinstance(generations[0], dict) else None

        self._report_progress(on_progress, progress)

        status = normalize_status(self.name, detail.get("status"))
        resolved_id = data.get("id") or task_id

        if status == JobStatus.ERROR:
            return self._error_result(resolved_id, detail.get("failure_reason"), progress, raw=data)

        duration = (detail.get("input") or {}).get("duration")

        return StatusResult(
            task_id=resolved_id,
            status=status,
            progress=progress,
            video_url=video_url,
            duration=str(duration) if duration is not None else None,
            quality="standard",
            raw=data
        )


class DayuapiProvider(BaseGenerationProvider):
    """Dayuapi provider

    Aspect ratio, duration and tier are selected purely through the model
    name, e.g. ``sora-2-pro-portrait-15s``.
    """

    name = ProviderName.DAYUAPI
    display_name = "Dayuapi"

    def transform_config(self, config: CanonicalConfig) -> Dict[str, Any]:
        base = get_model_name(self.name, config.hd)
        return {"model": f"{base}-{_orientation(config)}-{config.duration.value}s"}

    async def submit_task(
        self,
        prompt: str,
        reference_asset: Optional[str],
        config: CanonicalConfig,
        api_key: str
    ) -> SubmitResult:
        payload = {"prompt": prompt, **self.transform_config(config)}
        if reference_asset:
            payload["image_url"] = reference_asset

        result = await self._call("POST", "/api/dayuapi/create", api_key, payload=payload, action="submit")
        task_id = _require_task_id(self.name, result.get("id"), result)
        logger.info(f"Dayuapi task submitted: {task_id} (model={payload['model']})")

        return SubmitResult(
            id=task_id,
            status=result.get("status") or "queued",
            progress=coerce_progress(result.get("progress")),
            created_at=time.time()
        )

    async def check_status(
        self,
        task_id: str,
        api_key: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> StatusResult:
        data = await self._call(
            "GET", "/api/dayuapi/query", api_key,
            params={"id": task_id},
            action="status check"
        )

        status = normalize_status(self.name, data.get("status"))
        progress = coerce_progress(data.get("progress"))
        if status == JobStatus.COMPLETED:
            progress = 100

        self._report_progress(on_progress, progress)

        if status == JobStatus.ERROR:
            return self._error_result(task_id, data.get("error") or data.get("message"), progress, raw=data)

        seconds = data.get("seconds")
        return StatusResult(
            task_id=task_id,
            status=status,
            progress=progress,
            video_url=self._extract_video_url(data),
            duration=str(seconds) if seconds is not None else None,
            quality=data.get("quality") or "standard",
            raw=data
        )

    @staticmethod
    def _extract_video_url(data: Dict[str, Any]) -> Optional[str]:
        output = data.get("output")
        if isinstance(output, list) and output and isinstance(output[0], dict):
            return output[0].get("url")
        if isinstance(output, dict):
            return output.get("url")
        return data.get("url")


class SutuProvider(BaseGenerationProvider):
    """Sutu provider

    The hd flag switches between the standard and the Pro endpoint tier, each
    of which accepts a different set of durations.
    """

    name = ProviderName.SUTU
    display_name = "Sutu API"

    # Sutu reports numeric states and no percentage
    PROGRESS_BY_STATUS = {
        JobStatus.QUEUED: 0,
        JobStatus.PROCESSING: 50,
        JobStatus.COMPLETED: 100,
        JobStatus.ERROR: 0,
    }

    def transform_config(self, config: CanonicalConfig) -> Dict[str, Any]:
        if config.hd:
            # Pro tier: 15s HD or 25s SD
            duration = "25" if config.duration == VideoDuration.LONG else "15"
            return {
                "tier": "pro",
                "aspectRatio": config.aspect_ratio.value,
                "duration": duration,
            }

        duration = "10" if config.duration == VideoDuration.SHORT else "15"
        return {
            "tier": "standard",
            "aspectRatio": config.aspect_ratio.value,
            "duration": duration,
            "size": "small",
        }

    async def submit_task(
        self,
        prompt: str,
        reference_asset: Optional[str],
        config: CanonicalConfig,
        api_key: str
    ) -> SubmitResult:
        payload = {
            "prompt": prompt,
            "model": get_model_name(self.name, config.hd),
            **self.transform_config(config)
        }
        if reference_asset:
            payload["url"] = reference_asset

        result = await self._call("POST", "/api/sutu/submit", api_key, payload=payload, action="submit")

        if result.get("code") not in (200, 0):
            raise ProviderError(
                self.name.value,
                result.get("code") or 500,
                body=result,
                message=f"Sutu API error: {result.get('msg') or 'unknown error'}"
            )

        task_id = _require_task_id(self.name, (result.get("data") or {}).get("id"), result)
        logger.info(f"Sutu task submitted: {task_id} (tier={payload['tier']})")

        return SubmitResult(id=task_id, status="queued", progress=0, created_at=time.time())

    async def check_status(
        self,
        task_id: str,
        api_key: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> StatusResult:
        result = await self._call(
            "GET", "/api/sutu/detail", api_key,
            params={"id": task_id},
            action="status check"
        )

        task_data = result.get("data") or {}
        native = task_data.get("status")
        status = normalize_status(self.name, 0 if native is None else native)
        progress = self.PROGRESS_BY_STATUS[status]

        self._report_progress(on_progress, progress)

        if status == JobStatus.ERROR:
            return self._error_result(task_id, task_data.get("fail_reason") or result.get("msg"), raw=result)

        return StatusResult(
            task_id=task_id,
            status=status,
            progress=progress,
            video_url=task_data.get("remote_url"),
            quality="standard",
            raw=result
        )


class YijiapiProvider(BaseGenerationProvider):
    """Yijiapi provider (OpenAI-style video endpoints)"""

    name = ProviderName.YIJIAPI
    display_name = "Yijiapi"

    MODEL = "sora-2-yijia"

    def transform_config(self, config: CanonicalConfig) -> Dict[str, Any]:
        if config.aspect_ratio == AspectRatio.PORTRAIT:
            # no 1080p portrait tier
            width, height = 720, 1280
        else:
            width, height = (1920, 1080) if config.hd else (1280, 720)

        return {"model": self.MODEL, "size": f"{width}x{height}"}

    async def submit_task(
        self,
        prompt: str,
        reference_asset: Optional[str],
        config: CanonicalConfig,
        api_key: str
    ) -> SubmitResult:
        payload = {"prompt": prompt, **self.transform_config(config)}
        if reference_asset:
            payload["input_reference"] = reference_asset

        result = await self._call("POST", "/api/yijiapi/videos", api_key, payload=payload, action="submit")
        task_id = _require_task_id(self.name, result.get("id"), result)
        logger.info(f"Yijiapi task submitted: {task_id} (size={payload['size']})")

        created_at = result.get("created_at")
        return SubmitResult(
            id=task_id,
            status=result.get("status") or "queued",
            progress=coerce_progress(result.get("progress")),
            created_at=float(created_at) if created_at else time.time()
        )

    async def check_status(
        self,
        task_id: str,
        api_key: str,
        on_progress: Optional[ProgressCallback] = None
    ) -> StatusResult:
        data = await self._call(
            "GET", f"/api/yijiapi/videos/{task_id}", api_key,
            action="status check"
        )

        status = normalize_status(self.name, data.get("status") or "queued")
        progress = coerce_progress(data.get("progress"))

        self._report_progress(on_progress, progress)

        if status == JobStatus.ERROR:
            return self._error_result(task_id, data.get("error") or data.get("message"), progress, raw=data)

        seconds = data.get("seconds")
        return StatusResult(
            task_id=task_id,
            status=status,
            progress=progress,
            video_url=data.get("url"),
            duration=str(seconds) if seconds is not None else None,
            quality=data.get("quality") or "standard",
            raw=data
        )


# Register all providers
register_provider(ProviderName.KIE, KieProvider)
register_provider(ProviderName.YUNWU, YunwuProvider)
register_provider(ProviderName.DAYUAPI, DayuapiProvider)
register_provider(ProviderName.SUTU, SutuProvider)
register_provider(ProviderName.YIJIAPI, YijiapiProvider)
