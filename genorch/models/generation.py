"""
Data model for generation jobs, task groups and model health
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from genorch.core.exceptions import ConfigurationError


class ProviderName(str, Enum):
    """Back-ends with an adapter"""
    SUTU = "sutu"
    YUNWU = "yunwu"
    DAYUAPI = "dayuapi"
    KIE = "kie"
    YIJIAPI = "yijiapi"


class GenerationCategory(str, Enum):
    """Generation categories a model can serve"""
    IMAGE = "image"
    TEXT = "text"
    AUDIO = "audio"
    VIDEO = "video"


class JobStatus(str, Enum):
    """Canonical job lifecycle"""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


class ErrorKind(str, Enum):
    """Why a job ended in error"""
    PROVIDER_FAILURE = "provider_failure"
    CONTENT_POLICY = "content_policy"
    TRANSPORT = "transport"
    PROVIDER_REJECTED = "provider_rejected"


class OutcomeKind(str, Enum):
    """Terminal outcome recorded against a model"""
    SUCCESS = "success"
    FAILURE = "failure"
    CONTENT_POLICY = "content_policy"


class AspectRatio(str, Enum):
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"


class VideoDuration(str, Enum):
    SHORT = "10"
    MEDIUM = "15"
    LONG = "25"


@dataclass(frozen=True)
class CanonicalConfig:
    """Provider-agnostic generation parameters, frozen at submission"""
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    duration: VideoDuration = VideoDuration.SHORT
    hd: bool = False

    def __post_init__(self):
        try:
            object.__setattr__(self, "aspect_ratio", AspectRatio(self.aspect_ratio))
        except ValueError:
            raise ConfigurationError(f"Unsupported aspect ratio: {self.aspect_ratio!r}")

        duration = self.duration
        if isinstance(duration, int) and not isinstance(duration, bool):
            duration = str(duration)
        try:
            object.__setattr__(self, "duration", VideoDuration(duration))
        except ValueError:
            raise ConfigurationError(f"Unsupported duration: {self.duration!r}")

        if not isinstance(self.hd, bool):
            raise ConfigurationError(f"hd must be a boolean, got {self.hd!r}")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CanonicalConfig":
        """Build from a loose UI payload; missing keys take the defaults"""
        data = data or {}
        return cls(
            aspect_ratio=data.get("aspect_ratio", AspectRatio.LANDSCAPE),
            duration=data.get("duration", VideoDuration.SHORT),
            hd=data.get("hd", False)
        )

    @property
    def is_landscape(self) -> bool:
        return self.aspect_ratio == AspectRatio.LANDSCAPE

    @property
    def seconds(self) -> int:
        return int(self.duration.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aspect_ratio": self.aspect_ratio.value,
            "duration": self.duration.value,
            "hd": self.hd
        }


@dataclass
class SubmitResult:
    """What a provider returns when a task is accepted"""
    id: str
    status: str
    progress: int
    created_at: float


@dataclass
class StatusResult:
    """One normalized status check"""
    task_id: str
    status: JobStatus
    progress: int = 0
    video_url: Optional[str] = None
    video_url_watermarked: Optional[str] = None
    duration: Optional[str] = None
    quality: str = "unknown"
    is_compliant: bool = True
    violation_reason: Optional[str] = None
    error_message: Optional[str] = None
    raw: Any = None


@dataclass
class JobResult:
    """Populated when a job completes"""
    artifact_url: Optional[str]
    watermarked_url: Optional[str] = None
    duration: Optional[str] = None
    quality: str = "standard"
    is_compliant: bool = True
    violation_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact_url": self.artifact_url,
            "watermarked_url": self.watermarked_url,
            "duration": self.duration,
            "quality": self.quality,
            "is_compliant": self.is_compliant,
            "violation_reason": self.violation_reason
        }


@dataclass
class JobError:
    """Populated when a job ends in error"""
    message: str
    kind: ErrorKind = ErrorKind.PROVIDER_FAILURE
    raw: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "kind": self.kind.value}


@dataclass
class GenerationJob:
    """One submitted unit of work"""
    id: str
    provider: ProviderName
    category: GenerationCategory
    config: CanonicalConfig
    prompt: str
    model_id: Optional[str] = None
    reference_asset: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    result: Optional[JobResult] = None
    error: Optional[JobError] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def outcome(self) -> Optional[OutcomeKind]:
        if self.status == JobStatus.COMPLETED:
            return OutcomeKind.SUCCESS
        if self.status == JobStatus.ERROR:
            if self.error and self.error.kind == ErrorKind.CONTENT_POLICY:
                return OutcomeKind.CONTENT_POLICY
            return OutcomeKind.FAILURE
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider.value,
            "category": self.category.value,
            "model_id": self.model_id,
            "config": self.config.to_dict(),
            "status": self.status.value,
            "progress": self.progress,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error.to_dict() if self.error else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at
        }


@dataclass
class SegmentDescriptor:
    """One shot of a task group"""
    segment_id: str
    prompt: str
    reference_asset: Optional[str] = None
    duration: Optional[float] = None
    description: Optional[str] = None


@dataclass
class ModelSpec:
    """A selectable model"""
    id: str
    category: GenerationCategory
    provider: Optional[ProviderName] = None
    display_name: str = ""
    default_priority: int = 100


@dataclass
class ModelRecord:
    """Health bookkeeping for one model id"""
    model_id: str
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    content_policy_count: int = 0
    last_success_at: Optional[float] = None
    last_failure_at: Optional[float] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "content_policy_count": self.content_policy_count,
            "last_success_at": self.last_success_at,
            "last_failure_at": self.last_failure_at,
            "last_error": self.last_error
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelRecord":
        return cls(
            model_id=data["model_id"],
            success_count=int(data.get("success_count", 0)),
            failure_count=int(data.get("failure_count", 0)),
            consecutive_failures=int(data.get("consecutive_failures", 0)),
            content_policy_count=int(data.get("content_policy_count", 0)),
            last_success_at=data.get("last_success_at"),
            last_failure_at=data.get("last_failure_at"),
            last_error=data.get("last_error")
        )


@dataclass
class HealthSnapshot:
    """Health verdict for one model"""
    model_id: str
    healthy: bool
    success_rate: float
    consecutive_failures: int
    success_count: int = 0
    failure_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "healthy": self.healthy,
            "success_rate": self.success_rate,
            "consecutive_failures": self.consecutive_failures,
            "success_count": self.success_count,
            "failure_count": self.failure_count
        }


@dataclass
class Selection:
    """Outcome of a priority selection"""
    model_id: str
    category: GenerationCategory
    degraded: bool = False
    skipped: List[str] = field(default_factory=list)
