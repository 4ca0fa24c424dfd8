"""
Status normalization

Maps each provider's native status vocabulary onto the canonical
queued/processing/completed/error lifecycle. Unrecognized values map to
processing: a long-running job is never reported finished on a string we
do not understand.
"""

import logging
from typing import Any, Dict, Optional

from genorch.models.generation import ErrorKind, JobStatus, ProviderName

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Generation failed"

# Terminal failure words shared by every provider
_COMMON_FAILURES: Dict[str, JobStatus] = {
    "failed": JobStatus.ERROR,
    "fail": JobStatus.ERROR,
    "failure": JobStatus.ERROR,
    "error": JobStatus.ERROR,
}

STATUS_MAPS: Dict[ProviderName, Dict[Any, JobStatus]] = {
    ProviderName.KIE: {
        "waiting": JobStatus.QUEUED,
        "queuing": JobStatus.QUEUED,
        "generating": JobStatus.PROCESSING,
        "success": JobStatus.COMPLETED,
        "fail": JobStatus.ERROR,
    },
    ProviderName.YUNWU: {
        "pending": JobStatus.QUEUED,
        "processing": JobStatus.PROCESSING,
        "completed": JobStatus.COMPLETED,
        "succeeded": JobStatus.COMPLETED,
        "failed": JobStatus.ERROR,
        "error": JobStatus.ERROR,
    },
    ProviderName.DAYUAPI: {
        "queued": JobStatus.QUEUED,
        "pending": JobStatus.QUEUED,
        "in_progress": JobStatus.PROCESSING,
        "processing": JobStatus.PROCESSING,
        "completed": JobStatus.COMPLETED,
        "succeeded": JobStatus.COMPLETED,
        "failed": JobStatus.ERROR,
        "cancelled": JobStatus.ERROR,
    },
    ProviderName.SUTU: {
        0: JobStatus.QUEUED,
        1: JobStatus.COMPLETED,
        2: JobStatus.ERROR,
        3: JobStatus.PROCESSING,
    },
    ProviderName.YIJIAPI: {
        "queued": JobStatus.QUEUED,
        "processing": JobStatus.PROCESSING,
        "completed": JobStatus.COMPLETED,
        "failed": JobStatus.ERROR,
    },
}

# Failure reasons that mean "the model worked, the content was refused"
CONTENT_POLICY_MARKERS = (
    "content policy",
    "content_policy",
    "policy violation",
    "violat",
    "moderation",
    "sensitive",
    "nsfw",
    "prohibited",
    "not allowed",
    "guideline",
    "违规",
    "敏感",
    "审核",
)


def normalize_status(provider: ProviderName, native_status: Any) -> JobStatus:
    """Map a provider-native status to the canonical lifecycle"""
    if native_status is None:
        return JobStatus.PROCESSING

    table = STATUS_MAPS.get(ProviderName(provider), {})

    key = native_status
    if isinstance(native_status, str):
        stripped = native_status.strip()
        if stripped.isdigit():
            key = int(stripped)
        else:
            key = stripped.lower()

    if key in table:
        return table[key]
    if isinstance(key, str) and key in _COMMON_FAILURES:
        return _COMMON_FAILURES[key]

    logger.debug(f"Unmapped {provider} status {native_status!r}, treating as processing")
    return JobStatus.PROCESSING


def failure_message(reason: Optional[Any]) -> str:
    """Provider failure reason verbatim, or the generic fallback"""
    if reason is None:
        return DEFAULT_FAILURE_MESSAGE
    if isinstance(reason, dict):
        reason = reason.get("message") or reason.get("description") or reason.get("code")
    text = str(reason).strip() if reason is not None else ""
    return text or DEFAULT_FAILURE_MESSAGE


def is_content_policy_reason(reason: Optional[str]) -> bool:
    """Whether a failure reason describes a content-policy refusal"""
    if not reason:
        return False
    lowered = reason.lower()
    return any(marker in lowered for marker in CONTENT_POLICY_MARKERS)


def is_terminal(status: JobStatus) -> bool:
    return JobStatus(status).is_terminal


def classify_failure(reason: Optional[str]) -> ErrorKind:
    """Error kind for a terminal failure reported by a provider"""
    if is_content_policy_reason(reason):
        return ErrorKind.CONTENT_POLICY
    return ErrorKind.PROVIDER_FAILURE
