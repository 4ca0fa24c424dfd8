from typing import Any, List, Optional, Tuple


class GenOrchException(Exception):
    """Base exception for the generation orchestration core"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(GenOrchException):
    """Raised before any network call when credentials or config are unusable"""
    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message)


class TransportError(GenOrchException):
    """Raised when the provider (or its proxy) could not be reached"""
    def __init__(self, provider: str, message: str, original_error: Exception = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(f"[{provider}] transport error: {message}")


class ProviderError(GenOrchException):
    """Raised when a provider answered but rejected the request"""
    def __init__(self, provider: str, status_code: int, body: Any = None, message: str = ""):
        self.provider = provider
        self.status_code = status_code
        self.body = body
        self.detail = message or "request rejected"
        super().__init__(f"[{provider.upper()} API] {status_code}: {self.detail}")


class ContentPolicyError(GenOrchException):
    """Raised by model operations that were refused for violating content policy

    Stops a fallback chain instead of moving to the next model. Polled jobs
    that end on a policy violation are not raised; they finish with
    ``JobError(kind=ErrorKind.CONTENT_POLICY)`` on the job.
    """
    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"[{provider}] content policy violation: {reason}")


class JobNotFoundError(GenOrchException):
    """Raised when a job id is not tracked by the orchestrator"""
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class TaskGroupNotFoundError(GenOrchException):
    """Raised when a task group id is not tracked by the orchestrator"""
    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Task group not found: {group_id}")


class AllModelsFailedError(GenOrchException):
    """Raised when every candidate model of a category failed"""
    def __init__(self, category: str, errors: List[Tuple[str, Exception]]):
        self.category = category
        self.errors = errors
        last = errors[-1][1] if errors else None
        detail = f": {last}" if last else ""
        super().__init__(f"All {category} models are unavailable{detail}")

    @property
    def last_error(self) -> Optional[Exception]:
        return self.errors[-1][1] if self.errors else None
