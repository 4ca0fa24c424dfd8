from .generation import (
    ProviderName, GenerationCategory, JobStatus, ErrorKind, OutcomeKind,
    AspectRatio, VideoDuration, CanonicalConfig, SubmitResult, StatusResult,
    JobResult, JobError, GenerationJob, SegmentDescriptor, ModelSpec,
    ModelRecord, HealthSnapshot, Selection
)
