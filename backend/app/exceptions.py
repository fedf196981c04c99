"""
Pipeline exceptions.

Each subclass carries the error kind it belongs to so the classifier can map
it without inspecting the message text.
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for failures raised inside the ingestion/generation pipeline"""
    kind = "unknown"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundOrUnauthorized(PipelineError):
    kind = "authorization"

    def __init__(self, record_kind: str = "Record"):
        super().__init__(f"{record_kind} not found or unauthorized")
        self.record_kind = record_kind


class Unauthorized(PipelineError):
    kind = "authorization"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class JobAlreadyRunning(PipelineError):
    """A transcription or generation is already in flight for this record"""
    kind = "conflict"


class InvalidStateTransition(PipelineError):
    kind = "conflict"


class FileTooLargeError(PipelineError):
    kind = "size"

    def __init__(self, size_mb: float, limit_mb: float):
        super().__init__(
            f"File too large: {size_mb:.1f}MB. Maximum size is {limit_mb:g}MB",
            details="Files over the transcription ceiling are not supported.",
        )
        self.size_mb = size_mb
        self.limit_mb = limit_mb


class UnsupportedFormatError(PipelineError):
    kind = "format"


class UploadError(PipelineError):
    kind = "upload"


class AudioExtractionError(PipelineError):
    kind = "extraction"


class TranscriptionError(PipelineError):
    kind = "transcription"


class GenerationError(PipelineError):
    kind = "generation"


class ThumbnailGenerationError(PipelineError):
    kind = "thumbnail"


class MetadataExtractionError(PipelineError):
    kind = "metadata"


class TranscriptParseError(PipelineError):
    kind = "format"
