"""
Error Classifier
Maps any failure raised at a pipeline boundary to a client-facing category
with a recoverability flag and a suggested next step.
"""
import re
import logging
from typing import Callable, List, Optional, Tuple
from pydantic import BaseModel

from app.config import get_settings
from app.exceptions import (
    PipelineError,
    FileTooLargeError,
    InvalidStateTransition,
    NotFoundOrUnauthorized,
    TranscriptParseError,
    Unauthorized,
)

logger = logging.getLogger(__name__)
settings = get_settings()

_SIZE_FIGURE = re.compile(r"(\d+\.?\d*)\s*MB", re.IGNORECASE)
_SIZE_PHRASES = ("too large", "maximum size", "max size", "exceeds")


class ClassifiedError(BaseModel):
    kind: str
    message: str
    detail: Optional[str] = None
    recoverable: bool
    suggested_action: Optional[str] = None


def _contains(*needles: str) -> Callable[[str], bool]:
    return lambda text: any(n in text for n in needles)


def _size_error(size_mb: Optional[float], raw: str) -> ClassifiedError:
    ceiling = settings.TRANSCRIPTION_EXTRACT_MAX_MB
    if size_mb is None:
        return ClassifiedError(
            kind="size",
            message="Video file is too large",
            detail=f"Files over {settings.TRANSCRIPTION_DIRECT_MAX_MB:g}MB have their audio extracted "
                   f"for transcription. Files over {ceiling:g}MB are not supported.",
            recoverable=False,
            suggested_action="upload_smaller_file",
        )
    recoverable = size_mb <= ceiling
    return ClassifiedError(
        kind="size",
        message="Video file is too large",
        detail=f"Your video is {size_mb:g}MB. For files over {settings.TRANSCRIPTION_DIRECT_MAX_MB:g}MB "
               f"we extract the audio for transcription. Files over {ceiling:g}MB are not supported.",
        recoverable=recoverable,
        suggested_action=None if recoverable else "upload_smaller_file",
    )


def _parse_size_mb(text: str) -> Optional[float]:
    match = _SIZE_FIGURE.search(text)
    return float(match.group(1)) if match else None


def _network(raw: str) -> ClassifiedError:
    return ClassifiedError(
        kind="network",
        message="Network connection error",
        detail="Please check your internet connection and try again.",
        recoverable=True,
        suggested_action="retry",
    )


def _upload(raw: str) -> ClassifiedError:
    return ClassifiedError(
        kind="upload",
        message="Failed to upload video",
        detail="The video upload was interrupted. Please try again.",
        recoverable=True,
        suggested_action="retry",
    )


def _format(raw: str) -> ClassifiedError:
    return ClassifiedError(
        kind="format",
        message="Unsupported video format",
        detail="Please upload a video in MP4, MOV, AVI, MKV or WebM format.",
        recoverable=False,
        suggested_action="convert_format",
    )


def _transcription(raw: str) -> ClassifiedError:
    lowered = raw.lower()
    if "timeout" in lowered or "timed out" in lowered:
        detail = "The transcription took too long. Try with a shorter video."
    elif "no speech" in lowered:
        detail = raw
    else:
        detail = "We couldn't transcribe the audio. The video might be silent or in an unsupported language."
    return ClassifiedError(
        kind="transcription",
        message="Failed to transcribe video",
        detail=detail,
        recoverable=True,
        suggested_action="upload_transcript",
    )


def _thumbnail(raw: str) -> ClassifiedError:
    if "safety" in raw.lower():
        detail = "The AI safety system blocked thumbnail generation. Try uploading a custom thumbnail."
    else:
        detail = "We couldn't generate a thumbnail automatically."
    return ClassifiedError(
        kind="thumbnail",
        message="Failed to generate thumbnail",
        detail=detail,
        recoverable=True,
        suggested_action="upload_custom_thumbnail",
    )


def _metadata(raw: str) -> ClassifiedError:
    return ClassifiedError(
        kind="metadata",
        message="Failed to extract video information",
        detail="Some video details couldn't be extracted, but your video was uploaded successfully.",
        recoverable=True,
        suggested_action=None,
    )


def _extraction(raw: str) -> ClassifiedError:
    return ClassifiedError(
        kind="extraction",
        message="Failed to extract audio",
        detail="We couldn't extract audio from your video for transcription. "
               "The video might be corrupted or use an unsupported codec.",
        recoverable=False,
        suggested_action="upload_transcript",
    )


def _authorization(raw: str) -> ClassifiedError:
    return ClassifiedError(
        kind="authorization",
        message="Authentication required",
        detail=raw or "Please sign in to continue.",
        recoverable=False,
        suggested_action="sign_in",
    )


def _generation(raw: str) -> ClassifiedError:
    return ClassifiedError(
        kind="generation",
        message="Failed to generate content",
        detail=raw,
        recoverable=True,
        suggested_action="retry",
    )


def _conflict(raw: str) -> ClassifiedError:
    return ClassifiedError(
        kind="conflict",
        message="Request conflicts with the current state",
        detail=raw,
        recoverable=True,
        suggested_action=None,
    )


def _generic(raw: str) -> ClassifiedError:
    return ClassifiedError(
        kind="unknown",
        message="Something went wrong",
        detail=raw or "An unexpected error occurred. Please try again.",
        recoverable=True,
        suggested_action="retry",
    )


Rule = Tuple[Callable[[str], bool], Callable[[str], ClassifiedError]]


class ErrorClassifier:
    """
    Deterministic failure classification.

    Typed pipeline errors are mapped by their kind. Everything else is
    matched against the lower-cased message by an ordered rule list where
    the first matching rule wins.
    """

    def __init__(self):
        self.rules: List[Rule] = [
            (
                lambda t: _parse_size_mb(t) is not None and any(p in t for p in _SIZE_PHRASES),
                lambda raw: _size_error(_parse_size_mb(raw), raw),
            ),
            (_contains("fetch", "network", "connection", "timed out"), _network),
            (_contains("upload"), _upload),
            (_contains("too large", "maximum size"), lambda raw: _size_error(None, raw)),
            (_contains("format", "codec", "not supported"), _format),
            (_contains("transcrib", "whisper"), _transcription),
            (_contains("thumbnail", "dall-e", "safety system", "image generation"), _thumbnail),
            (_contains("metadata", "duration", "ffmpeg", "ffprobe"), _metadata),
            (_contains("extract", "audio"), _extraction),
            (_contains("unauthorized", "auth", "forbidden"), _authorization),
        ]
        self.by_kind = {
            "network": _network,
            "upload": _upload,
            "format": _format,
            "transcription": _transcription,
            "thumbnail": _thumbnail,
            "metadata": _metadata,
            "extraction": _extraction,
            "authorization": _authorization,
            "generation": _generation,
            "conflict": _conflict,
        }

    def classify(self, error: BaseException) -> ClassifiedError:
        if isinstance(error, FileTooLargeError):
            return _size_error(error.size_mb, error.message)
        if isinstance(error, NotFoundOrUnauthorized):
            classified = _authorization(error.message)
            classified.message = error.message
            classified.suggested_action = None
            return classified
        if isinstance(error, TranscriptParseError):
            return ClassifiedError(
                kind="format",
                message="Could not read transcript file",
                detail=error.message,
                recoverable=False,
                suggested_action="convert_format",
            )
        if isinstance(error, PipelineError):
            builder = self.by_kind.get(error.kind)
            if builder is not None:
                return builder(error.message)
            if error.kind == "size":
                return _size_error(_parse_size_mb(error.message), error.message)
        return self.classify_message(str(error))

    def classify_message(self, message: str) -> ClassifiedError:
        text = (message or "").lower()
        for predicate, builder in self.rules:
            if predicate(text):
                return builder(message)
        return _generic(message)


def http_status_for(error: BaseException) -> int:
    """HTTP status used when a pipeline error reaches the API surface"""
    if isinstance(error, NotFoundOrUnauthorized):
        return 404
    if isinstance(error, Unauthorized):
        return 401
    if isinstance(error, (TranscriptParseError, InvalidStateTransition)):
        return 422
    if isinstance(error, PipelineError):
        return {
            "conflict": 409,
            "size": 413,
            "format": 415,
            "authorization": 403,
            "upload": 400,
        }.get(error.kind, 502)
    return 500


classifier = ErrorClassifier()


def classify(error: BaseException) -> ClassifiedError:
    return classifier.classify(error)
