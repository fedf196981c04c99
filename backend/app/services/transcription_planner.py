"""
Size-tiered transcription planning.

Small files are sent to the transcription service as-is, mid-sized files
have their audio track extracted first, and anything above the extraction
ceiling is rejected before any work is done.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging

from app.config import get_settings
from app.exceptions import FileTooLargeError

logger = logging.getLogger(__name__)
settings = get_settings()

BYTES_PER_MB = 1024 * 1024


class TranscriptionTier(str, Enum):
    DIRECT = "direct"
    EXTRACT_AUDIO = "extract_audio"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class TranscriptionPlan:
    tier: TranscriptionTier
    size_bytes: int
    limit_mb: float
    reason: str

    @property
    def size_mb(self) -> float:
        return self.size_bytes / BYTES_PER_MB


def plan_transcription(
    size_bytes: int,
    direct_max_mb: Optional[float] = None,
    extract_max_mb: Optional[float] = None,
) -> TranscriptionPlan:
    """
    Pick the transcription route for a file of size_bytes.
    Both thresholds are exclusive upper bounds in MB (1 MB = 1024*1024 bytes).
    """
    direct_max_mb = settings.TRANSCRIPTION_DIRECT_MAX_MB if direct_max_mb is None else direct_max_mb
    extract_max_mb = settings.TRANSCRIPTION_EXTRACT_MAX_MB if extract_max_mb is None else extract_max_mb

    if size_bytes < 0:
        raise ValueError(f"Invalid file size: {size_bytes}")

    size_mb = size_bytes / BYTES_PER_MB
    if size_bytes < direct_max_mb * BYTES_PER_MB:
        return TranscriptionPlan(
            tier=TranscriptionTier.DIRECT,
            size_bytes=size_bytes,
            limit_mb=extract_max_mb,
            reason=f"{size_mb:.1f}MB is under {direct_max_mb:g}MB, sending file directly",
        )
    if size_bytes < extract_max_mb * BYTES_PER_MB:
        return TranscriptionPlan(
            tier=TranscriptionTier.EXTRACT_AUDIO,
            size_bytes=size_bytes,
            limit_mb=extract_max_mb,
            reason=f"{size_mb:.1f}MB exceeds {direct_max_mb:g}MB, extracting audio first",
        )
    return TranscriptionPlan(
        tier=TranscriptionTier.UNSUPPORTED,
        size_bytes=size_bytes,
        limit_mb=extract_max_mb,
        reason=f"{size_mb:.1f}MB exceeds the {extract_max_mb:g}MB transcription limit",
    )


def ensure_supported(plan: TranscriptionPlan) -> TranscriptionPlan:
    if plan.tier == TranscriptionTier.UNSUPPORTED:
        logger.warning(f"Rejecting transcription: {plan.reason}")
        raise FileTooLargeError(plan.size_mb, plan.limit_mb)
    return plan
