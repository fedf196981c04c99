import pytest

from app.exceptions import FileTooLargeError
from app.services.transcription_planner import (
    BYTES_PER_MB,
    TranscriptionTier,
    ensure_supported,
    plan_transcription,
)


@pytest.mark.parametrize(
    "size_bytes, tier",
    [
        (0, TranscriptionTier.DIRECT),
        (10 * BYTES_PER_MB, TranscriptionTier.DIRECT),
        (25 * BYTES_PER_MB - 1, TranscriptionTier.DIRECT),
        (25 * BYTES_PER_MB, TranscriptionTier.EXTRACT_AUDIO),
        (40 * BYTES_PER_MB, TranscriptionTier.EXTRACT_AUDIO),
        (100 * BYTES_PER_MB - 1, TranscriptionTier.EXTRACT_AUDIO),
        (100 * BYTES_PER_MB, TranscriptionTier.UNSUPPORTED),
        (150 * BYTES_PER_MB, TranscriptionTier.UNSUPPORTED),
    ],
)
def test_plan_picks_tier_by_size(size_bytes: int, tier: TranscriptionTier) -> None:
    plan = plan_transcription(size_bytes, direct_max_mb=25, extract_max_mb=100)
    assert plan.tier is tier
    assert plan.size_bytes == size_bytes


def test_plan_thresholds_are_configurable() -> None:
    plan = plan_transcription(5 * BYTES_PER_MB, direct_max_mb=2, extract_max_mb=10)
    assert plan.tier is TranscriptionTier.EXTRACT_AUDIO
    assert "exceeds 2MB" in plan.reason


def test_plan_rejects_negative_size() -> None:
    with pytest.raises(ValueError):
        plan_transcription(-1)


def test_ensure_supported_passes_through_supported_plans() -> None:
    plan = plan_transcription(40 * BYTES_PER_MB, direct_max_mb=25, extract_max_mb=100)
    assert ensure_supported(plan) is plan


def test_ensure_supported_raises_with_size_in_message() -> None:
    plan = plan_transcription(150 * BYTES_PER_MB, direct_max_mb=25, extract_max_mb=100)
    with pytest.raises(FileTooLargeError) as exc_info:
        ensure_supported(plan)
    assert exc_info.value.message == "File too large: 150.0MB. Maximum size is 100MB"
    assert exc_info.value.size_mb == pytest.approx(150.0)
