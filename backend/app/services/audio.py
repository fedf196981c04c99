import ffmpeg
import io
from dataclasses import dataclass
from pathlib import Path
import numpy as np
import soundfile as sf
import logging

from app.config import get_settings
from app.exceptions import AudioExtractionError
from app.services.media_engine import MediaEngine

logger = logging.getLogger(__name__)
settings = get_settings()

WAV_HEADER_BYTES = 44
BYTES_PER_SAMPLE = 2  # 16-bit PCM


@dataclass
class ExtractedAudio:
    path: Path
    file_name: str
    mime_type: str = "audio/mpeg"

    @property
    def size_bytes(self) -> int:
        return self.path.stat().st_size

    def read(self) -> bytes:
        return self.path.read_bytes()


class AudioExtractor:
    """Strips the video track and re-encodes the audio as MP3"""

    def __init__(self, engine: MediaEngine):
        self.engine = engine

    def extract(self, video_path: str, bitrate: str = None) -> ExtractedAudio:
        bitrate = bitrate or settings.AUDIO_EXTRACT_BITRATE
        output_path = self.engine.scratch_path(".mp3")

        try:
            logger.info(f"Extracting audio from {video_path} to {output_path}")
            self.engine.run(
                ffmpeg
                .input(video_path)
                .output(str(output_path), vn=None, acodec='libmp3lame', audio_bitrate=bitrate)
            )
        except ffmpeg.Error as e:
            error_msg = e.stderr.decode(errors='ignore') if e.stderr else str(e)
            logger.error(f"Audio extraction failed: {error_msg}")
            output_path.unlink(missing_ok=True)
            raise AudioExtractionError("Failed to extract audio from video", details=error_msg[-500:])

        if not output_path.exists() or output_path.stat().st_size == 0:
            output_path.unlink(missing_ok=True)
            raise AudioExtractionError("Failed to extract audio from video: no audio produced")

        audio = ExtractedAudio(path=output_path, file_name=f"{Path(video_path).stem}.mp3")
        logger.info(f"Audio extracted: {audio.size_bytes / (1024 * 1024):.1f}MB")
        return audio


def estimate_compressed_size(duration: float, sample_rate: int = 16000, channels: int = 1) -> int:
    """Bytes of PCM data (header excluded) for duration seconds of 16-bit audio"""
    return int(round(sample_rate * BYTES_PER_SAMPLE * channels * duration))


def _resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    if source_rate == target_rate or len(samples) == 0:
        return samples
    target_length = int(round(len(samples) * target_rate / source_rate))
    source_positions = np.arange(len(samples))
    target_positions = np.linspace(0, len(samples) - 1, target_length)
    if samples.ndim == 1:
        return np.interp(target_positions, source_positions, samples)
    return np.stack(
        [np.interp(target_positions, source_positions, samples[:, c]) for c in range(samples.shape[1])],
        axis=1,
    )


def compress_audio(data: bytes, target_sample_rate: int = None, mono: bool = True) -> bytes:
    """
    Decode any soundfile-readable audio, downmix and resample it, and
    re-encode as 16-bit PCM WAV.
    """
    target_sample_rate = target_sample_rate or settings.AUDIO_COMPRESS_SAMPLE_RATE
    try:
        samples, source_rate = sf.read(io.BytesIO(data), dtype='float32', always_2d=True)
    except RuntimeError as e:
        raise AudioExtractionError(f"Failed to decode audio for compression: {e}")

    if mono:
        samples = samples.mean(axis=1)

    resampled = np.clip(_resample(samples, source_rate, target_sample_rate), -1.0, 1.0)

    output = io.BytesIO()
    sf.write(output, resampled, target_sample_rate, format='WAV', subtype='PCM_16')
    compressed = output.getvalue()

    logger.info(
        f"Compressed audio {len(data) / 1024:.0f}KB -> {len(compressed) / 1024:.0f}KB "
        f"({source_rate}Hz -> {target_sample_rate}Hz, {'mono' if mono else 'original channels'})"
    )
    return compressed
