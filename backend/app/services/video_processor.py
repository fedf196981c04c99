import ffmpeg
import base64
import io
import re
from typing import Callable, List, Optional
from PIL import Image
import logging

from app.config import get_settings
from app.exceptions import MetadataExtractionError
from app.schemas import AudioInfo, ExtractedFrame, Resolution, VideoMetadata
from app.services.media_engine import MediaEngine

logger = logging.getLogger(__name__)
settings = get_settings()

ProgressCallback = Callable[[float], None]

_DURATION_RE = re.compile(r"Duration: (\d{2}):(\d{2}):(\d{2}\.\d+)")
_VIDEO_LINE_RE = re.compile(r"Stream.*Video: (\w+)(.*)")
_AUDIO_LINE_RE = re.compile(r"Stream.*Audio: (\w+)(.*)")
_RESOLUTION_RE = re.compile(r"\b(\d{2,5})x(\d{2,5})\b")
_FPS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*fps")
_KBPS_RE = re.compile(r"(\d+)\s*kb/s")
_HZ_RE = re.compile(r"(\d+)\s*Hz")
_TIME_RE = re.compile(r"time=(\d{2}):(\d{2}):(\d{2}\.\d+)")


def _hms_to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def frame_fractions(count: int) -> List[float]:
    """
    Evenly spaced sample points, as fractions of the duration, that avoid
    the first and last frame: i/(count+1) for i in 1..count
    """
    return [i / (count + 1) for i in range(1, count + 1)]


def format_from_mime(mime_type: Optional[str]) -> str:
    if mime_type and "/" in mime_type:
        subtype = mime_type.split("/", 1)[1]
        if subtype:
            return subtype
    return "unknown"


def parse_ffmpeg_log(log: str) -> VideoMetadata:
    """
    Pull duration, first video stream and first audio stream out of an
    ffmpeg decode log. Fields without a match stay None.
    """
    metadata = VideoMetadata()

    duration_match = _DURATION_RE.search(log)
    if duration_match:
        metadata.duration = _hms_to_seconds(*duration_match.groups())

    video_match = _VIDEO_LINE_RE.search(log)
    if video_match:
        metadata.codec = video_match.group(1)
        rest = video_match.group(2)
        resolution = _RESOLUTION_RE.search(rest)
        if resolution:
            metadata.resolution = Resolution(width=int(resolution.group(1)), height=int(resolution.group(2)))
        fps = _FPS_RE.search(rest)
        if fps:
            metadata.frame_rate = float(fps.group(1))
        kbps = _KBPS_RE.search(rest)
        if kbps:
            metadata.bit_rate = int(kbps.group(1)) * 1000

    audio_match = _AUDIO_LINE_RE.search(log)
    if audio_match:
        rest = audio_match.group(2)
        hz = _HZ_RE.search(rest)
        kbps = _KBPS_RE.search(rest)
        if hz:
            metadata.audio_info = AudioInfo(
                codec=audio_match.group(1),
                sample_rate=int(hz.group(1)),
                channels=2 if "stereo" in rest else 1,
                bit_rate=int(kbps.group(1)) * 1000 if kbps else 0,
            )

    return metadata


def merge_metadata(
    fast: Optional[VideoMetadata],
    full: Optional[VideoMetadata],
    file_size: int,
    mime_type: Optional[str],
) -> VideoMetadata:
    """Prefer the full pass, fall back to the fast pass, then to zero values"""
    fast = fast or VideoMetadata()
    full = full or VideoMetadata()

    return VideoMetadata(
        duration=full.duration or fast.duration or 0,
        file_size=full.file_size or fast.file_size or file_size,
        resolution=full.resolution or fast.resolution or Resolution(width=0, height=0),
        frame_rate=full.frame_rate or 0,
        bit_rate=full.bit_rate or 0,
        format=full.format or format_from_mime(mime_type),
        codec=full.codec or "unknown",
        audio_info=full.audio_info,
        thumbnails=full.thumbnails or [],
    )


class _MonotonicProgress:
    """Forwards progress to a callback, never letting it move backwards"""

    def __init__(self, callback: Optional[ProgressCallback]):
        self.callback = callback
        self.value = 0.0

    def __call__(self, value: float):
        value = min(max(value, self.value), 1.0)
        self.value = value
        if self.callback:
            self.callback(value)


class MediaProbe:
    """Extracts technical metadata and sample frames from stored videos"""

    def __init__(self, engine: MediaEngine):
        self.engine = engine

    def fast_probe(self, path: str, file_size: int) -> VideoMetadata:
        """Container-level read. Never raises, degrades to size only"""
        try:
            probe = self.engine.probe(path)
            video_stream = next(
                (s for s in probe.get('streams', []) if s.get('codec_type') == 'video'),
                None
            )
            duration = probe.get('format', {}).get('duration')
            metadata = VideoMetadata(
                duration=float(duration) if duration else None,
                file_size=file_size,
            )
            if video_stream and video_stream.get('width') and video_stream.get('height'):
                metadata.resolution = Resolution(
                    width=int(video_stream['width']),
                    height=int(video_stream['height'])
                )
            logger.info(f"Fast probe for {path}: duration={metadata.duration}, resolution={metadata.resolution}")
            return metadata
        except Exception as e:
            logger.warning(f"Fast probe failed for {path}: {e}")
            return VideoMetadata(file_size=file_size)

    def full_probe(self, path: str, expected_duration: Optional[float] = None,
                   on_progress: Optional[ProgressCallback] = None) -> VideoMetadata:
        """
        Decode the whole file into the null muxer and parse the log.
        Progress is reported as the decoded fraction of expected_duration.
        """
        stream = ffmpeg.input(path).output('-', f='null')
        process = self.engine.run_async(stream)

        log_parts = []
        buffer = b""
        while True:
            chunk = process.stderr.read(4096)
            if not chunk:
                break
            log_parts.append(chunk)
            buffer += chunk
            *lines, buffer = re.split(rb"[\r\n]", buffer)
            if on_progress and expected_duration:
                for line in lines:
                    match = _TIME_RE.search(line.decode(errors='ignore'))
                    if match:
                        on_progress(min(_hms_to_seconds(*match.groups()) / expected_duration, 1.0))

        returncode = process.wait()
        log = b"".join(log_parts).decode(errors='ignore')
        if returncode != 0:
            tail = log.strip().splitlines()[-1:] or ["no output"]
            raise MetadataExtractionError(f"FFmpeg decode failed ({returncode}): {tail[0]}")

        return parse_ffmpeg_log(log)

    def extract_frames(
        self,
        path: str,
        count: int,
        duration: Optional[float],
        on_frame: Optional[Callable[[int, int], None]] = None,
    ) -> List[ExtractedFrame]:
        """
        Seek to each sample point, scale to FRAME_WIDTH and encode as JPEG.
        Frames that fail to decode are skipped.
        """
        if not duration or duration <= 0:
            logger.warning(f"Cannot place frames for {path}: unknown duration")
            return []

        frames = []
        for i, fraction in enumerate(frame_fractions(count)):
            output_path = self.engine.scratch_path(".jpg")
            try:
                self.engine.run(
                    ffmpeg
                    .input(path, ss=fraction * duration)
                    .output(str(output_path), vframes=1, vf=f"scale={settings.FRAME_WIDTH}:-1", **{'q:v': 2})
                )
                data = output_path.read_bytes()
                with Image.open(io.BytesIO(data)) as image:
                    image.verify()
                encoded = base64.b64encode(data).decode()
                frames.append(ExtractedFrame(timestamp=fraction, data_url=f"data:image/jpeg;base64,{encoded}"))
            except (ffmpeg.Error, OSError) as e:
                logger.warning(f"Failed to extract frame at {fraction:.2f} of {path}: {e}")
            finally:
                output_path.unlink(missing_ok=True)
            if on_frame:
                on_frame(i, count)

        logger.info(f"Extracted {len(frames)}/{count} frames from {path}")
        return frames

    def quick_thumbnail(self, path: str, duration: Optional[float]) -> Optional[ExtractedFrame]:
        frames = self.extract_frames(path, 1, duration)
        return frames[0] if frames else None

    def thumbnail_candidates(self, path: str, duration: Optional[float],
                             count: Optional[int] = None) -> List[ExtractedFrame]:
        return self.extract_frames(path, count or settings.THUMBNAIL_CANDIDATE_COUNT, duration)

    def probe(
        self,
        path: str,
        file_size: int,
        mime_type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        extract_thumbnails: bool = True,
        use_full_probe: bool = True,
    ) -> VideoMetadata:
        """
        Two-pass metadata extraction.
        Returns: merged VideoMetadata, falling back to fast-pass values if the
        decode pass fails
        """
        progress = _MonotonicProgress(on_progress)

        fast = self.fast_probe(path, file_size)
        progress(0.2)

        if not use_full_probe:
            result = merge_metadata(fast, None, file_size, mime_type)
            progress(1.0)
            return result

        try:
            full = self.full_probe(
                path,
                expected_duration=fast.duration,
                on_progress=lambda p: progress(p * 0.5 + 0.2),
            )
            full.file_size = file_size
            full.format = format_from_mime(mime_type)

            if extract_thumbnails:
                progress(0.5)
                frames = self.extract_frames(
                    path,
                    settings.METADATA_FRAME_COUNT,
                    full.duration or fast.duration,
                    on_frame=lambda i, n: progress(0.5 + 0.5 * (i + 1) / n),
                )
                full.thumbnails = [f.data_url for f in frames]

            result = merge_metadata(fast, full, file_size, mime_type)
        except Exception as e:
            logger.error(f"Full metadata extraction failed for {path}, using fast probe values: {e}")
            result = merge_metadata(fast, None, file_size, mime_type)

        progress(1.0)
        return result


def apply_metadata(video, metadata) -> None:
    """Copy the provided (non-None) metadata fields onto a Video row"""
    if metadata.duration is not None:
        video.duration_seconds = metadata.duration
    if metadata.file_size:
        video.file_size = metadata.file_size
    if metadata.resolution is not None:
        video.width = metadata.resolution.width
        video.height = metadata.resolution.height
    if metadata.frame_rate is not None:
        video.frame_rate = metadata.frame_rate
    if metadata.bit_rate is not None:
        video.bit_rate = metadata.bit_rate
    if metadata.format is not None:
        video.container_format = metadata.format
    if metadata.codec is not None:
        video.codec = metadata.codec
    if metadata.audio_info is not None:
        video.audio_info = metadata.audio_info.model_dump()


def store_frames(video, data_urls: List[str], storage) -> List[str]:
    """
    Save JPEG data URLs as the video's preview frames.
    Returns: handles of the frames they replace, for the caller to delete
    after commit
    """
    replaced = list(video.frame_handles or [])
    video.frame_handles = [
        storage.upload(base64.b64decode(url.split(",", 1)[1]), "frame.jpg") for url in data_urls
    ]
    return replaced
