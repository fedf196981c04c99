import uuid
from pathlib import Path
from types import SimpleNamespace

import ffmpeg
import pytest
from PIL import Image

from app.schemas import AudioInfo, Resolution, VideoMetadata, VideoMetadataUpdate
from app.services.video_processor import (
    MediaProbe,
    apply_metadata,
    format_from_mime,
    frame_fractions,
    merge_metadata,
    parse_ffmpeg_log,
    store_frames,
)

FFMPEG_LOG = """
Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'workbench.mp4':
  Duration: 00:01:30.50, start: 0.000000, bitrate: 5120 kb/s
  Stream #0:0(und): Video: h264 (High) (avc1 / 0x31637661), yuv420p, 1920x1080 [SAR 1:1 DAR 16:9], 4990 kb/s, 29.97 fps, 29.97 tbr, 30k tbn (default)
  Stream #0:1(und): Audio: aac (LC) (mp4a / 0x6134706D), 48000 Hz, stereo, fltp, 128 kb/s (default)
frame= 2712 fps=900 q=-0.0 Lsize=N/A time=00:01:30.48 bitrate=N/A speed=30x
"""


def test_parse_ffmpeg_log_reads_streams() -> None:
    metadata = parse_ffmpeg_log(FFMPEG_LOG)

    assert metadata.duration == pytest.approx(90.5)
    assert metadata.codec == "h264"
    assert metadata.resolution == Resolution(width=1920, height=1080)
    assert metadata.frame_rate == pytest.approx(29.97)
    assert metadata.bit_rate == 4990000
    assert metadata.audio_info == AudioInfo(codec="aac", sample_rate=48000, channels=2, bit_rate=128000)


def test_parse_ffmpeg_log_mono_audio_and_missing_fields() -> None:
    log = "Stream #0:0: Audio: mp3, 44100 Hz, mono, fltp, 64 kb/s"
    metadata = parse_ffmpeg_log(log)

    assert metadata.duration is None
    assert metadata.codec is None
    assert metadata.resolution is None
    assert metadata.audio_info.channels == 1
    assert metadata.audio_info.bit_rate == 64000


def test_merge_prefers_full_pass() -> None:
    fast = VideoMetadata(duration=90.0, resolution=Resolution(width=1280, height=720))
    full = VideoMetadata(duration=90.5, resolution=Resolution(width=1920, height=1080), codec="h264",
                         frame_rate=30.0, format="mp4")

    merged = merge_metadata(fast, full, 1000, "video/mp4")

    assert merged.duration == 90.5
    assert merged.resolution.width == 1920
    assert merged.codec == "h264"
    assert merged.file_size == 1000


def test_merge_falls_back_to_fast_then_defaults() -> None:
    fast = VideoMetadata(duration=12.0)

    merged = merge_metadata(fast, None, 2048, "video/quicktime")

    assert merged.duration == 12.0
    assert merged.resolution == Resolution(width=0, height=0)
    assert merged.codec == "unknown"
    assert merged.format == "quicktime"
    assert merged.frame_rate == 0
    assert merged.file_size == 2048


def test_format_from_mime() -> None:
    assert format_from_mime("video/webm") == "webm"
    assert format_from_mime(None) == "unknown"
    assert format_from_mime("garbage") == "unknown"


@pytest.mark.parametrize("count", [1, 3, 5, 8])
def test_frame_fractions_are_interior_increasing_and_symmetric(count: int) -> None:
    fractions = frame_fractions(count)

    assert len(fractions) == count
    assert all(0 < f < 1 for f in fractions)
    assert fractions == sorted(fractions)
    for left, right in zip(fractions, reversed(fractions)):
        assert left + right == pytest.approx(1.0)


def test_frame_fractions_for_three() -> None:
    assert frame_fractions(3) == [0.25, 0.5, 0.75]


class _ProbeOnlyEngine:
    def probe(self, path):
        return {
            "format": {"duration": "42.0"},
            "streams": [{"codec_type": "audio"}, {"codec_type": "video", "width": 640, "height": 360}],
        }


class _BrokenEngine:
    def probe(self, path):
        raise RuntimeError("ffprobe not found")


def test_fast_probe_reads_container() -> None:
    metadata = MediaProbe(_ProbeOnlyEngine()).fast_probe("clip.mp4", 500)

    assert metadata.duration == 42.0
    assert metadata.resolution == Resolution(width=640, height=360)


def test_fast_probe_never_raises() -> None:
    metadata = MediaProbe(_BrokenEngine()).fast_probe("clip.mp4", 500)

    assert metadata.duration is None
    assert metadata.file_size == 500


def test_probe_degrades_to_fast_values_and_reports_monotonic_progress(monkeypatch) -> None:
    probe = MediaProbe(_ProbeOnlyEngine())

    def failing_full_probe(path, expected_duration=None, on_progress=None):
        on_progress(0.8)
        raise RuntimeError("FFmpeg decode failed (1): moov atom not found")

    monkeypatch.setattr(probe, "full_probe", failing_full_probe)
    reported = []

    metadata = probe.probe("clip.mp4", 500, "video/mp4", on_progress=reported.append)

    assert metadata.duration == 42.0
    assert metadata.resolution == Resolution(width=640, height=360)
    assert metadata.codec == "unknown"
    assert reported == sorted(reported)
    assert reported[-1] == 1.0


def test_probe_merges_full_pass_and_frames(monkeypatch) -> None:
    probe = MediaProbe(_ProbeOnlyEngine())
    monkeypatch.setattr(probe, "full_probe", lambda path, expected_duration=None, on_progress=None: parse_ffmpeg_log(FFMPEG_LOG))

    def fake_frames(path, count, duration, on_frame=None):
        for i in range(count):
            on_frame(i, count)
        return [SimpleNamespace(data_url=f"data:image/jpeg;base64,{i}") for i in range(count)]

    monkeypatch.setattr(probe, "extract_frames", fake_frames)
    reported = []

    metadata = probe.probe("clip.mp4", 500, "video/mp4", on_progress=reported.append)

    assert metadata.duration == pytest.approx(90.5)
    assert metadata.format == "mp4"
    assert len(metadata.thumbnails) == 5
    assert reported == sorted(reported)


def test_apply_metadata_only_sets_provided_fields() -> None:
    video = SimpleNamespace(duration_seconds=None, file_size=10, width=None, height=None, frame_rate=None,
                            bit_rate=None, container_format="mp4", codec=None, audio_info=None)

    apply_metadata(video, VideoMetadataUpdate(duration=33.0, resolution=Resolution(width=320, height=240)))

    assert video.duration_seconds == 33.0
    assert (video.width, video.height) == (320, 240)
    assert video.container_format == "mp4"
    assert video.file_size == 10


class _JpegEngine:
    """Writes a small JPEG for every frame request, failing the calls listed in fail_on"""

    def __init__(self, workspace, fail_on=()):
        self.workspace = workspace
        self.fail_on = set(fail_on)
        self.commands = []

    def scratch_path(self, suffix):
        return self.workspace / f"{uuid.uuid4().hex}{suffix}"

    def run(self, stream):
        args = stream.get_args()
        self.commands.append(args)
        if len(self.commands) - 1 in self.fail_on:
            raise ffmpeg.Error("ffmpeg", b"", b"seek past end")
        Image.new("RGB", (32, 18), "orange").save(Path(args[-1]), format="JPEG")
        return b"", b""


def test_quick_thumbnail_samples_the_middle(tmp_path) -> None:
    engine = _JpegEngine(tmp_path)

    frame = MediaProbe(engine).quick_thumbnail("clip.mp4", 10.0)

    assert frame.timestamp == 0.5
    assert frame.data_url.startswith("data:image/jpeg;base64,")
    args = engine.commands[0]
    assert args[args.index("-ss") + 1] == "5.0"
    assert "scale=320:-1" in args
    assert list(tmp_path.iterdir()) == []


def test_thumbnail_candidates_skip_failed_frames(tmp_path) -> None:
    frames = MediaProbe(_JpegEngine(tmp_path, fail_on={1})).thumbnail_candidates("clip.mp4", 8.0)

    assert [f.timestamp for f in frames] == [0.25, 0.75]


def test_frames_need_a_duration(tmp_path) -> None:
    assert MediaProbe(_JpegEngine(tmp_path)).extract_frames("clip.mp4", 3, None) == []


def test_store_frames_replaces_previous_handles(storage) -> None:
    video = SimpleNamespace(frame_handles=["old-handle"])

    replaced = store_frames(video, ["data:image/jpeg;base64,/9j/AAAA", "data:image/jpeg;base64,/9j/BBBB"], storage)

    assert replaced == ["old-handle"]
    assert len(video.frame_handles) == 2
    assert storage.read(video.frame_handles[0]) == b"\xff\xd8\xff\x00\x00\x00"
