"""Celery task bodies, run in-process against the test database."""

from app.schemas import Resolution, VideoMetadata
from app.workers import tasks

from conftest import TestingSession


class _StubEngine:
    def acquire(self):
        return self


def _probe_returning(metadata):
    class StubProbe:
        def __init__(self, engine):
            self.engine = engine

        def probe(self, path, file_size, mime_type=None, on_progress=None, extract_thumbnails=True):
            assert extract_thumbnails
            return metadata

    return StubProbe


def _wire(monkeypatch, storage, metadata):
    monkeypatch.setattr(tasks, "SessionLocal", TestingSession)
    monkeypatch.setattr(tasks, "engine", _StubEngine())
    monkeypatch.setattr(tasks, "get_storage", lambda: storage)
    monkeypatch.setattr(tasks, "MediaProbe", _probe_returning(metadata))


def test_metadata_task_stores_metadata_and_preview_frames(db, storage, make_video, monkeypatch) -> None:
    video = make_video()
    video_id, file_size = video.id, video.file_size
    old_frame = storage.upload(b"stale frame", "frame.jpg")
    video.frame_handles = [old_frame]
    db.commit()
    metadata = VideoMetadata(
        duration=90.5,
        resolution=Resolution(width=1920, height=1080),
        codec="h264",
        file_size=file_size,
        thumbnails=["data:image/jpeg;base64,/9j/AAAA"] * 5,
    )
    _wire(monkeypatch, storage, metadata)

    result = tasks.probe_video_task(video_id)

    db.expire_all()
    assert result["duration"] == 90.5
    assert "thumbnails" not in result
    assert video.duration_seconds == 90.5
    assert video.codec == "h264"
    assert len(video.frame_handles) == 5
    assert all(storage.get_path(h).exists() for h in video.frame_handles)
    assert not storage.get_path(old_frame).exists()
    assert video.transcription_status == "idle"


def test_metadata_task_absorbs_failures(db, storage, make_video, monkeypatch) -> None:
    video = make_video()
    _wire(monkeypatch, storage, None)

    class BrokenProbe:
        def __init__(self, engine):
            pass

        def probe(self, *args, **kwargs):
            raise RuntimeError("ffprobe exploded")

    monkeypatch.setattr(tasks, "MediaProbe", BrokenProbe)

    assert tasks.probe_video_task(video.id) is None
    db.expire_all()
    assert video.duration_seconds is None
    assert video.transcription_status == "idle"
