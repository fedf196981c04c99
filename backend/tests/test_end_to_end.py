"""Upload to generated title, with the background job run inline."""

import pytest

from app.main import app as fastapi_app
from app.services import job_scheduler
from app.services.audio import ExtractedAudio
from app.services.job_scheduler import TranscriptionJobRunner, TranscriptionScheduler
from app.services.transcription_planner import BYTES_PER_MB

from conftest import FakeTranscriber


@pytest.mark.anyio
async def test_forty_megabyte_video_to_generated_title(client, db, storage, llm, make_video, monkeypatch, tmp_path) -> None:
    extracted = []

    class FakeExtractor:
        def __init__(self, engine):
            self.engine = engine

        def extract(self, video_path, bitrate=None):
            path = tmp_path / "audio.mp3"
            path.write_bytes(b"ID3" + b"\x00" * 4096)
            extracted.append(video_path)
            return ExtractedAudio(path=path, file_name="workbench.mp3")

    monkeypatch.setattr(job_scheduler, "AudioExtractor", FakeExtractor)
    transcriber = FakeTranscriber()
    runner = TranscriptionJobRunner(object(), transcriber, storage)
    outcomes = []
    fastapi_app.state.scheduler = TranscriptionScheduler(
        dispatch=lambda video_id, job_id: outcomes.append(runner.run(db, video_id, job_id))
    )

    video = make_video(file_size=40 * BYTES_PER_MB)

    plan = (await client.get(f"/api/videos/{video.id}/plan")).json()
    assert plan["tier"] == "extract_audio"

    submitted = await client.post(f"/api/videos/{video.id}/transcribe")
    assert submitted.status_code == 202
    assert outcomes == ["completed"]
    assert extracted == [str(storage.get_path(video.storage_handle))]
    assert transcriber.calls[0]["file_name"] == "workbench.mp3"

    polled = (await client.get(f"/api/videos/{video.id}")).json()
    assert polled["transcription_status"] == "completed"
    assert polled["transcript"] == transcriber.text
    assert polled["transcription_error"] is None

    agent = (await client.post("/api/agents", json={"video_id": video.id, "type": "title"})).json()
    assert agent["status"] == "idle"
    llm.replies.append("I Built a Workbench From Scratch")

    generated = (await client.post(f"/api/agents/{agent['id']}/generate")).json()

    assert generated["draft"] == "I Built a Workbench From Scratch"
    assert generated["status"] == "ready"
    assert transcriber.text[:40] in llm.calls[0]["user_prompt"]
