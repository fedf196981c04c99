"""HTTP surface: projects, videos, transcripts, agents and profile."""

import httpx
import pytest

from app.api import videos as videos_api
from app.main import app as fastapi_app
from app.models import Agent, Video

from conftest import AUTH, OTHER_USER_ID

MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 1024


@pytest.fixture
def sniff_mp4(monkeypatch):
    monkeypatch.setattr(videos_api.magic, "from_buffer", lambda data, mime=True: "video/mp4")


async def _create_project(client, title="Workshop"):
    response = await client.post("/api/projects", json={"title": title})
    assert response.status_code == 201
    return response.json()


async def _upload(client, project_id, filename="workbench.mp4", content=MP4_BYTES):
    return await client.post(
        "/api/videos",
        data={"project_id": project_id, "title": "Building a workbench", "x": "120", "y": "40"},
        files={"file": (filename, content, "video/mp4")},
    )


# --- Auth and errors ---


@pytest.mark.anyio
async def test_missing_user_header_is_401(client) -> None:
    response = await client.get("/api/projects", headers={"X-User-Id": ""})

    assert response.status_code == 401
    assert response.json()["error"]["kind"] == "authorization"


@pytest.mark.anyio
async def test_other_users_records_are_hidden(client, make_video) -> None:
    video = make_video(user_id=OTHER_USER_ID)

    response = await client.get(f"/api/videos/{video.id}")

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Video not found or unauthorized"


@pytest.mark.anyio
async def test_health(client) -> None:
    response = await client.get("/health")
    assert response.json() == {"status": "healthy"}


# --- Projects ---


@pytest.mark.anyio
async def test_project_lifecycle(client, db, storage, sniff_mp4) -> None:
    project = await _create_project(client)
    video = (await _upload(client, project["id"])).json()
    agent = (await client.post("/api/agents", json={"video_id": video["id"], "type": "title"})).json()

    listed = await client.get("/api/projects")
    assert [p["id"] for p in listed.json()] == [project["id"]]

    response = await client.delete(f"/api/projects/{project['id']}")

    assert response.status_code == 200
    assert db.query(Video).count() == 0
    assert db.query(Agent).filter(Agent.id == agent["id"]).count() == 0
    assert list(storage.root.iterdir()) == []


# --- Videos ---


@pytest.mark.anyio
async def test_upload_creates_idle_video_and_queues_probe(client, probe_dispatch, sniff_mp4) -> None:
    project = await _create_project(client)

    response = await _upload(client, project["id"])

    assert response.status_code == 201
    body = response.json()
    assert body["transcription_status"] == "idle"
    assert body["file_size"] == len(MP4_BYTES)
    assert body["canvas_position"] == {"x": 120.0, "y": 40.0}
    assert body["video_url"].startswith("/storage/uploads/")
    assert probe_dispatch.calls == [(body["id"],)]

    listed = await client.get(f"/api/projects/{project['id']}/videos")
    assert [v["id"] for v in listed.json()] == [body["id"]]


@pytest.mark.anyio
async def test_upload_rejects_bad_extension(client) -> None:
    project = await _create_project(client)

    response = await _upload(client, project["id"], filename="notes.txt")

    assert response.status_code == 415
    assert response.json()["error"]["suggested_action"] == "convert_format"


@pytest.mark.anyio
async def test_upload_rejects_sniffed_mime(client, monkeypatch) -> None:
    monkeypatch.setattr(videos_api.magic, "from_buffer", lambda data, mime=True: "application/pdf")
    project = await _create_project(client)

    response = await _upload(client, project["id"])

    assert response.status_code == 415


@pytest.mark.anyio
async def test_upload_survives_probe_dispatch_failure(client, sniff_mp4) -> None:
    def broken(video_id):
        raise ConnectionError("broker down")

    fastapi_app.state.dispatch_probe = broken
    project = await _create_project(client)

    response = await _upload(client, project["id"])

    assert response.status_code == 201


@pytest.mark.anyio
async def test_patch_video_and_metadata(client, make_video) -> None:
    video = make_video()

    renamed = await client.patch(f"/api/videos/{video.id}", json={"title": "Bench v2", "canvas_position": {"x": 5, "y": 6}})
    assert renamed.json()["title"] == "Bench v2"
    assert renamed.json()["canvas_position"] == {"x": 5.0, "y": 6.0}

    response = await client.patch(
        f"/api/videos/{video.id}/metadata",
        json={"duration": 90.5, "resolution": {"width": 1920, "height": 1080}, "codec": "h264",
              "audio_info": {"codec": "aac", "sample_rate": 48000, "channels": 2, "bit_rate": 128000}},
    )

    body = response.json()
    assert body["duration_seconds"] == 90.5
    assert body["resolution"] == {"width": 1920, "height": 1080}
    assert body["audio_info"]["channels"] == 2
    assert body["transcription_status"] == "idle"


@pytest.mark.anyio
async def test_transcription_plan(client, make_video) -> None:
    video = make_video(file_size=40 * 1024 * 1024)

    response = await client.get(f"/api/videos/{video.id}/plan")

    assert response.json()["tier"] == "extract_audio"
    assert response.json()["size_mb"] == 40.0


@pytest.mark.anyio
async def test_transcribe_returns_202_then_409(client, transcription_dispatch, make_video) -> None:
    video = make_video()

    first = await client.post(f"/api/videos/{video.id}/transcribe")
    second = await client.post(f"/api/videos/{video.id}/transcribe")

    assert first.status_code == 202
    assert first.json()["transcription_status"] == "processing"
    assert second.status_code == 409
    assert second.json()["error"]["kind"] == "conflict"
    assert len(transcription_dispatch.calls) == 1


@pytest.mark.anyio
async def test_transcribe_completed_video_is_422(client, make_video) -> None:
    video = make_video(transcription_status="completed", transcript="Done already")

    response = await client.post(f"/api/videos/{video.id}/transcribe")

    assert response.status_code == 422


@pytest.mark.anyio
async def test_manual_transcript_text_resets_agents(client, make_video, make_agent) -> None:
    video = make_video()
    make_agent(video, "title", draft="Old", status="ready")

    response = await client.post(f"/api/videos/{video.id}/transcript", data={"transcription": "Typed words", "format": "txt"})

    body = response.json()
    assert response.status_code == 200
    assert body["affected_agents"] == 1
    assert body["video"]["transcription_status"] == "completed"
    assert body["video"]["transcript_source"] == "manual"

    agents = (await client.get(f"/api/videos/{video.id}/agents")).json()
    assert [(a["draft"], a["status"]) for a in agents] == [("", "idle")]


@pytest.mark.anyio
async def test_manual_transcript_file_upload(client, make_video) -> None:
    video = make_video(duration_seconds=3.0)
    srt = b"1\n00:00:01,000 --> 00:00:09,000\nHello and welcome.\n"

    response = await client.post(
        f"/api/videos/{video.id}/transcript",
        files={"file": ("episode.srt", srt, "application/x-subrip")},
    )

    body = response.json()
    assert body["video"]["transcript"] == "Hello and welcome."
    assert body["warnings"] == ["Timestamps exceed video duration (0:03)"]


@pytest.mark.anyio
async def test_manual_transcript_empty_is_422(client, make_video) -> None:
    video = make_video()

    response = await client.post(f"/api/videos/{video.id}/transcript", data={"transcription": "  "})

    assert response.status_code == 422


@pytest.mark.anyio
async def test_clear_transcript(client, make_video) -> None:
    video = make_video(transcription_status="completed", transcript="Words", transcript_source="service")

    response = await client.delete(f"/api/videos/{video.id}/transcript")

    assert response.json()["transcription_status"] == "idle"
    assert response.json()["transcript"] is None


@pytest.mark.anyio
async def test_delete_video_removes_agents_and_file(client, db, storage, make_video, make_agent) -> None:
    video = make_video()
    make_agent(video)
    path = storage.get_path(video.storage_handle)

    response = await client.delete(f"/api/videos/{video.id}")

    assert response.status_code == 200
    assert db.query(Agent).count() == 0
    assert not path.exists()


# --- Agents ---


@pytest.mark.anyio
async def test_agent_connections(client, make_video, make_agent) -> None:
    video = make_video()
    title = make_agent(video, "title")
    description = make_agent(video, "description")

    ok = await client.put(f"/api/agents/{description.id}/connections", json={"connections": [title.id, title.id]})
    assert ok.json()["connections"] == [title.id]

    self_link = await client.put(f"/api/agents/{description.id}/connections", json={"connections": [description.id]})
    assert self_link.status_code == 422

    unknown = await client.put(f"/api/agents/{description.id}/connections", json={"connections": ["nope"]})
    assert unknown.status_code == 404

    await client.delete(f"/api/agents/{title.id}")
    remaining = (await client.get(f"/api/agents/{description.id}")).json()
    assert remaining["connections"] == []


@pytest.mark.anyio
async def test_agent_position(client, make_video, make_agent) -> None:
    agent = make_agent(make_video())

    response = await client.patch(f"/api/agents/{agent.id}/position", json={"x": 300, "y": 12.5})

    assert response.json()["canvas_position"] == {"x": 300.0, "y": 12.5}


@pytest.mark.anyio
async def test_create_agent_rejects_unknown_type(client, make_video) -> None:
    video = make_video()

    response = await client.post("/api/agents", json={"video_id": video.id, "type": "podcast"})

    assert response.status_code == 422


@pytest.mark.anyio
async def test_generate_and_refine_endpoints(client, llm, make_video, make_agent) -> None:
    agent = make_agent(make_video(), "tweets")
    llm.replies.extend(["1/ We built a bench", "Sure!\nUPDATED TWEETS: 1/ We built a BENCH"])

    generated = await client.post(f"/api/agents/{agent.id}/generate")
    refined = await client.post(f"/api/agents/{agent.id}/refine", json={"message": "Shout more"})

    assert generated.json()["draft"] == "1/ We built a bench"
    assert generated.json()["status"] == "ready"
    body = refined.json()
    assert body["updated_draft"] == "1/ We built a BENCH"
    assert body["response"].startswith("Sure!")
    assert [m["role"] for m in body["agent"]["chat_history"]] == ["user", "ai"]


@pytest.mark.anyio
async def test_generate_failure_is_classified(client, llm, make_video, make_agent) -> None:
    from app.exceptions import GenerationError

    agent = make_agent(make_video(), "title", draft="Keep me", status="ready")
    llm.replies.append(GenerationError("Text generation rate limit exceeded. Please retry shortly."))

    response = await client.post(f"/api/agents/{agent.id}/generate", json={})

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["kind"] == "generation"
    assert error["recoverable"] is True
    agent_body = (await client.get(f"/api/agents/{agent.id}")).json()
    assert (agent_body["draft"], agent_body["status"]) == ("Keep me", "error")


@pytest.mark.anyio
async def test_refine_requires_message(client, make_video, make_agent) -> None:
    agent = make_agent(make_video())

    response = await client.post(f"/api/agents/{agent.id}/refine", json={"message": ""})

    assert response.status_code == 422


# --- Profile ---


@pytest.mark.anyio
async def test_profile_upsert(client) -> None:
    assert (await client.get("/api/profile")).json() is None

    payload = {"channel_name": "Sawdust Sundays", "content_type": "Tutorials", "niche": "Woodworking",
               "links": ["https://youtube.com/@sawdust"]}
    created = await client.put("/api/profile", json=payload)
    updated = await client.put("/api/profile", json={**payload, "tone": "Dry humour"})

    assert created.json()["id"] == updated.json()["id"]
    fetched = (await client.get("/api/profile")).json()
    assert fetched["tone"] == "Dry humour"
    assert fetched["links"] == ["https://youtube.com/@sawdust"]


# --- Unclassified failures and lock cleanup ---


@pytest.mark.anyio
async def test_untyped_generation_failure_has_error_body(client, llm, make_video, make_agent) -> None:
    agent = make_agent(make_video(), "title", draft="Keep me", status="ready")
    llm.replies.append(ValueError("Expecting value: line 1 column 1 (char 0)"))

    response = await client.post(f"/api/agents/{agent.id}/generate")

    assert response.status_code == 502
    assert response.json()["error"]["kind"] == "generation"
    assert response.json()["error"]["recoverable"] is True


@pytest.mark.anyio
async def test_unexpected_exception_is_classified(client, make_video, make_agent) -> None:
    class ExplodingAgent:
        async def generate(self, *args, **kwargs):
            raise RuntimeError("segfault in codec")

    agent = make_agent(make_video())
    fastapi_app.state.content_agent = ExplodingAgent()
    transport = httpx.ASGITransport(app=fastapi_app, raise_app_exceptions=False)

    async with httpx.AsyncClient(transport=transport, base_url="http://test", headers=AUTH) as raw_client:
        response = await raw_client.post(f"/api/agents/{agent.id}/generate")

    assert response.status_code == 500
    assert set(response.json()["error"]) == {"kind", "message", "detail", "recoverable", "suggested_action"}


@pytest.mark.anyio
async def test_deleting_video_or_project_discards_agent_locks(client, content_agent, make_video, make_agent) -> None:
    first_video, second_video = make_video(), make_video()
    first_id, second_id = make_agent(first_video).id, make_agent(second_video).id
    video_id, project_id = first_video.id, second_video.project_id
    content_agent.locks.lock_for(first_id)
    content_agent.locks.lock_for(second_id)

    assert (await client.delete(f"/api/videos/{video_id}")).status_code == 200
    assert (await client.delete(f"/api/projects/{project_id}")).status_code == 200

    assert first_id not in content_agent.locks
    assert second_id not in content_agent.locks
