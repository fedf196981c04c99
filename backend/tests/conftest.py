"""Shared fixtures: in-memory database, fake external services, ASGI client."""

import asyncio
import base64
import os
import tempfile

# Settings are read at import time, so point storage and the database at
# throwaway locations before anything from app is imported.
os.environ.setdefault("STORAGE_PATH", tempfile.mkdtemp(prefix="content-studio-test-"))
os.environ["DATABASE_URL"] = "sqlite://"

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.exceptions import GenerationError
from app.main import app
from app.models import Agent, Profile, Project, Video
from app.services.ai.content_agent import AgentLockRegistry, ContentAgent
from app.services.job_scheduler import TranscriptionScheduler
from app.services.storage import StorageService
from app.services.transcription_service import Transcriber

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
AUTH = {"X-User-Id": USER_ID}

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeLLM:
    """
    Returns queued replies in order. An Exception in the queue is raised instead.
    With a delay each call yields to the event loop, and peak counts overlapping calls.
    """

    def __init__(self, *replies, delay=0.0):
        self.replies = list(replies)
        self.calls = []
        self.delay = delay
        self.active = 0
        self.peak = 0

    async def generate_text(self, system_prompt, user_prompt=None, messages=None, temperature=0.7, max_tokens=500):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        if not self.replies:
            raise GenerationError("No reply queued")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def close(self):
        pass


class FakeImages:
    def __init__(self, image: bytes = b"\x89PNG fake image"):
        self.image = image
        self.calls = []

    async def edit_image(self, source_image, prompt, size=None, model=None):
        self.calls.append({"source_image": source_image, "prompt": prompt})
        return base64.b64encode(self.image).decode()

    async def close(self):
        pass


class FakeTranscriber(Transcriber):
    name = "fake"

    def __init__(self, text="Welcome back to the channel, today we are building a workbench from scratch.",
                 error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe(self, data, file_name, mime_type=None):
        self.calls.append({"size": len(data), "file_name": file_name, "mime_type": mime_type})
        if self.error is not None:
            raise self.error
        return self._require_speech(self.text)


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage(tmp_path):
    return StorageService(root=tmp_path / "uploads", public_url="/storage/uploads")


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def images():
    return FakeImages()


@pytest.fixture
def content_agent(llm, images, storage):
    return ContentAgent(llm, images, storage, locks=AgentLockRegistry())


@pytest.fixture
def transcription_dispatch():
    return RecordingDispatcher()


@pytest.fixture
def probe_dispatch():
    return RecordingDispatcher()


@pytest.fixture
def client(db, storage, content_agent, transcription_dispatch, probe_dispatch):
    """ASGI client with app.state wired to fakes (ASGITransport skips lifespan)."""
    app.dependency_overrides[get_db] = lambda: db
    app.state.storage = storage
    app.state.scheduler = TranscriptionScheduler(dispatch=transcription_dispatch)
    app.state.content_agent = content_agent
    app.state.dispatch_probe = probe_dispatch

    transport = httpx.ASGITransport(app=app)
    yield httpx.AsyncClient(transport=transport, base_url="http://test", headers=AUTH)
    app.dependency_overrides.clear()


@pytest.fixture
def make_video(db, storage):
    def _make(user_id=USER_ID, file_size=10 * 1024 * 1024, content=b"\x00\x00\x00\x18ftypmp42", **fields):
        project = Project(user_id=user_id, title="Workshop")
        db.add(project)
        db.commit()
        video = Video(
            user_id=user_id,
            project_id=project.id,
            title=fields.pop("title", "Building a workbench"),
            original_filename="workbench.mp4",
            mime_type="video/mp4",
            file_size=file_size,
            storage_handle=storage.upload(content, "workbench.mp4"),
            **fields,
        )
        db.add(video)
        db.commit()
        db.refresh(video)
        return video
    return _make


@pytest.fixture
def make_agent(db):
    def _make(video, agent_type="title", **fields):
        agent = Agent(
            video_id=video.id,
            user_id=video.user_id,
            project_id=video.project_id,
            type=agent_type,
            **fields,
        )
        db.add(agent)
        db.commit()
        db.refresh(agent)
        return agent
    return _make


@pytest.fixture
def profile(db):
    record = Profile(
        user_id=USER_ID,
        channel_name="Sawdust Sundays",
        content_type="Tutorials",
        niche="Woodworking",
        tone="Friendly",
        target_audience="Hobbyists",
    )
    db.add(record)
    db.commit()
    return record
