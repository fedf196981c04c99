"""
Content Agent
Orchestrates generation and chat refinement for title, description,
thumbnail and tweet agents.
"""
import asyncio
import base64
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
import logging

from app.exceptions import GenerationError, PipelineError, ThumbnailGenerationError
from app.models.agent import Agent, AgentType, ChatRole
from app.models.profile import Profile
from app.models.transcription import Transcription
from app.models.video import TranscriptSource, TranscriptionStatus, Video
from app.schemas import (
    ChatMessage,
    ConnectedOutput,
    ExtractedFrame,
    ManualTranscript,
    ProfileData,
    VideoContext,
)
from app.services import store
from app.services.ai.image_client import ImageClient, decode_data_url
from app.services.ai.llm_client import LLMClient
from app.services.ai.prompt_builder import (
    GENERATION_TEMPERATURE,
    THUMBNAIL_CONCEPT_MAX_TOKENS,
    PromptBuilder,
    extract_updated_draft,
    max_tokens_for,
)
from app.services.job_scheduler import agent_generation
from app.services.storage import StorageService
from app.services.video_processor import MediaProbe

logger = logging.getLogger(__name__)

REFINE_MAX_TOKENS = 500


@dataclass
class RefinementResult:
    response: str
    updated_draft: str


class AgentLockRegistry:
    """One asyncio.Lock per agent id. Refinements of the same agent queue up, others run in parallel"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock

    def discard(self, agent_id: str):
        lock = self._locks.get(agent_id)
        if lock is not None and not lock.locked():
            del self._locks[agent_id]

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._locks


def build_connected_outputs(db: Session, agent: Agent) -> List[ConnectedOutput]:
    """Non-empty drafts of the agents this one is connected to, in connection order"""
    if not agent.connections:
        return []
    peers = {
        peer.id: peer
        for peer in db.query(Agent).filter(
            Agent.id.in_(agent.connections),
            Agent.user_id == agent.user_id,
        )
    }
    outputs = []
    for peer_id in agent.connections:
        peer = peers.get(peer_id)
        if peer is not None and peer.id != agent.id and peer.draft:
            outputs.append(ConnectedOutput(type=peer.type, content=peer.draft))
    return outputs


def build_video_context(db: Session, video: Video) -> VideoContext:
    context = VideoContext(title=video.title, duration=video.duration_seconds)
    if video.transcription_status != TranscriptionStatus.COMPLETED.value or not video.transcript:
        return context

    if video.transcript_source == TranscriptSource.MANUAL.value:
        manual = db.query(Transcription).filter(Transcription.video_id == video.id).order_by(
            Transcription.created_at
        ).all()
        if manual:
            context.manual_transcripts = [
                ManualTranscript(file_name=t.file_name, text=t.full_text, format=t.format) for t in manual
            ]
            return context

    context.transcript = video.transcript
    return context


def load_profile(db: Session, user_id: str) -> Optional[ProfileData]:
    profile = db.query(Profile).filter(Profile.user_id == user_id).first()
    if profile is None:
        return None
    return ProfileData(
        channel_name=profile.channel_name,
        content_type=profile.content_type,
        niche=profile.niche,
        tone=profile.tone,
        target_audience=profile.target_audience,
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


@asynccontextmanager
async def _classified(agent: Agent, action: str):
    """Re-raise untyped failures as GenerationError so they reach the caller classified"""
    try:
        yield
    except PipelineError:
        raise
    except Exception as e:
        logger.error(f"{action} failed for agent {agent.id}: {e!r}")
        raise GenerationError(f"{action} failed: {e}") from e


def _require_text(text: Optional[str], what: str) -> str:
    text = (text or "").strip()
    if not text:
        raise GenerationError(f"{what} returned empty content")
    return text


class ContentAgent:
    def __init__(
        self,
        llm: LLMClient,
        images: ImageClient,
        storage: StorageService,
        probe: Optional[MediaProbe] = None,
        locks: Optional[AgentLockRegistry] = None,
        prompts: Optional[PromptBuilder] = None,
    ):
        self.llm = llm
        self.images = images
        self.storage = storage
        self.probe = probe
        self.locks = locks or AgentLockRegistry()
        self.prompts = prompts or PromptBuilder()

    def _load(self, db: Session, user_id: str, agent_id: str):
        agent = store.get(db, Agent, agent_id, user_id)
        video = store.get(db, Video, agent.video_id, user_id)
        return agent, video, build_video_context(db, video), build_connected_outputs(db, agent), load_profile(db, user_id)

    async def generate(
        self,
        db: Session,
        user_id: str,
        agent_id: str,
        frames: Optional[List[ExtractedFrame]] = None,
        additional_context: Optional[str] = None,
    ) -> str:
        """
        Generate a fresh draft for the agent.
        On failure the agent ends in error with its previous draft intact.
        """
        agent, video, context, outputs, profile = self._load(db, user_id, agent_id)
        old_thumbnail = agent.thumbnail_storage_handle

        async with agent_generation(db, agent), _classified(agent, f"{agent.type.title()} generation"):
            if agent.type == AgentType.THUMBNAIL.value:
                draft = await self._generate_thumbnail(agent, video, context, outputs, profile, frames, additional_context)
            else:
                prompt = self.prompts.build_generation_prompt(agent.type, context, outputs, profile)
                draft = _require_text(await self.llm.generate_text(
                    system_prompt=self.prompts.get_system_prompt(agent.type),
                    user_prompt=prompt,
                    temperature=GENERATION_TEMPERATURE,
                    max_tokens=max_tokens_for(agent.type),
                ), "Text generation")
            agent.draft = draft

        if old_thumbnail and old_thumbnail != agent.thumbnail_storage_handle:
            self.storage.delete(old_thumbnail)
        logger.info(f"Generated {agent.type} for agent {agent.id} ({len(agent.draft)} chars)")
        return agent.draft

    async def _candidate_frames(self, video: Video) -> List[ExtractedFrame]:
        if self.probe is None or not video.storage_handle:
            return []
        path = str(self.storage.get_path(video.storage_handle))
        duration = video.duration_seconds
        if not duration:
            fast = await asyncio.to_thread(self.probe.fast_probe, path, video.file_size)
            duration = fast.duration
        return await asyncio.to_thread(self.probe.thumbnail_candidates, path, duration)

    def _store_thumbnail(self, agent: Agent, image_b64: str):
        handle = self.storage.upload(base64.b64decode(image_b64), "thumbnail.png")
        agent.thumbnail_storage_handle = handle
        agent.thumbnail_url = self.storage.get_url(handle)

    async def _generate_thumbnail(
        self,
        agent: Agent,
        video: Video,
        context: VideoContext,
        outputs: List[ConnectedOutput],
        profile: Optional[ProfileData],
        frames: Optional[List[ExtractedFrame]],
        additional_context: Optional[str],
    ) -> str:
        frames = frames or await self._candidate_frames(video)
        if not frames:
            raise ThumbnailGenerationError("No video frames available for thumbnail generation")

        concept = _require_text(await self.llm.generate_text(
            system_prompt="You are an expert YouTube thumbnail designer. Analyze the provided images and create a "
                          "detailed thumbnail concept that will maximize click-through rates.",
            user_prompt=self.prompts.build_thumbnail_concept_content(
                context, frames, outputs, profile, additional_context
            ),
            temperature=GENERATION_TEMPERATURE,
            max_tokens=THUMBNAIL_CONCEPT_MAX_TOKENS,
        ), "Thumbnail concept generation")
        image_prompt = self.prompts.build_thumbnail_image_prompt(concept, context, outputs, profile, additional_context)
        image_b64 = await self.images.edit_image(decode_data_url(frames[0].data_url), image_prompt)
        self._store_thumbnail(agent, image_b64)
        return concept

    def _append_exchange(self, agent: Agent, user_message: str, response: str, history: List[ChatMessage]):
        last = history[-1].timestamp if history else 0
        user_ts = max(_now_ms(), last + 1)
        ai_ts = max(_now_ms(), user_ts + 1)
        # Reassign so the JSON column is flagged dirty
        agent.chat_history = list(agent.chat_history or []) + [
            {"role": ChatRole.USER.value, "message": user_message, "timestamp": user_ts},
            {"role": ChatRole.AI.value, "message": response, "timestamp": ai_ts},
        ]

    async def refine(self, db: Session, user_id: str, agent_id: str, user_message: str) -> RefinementResult:
        """
        One chat turn against the agent's current draft.
        The user message and reply are appended together, and only when the
        model call succeeds.
        """
        store.get(db, Agent, agent_id, user_id)
        async with self.locks.lock_for(agent_id):
            agent, video, context, outputs, profile = self._load(db, user_id, agent_id)
            old_thumbnail = agent.thumbnail_storage_handle

            async with agent_generation(db, agent), _classified(agent, "Refinement"):
                current_draft = agent.draft or ""
                history = [ChatMessage(**entry) for entry in (agent.chat_history or [])]
                prompt = self.prompts.build_refine_prompt(
                    agent.type, current_draft, user_message, history, context, outputs, profile
                )
                response = _require_text(await self.llm.generate_text(
                    system_prompt=self.prompts.get_refine_system_prompt(agent.type),
                    user_prompt=prompt,
                    temperature=GENERATION_TEMPERATURE,
                    max_tokens=REFINE_MAX_TOKENS,
                ), "Refinement")
                updated_draft = extract_updated_draft(response, agent.type, current_draft)

                if updated_draft != current_draft:
                    if agent.type == AgentType.THUMBNAIL.value and old_thumbnail:
                        image_prompt = self.prompts.build_thumbnail_refine_image_prompt(user_message, updated_draft)
                        image_b64 = await self.images.edit_image(self.storage.read(old_thumbnail), image_prompt)
                        self._store_thumbnail(agent, image_b64)
                    agent.draft = updated_draft

                self._append_exchange(agent, user_message, response, history)

            if old_thumbnail and old_thumbnail != agent.thumbnail_storage_handle:
                self.storage.delete(old_thumbnail)

        logger.info(f"Refined agent {agent_id}: draft {'updated' if updated_draft != current_draft else 'unchanged'}")
        return RefinementResult(response=response, updated_draft=updated_draft)
