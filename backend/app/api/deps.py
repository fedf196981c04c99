"""
Shared request dependencies
"""
from typing import Optional
from fastapi import Header, Request

from app.config import get_settings
from app.exceptions import Unauthorized
from app.models.agent import Agent
from app.models.video import Video
from app.schemas import AgentResponse, CanvasPosition, ChatMessage, Resolution, AudioInfo, VideoResponse
from app.services.ai.content_agent import ContentAgent
from app.services.job_scheduler import TranscriptionScheduler
from app.services.storage import StorageService

settings = get_settings()


def get_current_user(x_user_id: Optional[str] = Header(None, alias=settings.USER_ID_HEADER)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized()
    return x_user_id.strip()


def get_storage_service(request: Request) -> StorageService:
    return request.app.state.storage


def get_scheduler(request: Request) -> TranscriptionScheduler:
    return request.app.state.scheduler


def get_content_agent(request: Request) -> ContentAgent:
    return request.app.state.content_agent


def get_probe_dispatcher(request: Request):
    return request.app.state.dispatch_probe


def video_response(video: Video, storage: StorageService) -> VideoResponse:
    resolution = video.resolution
    return VideoResponse(
        id=video.id,
        project_id=video.project_id,
        title=video.title,
        original_filename=video.original_filename,
        mime_type=video.mime_type,
        file_size=video.file_size or 0,
        video_url=storage.get_url(video.storage_handle),
        duration_seconds=video.duration_seconds,
        resolution=Resolution(**resolution) if resolution else None,
        frame_rate=video.frame_rate,
        bit_rate=video.bit_rate,
        container_format=video.container_format,
        codec=video.codec,
        audio_info=AudioInfo(**video.audio_info) if video.audio_info else None,
        transcript=video.transcript,
        transcript_source=video.transcript_source,
        transcription_status=video.transcription_status,
        transcription_error=video.transcription_error,
        transcription_progress=video.transcription_progress,
        frame_urls=[storage.get_url(h) for h in video.frame_handles or []],
        canvas_position=CanvasPosition(**(video.canvas_position or {})),
        created_at=video.created_at,
    )


def agent_response(agent: Agent) -> AgentResponse:
    return AgentResponse(
        id=agent.id,
        video_id=agent.video_id,
        project_id=agent.project_id,
        type=agent.type,
        draft=agent.draft or "",
        thumbnail_url=agent.thumbnail_url,
        connections=list(agent.connections or []),
        chat_history=[ChatMessage(**m) for m in (agent.chat_history or [])],
        canvas_position=CanvasPosition(**(agent.canvas_position or {})),
        status=agent.status,
        created_at=agent.created_at,
    )
