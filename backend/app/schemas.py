"""
Pydantic schemas shared by the API layer and the pipeline services
"""
from typing import Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field

from app.models.agent import AgentType


class CanvasPosition(BaseModel):
    x: float = 0.0
    y: float = 0.0


class Resolution(BaseModel):
    width: int
    height: int


class AudioInfo(BaseModel):
    codec: str
    sample_rate: int
    channels: int
    bit_rate: int


class ExtractedFrame(BaseModel):
    """One decoded frame. timestamp is a fraction of the video duration"""
    timestamp: float
    data_url: str


class VideoMetadata(BaseModel):
    duration: Optional[float] = None  # seconds
    file_size: Optional[int] = None  # bytes
    resolution: Optional[Resolution] = None
    frame_rate: Optional[float] = None
    bit_rate: Optional[int] = None  # bits/s
    format: Optional[str] = None
    codec: Optional[str] = None
    audio_info: Optional[AudioInfo] = None
    thumbnails: List[str] = []  # data URLs


class ChatMessage(BaseModel):
    role: Literal["user", "ai"]
    message: str
    timestamp: int  # epoch ms


class ProfileData(BaseModel):
    channel_name: str
    content_type: str
    niche: str
    tone: Optional[str] = None
    target_audience: Optional[str] = None


class ConnectedOutput(BaseModel):
    type: str
    content: str


class ManualTranscript(BaseModel):
    file_name: str
    text: str
    format: str


class VideoContext(BaseModel):
    title: Optional[str] = None
    transcript: Optional[str] = None
    manual_transcripts: List[ManualTranscript] = []
    duration: Optional[float] = None


# --- Request bodies ---

class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class VideoUpdate(BaseModel):
    title: Optional[str] = None
    canvas_position: Optional[CanvasPosition] = None


class VideoMetadataUpdate(BaseModel):
    duration: Optional[float] = None
    file_size: Optional[int] = None
    resolution: Optional[Resolution] = None
    frame_rate: Optional[float] = None
    bit_rate: Optional[int] = None
    format: Optional[str] = None
    codec: Optional[str] = None
    audio_info: Optional[AudioInfo] = None


class AgentCreate(BaseModel):
    video_id: str
    type: AgentType
    canvas_position: CanvasPosition = CanvasPosition()


class AgentConnectionsUpdate(BaseModel):
    connections: List[str]


class GenerateRequest(BaseModel):
    # Optional client-supplied frames for thumbnail agents
    frames: Optional[List[ExtractedFrame]] = None
    additional_context: Optional[str] = None


class RefineRequest(BaseModel):
    message: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    channel_name: str
    content_type: str
    niche: str
    links: List[str] = []
    tone: Optional[str] = None
    target_audience: Optional[str] = None


# --- Responses ---

class ProjectResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    is_archived: bool
    created_at: str

    model_config = ConfigDict(from_attributes=True)


class VideoResponse(BaseModel):
    id: str
    project_id: Optional[str] = None
    title: Optional[str] = None
    original_filename: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: int
    video_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    resolution: Optional[Resolution] = None
    frame_rate: Optional[float] = None
    bit_rate: Optional[int] = None
    container_format: Optional[str] = None
    codec: Optional[str] = None
    audio_info: Optional[AudioInfo] = None
    transcript: Optional[str] = None
    transcript_source: Optional[str] = None
    transcription_status: str
    transcription_error: Optional[str] = None
    transcription_progress: Optional[str] = None
    frame_urls: List[str] = []
    canvas_position: CanvasPosition
    created_at: str

    model_config = ConfigDict(from_attributes=True)


class AgentResponse(BaseModel):
    id: str
    video_id: str
    project_id: Optional[str] = None
    type: str
    draft: str
    thumbnail_url: Optional[str] = None
    connections: List[str]
    chat_history: List[ChatMessage]
    canvas_position: CanvasPosition
    status: str
    created_at: str

    model_config = ConfigDict(from_attributes=True)


class RefinementResponse(BaseModel):
    response: str
    updated_draft: str
    agent: AgentResponse


class TranscriptionPlanResponse(BaseModel):
    tier: str
    size_bytes: int
    size_mb: float
    reason: str


class ProfileResponse(BaseModel):
    id: str
    channel_name: str
    content_type: str
    niche: str
    links: List[str]
    tone: Optional[str] = None
    target_audience: Optional[str] = None
    updated_at: str

    model_config = ConfigDict(from_attributes=True)
