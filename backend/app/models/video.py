from sqlalchemy import (
    Column, String, Integer, Float, JSON, BigInteger,
    ForeignKey, Index, Text
)
from sqlalchemy.orm import relationship
from app.database import Base
from datetime import datetime, timezone
import enum
import uuid

class TranscriptionStatus(str, enum.Enum):
    IDLE = "idle"                # No transcript requested yet
    PROCESSING = "processing"    # Background job in flight
    COMPLETED = "completed"      # Transcript available
    FAILED = "failed"            # Last job failed, may be resubmitted

class TranscriptSource(str, enum.Enum):
    SERVICE = "service"          # Produced by the transcription service
    MANUAL = "manual"            # Pasted or uploaded by the user

# Statuses a new transcription job may start from
SCHEDULABLE_STATUSES = (TranscriptionStatus.IDLE.value, TranscriptionStatus.FAILED.value)

class Video(Base):
    __tablename__ = "videos"

    # Primary identification
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False)
    project_id = Column(String(36), ForeignKey('projects.id'), nullable=True)

    # File information
    title = Column(String(255))
    original_filename = Column(String(255))
    mime_type = Column(String(50))
    file_size = Column(BigInteger, nullable=False, default=0)  # bytes
    storage_handle = Column(String(255))  # Opaque handle from StorageService

    # Technical metadata (null until probed)
    duration_seconds = Column(Float)
    width = Column(Integer)
    height = Column(Integer)
    frame_rate = Column(Float)
    bit_rate = Column(BigInteger)  # bits per second
    container_format = Column(String(50))
    codec = Column(String(50))
    audio_info = Column(JSON)  # {codec, sample_rate, channels, bit_rate}
    frame_handles = Column(JSON)  # Preview frames kept in StorageService

    # Transcript and its state machine
    transcript = Column(Text)
    transcript_source = Column(String(20))
    transcription_status = Column(String(20), nullable=False, default=TranscriptionStatus.IDLE.value)
    transcription_error = Column(Text)  # Only set while status = failed
    transcription_progress = Column(String(255))
    transcription_job_id = Column(String(36))  # Job currently allowed to finish
    transcription_started_at = Column(String)

    canvas_position = Column(JSON, nullable=False, default=lambda: {"x": 0.0, "y": 0.0})

    created_at = Column(String, nullable=False, default=lambda: datetime.now(timezone.utc).isoformat())

    project = relationship("Project", back_populates="videos")
    agents = relationship("Agent", back_populates="video", cascade="all, delete-orphan")
    transcriptions = relationship("Transcription", back_populates="video", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_video_user', 'user_id'),
        Index('idx_video_project', 'project_id'),
        Index('idx_video_created_at', 'created_at'),
    )

    @property
    def resolution(self):
        if self.width is None or self.height is None:
            return None
        return {"width": self.width, "height": self.height}

    def __repr__(self):
        return f"<Video(id={self.id}, transcription_status={self.transcription_status})>"
