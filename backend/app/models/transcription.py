from sqlalchemy import Column, String, Integer, Float, JSON, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from app.database import Base
from datetime import datetime, timezone
import uuid

class Transcription(Base):
    """Transcript file supplied by the user (SRT, VTT, TXT or JSON)"""
    __tablename__ = "transcriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False)
    project_id = Column(String(36), ForeignKey('projects.id'), nullable=True)
    video_id = Column(String(36), ForeignKey('videos.id'), nullable=True)

    file_name = Column(String(255), nullable=False)
    format = Column(String(10), nullable=False)  # srt, vtt, txt, json
    full_text = Column(Text, nullable=False)

    # Transcript data: [{start, end, text}]
    segments = Column(JSON)
    word_count = Column(Integer, nullable=False, default=0)
    duration = Column(Float)

    canvas_position = Column(JSON, nullable=False, default=lambda: {"x": 0.0, "y": 0.0})

    created_at = Column(String, nullable=False, default=lambda: datetime.now(timezone.utc).isoformat())

    project = relationship("Project", back_populates="transcriptions")
    video = relationship("Video", back_populates="transcriptions")

    __table_args__ = (
        Index('idx_transcription_user', 'user_id'),
        Index('idx_transcription_video', 'video_id'),
    )
