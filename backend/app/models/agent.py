"""
Agent Model
One generation unit (title, description, thumbnail or tweets) bound to a video
"""
from sqlalchemy import Column, String, JSON, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from app.database import Base
from datetime import datetime, timezone
import uuid
import enum

class AgentType(str, enum.Enum):
    TITLE = "title"
    DESCRIPTION = "description"
    THUMBNAIL = "thumbnail"
    TWEETS = "tweets"

class AgentStatus(str, enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"

class ChatRole(str, enum.Enum):
    USER = "user"
    AI = "ai"

class Agent(Base):
    __tablename__ = "agents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    video_id = Column(String(36), ForeignKey('videos.id'), nullable=False)
    user_id = Column(String(64), nullable=False)
    project_id = Column(String(36), ForeignKey('projects.id'), nullable=True)

    type = Column(String(20), nullable=False)

    # Empty string means nothing generated yet
    draft = Column(Text, nullable=False, default="")
    thumbnail_storage_handle = Column(String(255))
    thumbnail_url = Column(Text)

    # Ids of agents whose drafts feed this one
    connections = Column(JSON, nullable=False, default=list)

    # [{role, message, timestamp}], append-only, timestamps in epoch ms
    chat_history = Column(JSON, nullable=False, default=list)

    canvas_position = Column(JSON, nullable=False, default=lambda: {"x": 0.0, "y": 0.0})

    status = Column(String(20), nullable=False, default=AgentStatus.IDLE.value)
    generation_started_at = Column(String)

    created_at = Column(String, nullable=False, default=lambda: datetime.now(timezone.utc).isoformat())

    video = relationship("Video", back_populates="agents")

    __table_args__ = (
        Index('idx_agent_video', 'video_id'),
        Index('idx_agent_user', 'user_id'),
        Index('idx_agent_project', 'project_id'),
        Index('idx_agent_type', 'type'),
    )

    def __repr__(self):
        return f"<Agent(id={self.id}, type={self.type}, status={self.status})>"
