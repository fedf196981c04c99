from sqlalchemy import Column, String, Boolean, Text, Index
from sqlalchemy.orm import relationship
from app.database import Base
from datetime import datetime, timezone
import uuid

class Project(Base):
    """A canvas of videos, agents and attached transcripts owned by one user"""
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text)
    is_archived = Column(Boolean, nullable=False, default=False)

    created_at = Column(String, nullable=False, default=lambda: datetime.now(timezone.utc).isoformat())
    updated_at = Column(String, nullable=False, default=lambda: datetime.now(timezone.utc).isoformat(),
                        onupdate=lambda: datetime.now(timezone.utc).isoformat())

    # Deleting a project removes everything on its canvas
    videos = relationship("Video", back_populates="project", cascade="all, delete-orphan")
    transcriptions = relationship("Transcription", back_populates="project", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_project_user', 'user_id'),
        Index('idx_project_user_archived', 'user_id', 'is_archived'),
    )

    def __repr__(self):
        return f"<Project(id={self.id}, title={self.title})>"
