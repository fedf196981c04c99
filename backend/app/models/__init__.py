"""
Database models for the content studio.
"""
from app.models.project import Project
from app.models.video import (
    Video,
    TranscriptionStatus,
    TranscriptSource,
    SCHEDULABLE_STATUSES,
)
from app.models.agent import Agent, AgentType, AgentStatus, ChatRole
from app.models.profile import Profile
from app.models.transcription import Transcription

__all__ = [
    "Project",
    "Video",
    "TranscriptionStatus",
    "TranscriptSource",
    "SCHEDULABLE_STATUSES",
    "Agent",
    "AgentType",
    "AgentStatus",
    "ChatRole",
    "Profile",
    "Transcription",
]
