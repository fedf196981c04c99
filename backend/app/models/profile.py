from sqlalchemy import Column, String, JSON, Text
from app.database import Base
from datetime import datetime, timezone
import uuid

class Profile(Base):
    """Channel metadata used as generation context"""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, unique=True, index=True)

    channel_name = Column(String(255), nullable=False)
    content_type = Column(String(255), nullable=False)
    niche = Column(String(255), nullable=False)
    links = Column(JSON, nullable=False, default=list)
    tone = Column(Text)
    target_audience = Column(Text)

    created_at = Column(String, nullable=False, default=lambda: datetime.now(timezone.utc).isoformat())
    updated_at = Column(String, nullable=False, default=lambda: datetime.now(timezone.utc).isoformat(),
                        onupdate=lambda: datetime.now(timezone.utc).isoformat())
