"""Video model"""
import uuid
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from tlyt.models.base import Base


class Video(Base):
    """YouTube video metadata used for cost calculation and analysis"""
    __tablename__ = "videos"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    youtube_id = Column(String(32), unique=True, nullable=False, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text)
    channel_id = Column(String(64))
    channel_title = Column(String(255))
    published_at = Column(DateTime(timezone=True))
    duration = Column(String(32), nullable=False)  # ISO 8601 as returned by YouTube, e.g. PT1H2M3S
    duration_seconds = Column(Integer, nullable=False)
    chip_cost = Column(Integer, nullable=True)  # NULL when duration is zero (live streams)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    analyses = relationship("Analysis", back_populates="video")
