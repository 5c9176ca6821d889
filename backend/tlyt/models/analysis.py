"""Analysis and AnalysisRequest models"""
import uuid
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from tlyt.models.base import Base


class Analysis(Base):
    """Completed analysis result; at most one per account and video"""
    __tablename__ = "analyses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    video_id = Column(String(36), ForeignKey("videos.id", ondelete="CASCADE"), nullable=False)
    summary = Column(Text, nullable=False)
    short_summary = Column(Text, nullable=False)
    timestamps = Column(JSON, default=list)  # [{"seconds": int, "description": str}, ...]
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    account = relationship("Account", back_populates="analyses")
    video = relationship("Video", back_populates="analyses")

    __table_args__ = (
        UniqueConstraint('account_id', 'video_id', name='uq_analyses_account_video'),
    )


class AnalysisRequest(Base):
    """One orchestration run: pending -> completed | refunded | rejected"""
    __tablename__ = "analysis_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    video_id = Column(String(36), ForeignKey("videos.id", ondelete="CASCADE"), nullable=False)
    user_prompt = Column(Text)
    chip_cost = Column(Integer, default=0, nullable=False)  # 0 for trial runs
    status = Column(String(20), default="pending", nullable=False)
    error = Column(Text)
    analysis_id = Column(String(36), ForeignKey("analyses.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    completed_at = Column(DateTime(timezone=True))

    # Relationships
    account = relationship("Account", back_populates="analysis_requests")
    analysis = relationship("Analysis")
    ledger_entries = relationship("LedgerEntry", back_populates="request")

    __table_args__ = (
        Index('ix_analysis_requests_status_created', 'status', 'created_at'),
    )
