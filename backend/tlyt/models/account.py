"""Account model"""
import uuid
from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from tlyt.models.base import Base


class Account(Base):
    """One per user; chip_balance is only ever changed by the ledger service"""
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    external_id = Column(String(255), unique=True, nullable=True, index=True)  # Set once the account is claimed by an identity provider
    email = Column(String(255), nullable=True)
    chip_balance = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    ledger_entries = relationship("LedgerEntry", back_populates="account")
    analyses = relationship("Analysis", back_populates="account")
    analysis_requests = relationship("AnalysisRequest", back_populates="account")

    __table_args__ = (
        CheckConstraint("chip_balance >= 0", name="ck_accounts_chip_balance_non_negative"),
    )

    @property
    def is_trial(self) -> bool:
        return self.external_id is None

    def __repr__(self):
        return f"<Account(id={self.id}, balance={self.chip_balance}, trial={self.is_trial})>"
