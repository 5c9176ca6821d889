"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from tlyt.models.base import Base
from tlyt.models.account import Account
from tlyt.models.chip_package import ChipPackage
from tlyt.models.ledger_entry import LedgerEntry, EntryCategory
from tlyt.models.video import Video
from tlyt.models.analysis import Analysis, AnalysisRequest
from tlyt.models.stripe_event import StripeEvent

# Export all for convenience
__all__ = [
    "Base", "Account", "ChipPackage", "LedgerEntry", "EntryCategory",
    "Video", "Analysis", "AnalysisRequest", "StripeEvent"
]
