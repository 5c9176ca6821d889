"""Response shaping shared by the API routers"""
from typing import Dict, Any

from tlyt.models.account import Account
from tlyt.models.analysis import Analysis
from tlyt.models.chip_package import ChipPackage
from tlyt.models.ledger_entry import LedgerEntry
from tlyt.models.video import Video


def _iso(value):
    return value.isoformat() if value else None


def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "email": account.email,
        "chip_balance": account.chip_balance,
        "is_trial": account.is_trial,
        "created_at": _iso(account.created_at),
    }


def entry_to_dict(entry: LedgerEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "delta": entry.delta,
        "category": entry.category,
        "description": entry.description,
        "resource_ref": entry.resource_ref,
        "balance_after": entry.balance_after,
        "created_at": _iso(entry.created_at),
    }


def package_to_dict(package: ChipPackage) -> Dict[str, Any]:
    return {
        "id": package.id,
        "name": package.name,
        "description": package.description,
        "chip_amount": package.chip_amount,
        "price_cents": package.price_cents,
        "price_ref": package.stripe_price_id,
    }


def video_to_dict(video: Video) -> Dict[str, Any]:
    return {
        "id": video.id,
        "youtube_id": video.youtube_id,
        "title": video.title,
        "channel_title": video.channel_title,
        "duration": video.duration,
        "duration_seconds": video.duration_seconds,
        "chip_cost": video.chip_cost,
    }


def analysis_to_dict(analysis: Analysis) -> Dict[str, Any]:
    return {
        "id": analysis.id,
        "video_id": analysis.video_id,
        "summary": analysis.summary,
        "short_summary": analysis.short_summary,
        "timestamps": analysis.timestamps or [],
        "created_at": _iso(analysis.created_at),
    }
