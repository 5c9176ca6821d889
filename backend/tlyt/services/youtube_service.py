"""YouTube metadata - video id extraction, duration parsing and the Video store"""
import re
import logging
from datetime import datetime
from typing import Optional, Dict, Any

import httpx
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from tlyt.core.config import settings
from tlyt.core.exceptions import (
    ExternalWorkFailedError, InvalidDurationError, ResourceNotFoundError, StorageError
)
from tlyt.models.video import Video
from tlyt.services.chip_cost import calculate_chip_cost

logger = logging.getLogger(__name__)

VIDEO_ID_PATTERNS = [
    re.compile(r'(?:youtube\.com/watch\?(?:.*&)?v=)([A-Za-z0-9_-]{11})'),
    re.compile(r'(?:youtu\.be/)([A-Za-z0-9_-]{11})'),
    re.compile(r'(?:youtube\.com/embed/)([A-Za-z0-9_-]{11})'),
    re.compile(r'(?:youtube\.com/v/)([A-Za-z0-9_-]{11})'),
    re.compile(r'(?:youtube\.com/shorts/)([A-Za-z0-9_-]{11})'),
]

ISO8601_DURATION = re.compile(r'^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$')


def extract_video_id(url: str) -> Optional[str]:
    """Pull the 11 character video id out of any common YouTube URL form"""
    if not url:
        return None
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(url.strip())
        if match:
            return match.group(1)
    return None


def parse_iso8601_duration(value: str) -> int:
    """Convert an ISO 8601 duration (e.g. PT1H2M3S) into seconds"""
    match = ISO8601_DURATION.match(value or "")
    if not match or value in ("P", "PT") or value.endswith("T"):
        raise InvalidDurationError(f"Invalid ISO 8601 duration: {value!r}")

    days, hours, minutes, seconds = (int(group or 0) for group in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def fetch_video_metadata(youtube_id: str, client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    """
    Fetch snippet and contentDetails for a video from the YouTube Data API.

    Raises:
        ResourceNotFoundError: YouTube has no such video
        ExternalWorkFailedError: API key missing or the API call failed
    """
    if not settings.YOUTUBE_API_KEY:
        raise ExternalWorkFailedError("YouTube API key not configured")

    params = {
        'id': youtube_id,
        'key': settings.YOUTUBE_API_KEY,
        'part': 'snippet,contentDetails',
    }
    url = f"{settings.YOUTUBE_API_BASE}/videos"

    try:
        if client is None:
            with httpx.Client(timeout=10.0) as own_client:
                response = own_client.get(url, params=params)
        else:
            response = client.get(url, params=params)
    except httpx.HTTPError as e:
        logger.error(f"YouTube API request failed for {youtube_id}: {e}")
        raise ExternalWorkFailedError(f"YouTube API request failed: {e}") from e

    if response.status_code != 200:
        logger.error(f"YouTube API error for {youtube_id}: {response.status_code} {response.text[:200]}")
        raise ExternalWorkFailedError(f"YouTube API error: {response.status_code}")

    items = response.json().get('items') or []
    if not items:
        raise ResourceNotFoundError(f"YouTube video {youtube_id} not found")
    return items[0]


def _parse_published_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None


def upsert_video(url: str, db: Session, client: Optional[httpx.Client] = None) -> Video:
    """Create or refresh the Video row for a YouTube URL"""
    youtube_id = extract_video_id(url)
    if not youtube_id:
        raise ResourceNotFoundError(f"Not a YouTube video URL: {url!r}")

    data = fetch_video_metadata(youtube_id, client=client)
    snippet = data.get('snippet', {})
    duration = data.get('contentDetails', {}).get('duration', '')
    duration_seconds = parse_iso8601_duration(duration)

    # Live streams report P0D and cannot be priced
    chip_cost = calculate_chip_cost(duration_seconds) if duration_seconds > 0 else None

    try:
        video = db.query(Video).filter(Video.youtube_id == youtube_id).first()
        if not video:
            video = Video(youtube_id=youtube_id)
            db.add(video)

        video.title = snippet.get('title', '')
        video.description = snippet.get('description')
        video.channel_id = snippet.get('channelId')
        video.channel_title = snippet.get('channelTitle')
        video.published_at = _parse_published_at(snippet.get('publishedAt'))
        video.duration = duration
        video.duration_seconds = duration_seconds
        video.chip_cost = chip_cost

        db.commit()
        db.refresh(video)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save video {youtube_id}: {e}", exc_info=True)
        raise StorageError("Failed to save video") from e

    logger.info(f"Upserted video {youtube_id} ({duration_seconds}s, {chip_cost} chips)")
    return video


def get_video(video_id: str, db: Session) -> Video:
    video = db.query(Video).filter(Video.id == video_id).first()
    if not video:
        raise ResourceNotFoundError(f"Video {video_id} not found")
    return video
