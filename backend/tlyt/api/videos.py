"""Video and analysis API routes

The analysis route is a plain `def`, so FastAPI runs it in the worker thread
pool; a client disconnect does not interrupt a run between debit and refund.
"""
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tlyt.api.serializers import analysis_to_dict, video_to_dict
from tlyt.core.exceptions import ResourceNotFoundError
from tlyt.core.security import require_account
from tlyt.db.session import get_db
from tlyt.schemas.videos import AnalysisRequestBody, VideoSubmitRequest
from tlyt.services.analysis_service import get_completed_analysis, run_paid_action
from tlyt.services.youtube_service import get_video, upsert_video

router = APIRouter(prefix="/api/videos", tags=["videos"])


@router.post("")
def submit_video(
    request_data: VideoSubmitRequest,
    account_id: str = Depends(require_account),
    db: Session = Depends(get_db)
):
    """Look up a YouTube video and return its chip cost"""
    video = upsert_video(request_data.url, db)
    return {"video": video_to_dict(video)}


@router.post("/{video_id}/analysis", status_code=201)
def analyze_video(
    video_id: str,
    request_data: Optional[AnalysisRequestBody] = None,
    account_id: str = Depends(require_account),
    db: Session = Depends(get_db)
):
    """Run a paid analysis of a video"""
    instructions = request_data.instructions if request_data else None
    analysis = run_paid_action(account_id, video_id, db, user_prompt=instructions)
    return {"analysis": analysis_to_dict(analysis)}


@router.get("/{video_id}/analysis")
def get_analysis(
    video_id: str,
    account_id: str = Depends(require_account),
    db: Session = Depends(get_db)
):
    """Get the completed analysis of a video"""
    get_video(video_id, db)
    analysis = get_completed_analysis(account_id, video_id, db)
    if not analysis:
        raise ResourceNotFoundError(f"No analysis for video {video_id}")
    return {"analysis": analysis_to_dict(analysis)}
