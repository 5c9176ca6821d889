"""Paid analysis orchestration

A run is a saga of two local transactions around one external call:
debit, call the analysis provider, then either persist the result or refund.
Refunds are keyed on the request id, so the in-line refund and the
reconciliation sweep can never both credit the same run.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime, timezone, timedelta
from typing import Optional
import logging

from tlyt.core.config import settings
from tlyt.core.exceptions import (
    AlreadyProcessedError, ChipEconomyError, RateLimitedError, StorageError
)
from tlyt.core.metrics import analysis_runs_counter, refunds_counter
from tlyt.core.otel import get_tracer
from tlyt.db.redis import claim_trial_cooldown
from tlyt.models.analysis import Analysis, AnalysisRequest
from tlyt.models.ledger_entry import LedgerEntry, EntryCategory
from tlyt.services.balance_guard import debit, credit
from tlyt.services.chip_cost import calculate_chip_cost
from tlyt.services.gemini_service import GeminiAnalysisProvider
from tlyt.services.ledger_service import get_account
from tlyt.services.youtube_service import get_video

logger = logging.getLogger(__name__)
analysis_logger = logging.getLogger("analysis")
tracer = get_tracer()

# Request statuses
PENDING = "pending"
COMPLETED = "completed"
REFUNDED = "refunded"
REJECTED = "rejected"
FAILED = "failed"  # Trial runs that failed; nothing to refund


def refund_external_ref(request_id: str) -> str:
    return f"refund:{request_id}"


def get_completed_analysis(account_id: str, video_id: str, db: Session) -> Optional[Analysis]:
    return db.query(Analysis).filter(
        Analysis.account_id == account_id,
        Analysis.video_id == video_id
    ).first()


def refund_request(request: AnalysisRequest, reason: str, db: Session, source: str = "inline") -> bool:
    """
    Return the chips of a failed paid request and mark it refunded.

    The status change is committed together with the refund entry. Returns
    True if this call issued the refund, False if it had already been issued.
    """
    request.status = REFUNDED
    request.error = reason[:1000] if reason else None
    request.completed_at = datetime.now(timezone.utc)

    change = credit(
        request.account_id,
        request.chip_cost,
        "Refund: analysis failed",
        EntryCategory.REFUND,
        db,
        external_ref=refund_external_ref(request.id),
        resource_ref=request.video_id,
        request_id=request.id,
    )
    if not change.created:
        # Ledger already has the refund, only the status update is pending
        try:
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError("Failed to mark request refunded") from e

    if change.created:
        refunds_counter.labels(source=source).inc()
        analysis_logger.warning(
            f"Refunded {request.chip_cost} chips to account {request.account_id} "
            f"for request {request.id} ({source}): {reason}"
        )
    return change.created


def _set_status(request: AnalysisRequest, status: str, db: Session, error: Optional[str] = None) -> None:
    request.status = status
    request.error = error[:1000] if error else None
    request.completed_at = datetime.now(timezone.utc)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to mark request {request.id} {status}: {e}", exc_info=True)


def run_paid_action(
    account_id: str,
    video_id: str,
    db: Session,
    user_prompt: Optional[str] = None,
    provider: Optional[GeminiAnalysisProvider] = None,
) -> Analysis:
    """
    Run a chip-gated analysis of a video for an account.

    Raises:
        AlreadyProcessedError: the account already has a result for this video (no charge)
        RateLimitedError: trial account inside its cooldown window
        InvalidDurationError: the video cannot be priced
        InsufficientBalanceError: balance below cost (no external work is attempted)
        ExternalWorkFailedError: provider failure, after the chips were refunded
    """
    provider = provider or GeminiAnalysisProvider()
    account = get_account(account_id, db)
    video = get_video(video_id, db)

    existing = get_completed_analysis(account_id, video_id, db)
    if existing:
        raise AlreadyProcessedError(video_id, existing.id)

    trial = account.is_trial
    mode = "trial" if trial else "paid"

    if trial:
        remaining = claim_trial_cooldown(account_id, settings.TRIAL_COOLDOWN_SECONDS)
        if remaining is not None:
            analysis_logger.info(f"Trial account {account_id} rate limited, {remaining}s remaining")
            raise RateLimitedError(retry_after=remaining, window=settings.TRIAL_COOLDOWN_SECONDS)

    cost = calculate_chip_cost(video.duration_seconds)

    request = AnalysisRequest(
        account_id=account_id,
        video_id=video_id,
        user_prompt=user_prompt,
        chip_cost=0 if trial else cost,
        status=PENDING,
    )
    try:
        db.add(request)
        db.commit()
        db.refresh(request)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create analysis request for account {account_id}: {e}", exc_info=True)
        raise StorageError("Failed to create analysis request") from e

    if not trial:
        try:
            debit(
                account_id, cost, f"Analysis: {video.title}", db,
                resource_ref=video_id, request_id=request.id,
            )
        except ChipEconomyError as e:
            _set_status(request, REJECTED, db, error=str(e))
            analysis_runs_counter.labels(status=REJECTED, mode=mode).inc()
            raise

    analysis_logger.info(
        f"Analysis request {request.id}: account={account_id} video={video.youtube_id} "
        f"mode={mode} cost={request.chip_cost}"
    )

    try:
        with tracer.start_as_current_span("analysis.provider_call") as span:
            span.set_attribute("tlyt.request_id", request.id)
            span.set_attribute("tlyt.mode", mode)
            span.set_attribute("tlyt.chip_cost", request.chip_cost)
            result = provider.analyze(video.youtube_id, video.duration_seconds, user_prompt)

        analysis = Analysis(
            account_id=account_id,
            video_id=video_id,
            summary=result.summary,
            short_summary=result.short_summary,
            timestamps=result.timestamps_as_dicts(),
        )
        db.add(analysis)
        db.flush()

        db.refresh(request)
        if request.status == REFUNDED:
            # Reconciliation gave up on this run while the provider was still working
            analysis_logger.warning(f"Request {request.id} completed after it was refunded, keeping result")
        else:
            request.status = COMPLETED
            request.completed_at = datetime.now(timezone.utc)
        request.analysis_id = analysis.id
        db.commit()
        db.refresh(analysis)
    except Exception as e:
        db.rollback()
        reason = str(e) or e.__class__.__name__

        if trial:
            _set_status(request, FAILED, db, error=reason)
        else:
            try:
                refund_request(request, reason, db)
            except ChipEconomyError as refund_error:
                # Request stays pending, the reconciliation sweep retries the refund
                logger.error(f"In-line refund failed for request {request.id}: {refund_error}", exc_info=True)

        analysis_runs_counter.labels(status="failed", mode=mode).inc()
        analysis_logger.error(f"Analysis request {request.id} failed: {reason}")

        if isinstance(e, IntegrityError):
            # A concurrent run for the same video won
            winner = get_completed_analysis(account_id, video_id, db)
            if winner:
                raise AlreadyProcessedError(video_id, winner.id) from e
            raise StorageError("Failed to save analysis") from e
        if isinstance(e, SQLAlchemyError):
            raise StorageError("Failed to save analysis") from e
        raise

    analysis_runs_counter.labels(status=COMPLETED, mode=mode).inc()
    analysis_logger.info(f"Analysis request {request.id} completed: analysis {analysis.id}")
    return analysis


def _was_debited(request_id: str, db: Session) -> bool:
    return db.query(LedgerEntry.id).filter(
        LedgerEntry.request_id == request_id,
        LedgerEntry.category == EntryCategory.ANALYSIS_SPEND.value
    ).first() is not None


def reconcile_abandoned_requests(db: Session, older_than_seconds: Optional[int] = None) -> int:
    """
    Refund paid requests left pending by a crash between debit and outcome.

    Returns the number of requests resolved.
    """
    if older_than_seconds is None:
        older_than_seconds = settings.RECONCILE_AFTER_SECONDS
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)

    stale = db.query(AnalysisRequest).filter(
        AnalysisRequest.status == PENDING,
        AnalysisRequest.created_at < cutoff
    ).order_by(AnalysisRequest.created_at).all()

    resolved = 0
    for request in stale:
        try:
            if request.chip_cost > 0 and _was_debited(request.id, db):
                refund_request(request, "Abandoned: no outcome recorded", db, source="reconcile")
            elif request.chip_cost > 0:
                # Never charged, nothing to give back
                _set_status(request, REJECTED, db, error="Abandoned before debit")
            else:
                _set_status(request, FAILED, db, error="Abandoned: no outcome recorded")
            resolved += 1
        except ChipEconomyError as e:
            logger.error(f"Failed to reconcile request {request.id}: {e}", exc_info=True)

    if resolved:
        analysis_logger.warning(f"Reconciliation resolved {resolved} abandoned request(s)")
    return resolved
