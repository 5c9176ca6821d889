"""Paid analysis orchestration tests"""
from datetime import datetime, timezone, timedelta

import pytest
import httpx

from tlyt.core.config import settings
from tlyt.core.exceptions import (
    AlreadyProcessedError, ExternalWorkFailedError, InsufficientBalanceError,
    InvalidDurationError, RateLimitedError, ResourceNotFoundError, StorageError
)
from tlyt.models.analysis import Analysis, AnalysisRequest
from tlyt.models.ledger_entry import LedgerEntry
from tlyt.services.analysis_service import (
    reconcile_abandoned_requests, refund_request, run_paid_action
)
from tlyt.services.balance_guard import debit
from tlyt.services.ledger_service import get_balance, verify_account_integrity
from conftest import FakeProvider


def _entries(db, account_id, category=None):
    query = db.query(LedgerEntry).filter(LedgerEntry.account_id == account_id)
    if category:
        query = query.filter(LedgerEntry.category == category)
    return query.all()


@pytest.mark.critical
class TestRunPaidAction:
    """Debit, external call, then result or refund"""

    def test_success_debits_cost_and_stores_result(self, db_session, mock_redis, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory(duration_seconds=5400)  # 3 chips
        provider = FakeProvider()

        analysis = run_paid_action(account.id, video.id, db_session, user_prompt="Focus on tips", provider=provider)

        assert get_balance(account.id, db_session) == 2
        spends = _entries(db_session, account.id, "analysis_spend")
        assert len(spends) == 1
        assert spends[0].delta == -3
        assert spends[0].resource_ref == video.id
        assert analysis.summary == "A detailed summary"
        assert analysis.short_summary == "Short"
        assert analysis.timestamps == [
            {"seconds": 0, "description": "Intro"},
            {"seconds": 90, "description": "Main point"},
        ]
        assert provider.calls == [(video.youtube_id, 5400, "Focus on tips")]

        request = db_session.query(AnalysisRequest).one()
        assert request.status == "completed"
        assert request.analysis_id == analysis.id
        assert request.chip_cost == 3
        assert spends[0].request_id == request.id

    def test_insufficient_balance_reports_shortfall_without_external_work(
        self, db_session, mock_redis, account_factory, video_factory
    ):
        account = account_factory(balance=1)
        video = video_factory(duration_seconds=5400)
        provider = FakeProvider()

        with pytest.raises(InsufficientBalanceError) as exc_info:
            run_paid_action(account.id, video.id, db_session, provider=provider)

        assert exc_info.value.shortfall == 2
        assert provider.calls == []
        assert get_balance(account.id, db_session) == 1
        assert _entries(db_session, account.id, "analysis_spend") == []
        assert db_session.query(AnalysisRequest).one().status == "rejected"

    def test_failed_external_call_is_refunded(self, db_session, mock_redis, account_factory, video_factory):
        account = account_factory(balance=5)
        baseline = len(_entries(db_session, account.id))
        video = video_factory(duration_seconds=5400)

        with pytest.raises(ExternalWorkFailedError):
            run_paid_action(account.id, video.id, db_session,
                            provider=FakeProvider(error=ExternalWorkFailedError("Gemini API error: 500")))

        assert get_balance(account.id, db_session) == 5
        assert len(_entries(db_session, account.id)) == baseline + 2
        assert [e.delta for e in _entries(db_session, account.id, "analysis_spend")] == [-3]
        assert [e.delta for e in _entries(db_session, account.id, "refund")] == [3]
        refund = _entries(db_session, account.id, "refund")[0]
        request = db_session.query(AnalysisRequest).one()
        assert refund.external_ref == f"refund:{request.id}"
        assert refund.resource_ref == video.id
        assert request.status == "refunded"
        assert "500" in request.error
        assert db_session.query(Analysis).count() == 0
        assert verify_account_integrity(account.id, db_session)['consistent'] is True

    def test_unexpected_error_is_refunded_and_propagated(self, db_session, mock_redis, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory(duration_seconds=600)

        with pytest.raises(httpx.ConnectError):
            run_paid_action(account.id, video.id, db_session,
                            provider=FakeProvider(error=httpx.ConnectError("connection refused")))

        assert get_balance(account.id, db_session) == 5

    def test_already_processed_is_not_charged(self, db_session, mock_redis, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory(duration_seconds=600)
        first = run_paid_action(account.id, video.id, db_session, provider=FakeProvider())
        balance_after_first = get_balance(account.id, db_session)
        provider = FakeProvider()

        with pytest.raises(AlreadyProcessedError) as exc_info:
            run_paid_action(account.id, video.id, db_session, provider=provider)

        assert exc_info.value.analysis_id == first.id
        assert provider.calls == []
        assert get_balance(account.id, db_session) == balance_after_first
        assert len(_entries(db_session, account.id, "analysis_spend")) == 1

    def test_other_account_can_analyse_same_video(self, db_session, mock_redis, account_factory, video_factory):
        video = video_factory(duration_seconds=600)
        first = account_factory(balance=1)
        second = account_factory(balance=1)

        run_paid_action(first.id, video.id, db_session, provider=FakeProvider())
        run_paid_action(second.id, video.id, db_session, provider=FakeProvider())

        assert db_session.query(Analysis).count() == 2

    def test_zero_duration_video_cannot_be_priced(self, db_session, mock_redis, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory(duration_seconds=0)

        with pytest.raises(InvalidDurationError):
            run_paid_action(account.id, video.id, db_session, provider=FakeProvider())

        assert get_balance(account.id, db_session) == 5
        assert db_session.query(AnalysisRequest).count() == 0

    def test_unknown_video(self, db_session, mock_redis, account_factory):
        account = account_factory(balance=5)
        with pytest.raises(ResourceNotFoundError):
            run_paid_action(account.id, "missing", db_session, provider=FakeProvider())

    def test_lost_race_for_same_video_is_refunded(self, db_session, mock_redis, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory(duration_seconds=600)

        def concurrent_winner():
            # Another run for the same video finishes while this one is in flight
            db_session.add(Analysis(account_id=account.id, video_id=video.id, summary="s", short_summary="t"))
            db_session.commit()

        with pytest.raises(AlreadyProcessedError):
            run_paid_action(account.id, video.id, db_session, provider=FakeProvider(on_call=concurrent_winner))

        assert get_balance(account.id, db_session) == 5
        assert db_session.query(AnalysisRequest).one().status == "refunded"

    def test_failed_inline_refund_left_for_reconciliation(
        self, db_session, mock_redis, account_factory, video_factory, monkeypatch
    ):
        account = account_factory(balance=5)
        video = video_factory(duration_seconds=600)

        def broken_refund(*args, **kwargs):
            raise StorageError("Failed to append ledger entry")

        monkeypatch.setattr("tlyt.services.analysis_service.refund_request", broken_refund)

        with pytest.raises(ExternalWorkFailedError):
            run_paid_action(account.id, video.id, db_session,
                            provider=FakeProvider(error=ExternalWorkFailedError("timeout")))

        request = db_session.query(AnalysisRequest).one()
        assert request.status == "pending"
        assert get_balance(account.id, db_session) == 4

        monkeypatch.undo()
        assert reconcile_abandoned_requests(db_session, older_than_seconds=-1) == 1
        assert get_balance(account.id, db_session) == 5

    def test_late_success_after_refund_keeps_result(self, db_session, mock_redis, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory(duration_seconds=600)

        def swept_meanwhile():
            request = db_session.query(AnalysisRequest).one()
            refund_request(request, "Abandoned: no outcome recorded", db_session, source="reconcile")

        analysis = run_paid_action(account.id, video.id, db_session, provider=FakeProvider(on_call=swept_meanwhile))

        request = db_session.query(AnalysisRequest).one()
        assert request.status == "refunded"
        assert request.analysis_id == analysis.id
        assert get_balance(account.id, db_session) == 5


@pytest.mark.critical
class TestTrialRuns:
    """Trial accounts skip the ledger and are limited by a cooldown window"""

    def test_trial_run_bypasses_ledger(self, db_session, mock_redis, trial_account, video_factory):
        video = video_factory(duration_seconds=5400)

        analysis = run_paid_action(trial_account.id, video.id, db_session, provider=FakeProvider())

        assert analysis.id is not None
        assert get_balance(trial_account.id, db_session) == 0
        assert _entries(db_session, trial_account.id) == []
        request = db_session.query(AnalysisRequest).one()
        assert request.chip_cost == 0
        assert request.status == "completed"

    def test_second_trial_run_inside_window_is_rate_limited(
        self, db_session, mock_redis, trial_account, video_factory
    ):
        first_video = video_factory(youtube_id="aaaaaaaaaaa")
        second_video = video_factory(youtube_id="bbbbbbbbbbb")
        run_paid_action(trial_account.id, first_video.id, db_session, provider=FakeProvider())
        provider = FakeProvider()

        with pytest.raises(RateLimitedError) as exc_info:
            run_paid_action(trial_account.id, second_video.id, db_session, provider=provider)

        assert provider.calls == []
        assert 0 < exc_info.value.retry_after <= settings.TRIAL_COOLDOWN_SECONDS
        assert exc_info.value.window == settings.TRIAL_COOLDOWN_SECONDS
        assert "15 minutes" in exc_info.value.user_message()

    def test_trial_allowed_again_after_window(self, db_session, mock_redis, trial_account, video_factory):
        first_video = video_factory(youtube_id="aaaaaaaaaaa")
        second_video = video_factory(youtube_id="bbbbbbbbbbb")
        run_paid_action(trial_account.id, first_video.id, db_session, provider=FakeProvider())

        mock_redis.delete(f"trial_cooldown:{trial_account.id}")

        run_paid_action(trial_account.id, second_video.id, db_session, provider=FakeProvider())
        assert db_session.query(Analysis).count() == 2

    def test_trial_failure_marks_request_failed(self, db_session, mock_redis, trial_account, video_factory):
        video = video_factory()

        with pytest.raises(ExternalWorkFailedError):
            run_paid_action(trial_account.id, video.id, db_session,
                            provider=FakeProvider(error=ExternalWorkFailedError("bad response")))

        assert db_session.query(AnalysisRequest).one().status == "failed"
        assert _entries(db_session, trial_account.id) == []

    def test_already_processed_checked_before_cooldown(self, db_session, mock_redis, trial_account, video_factory):
        video = video_factory()
        run_paid_action(trial_account.id, video.id, db_session, provider=FakeProvider())

        with pytest.raises(AlreadyProcessedError):
            run_paid_action(trial_account.id, video.id, db_session, provider=FakeProvider())


@pytest.mark.high
class TestReconciliation:
    """Sweep of requests that never reached an outcome"""

    def _stale_request(self, db, account, video, cost, debited=True, age_seconds=7200):
        request = AnalysisRequest(
            account_id=account.id, video_id=video.id, chip_cost=cost, status="pending",
            created_at=datetime.now(timezone.utc) - timedelta(seconds=age_seconds),
        )
        db.add(request)
        db.commit()
        db.refresh(request)
        if debited:
            debit(account.id, cost, "Analysis", db, resource_ref=video.id, request_id=request.id)
        return request

    def test_abandoned_paid_request_refunded(self, db_session, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory()
        request = self._stale_request(db_session, account, video, cost=3)
        assert get_balance(account.id, db_session) == 2

        assert reconcile_abandoned_requests(db_session, older_than_seconds=1800) == 1

        db_session.refresh(request)
        assert request.status == "refunded"
        assert get_balance(account.id, db_session) == 5
        assert verify_account_integrity(account.id, db_session)['consistent'] is True

    def test_sweep_is_idempotent(self, db_session, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory()
        self._stale_request(db_session, account, video, cost=3)

        reconcile_abandoned_requests(db_session, older_than_seconds=1800)
        assert reconcile_abandoned_requests(db_session, older_than_seconds=1800) == 0
        assert len(_entries(db_session, account.id, "refund")) == 1

    def test_zero_threshold_sweeps_everything_pending(self, db_session, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory()
        request = self._stale_request(db_session, account, video, cost=3, age_seconds=5)

        assert reconcile_abandoned_requests(db_session, older_than_seconds=0) == 1
        db_session.refresh(request)
        assert request.status == "refunded"

    def test_recent_requests_left_alone(self, db_session, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory()
        request = self._stale_request(db_session, account, video, cost=3, age_seconds=60)

        assert reconcile_abandoned_requests(db_session, older_than_seconds=1800) == 0
        db_session.refresh(request)
        assert request.status == "pending"

    def test_request_never_debited_is_not_refunded(self, db_session, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory()
        request = self._stale_request(db_session, account, video, cost=3, debited=False)

        assert reconcile_abandoned_requests(db_session, older_than_seconds=1800) == 1

        db_session.refresh(request)
        assert request.status == "rejected"
        assert get_balance(account.id, db_session) == 5
        assert _entries(db_session, account.id, "refund") == []

    def test_sweep_and_inline_refund_never_both_credit(self, db_session, account_factory, video_factory):
        account = account_factory(balance=5)
        video = video_factory()
        request = self._stale_request(db_session, account, video, cost=3)

        assert refund_request(request, "provider failed", db_session) is True
        request.status = "pending"
        db_session.commit()

        assert reconcile_abandoned_requests(db_session, older_than_seconds=1800) == 1
        assert get_balance(account.id, db_session) == 5
        assert len(_entries(db_session, account.id, "refund")) == 1
