"""Background reconciliation of paid analysis requests that never resolved"""
import asyncio
import logging

from tlyt.core.config import settings
from tlyt.core.metrics import reconcile_runs_counter
from tlyt.db.session import SessionLocal
from tlyt.services.analysis_service import reconcile_abandoned_requests

reconcile_logger = logging.getLogger("reconcile")


def run_reconciliation() -> int:
    """One sweep in its own session"""
    db = SessionLocal()
    try:
        return reconcile_abandoned_requests(db, settings.RECONCILE_AFTER_SECONDS)
    finally:
        db.close()


async def reconcile_task():
    """Refund paid requests left pending by a crashed or killed worker.

    Runs every RECONCILE_INTERVAL_SECONDS. The sweep itself is blocking
    database work, so it runs in a thread.
    """
    while True:
        try:
            await asyncio.sleep(settings.RECONCILE_INTERVAL_SECONDS)
            resolved = await asyncio.to_thread(run_reconciliation)
            reconcile_runs_counter.labels(status="success").inc()
            if resolved:
                reconcile_logger.info(f"Reconciliation resolved {resolved} request(s)")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reconcile_runs_counter.labels(status="failure").inc()
            reconcile_logger.error(f"Reconciliation task error: {e}", exc_info=True)
