# api_server/services/scheduler.py
import logging
import threading
import time
from datetime import datetime, timezone

from croniter import croniter

from sms_flows.conf import FLOW_CRON
from sms_flows.flows.processor import BatchSummary, run_invocation

logger = logging.getLogger(__name__)

# Global scheduler thread
_scheduler_thread: threading.Thread | None = None
_scheduler_running = False
_scheduler_lock = threading.Lock()

# Held while an invocation runs so a slow run is never overlapped in-process
_invocation_lock = threading.Lock()


def _calculate_next_run(cron: str, from_time: datetime | None = None) -> datetime:
    """Calculate next run time from cron expression."""
    if from_time is None:
        from_time = datetime.now(timezone.utc)
    iter = croniter(cron, from_time)
    return iter.get_next(datetime)


def run_once() -> BatchSummary | None:
    """Run one invocation unless one is already in progress."""
    if not _invocation_lock.acquire(blocking=False):
        logger.warning("Previous flow invocation still running, skipping this tick")
        return None
    try:
        summary = run_invocation()
        if summary.success:
            logger.info("Scheduled flow run: %d sent, %d errors", summary.sent, summary.errors)
        else:
            logger.error("Scheduled flow run failed: %s", summary.error)
        return summary
    finally:
        _invocation_lock.release()


def _scheduler_worker(cron: str) -> None:
    """Background worker that invokes the flow engine on the cron schedule."""
    logger.info("Flow scheduler started (%s)", cron)
    next_run_at = _calculate_next_run(cron)
    while _scheduler_running:
        if datetime.now(timezone.utc) >= next_run_at:
            try:
                run_once()
            except Exception as e:
                logger.error("Error in flow scheduler: %s", e, exc_info=True)
            next_run_at = _calculate_next_run(cron)
            logger.debug("Next flow run at %s", next_run_at)

        time.sleep(1)

    logger.info("Flow scheduler stopped")


def start_scheduler(cron: str = FLOW_CRON) -> None:
    """Start the scheduler worker thread."""
    global _scheduler_thread, _scheduler_running

    if not croniter.is_valid(cron):
        raise ValueError(f"Invalid cron expression: {cron}")

    with _scheduler_lock:
        if _scheduler_running:
            logger.warning("Scheduler already running")
            return

        _scheduler_running = True
        _scheduler_thread = threading.Thread(target=_scheduler_worker, args=(cron,), daemon=True)
        _scheduler_thread.start()


def stop_scheduler() -> None:
    """Stop the scheduler worker thread."""
    global _scheduler_running

    with _scheduler_lock:
        if not _scheduler_running:
            return

        _scheduler_running = False
        if _scheduler_thread:
            _scheduler_thread.join(timeout=5.0)


def is_running() -> bool:
    return _scheduler_running
