# sms_flows/flows/processor.py
import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sms_flows.conf import BATCH_SIZE, utc_now
from sms_flows.db.engine import get_session
from sms_flows.delivery import SmsSender, get_sender
from sms_flows.errors import ConfigurationError
from sms_flows.flows import store
from sms_flows.flows.advancer import AdvanceOutcome, advance
from sms_flows.flows.triggers import enroll_new_entries, skip_redeemed_followups, start_ongoing_flows

logger = logging.getLogger(__name__)


class BatchSummary(BaseModel):
    """Result of one invocation."""

    success: bool = True
    processed: int = 0
    sent: int = 0
    failed: int = 0
    completed: int = 0
    paused: int = 0
    skipped: int = 0
    enrolled: int = 0
    errors: int = 0
    error: Optional[str] = None


def run_triggers(session: Session, now: datetime, summary: BatchSummary) -> None:
    for trigger in (enroll_new_entries, skip_redeemed_followups, start_ongoing_flows):
        result = trigger(session, now)
        summary.enrolled += result.enrolled
        summary.skipped += result.skipped
        summary.errors += result.errors
        logger.debug("%s → %r", trigger.__name__, result)


def process_flows(session: Session, sender: SmsSender, now: datetime, batch_size: int = BATCH_SIZE) -> BatchSummary:
    """
    Run one invocation: enrollment triggers, then advance every due row.

    Per-row failures are counted and absorbed; store errors outside the row loop
    propagate to the caller.
    """
    summary = BatchSummary()

    run_triggers(session, now, summary)

    # Positions are captured now; rows expire on every commit below
    due = [(status, status.id, status.current_message_order) for status in store.find_due(session, now, batch_size)]
    logger.info("Found %d subscribers due for messages", len(due))

    for status, status_id, position in due:
        summary.processed += 1
        try:
            outcome = advance(session, status, sender, now, position)
        except ConfigurationError:
            raise
        except Exception as e:
            session.rollback()
            summary.errors += 1
            logger.error("Error processing flow status %s: %s", status_id, e, exc_info=True)
            try:
                store.release_claim(session, status_id)
            except SQLAlchemyError as release_error:
                session.rollback()
                logger.warning("Could not release claim on flow status %s: %s", status_id, release_error)
            continue

        if outcome == AdvanceOutcome.SENT:
            summary.sent += 1
        elif outcome == AdvanceOutcome.FAILED:
            summary.failed += 1
            summary.errors += 1
        elif outcome == AdvanceOutcome.COMPLETED:
            summary.completed += 1
        elif outcome == AdvanceOutcome.PAUSED:
            summary.paused += 1
        else:
            summary.skipped += 1

    logger.info(
        "Processing complete: %d processed, %d sent, %d errors",
        summary.processed,
        summary.sent,
        summary.errors,
    )
    return summary


def run_invocation(now: Optional[datetime] = None, sender: Optional[SmsSender] = None) -> BatchSummary:
    """
    Entry point for a scheduled run. Never raises: fatal problems are returned as
    a failed summary.
    """
    now = now or utc_now()
    session = None
    try:
        sender = sender or get_sender()
        session = get_session()
        return process_flows(session, sender, now)
    except (ConfigurationError, SQLAlchemyError) as e:
        logger.error("Flow processing aborted: %s", e, exc_info=True)
        if session is not None:
            session.rollback()
        return BatchSummary(success=False, error=str(e))
    finally:
        if session is not None:
            session.close()
