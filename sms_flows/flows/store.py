# sms_flows/flows/store.py
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sms_flows.conf import CLAIM_TTL_MINUTES, MAX_DELIVERY_ATTEMPTS, RETRY_BACKOFF_MINUTES
from sms_flows.db.models import Flow, FlowStatus
from sms_flows.flows.state import FlowState, PausedState, ScheduledState, write_state

logger = logging.getLogger(__name__)


def find_status(session: Session, phone: str, flow_id: str) -> Optional[FlowStatus]:
    """Any status row (completed or not) for the subscriber in ``flow_id``."""
    return (
        session.query(FlowStatus)
        .filter(FlowStatus.phone == phone)
        .filter(FlowStatus.flow_id == flow_id)
        .first()
    )


def enroll(
    session: Session,
    phone: str,
    flow_id: str,
    now: datetime,
    next_send_at: Optional[datetime] = None,
    coupon_code: Optional[str] = None,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Optional[FlowStatus]:
    """
    Enroll a subscriber into a flow at position 0, first send at ``next_send_at``
    (defaults to ``now``).

    Returns:
        The new row, or None if the subscriber was already enrolled.
    """
    if find_status(session, phone, flow_id) is not None:
        return None

    if next_send_at is None:
        next_send_at = now

    status = FlowStatus(
        phone=phone,
        user_id=user_id,
        flow_id=flow_id,
        current_message_order=0,
        coupon_code=coupon_code,
        context=context,
        is_paused=False,
        coupon_used=False,
        failed_attempts=0,
        created_at=now,
    )
    write_state(status, ScheduledState(at=next_send_at), now)
    session.add(status)
    try:
        session.commit()
    except IntegrityError:
        # Another invocation inserted the same (phone, flow) first
        session.rollback()
        logger.debug("Duplicate enrollment ignored for %s in flow %s", phone, flow_id)
        return None

    logger.info("Enrolled %s in flow %s (first send: %s)", phone, flow_id, next_send_at)
    return status


def find_due(session: Session, now: datetime, batch_size: int) -> List[FlowStatus]:
    """Rows whose next send has arrived, in active flows, bounded to ``batch_size``."""
    return (
        session.query(FlowStatus)
        .join(Flow, Flow.id == FlowStatus.flow_id)
        .filter(Flow.is_active == True)  # noqa: E712
        .filter(FlowStatus.flow_completed_at.is_(None))
        .filter(FlowStatus.is_paused == False)  # noqa: E712
        .filter(FlowStatus.next_message_scheduled_at <= now)
        .filter(or_(FlowStatus.retry_after.is_(None), FlowStatus.retry_after <= now))
        .limit(batch_size)
        .all()
    )


def claim(session: Session, status_id: int, expected_position: int, now: datetime) -> Optional[str]:
    """
    Atomically mark a row as being processed by this invocation.

    The update only applies if the row is still at ``expected_position``, still
    due, not completed or paused, and not held by a live claim. Returns the
    claim token, or None if another invocation got there first.
    """
    token = str(uuid.uuid4())
    stale_before = now - timedelta(minutes=CLAIM_TTL_MINUTES)
    result = session.execute(
        update(FlowStatus)
        .where(FlowStatus.id == status_id)
        .where(FlowStatus.current_message_order == expected_position)
        .where(FlowStatus.flow_completed_at.is_(None))
        .where(FlowStatus.is_paused == False)  # noqa: E712
        .where(FlowStatus.next_message_scheduled_at <= now)
        .where(or_(FlowStatus.retry_after.is_(None), FlowStatus.retry_after <= now))
        .where(or_(FlowStatus.claim_token.is_(None), FlowStatus.claimed_at < stale_before))
        .values(claim_token=token, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    session.commit()

    if result.rowcount != 1:
        return None
    return token


def release(status: FlowStatus) -> None:
    status.claim_token = None
    status.claimed_at = None


def record_sent(status: FlowStatus, now: datetime, next_state: FlowState) -> None:
    """Advance one position after a successful send and apply ``next_state``."""
    status.current_message_order = (status.current_message_order or 0) + 1
    status.last_message_sent_at = now
    status.failed_attempts = 0
    status.retry_after = None
    write_state(status, next_state, now)
    release(status)


def record_skip(status: FlowStatus, now: datetime, next_state: FlowState) -> None:
    """Apply ``next_state`` without sending (position unchanged)."""
    write_state(status, next_state, now)
    release(status)


def record_failure(status: FlowStatus, now: datetime) -> bool:
    """
    Count a failed delivery. Position and scheduled send time are left untouched
    so the same message is retried.

    Returns:
        True if the row was paused because it hit MAX_DELIVERY_ATTEMPTS.
    """
    failed_attempts = (status.failed_attempts or 0) + 1
    status.failed_attempts = failed_attempts
    status.retry_after = now + timedelta(minutes=RETRY_BACKOFF_MINUTES * 2 ** (failed_attempts - 1))
    status.updated_at = now
    release(status)

    if failed_attempts >= MAX_DELIVERY_ATTEMPTS:
        write_state(
            status,
            PausedState(
                reason=f"too_many_failures ({failed_attempts} consecutive)",
                resume_at=status.next_message_scheduled_at,
            ),
            now,
        )
        logger.warning(
            "Flow status %s for %s paused after %d consecutive delivery failures",
            status.id,
            status.phone,
            failed_attempts,
        )
        return True
    return False


def resume(session: Session, status_id: int, now: datetime) -> bool:
    """Resume a paused row; it becomes due at its kept send time or now."""
    status = session.get(FlowStatus, status_id)
    if not status or not status.is_paused or status.flow_completed_at is not None:
        return False

    resume_at = status.next_message_scheduled_at or now
    status.failed_attempts = 0
    status.retry_after = None
    write_state(status, ScheduledState(at=resume_at), now)
    session.commit()
    logger.info("Resumed flow status %s for %s", status.id, status.phone)
    return True


def list_statuses(
    session: Session,
    phone: Optional[str] = None,
    flow_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> Tuple[List[FlowStatus], int]:
    """List status rows with filtering and pagination."""
    query = session.query(FlowStatus)
    if phone:
        query = query.filter(FlowStatus.phone == phone)
    if flow_id:
        query = query.filter(FlowStatus.flow_id == flow_id)

    total = query.count()
    rows = query.order_by(FlowStatus.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def release_claim(session: Session, status_id: int) -> None:
    """Drop a claim left behind by a row whose processing raised."""
    session.execute(
        update(FlowStatus)
        .where(FlowStatus.id == status_id)
        .values(claim_token=None, claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    session.commit()
