# sms_flows/flows/triggers.py
"""
Enrollment triggers, run at the start of every invocation.

Each trigger is idempotent: enrollment checks for an existing (phone, flow) row
before inserting, and the unique constraint catches the rest.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from sms_flows.conf import (
    ENTRY_WINDOW_HOURS,
    FOLLOWUP_DELAY_HOURS,
    FOLLOWUP_FLOW_ID,
    ONGOING_COOLDOWN_DAYS,
    ONGOING_FLOW_ID,
    PRIZE_COUPONS,
    WELCOME_FLOW_ID,
)
from sms_flows.db.models import FlowStatus, SignupEntry
from sms_flows.flows import store
from sms_flows.flows.accounts import find_user_id
from sms_flows.flows.ledger import coupon_redeemed
from sms_flows.flows.state import CompletedState, CompletionReason

logger = logging.getLogger(__name__)


class TriggerResult:
    """Counts accumulated by one trigger pass."""

    def __init__(self) -> None:
        self.enrolled = 0
        self.skipped = 0
        self.errors = 0

    def __repr__(self) -> str:
        return f"TriggerResult(enrolled={self.enrolled}, skipped={self.skipped}, errors={self.errors})"


def enroll_new_entries(session: Session, now: datetime) -> TriggerResult:
    """
    Start the welcome and follow-up flows for recent signups.

    Both enrollments are attempted on every pass, so a signup left with only
    one of the two rows is completed on the next run.
    """
    result = TriggerResult()
    window_start = now - timedelta(hours=ENTRY_WINDOW_HOURS)

    entries = (
        session.query(SignupEntry)
        .filter(SignupEntry.created_at >= window_start)
        .filter(SignupEntry.phone_number.isnot(None))
        .all()
    )
    logger.info("Found %d signups since %s", len(entries), window_start)

    for entry in entries:
        phone = entry.phone_number
        try:
            user_id = find_user_id(session, phone)
            coupon_code = PRIZE_COUPONS.get(entry.prize_won or "")

            welcome = store.enroll(
                session, phone, WELCOME_FLOW_ID, now, coupon_code=coupon_code, user_id=user_id
            )
            if welcome is not None:
                result.enrolled += 1

            followup = store.enroll(
                session,
                phone,
                FOLLOWUP_FLOW_ID,
                now,
                next_send_at=now + timedelta(hours=FOLLOWUP_DELAY_HOURS),
                coupon_code=coupon_code,
                user_id=user_id,
            )
            if followup is not None:
                result.enrolled += 1
        except Exception as e:
            session.rollback()
            result.errors += 1
            logger.error("Failed to enroll signup %s: %s", phone, e, exc_info=True)

    return result


def skip_redeemed_followups(session: Session, now: datetime) -> TriggerResult:
    """
    Complete due follow-ups whose coupon was already used, before any message goes out.

    Rows are claimed like in the advancer so an overlapping run cannot send them.
    """
    result = TriggerResult()

    due_followups = (
        session.query(FlowStatus.id, FlowStatus.phone, FlowStatus.coupon_code)
        .filter(FlowStatus.flow_id == FOLLOWUP_FLOW_ID)
        .filter(FlowStatus.current_message_order == 0)
        .filter(FlowStatus.next_message_scheduled_at <= now)
        .filter(FlowStatus.flow_completed_at.is_(None))
        .filter(FlowStatus.coupon_code.isnot(None))
        .all()
    )

    for status_id, phone, coupon_code in due_followups:
        try:
            if not coupon_redeemed(session, coupon_code):
                # Regular processing sends the follow-up
                continue

            if store.claim(session, status_id, 0, now) is None:
                continue

            status = session.get(FlowStatus, status_id, populate_existing=True)
            store.record_skip(status, now, CompletedState(at=now, reason=CompletionReason.COUPON_USED))
            session.commit()
            result.skipped += 1
            logger.info("Skipping follow-up for %s - coupon %s used", phone, coupon_code)
        except Exception as e:
            session.rollback()
            result.errors += 1
            logger.error("Failed to check follow-up %s for %s: %s", status_id, phone, e, exc_info=True)

    return result


def start_ongoing_flows(session: Session, now: datetime) -> TriggerResult:
    """Enroll subscribers whose follow-up finished at least the cooldown ago."""
    result = TriggerResult()
    cutoff = now - timedelta(days=ONGOING_COOLDOWN_DAYS)

    completed = (
        session.query(FlowStatus.phone, FlowStatus.user_id, FlowStatus.coupon_code)
        .filter(FlowStatus.flow_id == FOLLOWUP_FLOW_ID)
        .filter(FlowStatus.flow_completed_at.isnot(None))
        .filter(FlowStatus.flow_completed_at <= cutoff)
        .all()
    )

    for phone, user_id, coupon_code in completed:
        try:
            status = store.enroll(session, phone, ONGOING_FLOW_ID, now, coupon_code=coupon_code, user_id=user_id)
            if status is not None:
                result.enrolled += 1
        except Exception as e:
            session.rollback()
            result.errors += 1
            logger.error("Failed to start ongoing flow for %s: %s", phone, e, exc_info=True)

    return result
