# sms_flows/flows/run_log.py
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from sms_flows.db.models import FlowMessage, FlowStatus, SendLogEntry

SENT = "sent"
FAILED = "failed"


def log_attempt(
    session: Session,
    status: FlowStatus,
    message: FlowMessage,
    text: str,
    now: datetime,
    error: Optional[str] = None,
) -> SendLogEntry:
    """Append one delivery attempt; committed together with the status update."""
    entry = SendLogEntry(
        phone=status.phone,
        user_id=status.user_id,
        flow_id=status.flow_id,
        message_id=message.id,
        sequence_order=message.sequence_order,
        message_text=text,
        status=FAILED if error else SENT,
        error_message=error,
        created_at=now,
    )
    session.add(entry)
    return entry


def list_entries(
    session: Session,
    phone: Optional[str] = None,
    flow_id: Optional[str] = None,
    limit: int = 100,
) -> List[SendLogEntry]:
    query = session.query(SendLogEntry)
    if phone:
        query = query.filter(SendLogEntry.phone == phone)
    if flow_id:
        query = query.filter(SendLogEntry.flow_id == flow_id)
    return query.order_by(SendLogEntry.created_at.desc(), SendLogEntry.id.desc()).limit(limit).all()


def was_delivered(session: Session, phone: str, flow_id: str, sequence_order: int) -> bool:
    """Did ``phone`` successfully receive message ``sequence_order`` of ``flow_id``?"""
    entry = (
        session.query(SendLogEntry.id)
        .filter(SendLogEntry.phone == phone)
        .filter(SendLogEntry.flow_id == flow_id)
        .filter(SendLogEntry.sequence_order == sequence_order)
        .filter(SendLogEntry.status == SENT)
        .first()
    )
    return entry is not None
