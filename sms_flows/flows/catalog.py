# sms_flows/flows/catalog.py
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from sms_flows.db.models import Flow, FlowMessage


def get_flow(session: Session, flow_id: str) -> Optional[Flow]:
    return session.get(Flow, flow_id)


def get_message(session: Session, flow_id: str, position: int) -> Optional[FlowMessage]:
    """Active message at exactly ``position``. A gap means the flow ends there."""
    return (
        session.query(FlowMessage)
        .filter(FlowMessage.flow_id == flow_id)
        .filter(FlowMessage.sequence_order == position)
        .filter(FlowMessage.is_active == True)  # noqa: E712
        .one_or_none()
    )


def message_delay(message: FlowMessage) -> timedelta:
    """Delay configured on ``message`` (days + hours)."""
    return timedelta(days=message.delay_days or 0, hours=message.delay_hours or 0)
