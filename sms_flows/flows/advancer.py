# sms_flows/flows/advancer.py
"""
Moves one due FlowStatus row forward by at most one message.

Transitions:
    Scheduled --(no message at position+1)--> Completed(flow_end)
    Scheduled --(send ok, next message)-----> Scheduled(now + delay of the message after the one sent)
    Scheduled --(send ok, no next message)--> Completed(flow_end)
    Scheduled --(send failed)---------------> Scheduled (unchanged; retried once retry_after passes)
    Scheduled --(too many failures/opt-out)-> Paused
"""
import logging
from datetime import datetime
from enum import Enum

from sqlalchemy.orm import Session

from sms_flows.conf import USE_USER_NUMBER
from sms_flows.db.models import FlowStatus
from sms_flows.delivery.base import DeliveryResult, SmsSender
from sms_flows.errors import ConfigurationError
from sms_flows.flows import catalog, run_log, store
from sms_flows.flows.accounts import is_opted_out
from sms_flows.flows.composer import compose_message
from sms_flows.flows.state import CompletedState, CompletionReason, PausedState, ScheduledState

logger = logging.getLogger(__name__)


class AdvanceOutcome(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    COMPLETED = "completed"
    PAUSED = "paused"
    SKIPPED = "skipped"


class FlowLoggerAdapter(logging.LoggerAdapter):
    """Prefixes log lines with the status row and flow being processed."""

    def process(self, msg, kwargs):
        extra = self.extra or {}
        status_id = extra.get("status_id", "unknown")
        flow_id = str(extra.get("flow_id", "unknown"))[:8]
        return f"[status={status_id}] [flow={flow_id}] {msg}", kwargs


def _deliver(sender: SmsSender, status: FlowStatus, text: str) -> DeliveryResult:
    try:
        return sender.send(status.phone, text, use_user_number=USE_USER_NUMBER)
    except ConfigurationError:
        raise
    except Exception as e:
        return DeliveryResult(success=False, error=f"{type(e).__name__}: {e}")


def advance(session: Session, status: FlowStatus, sender: SmsSender, now: datetime, expected_position: int) -> AdvanceOutcome:
    """
    Process one due row read at ``expected_position``.

    The row is claimed first; if another invocation holds it or already moved it,
    nothing happens.
    """
    status_id = status.id
    row_logger = FlowLoggerAdapter(logger, {"status_id": status_id, "flow_id": status.flow_id})

    if store.claim(session, status_id, expected_position, now) is None:
        row_logger.info("Already claimed or advanced by another run, skipping")
        return AdvanceOutcome.SKIPPED

    status = session.get(FlowStatus, status_id, populate_existing=True)

    flow = catalog.get_flow(session, status.flow_id)
    if flow is None:
        row_logger.warning("Flow %s not found in catalog, skipping", status.flow_id)
        store.release(status)
        session.commit()
        return AdvanceOutcome.SKIPPED

    if is_opted_out(session, status.phone):
        row_logger.info("%s opted out, pausing", status.phone)
        store.record_skip(status, now, PausedState(reason="opted_out", resume_at=status.next_message_scheduled_at))
        session.commit()
        return AdvanceOutcome.PAUSED

    position = status.current_message_order + 1
    message = catalog.get_message(session, status.flow_id, position)
    if message is None:
        row_logger.info("No message #%d, flow %s completed for %s", position, flow.name, status.phone)
        store.record_skip(status, now, CompletedState(at=now, reason=CompletionReason.FLOW_END))
        session.commit()
        return AdvanceOutcome.COMPLETED

    text = compose_message(message, status)
    row_logger.info("Sending message #%d to %s: %s...", position, status.phone, text[:50])
    result = _deliver(sender, status, text)

    if not result.success:
        row_logger.error("Delivery of message #%d to %s failed: %s", position, status.phone, result.error)
        run_log.log_attempt(session, status, message, text, now, error=result.error or "Unknown error")
        paused = store.record_failure(status, now)
        session.commit()
        return AdvanceOutcome.PAUSED if paused else AdvanceOutcome.FAILED

    run_log.log_attempt(session, status, message, text, now)

    # The wait before the next send is configured on the *following* message
    following = catalog.get_message(session, status.flow_id, position + 1)
    if following is not None:
        next_state = ScheduledState(at=now + catalog.message_delay(following))
    else:
        next_state = CompletedState(at=now, reason=CompletionReason.FLOW_END)

    store.record_sent(status, now, next_state)
    session.commit()

    if isinstance(next_state, CompletedState):
        row_logger.info("Sent final message #%d to %s, flow completed", position, status.phone)
    else:
        row_logger.info("Sent message #%d to %s, next at %s", position, status.phone, next_state.at)
    return AdvanceOutcome.SENT
