# sms_flows/flows/state.py
"""
Explicit lifecycle state of a FlowStatus row.

The table stores state as a combination of nullable columns. Reading goes through
``read_state`` and every mutation through ``write_state`` so that no invalid
combination (e.g. a completed row that is still scheduled) can be persisted.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from sms_flows.db.models import FlowStatus


class CompletionReason(str, Enum):
    """Why a flow finished for a subscriber."""

    FLOW_END = "flow_end"
    COUPON_USED = "coupon_used"


class ScheduledState(BaseModel):
    kind: Literal["scheduled"] = "scheduled"
    at: datetime


class CompletedState(BaseModel):
    kind: Literal["completed"] = "completed"
    at: datetime
    reason: CompletionReason = CompletionReason.FLOW_END


class PausedState(BaseModel):
    """Lateral state; ``resume_at`` is the send time kept for when the row is resumed."""

    kind: Literal["paused"] = "paused"
    reason: str
    resume_at: Optional[datetime] = None


FlowState = Annotated[Union[ScheduledState, CompletedState, PausedState], Field(discriminator="kind")]


def read_state(status: FlowStatus) -> FlowState:
    """Derive the tagged state from the row's columns."""
    if status.flow_completed_at is not None:
        reason = CompletionReason(status.completion_reason or CompletionReason.FLOW_END.value)
        return CompletedState(at=status.flow_completed_at, reason=reason)
    if status.is_paused:
        return PausedState(reason=status.paused_reason or "unknown", resume_at=status.next_message_scheduled_at)
    if status.next_message_scheduled_at is None:
        raise ValueError(f"Flow status {status.id} is neither scheduled, paused nor completed")
    return ScheduledState(at=status.next_message_scheduled_at)


def write_state(status: FlowStatus, state: FlowState, now: datetime) -> None:
    """Persist ``state`` onto the row's columns. Completed is terminal."""
    if status.flow_completed_at is not None and not isinstance(state, CompletedState):
        raise ValueError(f"Flow status {status.id} is already completed")

    if isinstance(state, ScheduledState):
        status.next_message_scheduled_at = state.at
        status.is_paused = False
        status.paused_reason = None
    elif isinstance(state, CompletedState):
        status.flow_completed_at = state.at
        status.completion_reason = state.reason.value
        status.next_message_scheduled_at = None
        status.retry_after = None
        if state.reason == CompletionReason.COUPON_USED:
            status.coupon_used = True
    elif isinstance(state, PausedState):
        status.is_paused = True
        status.paused_reason = state.reason
        status.next_message_scheduled_at = state.resume_at

    status.updated_at = now
