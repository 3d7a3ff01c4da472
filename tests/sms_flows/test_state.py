# tests/sms_flows/test_state.py
from datetime import timedelta

import pytest
from pydantic import TypeAdapter

from sms_flows.db.models import FlowStatus
from sms_flows.flows.state import (
    CompletedState,
    CompletionReason,
    FlowState,
    PausedState,
    ScheduledState,
    read_state,
    write_state,
)
from tests.fixtures.flows import NOW


def _status(**columns):
    defaults = {"id": 1, "phone": "+15550001111", "flow_id": "f", "is_paused": False, "coupon_used": False}
    defaults.update(columns)
    return FlowStatus(**defaults)


class TestReadState:
    def test_scheduled(self):
        assert read_state(_status(next_message_scheduled_at=NOW)) == ScheduledState(at=NOW)

    def test_completed_wins_over_everything(self):
        status = _status(flow_completed_at=NOW, completion_reason="coupon_used", is_paused=True)
        assert read_state(status) == CompletedState(at=NOW, reason=CompletionReason.COUPON_USED)

    def test_completed_without_reason_defaults_to_flow_end(self):
        assert read_state(_status(flow_completed_at=NOW)).reason == CompletionReason.FLOW_END

    def test_paused_keeps_resume_time(self):
        status = _status(is_paused=True, paused_reason="opted_out", next_message_scheduled_at=NOW)
        assert read_state(status) == PausedState(reason="opted_out", resume_at=NOW)

    def test_no_valid_state(self):
        with pytest.raises(ValueError):
            read_state(_status())


class TestWriteState:
    def test_completed_clears_schedule(self):
        status = _status(next_message_scheduled_at=NOW, retry_after=NOW)
        write_state(status, CompletedState(at=NOW), NOW)
        assert status.flow_completed_at == NOW
        assert status.next_message_scheduled_at is None
        assert status.retry_after is None
        assert status.completion_reason == "flow_end"
        assert status.coupon_used is False

    def test_coupon_used_completion_sets_marker(self):
        status = _status(next_message_scheduled_at=NOW)
        write_state(status, CompletedState(at=NOW, reason=CompletionReason.COUPON_USED), NOW)
        assert status.coupon_used is True

    def test_scheduled_unpauses(self):
        status = _status(is_paused=True, paused_reason="opted_out", next_message_scheduled_at=NOW)
        later = NOW + timedelta(hours=3)
        write_state(status, ScheduledState(at=later), NOW)
        assert status.is_paused is False
        assert status.paused_reason is None
        assert status.next_message_scheduled_at == later

    def test_completed_is_terminal(self):
        status = _status(flow_completed_at=NOW)
        with pytest.raises(ValueError):
            write_state(status, ScheduledState(at=NOW), NOW)

    def test_round_trip_through_columns(self):
        status = _status(next_message_scheduled_at=NOW)
        state = PausedState(reason="too_many_failures (5 consecutive)", resume_at=NOW)
        write_state(status, state, NOW)
        assert read_state(status) == state


def test_state_union_discriminates_on_kind():
    adapter = TypeAdapter(FlowState)
    state = adapter.validate_python({"kind": "completed", "at": NOW.isoformat(), "reason": "coupon_used"})
    assert isinstance(state, CompletedState)
    assert state.reason == CompletionReason.COUPON_USED
