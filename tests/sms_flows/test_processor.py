# tests/sms_flows/test_processor.py
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from sms_flows.conf import FOLLOWUP_FLOW_ID, ONGOING_FLOW_ID, WELCOME_FLOW_ID
from sms_flows.db.models import FlowStatus, Order, SendLogEntry, SignupEntry
from sms_flows.flows.processor import BatchSummary, process_flows, run_invocation
from tests.fixtures.flows import NOW, RecordingSender, add_flow, add_status


def _status(session, phone, flow_id):
    session.expire_all()
    return session.query(FlowStatus).filter_by(phone=phone, flow_id=flow_id).one()


class TestProcessFlows:
    def test_new_signup_gets_welcome_in_same_invocation(self, standard_flows):
        standard_flows.add(SignupEntry(phone_number="+15550001111", prize_won="FREE_SHOUTOUT", created_at=NOW - timedelta(hours=2)))
        standard_flows.commit()
        sender = RecordingSender()

        summary = process_flows(standard_flows, sender, NOW)

        assert summary.success is True
        assert summary.enrolled == 2
        assert summary.processed == 1
        assert summary.sent == 1
        assert sender.calls == [("+15550001111", "Welcome! You won.", True)]

        welcome = _status(standard_flows, "+15550001111", WELCOME_FLOW_ID)
        assert welcome.current_message_order == 1
        assert welcome.next_message_scheduled_at == NOW + timedelta(days=1, hours=2)

        followup = _status(standard_flows, "+15550001111", FOLLOWUP_FLOW_ID)
        assert followup.current_message_order == 0
        assert followup.next_message_scheduled_at == NOW + timedelta(hours=72)

    def test_failures_are_counted_and_loop_continues(self, standard_flows):
        add_status(standard_flows, "+1", WELCOME_FLOW_ID, NOW)
        add_status(standard_flows, "+2", WELCOME_FLOW_ID, NOW)
        sender = RecordingSender(fail_for={"+1"})

        summary = process_flows(standard_flows, sender, NOW)

        assert summary.processed == 2
        assert summary.sent == 1
        assert summary.failed == 1
        assert summary.errors == 1
        assert len(sender.calls) == 2

    def test_row_exception_is_absorbed(self, standard_flows):
        add_status(standard_flows, "+1", WELCOME_FLOW_ID, NOW)
        add_status(standard_flows, "+2", WELCOME_FLOW_ID, NOW)
        sender = RecordingSender()

        with patch("sms_flows.flows.advancer.compose_message", side_effect=[KeyError("bad data"), "ok"]):
            summary = process_flows(standard_flows, sender, NOW)

        assert summary.success is True
        assert summary.errors == 1
        assert summary.sent == 1

    def test_redeemed_followup_never_sent(self, standard_flows):
        add_status(standard_flows, "+1", FOLLOWUP_FLOW_ID, NOW - timedelta(hours=1), coupon_code="WINNER100")
        standard_flows.add(Order(id="o-1", coupon_code="WINNER100", status="completed"))
        standard_flows.commit()
        sender = RecordingSender()

        summary = process_flows(standard_flows, sender, NOW)

        assert summary.skipped == 1
        assert summary.processed == 0
        assert sender.calls == []
        assert standard_flows.query(SendLogEntry).count() == 0
        assert _status(standard_flows, "+1", FOLLOWUP_FLOW_ID).coupon_used is True

    def test_followup_sent_when_coupon_unused(self, standard_flows):
        add_status(standard_flows, "+1", FOLLOWUP_FLOW_ID, NOW, coupon_code="WINNER100")
        sender = RecordingSender()

        summary = process_flows(standard_flows, sender, NOW)

        assert summary.sent == 1
        assert sender.calls[0][1] == "Your prize expires soon\nhttps://shoutout.us?utm=sms&coupon=WINNER100"
        assert _status(standard_flows, "+1", FOLLOWUP_FLOW_ID).flow_completed_at == NOW

    def test_completed_followup_chains_into_ongoing(self, standard_flows):
        add_status(
            standard_flows,
            "+1",
            FOLLOWUP_FLOW_ID,
            NOW - timedelta(days=9),
            flow_completed_at=NOW - timedelta(days=8),
            next_message_scheduled_at=None,
        )
        sender = RecordingSender()

        summary = process_flows(standard_flows, sender, NOW)

        assert summary.enrolled == 1
        assert sender.calls == [("+1", "New talent this week", True)]
        assert _status(standard_flows, "+1", ONGOING_FLOW_ID).current_message_order == 1

    def test_inactive_flow_rows_not_processed(self, db_session):
        add_flow(db_session, "paused-campaign", is_active=False, messages=[{"sequence_order": 1}])
        add_status(db_session, "+1", "paused-campaign", NOW)
        sender = RecordingSender()

        summary = process_flows(db_session, sender, NOW)

        assert summary.processed == 0
        assert sender.calls == []

    def test_schedule_invariant_holds_after_runs(self, db_session):
        add_flow(
            db_session,
            "drip",
            messages=[
                {"sequence_order": 1},
                {"sequence_order": 2, "delay_hours": 1},
                {"sequence_order": 3, "delay_hours": 1},
            ],
        )
        for i in range(3):
            add_status(db_session, f"+1{i}", "drip", NOW)
        sender = RecordingSender()

        now = NOW
        for _ in range(5):
            process_flows(db_session, sender, now)
            now += timedelta(hours=1)

        db_session.expire_all()
        for row in db_session.query(FlowStatus).all():
            assert row.current_message_order == 3
            assert row.flow_completed_at is not None
            assert row.next_message_scheduled_at is None
        assert len(sender.calls) == 9


class TestRunInvocation:
    def test_returns_summary(self, standard_flows):
        add_status(standard_flows, "+1", WELCOME_FLOW_ID, NOW)

        summary = run_invocation(now=NOW, sender=RecordingSender())

        assert isinstance(summary, BatchSummary)
        assert summary.success is True
        assert summary.sent == 1

    def test_missing_credentials_is_fatal(self, standard_flows, monkeypatch):
        monkeypatch.delenv("SMS_SEND_URL", raising=False)
        monkeypatch.delenv("SMS_SERVICE_KEY", raising=False)

        summary = run_invocation(now=NOW)

        assert summary.success is False
        assert "SMS_SEND_URL" in summary.error

    def test_store_error_is_fatal(self, standard_flows):
        error = OperationalError("SELECT", {}, Exception("database is locked"))
        with patch("sms_flows.flows.processor.store.find_due", side_effect=error):
            summary = run_invocation(now=NOW, sender=RecordingSender())

        assert summary.success is False
        assert "database is locked" in summary.error
