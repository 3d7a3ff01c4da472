# sms_flows/db/models.py

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Flow(Base):
    """Named message sequence. Maintained outside this service."""

    __tablename__ = "sms_flows"

    id = Column(String, primary_key=True)  # UUID
    name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class FlowMessage(Base):
    """One step of a flow, with the delay that precedes it."""

    __tablename__ = "sms_flow_messages"
    __table_args__ = (UniqueConstraint("flow_id", "sequence_order", name="uq_flow_message_order"),)

    id = Column(String, primary_key=True)  # UUID
    flow_id = Column(String, ForeignKey("sms_flows.id"), nullable=False, index=True)
    sequence_order = Column(Integer, nullable=False)  # starts at 1
    message_text = Column(Text, nullable=False)
    delay_days = Column(Integer, default=0, nullable=False)
    delay_hours = Column(Integer, default=0, nullable=False)
    include_coupon = Column(Boolean, default=False, nullable=False)
    include_link = Column(Boolean, default=False, nullable=False)
    link_utm = Column(String, nullable=True)  # tracking tag, "sms" when empty
    is_active = Column(Boolean, default=True, nullable=False)


class FlowStatus(Base):
    """Progress of one subscriber through one flow. Never deleted."""

    __tablename__ = "user_sms_flow_status"
    __table_args__ = (UniqueConstraint("phone", "flow_id", name="uq_flow_status_subscriber"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)  # linked account, if any
    flow_id = Column(String, ForeignKey("sms_flows.id"), nullable=False, index=True)
    current_message_order = Column(Integer, default=0, nullable=False)  # 0 = nothing sent yet

    # State columns, written only through sms_flows.flows.state.write_state
    next_message_scheduled_at = Column(DateTime, nullable=True, index=True)
    flow_completed_at = Column(DateTime, nullable=True)
    completion_reason = Column(String, nullable=True)  # "flow_end", "coupon_used"
    is_paused = Column(Boolean, default=False, nullable=False)
    paused_reason = Column(String, nullable=True)

    coupon_code = Column(String, nullable=True)
    coupon_used = Column(Boolean, default=False, nullable=False)
    context = Column("metadata", JSON, nullable=True)  # e.g. {"talent_name": "..."}

    last_message_sent_at = Column(DateTime, nullable=True)
    failed_attempts = Column(Integer, default=0, nullable=False)  # consecutive
    retry_after = Column(DateTime, nullable=True)

    # Processing claim held by one invocation at a time
    claim_token = Column(String, nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)


class SendLogEntry(Base):
    """One delivery attempt. Append-only."""

    __tablename__ = "sms_send_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)
    flow_id = Column(String, nullable=False, index=True)
    message_id = Column(String, nullable=False)
    sequence_order = Column(Integer, nullable=True)
    message_text = Column(Text, nullable=False)
    status = Column(String, nullable=False)  # "sent", "failed"
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)


class SignupEntry(Base):
    """Contest / signup entry that enrolls a subscriber into the welcome flow."""

    __tablename__ = "beta_signups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone_number = Column(String, nullable=True)
    email = Column(String, nullable=True)
    prize_won = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)


class Order(Base):
    """Transaction ledger row; read to check coupon redemption."""

    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    coupon_code = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default="completed")
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class User(Base):
    """Marketplace account, looked up by phone for personalization."""

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    phone = Column(String, nullable=True, index=True)
    full_name = Column(String, nullable=True)


class OptOut(Base):
    """Phone numbers that replied STOP."""

    __tablename__ = "sms_opt_outs"

    phone = Column(String, primary_key=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
