# api_server/schemas/flows.py
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from sms_flows.flows.state import FlowState


class ProcessRequest(BaseModel):
    """Optional overrides for a manual invocation."""

    now: Optional[datetime] = Field(None, description="Evaluate the batch as of this UTC time (testing/backfill)")


class FlowStatusResponse(BaseModel):
    """Progress of one subscriber through one flow."""

    id: int
    phone: str
    user_id: Optional[str] = None
    flow_id: str
    current_message_order: int
    state: Optional[FlowState] = None
    coupon_code: Optional[str] = None
    coupon_used: bool = False
    metadata: Optional[Dict[str, Any]] = None
    last_message_sent_at: Optional[datetime] = None
    failed_attempts: int = 0
    retry_after: Optional[datetime] = None
    created_at: Optional[datetime] = None


class FlowStatusListResponse(BaseModel):
    statuses: list[FlowStatusResponse]
    total: int
    limit: int
    offset: int


class SendLogResponse(BaseModel):
    """One delivery attempt."""

    id: int
    phone: str
    flow_id: str
    message_id: str
    sequence_order: Optional[int] = None
    message_text: str
    status: str  # "sent", "failed"
    error_message: Optional[str] = None
    created_at: datetime
