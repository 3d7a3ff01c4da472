# api_server/routers/flows.py
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from api_server.auth import verify_api_key
from api_server.schemas.flows import (
    FlowStatusListResponse,
    FlowStatusResponse,
    ProcessRequest,
    SendLogResponse,
)
from sms_flows.conf import utc_now
from sms_flows.db.engine import get_session
from sms_flows.db.models import FlowStatus, SendLogEntry
from sms_flows.flows import run_log, store
from sms_flows.flows.processor import BatchSummary, run_invocation
from sms_flows.flows.state import read_state

logger = logging.getLogger(__name__)

router = APIRouter()


def _status_to_response(row: FlowStatus) -> FlowStatusResponse:
    try:
        state = read_state(row)
    except ValueError:
        logger.warning("Flow status %s has no valid state", row.id)
        state = None

    return FlowStatusResponse(
        id=row.id,
        phone=row.phone,
        user_id=row.user_id,
        flow_id=row.flow_id,
        current_message_order=row.current_message_order,
        state=state,
        coupon_code=row.coupon_code,
        coupon_used=bool(row.coupon_used),
        metadata=row.context,
        last_message_sent_at=row.last_message_sent_at,
        failed_attempts=row.failed_attempts or 0,
        retry_after=row.retry_after,
        created_at=row.created_at,
    )


def _entry_to_response(entry: SendLogEntry) -> SendLogResponse:
    return SendLogResponse(
        id=entry.id,
        phone=entry.phone,
        flow_id=entry.flow_id,
        message_id=entry.message_id,
        sequence_order=entry.sequence_order,
        message_text=entry.message_text,
        status=entry.status,
        error_message=entry.error_message,
        created_at=entry.created_at,
    )



def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@router.post("/flows/process", response_model=BatchSummary)
def process_flows_endpoint(request: Optional[ProcessRequest] = None, api_key: str = Depends(verify_api_key)):
    """Run one invocation of the flow engine and return its summary."""
    now = _naive_utc(request.now) if request and request.now else None
    summary = run_invocation(now=now)
    if not summary.success:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=summary.model_dump())
    return summary


@router.get("/flows/statuses", response_model=FlowStatusListResponse)
def list_statuses_endpoint(
    phone: str | None = Query(None, description="Filter by subscriber phone"),
    flow_id: str | None = Query(None, description="Filter by flow"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of rows to return"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    api_key: str = Depends(verify_api_key),
):
    """List subscriber flow statuses."""
    session = get_session()
    try:
        rows, total = store.list_statuses(session, phone=phone, flow_id=flow_id, limit=limit, offset=offset)
        return FlowStatusListResponse(
            statuses=[_status_to_response(row) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
        )
    finally:
        session.close()


@router.get("/flows/log", response_model=list[SendLogResponse])
def list_log_endpoint(
    phone: str | None = Query(None, description="Filter by subscriber phone"),
    flow_id: str | None = Query(None, description="Filter by flow"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of entries to return"),
    api_key: str = Depends(verify_api_key),
):
    """Delivery attempts, newest first."""
    session = get_session()
    try:
        return [_entry_to_response(entry) for entry in run_log.list_entries(session, phone=phone, flow_id=flow_id, limit=limit)]
    finally:
        session.close()


@router.post("/flows/statuses/{status_id}/resume", response_model=FlowStatusResponse)
def resume_status_endpoint(status_id: int, api_key: str = Depends(verify_api_key)):
    """Resume a paused subscriber (e.g. after a delivery circuit-break)."""
    session = get_session()
    try:
        if not store.resume(session, status_id, utc_now()):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Paused flow status not found")
        return _status_to_response(session.get(FlowStatus, status_id))
    finally:
        session.close()
