# sms_flows/flows/ledger.py
from sqlalchemy.orm import Session

from sms_flows.conf import VOID_ORDER_STATUSES
from sms_flows.db.models import Order


def coupon_redeemed(session: Session, coupon_code: str | None) -> bool:
    """True if any non-void order used ``coupon_code``."""
    if not coupon_code:
        return False

    order = (
        session.query(Order.id)
        .filter(Order.coupon_code == coupon_code)
        .filter(Order.status.notin_(VOID_ORDER_STATUSES))
        .first()
    )
    return order is not None
