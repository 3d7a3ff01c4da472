# sms_flows/conf.py
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict

from dotenv import load_dotenv

from sms_flows.errors import ConfigurationError

logger = logging.getLogger(__name__)

load_dotenv()

# ----------------------------------------------------------------------
# Paths (all under assets/)
# ----------------------------------------------------------------------
ROOT_DIR = Path(__file__).parent.parent
ASSETS_DIR = ROOT_DIR / "assets"

DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite:///{ASSETS_DIR / 'flows.db'}"

# ----------------------------------------------------------------------
# Flow catalog ids
# ----------------------------------------------------------------------
WELCOME_FLOW_ID = os.getenv("WELCOME_FLOW_ID", "11111111-1111-1111-1111-111111111111")
FOLLOWUP_FLOW_ID = os.getenv("FOLLOWUP_FLOW_ID", "22222222-2222-2222-2222-222222222222")
ONGOING_FLOW_ID = os.getenv("ONGOING_FLOW_ID", "33333333-3333-3333-3333-333333333333")

# Prize awarded on a signup → coupon attached to the subscriber's flows
PRIZE_COUPONS: Dict[str, str] = {
    "FREE_SHOUTOUT": "WINNER100",
    "15_OFF": "SAVE15",
    "10_OFF": "SAVE10",
    "25_DOLLARS": "TAKE25",
}

# ----------------------------------------------------------------------
# Timing
# ----------------------------------------------------------------------
BATCH_SIZE = int(os.getenv("FLOW_BATCH_SIZE", "100"))
ENTRY_WINDOW_HOURS = int(os.getenv("ENTRY_WINDOW_HOURS", "24"))
FOLLOWUP_DELAY_HOURS = int(os.getenv("FOLLOWUP_DELAY_HOURS", "72"))
ONGOING_COOLDOWN_DAYS = int(os.getenv("ONGOING_COOLDOWN_DAYS", "7"))

# A claim older than this is considered abandoned by a crashed invocation
CLAIM_TTL_MINUTES = int(os.getenv("CLAIM_TTL_MINUTES", "15"))

# Delivery failure circuit breaker
MAX_DELIVERY_ATTEMPTS = int(os.getenv("MAX_DELIVERY_ATTEMPTS", "5"))
RETRY_BACKOFF_MINUTES = int(os.getenv("RETRY_BACKOFF_MINUTES", "5"))

FLOW_CRON = os.getenv("FLOW_CRON", "*/5 * * * *")
FLOW_SCHEDULER_ENABLED = os.getenv("FLOW_SCHEDULER_ENABLED", "false").lower() in ("1", "true", "yes")

# ----------------------------------------------------------------------
# Messaging
# ----------------------------------------------------------------------
LINK_BASE_URL = os.getenv("LINK_BASE_URL", "https://shoutout.us")
DEFAULT_LINK_TAG = "sms"
USE_USER_NUMBER = os.getenv("SMS_USE_USER_NUMBER", "true").lower() in ("1", "true", "yes")

# Orders in these states never count as a coupon redemption
VOID_ORDER_STATUSES = ("cancelled", "refunded", "failed")

SEND_TIMEOUT_S = float(os.getenv("SMS_SEND_TIMEOUT_S", "15"))


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------
def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the store keeps naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_delivery_config() -> Dict[str, str]:
    """Return the send-sms endpoint and service key, or raise if unconfigured."""
    endpoint = os.getenv("SMS_SEND_URL")
    service_key = os.getenv("SMS_SERVICE_KEY")

    missing = [name for name, value in (("SMS_SEND_URL", endpoint), ("SMS_SERVICE_KEY", service_key)) if not value]
    if missing:
        raise ConfigurationError(f"Delivery credentials not configured: {', '.join(missing)}")

    return {"endpoint": endpoint, "service_key": service_key}  # type: ignore[dict-item]
