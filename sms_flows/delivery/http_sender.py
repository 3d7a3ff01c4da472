# sms_flows/delivery/http_sender.py
from __future__ import annotations

import logging
import re
from typing import Optional

import requests

from sms_flows.conf import SEND_TIMEOUT_S, get_delivery_config
from sms_flows.delivery.base import DeliveryResult, SmsSender
from sms_flows.errors import DeliveryError

logger = logging.getLogger(__name__)


def normalize_phone(phone: str) -> str:
    """Format ``phone`` as E.164, assuming +1 for bare national numbers."""
    phone = phone.strip()
    if phone.startswith("+"):
        return phone
    return f"+1{re.sub(r'[^0-9]', '', phone)}"


class HttpSmsSender(SmsSender):
    """Sends through the send-sms HTTP function of the marketplace backend."""

    def __init__(self, endpoint: Optional[str] = None, service_key: Optional[str] = None, timeout: float = SEND_TIMEOUT_S):
        if not endpoint or not service_key:
            config = get_delivery_config()
            endpoint = endpoint or config["endpoint"]
            service_key = service_key or config["service_key"]

        self.endpoint = endpoint
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {service_key}"})

    def _post(self, payload: dict) -> dict:
        response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.ok or data.get("success") is False:
            detail = data.get("error") or response.reason or f"HTTP {response.status_code}"
            raise DeliveryError(f"send-sms rejected message: {detail}")
        return data

    def send(self, to: str, message: str, use_user_number: bool = True) -> DeliveryResult:
        destination = normalize_phone(to)
        payload = {"to": destination, "message": message, "useUserNumber": use_user_number}

        try:
            data = self._post(payload)
        except (requests.RequestException, DeliveryError) as e:
            logger.warning("SMS to %s failed: %s", destination, e)
            return DeliveryResult(success=False, error=str(e))

        logger.debug("SMS to %s accepted (%d chars)", destination, len(message))
        return DeliveryResult(success=True, provider_id=data.get("messageSid"))
