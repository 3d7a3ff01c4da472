# sms_flows/delivery/__init__.py
from sms_flows.delivery.base import DeliveryResult, SmsSender
from sms_flows.delivery.http_sender import HttpSmsSender, normalize_phone


def get_sender() -> SmsSender:
    """Sender configured from the environment. Raises ConfigurationError if unconfigured."""
    return HttpSmsSender()


__all__ = [
    "DeliveryResult",
    "SmsSender",
    "HttpSmsSender",
    "get_sender",
    "normalize_phone",
]
