# sms_flows/delivery/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel


class DeliveryResult(BaseModel):
    """Outcome of a single send attempt."""

    success: bool
    error: Optional[str] = None
    provider_id: Optional[str] = None


class SmsSender(ABC):
    """
    Boundary to the SMS transport.

    Retries and rate limiting at the transport level belong to the implementation,
    not to the flow engine; one call is one attempt.
    """

    @abstractmethod
    def send(self, to: str, message: str, use_user_number: bool = True) -> DeliveryResult:
        """
        Send ``message`` to ``to``.

        Args:
            to: Destination phone number
            message: Final rendered text
            use_user_number: Send from the subscriber-facing number rather than the
                default messaging service

        Returns:
            DeliveryResult with success flag and error detail on failure
        """
        pass
