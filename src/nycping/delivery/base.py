"""
Module to contain base class for Delivery channels
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class DeliveryChannel(ABC):
    """
    Base interface for all delivery channels.
    """

    name: str

    @abstractmethod
    async def send_email(self, *, to: str, subject: str, html: str, text: str) -> DeliveryResult:
        """
        Deliver one rendered message.
        Transport failures are reported in the result, not raised.
        """
        raise NotImplementedError
