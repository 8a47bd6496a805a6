# src/application/ports.py

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol


class CaptureStatus(str, Enum):
    COMPLETED = "COMPLETED"
    PENDING = "PENDING"
    DECLINED = "DECLINED"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class CaptureResult:
    capture_id: str
    status: CaptureStatus
    raw_status: str = ""


@dataclass(frozen=True)
class GatewayConfigStatus:
    configured: bool
    # Setting names only, never values.
    missing: list[str] = field(default_factory=list)


class PaymentGateway(Protocol):
    """
    What the booking core needs from a payment provider.
    Implementations raise PaymentProviderUnavailable for
    timeouts and transport failures.
    """

    def config_status(self) -> GatewayConfigStatus:
        ...

    def create_order(self, amount: Decimal, currency: str, reference: str) -> str:
        ...

    def capture_order(self, order_id: str) -> CaptureResult:
        ...


class ConfirmationNotifier(Protocol):
    def send_reservation_confirmation(
        self,
        to: str,
        event_title: str,
        event_date: str,
        confirmation_code: str,
        notes: Optional[str] = None,
    ) -> bool:
        ...


class RateLimiter(Protocol):
    def allow(self, key: str) -> bool:
        ...
