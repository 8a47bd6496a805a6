# src/domain/state_machine.py

from enum import Enum
from typing import Dict, Optional, Set

from src.domain.exceptions import InvalidStateTransitionError


# Seat count per reservation is fixed by policy.
SEATS_PER_RESERVATION = 1


class ReservationStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


# Both states hold a seat against the event capacity.
ACTIVE_STATUSES = (
    ReservationStatus.PENDING_PAYMENT,
    ReservationStatus.CONFIRMED,
)


class ReservationStateMachine:
    """
    Central lifecycle controller for reservation transitions.
    ``None`` stands for "no reservation yet".
    """

    _ALLOWED_TRANSITIONS: Dict[Optional[ReservationStatus], Set[ReservationStatus]] = {
        None: {
            ReservationStatus.PENDING_PAYMENT,
        },
        ReservationStatus.PENDING_PAYMENT: {
            ReservationStatus.CONFIRMED,
        },
        ReservationStatus.CONFIRMED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: Optional[ReservationStatus],
        to_status: ReservationStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        if from_status is not None:
            cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: Optional[ReservationStatus],
        to_status: ReservationStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value if from_status else "none",
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: ReservationStatus) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def is_mutable(cls, status: ReservationStatus) -> bool:
        """
        Profile fields and notes may only change before payment.
        """
        cls._ensure_valid_status(status)
        return status == ReservationStatus.PENDING_PAYMENT

    @staticmethod
    def _ensure_valid_status(status: ReservationStatus) -> None:
        if not isinstance(status, ReservationStatus):
            raise TypeError(
                f"Expected ReservationStatus, got {type(status)}"
            )
