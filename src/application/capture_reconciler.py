# src/application/capture_reconciler.py

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from src.application.ports import (
    CaptureStatus,
    ConfirmationNotifier,
    PaymentGateway,
)
from src.domain.confirmation_codes import CODE_PREFIX, generate_confirmation_code
from src.domain.exceptions import (
    NotFoundOrForbidden,
    OrderMismatch,
    PaymentIncomplete,
    PaymentNotConfigured,
    ReservationNotPending,
    SoldOutAfterPayment,
)
from src.domain.identity import is_placeholder_email
from src.domain.state_machine import SEATS_PER_RESERVATION, ReservationStatus
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.reservation_repository import ReservationRepository


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureOutcome:
    confirmation_code: str
    # True when an earlier capture had already confirmed the reservation.
    replayed: bool = False


@dataclass(frozen=True)
class _Receipt:
    email: str
    event_title: str
    event_date: str
    notes: Optional[str]


class CaptureReconciler:
    """
    Turns a provider capture into a confirmed reservation.

    The provider call is made before any transaction opens. Capacity is
    then re-checked under the event lock, because the seat may have been
    lost while the payer was on the provider's page. Repeating a capture
    for an already confirmed reservation returns the stored code without
    calling the provider again.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: PaymentGateway,
        notifier: Optional[ConfirmationNotifier] = None,
        code_prefix: str = CODE_PREFIX,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifier = notifier
        self.code_prefix = code_prefix

    def capture(
        self,
        reservation_id: str,
        order_id: str,
        member_id: str,
    ) -> CaptureOutcome:
        status = self.gateway.config_status()
        if not status.configured:
            raise PaymentNotConfigured(status.missing)

        with session_scope(self.session_factory) as db:
            reservation = ReservationRepository(db).get_by_id(reservation_id)
            if reservation is None or reservation.member_id != member_id:
                raise NotFoundOrForbidden()

            if (
                reservation.status == ReservationStatus.CONFIRMED
                and reservation.provider_capture_id
            ):
                return CaptureOutcome(reservation.confirmation_code, replayed=True)

            if reservation.status != ReservationStatus.PENDING_PAYMENT:
                raise ReservationNotPending()

            if reservation.provider_order_id and reservation.provider_order_id != order_id:
                logger.warning(
                    "Capture refused, order does not match reservation. reservation_id=%s",
                    reservation_id,
                )
                raise OrderMismatch()

            stored_code = reservation.confirmation_code

        result = self.gateway.capture_order(order_id)
        # Only a completed capture with an id may confirm the reservation.
        if result.status != CaptureStatus.COMPLETED or not result.capture_id:
            logger.warning(
                "Capture not completed. reservation_id=%s order_id=%s status=%s",
                reservation_id,
                order_id,
                result.raw_status or result.status.value,
            )
            raise PaymentIncomplete()

        code = stored_code or self._new_code()

        try:
            code, receipt, replayed = self._commit_confirmation(
                reservation_id, order_id, result.capture_id, code
            )
        except IntegrityError:
            if stored_code:
                raise
            # Another capture committed the same code after it was drawn.
            logger.warning(
                "Confirmation code collided at commit, drawing a new one. reservation_id=%s",
                reservation_id,
            )
            code, receipt, replayed = self._commit_confirmation(
                reservation_id, order_id, result.capture_id, self._new_code()
            )

        if not replayed:
            logger.info(
                "Reservation confirmed. reservation_id=%s capture_id=%s code=%s",
                reservation_id,
                result.capture_id,
                code,
            )
            self._notify(receipt, code)

        return CaptureOutcome(code, replayed=replayed)

    def _commit_confirmation(self, reservation_id, order_id, capture_id, code):
        with session_scope(self.session_factory) as db:
            reservation, receipt, replayed = self._confirm(
                db, reservation_id, order_id, capture_id, code
            )
            return reservation.confirmation_code, receipt, replayed

    def _confirm(self, db, reservation_id, order_id, capture_id, code):
        events = EventRepository(db)
        reservations = ReservationRepository(db)

        reservation = reservations.get_by_id(reservation_id)
        event = events.lock_by_id(reservation.event_id)
        reservation = reservations.lock_by_id(reservation_id)

        if reservation.status == ReservationStatus.CONFIRMED:
            # A concurrent retry of this capture got here first.
            return reservation, None, True

        others = events.active_guests(event.id, exclude_reservation_id=reservation.id)
        if event.capacity - others < SEATS_PER_RESERVATION:
            logger.error(
                "Paid reservation lost its seat, manual refund required. "
                "reservation_id=%s order_id=%s capture_id=%s event=%s",
                reservation_id,
                order_id,
                capture_id,
                event.slug,
            )
            raise SoldOutAfterPayment(capture_id)

        reservations.update_status(reservation, ReservationStatus.CONFIRMED)
        reservation.paid_at = datetime.now(timezone.utc)
        reservation.provider_capture_id = capture_id
        reservation.provider_order_id = order_id
        reservation.confirmation_code = code

        member = reservation.member
        receipt = _Receipt(
            email=member.email,
            event_title=event.title,
            event_date=event.starts_at.strftime("%d/%m/%Y %H:%M"),
            notes=reservation.notes,
        )
        return reservation, receipt, False

    def _new_code(self) -> str:
        with session_scope(self.session_factory) as db:
            reservations = ReservationRepository(db)
            return generate_confirmation_code(
                reservations.confirmation_code_exists,
                prefix=self.code_prefix,
            )

    def _notify(self, receipt: Optional[_Receipt], code: str) -> None:
        if self.notifier is None or receipt is None:
            return
        if is_placeholder_email(receipt.email):
            logger.info("Skipping confirmation email, member has no real address.")
            return

        try:
            sent = self.notifier.send_reservation_confirmation(
                to=receipt.email,
                event_title=receipt.event_title,
                event_date=receipt.event_date,
                confirmation_code=code,
                notes=receipt.notes,
            )
        except Exception:
            logger.exception("Confirmation email failed. code=%s", code)
            return

        if not sent:
            logger.warning("Confirmation email not sent. code=%s", code)
