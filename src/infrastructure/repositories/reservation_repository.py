# src/infrastructure/repositories/reservation_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Reservation
from src.domain.state_machine import (
    ACTIVE_STATUSES,
    SEATS_PER_RESERVATION,
    ReservationStateMachine,
    ReservationStatus,
)


class ReservationRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        reservation_id: str,
    ) -> Reservation | None:

        stmt = select(Reservation).where(Reservation.id == reservation_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_by_id(
        self,
        reservation_id: str,
    ) -> Reservation | None:

        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_active_for_member(
        self,
        event_id: str,
        member_id: str,
    ) -> Reservation | None:

        stmt = (
            select(Reservation)
            .where(Reservation.event_id == event_id)
            .where(Reservation.member_id == member_id)
            .where(Reservation.status.in_(ACTIVE_STATUSES))
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def confirmation_code_exists(self, code: str) -> bool:
        stmt = select(Reservation.id).where(Reservation.confirmation_code == code)
        return self.db.execute(stmt).first() is not None

    def create_pending(
        self,
        event_id: str,
        member_id: str,
        notes: str | None = None,
    ) -> Reservation:

        ReservationStateMachine.validate_transition(
            None,
            ReservationStatus.PENDING_PAYMENT,
        )
        reservation = Reservation(
            event_id=event_id,
            member_id=member_id,
            guests=SEATS_PER_RESERVATION,
            notes=notes,
            status=ReservationStatus.PENDING_PAYMENT,
        )

        self.db.add(reservation)
        return reservation

    def update_status(
        self,
        reservation: Reservation,
        new_status: ReservationStatus,
    ) -> None:

        ReservationStateMachine.validate_transition(reservation.status, new_status)
        reservation.status = new_status
