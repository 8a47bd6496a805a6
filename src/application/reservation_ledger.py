# src/application/reservation_ledger.py

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from src.domain.exceptions import (
    AlreadyConfirmed,
    EmailAlreadyInUse,
    EventNotFound,
    InvalidInput,
    NoCapacity,
    NotFoundOrForbidden,
)
from src.domain.identity import normalize_email, sanitize_text
from src.domain.state_machine import (
    SEATS_PER_RESERVATION,
    EventStatus,
    ReservationStateMachine,
    ReservationStatus,
)
from src.infrastructure.db.models import Event, Reservation
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.member_repository import MemberRepository
from src.infrastructure.repositories.reservation_repository import ReservationRepository


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventView:
    slug: str
    title: str
    starts_at: datetime
    location_name: str
    capacity: int
    price_cents: Optional[int]
    remaining_seats: int


@dataclass(frozen=True)
class ReservationView:
    id: str
    status: ReservationStatus
    event_slug: str
    event_title: str
    event_starts_at: datetime
    guests: int
    notes: Optional[str]
    provider_order_id: Optional[str]
    confirmation_code: Optional[str]
    paid_at: Optional[datetime]


@dataclass(frozen=True)
class ReservationPatch:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None


def _event_view(event: Event, remaining: int) -> EventView:
    return EventView(
        slug=event.slug,
        title=event.title,
        starts_at=event.starts_at,
        location_name=event.location_name,
        capacity=event.capacity,
        price_cents=event.price_cents,
        remaining_seats=remaining,
    )


def _reservation_view(reservation: Reservation, event: Event) -> ReservationView:
    return ReservationView(
        id=reservation.id,
        status=reservation.status,
        event_slug=event.slug,
        event_title=event.title,
        event_starts_at=event.starts_at,
        guests=reservation.guests,
        notes=reservation.notes,
        provider_order_id=reservation.provider_order_id,
        confirmation_code=reservation.confirmation_code,
        paid_at=reservation.paid_at,
    )


class ReservationLedger:
    """
    Owns reservation creation and the pre-payment edits.

    Every capacity decision runs as a single transaction that locks the
    event row first and then re-counts the active guests, so concurrent
    requests for the last seat are decided one after the other.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # -----------------------------
    # Events
    # -----------------------------
    def list_events(self) -> list[EventView]:
        with session_scope(self.session_factory) as db:
            repo = EventRepository(db)
            return [
                _event_view(event, repo.remaining_seats(event))
                for event in repo.list_published()
            ]

    def get_event(self, slug: str) -> EventView:
        with session_scope(self.session_factory) as db:
            repo = EventRepository(db)
            event = repo.get_by_slug(slug)
            if event is None or event.status != EventStatus.PUBLISHED:
                raise EventNotFound()
            return _event_view(event, repo.remaining_seats(event))

    def remaining_seats(self, slug: str) -> int:
        return self.get_event(slug).remaining_seats

    # -----------------------------
    # Reservations
    # -----------------------------
    def reserve(
        self,
        member_id: str,
        event_slug: str,
        notes: Optional[str] = None,
    ) -> ReservationView:
        notes = sanitize_text(notes)

        with session_scope(self.session_factory) as db:
            events = EventRepository(db)
            reservations = ReservationRepository(db)

            event = events.lock_by_slug(event_slug)
            if event is None or event.status != EventStatus.PUBLISHED:
                raise EventNotFound()

            existing = reservations.get_active_for_member(event.id, member_id)
            if existing is not None:
                if existing.status == ReservationStatus.CONFIRMED:
                    raise AlreadyConfirmed()
                if notes:
                    existing.notes = notes
                logger.info(
                    "Returning existing pending reservation. reservation_id=%s event=%s",
                    existing.id,
                    event.slug,
                )
                return _reservation_view(existing, event)

            remaining = event.capacity - events.active_guests(event.id)
            if remaining < SEATS_PER_RESERVATION:
                logger.info("Reservation refused, event full. event=%s", event.slug)
                raise NoCapacity()

            reservation = reservations.create_pending(
                event_id=event.id,
                member_id=member_id,
                notes=notes,
            )
            db.flush()

            logger.info(
                "Reservation created. reservation_id=%s event=%s remaining=%s",
                reservation.id,
                event.slug,
                remaining - SEATS_PER_RESERVATION,
            )
            return _reservation_view(reservation, event)

    def get_owned(self, reservation_id: str, member_id: str) -> ReservationView:
        with session_scope(self.session_factory) as db:
            reservation = ReservationRepository(db).get_by_id(reservation_id)
            if reservation is None or reservation.member_id != member_id:
                raise NotFoundOrForbidden()
            return _reservation_view(reservation, reservation.event)

    def patch(
        self,
        reservation_id: str,
        member_id: str,
        changes: ReservationPatch,
    ) -> None:
        """
        Updates the member's contact details and the reservation notes.
        Only allowed while the reservation still awaits payment.
        """
        with session_scope(self.session_factory) as db:
            members = MemberRepository(db)

            reservation = ReservationRepository(db).lock_by_id(reservation_id)
            if reservation is None or reservation.member_id != member_id:
                raise NotFoundOrForbidden()
            if not ReservationStateMachine.is_mutable(reservation.status):
                raise AlreadyConfirmed()

            member = members.get_by_id(member_id)
            if member is None:
                raise NotFoundOrForbidden()

            if changes.first_name is not None:
                member.first_name = sanitize_text(changes.first_name)
            if changes.last_name is not None:
                member.last_name = sanitize_text(changes.last_name)
            if changes.phone is not None:
                member.phone = sanitize_text(changes.phone) or None
            if changes.notes is not None:
                reservation.notes = sanitize_text(changes.notes) or None

            if changes.email is not None:
                email = normalize_email(changes.email)
                if email is None:
                    raise InvalidInput("email: Email non valida")
                if email != member.email:
                    owner = members.get_by_email(email)
                    if owner is not None and owner.id != member.id:
                        raise EmailAlreadyInUse()
                    member.email = email

            try:
                db.flush()
            except IntegrityError:
                raise EmailAlreadyInUse()

            logger.info("Reservation details updated. reservation_id=%s", reservation.id)
