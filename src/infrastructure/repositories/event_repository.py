# src/infrastructure/repositories/event_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import func, select

from src.domain.state_machine import ACTIVE_STATUSES, EventStatus
from src.infrastructure.db.models import Event, Reservation


class EventRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock_by_slug(self, slug: str) -> Event | None:
        """
        SELECT ... FOR UPDATE
        Serializes capacity decisions for one event.
        """

        stmt = (
            select(Event)
            .where(Event.slug == slug)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_by_id(self, event_id: str) -> Event | None:
        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_slug(self, slug: str) -> Event | None:
        stmt = select(Event).where(Event.slug == slug)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, event_id: str) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_published(self) -> list[Event]:
        stmt = (
            select(Event)
            .where(Event.status == EventStatus.PUBLISHED)
            .order_by(Event.starts_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def active_guests(
        self,
        event_id: str,
        exclude_reservation_id: str | None = None,
    ) -> int:
        """
        Seats held by pending_payment and confirmed reservations.
        Always re-read from the database, never cached.
        """

        stmt = (
            select(func.coalesce(func.sum(Reservation.guests), 0))
            .where(Reservation.event_id == event_id)
            .where(Reservation.status.in_(ACTIVE_STATUSES))
        )
        if exclude_reservation_id is not None:
            stmt = stmt.where(Reservation.id != exclude_reservation_id)
        return int(self.db.execute(stmt).scalar_one())

    def remaining_seats(self, event: Event) -> int:
        return max(0, event.capacity - self.active_guests(event.id))

    def create_or_update(
        self,
        slug: str,
        **fields,
    ) -> Event:
        event = self.get_by_slug(slug)

        if event:
            for name, value in fields.items():
                setattr(event, name, value)
            return event

        event = Event(slug=slug, **fields)
        self.db.add(event)
        return event
