# src/infrastructure/db/models.py

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Enum,
    Text,
    Index,
    UniqueConstraint,
    CheckConstraint,
    ForeignKey,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from uuid import uuid4

from src.infrastructure.db.session import Base
from src.domain.state_machine import EventStatus, ReservationStatus


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Member(Base):
    """
    Locally cached federation member.
    The external id may be absent until the first handoff,
    the email may be a placeholder until the federation sends one.
    """

    __tablename__ = "members"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("external_id", name="uq_member_external_id"),
        UniqueConstraint("email", name="uq_member_email"),
    )


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    slug: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, name="event_status", values_callable=_enum_values),
        nullable=False,
        default=EventStatus.DRAFT,
    )
    price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("slug", name="uq_event_slug"),
        CheckConstraint("capacity >= 1", name="ck_event_capacity_positive"),
        CheckConstraint("price_cents IS NULL OR price_cents >= 0", name="ck_event_price_nonnegative"),
    )


class Reservation(Base):
    """
    One member's claim on one seat of one event.
    Domain controls transitions; rows are never deleted.
    """

    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id"),
        nullable=False,
    )
    member_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("members.id"),
        nullable=False,
    )
    guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus, name="reservation_status", values_callable=_enum_values),
        nullable=False,
        default=ReservationStatus.PENDING_PAYMENT,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    provider_capture_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    confirmation_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    event: Mapped[Event] = relationship()
    member: Mapped[Member] = relationship()

    __table_args__ = (
        UniqueConstraint("provider_order_id", name="uq_reservation_provider_order_id"),
        UniqueConstraint("provider_capture_id", name="uq_reservation_provider_capture_id"),
        UniqueConstraint("confirmation_code", name="uq_reservation_confirmation_code"),
        CheckConstraint("guests > 0", name="ck_reservation_guests_positive"),
        Index(
            "uq_reservation_active_member",
            "event_id",
            "member_id",
            unique=True,
            postgresql_where=text("status IN ('pending_payment', 'confirmed')"),
            sqlite_where=text("status IN ('pending_payment', 'confirmed')"),
        ),
    )
