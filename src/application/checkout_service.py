# src/application/checkout_service.py

import logging
from decimal import Decimal

from sqlalchemy.orm import sessionmaker

from src.application.ports import PaymentGateway
from src.domain.exceptions import (
    NotFoundOrForbidden,
    PaymentNotConfigured,
    ReservationNotPending,
)
from src.domain.state_machine import ReservationStatus
from src.infrastructure.db.session import session_scope
from src.infrastructure.repositories.reservation_repository import ReservationRepository


logger = logging.getLogger(__name__)


class CheckoutService:
    """Opens a provider order for a pending reservation."""

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: PaymentGateway,
        default_price: Decimal = Decimal("70.00"),
        currency: str = "EUR",
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.default_price = default_price
        self.currency = currency

    def create_order(self, reservation_id: str, member_id: str) -> str:
        status = self.gateway.config_status()
        if not status.configured:
            raise PaymentNotConfigured(status.missing)

        with session_scope(self.session_factory) as db:
            reservation = ReservationRepository(db).get_by_id(reservation_id)
            if reservation is None or reservation.member_id != member_id:
                raise NotFoundOrForbidden()
            if reservation.status != ReservationStatus.PENDING_PAYMENT:
                raise ReservationNotPending()
            if reservation.provider_order_id:
                return reservation.provider_order_id

            amount = self._amount_for(reservation.event.price_cents)

        # Provider round-trip happens with no transaction open.
        order_id = self.gateway.create_order(amount, self.currency, reservation_id)

        with session_scope(self.session_factory) as db:
            reservation = ReservationRepository(db).lock_by_id(reservation_id)
            if reservation.provider_order_id:
                # A concurrent checkout stored its order first; that one wins.
                logger.info(
                    "Discarding duplicate provider order. reservation_id=%s order_id=%s",
                    reservation_id,
                    order_id,
                )
                return reservation.provider_order_id
            reservation.provider_order_id = order_id

        logger.info(
            "Provider order created. reservation_id=%s order_id=%s amount=%s %s",
            reservation_id,
            order_id,
            amount,
            self.currency,
        )
        return order_id

    def _amount_for(self, price_cents: int | None) -> Decimal:
        if price_cents is None:
            return self.default_price.quantize(Decimal("0.01"))
        return (Decimal(price_cents) / 100).quantize(Decimal("0.01"))
