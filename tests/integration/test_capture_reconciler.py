# tests/integration/test_capture_reconciler.py

import logging
import re
import threading

import pytest

from src.application.capture_reconciler import CaptureReconciler
from src.application.checkout_service import CheckoutService
from src.application.ports import CaptureStatus
from src.application.reservation_ledger import ReservationLedger
from src.domain.exceptions import (
    NotFoundOrForbidden,
    OrderMismatch,
    PaymentIncomplete,
    PaymentNotConfigured,
    SoldOutAfterPayment,
)
from src.domain.state_machine import ReservationStatus
from src.infrastructure.db.models import Event, Reservation
from src.infrastructure.db.session import session_scope

from tests.fakes import FakePaymentGateway, RecordingNotifier


CODE_RE = re.compile(r"^TULL-[ABCDEFGHJKLMNPQRSTUVWXYZ23456789]{6}$")


@pytest.fixture
def ledger(session_factory):
    return ReservationLedger(session_factory)


@pytest.fixture
def checkout(session_factory, gateway):
    return CheckoutService(session_factory, gateway)


@pytest.fixture
def reconciler(session_factory, gateway, notifier):
    return CaptureReconciler(session_factory, gateway, notifier=notifier)


@pytest.fixture
def pending(ledger, checkout, make_event, make_member):
    make_event(capacity=2)
    member_id = make_member(email="socio@example.com")
    reservation = ledger.reserve(member_id, "cena-tullpukuna", notes="vegano")
    order_id = checkout.create_order(reservation.id, member_id)
    return reservation.id, order_id, member_id


def _stored(session_factory, reservation_id) -> Reservation:
    with session_scope(session_factory) as db:
        return db.get(Reservation, reservation_id)


def test_checkout_amount_and_idempotency(checkout, gateway, pending):
    reservation_id, order_id, member_id = pending

    assert checkout.create_order(reservation_id, member_id) == order_id
    assert len(gateway.created_orders) == 1
    _, amount, currency, reference = gateway.created_orders[0]
    assert str(amount) == "70.00"
    assert currency == "EUR"
    assert reference == reservation_id


def test_checkout_uses_default_price_when_event_has_none(
    session_factory, gateway, ledger, make_event, make_member
):
    make_event(slug="senza-prezzo", price_cents=None)
    member_id = make_member()
    reservation = ledger.reserve(member_id, "senza-prezzo")

    CheckoutService(session_factory, gateway).create_order(reservation.id, member_id)

    assert str(gateway.created_orders[0][1]) == "70.00"


def test_capture_confirms_and_notifies(reconciler, session_factory, notifier, pending):
    reservation_id, order_id, member_id = pending

    outcome = reconciler.capture(reservation_id, order_id, member_id)

    assert CODE_RE.match(outcome.confirmation_code)
    assert not outcome.replayed

    stored = _stored(session_factory, reservation_id)
    assert stored.status == ReservationStatus.CONFIRMED
    assert stored.provider_capture_id == f"CAPTURE-{order_id}"
    assert stored.confirmation_code == outcome.confirmation_code
    assert stored.paid_at is not None

    assert len(notifier.sent) == 1
    assert notifier.sent[0]["to"] == "socio@example.com"
    assert notifier.sent[0]["confirmation_code"] == outcome.confirmation_code
    assert notifier.sent[0]["notes"] == "vegano"


def test_second_capture_replays_without_charging(reconciler, gateway, notifier, pending):
    reservation_id, order_id, member_id = pending

    first = reconciler.capture(reservation_id, order_id, member_id)
    second = reconciler.capture(reservation_id, order_id, member_id)

    assert second.confirmation_code == first.confirmation_code
    assert second.replayed
    assert gateway.capture_calls == [order_id]
    assert len(notifier.sent) == 1


def test_capture_with_other_order_is_refused(reconciler, gateway, pending):
    reservation_id, _, member_id = pending

    with pytest.raises(OrderMismatch):
        reconciler.capture(reservation_id, "ORDER-FORGED", member_id)
    assert gateway.capture_calls == []


def test_capture_by_other_member(reconciler, make_member, pending):
    reservation_id, order_id, _ = pending
    stranger = make_member(email="altro@example.com")

    with pytest.raises(NotFoundOrForbidden):
        reconciler.capture(reservation_id, order_id, stranger)


def test_incomplete_capture_leaves_reservation_pending(
    reconciler, session_factory, gateway, pending
):
    reservation_id, order_id, member_id = pending
    gateway.capture_status = CaptureStatus.PENDING

    with pytest.raises(PaymentIncomplete):
        reconciler.capture(reservation_id, order_id, member_id)

    assert _stored(session_factory, reservation_id).status == ReservationStatus.PENDING_PAYMENT


def test_unconfigured_gateway(session_factory, pending):
    reservation_id, order_id, member_id = pending
    reconciler = CaptureReconciler(session_factory, FakePaymentGateway(configured=False))

    with pytest.raises(PaymentNotConfigured) as exc_info:
        reconciler.capture(reservation_id, order_id, member_id)
    assert exc_info.value.payload()["missing"] == ["PAYPAL_CLIENT_ID", "PAYPAL_SECRET"]


def test_sold_out_after_payment_keeps_capture_id(
    reconciler, session_factory, ledger, make_member, pending, caplog
):
    reservation_id, order_id, member_id = pending
    ledger.reserve(make_member(email="b@example.com"), "cena-tullpukuna")
    # The organiser shrinks the room after both seats were taken.
    event_id = _stored(session_factory, reservation_id).event_id
    with session_scope(session_factory) as db:
        event = db.get(Event, event_id)
        event.capacity = 1

    with caplog.at_level(logging.ERROR, logger="src.application.capture_reconciler"):
        with pytest.raises(SoldOutAfterPayment) as exc_info:
            reconciler.capture(reservation_id, order_id, member_id)

    assert exc_info.value.capture_id == f"CAPTURE-{order_id}"
    assert exc_info.value.payload()["error"] == "SOLD_OUT"
    assert f"CAPTURE-{order_id}" in caplog.text
    assert _stored(session_factory, reservation_id).status == ReservationStatus.PENDING_PAYMENT


def test_last_seat_capture_counts_only_other_reservations(
    session_factory, gateway, ledger, checkout, make_event, make_member
):
    make_event(slug="una-sedia", capacity=1)
    member_id = make_member()
    reservation = ledger.reserve(member_id, "una-sedia")
    order_id = checkout.create_order(reservation.id, member_id)

    outcome = CaptureReconciler(session_factory, gateway).capture(
        reservation.id, order_id, member_id
    )

    assert CODE_RE.match(outcome.confirmation_code)


def test_notifier_failure_does_not_undo_confirmation(
    session_factory, gateway, pending, caplog
):
    reservation_id, order_id, member_id = pending
    failing = RecordingNotifier(error=RuntimeError("smtp down"))
    reconciler = CaptureReconciler(session_factory, gateway, notifier=failing)

    outcome = reconciler.capture(reservation_id, order_id, member_id)

    assert _stored(session_factory, reservation_id).status == ReservationStatus.CONFIRMED
    assert outcome.confirmation_code
    assert "Confirmation email failed" in caplog.text


def test_placeholder_email_is_not_notified(
    session_factory, gateway, notifier, ledger, checkout, make_event, make_member
):
    make_event(slug="segnaposto")
    member_id = make_member(email="fenam-AFF-7@placeholder.enotempo")
    reservation = ledger.reserve(member_id, "segnaposto")
    order_id = checkout.create_order(reservation.id, member_id)

    CaptureReconciler(session_factory, gateway, notifier=notifier).capture(
        reservation.id, order_id, member_id
    )

    assert notifier.sent == []


class RendezvousGateway(FakePaymentGateway):
    """Holds every capture until all expected callers reached the provider."""

    def __init__(self, parties: int):
        super().__init__()
        self.barrier = threading.Barrier(parties, timeout=10)

    def capture_order(self, order_id):
        self.barrier.wait()
        return super().capture_order(order_id)


def test_racing_captures_confirm_once(session_factory, notifier, ledger, make_event, make_member):
    make_event(capacity=1)
    member_id = make_member()
    reservation = ledger.reserve(member_id, "cena-tullpukuna")
    gateway = RendezvousGateway(parties=2)
    order_id = CheckoutService(session_factory, gateway).create_order(reservation.id, member_id)
    reconciler = CaptureReconciler(session_factory, gateway, notifier=notifier)

    outcomes = []
    errors = []

    def _capture():
        try:
            outcomes.append(reconciler.capture(reservation.id, order_id, member_id))
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_capture) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert gateway.capture_calls == [order_id, order_id]
    assert len({outcome.confirmation_code for outcome in outcomes}) == 1
    assert sorted(outcome.replayed for outcome in outcomes) == [False, True]
    assert len(notifier.sent) == 1

    stored = _stored(session_factory, reservation.id)
    assert stored.status == ReservationStatus.CONFIRMED
    assert stored.confirmation_code == outcomes[0].confirmation_code


def test_completed_capture_without_id_is_not_confirmed(
    reconciler, session_factory, gateway, notifier, pending
):
    reservation_id, order_id, member_id = pending
    gateway.capture_id = ""

    with pytest.raises(PaymentIncomplete):
        reconciler.capture(reservation_id, order_id, member_id)

    stored = _stored(session_factory, reservation_id)
    assert stored.status == ReservationStatus.PENDING_PAYMENT
    assert stored.provider_capture_id is None
    assert notifier.sent == []

    gateway.capture_id = None
    outcome = reconciler.capture(reservation_id, order_id, member_id)
    again = reconciler.capture(reservation_id, order_id, member_id)

    assert again.replayed
    assert again.confirmation_code == outcome.confirmation_code


def test_code_collision_at_commit_draws_new_code(
    reconciler, session_factory, ledger, make_member, pending, monkeypatch
):
    reservation_id, order_id, member_id = pending
    other = ledger.reserve(make_member(email="b@example.com"), "cena-tullpukuna")
    with session_scope(session_factory) as db:
        taken = db.get(Reservation, other.id)
        taken.status = ReservationStatus.CONFIRMED
        taken.confirmation_code = "TULL-AAAAAA"

    drawn = iter(["TULL-AAAAAA", "TULL-BBBBBB"])
    monkeypatch.setattr(reconciler, "_new_code", lambda: next(drawn))

    outcome = reconciler.capture(reservation_id, order_id, member_id)

    assert outcome.confirmation_code == "TULL-BBBBBB"
    stored = _stored(session_factory, reservation_id)
    assert stored.status == ReservationStatus.CONFIRMED
    assert stored.confirmation_code == "TULL-BBBBBB"
