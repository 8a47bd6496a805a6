# tests/integration/test_booking_flow.py

from fastapi.testclient import TestClient

from src.main import create_app

from tests.fakes import FakePaymentGateway


def _login_as(client, handoff_token, affiliation, email):
    response = client.get(
        "/auth/callback",
        params={"token": handoff_token(affiliationId=affiliation, memberNumber=affiliation, email=email)},
        follow_redirects=False,
    )
    assert response.status_code == 302


def test_booking_flow(app, client, handoff_token, gateway, notifier, make_event):
    make_event(capacity=1)

    _login_as(client, handoff_token, "AFF-A", "a@example.com")

    events = client.get("/events").json()
    assert events[0]["slug"] == "cena-tullpukuna"
    assert events[0]["remainingSeats"] == 1

    response = client.post("/reservations", json={"eventSlug": "cena-tullpukuna", "notes": "vegetariano"})
    assert response.status_code == 200
    reservation_id = response.json()["reservationId"]
    assert response.json()["status"] == "pending_payment"

    with TestClient(app, base_url="https://enotempo.it") as other:
        _login_as(other, handoff_token, "AFF-B", "b@example.com")
        refused = other.post("/reservations", json={"eventSlug": "cena-tullpukuna"})
        assert refused.status_code == 409
        assert refused.json()["error"] == "NO_CAPACITY"

        # B cannot see or pay for A's reservation.
        assert other.get(f"/reservations/{reservation_id}").status_code == 404

    assert client.get("/events/cena-tullpukuna").json()["remainingSeats"] == 0

    order = client.post("/payments/create-order", json={"reservationId": reservation_id})
    assert order.status_code == 200
    order_id = order.json()["orderId"]

    captured = client.post(
        "/payments/capture",
        json={"reservationId": reservation_id, "orderId": order_id},
    )
    assert captured.status_code == 200
    assert captured.json()["ok"] is True
    code = captured.json()["confirmationCode"]
    assert code.startswith("TULL-")

    again = client.post(
        "/payments/capture",
        json={"reservationId": reservation_id, "orderId": order_id},
    )
    assert again.status_code == 200
    assert again.json()["confirmationCode"] == code
    assert gateway.capture_calls == [order_id]

    summary = client.get(f"/reservations/{reservation_id}").json()
    assert summary["status"] == "confirmed"
    assert summary["confirmationCode"] == code
    assert summary["notes"] == "vegetariano"

    assert [mail["to"] for mail in notifier.sent] == ["a@example.com"]

    rebook = client.post("/reservations", json={"eventSlug": "cena-tullpukuna"})
    assert rebook.status_code == 409
    assert rebook.json()["error"] == "ALREADY_CONFIRMED"


def test_reservation_endpoints_require_session(client):
    response = client.post("/reservations", json={"eventSlug": "cena-tullpukuna"})

    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHENTICATED"


def test_patch_reservation(client, login, make_event):
    make_event()
    login(email=None)
    reservation_id = client.post(
        "/reservations", json={"eventSlug": "cena-tullpukuna"}
    ).json()["reservationId"]

    response = client.patch(
        f"/reservations/{reservation_id}",
        json={"firstName": "Maria", "lastName": "Rossi", "email": "maria@example.com", "notes": "celiaca"},
    )
    assert response.status_code == 200
    assert response.json() == {"ok": True}

    member = client.get("/auth/me").json()["member"]
    assert member["firstName"] == "Maria"
    assert member["email"] == "maria@example.com"


def test_patch_with_invalid_email(client, login, make_event):
    make_event()
    login()
    reservation_id = client.post(
        "/reservations", json={"eventSlug": "cena-tullpukuna"}
    ).json()["reservationId"]

    response = client.patch(f"/reservations/{reservation_id}", json={"email": "not-an-email"})

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_reserve_unknown_event(client, login):
    login()
    response = client.post("/reservations", json={"eventSlug": "non-esiste"})

    assert response.status_code == 404
    assert response.json()["error"] == "EVENT_NOT_FOUND"


def test_missing_body_field_is_validation_error(client, login):
    login()
    response = client.post("/reservations", json={})

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"


def test_payment_status(client):
    assert client.get("/payments/status").json() == {"configured": True, "missing": []}


def test_payments_not_configured(config, session_factory, notifier, handoff_token, make_event):
    app = create_app(
        config=config,
        session_factory=session_factory,
        payment_gateway=FakePaymentGateway(configured=False),
        notifier=notifier,
    )
    make_event()

    with TestClient(app, base_url="https://enotempo.it") as client:
        _login_as(client, handoff_token, "AFF-A", "a@example.com")
        reservation_id = client.post(
            "/reservations", json={"eventSlug": "cena-tullpukuna"}
        ).json()["reservationId"]

        status = client.get("/payments/status").json()
        response = client.post("/payments/create-order", json={"reservationId": reservation_id})

    assert status == {"configured": False, "missing": ["PAYPAL_CLIENT_ID", "PAYPAL_SECRET"]}
    assert response.status_code == 503
    assert response.json()["error"] == "PAYMENT_NOT_CONFIGURED"
    assert response.json()["missing"] == ["PAYPAL_CLIENT_ID", "PAYPAL_SECRET"]


def test_unexpected_error_is_generic(config, session_factory, notifier, handoff_token, make_event):
    gateway = FakePaymentGateway()
    gateway.create_error = ValueError("Expecting value: line 1 column 1 (char 0)")
    app = create_app(
        config=config,
        session_factory=session_factory,
        payment_gateway=gateway,
        notifier=notifier,
    )
    make_event()

    with TestClient(app, base_url="https://enotempo.it", raise_server_exceptions=False) as client:
        _login_as(client, handoff_token, "AFF-A", "a@example.com")
        reservation_id = client.post(
            "/reservations", json={"eventSlug": "cena-tullpukuna"}
        ).json()["reservationId"]

        response = client.post("/payments/create-order", json={"reservationId": reservation_id})

    assert response.status_code == 500
    assert response.json() == {"error": "INTERNAL_ERROR", "message": "Errore interno"}
