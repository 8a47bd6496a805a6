# tests/unit/test_resend_notifier.py

import json
import logging

import requests
import responses

from src.infrastructure.config import AppConfig
from src.infrastructure.email.resend_notifier import (
    RESEND_API_URL,
    ResendNotifier,
    render_confirmation_body,
)


def _notifier(**overrides):
    settings = {"resend_api_key": "re_test", "resend_from": "Enotempo <noreply@enotempo.it>"}
    settings.update(overrides)
    return ResendNotifier(AppConfig(**settings))


def _send(notifier, notes=None):
    return notifier.send_reservation_confirmation(
        to="socio@example.com",
        event_title="Cena a Tullpukuna",
        event_date="12/02/2026 18:30",
        confirmation_code="TULL-ABC234",
        notes=notes,
    )


@responses.activate
def test_sends_plain_text_email():
    responses.add(responses.POST, RESEND_API_URL, json={"id": "email-1"}, status=200)

    assert _send(_notifier(), notes="Niente glutine") is True

    request = responses.calls[0].request
    body = json.loads(request.body)
    assert request.headers["Authorization"] == "Bearer re_test"
    assert body["to"] == ["socio@example.com"]
    assert body["from"] == "Enotempo <noreply@enotempo.it>"
    assert "Cena a Tullpukuna" in body["subject"]
    assert "TULL-ABC234" in body["text"]
    assert "Note/allergie: Niente glutine" in body["text"]


def test_unconfigured_returns_false(caplog):
    with caplog.at_level(logging.WARNING):
        assert _send(_notifier(resend_api_key="")) is False
    assert "skipping confirmation email" in caplog.text


@responses.activate
def test_http_error_returns_false():
    responses.add(responses.POST, RESEND_API_URL, json={"message": "invalid"}, status=422)
    assert _send(_notifier()) is False


@responses.activate
def test_transport_error_returns_false():
    responses.add(
        responses.POST,
        RESEND_API_URL,
        body=requests.exceptions.ConnectionError("refused"),
    )
    assert _send(_notifier()) is False


def test_body_without_notes():
    body = render_confirmation_body("Cena", "12/02/2026 18:30", "TULL-ABC234")
    assert "Note/allergie" not in body
    assert body.endswith("Enotempo")
