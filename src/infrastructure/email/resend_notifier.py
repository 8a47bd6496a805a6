# src/infrastructure/email/resend_notifier.py

import logging
from typing import Optional

import requests

from src.infrastructure.config import AppConfig


logger = logging.getLogger(__name__)


RESEND_API_URL = "https://api.resend.com/emails"


def render_confirmation_body(
    event_title: str,
    event_date: str,
    confirmation_code: str,
    notes: Optional[str] = None,
) -> str:
    lines = [
        "Ciao,",
        "",
        f'La tua prenotazione per "{event_title}" è stata confermata.',
        "",
        f"Data e ora: {event_date}",
        f"Codice di conferma: {confirmation_code}",
        "",
    ]
    if notes:
        lines += [f"Note/allergie: {notes}", ""]
    lines += [
        "Conserva questo codice per riferimento.",
        "",
        "A presto,",
        "Enotempo",
    ]
    return "\n".join(lines)


class ResendNotifier:
    """Sends reservation confirmations through the Resend HTTP API."""

    def __init__(self, config: AppConfig, http: Optional[requests.Session] = None):
        self.api_key = config.resend_api_key
        self.sender = config.resend_from
        self.timeout = config.email_timeout_seconds
        self.http = http or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.sender)

    def send_reservation_confirmation(
        self,
        to: str,
        event_title: str,
        event_date: str,
        confirmation_code: str,
        notes: Optional[str] = None,
    ) -> bool:
        if not self.configured:
            logger.warning("RESEND_API_KEY or RESEND_FROM not set; skipping confirmation email")
            return False

        payload = {
            "from": self.sender,
            "to": [to],
            "subject": f"Prenotazione confermata – {event_title}",
            "text": render_confirmation_body(event_title, event_date, confirmation_code, notes),
        }

        try:
            response = self.http.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Resend request failed: %s", type(exc).__name__)
            return False

        if not response.ok:
            logger.warning("Resend rejected confirmation email. status=%s", response.status_code)
            return False
        return True
