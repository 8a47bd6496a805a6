# src/infrastructure/payments/paypal_gateway.py

import logging
import threading
import time
from decimal import Decimal
from typing import Callable, Optional

import requests

from src.application.ports import CaptureResult, CaptureStatus, GatewayConfigStatus
from src.domain.exceptions import PaymentProviderUnavailable
from src.infrastructure.config import AppConfig


logger = logging.getLogger(__name__)


BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "live": "https://api-m.paypal.com",
}

# Refresh the OAuth token this many seconds before PayPal expires it.
TOKEN_EXPIRY_MARGIN_SECONDS = 60

_STATUS_MAP = {
    "COMPLETED": CaptureStatus.COMPLETED,
    "PENDING": CaptureStatus.PENDING,
    "DECLINED": CaptureStatus.DECLINED,
    "FAILED": CaptureStatus.DECLINED,
    "VOIDED": CaptureStatus.DECLINED,
}


def normalize_capture_status(raw: Optional[str]) -> CaptureStatus:
    return _STATUS_MAP.get((raw or "").upper(), CaptureStatus.UNKNOWN)


def _json_body(response: requests.Response, operation: str) -> dict:
    try:
        data = response.json()
    except ValueError:
        data = None
    if not isinstance(data, dict):
        logger.error(
            "PayPal %s answered with a non-JSON body. status=%s",
            operation,
            response.status_code,
        )
        raise PaymentProviderUnavailable()
    return data


def _extract_capture(data: dict) -> CaptureResult:
    units = data.get("purchase_units") or [{}]
    captures = ((units[0] or {}).get("payments") or {}).get("captures") or [{}]
    capture = captures[0] or {}
    raw_status = capture.get("status") or data.get("status") or ""
    capture_id = capture.get("id") or ""
    status = normalize_capture_status(raw_status)
    if status == CaptureStatus.COMPLETED and not capture_id:
        # A completed capture is only usable with its id.
        logger.error("PayPal reported a completed capture without a capture id.")
        status = CaptureStatus.UNKNOWN
    return CaptureResult(capture_id=capture_id, status=status, raw_status=raw_status)


class PayPalGateway:
    """
    PayPal Orders v2 over plain REST.

    Every request has a finite timeout. Timeouts, connection errors
    and 5xx answers surface as PaymentProviderUnavailable so callers
    can retry.
    """

    def __init__(
        self,
        config: AppConfig,
        http: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.mode = config.paypal_mode
        self.client_id = config.paypal_client_id
        self.secret = config.paypal_secret
        self.timeout = config.paypal_timeout_seconds
        self.http = http or requests.Session()
        self.clock = clock

        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    @property
    def base_url(self) -> str:
        return BASE_URLS.get(self.mode, BASE_URLS["sandbox"])

    def config_status(self) -> GatewayConfigStatus:
        missing = []
        if self.mode not in BASE_URLS:
            missing.append("PAYPAL_MODE")
        if not self.client_id:
            missing.append("PAYPAL_CLIENT_ID")
        if not self.secret:
            missing.append("PAYPAL_SECRET")
        return GatewayConfigStatus(configured=not missing, missing=missing)

    # -----------------------------
    # Orders
    # -----------------------------
    def create_order(self, amount: Decimal, currency: str, reference: str) -> str:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": reference,
                    "amount": {
                        "currency_code": currency,
                        "value": f"{amount:.2f}",
                    },
                }
            ],
        }
        response = self._request("POST", "/v2/checkout/orders", json=body)
        if not response.ok:
            logger.error("PayPal create order failed. status=%s", response.status_code)
            raise PaymentProviderUnavailable()

        order_id = _json_body(response, "create order").get("id")
        if not order_id:
            logger.error("PayPal create order answered without an order id.")
            raise PaymentProviderUnavailable()
        return order_id

    def capture_order(self, order_id: str) -> CaptureResult:
        response = self._request(
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            headers={"PayPal-Request-Id": f"capture-{order_id}"},
        )

        if response.status_code == 422 and self._issue(response) == "ORDER_ALREADY_CAPTURED":
            logger.info("Order already captured, reading it back. order_id=%s", order_id)
            response = self._request("GET", f"/v2/checkout/orders/{order_id}")

        if not response.ok:
            logger.warning(
                "PayPal capture refused. order_id=%s status=%s issue=%s",
                order_id,
                response.status_code,
                self._issue(response),
            )
            return CaptureResult(
                capture_id="",
                status=CaptureStatus.DECLINED,
                raw_status=self._issue(response) or str(response.status_code),
            )

        return _extract_capture(_json_body(response, "capture"))

    # -----------------------------
    # Transport
    # -----------------------------
    def _access_token(self) -> str:
        with self._token_lock:
            now = self.clock()
            if self._token and now < self._token_expires_at:
                return self._token

            try:
                response = self.http.post(
                    f"{self.base_url}/v1/oauth2/token",
                    auth=(self.client_id, self.secret),
                    data={"grant_type": "client_credentials"},
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                logger.error("PayPal OAuth request failed: %s", type(exc).__name__)
                raise PaymentProviderUnavailable() from exc

            if not response.ok:
                logger.error("PayPal OAuth failed. status=%s", response.status_code)
                raise PaymentProviderUnavailable()

            data = _json_body(response, "OAuth")
            token = data.get("access_token")
            if not token:
                logger.error("PayPal OAuth answered without an access token.")
                raise PaymentProviderUnavailable()
            try:
                expires_in = int(data.get("expires_in") or 0)
            except (TypeError, ValueError):
                expires_in = 0
            self._token = token
            self._token_expires_at = now + expires_in - TOKEN_EXPIRY_MARGIN_SECONDS
            return self._token

    def _request(self, method: str, path: str, headers: Optional[dict] = None, **kwargs):
        all_headers = {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }
        all_headers.update(headers or {})

        try:
            response = self.http.request(
                method,
                f"{self.base_url}{path}",
                headers=all_headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            logger.error("PayPal request failed: %s %s %s", method, path, type(exc).__name__)
            raise PaymentProviderUnavailable() from exc

        if response.status_code >= 500:
            logger.error("PayPal unavailable: %s %s status=%s", method, path, response.status_code)
            raise PaymentProviderUnavailable()
        return response

    @staticmethod
    def _issue(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return ""
        details = (data.get("details") if isinstance(data, dict) else None) or [{}]
        return (details[0] or {}).get("issue", "")
