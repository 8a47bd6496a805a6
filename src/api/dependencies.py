# src/api/dependencies.py

import logging

from fastapi import Request, Response

from src.application.capture_reconciler import CaptureReconciler
from src.application.checkout_service import CheckoutService
from src.application.reservation_ledger import ReservationLedger
from src.domain.exceptions import RateLimited, Unauthenticated
from src.infrastructure.config import AppConfig


logger = logging.getLogger(__name__)


NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate",
    "Pragma": "no-cache",
}


def get_ledger(request: Request) -> ReservationLedger:
    return request.app.state.ledger


def get_checkout(request: Request) -> CheckoutService:
    return request.app.state.checkout


def get_reconciler(request: Request) -> CaptureReconciler:
    return request.app.state.reconciler


def current_member_id(request: Request) -> str | None:
    config = request.app.state.config
    token = request.cookies.get(config.session_cookie_name)
    return request.app.state.session_issuer.verify(token)


def require_member_id(request: Request) -> str:
    member_id = current_member_id(request)
    if member_id is None:
        raise Unauthenticated()
    return member_id


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def rate_limit(request: Request) -> None:
    key = f"{client_ip(request)}:{request.url.path}"
    if not request.app.state.rate_limiter.allow(key):
        logger.warning("Rate limit exceeded. path=%s", request.url.path)
        raise RateLimited()


def request_origin(request: Request) -> str:
    config = request.app.state.config
    if config.public_origin:
        return config.public_origin
    return f"{request.url.scheme}://{request.url.netloc}"


def set_session_cookie(response: Response, config: AppConfig, token: str) -> None:
    response.set_cookie(
        key=config.session_cookie_name,
        value=token,
        max_age=config.session_max_age_seconds,
        path="/",
        httponly=True,
        secure=config.session_cookie_secure,
        samesite="lax",
    )
