import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from src.api.dependencies import (
    NO_STORE_HEADERS,
    current_member_id,
    get_checkout,
    get_ledger,
    get_reconciler,
    rate_limit,
    request_origin,
    require_member_id,
    set_session_cookie,
)
from src.api.errors import error_body
from src.api.schemas.schemas import (
    CaptureRequest,
    CaptureResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    EventResponse,
    IdentityResponse,
    MemberResponse,
    OkResponse,
    PaymentStatusResponse,
    ReservationCreateRequest,
    ReservationCreateResponse,
    ReservationPatchRequest,
    ReservationResponse,
)
from src.application.capture_reconciler import CaptureReconciler
from src.application.checkout_service import CheckoutService
from src.application.member_resolver import MemberResolver
from src.application.reservation_ledger import (
    EventView,
    ReservationLedger,
    ReservationPatch,
    ReservationView,
)
from src.domain.exceptions import InvalidToken
from src.infrastructure.config import AppConfig
from src.infrastructure.repositories.member_repository import MemberRepository
from src.infrastructure.db.session import session_scope


router = APIRouter()
logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _event_response(event: EventView) -> EventResponse:
    return EventResponse(
        slug=event.slug,
        title=event.title,
        starts_at=_iso(event.starts_at),
        location_name=event.location_name,
        capacity=event.capacity,
        price_cents=event.price_cents,
        remaining_seats=event.remaining_seats,
    )


def _reservation_response(reservation: ReservationView) -> ReservationResponse:
    return ReservationResponse(
        id=reservation.id,
        status=reservation.status.value,
        event_slug=reservation.event_slug,
        event_title=reservation.event_title,
        event_starts_at=_iso(reservation.event_starts_at),
        guests=reservation.guests,
        notes=reservation.notes,
        confirmation_code=reservation.confirmation_code,
        paid_at=_iso(reservation.paid_at),
    )


def _login(
    request: Request,
    token: Optional[str],
    redirect: Optional[str],
    status_code: int,
):
    """
    Shared by the GET callback and the POST handoff: verify the
    federation token, resolve the member, set the session cookie
    and redirect to an allowlisted target.
    """
    config: AppConfig = request.app.state.config

    if not token:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body("TOKEN_MISSING", "Token mancante"),
            headers=NO_STORE_HEADERS,
        )

    try:
        claims = request.app.state.handoff_verifier.verify(token)
    except InvalidToken as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.payload(),
            headers=NO_STORE_HEADERS,
        )

    resolver: MemberResolver = request.app.state.member_resolver
    member = resolver.resolve(claims)
    session_token = request.app.state.session_issuer.issue(member.id)

    target = request.app.state.redirect_guard.resolve(
        redirect,
        request_origin(request),
        config.default_redirect_path,
    )
    response = RedirectResponse(url=target, status_code=status_code, headers=NO_STORE_HEADERS)
    set_session_cookie(response, config, session_token)
    logger.info("Member signed in. member_id=%s", member.id)
    return response


@router.get("/health")
def health():
    return {"message": "Enotempo booking service is running"}


# -----------------------------
# Auth
# -----------------------------
@router.get("/auth/callback", dependencies=[Depends(rate_limit)])
def auth_callback(
    request: Request,
    token: Optional[str] = None,
    fenamToken: Optional[str] = None,
    redirect: Optional[str] = None,
    returnUrl: Optional[str] = None,
):
    return _login(
        request,
        token=fenamToken or token,
        redirect=redirect or returnUrl,
        status_code=status.HTTP_302_FOUND,
    )


@router.post("/auth/handoff", dependencies=[Depends(rate_limit)])
async def auth_handoff(
    request: Request,
    redirect: Optional[str] = None,
    returnUrl: Optional[str] = None,
):
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        try:
            body = await request.json()
        except (ValueError, RecursionError):
            # Undecodable or pathologically nested bodies carry no token.
            body = {}
        token = body.get("token") if isinstance(body, dict) else None
    elif (
        "application/x-www-form-urlencoded" in content_type
        or "multipart/form-data" in content_type
    ):
        form = await request.form()
        token = form.get("token")
    else:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(
                "UNSUPPORTED_CONTENT_TYPE",
                "Content-Type non supportato. Usa application/json o form.",
            ),
            headers=NO_STORE_HEADERS,
        )

    return _login(
        request,
        token=token if isinstance(token, str) else None,
        redirect=redirect or returnUrl,
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.get("/auth/me", response_model=IdentityResponse, response_model_exclude_none=True)
def auth_me(request: Request):
    member_id = current_member_id(request)
    if member_id is None:
        return IdentityResponse(has_identity=False)

    with session_scope(request.app.state.session_factory) as db:
        member = MemberRepository(db).get_by_id(member_id)
        if member is None:
            return IdentityResponse(has_identity=False)
        return IdentityResponse(
            has_identity=True,
            member=MemberResponse(
                id=member.id,
                email=member.email,
                first_name=member.first_name or "",
                last_name=member.last_name or "",
                phone=member.phone or "",
            ),
        )


# -----------------------------
# Events
# -----------------------------
@router.get("/events", response_model=list[EventResponse])
def list_events(ledger: ReservationLedger = Depends(get_ledger)):
    return [_event_response(event) for event in ledger.list_events()]


@router.get("/events/{slug}", response_model=EventResponse)
def get_event(slug: str, ledger: ReservationLedger = Depends(get_ledger)):
    return _event_response(ledger.get_event(slug))


# -----------------------------
# Reservations
# -----------------------------
@router.post(
    "/reservations",
    response_model=ReservationCreateResponse,
    dependencies=[Depends(rate_limit)],
)
def create_reservation(
    request: ReservationCreateRequest,
    member_id: str = Depends(require_member_id),
    ledger: ReservationLedger = Depends(get_ledger),
):
    reservation = ledger.reserve(
        member_id=member_id,
        event_slug=request.event_slug,
        notes=request.notes,
    )
    return ReservationCreateResponse(
        reservation_id=reservation.id,
        status=reservation.status.value,
    )


@router.get("/reservations/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: str,
    member_id: str = Depends(require_member_id),
    ledger: ReservationLedger = Depends(get_ledger),
):
    return _reservation_response(ledger.get_owned(reservation_id, member_id))


@router.patch("/reservations/{reservation_id}", response_model=OkResponse)
def patch_reservation(
    reservation_id: str,
    request: ReservationPatchRequest,
    member_id: str = Depends(require_member_id),
    ledger: ReservationLedger = Depends(get_ledger),
):
    ledger.patch(
        reservation_id,
        member_id,
        ReservationPatch(
            first_name=request.first_name,
            last_name=request.last_name,
            phone=request.phone,
            email=request.email,
            notes=request.notes,
        ),
    )
    return OkResponse(ok=True)


# -----------------------------
# Payments
# -----------------------------
@router.get("/payments/status", response_model=PaymentStatusResponse)
def payment_status(request: Request):
    gateway_status = request.app.state.payment_gateway.config_status()
    return PaymentStatusResponse(
        configured=gateway_status.configured,
        missing=gateway_status.missing,
    )


@router.post(
    "/payments/create-order",
    response_model=CreateOrderResponse,
    dependencies=[Depends(rate_limit)],
)
def create_order(
    request: CreateOrderRequest,
    member_id: str = Depends(require_member_id),
    checkout: CheckoutService = Depends(get_checkout),
):
    order_id = checkout.create_order(request.reservation_id, member_id)
    return CreateOrderResponse(order_id=order_id)


@router.post(
    "/payments/capture",
    response_model=CaptureResponse,
    dependencies=[Depends(rate_limit)],
)
def capture_payment(
    request: CaptureRequest,
    member_id: str = Depends(require_member_id),
    reconciler: CaptureReconciler = Depends(get_reconciler),
):
    outcome = reconciler.capture(request.reservation_id, request.order_id, member_id)
    return CaptureResponse(ok=True, confirmation_code=outcome.confirmation_code)
