import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from src.api.errors import register_exception_handlers
from src.api.routes.routes import router
from src.application.capture_reconciler import CaptureReconciler
from src.application.checkout_service import CheckoutService
from src.application.member_resolver import MemberResolver
from src.application.ports import ConfirmationNotifier, PaymentGateway, RateLimiter
from src.application.reservation_ledger import ReservationLedger
from src.domain.handoff import HandoffVerifier
from src.domain.redirects import RedirectGuard
from src.domain.sessions import SessionIssuer
from src.domain.tokens import TokenCodec
from src.infrastructure.config import AppConfig
from src.infrastructure.db.models import Base
from src.infrastructure.db.session import build_engine, build_session_factory
from src.infrastructure.email.resend_notifier import ResendNotifier
from src.infrastructure.payments.paypal_gateway import PayPalGateway
from src.infrastructure.rate_limit import build_rate_limiter

logger = logging.getLogger(__name__)


def _wait_for_db(engine: Engine, max_retries: int, retry_delay_seconds: float) -> None:
    # Handles the common case where API starts before Postgres is ready.
    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL and Postgres status.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


def create_app(
    config: Optional[AppConfig] = None,
    session_factory: Optional[sessionmaker] = None,
    payment_gateway: Optional[PaymentGateway] = None,
    notifier: Optional[ConfirmationNotifier] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    config = config or AppConfig.from_env()

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if session_factory is None:
        engine = build_engine(config.database_url)
        session_factory = build_session_factory(engine)
    else:
        engine = session_factory.kw["bind"]

    # Fails fast when FENAM_HANDOFF_SECRET is missing or too short.
    codec = TokenCodec(config.handoff_secret)

    payment_gateway = payment_gateway or PayPalGateway(config)
    notifier = notifier or ResendNotifier(config)
    rate_limiter = rate_limiter or build_rate_limiter(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _wait_for_db(engine, config.db_connect_max_retries, config.db_connect_retry_delay)
        Base.metadata.create_all(bind=engine)
        yield

    app = FastAPI(title="Enotempo Booking Service", lifespan=lifespan)

    app.state.config = config
    app.state.session_factory = session_factory
    app.state.handoff_verifier = HandoffVerifier(codec, config.trusted_issuer)
    app.state.session_issuer = SessionIssuer(codec, config.session_max_age_seconds)
    app.state.redirect_guard = RedirectGuard(
        allowed_hosts=config.redirect_allowed_hosts,
        canonical_hosts=config.redirect_canonical_hosts,
    )
    app.state.payment_gateway = payment_gateway
    app.state.rate_limiter = rate_limiter
    app.state.member_resolver = MemberResolver(session_factory)
    app.state.ledger = ReservationLedger(session_factory)
    app.state.checkout = CheckoutService(
        session_factory,
        payment_gateway,
        default_price=config.default_event_price,
        currency=config.payment_currency,
    )
    app.state.reconciler = CaptureReconciler(
        session_factory,
        payment_gateway,
        notifier=notifier,
        code_prefix=config.confirmation_code_prefix,
    )

    app.include_router(router)
    register_exception_handlers(app)
    return app
