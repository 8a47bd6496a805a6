from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from src.domain.state_machine import EventStatus
from src.domain.tokens import TokenCodec
from src.infrastructure.config import AppConfig
from src.infrastructure.db.models import Base
from src.infrastructure.db.session import build_engine, build_session_factory, session_scope
from src.infrastructure.rate_limit import SlidingWindowRateLimiter
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.member_repository import MemberRepository
from src.main import create_app

from tests.fakes import FakePaymentGateway, RecordingNotifier


TEST_SECRET = "test-secret-0123456789abcdef"


@pytest.fixture
def config(tmp_path):
    return AppConfig(
        database_url=f"sqlite:///{tmp_path / 'enotempo.db'}",
        db_connect_max_retries=1,
        db_connect_retry_delay=0.0,
        handoff_secret=TEST_SECRET,
        trusted_issuer="fenam",
        session_cookie_secure=False,
        public_origin="https://enotempo.it",
        paypal_mode="sandbox",
        paypal_client_id="client-id",
        paypal_secret="client-secret",
        resend_api_key="re_test",
        resend_from="Enotempo <noreply@enotempo.it>",
        rate_limit_max_requests=1000,
    )


@pytest.fixture
def engine(config):
    engine = build_engine(config.database_url)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def codec():
    return TokenCodec(TEST_SECRET)


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def app(config, session_factory, gateway, notifier):
    return create_app(
        config=config,
        session_factory=session_factory,
        payment_gateway=gateway,
        notifier=notifier,
        rate_limiter=SlidingWindowRateLimiter(max_requests=1000, window_seconds=60),
    )


@pytest.fixture
def client(app):
    with TestClient(app, base_url="https://enotempo.it") as test_client:
        yield test_client


@pytest.fixture
def make_event(session_factory):
    def _make_event(slug="cena-tullpukuna", capacity=30, price_cents=7000, status=EventStatus.PUBLISHED):
        with session_scope(session_factory) as db:
            event = EventRepository(db).create_or_update(
                slug,
                title="Cena a Tullpukuna",
                starts_at=datetime(2026, 2, 12, 18, 30, tzinfo=timezone.utc),
                location_name="Ristorante Tullpukuna",
                capacity=capacity,
                price_cents=price_cents,
                status=status,
            )
            db.flush()
            return event.id

    return _make_event


@pytest.fixture
def make_member(session_factory):
    def _make_member(email="socio@example.com", external_id=None):
        with session_scope(session_factory) as db:
            member = MemberRepository(db).create(email=email, external_id=external_id)
            db.flush()
            return member.id

    return _make_member


@pytest.fixture
def handoff_token(codec):
    def _handoff_token(**overrides):
        payload = {
            "affiliationId": "AFF-001",
            "memberNumber": "M-001",
            "email": "socio@example.com",
            "exp": int(datetime.now(timezone.utc).timestamp()) + 600,
            "iss": "fenam",
        }
        payload.update(overrides)
        return codec.encode({k: v for k, v in payload.items() if v is not None})

    return _handoff_token


@pytest.fixture
def login(client, handoff_token):
    def _login(**claims):
        response = client.get(
            "/auth/callback",
            params={"token": handoff_token(**claims)},
            follow_redirects=False,
        )
        assert response.status_code == 302
        return response

    return _login

