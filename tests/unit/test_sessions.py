# tests/unit/test_sessions.py

import pytest

from src.domain.sessions import SESSION_MAX_AGE_SECONDS, SessionIssuer
from src.domain.tokens import TokenCodec


NOW = 1_700_000_000


@pytest.fixture
def codec():
    return TokenCodec("session-secret-0123456789")


@pytest.fixture
def issuer(codec):
    return SessionIssuer(codec)


def test_issue_then_verify(issuer, codec):
    token = issuer.issue("member-1", now=NOW)

    assert codec.decode(token) == {"memberId": "member-1", "exp": NOW + SESSION_MAX_AGE_SECONDS}
    assert issuer.verify(token, now=NOW + 10) == "member-1"


def test_expired_session(issuer):
    token = issuer.issue("member-1", now=NOW)
    assert issuer.verify(token, now=NOW + SESSION_MAX_AGE_SECONDS) is None


@pytest.mark.parametrize("token", [None, "", "garbage", "a.b"])
def test_unusable_tokens(issuer, token):
    assert issuer.verify(token, now=NOW) is None


def test_token_from_other_secret(issuer):
    other = SessionIssuer(TokenCodec("other-session-secret-0123"))
    assert issuer.verify(other.issue("member-1", now=NOW), now=NOW) is None


def test_payload_without_member_id(issuer, codec):
    token = codec.encode({"exp": NOW + 60})
    assert issuer.verify(token, now=NOW) is None
