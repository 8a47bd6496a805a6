# src/domain/handoff.py

from dataclasses import dataclass
import hashlib
import logging
import math
import time
from typing import Optional

from src.domain.exceptions import InvalidToken
from src.domain.identity import normalize_email
from src.domain.tokens import TokenCodec, peek_payload


logger = logging.getLogger(__name__)

# Values above this are epoch milliseconds, not seconds.
_MILLISECOND_EXP_THRESHOLD = 10**12

_STABLE_ID_KEYS = (
    "sub",
    "memberNumber",
    "member_number",
    "affiliationId",
    "affiliation_id",
    "fenamMemberId",
    "id",
    "jti",
)
_AFFILIATION_KEYS = (
    "affiliationId",
    "affiliation_id",
    "memberNumber",
    "member_number",
    "fenamMemberId",
    "id",
)
_MEMBER_NUMBER_KEYS = ("memberNumber", "member_number")


@dataclass(frozen=True)
class HandoffClaims:
    affiliation_id: str
    member_number: str
    email: Optional[str]
    stable_id: str

    @property
    def external_id(self) -> str:
        return self.affiliation_id or self.member_number or self.stable_id


def normalize_exp(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        value = float(value)
    except (OverflowError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    if value > _MILLISECOND_EXP_THRESHOLD:
        return value / 1000
    return value


def _first_claim(payload: dict, keys) -> str:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def issuer_hash(issuer) -> Optional[str]:
    if issuer is None or issuer == "":
        return None
    return hashlib.sha256(str(issuer).encode("utf-8")).hexdigest()[:8]


def token_diagnostics(token: str, now: Optional[float] = None) -> dict:
    """
    Metadata that is safe to log about a presented token:
    length, part count, issuer hash and seconds left before expiry.
    Never raises, whatever the token holds.
    """
    now = time.time() if now is None else now
    token = token if isinstance(token, str) else ""
    payload = peek_payload(token) or {}
    exp = normalize_exp(payload.get("exp"))
    try:
        iss_hash = issuer_hash(payload.get("iss"))
    except (ValueError, TypeError):
        # str() refuses integers with too many digits.
        iss_hash = None
    return {
        "token_len": len(token),
        "token_parts": token.count(".") + 1 if token else 0,
        "iss_hash": iss_hash,
        "exp_delta_sec": int(exp - now) if exp is not None else None,
    }


class HandoffVerifier:
    """
    Verifies membership tokens issued by the federation and
    extracts identity claims. Each check is a fail-fast gate:
    signature, issuer, then expiry (no clock tolerance).
    """

    def __init__(self, codec: TokenCodec, trusted_issuer: str):
        self.codec = codec
        self.trusted_issuer = trusted_issuer

    def verify(self, token: str, now: Optional[float] = None) -> HandoffClaims:
        now = time.time() if now is None else now
        try:
            return self._verify(token, now)
        except InvalidToken as exc:
            diagnostics = token_diagnostics(token, now)
            logger.warning(
                "Handoff token rejected: reason=%s token_len=%s token_parts=%s iss_hash=%s exp_delta_sec=%s",
                exc.reason,
                diagnostics["token_len"],
                diagnostics["token_parts"],
                diagnostics["iss_hash"],
                diagnostics["exp_delta_sec"],
            )
            raise

    def _verify(self, token: str, now: float) -> HandoffClaims:
        payload = self.codec.decode(token)

        if payload.get("iss") != self.trusted_issuer:
            raise InvalidToken(InvalidToken.BAD_ISSUER)

        exp = normalize_exp(payload.get("exp"))
        if exp is None:
            raise InvalidToken(InvalidToken.MALFORMED)
        if exp <= now:
            raise InvalidToken(InvalidToken.EXPIRED)

        stable_id = _first_claim(payload, _STABLE_ID_KEYS)
        if not stable_id:
            raise InvalidToken(InvalidToken.MALFORMED)

        affiliation_id = _first_claim(payload, _AFFILIATION_KEYS) or stable_id
        member_number = _first_claim(payload, _MEMBER_NUMBER_KEYS) or affiliation_id

        return HandoffClaims(
            affiliation_id=affiliation_id,
            member_number=member_number,
            email=normalize_email(payload.get("email")),
            stable_id=stable_id,
        )
