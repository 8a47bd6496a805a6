# src/domain/tokens.py

import base64
import binascii
import hashlib
import hmac
import json

from src.domain.exceptions import InvalidToken


MIN_SECRET_BYTES = 16
# Longer tokens are rejected before any decoding.
MAX_TOKEN_LENGTH = 4096


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenCodec:
    """
    Compact two-part signed tokens:
    ``base64url(json payload) "." base64url(HMAC-SHA256(first segment))``.

    The codec knows nothing about what the payload means. Handoff and
    session tokens share it with different payload shapes.
    """

    def __init__(self, secret: str):
        key = secret.encode("utf-8") if secret else b""
        if len(key) < MIN_SECRET_BYTES:
            raise ValueError(
                f"Token secret must be at least {MIN_SECRET_BYTES} bytes."
            )
        self._key = key

    def sign(self, segment: str) -> str:
        digest = hmac.new(self._key, segment.encode("ascii"), hashlib.sha256).digest()
        return b64url_encode(digest)

    def encode(self, payload: dict) -> str:
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        segment = b64url_encode(raw)
        return f"{segment}.{self.sign(segment)}"

    def decode(self, token: str) -> dict:
        """
        Returns the verified payload or raises InvalidToken.
        The signature is checked before the payload is parsed.
        """
        if not isinstance(token, str) or len(token) > MAX_TOKEN_LENGTH:
            raise InvalidToken(InvalidToken.MALFORMED)

        parts = token.split(".")
        if len(parts) != 2:
            raise InvalidToken(InvalidToken.MALFORMED)

        segment, signature = parts
        if not segment or not signature:
            raise InvalidToken(InvalidToken.MALFORMED)

        try:
            expected = self.sign(segment).encode("ascii")
            received = signature.encode("ascii")
        except UnicodeEncodeError as exc:
            raise InvalidToken(InvalidToken.MALFORMED) from exc

        if not hmac.compare_digest(expected, received):
            raise InvalidToken(InvalidToken.BAD_SIGNATURE)

        try:
            payload = json.loads(b64url_decode(segment).decode("utf-8"))
        except (binascii.Error, ValueError, RecursionError) as exc:
            raise InvalidToken(InvalidToken.MALFORMED) from exc

        if not isinstance(payload, dict):
            raise InvalidToken(InvalidToken.MALFORMED)

        return payload


def peek_payload(token: str) -> dict | None:
    """
    Best-effort, unverified read of a two-part token's payload.
    Only for diagnostics; never trust the result.
    """
    if not isinstance(token, str) or len(token) > MAX_TOKEN_LENGTH:
        return None
    parts = token.split(".")
    if len(parts) != 2:
        return None
    try:
        payload = json.loads(b64url_decode(parts[0]).decode("utf-8"))
    except (binascii.Error, ValueError, RecursionError):
        return None
    return payload if isinstance(payload, dict) else None
