# src/domain/sessions.py

import time
from typing import Optional

from src.domain.exceptions import InvalidToken
from src.domain.tokens import TokenCodec


SESSION_MAX_AGE_SECONDS = 60 * 60 * 24 * 365


class SessionIssuer:
    """
    Local session tokens bound to a member id. Long-lived on purpose:
    the session only gates booking a dinner seat.
    """

    def __init__(self, codec: TokenCodec, max_age_seconds: int = SESSION_MAX_AGE_SECONDS):
        self.codec = codec
        self.max_age_seconds = max_age_seconds

    def issue(self, member_id: str, now: Optional[float] = None) -> str:
        now = time.time() if now is None else now
        return self.codec.encode(
            {
                "memberId": member_id,
                "exp": int(now) + self.max_age_seconds,
            }
        )

    def verify(self, token: Optional[str], now: Optional[float] = None) -> Optional[str]:
        """
        Returns the member id, or None for any missing, tampered
        or expired token.
        """
        if not token:
            return None
        now = time.time() if now is None else now
        try:
            payload = self.codec.decode(token)
        except InvalidToken:
            return None

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)) or exp <= now:
            return None

        member_id = payload.get("memberId")
        if not isinstance(member_id, str) or not member_id:
            return None
        return member_id
