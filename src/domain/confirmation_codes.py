# src/domain/confirmation_codes.py

import secrets
import time
from typing import Callable, Optional


# No 0/O, 1/I: codes are read aloud and typed by hand.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
CODE_PREFIX = "TULL-"
MAX_ATTEMPTS = 10

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def random_code(prefix: str = CODE_PREFIX) -> str:
    return prefix + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def time_derived_code(prefix: str = CODE_PREFIX, now: Optional[float] = None) -> str:
    now = time.time() if now is None else now
    return prefix + _to_base36(int(now * 1000))[-CODE_LENGTH:]


def generate_confirmation_code(
    is_taken: Callable[[str], bool],
    prefix: str = CODE_PREFIX,
    max_attempts: int = MAX_ATTEMPTS,
    generator: Callable[[str], str] = random_code,
) -> str:
    """
    Samples codes until one is free, falling back to a
    time-derived code once every attempt collided.
    """
    for _ in range(max_attempts):
        candidate = generator(prefix)
        if not is_taken(candidate):
            return candidate
    return time_derived_code(prefix)
