# src/domain/identity.py

import re


PLACEHOLDER_EMAIL_PREFIX = "fenam-"
PLACEHOLDER_EMAIL_SUFFIX = "@placeholder.enotempo"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")

_TEXT_STRIP_PATTERNS = (
    (re.compile(r"[<>]"), ""),
    (re.compile(r"javascript:", re.IGNORECASE), ""),
    (re.compile(r"on\w+=", re.IGNORECASE), ""),
)


def is_valid_email(value) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value.strip()))


def normalize_email(value) -> str | None:
    """Lower-cased, trimmed email, or None when not syntactically valid."""
    if not is_valid_email(value):
        return None
    return value.strip().lower()


def build_placeholder_email(stable_id: str) -> str:
    """
    Deterministic, non-deliverable address derived from the stable external id,
    so retried creations for the same person collide instead of duplicating.
    """
    safe = _UNSAFE_ID_CHARS.sub("-", str(stable_id))[:128]
    return f"{PLACEHOLDER_EMAIL_PREFIX}{safe}{PLACEHOLDER_EMAIL_SUFFIX}"


def is_placeholder_email(email) -> bool:
    if not isinstance(email, str) or not email:
        return False
    return (
        email.startswith(PLACEHOLDER_EMAIL_PREFIX)
        and email.endswith(PLACEHOLDER_EMAIL_SUFFIX)
        and len(email) > len(PLACEHOLDER_EMAIL_PREFIX) + len(PLACEHOLDER_EMAIL_SUFFIX)
    )


def sanitize_text(value: str | None) -> str | None:
    """Strips markup-ish fragments from free text typed by members."""
    if value is None:
        return None
    for pattern, replacement in _TEXT_STRIP_PATTERNS:
        value = pattern.sub(replacement, value)
    return value.strip()
