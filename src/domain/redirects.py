# src/domain/redirects.py

from typing import Iterable, Mapping, Optional
from urllib.parse import urlsplit


DEFAULT_ALLOWED_HOSTS = ("enotempo.it", "www.enotempo.it")
DEFAULT_CANONICAL_HOSTS = {"www.enotempo.it": "enotempo.it"}


class RedirectGuard:
    """
    Validates post-login destinations so the login endpoints
    cannot be used as an open redirect.
    """

    def __init__(
        self,
        allowed_hosts: Iterable[str] = DEFAULT_ALLOWED_HOSTS,
        canonical_hosts: Mapping[str, str] = DEFAULT_CANONICAL_HOSTS,
    ):
        self.allowed_hosts = frozenset(host.lower() for host in allowed_hosts)
        self.canonical_hosts = {k.lower(): v.lower() for k, v in canonical_hosts.items()}

    def resolve(self, candidate: Optional[str], origin: str, default_path: str) -> str:
        origin = origin.rstrip("/")
        if not default_path.startswith("/"):
            default_path = "/" + default_path
        default_url = f"{origin}{default_path}"

        if not candidate or not isinstance(candidate, str):
            return default_url
        candidate = candidate.strip()
        if not candidate:
            return default_url

        # Protocol-relative: browsers read "/\host" like "//host".
        if candidate.startswith("//") or candidate.startswith("/\\"):
            return default_url
        if candidate.startswith("/"):
            return f"{origin}{candidate}"

        try:
            parts = urlsplit(candidate)
        except ValueError:
            return default_url

        if parts.scheme.lower() not in ("http", "https"):
            return default_url

        host = parts.netloc.lower()
        if host not in self.allowed_hosts:
            return default_url

        host = self.canonical_hosts.get(host, host)
        path = parts.path or "/"
        query = f"?{parts.query}" if parts.query else ""
        fragment = f"#{parts.fragment}" if parts.fragment else ""
        return f"https://{host}{path}{query}{fragment}"
