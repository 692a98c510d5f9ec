"""
Membership lookup: is this email an active patron?

The patron list comes from the Patronite API and is cached for a short window.
A cold cache blocks on the first fetch; a stale cache is served as-is while a
background thread refreshes it. If the API fails, a configured fallback
allow-list is used instead of failing the request.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable

import httpx

from legalchat.core.config import (
    MEMBERSHIP_API_TIMEOUT,
    MEMBERSHIP_CACHE_SECONDS,
    MEMBERSHIP_EXTRA_EMAILS,
    MEMBERSHIP_FALLBACK_EMAILS,
    PATRONITE_API_KEY,
    PATRONITE_API_URL,
)

logger = logging.getLogger(__name__)


def fetch_patron_emails(
    api_url: str = PATRONITE_API_URL,
    api_key: str = PATRONITE_API_KEY,
    transport: httpx.BaseTransport | None = None,
) -> set[str]:
    """GET {api_url}patrons/active and return the lowercased emails. Raises on failure."""
    if not api_url:
        raise ValueError("PATRONITE_API_URL is not configured")
    headers = {"Authorization": f"token {api_key}", "Content-Type": "application/json"}
    with httpx.Client(timeout=MEMBERSHIP_API_TIMEOUT, transport=transport) as client:
        response = client.get(f"{api_url}patrons/active", headers=headers)
    response.raise_for_status()
    results = response.json().get("results") or []
    return {str(p["email"]).strip().lower() for p in results if isinstance(p, dict) and p.get("email")}


class MembershipDirectory:
    """Read-mostly cache of patron emails. Concurrent refreshes are harmless; last writer wins."""

    def __init__(
        self,
        fetch: Callable[[], set[str]] = fetch_patron_emails,
        *,
        ttl_seconds: float = MEMBERSHIP_CACHE_SECONDS,
        extra_emails: Iterable[str] = MEMBERSHIP_EXTRA_EMAILS,
        fallback_emails: Iterable[str] = MEMBERSHIP_FALLBACK_EMAILS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._ttl = ttl_seconds
        self._extra = {e.lower() for e in extra_emails}
        self._fallback = {e.lower() for e in fallback_emails}
        self._clock = clock
        self._lock = threading.Lock()
        self._emails: set[str] | None = None
        self._fetched_at = 0.0
        self._refreshing = False

    def _load(self) -> set[str]:
        try:
            emails = self._fetch() | self._extra
        except Exception as e:
            logger.warning("[membership:load] fetching patrons failed, using fallback list: %s", e)
            return self._fallback | self._extra
        logger.info("[membership:load] OUT patrons=%d", len(emails))
        return emails

    def _store(self, emails: set[str]) -> None:
        with self._lock:
            self._emails = emails
            self._fetched_at = self._clock()

    def _refresh_in_background(self) -> None:
        try:
            self._store(self._load())
        finally:
            with self._lock:
                self._refreshing = False

    def is_member(self, email: str) -> bool:
        key = (email or "").strip().lower()
        with self._lock:
            emails = self._emails
            stale = emails is None or self._clock() - self._fetched_at >= self._ttl
            start_refresh = emails is not None and stale and not self._refreshing
            if start_refresh:
                self._refreshing = True
        if emails is None:
            emails = self._load()
            self._store(emails)
        elif start_refresh:
            threading.Thread(target=self._refresh_in_background, name="membership-refresh", daemon=True).start()
        return key in emails


_directory: MembershipDirectory | None = None
_directory_lock = threading.Lock()


def get_membership_directory() -> MembershipDirectory:
    """Process-wide directory instance."""
    global _directory
    with _directory_lock:
        if _directory is None:
            _directory = MembershipDirectory()
        return _directory
