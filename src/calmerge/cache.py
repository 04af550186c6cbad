from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import requests

from .errors import FetchError
from .models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


def _http_url(url: str) -> str:
    if url.lower().startswith("webcal://"):
        return "https://" + url[len("webcal://"):]
    return url


class SourceCache:
    """Fetches raw feed documents and keeps each one for ``ttl_seconds``.

    Only successful responses are stored. Callers asking for the same URL at the
    same time wait on a per-URL lock, so a cold URL is downloaded once.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        timeout: float = 10.0,
        session: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
        user_agent: str = "calmerge/1.0",
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._clock = clock
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": user_agent, "Accept": "text/calendar, */*"})
        self._session = session
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def fetch(self, url: str) -> str:
        with self._lock_for(url):
            entry = self._entries.get(url)
            if entry is not None and self._clock() - entry.fetched_at < self.ttl_seconds:
                logger.debug("Cache hit for %s", url)
                return entry.text

            logger.debug("Cache miss for %s; downloading", url)
            requested_at = self._clock()
            text = self._download(url)
            self._entries[url] = CacheEntry(text=text, fetched_at=requested_at)
            return text

    def invalidate(self, url: str) -> None:
        with self._lock_for(url):
            self._entries.pop(url, None)

    def clear(self) -> None:
        with self._locks_guard:
            self._entries.clear()

    def _lock_for(self, url: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(url)
            if lock is None:
                lock = self._locks[url] = threading.Lock()
            return lock

    def _download(self, url: str) -> str:
        try:
            resp = self._session.get(_http_url(url), timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Fetching %s failed: %s", url, exc)
            raise FetchError(url, reason=str(exc)) from exc

        if not resp.ok:
            logger.warning("Fetching %s returned HTTP %s", url, resp.status_code)
            raise FetchError(url, status=resp.status_code)

        # RFC 5545 content is UTF-8 unless the server says otherwise.
        content_type = (resp.headers or {}).get("Content-Type", "")
        if "charset" not in content_type.lower():
            resp.encoding = "utf-8"
        return resp.text
