from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[], Tuple[str, int]]


@dataclass
class CachedToken:
    access_token: str
    expires_at: float  # time.monotonic() based

    def is_expired(self, leeway: float, now: float) -> bool:
        return now >= (self.expires_at - leeway)


class OAuthTokenCache:
    """Process-wide OAuth access token cache.

    Tokens are keyed by credential (client id), refreshed lazily once they are
    within ``leeway_seconds`` of expiry, and only one caller at a time runs the
    fetcher; everyone else waits and reuses its result.
    """

    def __init__(self, leeway_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self.leeway_seconds = leeway_seconds
        self._clock = clock
        self._tokens: Dict[str, CachedToken] = {}
        self._lock = threading.Lock()

    def _valid(self, key: str) -> Optional[str]:
        cached = self._tokens.get(key)
        if cached and not cached.is_expired(self.leeway_seconds, self._clock()):
            return cached.access_token
        return None

    def get_token(self, key: str, fetcher: TokenFetcher) -> str:
        token = self._valid(key)
        if token:
            return token

        with self._lock:
            # Another caller may have refreshed while we waited.
            token = self._valid(key)
            if token:
                return token

            access_token, expires_in = fetcher()
            self._tokens[key] = CachedToken(
                access_token=access_token,
                expires_at=self._clock() + float(expires_in or 0),
            )
            logger.info("Refreshed OAuth token for %s, expires in %ss", key, expires_in)
            return access_token

    def invalidate(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._tokens.clear()
            else:
                self._tokens.pop(key, None)
