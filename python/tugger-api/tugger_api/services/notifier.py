"""Outbound chat-webhook notifications with duplicate suppression.

Posts ``{"text": message}`` to an incoming-webhook URL (Slack style, where a
successful delivery answers with the literal body ``ok``). Delivery is best
effort: failures are logged and never raised to the caller.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

# Default dedup window: 1 minute
_DEFAULT_TTL_SECONDS = 60.0
_DEFAULT_TIMEOUT_SECONDS = 10.0


class DedupCache:
    """Thread-safe set of recently sent messages with per-entry expiry."""

    def __init__(
        self,
        ttl_seconds: float = _DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._expiry: dict[str, float] = {}
        self._lock = threading.Lock()

    def add_if_absent(self, key: str) -> bool:
        """Record ``key`` and return True, unless it is already present and unexpired."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if key in self._expiry:
                return False
            self._expiry[key] = now + self._ttl
            return True

    def __contains__(self, key: object) -> bool:
        with self._lock:
            expiry = self._expiry.get(key)  # type: ignore[arg-type]
            return expiry is not None and expiry > self._clock()

    def __len__(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return len(self._expiry)

    def _evict(self, now: float) -> None:
        expired = [k for k, expiry in self._expiry.items() if expiry <= now]
        for k in expired:
            del self._expiry[k]


class Notifier:
    """Async client for the notification webhook."""

    def __init__(
        self,
        webhook_url: str | None,
        *,
        env: str = "",
        cache: DedupCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._webhook_url = webhook_url
        self._env = env
        self._cache = cache
        self._http_client = http_client
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def notify(self, message: str) -> bool:
        """Send ``message`` unless it was sent within the dedup window.

        Returns True when the webhook acknowledged the message.
        """
        if not self._webhook_url:
            logger.debug("Notification webhook URL is not provided")
            return False

        # Recorded before sending so a failing webhook is not retried per request.
        if self._cache is not None and not self._cache.add_if_absent(message):
            logger.debug("Suppressing duplicate notification: %s", message)
            return False

        text = f"[{self._env}] {message}" if self._env else message

        client = self._http_client or httpx.AsyncClient()
        owns_client = self._http_client is None
        try:
            resp = await client.post(
                self._webhook_url,
                json={"text": text},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Error sending notification: %s", exc)
            return False
        finally:
            if owns_client:
                await client.aclose()

        if not resp.is_success or resp.text != "ok":
            logger.error(
                "Non-ok response returned from notification webhook: %s %s",
                resp.status_code,
                resp.text,
            )
            return False
        return True

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
