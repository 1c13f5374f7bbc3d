"""In-memory suppression of duplicate provisioning requests.

A request key (the normalized coupon code) passes through three checks:

* an unsettled operation for the same key is joined rather than repeated;
* a key accepted within the last ``window_seconds`` is rejected;
* anything else is accepted and run.

State lives in a ``TTLStore``. The in-memory store is per-process; running more
than one instance needs a shared implementation of the same interface.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from threading import Lock
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEEN_PREFIX = "seen:"
INFLIGHT_PREFIX = "inflight:"


class DuplicateRequestError(Exception):
    """Raised when the same key is submitted again inside the duplicate window."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Duplicate request for {key!r}; retry in a few seconds")


class TTLStore(ABC):
    """Key/value store whose entries may expire."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the stored value, or None when missing or expired."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store *value*; ``ttl_seconds=None`` keeps it until overwritten or deleted."""

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def clear(self) -> None: ...


class InMemoryTTLStore(TTLStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[Any, float | None]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        expires_at = None if ttl_seconds is None else self._clock() + ttl_seconds
        with self._lock:
            self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for _, exp in self._entries.values() if exp is None or exp > now)


class DuplicateRequestSuppressor:
    """Joins concurrent duplicates and debounces rapid resubmissions."""

    def __init__(
        self,
        store: TTLStore | None = None,
        window_seconds: float = 2.0,
        inflight_ttl: float = 5.0,
        seen_ttl: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store if store is not None else InMemoryTTLStore(clock=clock)
        self.window_seconds = window_seconds
        self.inflight_ttl = inflight_ttl
        self.seen_ttl = seen_ttl
        self._clock = clock
        self._lock = Lock()

    async def submit(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* for *key* unless an equivalent request is pending or recent.

        Callers that arrive while the first request is still running receive that
        request's outcome (result or exception). A caller arriving after it
        settled but within the window gets ``DuplicateRequestError``.
        """
        with self._lock:
            pending = self.store.get(INFLIGHT_PREFIX + key)
            if pending is not None and not pending.done():
                join = True
            else:
                join = False
                last_seen = self.store.get(SEEN_PREFIX + key)
                now = self._clock()
                if last_seen is not None and now - last_seen < self.window_seconds:
                    logger.info("Rejected duplicate request for %s", key)
                    raise DuplicateRequestError(key)

                self.store.set(SEEN_PREFIX + key, now, self.seen_ttl)
                pending = asyncio.ensure_future(operation())
                self.store.set(INFLIGHT_PREFIX + key, pending, None)
                pending.add_done_callback(lambda fut: self._settled(key, fut))

        if join:
            logger.info("Joining in-flight request for %s", key)
        return await asyncio.shield(pending)

    def _settled(self, key: str, future: "asyncio.Future[Any]") -> None:
        # keep the finished marker briefly, then let it expire
        if self.store.get(INFLIGHT_PREFIX + key) is future:
            self.store.set(INFLIGHT_PREFIX + key, future, self.inflight_ttl)
        if not future.cancelled() and future.exception() is not None:
            logger.debug("In-flight request for %s settled with an error", key)

    def reset(self) -> None:
        """Clear all tracked state (useful for testing)."""
        self.store.clear()
