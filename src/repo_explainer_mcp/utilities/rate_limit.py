import threading
import time
from collections import OrderedDict

from fastmcp.utilities.logging import get_logger
from pydantic import BaseModel, Field

from repo_explainer_mcp.utilities.cache import Clock
from repo_explainer_mcp.utilities.settings import (
    get_rate_limit_max_identifiers,
    get_rate_limit_requests,
    get_rate_limit_window_seconds,
)

logger = get_logger(__name__)


class RateLimitEntry(BaseModel):
    """The request count for one identifier in its current fixed window."""

    identifier: str = Field(description="The identifier being limited, usually the client address.")
    count: int = Field(description="The number of requests allowed in the current window.")
    reset_at: float = Field(description="When the current window ends, in seconds since the epoch.")


class RateLimiter:
    """A fixed window request counter per identifier."""

    default_max_requests: int
    default_window: float
    max_identifiers: int

    def __init__(
        self,
        default_max_requests: int | None = None,
        default_window: float | None = None,
        max_identifiers: int | None = None,
        clock: Clock | None = None,
    ):
        self.default_max_requests = default_max_requests if default_max_requests is not None else get_rate_limit_requests()
        self.default_window = default_window if default_window is not None else get_rate_limit_window_seconds()
        self.max_identifiers = max_identifiers if max_identifiers is not None else get_rate_limit_max_identifiers()
        self._clock: Clock = clock or time.time
        self._entries: OrderedDict[str, RateLimitEntry] = OrderedDict()
        self._lock = threading.Lock()

    def is_allowed(self, identifier: str, max_requests: int | None = None, window: float | None = None) -> bool:
        """Count a request for the identifier and return whether it is within the limit.

        Args:
            identifier: The identifier to count the request against.
            max_requests: The number of requests allowed per window. Defaults to the configured value.
            window: The length of the window in seconds. Defaults to the configured value.
        """

        max_requests = self.default_max_requests if max_requests is None else max_requests
        window = self.default_window if window is None else window

        with self._lock:
            now: float = self._clock()
            entry: RateLimitEntry | None = self._entries.get(identifier)

            if entry is None or now > entry.reset_at:
                self._entries[identifier] = RateLimitEntry(identifier=identifier, count=1, reset_at=now + window)
                self._entries.move_to_end(identifier)
                self._enforce_capacity(now=now)
                return True

            self._entries.move_to_end(identifier)

            if entry.count < max_requests:
                entry.count += 1
                return True

        logger.warning(f"Rate limit of {max_requests} requests exceeded for {identifier}")

        return False

    def remaining_requests(self, identifier: str, max_requests: int | None = None) -> int:
        max_requests = self.default_max_requests if max_requests is None else max_requests

        with self._lock:
            entry: RateLimitEntry | None = self._entries.get(identifier)

            if entry is None or self._clock() > entry.reset_at:
                return max_requests

            return max(0, max_requests - entry.count)

    def reset_time(self, identifier: str) -> float:
        """When the identifier's current window ends. Identifiers without a window reset now."""

        with self._lock:
            if entry := self._entries.get(identifier):
                return entry.reset_at

            return self._clock()

    def seconds_until_reset(self, identifier: str) -> float:
        return max(0.0, self.reset_time(identifier) - self._clock())

    def reset(self, identifier: str) -> None:
        with self._lock:
            _ = self._entries.pop(identifier, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _enforce_capacity(self, now: float) -> None:
        if len(self._entries) <= self.max_identifiers:
            return

        for identifier in [identifier for identifier, entry in self._entries.items() if now > entry.reset_at]:
            del self._entries[identifier]

        while len(self._entries) > self.max_identifiers:
            evicted_identifier, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted least recently seen rate limit entry {evicted_identifier}")
