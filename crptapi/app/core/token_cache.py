"""Bearer token cache with single-flight refresh.

The cache owns one ``TokenRecord`` at a time and replaces it wholesale
when it goes stale. How a token is obtained is not this module's
business: a ``TokenProvider`` is injected at construction.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from crptapi.app.core.config import DEFAULT_TOKEN_LIFESPAN
from crptapi.app.core.logging import get_logger
from crptapi.app.exceptions import AuthenticationError, ConfigurationError

logger = get_logger(__name__)

Clock = Callable[[], float]


@runtime_checkable
class TokenProvider(Protocol):
    """Capability that fetches a fresh bearer token."""

    async def provide_token(self) -> str:
        ...


class CallableTokenProvider:
    """Adapt a plain zero-argument function (sync or async) to TokenProvider.

    Example:
        >>> provider = CallableTokenProvider(lambda: os.environ["CRPT_TOKEN"])
    """

    def __init__(self, func: Callable[[], Union[str, Awaitable[str]]]):
        self._func = func

    async def provide_token(self) -> str:
        result = self._func()
        if inspect.isawaitable(result):
            result = await result
        return result


@dataclass(frozen=True)
class TokenRecord:
    """A token and the clock reading at which it was obtained."""

    value: str
    issued_at: float

    def age(self, now: float) -> float:
        return now - self.issued_at


class TokenCache:
    """Serve a valid bearer token, refreshing through the provider when stale.

    Concurrent callers that find the token stale share a single refresh:
    one provider call runs, and every waiter receives its token or its
    error. A failed refresh leaves the previous record untouched.
    """

    def __init__(
        self,
        provider: TokenProvider,
        lifespan: timedelta | float = DEFAULT_TOKEN_LIFESPAN,
        clock: Clock = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            provider: Token provider capability
            lifespan: How long a token stays valid (timedelta or seconds)
            clock: Monotonic clock returning seconds, injectable for tests
        """
        if isinstance(lifespan, timedelta):
            lifespan = lifespan.total_seconds()
        if lifespan <= 0:
            raise ConfigurationError("Token lifespan must be positive")

        self._provider = provider
        self._lifespan = float(lifespan)
        self._clock = clock
        self._record: Optional[TokenRecord] = None
        self._refresh_task: Optional[asyncio.Task[str]] = None

    @property
    def record(self) -> Optional[TokenRecord]:
        return self._record

    @property
    def lifespan(self) -> float:
        """Token lifespan in seconds."""
        return self._lifespan

    def is_fresh(self, record: Optional[TokenRecord] = None) -> bool:
        record = record if record is not None else self._record
        if record is None:
            return False
        return record.age(self._clock()) < self._lifespan

    def invalidate(self) -> None:
        """Drop the cached token; the next valid() call refreshes."""
        self._record = None

    async def valid(self) -> str:
        """Return a token that has not outlived the lifespan.

        Raises:
            AuthenticationError: If a needed refresh fails.
        """
        record = self._record
        if record is not None and self.is_fresh(record):
            return record.value

        task = self._refresh_task
        # A task left over from a previous event loop cannot be awaited here.
        if task is None or task.get_loop() is not asyncio.get_running_loop():
            task = asyncio.create_task(self._refresh())
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        # Shielded so one caller's cancellation does not abort the others' refresh.
        return await asyncio.shield(task)

    def _on_refresh_done(self, task: asyncio.Task[str]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Marks the exception retrieved when every waiter was cancelled.
            task.exception()

    async def _refresh(self) -> str:
        try:
            value = await self._provider.provide_token()
        except AuthenticationError as e:
            logger.warning(f"Token provider rejected the request: {e}")
            raise
        except Exception as e:
            logger.warning(f"Token provider failed: {type(e).__name__}: {e}")
            raise AuthenticationError(f"Token provider failed: {e}") from e

        if not isinstance(value, str) or not value.strip():
            logger.warning("Token provider returned an empty token")
            raise AuthenticationError("Token provider returned an empty token")
        if not _is_header_safe(value):
            logger.warning("Token provider returned a token that is not a valid header value")
            raise AuthenticationError(
                "Token provider returned a token with non-ASCII, whitespace or control characters"
            )

        issued_at = self._clock()
        previous = self._record
        if previous is not None and issued_at < previous.issued_at:
            issued_at = previous.issued_at
        self._record = TokenRecord(value=value, issued_at=issued_at)
        logger.info("Authentication token refreshed")
        return value


def _is_header_safe(value: str) -> bool:
    """Check the token can be sent verbatim in an Authorization header."""
    return value.isascii() and value.isprintable() and not any(c.isspace() for c in value)
