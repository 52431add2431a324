"""Tests for the bearer token cache."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from crptapi.app.core.token_cache import (
    CallableTokenProvider,
    TokenCache,
    TokenProvider,
    TokenRecord,
)
from crptapi.app.exceptions import AuthenticationError, ConfigurationError

LIFESPAN = 600.0


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingProvider:
    """Token provider that hands out token-1, token-2, ... and counts calls."""

    def __init__(self, delay: float = 0.0, fail_with: Exception | None = None):
        self.calls = 0
        self.delay = delay
        self.fail_with = fail_with

    async def provide_token(self) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        return f"token-{self.calls}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return CountingProvider()


@pytest.fixture
def cache(provider, clock):
    return TokenCache(provider, lifespan=LIFESPAN, clock=clock)


class TestTokenRecord:
    """Tests for the immutable token record."""

    def test_age(self):
        """Age is measured against the supplied clock reading."""
        record = TokenRecord(value="t", issued_at=100.0)
        assert record.age(130.0) == 30.0

    def test_frozen(self):
        """Records are replaced, never mutated."""
        record = TokenRecord(value="t", issued_at=100.0)
        with pytest.raises(AttributeError):
            record.value = "other"  # type: ignore[misc]


class TestExpiry:
    """Tests for lifespan boundaries."""

    @pytest.mark.asyncio
    async def test_first_call_fetches(self, cache, provider, clock):
        """An empty cache calls the provider and records the issue time."""
        assert await cache.valid() == "token-1"
        assert provider.calls == 1
        assert cache.record == TokenRecord(value="token-1", issued_at=clock.now)

    @pytest.mark.asyncio
    async def test_cached_just_before_expiry(self, cache, provider, clock):
        """A call at issued_at + L - epsilon reuses the token."""
        await cache.valid()
        clock.advance(LIFESPAN - 0.001)
        assert await cache.valid() == "token-1"
        assert provider.calls == 1

    @pytest.mark.asyncio
    async def test_refreshed_just_after_expiry(self, cache, provider, clock):
        """A call at issued_at + L + epsilon calls the provider exactly once."""
        await cache.valid()
        clock.advance(LIFESPAN + 0.001)
        assert await cache.valid() == "token-2"
        assert provider.calls == 2
        assert await cache.valid() == "token-2"
        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_exact_lifespan_is_stale(self, cache, provider, clock):
        """A token aged exactly L is no longer served."""
        await cache.valid()
        clock.advance(LIFESPAN)
        assert await cache.valid() == "token-2"

    @pytest.mark.asyncio
    async def test_issued_at_advances_on_refresh(self, cache, clock):
        """Each refresh records a later issue time."""
        await cache.valid()
        first = cache.record
        clock.advance(LIFESPAN + 1)
        await cache.valid()
        assert cache.record.issued_at > first.issued_at

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self, cache, provider):
        """invalidate() makes the next call refresh."""
        await cache.valid()
        cache.invalidate()
        assert cache.record is None
        assert await cache.valid() == "token-2"
        assert provider.calls == 2

    def test_timedelta_lifespan(self, provider):
        """Lifespan may be given as timedelta."""
        cache = TokenCache(provider, lifespan=timedelta(minutes=600))
        assert cache.lifespan == 36000.0

    def test_non_positive_lifespan_rejected(self, provider):
        """A zero lifespan is a configuration error."""
        with pytest.raises(ConfigurationError):
            TokenCache(provider, lifespan=0)


class TestSingleFlight:
    """Tests for coalescing concurrent refreshes."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, clock):
        """Many stale callers trigger one provider call and see the same token."""
        provider = CountingProvider(delay=0.01)
        cache = TokenCache(provider, lifespan=LIFESPAN, clock=clock)

        tokens = await asyncio.gather(*(cache.valid() for _ in range(10)))

        assert provider.calls == 1
        assert set(tokens) == {"token-1"}

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_failure(self, clock):
        """A failing refresh is reported to every waiter from a single call."""
        provider = CountingProvider(delay=0.01, fail_with=RuntimeError("down"))
        cache = TokenCache(provider, lifespan=LIFESPAN, clock=clock)

        results = await asyncio.gather(
            *(cache.valid() for _ in range(5)), return_exceptions=True
        )

        assert provider.calls == 1
        assert all(isinstance(r, AuthenticationError) for r in results)

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_abort_refresh(self, clock):
        """Cancelling one waiter leaves the shared refresh running for others."""
        provider = CountingProvider(delay=0.02)
        cache = TokenCache(provider, lifespan=LIFESPAN, clock=clock)

        first = asyncio.create_task(cache.valid())
        second = asyncio.create_task(cache.valid())
        await asyncio.sleep(0)
        first.cancel()

        assert await second == "token-1"
        assert provider.calls == 1
        with pytest.raises(asyncio.CancelledError):
            await first


class TestFailures:
    """Tests for provider failure handling."""

    @pytest.mark.asyncio
    async def test_provider_error_wrapped(self, clock):
        """Provider exceptions surface as AuthenticationError with the cause chained."""
        boom = RuntimeError("auth service unavailable")
        cache = TokenCache(CountingProvider(fail_with=boom), lifespan=LIFESPAN, clock=clock)

        with pytest.raises(AuthenticationError) as exc_info:
            await cache.valid()
        assert exc_info.value.__cause__ is boom
        assert cache.record is None

    @pytest.mark.asyncio
    async def test_authentication_error_passes_through(self, clock):
        """An AuthenticationError from the provider is not re-wrapped."""
        error = AuthenticationError("bad credentials")
        cache = TokenCache(CountingProvider(fail_with=error), lifespan=LIFESPAN, clock=clock)

        with pytest.raises(AuthenticationError) as exc_info:
            await cache.valid()
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_failure_not_cached(self, clock):
        """After a failed refresh the next call tries the provider again."""
        provider = CountingProvider(fail_with=RuntimeError("down"))
        cache = TokenCache(provider, lifespan=LIFESPAN, clock=clock)

        with pytest.raises(AuthenticationError):
            await cache.valid()
        provider.fail_with = None
        assert await cache.valid() == "token-2"
        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_previous_record(self, cache, provider, clock):
        """An expired token is never served, and a failed refresh does not replace it."""
        await cache.valid()
        previous = cache.record
        clock.advance(LIFESPAN + 1)
        provider.fail_with = RuntimeError("down")

        with pytest.raises(AuthenticationError):
            await cache.valid()
        assert cache.record == previous

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["\u0442oken", "tok en", "token\n", "tok\x00en"])
    async def test_unusable_header_token_rejected(self, clock, token):
        """Tokens that cannot be sent in an Authorization header are not cached."""
        cache = TokenCache(CallableTokenProvider(lambda: token), lifespan=LIFESPAN, clock=clock)
        with pytest.raises(AuthenticationError):
            await cache.valid()
        assert cache.record is None

    @pytest.mark.asyncio
    async def test_empty_token_rejected(self, clock):
        """Empty tokens are treated as provider failures."""
        cache = TokenCache(CallableTokenProvider(lambda: "  "), lifespan=LIFESPAN, clock=clock)
        with pytest.raises(AuthenticationError):
            await cache.valid()
        assert cache.record is None


class TestCallableTokenProvider:
    """Tests for adapting plain callables."""

    @pytest.mark.asyncio
    async def test_sync_callable(self):
        """A plain function is wrapped."""
        provider = CallableTokenProvider(lambda: "sync-token")
        assert await provider.provide_token() == "sync-token"

    @pytest.mark.asyncio
    async def test_async_callable(self):
        """A coroutine function is awaited."""

        async def fetch() -> str:
            return "async-token"

        provider = CallableTokenProvider(fetch)
        assert await provider.provide_token() == "async-token"

    def test_satisfies_protocol(self):
        """Both the adapter and custom classes satisfy TokenProvider."""
        assert isinstance(CallableTokenProvider(lambda: "t"), TokenProvider)
        assert isinstance(CountingProvider(), TokenProvider)


class TestMockedProvider:
    """Tests with a mocked provider."""

    @pytest.mark.asyncio
    async def test_provider_awaited_once_per_lifespan(self, clock):
        """The provider is awaited once, then again after expiry."""
        provider = MagicMock()
        provider.provide_token = AsyncMock(side_effect=["first", "second"])
        cache = TokenCache(provider, lifespan=LIFESPAN, clock=clock)

        assert await cache.valid() == "first"
        assert await cache.valid() == "first"
        clock.advance(LIFESPAN)
        assert await cache.valid() == "second"
        assert provider.provide_token.await_count == 2


class TestEventLoops:
    """Tests for reuse across event loops."""

    def test_refresh_left_on_closed_loop_is_replaced(self, clock):
        """A refresh stranded on a closed loop does not block the next loop."""
        provider = CountingProvider(delay=60.0)
        cache = TokenCache(provider, lifespan=LIFESPAN, clock=clock)

        loop = asyncio.new_event_loop()
        try:
            with pytest.raises(asyncio.TimeoutError):
                loop.run_until_complete(asyncio.wait_for(cache.valid(), timeout=0.01))
        finally:
            loop.close()

        provider.delay = 0.0
        assert asyncio.run(cache.valid()) == "token-2"

    def test_fresh_token_served_on_new_loop(self, cache, provider):
        """A cached token is reused by a later asyncio.run()."""
        assert asyncio.run(cache.valid()) == "token-1"
        assert asyncio.run(cache.valid()) == "token-1"
        assert provider.calls == 1
