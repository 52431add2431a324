"""CRPT API client: rate limiting, authentication and transport in one call.

``CrptApiClient.invoke`` is the only entry point callers need:

    async with CrptApiClient(
        provider,
        window=timedelta(seconds=1),
        requests_per_window=10,
        endpoints={"introduce_goods": "https://ismp.crpt.ru/api/v3/lk/documents/create"},
    ) as client:
        response = await client.invoke("introduce_goods", {"pg": "milk"}, body)
"""

import asyncio
import time
from datetime import timedelta
from typing import Any, Mapping, Optional, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from crptapi.app.core.config import DEFAULT_TOKEN_LIFESPAN, ClientConfig, Settings
from crptapi.app.core.config import settings as default_settings
from crptapi.app.core.http_client import create_http_client
from crptapi.app.core.logging import get_log_context, get_logger
from crptapi.app.core.token_cache import CallableTokenProvider, Clock, TokenCache, TokenProvider
from crptapi.app.exceptions import ConfigurationError, DecodingError, UnexpectedStatusError
from crptapi.app.rate_limit import WindowLimiter
from crptapi.app.transport import InboundResponse, RequestExecutor

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


class CrptApiClient:
    """Sequences admission, authentication and the HTTP exchange.

    For every call: resolve the endpoint, wait for a limiter permit,
    obtain a valid token, POST the body, and reject anything but 200.
    Nothing is retried; every failure is raised as a CrptApiError
    subclass.
    """

    def __init__(
        self,
        token_provider: Union[TokenProvider, Any],
        window: timedelta | float,
        requests_per_window: int,
        endpoints: Mapping[str, str],
        *,
        token_lifespan: timedelta | float = DEFAULT_TOKEN_LIFESPAN,
        http_client: Optional[httpx.AsyncClient] = None,
        executor: Optional[RequestExecutor] = None,
        clock: Clock = time.monotonic,
        stop_timeout: float = WindowLimiter.DEFAULT_STOP_TIMEOUT,
    ):
        """Initialize the client.

        Args:
            token_provider: TokenProvider, or a plain (async) callable returning a token
            window: Rate limit window as timedelta or seconds
            requests_per_window: Maximum calls per window (>= 1)
            endpoints: Logical endpoint name -> URL
            token_lifespan: How long a token is reused before refreshing
            http_client: Optional shared HTTP client (not closed by this client)
            executor: Optional pre-built executor, mainly for tests
            clock: Monotonic clock used for token expiry
            stop_timeout: Seconds aclose() waits for the limiter's reset task

        Raises:
            ConfigurationError: If any argument is out of range. Nothing is
                constructed in that case.
        """
        self.config = ClientConfig.build(
            window=window,
            requests_per_window=requests_per_window,
            endpoints=endpoints,
            token_lifespan=token_lifespan,
        )
        if not isinstance(token_provider, TokenProvider) and callable(token_provider):
            token_provider = CallableTokenProvider(token_provider)

        self.limiter = WindowLimiter(
            capacity=self.config.requests_per_window,
            window=self.config.window,
            stop_timeout=stop_timeout,
        )
        self.token_cache = TokenCache(
            token_provider, lifespan=self.config.token_lifespan, clock=clock
        )
        self.executor = executor or RequestExecutor(http_client)
        self._owned_http_client: Optional[httpx.AsyncClient] = None
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        token_provider: Union[TokenProvider, Any],
        settings: Optional[Settings] = None,
        **overrides: Any,
    ) -> "CrptApiClient":
        """Build a client from Settings with a pooled HTTP client it owns.

        Keyword overrides are passed to the constructor and win over settings.
        """
        settings = settings or default_settings
        kwargs: dict[str, Any] = {
            "window": settings.window_seconds,
            "requests_per_window": settings.requests_per_window,
            "endpoints": settings.endpoint_table,
            "token_lifespan": settings.token_lifespan,
            "stop_timeout": settings.limiter_stop_timeout,
        }
        kwargs.update(overrides)

        client = cls(token_provider, **kwargs)
        if "http_client" not in kwargs and "executor" not in kwargs:
            client._owned_http_client = create_http_client()
            client.executor = RequestExecutor(client._owned_http_client)
        return client

    @property
    def closed(self) -> bool:
        return self._closed

    async def invoke(
        self,
        endpoint_key: str,
        query_params: Optional[Mapping[str, str]] = None,
        body: Union[bytes, str] = b"",
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> InboundResponse:
        """Perform one rate-limited, authenticated POST.

        Args:
            endpoint_key: Logical endpoint name from the endpoint table
            query_params: Query parameters appended to the endpoint URL
            body: JSON document as bytes (str is UTF-8 encoded)
            cancel_event: Optional signal that abandons the wait for a permit

        Returns:
            The 200 response with its raw body.

        Raises:
            ConfigurationError: Unknown endpoint key, or the client is closed
            CancellationError: cancel_event fired before a permit was granted
            AuthenticationError: Token provider failed
            TransportError: URL, connection or read failure
            UnexpectedStatusError: Any status other than 200
        """
        if self._closed:
            raise ConfigurationError("CrptApiClient is closed")

        url = self.config.resolve(endpoint_key)
        if isinstance(body, str):
            body = body.encode("utf-8")

        await self.limiter.acquire(cancel_event)
        token = await self.token_cache.valid()

        started = time.perf_counter()
        response = await self.executor.send(url, query_params, token, body)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        if response.status_code != 200:
            logger.warning(
                f"Unexpected response from API: {response.status_code}",
                extra=get_log_context(
                    endpoint=endpoint_key,
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                ),
            )
            raise UnexpectedStatusError(response.status_code, response.body, url=url)

        logger.debug(
            "API call succeeded",
            extra=get_log_context(
                endpoint=endpoint_key, status_code=200, duration_ms=duration_ms
            ),
        )
        return response

    async def call_model(
        self,
        endpoint_key: str,
        payload: BaseModel,
        response_model: type[M],
        query_params: Optional[Mapping[str, str]] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> M:
        """Serialize payload, invoke the endpoint and decode the response.

        Raises:
            DecodingError: If the response does not match response_model.
            CrptApiError: Anything invoke() raises.
        """
        body = payload.model_dump_json(by_alias=True).encode("utf-8")
        response = await self.invoke(
            endpoint_key, query_params, body, cancel_event=cancel_event
        )
        try:
            return response_model.model_validate_json(response.body)
        except ValidationError as e:
            raise DecodingError(
                f"Failed to decode {response_model.__name__}: {e}", body=response.body
            ) from e

    async def aclose(self) -> None:
        """Stop the limiter's reset task and close an owned HTTP client."""
        if self._closed:
            return
        self._closed = True
        await self.limiter.stop()
        if self._owned_http_client is not None:
            await self._owned_http_client.aclose()
            self._owned_http_client = None

    async def __aenter__(self) -> "CrptApiClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
