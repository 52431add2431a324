"""Single-exchange HTTP executor.

Builds the URL, attaches the JSON and bearer headers, performs one POST
and hands back the raw status and body. Classification of the status
code is left to the caller; transport failures become TransportError.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Mapping, Optional

import httpx

from crptapi.app.core.http_client import create_http_client
from crptapi.app.core.logging import get_log_context, get_logger
from crptapi.app.exceptions import TransportError
from crptapi.app.transport.models import InboundResponse, OutboundRequest

logger = get_logger(__name__)


class RequestExecutor:
    """Performs exactly one HTTP POST per send() call.

    If http_client is provided, it will be used for all requests (connection reuse).
    If not, a new client is created and closed per call, so no connection
    state survives between calls.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the executor.

        Args:
            http_client: Optional shared HTTP client for connection pooling
            timeout: Timeout for per-call clients (settings are used if omitted)
        """
        self._http_client = http_client
        self.timeout = timeout

    @property
    def http_client(self) -> Optional[httpx.AsyncClient]:
        """Get the HTTP client, if one was provided."""
        return self._http_client

    @staticmethod
    def build_headers(token: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }

    @staticmethod
    def build_url(base_url: str, query_params: Optional[Mapping[str, str]] = None) -> str:
        """Append query parameters to base_url, preserving their order.

        Raises:
            TransportError: If the base URL or any parameter is malformed.
        """
        try:
            url = httpx.URL(base_url)
        except (httpx.InvalidURL, TypeError) as e:
            raise TransportError(f"Failed to build URL: {e}", url=str(base_url)) from e

        if url.scheme not in ("http", "https") or not url.host:
            raise TransportError(
                f"Failed to build URL: expected an absolute http(s) URL, got '{base_url}'",
                url=str(base_url),
            )

        pairs: list[tuple[str, str]] = []
        for key, value in (query_params or {}).items():
            if not isinstance(key, str) or not key:
                raise TransportError(f"Failed to build URL: invalid parameter name {key!r}", url=base_url)
            if not isinstance(value, str):
                raise TransportError(
                    f"Failed to build URL: parameter '{key}' must be a string, got {type(value).__name__}",
                    url=base_url,
                )
            pairs.append((key, value))

        if pairs:
            url = url.copy_with(params=list(url.params.multi_items()) + pairs)
        return str(url)

    def build_request(
        self,
        base_url: str,
        query_params: Optional[Mapping[str, str]],
        token: str,
        body: bytes,
    ) -> OutboundRequest:
        return OutboundRequest(
            url=self.build_url(base_url, query_params),
            query_params=tuple((query_params or {}).items()),
            body=body,
            headers=self.build_headers(token),
        )

    @asynccontextmanager
    async def _client_context(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        """Yield the shared client, or a per-call client that is closed afterwards."""
        if self._http_client is not None:
            yield self._http_client
            return
        if self.timeout is not None:
            client = create_http_client(timeout=self.timeout)
        else:
            client = create_http_client()
        async with client:
            yield client

    async def send(
        self,
        base_url: str,
        query_params: Optional[Mapping[str, str]],
        token: str,
        body: bytes,
    ) -> InboundResponse:
        """POST body to base_url and return the status and full response body.

        Raises:
            TransportError: On URL construction, connection or read failure.
        """
        request = self.build_request(base_url, query_params, token, body)
        started = time.perf_counter()
        try:
            async with self._client_context() as client:
                response = await client.post(
                    request.url,
                    content=request.body,
                    headers=dict(request.headers),
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(
                f"Error calling API: {type(e).__name__}: {e}",
                extra=get_log_context(
                    duration_ms=round((time.perf_counter() - started) * 1000, 2)
                ),
            )
            raise TransportError(f"Error calling API: {e}", url=request.url) from e

        return InboundResponse(status_code=response.status_code, body=response.content)
