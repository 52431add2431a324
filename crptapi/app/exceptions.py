"""Custom exceptions for the CRPT API client.

Every failure surfaced by the client is a ``CrptApiError`` subclass.
Nothing is retried internally; callers inspect ``error_code`` and the
structured fields to decide on a retry policy of their own.
"""

from typing import Any


class CrptApiError(Exception):
    """Base class for client exceptions with a machine-readable code.

    All custom exceptions should inherit from this class and define
    their specific error_code for consistent reporting.
    """
    error_code: str = "crpt_api_error"

    def __init__(self, message: str = "CRPT API error"):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a structured dict suitable for logs and reports."""
        return {"error": self.error_code, "message": self.message}


class ConfigurationError(CrptApiError):
    """Raised for invalid constructor arguments or an unknown endpoint key.

    Fatal to the call; retrying without changing configuration is pointless.
    """
    error_code = "configuration_error"


class CancellationError(CrptApiError):
    """Raised when the caller's cancel signal fires while waiting for a permit.

    No request was sent.
    """
    error_code = "cancelled"

    def __init__(self, detail: str = "Cancelled while waiting for a rate limit permit"):
        super().__init__(detail)


class AuthenticationError(CrptApiError):
    """Raised when the token provider fails or returns an unusable token."""
    error_code = "authentication_error"

    def __init__(self, detail: str = "Failed to obtain an authentication token"):
        self.detail = detail
        super().__init__(detail)


class TransportError(CrptApiError):
    """Raised on URL construction, connection or response-read failures."""
    error_code = "transport_error"

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.url is not None:
            data["url"] = self.url
        return data


class UnexpectedStatusError(CrptApiError):
    """Raised when the API answers with anything other than 200.

    The raw body is kept as-is: the API usually puts a machine-readable
    error payload there.
    """
    error_code = "unexpected_status"

    def __init__(self, status_code: int, body: bytes, url: str | None = None):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"Unexpected response from API. {status_code} : {self.text}")

    @property
    def text(self) -> str:
        """Response body decoded as UTF-8."""
        return self.body.decode("utf-8", errors="replace")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        data["body"] = self.text
        if self.url is not None:
            data["url"] = self.url
        return data


class DecodingError(CrptApiError):
    """Raised when a 200 response body cannot be parsed into the expected shape."""
    error_code = "decoding_error"

    def __init__(self, message: str, body: bytes = b""):
        self.body = body
        super().__init__(message)
