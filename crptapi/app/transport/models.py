"""Wire-level request and response records."""

import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from crptapi.app.exceptions import DecodingError


@dataclass(frozen=True)
class OutboundRequest:
    """A fully built POST, ready to hand to the HTTP client."""
    url: str
    query_params: tuple[tuple[str, str], ...]
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class InboundResponse:
    """Status code and raw body of one exchange."""
    status_code: int
    body: bytes

    @property
    def ok(self) -> bool:
        return self.status_code == 200

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Parse the body as JSON.

        Raises:
            DecodingError: If the body is not valid JSON.
        """
        try:
            return json.loads(self.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodingError(f"Response body is not valid JSON: {e}", body=self.body) from e
