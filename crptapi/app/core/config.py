from datetime import timedelta
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from crptapi.app.exceptions import ConfigurationError

# Tokens issued by the CRPT auth service live for ten hours.
DEFAULT_TOKEN_LIFESPAN = timedelta(minutes=600)

INTRODUCE_GOODS_PATH = "/api/v3/lk/documents/create"

LOG_FORMATS = ("text", "structured", "json")


class Settings(BaseSettings):
    """Client settings loaded from environment variables.

    All settings can be configured via ``CRPT_``-prefixed environment
    variables or a .env file, e.g. ``CRPT_REQUESTS_PER_WINDOW=5``.
    """

    # API location
    api_base_url: str = "https://ismp.crpt.ru"
    # Logical operation name -> absolute URL. Empty means "derive from api_base_url".
    endpoints: dict[str, str] = Field(default_factory=dict)

    # Rate limiting: at most requests_per_window calls every window_seconds
    window_seconds: float = 1.0
    requests_per_window: int = 10
    limiter_stop_timeout: float = 5.0

    # Authentication
    token_lifespan_minutes: int = 600

    # HTTP Client connection pool settings
    httpx_timeout: float = 60.0  # Default timeout for all operations
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 60.0  # Time to read response data
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 20
    httpx_max_keepalive_connections: int = 10

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @property
    def endpoint_table(self) -> dict[str, str]:
        """Build the endpoint table.

        Explicit ``endpoints`` win; otherwise the known operations are
        derived from ``api_base_url``.
        """
        if self.endpoints:
            return dict(self.endpoints)
        base = self.api_base_url.rstrip("/")
        return {"introduce_goods": f"{base}{INTRODUCE_GOODS_PATH}"}

    @property
    def token_lifespan(self) -> timedelta:
        return timedelta(minutes=self.token_lifespan_minutes)

    @field_validator("requests_per_window", "token_lifespan_minutes")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate rate and lifespan values are at least 1."""
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator(
        "window_seconds",
        "limiter_stop_timeout",
        "httpx_timeout",
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "httpx_write_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("Duration values must be positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")
        return v

    model_config = SettingsConfigDict(env_prefix="CRPT_", env_file=".env", extra="ignore")


class ClientConfig(BaseModel):
    """Validated, immutable construction parameters of a client.

    Use :meth:`build` rather than the constructor so that invalid values
    surface as :class:`ConfigurationError`.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    window: timedelta
    requests_per_window: int
    endpoints: dict[str, str]
    token_lifespan: timedelta = DEFAULT_TOKEN_LIFESPAN

    @field_validator("window", "token_lifespan")
    @classmethod
    def validate_duration(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("duration must be positive")
        return v

    @field_validator("requests_per_window")
    @classmethod
    def validate_requests_per_window(cls, v: int) -> int:
        if v < 1:
            raise ValueError("requests_per_window must be at least 1")
        return v

    @field_validator("endpoints")
    @classmethod
    def validate_endpoints(cls, v: dict[str, str]) -> dict[str, str]:
        for key, url in v.items():
            if not key or not url:
                raise ValueError("endpoint names and URLs must be non-empty")
        return v

    @classmethod
    def build(
        cls,
        window: timedelta | float,
        requests_per_window: int,
        endpoints: Mapping[str, str],
        token_lifespan: timedelta | float = DEFAULT_TOKEN_LIFESPAN,
    ) -> "ClientConfig":
        """Validate and build a config, raising ConfigurationError on bad input.

        Numeric ``window`` and ``token_lifespan`` values are seconds.
        """
        try:
            return cls(
                window=window,
                requests_per_window=requests_per_window,
                endpoints=dict(endpoints),
                token_lifespan=token_lifespan,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid client configuration: {_describe(e)}") from e

    @property
    def window_seconds(self) -> float:
        return self.window.total_seconds()

    def resolve(self, endpoint_key: str) -> str:
        """Look up the URL for a logical operation name."""
        try:
            return self.endpoints[endpoint_key]
        except KeyError:
            raise ConfigurationError(
                f"Unknown endpoint '{endpoint_key}'. "
                f"Known endpoints: {', '.join(sorted(self.endpoints)) or '(none)'}"
            ) from None


def _describe(error: ValidationError) -> str:
    parts: list[str] = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "config"
        parts.append(f"{loc}: {item['msg']}")
    return "; ".join(parts)


def load_settings(**overrides: Any) -> Settings:
    """Load settings, converting validation failures to ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {_describe(e)}") from e


# Global settings instance
settings = Settings()
