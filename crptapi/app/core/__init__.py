"""Core utilities for the CRPT API client."""

from crptapi.app.core.config import ClientConfig, Settings, load_settings, settings
from crptapi.app.core.http_client import create_http_client, get_http_client, init_http_client
from crptapi.app.core.logging import get_log_context, get_logger, setup_logging
from crptapi.app.core.token_cache import (
    CallableTokenProvider,
    TokenCache,
    TokenProvider,
    TokenRecord,
)

__all__ = [
    "ClientConfig",
    "Settings",
    "load_settings",
    "settings",
    "create_http_client",
    "get_http_client",
    "init_http_client",
    "get_log_context",
    "get_logger",
    "setup_logging",
    "CallableTokenProvider",
    "TokenCache",
    "TokenProvider",
    "TokenRecord",
]
