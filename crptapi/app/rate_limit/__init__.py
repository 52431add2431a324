"""Rate limiting for outbound API calls.

Fixed-window admission: N permits per window, replenished all at once
by a background task owned by the limiter.
"""

from crptapi.app.rate_limit.models import WindowStats
from crptapi.app.rate_limit.window import WindowLimiter

__all__ = [
    "WindowLimiter",
    "WindowStats",
]
