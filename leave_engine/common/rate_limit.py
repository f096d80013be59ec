"""Rate limiting for the leave engine HTTP surface (slowapi).

Routers import ``limiter`` for per-endpoint limits; ``main.create_app`` wires
it into the application.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from leave_engine.config import settings

# Keyed by client IP; write-heavy routes tighten this with @limiter.limit().
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)
