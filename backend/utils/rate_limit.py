"""Rate limiting using slowapi with in-memory storage"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)

# Stricter limits for credential endpoints
auth_limit = limiter.limit(settings.RATE_LIMIT_AUTH)
