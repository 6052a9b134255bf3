"""Global rate limiter instance for SlowAPI."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from common.core.config import settings

# Redis-backed so limits hold across API pods. Multiple limits: both must be
# satisfied (whichever is hit first applies). Card endpoints add tighter
# per-route limits on top to slow down card testing.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["10/second", "300/minute"],
    storage_uri=settings.rate_limit_storage_uri or settings.redis_connection_url,
)
