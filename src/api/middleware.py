"""Rate limiting shared by all routers (keyed on client address)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from src.config import settings

limiter = Limiter(key_func=get_remote_address)

# Applied per endpoint: ``@limiter.limit(RATE_LIMIT)``
RATE_LIMIT = settings.rate_limit
