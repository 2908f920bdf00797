"""
api/limiter.py -- Shared slowapi rate limiter for the auth and KYC routes.

api/main.py mounts it as middleware; the route modules decorate handlers with
@limiter.limit(settings.<route>_rate_limit). One instance for the whole app so
every route counts against the same store.

Keys are the client IP. RATE_LIMIT_STORAGE_URI selects the counter backend
(memory:// for a single worker, redis://... when running several).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_settings.rate_limit_storage_uri,
    enabled=_settings.rate_limit_enabled,
)
