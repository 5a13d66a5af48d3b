"""Rate limiting for the public endpoints.

Code validation is open to anonymous visitors, so it gets a tighter
per-address limit than the default.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from fallfest.settings import settings

VALIDATE_CODE_LIMIT = settings.validate_rate_limit

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.default_rate_limit],
    storage_uri="memory://",
    enabled=settings.env == "production",
)
