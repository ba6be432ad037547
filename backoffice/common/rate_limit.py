"""Rate limiting configuration using slowapi.

Provides a module-level Limiter instance that routers import for
per-endpoint limits (e.g. the unauthenticated KYC submission), wired into
the FastAPI app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from backoffice.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.RATE_LIMIT_ENABLED,
)
