"""Shared slowapi limiter so routers and the app use one storage backend."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from peerlend.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)
