"""Utility modules for the prospect data service."""

from .config import Config
from .cache import CacheManager
from .rate_limiter import FixedWindowRateLimiter

__all__ = [
    "Config",
    "CacheManager",
    "FixedWindowRateLimiter"
]
