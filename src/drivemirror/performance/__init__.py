"""Performance helpers."""

from .rate_limiter import AsyncRateLimiter

__all__ = ["AsyncRateLimiter"]
