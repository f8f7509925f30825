"""Request rate limiting for the chat API."""

import os

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from app.utils.logging import get_logger

logger = get_logger(__name__)


class ChatRateLimiter:
    """Moving-window limiter keyed by client identifier."""

    def __init__(self, limit: str | None = None):
        """Initialize rate limiter.

        Args:
            limit: Rate expression such as "30/minute" (defaults to CHAT_RATE_LIMIT)
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)
        self.limit = parse(limit or os.getenv("CHAT_RATE_LIMIT", "30/minute"))

    def hit(self, identifier: str) -> bool:
        """Record a request; False when the client is over its limit."""
        allowed = self.limiter.hit(self.limit, "chat", identifier)
        if not allowed:
            logger.warning(f"Rate limit {self.limit} exceeded for {identifier}")
        return allowed

    def reset(self) -> None:
        self.storage.reset()


_rate_limiter: ChatRateLimiter | None = None


def get_rate_limiter() -> ChatRateLimiter:
    """Get or create the process-wide chat rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = ChatRateLimiter()
    return _rate_limiter
