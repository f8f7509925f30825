"""Error classification, retry policy and error statistics for chat persistence."""

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeVar

import httpx

from app.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorKind(StrEnum):
    """Fixed set of failure kinds."""

    NETWORK = "NETWORK_ERROR"
    DATABASE = "DATABASE_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    AUTHENTICATION = "AUTHENTICATION_ERROR"
    RATE_LIMIT = "RATE_LIMIT_ERROR"
    TIMEOUT = "TIMEOUT_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.DATABASE, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT})

LOCALIZED_MESSAGES: dict[str, dict[ErrorKind, str]] = {
    "en": {
        ErrorKind.NETWORK: "Network error occurred. Please check your connection.",
        ErrorKind.DATABASE: "Database error occurred. Please try again later.",
        ErrorKind.VALIDATION: "Invalid input data. Please check your input.",
        ErrorKind.AUTHENTICATION: "Authentication required. Please log in.",
        ErrorKind.RATE_LIMIT: "Too many requests. Please wait and try again.",
        ErrorKind.TIMEOUT: "Operation timed out. Please try again.",
        ErrorKind.UNKNOWN: "An unexpected error occurred.",
    },
    "ja": {
        ErrorKind.NETWORK: "ネットワークエラーが発生しました。接続を確認してください。",
        ErrorKind.DATABASE: "データベースエラーが発生しました。しばらく待ってから再試行してください。",
        ErrorKind.VALIDATION: "入力データに問題があります。内容を確認してください。",
        ErrorKind.AUTHENTICATION: "認証が必要です。ログインしてください。",
        ErrorKind.RATE_LIMIT: "リクエストが多すぎます。しばらく待ってから再試行してください。",
        ErrorKind.TIMEOUT: "処理がタイムアウトしました。再試行してください。",
        ErrorKind.UNKNOWN: "予期しないエラーが発生しました。",
    },
}


class ChatError(Exception):
    """A classified failure with a fixed retryable verdict."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: str | None = None,
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.code = code
        self.context = context or {}
        self.original_error = original_error
        self.timestamp = datetime.now(UTC)

    @property
    def retryable(self) -> bool:
        """Whether this kind of failure may succeed if attempted again."""
        return self.kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return f"ChatError(kind={self.kind.value}, retryable={self.retryable}, message={self.message!r})"


@dataclass
class RetryConfig:
    """Retry and backoff settings. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    auto_retry: bool = True


def backoff_delay(attempt: int, config: RetryConfig | None = None) -> float:
    """Delay to wait after the given failed attempt (1-based) before the next one."""
    config = config or RetryConfig()
    return min(config.base_delay * config.backoff_multiplier ** (attempt - 1), config.max_delay)


def _status_code(error: BaseException) -> int | None:
    """Pull an HTTP status out of errors that carry one."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and value.isdigit():
            value = int(value)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def classify_error(error: object, context: dict[str, Any] | None = None) -> ChatError:
    """Map an arbitrary failure onto an ErrorKind.

    Matching runs in a fixed order and the first hit wins:
    network, database, authentication, validation, rate limit, timeout,
    then unknown. A message containing both "timeout" and "network" is
    therefore a network error, and a bare "timeout" is a database error.

    Args:
        error: Exception (or any other raised value) to classify
        context: Extra details kept on the resulting ChatError

    Returns:
        ChatError describing the failure
    """
    if isinstance(error, ChatError):
        return error

    if not isinstance(error, BaseException):
        return ChatError(ErrorKind.UNKNOWN, LOCALIZED_MESSAGES["en"][ErrorKind.UNKNOWN], context=context)

    status = _status_code(error)
    raw_message = str(error)
    text = raw_message.lower()

    def has_status(code: int) -> bool:
        # A known status wins over digits that happen to appear in URLs or ids
        return status == code if status is not None else str(code) in text

    def build(kind: ErrorKind, message: str | None = None) -> ChatError:
        return ChatError(
            kind,
            message or LOCALIZED_MESSAGES["en"][kind],
            code=str(status) if status is not None else None,
            context=context,
            original_error=error,
        )

    if (
        isinstance(error, httpx.NetworkError | ConnectionError)
        or "network" in text
        or "fetch" in text
        or "connection" in text
    ):
        return build(ErrorKind.NETWORK)

    if any(marker in text for marker in ("database", "sql", "connection", "timeout", "deadlock")):
        return build(ErrorKind.DATABASE)

    if any(marker in text for marker in ("unauthorized", "authentication", "login")) or has_status(401):
        return build(ErrorKind.AUTHENTICATION)

    if any(marker in text for marker in ("validation", "invalid", "required")) or has_status(400):
        return build(ErrorKind.VALIDATION)

    if any(marker in text for marker in ("rate limit", "too many requests")) or has_status(429):
        return build(ErrorKind.RATE_LIMIT)

    if isinstance(error, TimeoutError | httpx.TimeoutException) or "timeout" in text or "aborted" in text:
        return build(ErrorKind.TIMEOUT)

    return build(ErrorKind.UNKNOWN, raw_message or None)


T = TypeVar("T")


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: Callable[[int, ChatError], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an async operation, retrying retryable failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory
        config: Retry settings (defaults to RetryConfig())
        on_retry: Called with (failed attempt, error) before each backoff
        sleep: Awaitable sleep, injectable for tests

    Returns:
        Result of the first successful attempt

    Raises:
        ChatError: On a non-retryable failure or when attempts are exhausted
    """
    config = config or RetryConfig()

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            error = classify_error(e, {"attempt": attempt, "max_attempts": config.max_attempts})

            if not error.retryable or attempt == config.max_attempts:
                if error is e:
                    raise
                raise error from e

            if on_retry:
                on_retry(attempt, error)

            delay = backoff_delay(attempt, config)
            logger.info(f"Retrying in {delay:.1f}s (attempt {attempt}/{config.max_attempts}): {error.message}")
            await sleep(delay)

    raise ChatError(ErrorKind.UNKNOWN, f"Failed to complete operation after {config.max_attempts} attempts")


def get_localized_error_message(error: ChatError, locale: str = "en") -> str:
    """User-facing message for an error in the given locale."""
    return LOCALIZED_MESSAGES.get(locale, {}).get(error.kind, error.message)


@dataclass
class ErrorStats:
    """Aggregate error counts for one session.

    Passed explicitly to whoever records errors so each session (and each
    test) owns its own counters.
    """

    max_history_size: int = 100
    counts: Counter = field(default_factory=Counter)
    history: list[ChatError] = field(default_factory=list)

    def record_error(self, error: ChatError) -> None:
        """Count an error and keep it in the recent history."""
        self.counts[error.kind] += 1
        self.history.insert(0, error)
        del self.history[self.max_history_size :]

        logger.warning(f"Error recorded: {error.kind.value} (count {self.counts[error.kind]}): {error.message}")

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of totals, per-kind counts, recent errors and the most common kind."""
        most_common = self.counts.most_common(1)
        return {
            "total_errors": sum(self.counts.values()),
            "errors_by_kind": {kind.value: count for kind, count in self.counts.items()},
            "recent_errors": self.history[:10],
            "most_common_error": most_common[0][0] if most_common else None,
        }

    def clear_stats(self) -> None:
        """Forget all recorded errors."""
        self.counts.clear()
        self.history.clear()


def log_error_details(error: ChatError, log: logging.Logger | None = None) -> None:
    """Dump every field of an error at debug level."""
    log = log or logger
    log.debug(
        f"Error details - kind: {error.kind.value}, message: {error.message}, retryable: {error.retryable}, "
        f"timestamp: {error.timestamp.isoformat()}, code: {error.code}, context: {error.context}",
        exc_info=error.original_error,
    )
