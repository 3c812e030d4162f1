"""Retry policy with increasing backoff for per-element mutations.

Provides the two retry primitives used by the batch scheduler:
- retry_with_backoff: retry one unit of work with bounded attempts
- batch_retry: retry many units independently, keeping input order and
  replacing exhausted units with a RetryFailure marker

Usage:
    policy = RetryPolicy(max_attempts=3, delays=(1.0, 2.0, 4.0))

    async def apply():
        return await applier.apply_replacement(element_id, source_id, target_id)

    value = await retry_with_backoff(apply, policy)
"""

import asyncio
import inspect
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence, TypeVar, Union

import structlog

from stylegov.utils.exceptions import CatastrophicError, RetryExhaustedError

logger = structlog.get_logger()

T = TypeVar("T")

UnitOfWork = Callable[[], Union[Awaitable[T], T]]


class ErrorType(str, Enum):
    """Classification of failures for retry and reporting decisions."""

    TRANSIENT = "transient"  # Temporary, retry likely to succeed
    PERSISTENT = "persistent"  # Won't resolve by retrying (permissions etc.)
    VALIDATION = "validation"  # Bad input or missing reference
    PARTIAL = "partial"  # This element only (locked, wrong kind)


TRANSIENT_PATTERNS = ("timeout", "429", "503", "network", "connection", "rate limit", "try again")
VALIDATION_PATTERNS = ("invalid", "not found", "does not exist", "cannot be the same")
PARTIAL_PATTERNS = ("locked", "read-only", "not a text layer", "unsupported element")
PERMISSION_PATTERNS = ("permission", "access denied", "unauthorized", "forbidden")


def describe_error(error: BaseException) -> str:
    """Get a non-empty message for an exception."""
    message = str(error)
    return message if message else type(error).__name__


def normalize_error(value: Any) -> Exception:
    """Turn any failure value into an Exception.

    Units of work and mutation appliers may report failure with a bare string
    or another non-exception value; downstream code only ever sees Exceptions.

    Args:
        value: The failure value.

    Returns:
        An Exception describing the failure.
    """
    if isinstance(value, Exception):
        return value
    if value is None or value is False:
        return RuntimeError("Unknown error")
    return RuntimeError(str(value))


def classify_error(error: BaseException) -> ErrorType:
    """Classify an error by its message and type.

    Args:
        error: Exception to classify.

    Returns:
        ErrorType classification. Unknown errors are PERSISTENT so they are
        never retried forever by a transient-only policy.
    """
    if isinstance(error, RetryExhaustedError):
        error = error.last_error

    message = describe_error(error).lower()

    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return ErrorType.TRANSIENT

    for pattern in TRANSIENT_PATTERNS:
        if pattern in message:
            return ErrorType.TRANSIENT

    for pattern in VALIDATION_PATTERNS:
        if pattern in message:
            return ErrorType.VALIDATION

    for pattern in PARTIAL_PATTERNS:
        if pattern in message:
            return ErrorType.PARTIAL

    return ErrorType.PERSISTENT


def is_permission_error(error: BaseException) -> bool:
    """Check whether an error reads as a permission problem."""
    if isinstance(error, RetryExhaustedError):
        error = error.last_error
    if isinstance(error, PermissionError):
        return True
    message = describe_error(error).lower()
    return any(pattern in message for pattern in PERMISSION_PATTERNS)


def is_transient(error: BaseException) -> bool:
    """Retry predicate that only retries transient failures."""
    return classify_error(error) == ErrorType.TRANSIENT


@dataclass
class RetryPolicy:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Total attempts including the first call (>= 1).
        delays: Seconds to wait before attempt 2, 3, ... The last value is
            reused once attempts run past the end of the sequence.
        on_retry: Called as on_retry(attempt, error) before each retry.
        should_retry: Optional predicate; returning False stops retrying.
        abort_on: Exception types that are re-raised immediately and never
            converted into a failure.
    """

    max_attempts: int = 3
    delays: Sequence[float] = (1.0, 2.0, 4.0)
    on_retry: Callable[[int, Exception], None] | None = None
    should_retry: Callable[[Exception], bool] | None = None
    abort_on: tuple[type[BaseException], ...] = field(
        default_factory=lambda: (CatastrophicError,)
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not self.delays:
            raise ValueError("delays must contain at least one value")
        if any(delay < 0 for delay in self.delays):
            raise ValueError("delays must be non-negative")
        self.delays = tuple(self.delays)

    def delay_for(self, attempt: int) -> float:
        """Delay after a failed attempt (1-indexed)."""
        index = min(attempt - 1, len(self.delays) - 1)
        return self.delays[index]

    @classmethod
    def from_env(cls, **overrides: Any) -> "RetryPolicy":
        """Build a policy from STYLEGOV_RETRY_* environment variables."""
        values: dict[str, Any] = {}

        max_attempts = os.environ.get("STYLEGOV_RETRY_MAX_ATTEMPTS")
        if max_attempts:
            values["max_attempts"] = int(max_attempts)

        delays = os.environ.get("STYLEGOV_RETRY_DELAYS")
        if delays:
            values["delays"] = tuple(float(d) for d in delays.split(",") if d.strip())

        values.update(overrides)
        return cls(**values)


# Preset policies
RETRY_POLICIES = {
    "default": RetryPolicy(max_attempts=3, delays=(1.0, 2.0, 4.0)),
    "fast": RetryPolicy(max_attempts=3, delays=(0.1, 0.2, 0.4)),
    "none": RetryPolicy(max_attempts=1, delays=(0.0,)),
}


def get_retry_policy(preset: str = "default") -> RetryPolicy:
    """Get a retry policy preset (default, fast, none)."""
    return RETRY_POLICIES.get(preset, RETRY_POLICIES["default"])


@dataclass(frozen=True)
class RetryFailure:
    """Failure marker occupying the slot of an exhausted unit of work."""

    error: str
    attempts: int = 0
    reason: str = ""
    failed: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"failed": True, "error": self.error}


def is_retry_failure(value: Any) -> bool:
    """Check if a batch_retry slot holds a failure marker.

    True for RetryFailure instances and for plain mappings shaped exactly like
    the wire form {"failed": True, "error": "<message>"}. False for None,
    primitives and every other shape.
    """
    if isinstance(value, RetryFailure):
        return True
    if isinstance(value, Mapping):
        return (
            set(value.keys()) == {"failed", "error"}
            and value["failed"] is True
            and isinstance(value["error"], str)
        )
    return False


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def _call(func: UnitOfWork) -> Any:
    result = func()
    if inspect.isawaitable(result):
        result = await result
    return result


async def retry_with_backoff(
    func: UnitOfWork,
    policy: RetryPolicy | None = None,
    context: dict[str, Any] | None = None,
) -> Any:
    """Execute a unit of work, retrying failures with increasing delay.

    Args:
        func: Sync or async callable taking no arguments.
        policy: Retry configuration. Defaults to the "default" preset.
        context: Optional key-values added to log events.

    Returns:
        The unit's return value.

    Raises:
        RetryExhaustedError: After the last allowed attempt failed. The last
            underlying error is kept on ``last_error`` and as ``__cause__``.
        CatastrophicError: Re-raised untouched (see RetryPolicy.abort_on).
    """
    policy = policy or get_retry_policy()
    context = context or {}
    last_error: Exception | None = None
    attempts = 0

    for attempt in range(1, policy.max_attempts + 1):
        attempts = attempt
        try:
            return await _call(func)
        except policy.abort_on:
            raise
        except Exception as e:
            last_error = e

        if attempt >= policy.max_attempts:
            break

        if policy.should_retry is not None and not policy.should_retry(last_error):
            logger.debug(
                "Not retrying non-retryable error",
                error=describe_error(last_error),
                attempt=attempt,
                **context,
            )
            break

        if policy.on_retry is not None:
            policy.on_retry(attempt, last_error)

        delay = policy.delay_for(attempt)
        logger.warning(
            "Retrying operation",
            error=describe_error(last_error),
            attempt=attempt,
            next_delay=delay,
            **context,
        )
        await _sleep(delay)

    raise RetryExhaustedError(attempts, last_error) from last_error


async def batch_retry(
    funcs: Sequence[UnitOfWork],
    policy: RetryPolicy | None = None,
) -> list[Any]:
    """Retry each unit independently and collect results in input order.

    Units run concurrently. A unit that exhausts its attempts yields a
    RetryFailure in its slot; the others are unaffected. Every unit settles
    before this returns.

    Args:
        funcs: Units of work.
        policy: Retry configuration shared by every unit.

    Returns:
        One entry per input unit: its value or a RetryFailure.

    Raises:
        CatastrophicError: If any unit raised one (after all units settled).
    """
    policy = policy or get_retry_policy()

    async def run(func: UnitOfWork) -> Any:
        try:
            return await retry_with_backoff(func, policy)
        except RetryExhaustedError as e:
            return RetryFailure(
                error=e.message,
                attempts=e.attempts,
                reason=describe_error(e.last_error),
            )

    settled = await asyncio.gather(*(run(func) for func in funcs), return_exceptions=True)

    for outcome in settled:
        if isinstance(outcome, BaseException):
            raise outcome

    return list(settled)
