"""Explicit retry policy shared by the job queues and direct provider calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ragstream.errors import UpstreamError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with exponential backoff.

    Attributes
    ----------
    max_attempts:
        Total number of tries, including the first one.
    base_delay:
        Seconds to wait before the first retry.
    factor:
        Multiplier applied to the delay for every further retry.
    max_delay:
        Upper bound for a single wait.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    factor: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.base_delay * self.factor ** (attempt - 1), self.max_delay)

    def should_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts

    def retrying(self) -> AsyncRetrying:
        """Tenacity controller equivalent to this policy."""
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.factor,
                max=self.max_delay,
            ),
            retry=retry_if_exception_type(UpstreamError),
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``fn(*args, **kwargs)``, retrying upstream failures."""
        async for attempt in self.retrying():
            with attempt:
                return await fn(*args, **kwargs)
        raise AssertionError("unreachable")  # pragma: no cover
