"""Single retry combinator shared by every provider call site."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from director.errors import RetryExhausted, is_retryable

T = TypeVar("T")

Backoff = Callable[[int], float]

log = logging.getLogger(__name__)


def exponential_backoff(base: float, factor: float = 2.0, cap: float | None = None) -> Backoff:
    """Delay before retry ``attempt`` (1-based): ``base * factor**(attempt-1)``, capped."""

    def delay(attempt: int) -> float:
        value = base * (factor ** max(0, attempt - 1))
        if cap is not None:
            value = min(value, cap)
        return value

    return delay


def linear_backoff(step: float) -> Backoff:
    def delay(attempt: int) -> float:
        return step * max(1, attempt)

    return delay


@dataclass
class RetryPolicy:
    max_attempts: int
    backoff: Backoff
    retryable: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    async def run(self, operation: Callable[[], Awaitable[T]], label: str = "operation") -> T:
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                if not self.retryable(exc):
                    raise
                if attempt >= attempts:
                    raise RetryExhausted(label, attempt, exc) from exc
                delay = self.backoff(attempt)
                log.warning(
                    "retryable failure",
                    extra={"label": label, "attempt": attempt, "delay": delay, "error": str(exc)},
                )
                await self.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
