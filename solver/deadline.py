import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from solver.models import describe_error, format_time, log


class DeadlineExceeded(Exception):
    def __init__(self, phase: str, elapsed: float, limit: float):
        super().__init__(
            f"Global timeout exceeded ({format_time(limit)}) before {phase} "
            f"(elapsed {format_time(elapsed)})"
        )
        self.phase = phase
        self.elapsed = elapsed
        self.limit = limit


class RetryExhausted(Exception):
    def __init__(self, phase: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{phase} gave up after {attempts} attempts: {describe_error(last_error)}"
        )
        self.phase = phase
        self.attempts = attempts
        self.last_error = last_error


class Deadline:
    """Wall-clock budget for one task.

    Checking is advisory: it only decides whether a new step may start, an
    in-flight call is never interrupted.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic,
                 start: Optional[float] = None):
        self.seconds = float(seconds)
        self._clock = clock
        self.start = clock() if start is None else start

    def elapsed(self) -> float:
        return self._clock() - self.start

    def expired(self) -> bool:
        return self.elapsed() > self.seconds

    def check(self, phase: str) -> None:
        if self.expired():
            raise DeadlineExceeded(phase, self.elapsed(), self.seconds)


@dataclass(frozen=True)
class RetryPolicy:
    delay: float = 1.0
    max_attempts: Optional[int] = None
    backoff: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        if self.backoff <= 1.0:
            return self.delay
        return min(self.max_delay, self.delay * (self.backoff ** (attempt - 1)))

    def exhausted(self, attempt: int) -> bool:
        return self.max_attempts is not None and attempt >= self.max_attempts


async def retry_until_deadline(
    phase: str,
    call: Callable[[], Awaitable[Any]],
    *,
    deadline: Optional[Deadline],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_error: Optional[Callable[[BaseException], None]] = None,
) -> Any:
    """Run ``call`` until it succeeds.

    The deadline is checked before every attempt. With the default policy
    there is no attempt cap, so a permanently failing dependency is retried
    until the deadline check trips. Passing ``deadline=None`` makes the policy
    the only bound.
    """
    attempt = 0
    while True:
        if deadline is not None:
            deadline.check(phase)
        attempt += 1
        try:
            return await call()
        except DeadlineExceeded:
            raise
        except Exception as exc:
            log(f"[{phase}]", f"failed (attempt {attempt}), retrying...", describe_error(exc))
            if on_error is not None:
                on_error(exc)
            if policy.exhausted(attempt):
                raise RetryExhausted(phase, attempt, exc) from exc
            await sleep(policy.delay_for(attempt))
