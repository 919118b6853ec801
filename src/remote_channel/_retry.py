"""Retry policy, cancellation and the tenacity-backed retry executor."""

from __future__ import annotations

import dataclasses
import logging
import random
import threading
import time
from typing import TYPE_CHECKING, Any, Optional, TypeVar

import tenacity

from remote_channel._errors import InvalidArgument, RetryExhausted, RetryInterrupted, is_retryable

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class RetrySettings:
    """Immutable backoff policy shared by any number of concurrent executions.

    The budget is spent when either limit is reached. ``max_retries`` is a hard
    cap; the elapsed-time limit only applies once ``min_attempts`` attempts were
    made.

    :param max_retries: Retries allowed after the first attempt (``None``: unbounded).
    :param max_elapsed: Seconds after which no new attempt starts (``None``: unbounded).
    :param min_attempts: Attempts guaranteed before ``max_elapsed`` is honoured.
    :param initial_delay: Delay in seconds after the first failed attempt.
    :param multiplier: Growth factor applied per failed attempt.
    :param max_delay: Upper bound for a single delay.
    :param jitter: Fraction of each delay that may be randomly removed.
    :raises InvalidArgument: If any parameter is out of range.
    """

    max_retries: Optional[int] = 6
    max_elapsed: Optional[float] = 50.0
    min_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 32.0
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.max_retries is None and self.max_elapsed is None:
            raise InvalidArgument("At least one of max_retries and max_elapsed must be set")
        if self.max_retries is not None and self.max_retries < 0:
            raise InvalidArgument(f"max_retries must be >= 0, got {self.max_retries}")
        if self.max_elapsed is not None and self.max_elapsed <= 0:
            raise InvalidArgument(f"max_elapsed must be > 0, got {self.max_elapsed}")
        if self.min_attempts < 1:
            raise InvalidArgument(f"min_attempts must be >= 1, got {self.min_attempts}")
        if self.initial_delay < 0:
            raise InvalidArgument(f"initial_delay must be >= 0, got {self.initial_delay}")
        if self.multiplier < 1:
            raise InvalidArgument(f"multiplier must be >= 1, got {self.multiplier}")
        if self.max_delay < self.initial_delay:
            raise InvalidArgument(
                f"max_delay ({self.max_delay}) must be >= initial_delay ({self.initial_delay})"
            )
        if not 0 <= self.jitter <= 1:
            raise InvalidArgument(f"jitter must be within [0, 1], got {self.jitter}")

    @classmethod
    def default(cls) -> RetrySettings:
        return cls()

    @classmethod
    def no_retries(cls) -> RetrySettings:
        """Settings that make exactly one attempt."""
        return cls(max_retries=0, max_elapsed=None, min_attempts=1, initial_delay=0.0, max_delay=0.0, jitter=0.0)

    def delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        if attempt < 1:
            raise InvalidArgument(f"attempt must be >= 1, got {attempt}")
        try:
            base = self.initial_delay * self.multiplier ** (attempt - 1)
        except OverflowError:
            base = self.max_delay
        base = min(base, self.max_delay)
        if not self.jitter or not base:
            return base
        source = rng if rng is not None else random
        return base - source.uniform(0, self.jitter * base)

    def should_stop(self, attempts: int, elapsed: float) -> bool:
        """Return ``True`` when no further attempt may be made."""
        if self.max_retries is not None and attempts > self.max_retries:
            return True
        return self.max_elapsed is not None and elapsed >= self.max_elapsed and attempts >= self.min_attempts

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetrySettings:
        """Construct from a plain dict, rejecting unknown keys.

        :raises InvalidArgument: On unknown keys or out-of-range values.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidArgument(f"Unknown retry settings: {unknown}. Known settings: {sorted(known)}")
        return cls(**data)


class Cancellation:
    """Thread-safe cancellation signal observed by backoff waits."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Block for up to ``timeout`` seconds; return ``True`` if cancelled."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"Cancellation(cancelled={self.cancelled})"


class RetryExecutor:
    """Runs operations under a :class:`RetrySettings` budget.

    Callers only ever observe one of four outcomes: the operation's result,
    the operation's own non-retryable error (unchanged), :class:`RetryExhausted`
    or :class:`RetryInterrupted`. Each unit of work handed to :meth:`execute`
    must be idempotent.

    :param settings: The backoff policy (defaults to ``RetrySettings()``).
    :param is_retryable: Predicate deciding whether a failure is retried.
    :param cancellation: Signal that aborts backoff waits.
    :param clock: Monotonic clock used for the elapsed-time budget.
    :param rng: Random source for jitter.
    """

    def __init__(
        self,
        settings: Optional[RetrySettings] = None,
        *,
        is_retryable: Callable[[BaseException], bool] = is_retryable,
        cancellation: Optional[Cancellation] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._settings = settings or RetrySettings()
        self._is_retryable = is_retryable
        self._cancellation = cancellation or Cancellation()
        self._clock = clock
        self._rng = rng

    @property
    def settings(self) -> RetrySettings:
        return self._settings

    @property
    def cancellation(self) -> Cancellation:
        return self._cancellation

    def __repr__(self) -> str:
        return f"RetryExecutor(settings={self._settings!r})"

    def execute(self, operation: Callable[[], T], *, description: str = "") -> T:
        """Call ``operation`` until it succeeds, fails fatally, or the budget is spent.

        :raises RetryExhausted: If retryable failures outlasted the budget.
        :raises RetryInterrupted: If cancelled during a backoff wait.
        """
        label = description or getattr(operation, "__name__", "operation")
        started = self._clock()
        attempts = 0

        def _count(state: tenacity.RetryCallState) -> None:
            nonlocal attempts
            attempts = state.attempt_number

        def _stop(state: tenacity.RetryCallState) -> bool:
            return self._settings.should_stop(state.attempt_number, self._clock() - started)

        def _wait(state: tenacity.RetryCallState) -> float:
            return self._settings.delay(state.attempt_number, self._rng)

        def _sleep(seconds: float) -> None:
            if self._cancellation.wait(seconds):
                raise RetryInterrupted(f"Interrupted while waiting to retry {label}", attempts=attempts)

        retrying = tenacity.Retrying(
            retry=tenacity.retry_if_exception(self._is_retryable),
            stop=_stop,
            wait=_wait,
            sleep=_sleep,
            before=_count,
            before_sleep=tenacity.before_sleep_log(log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
            reraise=False,
        )
        try:
            return retrying(operation)
        except tenacity.RetryError as exc:
            last_error = exc.last_attempt.exception()
            raise RetryExhausted(
                f"Gave up on {label} after {attempts} attempt(s): {last_error}",
                last_error=last_error,
                attempts=attempts,
                elapsed=self._clock() - started,
            ) from last_error


def run_with_retries(
    operation: Callable[[], T],
    settings: Optional[RetrySettings] = None,
    is_retryable: Callable[[BaseException], bool] = is_retryable,
    *,
    cancellation: Optional[Cancellation] = None,
) -> T:
    """Functional shortcut for ``RetryExecutor(...).execute(operation)``."""
    executor = RetryExecutor(settings, is_retryable=is_retryable, cancellation=cancellation)
    return executor.execute(operation)
