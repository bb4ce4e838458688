from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional, Tuple


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class CircuitState:
    state: BreakerState = BreakerState.CLOSED
    consecutive_failures: int = 0
    opened_at: Optional[float] = None
    trial_in_flight: bool = False


# Transition functions: each returns the next state and never mutates.

def on_success(s: CircuitState) -> CircuitState:
    return CircuitState()


def on_failure(s: CircuitState, now: float, threshold: int) -> CircuitState:
    if s.state is BreakerState.HALF_OPEN:
        return CircuitState(
            state=BreakerState.OPEN,
            consecutive_failures=s.consecutive_failures + 1,
            opened_at=now,
        )
    failures = s.consecutive_failures + 1
    if failures >= threshold:
        return CircuitState(state=BreakerState.OPEN, consecutive_failures=failures, opened_at=now)
    return replace(s, consecutive_failures=failures)


def force_open(s: CircuitState, now: float) -> CircuitState:
    return CircuitState(state=BreakerState.OPEN, consecutive_failures=s.consecutive_failures, opened_at=now)


def on_attempt(s: CircuitState, now: float, cooldown_s: float) -> Tuple[CircuitState, bool]:
    """Return (next state, whether the call may reach the service)."""
    if s.state is BreakerState.CLOSED:
        return s, True
    if s.state is BreakerState.OPEN:
        if s.opened_at is not None and now - s.opened_at >= cooldown_s:
            return replace(s, state=BreakerState.HALF_OPEN, trial_in_flight=True), True
        return s, False
    # half-open: exactly one trial at a time
    if s.trial_in_flight:
        return s, False
    return replace(s, trial_in_flight=True), True


class CircuitBreaker:
    """
    Per-service breaker: closed -> open after `threshold` consecutive failures,
    open -> half-open after `cooldown_s`, half-open -> closed on one success or
    back to open on failure.
    """

    def __init__(
        self,
        service_id: str,
        *,
        threshold: int = 5,
        cooldown_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        on_change: Callable[[str, BreakerState, BreakerState], None] | None = None,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        if cooldown_s < 0:
            raise ValueError("cooldown_s must be >= 0")
        self.service_id = service_id
        self.threshold = int(threshold)
        self.cooldown_s = float(cooldown_s)
        self.clock = clock
        self.on_change = on_change
        self._lock = threading.Lock()
        self._s = CircuitState()

    @property
    def snapshot(self) -> CircuitState:
        with self._lock:
            return self._s

    @property
    def state(self) -> BreakerState:
        return self.snapshot.state

    def ready(self) -> bool:
        """True when a call would be let through right now (without claiming it)."""
        with self._lock:
            _, allowed = on_attempt(self._s, self.clock(), self.cooldown_s)
            return allowed

    def try_acquire(self) -> bool:
        return self._apply(lambda s: on_attempt(s, self.clock(), self.cooldown_s))

    def record_success(self) -> None:
        self._apply(lambda s: (on_success(s), True))

    def record_failure(self) -> None:
        self._apply(lambda s: (on_failure(s, self.clock(), self.threshold), True))

    def trip(self) -> None:
        self._apply(lambda s: (force_open(s, self.clock()), True))

    def release_trial(self) -> None:
        """Give back a half-open trial slot that ended without a verdict."""
        self._apply(lambda s: (replace(s, trial_in_flight=False), True))

    def reset(self) -> None:
        self._apply(lambda s: (CircuitState(), True))

    def _apply(self, transition: Callable[[CircuitState], Tuple[CircuitState, bool]]) -> bool:
        with self._lock:
            before = self._s.state
            self._s, result = transition(self._s)
            after = self._s.state
        if before is not after and self.on_change is not None:
            self.on_change(self.service_id, before, after)
        return result
