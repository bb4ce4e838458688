from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from livescribe import events as ev
from livescribe.app.logging_setup import log_event
from livescribe.resilience.circuit import BreakerState, CircuitBreaker
from livescribe.resilience.errors import ErrorCategory, classify_error

SPEECH_RECOGNITION = "speech-recognition"
TRANSLATION = "translation"

T = TypeVar("T")


@dataclass(frozen=True)
class CallOutcome(Generic[T]):
    service_id: str
    ok: bool
    value: Optional[T] = None
    category: Optional[ErrorCategory] = None
    error: Optional[str] = None
    attempts: int = 0
    short_circuited: bool = False
    strategy: Optional[str] = None


@dataclass
class RecoveryHooks:
    # Switch the service to a cheaper setting; return False when nothing is left to reduce.
    reduce_quality: Optional[Callable[[], bool]] = None
    # Restore known-good settings after a configuration failure.
    reset_defaults: Optional[Callable[[], None]] = None


class ResilienceLayer:
    """
    Wraps every call to an external engine.

    Failures are classified and recovered according to their category; what
    cannot be recovered comes back as a failed CallOutcome instead of an
    exception. Each service has its own circuit breaker.
    """

    def __init__(
        self,
        *,
        max_retries: int = 2,
        base_delay_s: float = 1.0,
        max_delay_s: float = 8.0,
        breaker_threshold: int = 5,
        breaker_cooldown_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        events: ev.EventHub | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_retries = max(0, int(max_retries))
        self.base_delay_s = float(base_delay_s)
        self.max_delay_s = float(max_delay_s)
        self.breaker_threshold = int(breaker_threshold)
        self.breaker_cooldown_s = float(breaker_cooldown_s)
        self.clock = clock
        self.sleep = sleep
        self.events = events
        self.logger = logger

        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._hooks: Dict[str, RecoveryHooks] = {}
        self._config_warned: set[str] = set()

    def register(
        self,
        service_id: str,
        *,
        reduce_quality: Callable[[], bool] | None = None,
        reset_defaults: Callable[[], None] | None = None,
    ) -> None:
        with self._lock:
            self._hooks[service_id] = RecoveryHooks(
                reduce_quality=reduce_quality,
                reset_defaults=reset_defaults,
            )

    def breaker(self, service_id: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(service_id)
            if breaker is None:
                breaker = CircuitBreaker(
                    service_id,
                    threshold=self.breaker_threshold,
                    cooldown_s=self.breaker_cooldown_s,
                    clock=self.clock,
                    on_change=self._on_breaker_change,
                )
                self._breakers[service_id] = breaker
            return breaker

    def is_available(self, service_id: str) -> bool:
        return self.breaker(service_id).ready()

    def state(self, service_id: str) -> BreakerState:
        return self.breaker(service_id).state

    def reset(self, service_id: str) -> None:
        """Manual "retry connection": close the breaker and forget past failures."""
        self.breaker(service_id).reset()
        with self._lock:
            self._config_warned.discard(service_id)

    def backoff_delay(self, retry_number: int) -> float:
        delay = self.base_delay_s * (2 ** max(0, retry_number - 1))
        return min(delay, self.max_delay_s)

    def call(self, service_id: str, operation: Callable[[], T]) -> CallOutcome[T]:
        breaker = self.breaker(service_id)
        if not breaker.try_acquire():
            log_event(self.logger, logging.DEBUG, "call_short_circuited", service=service_id)
            return CallOutcome(
                service_id=service_id,
                ok=False,
                category=ErrorCategory.SERVICE_UNAVAILABLE,
                error=f"{service_id} circuit is open",
                short_circuited=True,
                strategy="circuit_open",
            )

        trial = breaker.state is BreakerState.HALF_OPEN
        hooks = self._hooks.get(service_id, RecoveryHooks())
        attempts = 0
        retries = 0
        reduced = False
        reconfigured = False

        while True:
            attempts += 1
            try:
                value = operation()
            except Exception as exc:
                category = classify_error(exc)
                log_event(
                    self.logger,
                    logging.WARNING,
                    "service_call_failed",
                    service=service_id,
                    category=category.value,
                    attempt=attempts,
                    error=str(exc),
                )

                strategy = "fail"
                retry = False
                if category is ErrorCategory.SERVICE_UNAVAILABLE:
                    strategy = "fallback"
                    breaker.trip()
                    return self._failed(service_id, category, exc, attempts, strategy)

                if category in (ErrorCategory.CONNECTION, ErrorCategory.TIMEOUT):
                    strategy = "retry"
                    if not trial and retries < self.max_retries:
                        retries += 1
                        retry = True
                        self.sleep(self.backoff_delay(retries))
                elif category is ErrorCategory.RESOURCE:
                    strategy = "reduce_quality"
                    if not trial and not reduced and hooks.reduce_quality is not None:
                        reduced = True
                        retry = bool(hooks.reduce_quality())
                elif category is ErrorCategory.CONFIGURATION:
                    strategy = "reconfigure"
                    if not trial and not reconfigured and hooks.reset_defaults is not None:
                        reconfigured = True
                        self._warn_reconfigured(service_id, exc)
                        hooks.reset_defaults()
                        retry = True
                elif category is ErrorCategory.FORMAT:
                    strategy = "skip"

                if retry:
                    continue

                if category.counts_against_service:
                    breaker.record_failure()
                else:
                    breaker.release_trial()
                return self._failed(service_id, category, exc, attempts, strategy)

            breaker.record_success()
            return CallOutcome(service_id=service_id, ok=True, value=value, attempts=attempts)

    def _failed(
        self,
        service_id: str,
        category: ErrorCategory,
        exc: BaseException,
        attempts: int,
        strategy: str,
    ) -> CallOutcome[Any]:
        return CallOutcome(
            service_id=service_id,
            ok=False,
            category=category,
            error=str(exc) or exc.__class__.__name__,
            attempts=attempts,
            strategy=strategy,
        )

    def _warn_reconfigured(self, service_id: str, exc: BaseException) -> None:
        with self._lock:
            if service_id in self._config_warned:
                return
            self._config_warned.add(service_id)
        log_event(
            self.logger,
            logging.WARNING,
            "service_reset_to_defaults",
            service=service_id,
            error=str(exc),
        )

    def _on_breaker_change(self, service_id: str, before: BreakerState, after: BreakerState) -> None:
        log_event(
            self.logger,
            logging.WARNING if after is BreakerState.OPEN else logging.INFO,
            "circuit_breaker_state_changed",
            service=service_id,
            previous=before.value,
            state=after.value,
        )
        if self.events is not None:
            self.events.emit(
                ev.CIRCUIT_BREAKER_STATE_CHANGED,
                {"service": service_id, "previous": before.value, "state": after.value},
            )
