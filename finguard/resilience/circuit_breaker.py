"""
Circuit Breaker

Per-service failure tracking for the assistant's generation backends.

States:
- CLOSED: calls pass through; failures are counted in a rolling window
- OPEN: calls fail fast with CircuitOpenError until the cooldown elapses
- HALF_OPEN: exactly one trial call is dispatched; everything else is rejected

DESIGN DECISION: Admission and completion bookkeeping happen under a
threading.Lock that is never held across an await. The backend call runs
as its own shielded task with a done-callback that records the outcome,
so cancelling the caller can never lose a completion record.

CRITICAL: total_calls counts every attempt, dispatched or rejected.
"""

import asyncio
import threading
import time
from collections import deque
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from finguard.config import BreakerSettings, breaker_settings_for
from finguard.models.resilience import CircuitBreakerStats, CircuitState, RetryResult


logger = structlog.get_logger(__name__)

T = TypeVar("T")


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ResilienceError(Exception):
    """Base exception for the resilience layer."""
    pass


class CircuitOpenError(ResilienceError):
    """Call rejected without reaching the backend."""

    def __init__(self, service_name: str, retry_after: float):
        self.service_name = service_name
        self.retry_after = max(0.0, retry_after)
        super().__init__(
            f"Circuit breaker for '{service_name}' is OPEN. "
            f"Next attempt in {self.retry_after:.1f}s"
        )


class CallTimeoutError(ResilienceError, TimeoutError):
    """Backend call exceeded the breaker's call timeout."""

    def __init__(self, service_name: str, timeout: float):
        self.service_name = service_name
        self.timeout = timeout
        super().__init__(f"Call to '{service_name}' timed out after {timeout}s")


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

class CircuitBreaker:
    """
    Circuit breaker for one named backend service.

    Usage:
        breaker = CircuitBreaker("orchestrator", settings)
        text = await breaker.call(lambda: invoker.invoke("orchestrator", request))
    """

    def __init__(
        self,
        service_name: str,
        settings: Optional[BreakerSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            service_name: Name used in stats, logs and errors
            settings: Thresholds and timeouts; the service's profile if omitted
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self.service_name = service_name
        self._settings = settings or breaker_settings_for(service_name)
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_times: deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._trial_started_at: Optional[float] = None
        self._generation = 0

        self._total_calls = 0
        self._total_successes = 0
        self._total_failures = 0
        self._total_rejected = 0
        self._total_trips = 0
        self._response_times: deque[float] = deque(
            maxlen=self._settings.response_time_window
        )
        self._last_failure_time: Optional[datetime] = None
        self._last_success_time: Optional[datetime] = None

    @property
    def settings(self) -> BreakerSettings:
        return self._settings

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    # =========================================================================
    # CALLS
    # =========================================================================

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` through the breaker.

        Args:
            operation: Zero-argument callable returning an awaitable

        Raises:
            CircuitOpenError: If the call was rejected
            CallTimeoutError: If the call exceeded call_timeout_seconds
            Exception: Whatever the backend raised (after it is recorded)
        """
        is_trial, generation = self._admit()
        started = self._clock()

        task = asyncio.ensure_future(self._run(operation))
        task.add_done_callback(partial(self._on_done, is_trial, generation, started))
        return await asyncio.shield(task)

    async def call_with_retry(self, operation: Callable[[], Awaitable[T]]) -> RetryResult:
        """
        Run `operation` with exponential backoff between attempts.

        Never retries a rejection, and stops as soon as the breaker opens.
        Never raises: the outcome is reported in the RetryResult.
        """
        settings = self._settings
        started = self._clock()
        errors: list[str] = []
        attempts = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(settings.max_retries + 1),
            wait=wait_exponential(
                multiplier=settings.retry_delay_seconds,
                exp_base=settings.retry_multiplier,
                max=settings.max_retry_delay_seconds,
            ),
            retry=retry_if_exception(self._is_retryable),
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    try:
                        result = await self.call(operation)
                    except Exception as e:
                        errors.append(f"{type(e).__name__}: {e}")
                        raise
        except Exception:
            return RetryResult(
                success=False,
                attempts=attempts,
                total_time_ms=self._elapsed_ms(started),
                errors=errors,
            )

        return RetryResult(
            result=result,
            success=True,
            attempts=attempts,
            total_time_ms=self._elapsed_ms(started),
            errors=errors,
        )

    def _is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, CircuitOpenError):
            return False
        return self.state != CircuitState.OPEN

    async def _run(self, operation: Callable[[], Awaitable[T]]) -> T:
        timeout = self._settings.call_timeout_seconds
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CallTimeoutError(self.service_name, timeout) from e

    # =========================================================================
    # BOOKKEEPING
    # =========================================================================

    def _admit(self) -> tuple[bool, int]:
        """
        Decide synchronously whether a call may be dispatched.

        Returns:
            (is_trial, generation) for the dispatched call
        """
        transition = None
        with self._lock:
            self._total_calls += 1
            now = self._clock()

            if self._state == CircuitState.OPEN:
                opened_at = now if self._opened_at is None else self._opened_at
                elapsed = now - opened_at
                cooldown = self._settings.reset_timeout_seconds
                if elapsed < cooldown:
                    self._total_rejected += 1
                    raise CircuitOpenError(self.service_name, cooldown - elapsed)
                transition = self._transition(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self._total_rejected += 1
                    trial_deadline = (
                        (now if self._trial_started_at is None else self._trial_started_at)
                        + self._settings.call_timeout_seconds
                    )
                    raise CircuitOpenError(self.service_name, trial_deadline - now)
                self._trial_in_flight = True
                self._trial_started_at = now
                admitted = (True, self._generation)
            else:
                admitted = (False, self._generation)

        if transition:
            self._log_transition(*transition)
        return admitted

    def _on_done(
        self,
        is_trial: bool,
        generation: int,
        started: float,
        task: "asyncio.Future[Any]",
    ) -> None:
        if task.cancelled():
            error: Optional[BaseException] = asyncio.CancelledError()
        else:
            # Retrieving the exception here also marks it as handled
            error = task.exception()
        self._record(is_trial, generation, started, error)

    def _record(
        self,
        is_trial: bool,
        generation: int,
        started: float,
        error: Optional[BaseException],
    ) -> None:
        transition = None
        with self._lock:
            now = self._clock()
            self._response_times.append(max(0.0, (now - started) * 1000))
            trial = (
                is_trial
                and generation == self._generation
                and self._state == CircuitState.HALF_OPEN
                and self._trial_in_flight
            )
            if trial:
                self._trial_in_flight = False
                self._trial_started_at = None

            if error is None:
                self._total_successes += 1
                self._last_success_time = datetime.now(timezone.utc)
                if trial:
                    self._failure_times.clear()
                    transition = self._transition(CircuitState.CLOSED)
                elif self._state == CircuitState.CLOSED:
                    self._failure_times.clear()
            else:
                self._total_failures += 1
                self._last_failure_time = datetime.now(timezone.utc)
                self._failure_times.append(now)
                self._prune_failures(now)
                if trial:
                    transition = self._transition(CircuitState.OPEN)
                elif (
                    self._state == CircuitState.CLOSED
                    and len(self._failure_times) >= self._settings.failure_threshold
                ):
                    transition = self._transition(CircuitState.OPEN)

        if transition:
            self._log_transition(*transition)
        if error is not None:
            logger.debug(
                "circuit_call_failed",
                service=self.service_name,
                error_type=type(error).__name__,
                error=str(error),
            )

    def _transition(self, new_state: CircuitState) -> tuple[CircuitState, CircuitState]:
        """Change state. Caller holds the lock."""
        old_state = self._state
        self._state = new_state
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self._total_trips += 1
        return old_state, new_state

    def _prune_failures(self, now: float) -> None:
        cutoff = now - self._settings.failure_window_seconds
        while self._failure_times and self._failure_times[0] < cutoff:
            self._failure_times.popleft()

    def _log_transition(self, old_state: CircuitState, new_state: CircuitState) -> None:
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "circuit_state_changed",
            service=self.service_name,
            from_state=old_state.value,
            to_state=new_state.value,
        )

    def _elapsed_ms(self, started: float) -> float:
        return max(0.0, (self._clock() - started) * 1000)

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def get_stats(self) -> CircuitBreakerStats:
        """Immutable snapshot of the breaker's counters."""
        with self._lock:
            self._prune_failures(self._clock())
            times = list(self._response_times)
            return CircuitBreakerStats(
                service_name=self.service_name,
                state=self._state,
                failure_count=len(self._failure_times),
                total_calls=self._total_calls,
                total_successes=self._total_successes,
                total_failures=self._total_failures,
                total_rejected=self._total_rejected,
                total_trips=self._total_trips,
                average_response_time=sum(times) / len(times) if times else 0.0,
                last_failure_time=self._last_failure_time,
                last_success_time=self._last_success_time,
            )

    def is_healthy(self) -> bool:
        """CLOSED or HALF_OPEN."""
        return self.state != CircuitState.OPEN

    def reset(self) -> None:
        """Force CLOSED with an empty rolling window. Totals are kept."""
        with self._lock:
            old_state = self._state
            self._state = CircuitState.CLOSED
            self._failure_times.clear()
            self._opened_at = None
            self._trial_in_flight = False
            self._trial_started_at = None
            self._generation += 1
        if old_state != CircuitState.CLOSED:
            self._log_transition(old_state, CircuitState.CLOSED)


# =============================================================================
# REGISTRY
# =============================================================================

class CircuitBreakerRegistry:
    """
    Named breakers, one per backend service.

    An explicit object rather than a module global so each app (and each
    test) owns its own set of breakers.
    """

    def __init__(
        self,
        settings: Optional[BreakerSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            settings: Base settings; per-service profiles are layered on top
            clock: Monotonic clock handed to every breaker
        """
        self._base_settings = settings
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, service_name: str) -> CircuitBreaker:
        """Return the named breaker, creating it on first use."""
        with self._lock:
            breaker = self._breakers.get(service_name)
            if breaker is None:
                breaker = CircuitBreaker(
                    service_name,
                    breaker_settings_for(service_name, self._base_settings),
                    clock=self._clock,
                )
                self._breakers[service_name] = breaker
            return breaker

    def __contains__(self, service_name: str) -> bool:
        with self._lock:
            return service_name in self._breakers

    @property
    def service_names(self) -> list[str]:
        with self._lock:
            return list(self._breakers)

    def _snapshot(self) -> list[CircuitBreaker]:
        with self._lock:
            return list(self._breakers.values())

    def get_stats(self, service_name: str) -> Optional[CircuitBreakerStats]:
        """Stats for a known service, None otherwise."""
        with self._lock:
            breaker = self._breakers.get(service_name)
        return breaker.get_stats() if breaker else None

    def get_all_stats(self) -> dict[str, CircuitBreakerStats]:
        return {b.service_name: b.get_stats() for b in self._snapshot()}

    def get_health_status(self) -> dict[str, bool]:
        return {b.service_name: b.is_healthy() for b in self._snapshot()}

    def reset_all(self) -> None:
        for breaker in self._snapshot():
            breaker.reset()
