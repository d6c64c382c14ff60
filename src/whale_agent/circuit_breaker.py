"""
Async circuit breaker shared by the context data sources and the analysis
providers.

A breaker is ``closed`` while its dependency answers.  After
``failure_threshold`` consecutive failures it opens and refuses calls for
``recovery_timeout`` seconds, then goes ``half_open`` and lets one trial call
through at a time: ``success_threshold`` successes close it, one failure
re-opens it.

Data sources wrap each request with ``await cb.call(func, ...)``.  The
Provider Invoker runs its own retry loop, so it asks ``cb.allow()`` before
each attempt and reports the outcome with ``record_success`` /
``record_failure`` (or ``release`` when the attempt says nothing about the
dependency).
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    def __init__(self, name: str) -> None:
        super().__init__(f"circuit '{name}' is open")
        self.circuit_name = name


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        success_threshold: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.success_threshold = success_threshold
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._probe_successes = 0
        self._trial_in_flight = False
        self._opened_at = 0.0

        # Lifetime counters for the health endpoint
        self.calls = 0
        self.failures = 0
        self.rejected = 0

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._retry_in() <= 0:
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    def _retry_in(self) -> float:
        return self._opened_at + self.recovery_timeout - self._clock()

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.warning(
            "Circuit %s: %s -> %s after %d consecutive failure(s)",
            self.name, self._state.value, new_state.value, self._consecutive_failures,
        )
        self._state = new_state
        self._probe_successes = 0
        self._trial_in_flight = False
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._consecutive_failures = 0

    def allow(self) -> bool:
        """Return True if a call may go through right now.

        While half-open only one trial call is admitted until its outcome is
        recorded.
        """
        state = self.state
        if state == CircuitState.OPEN or (state == CircuitState.HALF_OPEN and self._trial_in_flight):
            self.rejected += 1
            return False
        if state == CircuitState.HALF_OPEN:
            self._trial_in_flight = True
        return True

    def release(self) -> None:
        """Forget an admitted call without counting it either way."""
        self._trial_in_flight = False

    def record_success(self) -> None:
        self.calls += 1
        self._trial_in_flight = False
        if self._state == CircuitState.HALF_OPEN:
            self._probe_successes += 1
            if self._probe_successes >= self.success_threshold:
                self._transition(CircuitState.CLOSED)
        else:
            self._consecutive_failures = 0

    def record_failure(self) -> None:
        self.calls += 1
        self._trial_in_flight = False
        self.failures += 1
        self._consecutive_failures += 1
        if (
            self._state == CircuitState.HALF_OPEN
            or self._consecutive_failures >= self.failure_threshold
        ):
            self._transition(CircuitState.OPEN)

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await *func* through the breaker; raise ``CircuitOpenError`` when open."""
        if not self.allow():
            raise CircuitOpenError(self.name)
        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            self.release()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def status(self) -> dict[str, Any]:
        state = self.state
        retry_in: Optional[float] = None
        if state == CircuitState.OPEN:
            retry_in = round(max(self._retry_in(), 0.0), 1)
        return {
            "state": state.value,
            "consecutive_failures": self._consecutive_failures,
            "calls": self.calls,
            "failures": self.failures,
            "rejected": self.rejected,
            "retry_in_s": retry_in,
        }


# ---------------------------------------------------------------------------
# Registry (reported by GET /health)
# ---------------------------------------------------------------------------
_registry: dict[str, CircuitBreaker] = {}


def register(cb: CircuitBreaker) -> CircuitBreaker:
    _registry[cb.name] = cb
    return cb


def get_or_create(name: str, **kwargs: Any) -> CircuitBreaker:
    """Return the registered breaker called *name*, creating it if needed."""
    cb = _registry.get(name)
    if cb is None:
        cb = register(CircuitBreaker(name, **kwargs))
    return cb


def get_all_statuses() -> dict[str, dict[str, Any]]:
    return {name: cb.status() for name, cb in _registry.items()}
