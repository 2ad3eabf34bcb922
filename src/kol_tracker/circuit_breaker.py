"""
Per-service circuit breaker for the external market / metadata APIs.

States
------
CLOSED   : calls pass through; consecutive failures are counted.
OPEN     : calls fail fast with ``CircuitOpenError`` until
            ``recovery_timeout`` has elapsed.
HALF_OPEN: a single probe call is let through; success closes the
            circuit, failure re-opens it.

A call fails when the wrapped coroutine raises.  The HTTP helpers in
``data_sources._retry`` report failure by returning ``None``; clients
turn that into an exception inside the guarded call so it is counted.

    cb = register(CircuitBreaker("dexscreener", failure_threshold=8))
    try:
        data = await cb.call(fetch, url)
    except CircuitOpenError:
        data = None
"""

from __future__ import annotations

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
    """The service is considered down; the call was not attempted."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Circuit '{name}' is open – call skipped")
        self.circuit_name = name


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 8,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False

        self.calls = 0
        self.failures = 0
        self.rejected = 0

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.recovery_timeout
        ):
            self._set_state(CircuitState.HALF_OPEN)
        return self._state

    def _allow(self) -> bool:
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and not self._probe_in_flight:
            self._probe_in_flight = True
            return True
        return False

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Await ``func(*args, **kwargs)`` unless the circuit is open."""
        if not self._allow():
            self.rejected += 1
            raise CircuitOpenError(self.name)

        self.calls += 1
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        self._probe_in_flight = False
        self._consecutive_failures = 0
        if self._state != CircuitState.CLOSED:
            self._set_state(CircuitState.CLOSED)
            self._opened_at = None

    def record_failure(self) -> None:
        self._probe_in_flight = False
        self.failures += 1
        self._consecutive_failures += 1
        if (
            self._state == CircuitState.HALF_OPEN
            or self._consecutive_failures >= self.failure_threshold
        ):
            self._opened_at = self._clock()
            self._set_state(CircuitState.OPEN)

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self._probe_in_flight = False

    def _set_state(self, new_state: CircuitState) -> None:
        if new_state != self._state:
            logger.warning(
                "Circuit '%s': %s -> %s after %d consecutive failures",
                self.name, self._state.value, new_state.value,
                self._consecutive_failures,
            )
            self._state = new_state

    def status(self) -> dict[str, Any]:
        """Serialisable status for ``/health``."""
        return {
            "state": self.state.value,
            "consecutive_failures": self._consecutive_failures,
            "calls": self.calls,
            "failures": self.failures,
            "rejected": self.rejected,
            "recovery_timeout_s": self.recovery_timeout,
        }


# ---------------------------------------------------------------------------
# Registry of named breakers, reported by the health endpoint
# ---------------------------------------------------------------------------
_registry: dict[str, CircuitBreaker] = {}


def register(cb: CircuitBreaker) -> CircuitBreaker:
    _registry[cb.name] = cb
    return cb


def get_all_statuses() -> dict[str, dict[str, Any]]:
    return {name: cb.status() for name, cb in _registry.items()}
