"""Circuit breaker over the speech-to-text service.

One HealthGate is shared by every job in the process. After
``failure_threshold`` consecutive failures the circuit opens and calls
are rejected without touching the network until ``cooldown_seconds``
have passed. The first call after the cooldown is let through as a
trial call: success closes the circuit, failure reopens it.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 300.0


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class HealthState:
    """Point-in-time copy of the gate's state."""

    state: CircuitState
    consecutive_failures: int
    last_failure_reason: str | None
    cooldown_expires_at: float | None


class HealthGate:
    """Thread-safe circuit breaker.

    Args:
        failure_threshold: Consecutive failures that open the circuit.
        cooldown_seconds: How long the circuit stays open.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_reason: str | None = None
        self._cooldown_expires_at: float | None = None
        self._trial_in_flight = False

    def allow_request(self) -> bool:
        """Return True if a call may go out now.

        Moves OPEN -> HALF_OPEN once the cooldown has expired and admits a
        single trial call; other callers are rejected until it reports.
        """
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.OPEN:
                if self._clock() < (self._cooldown_expires_at or 0.0):
                    return False
                logger.info("Circuit breaker cooldown expired, allowing trial call")
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED or self._failures:
                logger.info("Transcription service healthy, circuit closed")
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._cooldown_expires_at = None
            self._trial_in_flight = False

    def record_failure(self, reason: str) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_reason = reason
            self._trial_in_flight = False
            if (
                self._state is CircuitState.HALF_OPEN
                or self._failures >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                self._cooldown_expires_at = self._clock() + self.cooldown_seconds
                logger.warning(
                    "Circuit breaker opened after %d failures; retry in %.0fs",
                    self._failures,
                    self.cooldown_seconds,
                )
            else:
                logger.info(
                    "Recorded failure %d/%d: %s",
                    self._failures,
                    self.failure_threshold,
                    reason,
                )

    def release(self) -> None:
        """End a trial call whose outcome says nothing about service health."""
        with self._lock:
            self._trial_in_flight = False

    def retry_after(self) -> float:
        """Seconds until an open circuit admits a trial call (0 if not open)."""
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return 0.0
            return max(0.0, (self._cooldown_expires_at or 0.0) - self._clock())

    def snapshot(self) -> HealthState:
        with self._lock:
            return HealthState(
                state=self._state,
                consecutive_failures=self._failures,
                last_failure_reason=self._last_failure_reason,
                cooldown_expires_at=self._cooldown_expires_at,
            )

    def summary(self) -> str:
        """Human-readable status for health endpoints and error messages."""
        snap = self.snapshot()
        if snap.state is CircuitState.OPEN:
            wait = math.ceil(self.retry_after())
            return f"Circuit breaker open - retry in {wait} seconds"
        if snap.state is CircuitState.HALF_OPEN:
            return "Circuit breaker half-open - probing"
        if snap.consecutive_failures:
            return (
                f"{snap.consecutive_failures}/{self.failure_threshold} "
                f"failures recorded"
            )
        return "API healthy"
