"""
Circuit breaker guarding the anomaly-detection fan-out.

States:
- CLOSED: detection runs normally
- OPEN: after ``failure_threshold`` consecutive failures, detection is skipped
- HALF-OPEN: after ``cooldown_seconds`` one trial run is allowed at a time;
  success closes the circuit, failure re-opens it. A trial that never
  reports back is abandoned after another cooldown

Usage:
    breaker = CircuitBreaker(failure_threshold=5, cooldown_seconds=60)
    if breaker.can_proceed():
        try:
            await detector.evaluate(event)
            breaker.record_success()
        except Exception:
            breaker.record_failure()
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CircuitBreaker:
    """Consecutive-failure circuit breaker."""

    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    name: str = "anomaly-detection"
    time_source: Callable[[], float] = field(default=time.monotonic, repr=False)

    _failures: int = field(default=0, repr=False)
    _opened_at: Optional[float] = field(default=None, repr=False)
    _trips: int = field(default=0, repr=False)
    _trial_started_at: Optional[float] = field(default=None, repr=False)

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    @property
    def state(self) -> str:
        if not self.is_open:
            return "closed"
        return "open" if self._trial_started_at is None else "half_open"

    def can_proceed(self) -> bool:
        """True when closed, or for the single trial once the cooldown has elapsed."""
        if not self.is_open:
            return True

        now = self.time_source()
        if now - self._opened_at < self.cooldown_seconds:
            return False
        trial = self._trial_started_at
        if trial is not None and now - trial < self.cooldown_seconds:
            return False

        self._trial_started_at = now
        logger.info(f"Circuit breaker '{self.name}' HALF-OPEN, allowing one trial")
        return True

    def record_failure(self) -> bool:
        """Record a failure. Returns True if the circuit just opened."""
        self._failures += 1

        if self.is_open:
            # Failed half-open trial: restart the cooldown
            self._opened_at = self.time_source()
            self._trial_started_at = None
            return False

        if self._failures >= self.failure_threshold:
            self._opened_at = self.time_source()
            self._trips += 1
            logger.warning(
                f"Circuit breaker '{self.name}' OPEN after {self._failures} failures"
            )
            return True
        return False

    def record_success(self) -> None:
        if self.is_open:
            logger.info(f"Circuit breaker '{self.name}' CLOSED")
        self._opened_at = None
        self._failures = 0
        self._trial_started_at = None

    def reset(self) -> None:
        self._opened_at = None
        self._failures = 0
        self._trial_started_at = None

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state,
            "failures": self._failures,
            "trips": self._trips,
        }
