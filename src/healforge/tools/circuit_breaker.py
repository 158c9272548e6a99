"""Per-tool circuit breaker."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import threading
import time
from typing import Callable

from healforge.util.logging import get_logger

logger = get_logger(__name__)

FAILURE_THRESHOLD = 5
OPEN_TIMEOUT_SECONDS = 60.0


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    opened_at: float = 0.0


class CircuitBreaker:
    """Stops calling a tool after repeated failures, probing again after a timeout."""

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        open_timeout_seconds: float = OPEN_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.open_timeout_seconds = open_timeout_seconds
        self._clock = clock
        self._circuits: dict[str, _Circuit] = {}
        self._lock = threading.Lock()

    def _circuit(self, name: str) -> _Circuit:
        return self._circuits.setdefault(name, _Circuit())

    def allow_request(self, name: str) -> bool:
        with self._lock:
            circuit = self._circuit(name)
            if circuit.state == CircuitState.OPEN:
                if self._clock() - circuit.opened_at < self.open_timeout_seconds:
                    return False
                circuit.state = CircuitState.HALF_OPEN
                logger.info("Circuit for %s half-open, allowing a trial call", name)
            return True

    def record_success(self, name: str) -> None:
        with self._lock:
            circuit = self._circuit(name)
            if circuit.state != CircuitState.CLOSED:
                logger.info("Circuit for %s closed", name)
            circuit.state = CircuitState.CLOSED
            circuit.failures = 0

    def record_failure(self, name: str) -> None:
        with self._lock:
            circuit = self._circuit(name)
            circuit.failures += 1
            reopen = circuit.state == CircuitState.HALF_OPEN
            if reopen or circuit.failures >= self.failure_threshold:
                if circuit.state != CircuitState.OPEN:
                    logger.warning(
                        "Circuit for %s opened after %d failures", name, circuit.failures
                    )
                circuit.state = CircuitState.OPEN
                circuit.opened_at = self._clock()

    def state(self, name: str) -> CircuitState:
        with self._lock:
            return self._circuit(name).state

    def reset(self, name: str) -> None:
        with self._lock:
            self._circuits.pop(name, None)
