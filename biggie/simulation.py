"""
Process-wide chaos flags consulted by the request interceptors
Each flag has its own lock and expires by wall-clock comparison.
"""
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

LATENCY = "latency_ms"
PACKET_LOSS = "loss_percentage"
ERROR_RATE = "error_rate"
DOWNTIME = "downtime"

FLAGS = (DOWNTIME, LATENCY, PACKET_LOSS, ERROR_RATE)


@dataclass
class Fault:
    value: float = 0
    expires_at: float = 0.0
    generation: int = 0


class SimulationState:
    """One instance per app, stored on app.state.simulation"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._locks = {name: threading.Lock() for name in FLAGS}
        self._faults = {name: Fault() for name in FLAGS}

    def activate(self, name: str, value: float, seconds: float) -> int:
        """Set a flag for the next `seconds`; returns the activation id"""
        with self._locks[name]:
            fault = self._faults[name]
            fault.value = value
            fault.expires_at = self._clock() + seconds
            fault.generation += 1
            generation = fault.generation
        logger.info("simulation started", flag=name, value=value, maintain_second=seconds)
        return generation

    def deactivate(self, name: str, generation: Optional[int] = None) -> bool:
        """Clear a flag, unless a newer activation has replaced the given one"""
        with self._locks[name]:
            fault = self._faults[name]
            if generation is not None and fault.generation != generation:
                return False
            fault.value = 0
            fault.expires_at = 0.0
        logger.info("simulation ended", flag=name)
        return True

    def current(self, name: str) -> float:
        """Active value, or 0 when unset or expired"""
        with self._locks[name]:
            fault = self._faults[name]
            if fault.value and self._clock() < fault.expires_at:
                return fault.value
            return 0

    def clear_after(self, name: str, generation: int, seconds: float) -> None:
        """Wait out the window, then clear the activation (blocking)"""
        time.sleep(max(seconds, 0))
        self.deactivate(name, generation)

    def snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        out = {}
        for name in FLAGS:
            with self._locks[name]:
                fault = self._faults[name]
                active = bool(fault.value) and now < fault.expires_at
                out[name] = {
                    "active": active,
                    "value": fault.value if active else 0,
                    "remaining_second": round(max(fault.expires_at - now, 0.0), 3) if active else 0,
                }
        return out
