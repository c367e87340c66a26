"""Per-device transport health tracking."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

from .metrics import record_transport_health

WIFI = "wifi"
BLE = "ble"
CLOUD = "cloud"
IR = "ir"

# Selection order used when a device prefers "auto".
TRANSPORT_PRIORITY: Tuple[str, ...] = (WIFI, BLE, CLOUD, IR)

# Consecutive failures before a transport is flagged unhealthy.
UNHEALTHY_THRESHOLD = 3


@dataclass
class TransportState:
    """Mutable health status for one transport of one device."""

    name: str
    available: bool = False
    healthy: bool = False
    failures: int = 0
    last_check: Optional[float] = None
    last_error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "available": self.available,
            "healthy": self.healthy,
            "failures": self.failures,
            "last_check": self.last_check,
            "last_error": self.last_error,
        }


class TransportHealth:
    """Health record holding one entry per transport kind for a single device.

    A success resets the failure count and marks the transport healthy at once.
    Failures only flip the healthy flag after ``failure_threshold`` consecutive
    misses, so a single transient error does not move traffic elsewhere.
    """

    def __init__(
        self,
        device_id: str,
        *,
        wifi: bool = False,
        ble: bool = False,
        cloud: bool = False,
        ir: bool = False,
        failure_threshold: int = UNHEALTHY_THRESHOLD,
    ) -> None:
        self.device_id = device_id
        self._failure_threshold = max(1, failure_threshold)
        self._states: Dict[str, TransportState] = {
            WIFI: TransportState(WIFI, available=wifi),
            BLE: TransportState(BLE, available=ble),
            # Cloud starts out optimistic: healthy before the first contact.
            CLOUD: TransportState(CLOUD, available=cloud, healthy=True),
            IR: TransportState(IR, available=ir),
        }
        for state in self._states.values():
            record_transport_health(device_id, state.name, state.healthy)

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    def __getitem__(self, transport: str) -> TransportState:
        return self._states[transport]

    def __iter__(self) -> Iterator[TransportState]:
        return iter(self._states.values())

    def mark_success(self, transport: str) -> None:
        """Record a successful attempt on ``transport``."""

        state = self._states.get(transport)
        if state is None:
            return
        state.healthy = True
        state.failures = 0
        state.last_error = None
        state.last_check = time.time()
        record_transport_health(self.device_id, transport, True)

    def mark_failure(self, transport: str, error: Optional[BaseException] = None) -> None:
        """Record a failed attempt on ``transport``."""

        state = self._states.get(transport)
        if state is None:
            return
        state.failures += 1
        if state.failures >= self._failure_threshold:
            state.healthy = False
        state.last_check = time.time()
        state.last_error = str(error) if error else state.last_error
        record_transport_health(self.device_id, transport, state.healthy)

    def is_selectable(self, transport: str) -> bool:
        """Return whether auto-selection may pick ``transport``."""

        state = self._states[transport]
        return state.available and (state.healthy or state.failures < self._failure_threshold)

    def select(self, priority: Tuple[str, ...] = TRANSPORT_PRIORITY) -> str:
        """Pick the first selectable transport, defaulting to cloud."""

        for transport in priority:
            if self.is_selectable(transport):
                return transport
        return CLOUD

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Return a copy of every transport entry."""

        return {name: state.as_dict() for name, state in self._states.items()}
