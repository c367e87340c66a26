"""Base protocol adapter interface for local AC control protocols."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple

from ..errors import ProtocolNotImplementedError, UnknownCommandError, UnsupportedValueError

# Generic command names (short, verbose and snake_case spellings) mapped to setters.
COMMAND_ALIASES: Dict[str, str] = {
    "power": "power",
    "setPower": "power",
    "set_power": "power",
    "temperature": "temperature",
    "setTemperature": "temperature",
    "set_temperature": "temperature",
    "mode": "mode",
    "setMode": "mode",
    "set_mode": "mode",
    "fanSpeed": "fan_speed",
    "fan_speed": "fan_speed",
    "setFanSpeed": "fan_speed",
    "set_fan_speed": "fan_speed",
    "swing": "swing",
    "setSwing": "swing",
    "set_swing": "swing",
    "specialMode": "special_mode",
    "special_mode": "special_mode",
    "setSpecialMode": "special_mode",
    "set_special_mode": "special_mode",
}


def canonical_command(command: str) -> str:
    """Resolve a command alias to its canonical name.

    Raises:
        UnknownCommandError: If the name is not part of the command vocabulary.
    """
    try:
        return COMMAND_ALIASES[command]
    except KeyError:
        raise UnknownCommandError(f"Unknown command: {command}") from None


def coerce_power(value: Any) -> bool:
    """Normalize a power value (bool, "on"/"off", 1/0) to a bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"on", "true", "1"}:
            return True
        if lowered in {"off", "false", "0"}:
            return False
    raise UnsupportedValueError(f"Unsupported power value: {value!r}")


def coerce_float(value: Any) -> Optional[float]:
    if value is None or value == "" or value == "-" or value == "--":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def coerce_int(value: Any) -> Optional[int]:
    number = coerce_float(value)
    return int(number) if number is not None else None


@dataclass(frozen=True)
class TemperatureReading:
    """Current, target and optional outdoor temperatures in degrees."""

    current: Optional[float] = None
    target: Optional[float] = None
    outdoor: Optional[float] = None

    def as_dict(self) -> Dict[str, Optional[float]]:
        result: Dict[str, Optional[float]] = {"current": self.current, "target": self.target}
        if self.outdoor is not None:
            result["outdoor"] = self.outdoor
        return result


@dataclass(frozen=True)
class ACStatus:
    """Brand-independent device status."""

    power: str = "off"
    temperature: TemperatureReading = field(default_factory=TemperatureReading)
    humidity: Optional[int] = None
    mode: str = "cool"
    fan_speed: str = "auto"
    swing: str = "off"
    special_mode: str = "off"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "power": self.power,
            "temperature": self.temperature.as_dict(),
            "humidity": self.humidity,
            "mode": self.mode,
            "fanSpeed": self.fan_speed,
            "swing": self.swing,
            "specialMode": self.special_mode,
        }


@dataclass(frozen=True)
class Capabilities:
    """Static description of what a device accepts."""

    power: bool = True
    temperature_min: float = 16
    temperature_max: float = 30
    temperature_unit: str = "C"
    modes: Tuple[str, ...] = ("cool",)
    fan_speeds: Tuple[str, ...] = ("auto",)
    swing_modes: Tuple[str, ...] = ()
    special_modes: Tuple[str, ...] = ()
    status: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "power": self.power,
            "temperature": {
                "min": self.temperature_min,
                "max": self.temperature_max,
                "unit": self.temperature_unit,
            },
            "modes": list(self.modes),
            "fanSpeeds": list(self.fan_speeds),
            "swingModes": list(self.swing_modes),
            "specialModes": list(self.special_modes),
        }
        if self.status:
            result["status"] = self.status
        return result


class ACProtocolAdapter(ABC):
    """Abstract base class for brand-specific local protocol adapters.

    Each adapter is responsible for:
    - Establishing reachability with the device (``connect``)
    - Translating the brand's status format into :class:`ACStatus`
    - Translating normalized commands into the brand's wire format
    - Keeping whatever session/cache state the brand needs between requests

    Adapters never touch registry state; all failures surface as exceptions.
    """

    #: Port used when the device configuration does not provide one.
    default_port: int = 80

    def __init__(
        self,
        host: str,
        port: Optional[int] = None,
        options: Optional[Mapping[str, Any]] = None,
        *,
        timeout: float = 5.0,
    ) -> None:
        self.host = host
        self.port = port or self.default_port
        self.options: Dict[str, Any] = dict(options or {})
        self.timeout = timeout
        self.connected = False
        self.last_status: Optional[ACStatus] = None

    @property
    @abstractmethod
    def brand(self) -> str:
        """Get the brand family identifier (e.g., 'daikin')."""
        pass

    @abstractmethod
    async def connect(self) -> Any:
        """Establish reachability. Calling it again on a connected adapter is harmless."""
        pass

    async def disconnect(self) -> None:
        """Release held resources. Never raises."""
        self.connected = False

    @abstractmethod
    async def get_status(self) -> ACStatus:
        """Read and normalize the current device status."""
        pass

    @abstractmethod
    async def set_power(self, on: Any) -> Any:
        pass

    @abstractmethod
    async def set_temperature(self, temperature: Any) -> Any:
        pass

    @abstractmethod
    async def set_mode(self, mode: str) -> Any:
        pass

    @abstractmethod
    async def set_fan_speed(self, speed: str) -> Any:
        pass

    @abstractmethod
    async def set_swing(self, mode: str) -> Any:
        pass

    @abstractmethod
    async def set_special_mode(self, mode: str) -> Any:
        pass

    @abstractmethod
    def get_capabilities(self) -> Capabilities:
        """Return the static capability description for this brand."""
        pass

    async def execute_command(self, command: str, value: Any) -> Any:
        """Dispatch a generic command name to the matching setter.

        Raises:
            UnknownCommandError: If ``command`` is not a known alias.
        """
        setters: Dict[str, Callable[[Any], Awaitable[Any]]] = {
            "power": self.set_power,
            "temperature": self.set_temperature,
            "mode": self.set_mode,
            "fan_speed": self.set_fan_speed,
            "swing": self.set_swing,
            "special_mode": self.set_special_mode,
        }
        return await setters[canonical_command(command)](value)

    # ===== Validation helpers =====

    def _require_choice(self, kind: str, value: Any, allowed: Sequence[str]) -> str:
        if not isinstance(value, str) or value not in allowed:
            raise UnsupportedValueError(
                f"Unsupported {kind} for {self.brand}: {value!r}. "
                f"Supported: {', '.join(allowed)}"
            )
        return value

    def _require_temperature(self, value: Any) -> float:
        caps = self.get_capabilities()
        if isinstance(value, bool):
            raise UnsupportedValueError(f"Unsupported temperature: {value!r}")
        number = coerce_float(value)
        if number is None:
            raise UnsupportedValueError(f"Unsupported temperature: {value!r}")
        if number < caps.temperature_min or number > caps.temperature_max:
            raise UnsupportedValueError(
                f"Temperature {number} outside {caps.temperature_min}-{caps.temperature_max}"
                f" {caps.temperature_unit} for {self.brand}"
            )
        return number


class StubProtocolAdapter(ACProtocolAdapter):
    """Adapter variant for brands whose local protocol is not implemented.

    Every device operation fails with :class:`ProtocolNotImplementedError`;
    only ``disconnect`` and ``get_capabilities`` succeed.
    """

    #: Hint attached to every error so callers know how to reach the device instead.
    hint = "Use the cloud transport for now."

    def _unavailable(self, operation: str) -> ProtocolNotImplementedError:
        return ProtocolNotImplementedError(
            f"{self.brand} {operation}: local protocol not implemented. {self.hint}"
        )

    async def connect(self) -> Any:
        raise self._unavailable("connect")

    async def get_status(self) -> ACStatus:
        raise self._unavailable("get_status")

    async def set_power(self, on: Any) -> Any:
        raise self._unavailable("set_power")

    async def set_temperature(self, temperature: Any) -> Any:
        raise self._unavailable("set_temperature")

    async def set_mode(self, mode: str) -> Any:
        raise self._unavailable("set_mode")

    async def set_fan_speed(self, speed: str) -> Any:
        raise self._unavailable("set_fan_speed")

    async def set_swing(self, mode: str) -> Any:
        raise self._unavailable("set_swing")

    async def set_special_mode(self, mode: str) -> Any:
        raise self._unavailable("set_special_mode")
