"""Infrared gateway: code library, learned codes and blaster dispatch.

Infrared is send-only. The gateway maps the normalized command vocabulary
onto IR command keys, prefers codes learned from the user's own remote and
otherwise falls back to the built-in code tables.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .errors import InfraredError
from .logging import get_logger

GENERIC = "generic"


@dataclass(frozen=True)
class IRCode:
    """One entry of a code table.

    ``raw`` holds timing data when the code can be transmitted as-is; table
    entries without it only describe the command and protocol family.
    """

    command: str
    description: str
    protocol: str = "nec"
    brand: str = GENERIC
    raw: Optional[bytes] = None


@dataclass(frozen=True)
class LearnedCode:
    raw: bytes
    learned_at: float


_GENERIC_CODES: Dict[str, str] = {
    "power_on": "Power On",
    "power_off": "Power Off",
    "temp_up": "Temperature +1",
    "temp_down": "Temperature -1",
    "mode_cool": "Set Cool Mode",
    "mode_heat": "Set Heat Mode",
    "mode_dry": "Set Dry Mode",
    "mode_fan": "Set Fan Only",
    "mode_auto": "Set Auto Mode",
    "fan_low": "Fan Low",
    "fan_med": "Fan Medium",
    "fan_high": "Fan High",
    "fan_auto": "Fan Auto",
    "swing_on": "Swing On",
    "swing_off": "Swing Off",
}

# Spellings of the normalized vocabulary that differ from the code table keys.
_FAN_KEYS = {"medium": "med"}

_STATE_DEFAULTS = {
    "power": "on",
    "temperature": 24,
    "mode": "cool",
    "fanSpeed": "auto",
    "swing": "off",
}


class IRCodeLibrary:
    """Built-in code tables plus codes learned per blaster."""

    def __init__(self, tables: Optional[Mapping[str, Mapping[str, IRCode]]] = None) -> None:
        generic = {
            name: IRCode(command=name, description=description)
            for name, description in _GENERIC_CODES.items()
        }
        self._tables: Dict[str, Dict[str, IRCode]] = {GENERIC: generic}
        for brand, table in (tables or {}).items():
            self._tables[brand.lower()] = dict(table)
        self._learned: Dict[str, Dict[str, LearnedCode]] = {}

    def get_code(self, brand: str, command: str) -> Optional[IRCode]:
        """Look up a code, falling back to the generic table."""

        table = self._tables.get((brand or "").lower(), self._tables[GENERIC])
        code = table.get(command) or self._tables[GENERIC].get(command)
        if code is None:
            return None
        return IRCode(
            command=command,
            description=code.description,
            protocol=code.protocol,
            brand=brand,
            raw=code.raw,
        )

    def available_commands(self, brand: str) -> List[Dict[str, str]]:
        table = self._tables.get((brand or "").lower(), self._tables[GENERIC])
        return [
            {"command": name, "description": code.description, "protocol": code.protocol}
            for name, code in table.items()
        ]

    def save_learned_code(self, blaster_id: str, label: str, raw: bytes) -> None:
        self._learned.setdefault(blaster_id, {})[label] = LearnedCode(raw=bytes(raw), learned_at=time.time())

    def get_learned_code(self, blaster_id: str, label: str) -> Optional[LearnedCode]:
        return self._learned.get(blaster_id, {}).get(label)

    def get_learned_codes(self, blaster_id: str) -> Dict[str, LearnedCode]:
        return dict(self._learned.get(blaster_id, {}))

    @staticmethod
    def build_state_command(brand: str, state: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Describe a full-state frame; AC remotes send the whole state in one burst."""

        merged = dict(_STATE_DEFAULTS)
        for key, value in (state or {}).items():
            if value not in (None, ""):
                merged[key] = value
        return {
            "brand": brand,
            "type": "composite_state",
            "state": merged,
            "description": f"Set AC to {merged['temperature']}C {merged['mode']} mode",
        }


class IRBlaster(ABC):
    """A physical blaster able to transmit and capture raw IR timings."""

    @abstractmethod
    async def send_ir(self, raw: bytes) -> Any:
        pass

    @abstractmethod
    async def learn_ir(self, timeout: float) -> bytes:
        """Wait up to ``timeout`` seconds for a code from a remote."""
        pass

    def describe(self) -> Dict[str, Any]:
        return {}


class InfraredController(ABC):
    """Send-only gateway the registry uses for the ``ir`` transport."""

    @abstractmethod
    async def send(self, blaster_id: str, brand: str, command: str, value: Any) -> Dict[str, Any]:
        pass


def _on_off(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"on", "true", "1"}
    return value is True


def map_to_ir_command(command: str, value: Any) -> Optional[str]:
    """Translate a normalized command into an IR code table key."""

    if command in {"power", "setPower", "set_power"}:
        return "power_on" if _on_off(value) else "power_off"
    if command in {"temperature", "setTemperature", "set_temperature"}:
        # Remotes without full-state frames only expose relative steps.
        return "temp_up"
    if command in {"mode", "setMode", "set_mode"}:
        return f"mode_{value}"
    if command in {"fanSpeed", "fan_speed", "setFanSpeed", "set_fan_speed"}:
        return f"fan_{_FAN_KEYS.get(str(value), value)}"
    if command in {"swing", "setSwing", "set_swing"}:
        return "swing_on" if _on_off(value) else "swing_off"
    return None


def learned_label(brand: str, command: str, value: Any) -> str:
    if isinstance(value, bool):
        value = "on" if value else "off"
    return f"{brand}_{command}_{value}"


class BlasterController(InfraredController):
    """Dispatches commands to registered blasters."""

    def __init__(self, library: Optional[IRCodeLibrary] = None) -> None:
        self.library = library or IRCodeLibrary()
        self._blasters: Dict[str, IRBlaster] = {}
        self.logger = get_logger("aircon.ir")

    def register_blaster(self, blaster_id: str, blaster: IRBlaster) -> None:
        self._blasters[blaster_id] = blaster
        self.logger.info("Registered IR blaster", extra={"blaster_id": blaster_id})

    def blaster_ids(self) -> List[str]:
        return list(self._blasters)

    def describe_blasters(self) -> List[Dict[str, Any]]:
        return [{"id": blaster_id, **blaster.describe()} for blaster_id, blaster in self._blasters.items()]

    def _blaster(self, blaster_id: str) -> IRBlaster:
        blaster = self._blasters.get(blaster_id)
        if blaster is None:
            raise InfraredError(f"IR blaster not found: {blaster_id}", transport="ir")
        return blaster

    async def send(self, blaster_id: str, brand: str, command: str, value: Any) -> Dict[str, Any]:
        """Send a normalized command through a blaster.

        Learned codes win over the built-in tables. ``sent`` reports whether a
        frame actually went out: table entries without raw timings resolve the
        code but cannot be transmitted until they are learned.

        Raises:
            InfraredError: Unknown blaster, unmappable command or missing code.
        """
        blaster = self._blaster(blaster_id)

        if command == "state":
            state = value if isinstance(value, Mapping) else {}
            composite = self.library.build_state_command(brand, state)
            return {"sent": False, "source": "state_composite", "state": composite["state"]}

        learned = self.library.get_learned_code(blaster_id, learned_label(brand, command, value))
        if learned is not None:
            await blaster.send_ir(learned.raw)
            self.logger.debug(
                "Sent learned IR code",
                extra={"blaster_id": blaster_id, "command": command},
            )
            return {"sent": True, "source": "learned", "command": command, "value": value}

        ir_command = map_to_ir_command(command, value)
        if ir_command is None:
            raise InfraredError(f"Cannot map command '{command}={value}' to IR code", transport="ir")

        code = self.library.get_code(brand, ir_command)
        if code is None:
            raise InfraredError(
                f"No IR code for {brand}/{ir_command}. Use learning mode to capture it.",
                transport="ir",
            )
        if code.raw is not None:
            await blaster.send_ir(code.raw)
        return {
            "sent": code.raw is not None,
            "source": "library",
            "code": code.command,
            "protocol": code.protocol,
            "brand": brand,
        }

    async def learn(self, blaster_id: str, label: str, timeout: float = 15.0) -> Dict[str, Any]:
        """Capture a code from a physical remote and store it under ``label``."""

        blaster = self._blaster(blaster_id)
        self.logger.info(
            "Learning mode active, waiting for IR signal",
            extra={"blaster_id": blaster_id, "label": label},
        )
        raw = await blaster.learn_ir(timeout)
        if not raw:
            raise InfraredError(f"No IR code captured on {blaster_id} within {timeout}s", transport="ir")
        self.library.save_learned_code(blaster_id, label, raw)
        return {"success": True, "label": label, "blaster_id": blaster_id, "code_length": len(raw)}


__all__ = [
    "IRCode",
    "IRCodeLibrary",
    "IRBlaster",
    "InfraredController",
    "BlasterController",
    "LearnedCode",
    "map_to_ir_command",
    "learned_label",
]
