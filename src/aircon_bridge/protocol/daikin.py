"""Daikin local HTTP protocol adapter.

Daikin WiFi adapters expose a plain HTTP API on port 80 answering with
comma-separated ``key=value`` bodies, e.g.
``ret=OK,pow=1,mode=3,stemp=24.0,shum=0,f_rate=A,f_dir=0``.

Endpoints:
- /common/basic_info       device info, MAC, firmware
- /aircon/get_control_info power, target temperature, mode, fan, swing
- /aircon/get_sensor_info  room/outdoor temperature, humidity
- /aircon/set_control_info apply a full control parameter set
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional

from ..errors import TransportFailureError
from .base import ACStatus, Capabilities, TemperatureReading, coerce_float, coerce_int, coerce_power
from .http import HttpProtocolAdapter

MODE_MAP = {0: "auto", 1: "auto", 2: "dry", 3: "cool", 4: "heat", 6: "fan"}
MODE_REVERSE = {"auto": 1, "dry": 2, "cool": 3, "heat": 4, "fan": 6}

FAN_MAP = {
    "A": "auto",
    "B": "quiet",
    "3": "low",
    "4": "medium-low",
    "5": "medium",
    "6": "medium-high",
    "7": "high",
}
FAN_REVERSE = {name: code for code, name in FAN_MAP.items()}

SWING_MAP = {0: "off", 1: "vertical", 2: "horizontal", 3: "both"}
SWING_REVERSE = {"off": 0, "vertical": 1, "horizontal": 2, "both": 3, "all": 3}

SPECIAL_REVERSE = {
    "off": {"en_econo": "0", "en_powerful": "0"},
    "econo": {"en_econo": "1"},
    "eco": {"en_econo": "1"},
    "powerful": {"en_powerful": "1"},
    "turbo": {"en_powerful": "1"},
}

_REQUIRED_CONTROL_KEYS = ("pow", "mode", "stemp", "shum", "f_rate", "f_dir")
_OPTIONAL_CONTROL_KEYS = ("en_econo", "en_powerful", "adv")

CAPABILITIES = Capabilities(
    modes=("cool", "heat", "auto", "dry", "fan"),
    fan_speeds=("auto", "quiet", "low", "medium-low", "medium", "medium-high", "high"),
    swing_modes=("off", "vertical", "horizontal", "both"),
    special_modes=("off", "econo", "powerful"),
)


def parse_key_values(text: str) -> Dict[str, str]:
    """Parse Daikin's ``key=value,key=value`` response body."""

    result: Dict[str, str] = {}
    for pair in text.strip().split(","):
        key, _, value = pair.partition("=")
        key = key.strip()
        if key:
            result[key] = value
    return result


class DaikinProtocolAdapter(HttpProtocolAdapter):
    """Protocol adapter for Daikin units with a local WiFi module."""

    default_port = 80

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.device_info: Dict[str, str] = {}
        self.last_control_info: Dict[str, str] = {}

    @property
    def brand(self) -> str:
        return "daikin"

    async def connect(self) -> Dict[str, str]:
        if self.connected:
            return self.device_info
        try:
            self.device_info = await self._get("/common/basic_info")
        except TransportFailureError as exc:
            raise TransportFailureError(f"Cannot connect to Daikin at {self.host}: {exc}") from exc
        self.connected = True
        return self.device_info

    async def get_status(self) -> ACStatus:
        control, sensor = await asyncio.gather(
            self._get("/aircon/get_control_info"),
            self._get("/aircon/get_sensor_info"),
        )
        self.last_control_info = dict(control)
        status = self.normalize_status(control, sensor)
        self.last_status = status
        return status

    async def set_power(self, on: Any) -> Dict[str, str]:
        return await self._set_control({"pow": "1" if coerce_power(on) else "0"})

    async def set_temperature(self, temperature: Any) -> Dict[str, str]:
        target = self._require_temperature(temperature)
        return await self._set_control({"stemp": f"{target:.1f}"})

    async def set_mode(self, mode: str) -> Dict[str, str]:
        self._require_choice("mode", mode, tuple(MODE_REVERSE))
        return await self._set_control({"mode": str(MODE_REVERSE[mode])})

    async def set_fan_speed(self, speed: str) -> Dict[str, str]:
        self._require_choice("fan speed", speed, tuple(FAN_REVERSE))
        return await self._set_control({"f_rate": FAN_REVERSE[speed]})

    async def set_swing(self, mode: str) -> Dict[str, str]:
        self._require_choice("swing mode", mode, tuple(SWING_REVERSE))
        return await self._set_control({"f_dir": str(SWING_REVERSE[mode])})

    async def set_special_mode(self, mode: str) -> Dict[str, str]:
        self._require_choice("special mode", mode, tuple(SPECIAL_REVERSE))
        return await self._set_control(dict(SPECIAL_REVERSE[mode]))

    def get_capabilities(self) -> Capabilities:
        return CAPABILITIES

    @staticmethod
    def normalize_status(control: Mapping[str, str], sensor: Mapping[str, str]) -> ACStatus:
        """Translate Daikin control/sensor blocks into the shared status format."""

        if control.get("en_econo") == "1":
            special = "econo"
        elif control.get("en_powerful") == "1":
            special = "powerful"
        else:
            special = "off"
        return ACStatus(
            power="on" if control.get("pow") == "1" else "off",
            temperature=TemperatureReading(
                current=coerce_float(sensor.get("htemp")),
                target=coerce_float(control.get("stemp")),
                outdoor=coerce_float(sensor.get("otemp")),
            ),
            humidity=coerce_int(sensor.get("hhum")),
            mode=MODE_MAP.get(coerce_int(control.get("mode")), "cool"),
            fan_speed=FAN_MAP.get(control.get("f_rate", ""), "auto"),
            swing=SWING_MAP.get(coerce_int(control.get("f_dir")), "off"),
            special_mode=special,
        )

    # ===== Internal Helper Methods =====

    async def _get(self, path: str, params: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        response = await self._request("GET", path, params=params)
        return parse_key_values(response.text)

    async def _set_control(self, changes: Mapping[str, str]) -> Dict[str, str]:
        # set_control_info needs the full parameter set, not just the delta.
        if not self.last_control_info:
            self.last_control_info = await self._get("/aircon/get_control_info")
        params = {**self.last_control_info, **changes}
        query: Dict[str, str] = {}
        for key in _REQUIRED_CONTROL_KEYS + _OPTIONAL_CONTROL_KEYS:
            if key in params:
                query[key] = params[key]
        result = await self._get("/aircon/set_control_info", params=query)
        if result.get("ret") != "OK":
            raise TransportFailureError(f"Daikin returned: {result.get('ret') or 'no status'}")
        self.last_control_info.update(query)
        return result


__all__ = ["DaikinProtocolAdapter", "parse_key_values"]
