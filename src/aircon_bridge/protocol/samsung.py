"""Samsung local REST protocol adapter.

Units answer plain HTTP on port 8888; some firmware only serves HTTPS on 8889,
selected with the ``scheme`` device option.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import httpx

from ..errors import TransportError, TransportFailureError
from .base import ACStatus, Capabilities, TemperatureReading, coerce_float, coerce_int, coerce_power
from .http import HttpProtocolAdapter

CAPABILITIES = Capabilities(
    modes=("cool", "heat", "auto", "dry", "wind"),
    fan_speeds=("auto", "low", "medium", "high", "turbo"),
    swing_modes=("off", "fixed", "vertical", "horizontal", "all"),
    special_modes=("off", "quiet", "sleep", "windFree", "windFreeSleep", "speed"),
)


class SamsungProtocolAdapter(HttpProtocolAdapter):
    """Protocol adapter for Samsung smart ACs exposing the local REST API.

    The device needs a one-time token exchange (:meth:`pair`); the token is
    then sent as a bearer header on every request.
    """

    default_port = 8888

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.token: Optional[str] = self.options.get("token")
        self.device_info: Dict[str, Any] = {}
        self.cached_status: Dict[str, Any] = {}

    @property
    def brand(self) -> str:
        return "samsung"

    async def connect(self) -> Dict[str, Any]:
        if self.connected:
            return self.device_info
        try:
            self.device_info = await self._call("GET", "/devices/0")
        except TransportFailureError as exc:
            raise TransportFailureError(
                f"Cannot connect to Samsung AC at {self.host}:{self.port}: {exc}"
            ) from exc
        self.connected = True
        return self.device_info

    async def get_status(self) -> ACStatus:
        raw = await self._call("GET", "/devices/0/status")
        self.cached_status = raw
        status = self.normalize_status(raw)
        self.last_status = status
        return status

    async def set_power(self, on: Any) -> Dict[str, Any]:
        return await self._send_desired({"switch": "on" if coerce_power(on) else "off"})

    async def set_temperature(self, temperature: Any) -> Dict[str, Any]:
        return await self._send_desired({"desiredTemperature": self._require_temperature(temperature)})

    async def set_mode(self, mode: str) -> Dict[str, Any]:
        self._require_choice("mode", mode, CAPABILITIES.modes)
        return await self._send_desired({"mode": mode})

    async def set_fan_speed(self, speed: str) -> Dict[str, Any]:
        self._require_choice("fan speed", speed, CAPABILITIES.fan_speeds)
        return await self._send_desired({"fanMode": speed})

    async def set_swing(self, mode: str) -> Dict[str, Any]:
        self._require_choice("swing mode", mode, CAPABILITIES.swing_modes)
        return await self._send_desired({"fanOscillationMode": mode})

    async def set_special_mode(self, mode: str) -> Dict[str, Any]:
        self._require_choice("special mode", mode, CAPABILITIES.special_modes)
        return await self._send_desired({"optionalMode": mode})

    def get_capabilities(self) -> Capabilities:
        return CAPABILITIES

    async def pair(self) -> Dict[str, Any]:
        """Request a pairing token from the unit and keep it for later requests."""

        try:
            response = await self._call("POST", "/devices/0/pair", json={})
        except TransportError as exc:
            self.logger.warning("Samsung pairing failed", extra={"host": self.host, "error": str(exc)})
            return {"success": False, "error": str(exc)}
        self.token = response.get("token") or response.get("accessToken")
        self.logger.info("Samsung pairing complete", extra={"host": self.host})
        return {"success": True, "token": self.token}

    @staticmethod
    def normalize_status(raw: Mapping[str, Any]) -> ACStatus:
        """Flatten the nested Samsung status document."""

        status = raw.get("status") or raw.get("desired") or raw or {}
        current = status.get("temperature")
        if current is None:
            current = status.get("currentTemperature")
        target = status.get("desiredTemperature")
        if target is None:
            target = status.get("targetTemperature")
        return ACStatus(
            power=status.get("switch") or status.get("power") or "off",
            temperature=TemperatureReading(current=coerce_float(current), target=coerce_float(target)),
            humidity=coerce_int(status.get("humidity")),
            mode=status.get("mode") or "cool",
            fan_speed=status.get("fanMode") or status.get("fanSpeed") or "auto",
            swing=status.get("fanOscillationMode") or "off",
            special_mode=status.get("optionalMode") or status.get("specialMode") or "off",
        )

    async def _send_desired(self, desired: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._call("PUT", "/devices/0", json={"desired": dict(desired)})

    async def _call(self, method: str, path: str, *, json: Any = None) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = await self._request(method, path, json=json, headers=headers)
        return _decode_body(response)


def _decode_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"raw": response.text}
    if isinstance(body, dict):
        return body
    return {"raw": body}


__all__ = ["SamsungProtocolAdapter"]
