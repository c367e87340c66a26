"""Midea family adapter (Midea, Carrier, Comfee, some Toshiba).

The local protocol is AES-encrypted binary over TCP port 6444. Only the
capability description exists so far; device operations are rejected.
"""

from __future__ import annotations

from typing import Any

from .base import Capabilities, StubProtocolAdapter

CAPABILITIES = Capabilities(
    modes=("cool", "heat", "auto", "dry", "fan"),
    fan_speeds=("auto", "low", "medium", "high"),
    swing_modes=("off", "vertical", "horizontal", "both"),
    special_modes=("off", "eco", "turbo", "sleep"),
    status="stub_implementation",
)


class MideaProtocolAdapter(StubProtocolAdapter):
    default_port = 6444

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.device_id = self.options.get("deviceId") or self.options.get("device_id")
        self.token = self.options.get("token")
        self.key = self.options.get("key")

    @property
    def brand(self) -> str:
        return "midea"

    def get_capabilities(self) -> Capabilities:
        return CAPABILITIES


__all__ = ["MideaProtocolAdapter"]
