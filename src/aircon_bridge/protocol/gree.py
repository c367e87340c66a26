"""Gree family adapter (Gree, Hisense, Tosot).

Gree units speak JSON over AES-128-ECB encrypted UDP on port 7000. The
bind handshake is not implemented yet, so device operations are rejected.
"""

from __future__ import annotations

from typing import Any

from .base import Capabilities, StubProtocolAdapter

# Key used for the scan/bind exchange before a device key is issued.
DEFAULT_DISCOVERY_KEY = "a3K8Bx%2r8Y7#xDh"

CAPABILITIES = Capabilities(
    modes=("cool", "heat", "auto", "dry", "fan"),
    fan_speeds=("auto", "low", "medium", "high", "turbo"),
    swing_modes=("off", "vertical", "horizontal", "both"),
    special_modes=("off", "sleep", "turbo", "eco"),
    status="stub_implementation",
)


class GreeProtocolAdapter(StubProtocolAdapter):
    default_port = 7000

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.key = self.options.get("key") or DEFAULT_DISCOVERY_KEY

    @property
    def brand(self) -> str:
        return "gree"

    def get_capabilities(self) -> Capabilities:
        return CAPABILITIES


__all__ = ["GreeProtocolAdapter", "DEFAULT_DISCOVERY_KEY"]
