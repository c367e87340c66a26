"""Brand to protocol adapter registry."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Type

from ..errors import UnsupportedTransportError
from .base import (
    ACProtocolAdapter,
    ACStatus,
    Capabilities,
    StubProtocolAdapter,
    TemperatureReading,
    canonical_command,
)
from .daikin import DaikinProtocolAdapter
from .gree import GreeProtocolAdapter
from .midea import MideaProtocolAdapter
from .samsung import SamsungProtocolAdapter

# Default per-request timeout handed to adapters (seconds).
DEFAULT_ADAPTER_TIMEOUT = 5.0

# OEM brands share their parent family's adapter.
_PROTOCOL_ADAPTERS: Dict[str, Type[ACProtocolAdapter]] = {
    "daikin": DaikinProtocolAdapter,
    "samsung": SamsungProtocolAdapter,
    "midea": MideaProtocolAdapter,
    "carrier": MideaProtocolAdapter,
    "comfee": MideaProtocolAdapter,
    "toshiba": MideaProtocolAdapter,
    "gree": GreeProtocolAdapter,
    "hisense": GreeProtocolAdapter,
    "tosot": GreeProtocolAdapter,
}


def get_adapter(
    brand: str,
    host: str,
    port: Optional[int] = None,
    options: Optional[Mapping[str, Any]] = None,
    timeout: float = DEFAULT_ADAPTER_TIMEOUT,
) -> ACProtocolAdapter:
    """Create a protocol adapter for a brand.

    Args:
        brand: Brand name, case-insensitive (e.g., 'daikin', 'Carrier')
        host: Device IP address or hostname
        port: Device port; the adapter's default when omitted
        options: Brand-specific options such as tokens or keys
        timeout: Per-request timeout in seconds

    Returns:
        A fresh, unconnected adapter instance

    Raises:
        UnsupportedTransportError: If the brand has no local adapter
    """
    adapter_cls = _PROTOCOL_ADAPTERS.get((brand or "").lower())
    if adapter_cls is None:
        raise UnsupportedTransportError(
            f"No local WiFi protocol adapter for brand: {brand}. "
            f"Supported: {', '.join(_PROTOCOL_ADAPTERS)}",
            transport="wifi",
        )
    return adapter_cls(host, port, options, timeout=timeout)


def has_adapter(brand: Optional[str]) -> bool:
    """Return whether a brand has a local adapter."""
    return bool(brand) and brand.lower() in _PROTOCOL_ADAPTERS


def get_supported_brands() -> list[str]:
    """Get the brand names with a local adapter, including OEM aliases."""
    return list(_PROTOCOL_ADAPTERS)


__all__ = [
    "ACProtocolAdapter",
    "ACStatus",
    "Capabilities",
    "StubProtocolAdapter",
    "TemperatureReading",
    "DaikinProtocolAdapter",
    "SamsungProtocolAdapter",
    "MideaProtocolAdapter",
    "GreeProtocolAdapter",
    "canonical_command",
    "get_adapter",
    "has_adapter",
    "get_supported_brands",
    "DEFAULT_ADAPTER_TIMEOUT",
]
