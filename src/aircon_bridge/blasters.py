"""Broadlink RM-family IR blasters.

Wire encryption, discovery and learning are handled by ``python-broadlink``;
its blocking calls run in worker threads so the event loop keeps serving
other devices.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Iterable, List, Optional

import broadlink
from broadlink.exceptions import BroadlinkException, ReadError, StorageError

from .errors import InfraredError
from .infrared import BlasterController, IRBlaster
from .logging import get_logger

# Seconds between check_data polls while a blaster is in learning mode.
_LEARN_POLL_INTERVAL = 1.0

logger = get_logger("aircon.ir.broadlink")


def blaster_id_for(ip: str, mac: bytes) -> str:
    """Identifier used for a blaster in device configuration (``ip:mac``)."""

    return f"{ip}:{bytes(mac).hex()}"


def is_ir_capable(device: Any) -> bool:
    """Only RM-series units can transmit and learn IR codes."""

    return callable(getattr(device, "send_data", None)) and callable(
        getattr(device, "enter_learning", None)
    )


class BroadlinkBlaster(IRBlaster):
    """Wraps one ``broadlink`` RM device."""

    def __init__(self, device: Any) -> None:
        self.device = device
        self.ip = device.host[0]
        self.mac = bytes(device.mac).hex()
        self.blaster_id = blaster_id_for(self.ip, device.mac)
        self.authorized = False

    async def authorize(self) -> None:
        try:
            await asyncio.to_thread(self.device.auth)
        except (BroadlinkException, OSError) as exc:
            raise InfraredError(
                f"Broadlink authentication failed for {self.blaster_id}: {exc}", transport="ir"
            ) from exc
        self.authorized = True

    async def send_ir(self, raw: bytes) -> None:
        if not self.authorized:
            await self.authorize()
        try:
            await asyncio.to_thread(self.device.send_data, bytes(raw))
        except (BroadlinkException, OSError) as exc:
            raise InfraredError(f"Broadlink send failed on {self.blaster_id}: {exc}", transport="ir") from exc

    async def learn_ir(self, timeout: float) -> bytes:
        if not self.authorized:
            await self.authorize()
        try:
            await asyncio.to_thread(self.device.enter_learning)
        except (BroadlinkException, OSError) as exc:
            raise InfraredError(
                f"Broadlink learning mode failed on {self.blaster_id}: {exc}", transport="ir"
            ) from exc
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            await asyncio.sleep(min(_LEARN_POLL_INTERVAL, max(0.0, deadline - time.monotonic())))
            try:
                data = await asyncio.to_thread(self.device.check_data)
            except (ReadError, StorageError):
                # Nothing captured yet.
                continue
            except (BroadlinkException, OSError) as exc:
                raise InfraredError(
                    f"Broadlink read failed on {self.blaster_id}: {exc}", transport="ir"
                ) from exc
            if data:
                return bytes(data)
        return b""

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.blaster_id,
            "ip": self.ip,
            "mac": self.mac,
            "type": getattr(self.device, "model", None) or getattr(self.device, "type", None),
            "authorized": self.authorized,
        }


async def discover_blasters(
    timeout: float = 5.0, local_ip: Optional[str] = None
) -> List[BroadlinkBlaster]:
    """Broadcast a Broadlink discovery and keep the IR-capable responders."""

    devices: Iterable[Any] = await asyncio.to_thread(
        broadlink.discover, timeout=timeout, local_ip_address=local_ip
    )
    blasters = [BroadlinkBlaster(device) for device in devices if is_ir_capable(device)]
    logger.debug("Broadlink discovery finished", extra={"blasters": len(blasters)})
    return blasters


async def register_discovered_blasters(
    controller: BlasterController, timeout: float = 5.0, local_ip: Optional[str] = None
) -> List[BroadlinkBlaster]:
    """Discover blasters and register each under its ``ip:mac`` identifier."""

    found = await discover_blasters(timeout, local_ip)
    for blaster in found:
        controller.register_blaster(blaster.blaster_id, blaster)
    return found


__all__ = [
    "BroadlinkBlaster",
    "blaster_id_for",
    "discover_blasters",
    "is_ir_capable",
    "register_discovered_blasters",
]
