"""Discovery service merging mDNS, SSDP and port-probe results."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import Config
from .logging import get_logger
from .metrics import (
    observe_discovery_run,
    record_discovery_cache_hit,
    record_discovery_candidates,
    record_discovery_error,
)
from .scanners import (
    MDNS,
    PORT_SCAN,
    SSDP,
    BaseScanner,
    DiscoveredDevice,
    MdnsScanner,
    PortProbeScanner,
    SsdpScanner,
)

# Lower wins when two methods report the same address.
METHOD_PRIORITY: Dict[str, int] = {MDNS: 1, SSDP: 2, PORT_SCAN: 3}

# Extra time a scanner gets beyond the budget before it is cancelled.
_SCANNER_GRACE = 1.0


def deduplicate_by_ip(devices: Iterable[DiscoveredDevice]) -> List[DiscoveredDevice]:
    """Keep one candidate per address, preferring mDNS over SSDP over port probes."""

    by_ip: Dict[str, DiscoveredDevice] = {}
    for device in devices:
        if not device.ip:
            continue
        existing = by_ip.get(device.ip)
        if existing is None or METHOD_PRIORITY.get(device.method, 99) < METHOD_PRIORITY.get(
            existing.method, 99
        ):
            by_ip[device.ip] = device
    return list(by_ip.values())


@dataclass(frozen=True)
class _CacheEntry:
    devices: Tuple[DiscoveredDevice, ...]
    timestamp: float


def default_scanners(config: Config) -> List[BaseScanner]:
    scanners: List[BaseScanner] = []
    if config.mdns_enabled:
        scanners.append(MdnsScanner(config))
    if config.ssdp_enabled:
        scanners.append(SsdpScanner(config))
    if config.port_probe_enabled:
        scanners.append(PortProbeScanner(config))
    return scanners


class DiscoveryService:
    """Runs every scanner concurrently and caches the merged result.

    A failing or slow scanner only loses its own results; the others still
    contribute. The cache is replaced as a whole, so readers never observe
    a partially merged list.
    """

    def __init__(self, config: Config, scanners: Optional[Sequence[BaseScanner]] = None) -> None:
        self.config = config
        self.scanners = list(scanners) if scanners is not None else default_scanners(config)
        self.logger = get_logger("aircon.discovery")
        self._cache: Optional[_CacheEntry] = None
        self._refresh_lock = asyncio.Lock()

    def _cached(self) -> Optional[List[DiscoveredDevice]]:
        entry = self._cache
        if entry is None or not entry.devices:
            return None
        if time.monotonic() - entry.timestamp >= self.config.discovery_cache_ttl:
            return None
        return list(entry.devices)

    async def discover_all(self, timeout: Optional[float] = None) -> List[DiscoveredDevice]:
        """Return deduplicated candidates, served from cache while it is fresh."""

        cached = self._cached()
        if cached is not None:
            record_discovery_cache_hit()
            return cached
        async with self._refresh_lock:
            # Another caller may have refreshed while we waited.
            cached = self._cached()
            if cached is not None:
                record_discovery_cache_hit()
                return cached
            budget = timeout if timeout is not None else self.config.discovery_timeout
            start = time.perf_counter()
            self.logger.info(
                "Starting discovery",
                extra={"timeout": budget, "methods": [scanner.method for scanner in self.scanners]},
            )
            batches = await asyncio.gather(*(self._run_scanner(scanner, budget) for scanner in self.scanners))
            merged = deduplicate_by_ip(device for batch in batches for device in batch)
            self._cache = _CacheEntry(devices=tuple(merged), timestamp=time.monotonic())
            duration = time.perf_counter() - start
            observe_discovery_run("success", duration)
            self.logger.info(
                "Discovery finished",
                extra={"devices": len(merged), "duration": round(duration, 3)},
            )
            return list(merged)

    def clear_cache(self) -> None:
        self._cache = None
        self.logger.debug("Discovery cache cleared")

    async def _run_scanner(self, scanner: BaseScanner, budget: float) -> List[DiscoveredDevice]:
        try:
            devices = await asyncio.wait_for(scanner.scan(budget), timeout=budget + _SCANNER_GRACE)
        except asyncio.TimeoutError:
            record_discovery_error(scanner.method, "timeout")
            self.logger.warning("Discovery method timed out", extra={"method": scanner.method})
            return []
        except Exception as exc:
            record_discovery_error(scanner.method, type(exc).__name__)
            self.logger.warning(
                "Discovery method failed",
                extra={"method": scanner.method, "error": str(exc)},
            )
            return []
        record_discovery_candidates(scanner.method, len(devices))
        self.logger.debug(
            "Discovery method complete",
            extra={"method": scanner.method, "devices": len(devices)},
        )
        return list(devices)


__all__ = [
    "DiscoveredDevice",
    "DiscoveryService",
    "METHOD_PRIORITY",
    "deduplicate_by_ip",
    "default_scanners",
]
