"""Network scan methods used by the discovery service.

Each scanner is narrowly scoped to AC-like signatures and releases its
sockets/listeners on every exit path, including cancellation.
"""

from __future__ import annotations

import asyncio
import contextlib
import ipaddress
import re
import socket
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple
from urllib.parse import unquote, urlsplit

import httpx
from zeroconf import ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from .config import Config
from .logging import get_logger

MDNS = "mdns"
SSDP = "ssdp"
PORT_SCAN = "port_scan"

UNKNOWN_BRAND = "unknown"


@dataclass
class DiscoveredDevice:
    """Candidate device reported by one scan method."""

    ip: str
    port: int
    name: str
    brand: str
    method: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "ip": self.ip,
            "port": self.port,
            "name": self.name,
            "brand": self.brand,
            "discoveryMethod": self.method,
            **self.metadata,
        }


# Brand keywords checked in order against advertised names and headers.
BRAND_KEYWORDS: Tuple[str, ...] = (
    "daikin",
    "samsung",
    "lg",
    "midea",
    "haier",
    "gree",
    "carrier",
    "voltas",
    "bluestar",
    "hitachi",
    "panasonic",
    "mitsubishi",
    "toshiba",
    "whirlpool",
    "godrej",
    "lloyd",
)

_NAME_JUNK = (
    re.compile(r",?\s*UPnP/[\d.]+", re.IGNORECASE),
    re.compile(r",?\s*Unspecified", re.IGNORECASE),
    re.compile(r",?\s*Portable SDK for UPnP devices/[\d.]+", re.IGNORECASE),
    re.compile(r",?\s*Linux/[\d.]+", re.IGNORECASE),
)
_PLACEHOLDER_NAMES = {"", "SSDP Device", "Unknown AC"}


def detect_brand(*fields: str) -> str:
    combined = " ".join(fields).lower()
    for keyword in BRAND_KEYWORDS:
        if keyword in combined:
            return keyword
    return UNKNOWN_BRAND


def _brand_label(brand: Optional[str]) -> str:
    if not brand or brand == UNKNOWN_BRAND:
        return "Smart"
    return brand[:1].upper() + brand[1:]


def clean_device_name(raw: Optional[str], brand: Optional[str], ip: str) -> str:
    """Turn a raw advertised name or SERVER header into a user-facing label."""

    if not raw or raw in _PLACEHOLDER_NAMES:
        return f"{_brand_label(brand)} AC ({ip})"
    cleaned = raw
    for pattern in _NAME_JUNK:
        cleaned = pattern.sub("", cleaned)
    cleaned = cleaned.strip(" ,").strip()
    if len(cleaned) < 2:
        return f"{_brand_label(brand)} AC ({ip})"
    return cleaned


class BaseScanner(ABC):
    """One independent discovery method."""

    method: str = ""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.logger = get_logger(f"aircon.discovery.{self.logger_suffix}")

    @property
    def logger_suffix(self) -> str:
        return self.method

    @abstractmethod
    async def scan(self, timeout: float) -> List[DiscoveredDevice]:
        """Collect candidates for at most ``timeout`` seconds."""
        pass


# ---------------------------------------------------------------------------
# mDNS / Bonjour
# ---------------------------------------------------------------------------

MDNS_SERVICES: Tuple[Tuple[str, str], ...] = (
    ("_samsung-ac._tcp.local.", "samsung"),
    ("_daikin._tcp.local.", "daikin"),
    ("_lg-smart._tcp.local.", "lg"),
    ("_midea._tcp.local.", "midea"),
    ("_haier-ac._tcp.local.", "haier"),
    ("_aircon._tcp.local.", UNKNOWN_BRAND),
    ("_http._tcp.local.", UNKNOWN_BRAND),
)
GENERIC_SERVICE = "_http._tcp.local."

_AC_NAME_KEYWORDS = ("aircon", "daikin", "samsung", "midea", "hvac")
_AC_WORD = re.compile(r"(?<![a-z])ac(?![a-z])")

# Seconds allowed for resolving a single advertised service.
_MDNS_RESOLVE_TIMEOUT = 3.0


def is_ac_service_name(name: str) -> bool:
    """Keyword filter applied to generic ``_http._tcp`` advertisements."""

    lowered = name.lower()
    if any(keyword in lowered for keyword in _AC_NAME_KEYWORDS):
        return True
    return bool(_AC_WORD.search(lowered))


def _instance_name(name: str, service_type: str) -> str:
    suffix = f".{service_type}"
    return name[: -len(suffix)] if name.endswith(suffix) else name


def _decode_txt(properties: Mapping[Any, Any]) -> Dict[str, Optional[str]]:
    decoded: Dict[str, Optional[str]] = {}
    for key, value in properties.items():
        text_key = key.decode("utf-8", "replace") if isinstance(key, bytes) else str(key)
        if isinstance(value, bytes):
            decoded[text_key] = value.decode("utf-8", "replace")
        else:
            decoded[text_key] = value
    return decoded


class MdnsScanner(BaseScanner):
    """Browses AC-related service types with zeroconf."""

    method = MDNS

    def __init__(
        self, config: Config, services: Sequence[Tuple[str, str]] = MDNS_SERVICES
    ) -> None:
        super().__init__(config)
        self.services = dict(services)

    async def scan(self, timeout: float) -> List[DiscoveredDevice]:
        devices: List[DiscoveredDevice] = []
        pending: Set[asyncio.Task[None]] = set()
        aiozc = AsyncZeroconf()
        browser: Optional[AsyncServiceBrowser] = None

        def on_service_state_change(
            zeroconf: Zeroconf, service_type: str, name: str, state_change: ServiceStateChange
        ) -> None:
            if state_change is not ServiceStateChange.Added:
                return
            task = asyncio.ensure_future(self._resolve(zeroconf, service_type, name, devices))
            pending.add(task)
            task.add_done_callback(pending.discard)

        try:
            browser = AsyncServiceBrowser(
                aiozc.zeroconf, list(self.services), handlers=[on_service_state_change]
            )
            await asyncio.sleep(timeout)
        finally:
            for task in list(pending):
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            if browser is not None:
                await browser.async_cancel()
            await aiozc.async_close()
        return devices

    async def _resolve(
        self, zeroconf: Zeroconf, service_type: str, name: str, devices: List[DiscoveredDevice]
    ) -> None:
        instance = _instance_name(name, service_type)
        if service_type == GENERIC_SERVICE and not is_ac_service_name(instance):
            return
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, int(_MDNS_RESOLVE_TIMEOUT * 1000)):
            self.logger.debug("mDNS service did not resolve", extra={"service": name})
            return
        addresses = info.parsed_addresses()
        ip = addresses[0] if addresses else ""
        brand = self.services.get(service_type, UNKNOWN_BRAND)
        devices.append(
            DiscoveredDevice(
                ip=ip,
                port=info.port or 80,
                name=clean_device_name(instance, brand, ip),
                brand=brand,
                method=MDNS,
                metadata={
                    "serviceType": service_type,
                    "txt": _decode_txt(info.properties or {}),
                },
            )
        )
        self.logger.debug("mDNS candidate", extra={"ip": ip, "service": service_type})


# ---------------------------------------------------------------------------
# SSDP / UPnP
# ---------------------------------------------------------------------------

SSDP_SEARCH_TARGETS: Tuple[str, ...] = (
    "urn:schemas-upnp-org:device:hvac:1",
    "urn:samsung.com:device:AirConditioner:1",
    "ssdp:all",
)

SSDP_AC_KEYWORDS: Tuple[str, ...] = (
    "hvac",
    "airconditioner",
    "air_conditioner",
    "aircon",
) + BRAND_KEYWORDS
SSDP_AC_PORT_PATHS: Tuple[str, ...] = (":8888", ":80/aircon", ":80/common/basic_info")


def build_msearch(search_target: str, address: str, port: int, mx: int = 2) -> bytes:
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {address}:{port}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {mx}\r\n"
        f"ST: {search_target}\r\n"
        "\r\n"
    ).encode("ascii")


def parse_ssdp_headers(data: bytes) -> Optional[Dict[str, str]]:
    """Parse an SSDP response into upper-cased headers; ``None`` if it is not one."""

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    lines = text.split("\r\n")
    if not lines or not lines[0].upper().startswith(("HTTP/1.1 200", "NOTIFY")):
        return None
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        key, sep, value = line.partition(":")
        if sep:
            headers[key.strip().upper()] = value.strip()
    return headers


def ssdp_candidate(headers: Mapping[str, str], addr: Tuple[str, int]) -> Optional[DiscoveredDevice]:
    """Apply the AC allow-list to one response; ``None`` for anything else."""

    location = headers.get("LOCATION", "")
    server = headers.get("SERVER", "")
    usn = headers.get("USN", "")
    combined = " ".join((server, usn, location, headers.get("ST", ""))).lower()
    is_ac = any(keyword in combined for keyword in SSDP_AC_KEYWORDS) or any(
        path in location for path in SSDP_AC_PORT_PATHS
    )
    if not is_ac:
        return None
    ip = addr[0]
    port = addr[1]
    if location:
        with contextlib.suppress(ValueError):
            port = urlsplit(location).port or port
    brand = detect_brand(server, usn, location)
    return DiscoveredDevice(
        ip=ip,
        port=port,
        name=clean_device_name(server, brand, ip),
        brand=brand,
        method=SSDP,
        metadata={"location": location, "usn": usn},
    )


class _SsdpProtocol(asyncio.DatagramProtocol):
    def __init__(self, scanner: "SsdpScanner") -> None:
        self.scanner = scanner
        self.devices: List[DiscoveredDevice] = []
        self.transport: Optional[asyncio.DatagramTransport] = None
        self._seen: Set[str] = set()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        headers = parse_ssdp_headers(data)
        if headers is None:
            return
        device = ssdp_candidate(headers, addr)
        if device is None:
            return
        if device.ip in self._seen:
            return
        self._seen.add(device.ip)
        self.devices.append(device)
        self.scanner.logger.debug(
            "SSDP candidate", extra={"ip": device.ip, "server": headers.get("SERVER")}
        )

    def error_received(self, exc: Exception) -> None:
        self.scanner.logger.debug("SSDP socket error", extra={"error": str(exc)})


class SsdpScanner(BaseScanner):
    """Staged M-SEARCH queries; responses pass through the AC allow-list."""

    method = SSDP

    async def scan(self, timeout: float) -> List[DiscoveredDevice]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: _SsdpProtocol(self),
            local_addr=("0.0.0.0", 0),
            family=socket.AF_INET,
        )
        target = (self.config.ssdp_address, self.config.ssdp_port)
        try:
            for index, search_target in enumerate(SSDP_SEARCH_TARGETS):
                if index:
                    await asyncio.sleep(min(self.config.ssdp_stage_delay, max(0.0, deadline - loop.time())))
                transport.sendto(
                    build_msearch(search_target, self.config.ssdp_address, self.config.ssdp_port),
                    target,
                )
            await asyncio.sleep(max(0.0, deadline - loop.time()))
        finally:
            transport.close()
        return list(protocol.devices)


# ---------------------------------------------------------------------------
# Targeted HTTP port probe
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProbeTarget:
    port: int
    brand: str
    path: str
    scheme: str = "http"


PROBE_TARGETS: Tuple[ProbeTarget, ...] = (
    ProbeTarget(80, "daikin", "/common/basic_info"),
    ProbeTarget(8888, "samsung", "/devices/0"),
    ProbeTarget(8889, "samsung", "/devices/0", "https"),
)

AC_BODY_MARKERS: Tuple[str, ...] = ("ret=OK", "deviceId", "aircon", "temperature")

_NAME_PATTERNS = (
    re.compile(r"name=([^&\n,]+)"),
    re.compile(r'"name"\s*:\s*"([^"]+)"'),
)

# Stop launching batches once less than this is left of the budget.
_PROBE_BUDGET_MARGIN = 0.5


def local_ipv4() -> Optional[str]:
    """Best-effort primary IPv4 address of this host."""

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect only selects the outbound interface.
        sock.connect(("10.255.255.255", 1))
        address = sock.getsockname()[0]
    except OSError:
        return None
    finally:
        sock.close()
    if address.startswith("127."):
        return None
    return address


def probe_candidate(ip: str, target: ProbeTarget, body: str) -> Optional[DiscoveredDevice]:
    """Accept a probe response only when the body carries AC markers."""

    if not any(marker in body for marker in AC_BODY_MARKERS):
        return None
    model = ""
    for pattern in _NAME_PATTERNS:
        match = pattern.search(body)
        if match:
            model = f" {unquote(match.group(1)).strip()}"
            break
    return DiscoveredDevice(
        ip=ip,
        port=target.port,
        name=f"{_brand_label(target.brand)}{model} AC ({ip})",
        brand=target.brand,
        method=PORT_SCAN,
        metadata={"responseSnippet": body[:100]},
    )


class PortProbeScanner(BaseScanner):
    """Probes the handful of known AC HTTP endpoints across the local /24."""

    method = PORT_SCAN
    logger_suffix = "probe"

    def __init__(
        self,
        config: Config,
        *,
        targets: Sequence[ProbeTarget] = PROBE_TARGETS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(config)
        self.targets = tuple(targets)
        self._transport = transport

    def hosts(self) -> List[str]:
        if self.config.probe_subnet:
            network = ipaddress.ip_network(self.config.probe_subnet, strict=False)
        else:
            address = local_ipv4()
            if address is None:
                return []
            network = ipaddress.ip_network(f"{address}/24", strict=False)
        hosts: List[str] = []
        for host in network.hosts():
            if len(hosts) >= self.config.probe_host_limit:
                break
            hosts.append(str(host))
        return hosts

    async def scan(self, timeout: float) -> List[DiscoveredDevice]:
        hosts = self.hosts()
        if not hosts:
            self.logger.info("No local subnet found; skipping port probe")
            return []
        work = [(host, target) for host in hosts for target in self.targets]
        started = time.monotonic()
        devices: List[DiscoveredDevice] = []
        batch_size = self.config.probe_batch_size
        async with httpx.AsyncClient(
            transport=self._transport,
            verify=False,
            headers={"Accept": "application/json, text/plain"},
        ) as client:
            for offset in range(0, len(work), batch_size):
                remaining = timeout - (time.monotonic() - started)
                if remaining <= _PROBE_BUDGET_MARGIN:
                    self.logger.debug(
                        "Port probe budget exhausted",
                        extra={"probed": offset, "total": len(work)},
                    )
                    break
                probe_timeout = min(self.config.probe_timeout, remaining)
                batch = work[offset : offset + batch_size]
                tasks = [
                    asyncio.ensure_future(self._probe(client, host, target, probe_timeout))
                    for host, target in batch
                ]
                try:
                    # httpx timeouts are per phase; a host trickling bytes can outlive them.
                    done, pending = await asyncio.wait(tasks, timeout=remaining)
                finally:
                    stalled = [task for task in tasks if not task.done()]
                    for task in stalled:
                        task.cancel()
                    if stalled:
                        await asyncio.gather(*stalled, return_exceptions=True)
                if pending:
                    self.logger.debug(
                        "Port probes cut off at budget", extra={"stalled": len(pending)}
                    )
                for task in tasks:
                    if task not in done:
                        continue
                    device = task.result()
                    if device is not None:
                        devices.append(device)
        return devices

    async def _probe(
        self, client: httpx.AsyncClient, ip: str, target: ProbeTarget, timeout: float
    ) -> Optional[DiscoveredDevice]:
        url = f"{target.scheme}://{ip}:{target.port}{target.path}"
        try:
            response = await client.get(url, timeout=timeout)
        except httpx.HTTPError:
            return None
        if not response.is_success:
            return None
        return probe_candidate(ip, target, response.text)


__all__ = [
    "BaseScanner",
    "DiscoveredDevice",
    "MdnsScanner",
    "PortProbeScanner",
    "ProbeTarget",
    "SsdpScanner",
    "MDNS",
    "SSDP",
    "PORT_SCAN",
    "clean_device_name",
    "detect_brand",
    "is_ac_service_name",
    "parse_ssdp_headers",
    "probe_candidate",
    "ssdp_candidate",
]
