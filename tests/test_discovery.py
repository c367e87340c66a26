import asyncio
from typing import List, Optional, Sequence

import httpx
import pytest

from aircon_bridge.config import Config
from aircon_bridge.discovery import DiscoveryService, deduplicate_by_ip, default_scanners
from aircon_bridge.scanners import (
    MDNS,
    PORT_SCAN,
    PROBE_TARGETS,
    SSDP,
    BaseScanner,
    DiscoveredDevice,
    MdnsScanner,
    PortProbeScanner,
    SsdpScanner,
    build_msearch,
    clean_device_name,
    detect_brand,
    is_ac_service_name,
    parse_ssdp_headers,
    probe_candidate,
    ssdp_candidate,
)


def _device(ip: str, method: str, name: str = "AC") -> DiscoveredDevice:
    return DiscoveredDevice(ip=ip, port=80, name=name, brand="daikin", method=method)


class FakeScanner(BaseScanner):
    def __init__(
        self,
        method: str,
        devices: Sequence[DiscoveredDevice] = (),
        *,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        self.method = method
        super().__init__(Config())
        self.devices = list(devices)
        self.error = error
        self.delay = delay
        self.calls = 0
        self.budgets: List[float] = []

    async def scan(self, timeout: float) -> List[DiscoveredDevice]:
        self.calls += 1
        self.budgets.append(timeout)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.devices)


def test_deduplicate_prefers_mdns_then_ssdp_then_probe() -> None:
    merged = deduplicate_by_ip(
        [
            _device("10.0.0.5", PORT_SCAN, "probe"),
            _device("10.0.0.5", MDNS, "mdns"),
            _device("10.0.0.5", SSDP, "ssdp"),
            _device("10.0.0.6", PORT_SCAN, "probe-only"),
            _device("", MDNS, "no address"),
        ]
    )
    by_ip = {device.ip: device.name for device in merged}
    assert by_ip == {"10.0.0.5": "mdns", "10.0.0.6": "probe-only"}


def test_default_scanners_follow_enabled_flags() -> None:
    scanners = default_scanners(Config(ssdp_enabled=False))
    assert [type(scanner) for scanner in scanners] == [MdnsScanner, PortProbeScanner]
    assert default_scanners(Config(mdns_enabled=False, ssdp_enabled=False, port_probe_enabled=False)) == []
    assert isinstance(default_scanners(Config())[1], SsdpScanner)


@pytest.mark.asyncio
async def test_discover_all_merges_and_caches() -> None:
    mdns = FakeScanner(MDNS, [_device("10.0.0.5", MDNS, "Lounge")])
    ssdp = FakeScanner(SSDP, [_device("10.0.0.5", SSDP), _device("10.0.0.7", SSDP, "Bedroom")])
    service = DiscoveryService(Config(), scanners=[mdns, ssdp])

    first = await service.discover_all(timeout=2.0)
    second = await service.discover_all(timeout=2.0)

    assert sorted(device.name for device in first) == ["Bedroom", "Lounge"]
    assert [device.ip for device in second] == [device.ip for device in first]
    assert mdns.calls == 1 and ssdp.calls == 1
    assert mdns.budgets == [2.0]

    service.clear_cache()
    await service.discover_all()
    assert mdns.calls == 2
    assert mdns.budgets[-1] == Config().discovery_timeout


@pytest.mark.asyncio
async def test_expired_or_empty_cache_triggers_rescan() -> None:
    empty = FakeScanner(MDNS)
    service = DiscoveryService(Config(), scanners=[empty])
    assert await service.discover_all() == []
    assert await service.discover_all() == []
    assert empty.calls == 2

    found = FakeScanner(MDNS, [_device("10.0.0.9", MDNS)])
    expiring = DiscoveryService(Config(discovery_cache_ttl=0.0), scanners=[found])
    await expiring.discover_all()
    await expiring.discover_all()
    assert found.calls == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_scan() -> None:
    slow = FakeScanner(MDNS, [_device("10.0.0.10", MDNS)], delay=0.05)
    service = DiscoveryService(Config(), scanners=[slow])

    results = await asyncio.gather(*(service.discover_all() for _ in range(3)))

    assert slow.calls == 1
    assert all(len(result) == 1 for result in results)


@pytest.mark.asyncio
async def test_failing_scanner_does_not_hide_other_results() -> None:
    broken = FakeScanner(SSDP, error=OSError("address in use"))
    working = FakeScanner(PORT_SCAN, [_device("10.0.0.11", PORT_SCAN)])
    service = DiscoveryService(Config(), scanners=[broken, working])

    devices = await service.discover_all()

    assert [device.ip for device in devices] == ["10.0.0.11"]


@pytest.mark.asyncio
async def test_hung_scanner_is_cut_off() -> None:
    hung = FakeScanner(MDNS, [_device("10.0.0.12", MDNS)], delay=30.0)
    working = FakeScanner(SSDP, [_device("10.0.0.13", SSDP)])
    service = DiscoveryService(Config(), scanners=[hung, working])

    devices = await asyncio.wait_for(service.discover_all(timeout=0.05), timeout=5.0)

    assert [device.ip for device in devices] == ["10.0.0.13"]


def test_brand_detection_and_name_cleaning() -> None:
    assert detect_brand("Linux UPnP/1.0", "Daikin-BRP069") == "daikin"
    assert detect_brand("MiniUPnPd") == "unknown"
    assert clean_device_name("Linux/2.6 UPnP/1.0 Daikin-BRP069/1.0", "daikin", "10.0.0.2") == (
        "Daikin-BRP069/1.0"
    )
    assert clean_device_name("SSDP Device", "samsung", "10.0.0.3") == "Samsung AC (10.0.0.3)"
    assert clean_device_name(None, "unknown", "10.0.0.4") == "Smart AC (10.0.0.4)"
    assert clean_device_name("UPnP/1.0, Unspecified", None, "10.0.0.5") == "Smart AC (10.0.0.5)"


@pytest.mark.parametrize(
    "name,expected",
    [
        ("Living Room AC", True),
        ("ac-unit", True),
        ("Daikin BRP", True),
        ("hvac controller", True),
        ("Office Printer", False),
        ("backup-nas", False),
        ("Jacuzzi", False),
    ],
)
def test_mdns_generic_service_filter(name: str, expected: bool) -> None:
    assert is_ac_service_name(name) is expected


def test_msearch_request_format() -> None:
    request = build_msearch("ssdp:all", "239.255.255.250", 1900).decode("ascii")
    assert request.startswith("M-SEARCH * HTTP/1.1\r\n")
    assert "HOST: 239.255.255.250:1900\r\n" in request
    assert 'MAN: "ssdp:discover"\r\n' in request
    assert "ST: ssdp:all\r\n" in request
    assert request.endswith("\r\n\r\n")


def test_ssdp_response_for_daikin_is_accepted() -> None:
    headers = parse_ssdp_headers(
        b"HTTP/1.1 200 OK\r\n"
        b"CACHE-CONTROL: max-age=1800\r\n"
        b"location: http://192.168.1.50:80/common/basic_info\r\n"
        b"SERVER: Linux/2.6 UPnP/1.0 Daikin-BRP069/1.0\r\n"
        b"USN: uuid:1234::urn:schemas-upnp-org:device:hvac:1\r\n"
        b"\r\n"
    )
    assert headers is not None
    assert headers["LOCATION"] == "http://192.168.1.50:80/common/basic_info"

    device = ssdp_candidate(headers, ("192.168.1.50", 1900))
    assert device is not None
    assert device.port == 80
    assert device.brand == "daikin"
    assert device.method == SSDP
    assert device.name == "Daikin-BRP069/1.0"
    assert device.as_dict()["discoveryMethod"] == "ssdp"
    assert device.metadata["usn"].startswith("uuid:1234")


def test_ssdp_generic_router_is_rejected() -> None:
    headers = parse_ssdp_headers(
        b"HTTP/1.1 200 OK\r\n"
        b"LOCATION: http://192.168.1.1:5000/rootDesc.xml\r\n"
        b"SERVER: OpenWRT/21.02 UPnP/1.1 MiniUPnPd/2.2.1\r\n"
        b"ST: urn:schemas-upnp-org:device:InternetGatewayDevice:1\r\n"
        b"USN: uuid:abcd::urn:schemas-upnp-org:device:InternetGatewayDevice:1\r\n"
        b"\r\n"
    )
    assert headers is not None
    assert ssdp_candidate(headers, ("192.168.1.1", 1900)) is None


def test_ssdp_port_path_marks_candidate_without_keywords() -> None:
    device = ssdp_candidate(
        {"LOCATION": "http://192.168.1.60:8888/description.xml", "SERVER": "Tizen"},
        ("192.168.1.60", 1900),
    )
    assert device is not None
    assert device.port == 8888
    assert device.name == "Tizen"


def test_non_ssdp_datagrams_are_ignored() -> None:
    assert parse_ssdp_headers(b"M-SEARCH * HTTP/1.1\r\n\r\n") is None
    assert parse_ssdp_headers(b"\xff\xfe garbage") is None
    assert parse_ssdp_headers(b"NOTIFY * HTTP/1.1\r\nNT: upnp:rootdevice\r\n\r\n") == {
        "NT": "upnp:rootdevice"
    }


def test_probe_candidate_requires_ac_markers() -> None:
    daikin, samsung, _ = PROBE_TARGETS
    assert probe_candidate("10.0.0.20", daikin, "<html>router login</html>") is None

    device = probe_candidate("10.0.0.20", daikin, "ret=OK,type=aircon,name=%4c%6f%75%6e%67%65,ver=3")
    assert device is not None
    assert device.name == "Daikin Lounge AC (10.0.0.20)"
    assert device.method == PORT_SCAN

    json_body = '{"deviceId": "0", "name": "Bedroom"}'
    device = probe_candidate("10.0.0.21", samsung, json_body)
    assert device is not None
    assert device.name == "Samsung Bedroom AC (10.0.0.21)"
    assert device.port == 8888
    assert device.metadata["responseSnippet"] == json_body


def test_probe_hosts_respect_subnet_and_limit() -> None:
    scanner = PortProbeScanner(Config(probe_subnet="10.1.2.0/29", probe_host_limit=3))
    assert scanner.hosts() == ["10.1.2.1", "10.1.2.2", "10.1.2.3"]


@pytest.mark.asyncio
async def test_port_probe_scan_finds_only_ac_endpoints() -> None:
    requested: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        host = request.url.host
        if host == "10.1.2.1" and request.url.path == "/common/basic_info":
            return httpx.Response(200, text="ret=OK,type=aircon,name=Hall")
        if host == "10.1.2.2" and request.url.port == 8888:
            return httpx.Response(200, json={"deviceId": "0"})
        if host == "10.1.2.2":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(404)

    scanner = PortProbeScanner(
        Config(probe_subnet="10.1.2.0/30", probe_batch_size=2),
        transport=httpx.MockTransport(handler),
    )
    devices = await scanner.scan(5.0)

    assert len(requested) == 6
    assert any(url.startswith("https://10.1.2.1:8889") for url in requested)
    by_ip = {device.ip: device for device in devices}
    assert set(by_ip) == {"10.1.2.1", "10.1.2.2"}
    assert by_ip["10.1.2.1"].name == "Daikin Hall AC (10.1.2.1)"
    assert by_ip["10.1.2.2"].brand == "samsung"
    assert by_ip["10.1.2.2"].name == "Samsung AC (10.1.2.2)"


@pytest.mark.asyncio
async def test_stalled_probes_do_not_discard_confirmed_devices() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "10.1.2.1" and request.url.path == "/common/basic_info":
            return httpx.Response(200, text="ret=OK,type=aircon,name=Hall")
        await asyncio.sleep(5.0)
        return httpx.Response(404)

    scanner = PortProbeScanner(
        Config(probe_subnet="10.1.2.0/30"), transport=httpx.MockTransport(handler)
    )
    service = DiscoveryService(Config(), scanners=[scanner])

    devices = await asyncio.wait_for(service.discover_all(timeout=1.0), timeout=4.0)

    assert [device.ip for device in devices] == ["10.1.2.1"]
    assert devices[0].method == PORT_SCAN


@pytest.mark.asyncio
async def test_port_probe_stops_when_budget_is_spent() -> None:
    calls: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(404)

    scanner = PortProbeScanner(
        Config(probe_subnet="10.1.2.0/30"), transport=httpx.MockTransport(handler)
    )
    assert await scanner.scan(0.1) == []
    assert calls == []
