from typing import List

import pytest

from aircon_bridge.config import Config
from aircon_bridge.errors import InfraredError
from aircon_bridge.infrared import (
    BlasterController,
    IRBlaster,
    IRCode,
    IRCodeLibrary,
    learned_label,
    map_to_ir_command,
)
from aircon_bridge.registry import TransportRegistry


class FakeBlaster(IRBlaster):
    def __init__(self, capture: bytes = b"") -> None:
        self.capture = capture
        self.sent: List[bytes] = []

    async def send_ir(self, raw: bytes) -> None:
        self.sent.append(raw)

    async def learn_ir(self, timeout: float) -> bytes:
        return self.capture


@pytest.mark.parametrize(
    "command,value,expected",
    [
        ("power", True, "power_on"),
        ("setPower", "off", "power_off"),
        ("temperature", 22, "temp_up"),
        ("mode", "dry", "mode_dry"),
        ("fanSpeed", "medium", "fan_med"),
        ("fan_speed", "high", "fan_high"),
        ("swing", "on", "swing_on"),
        ("swing", False, "swing_off"),
        ("brightness", 3, None),
    ],
)
def test_map_to_ir_command(command: str, value: object, expected: object) -> None:
    assert map_to_ir_command(command, value) == expected


def test_learned_label_normalizes_booleans() -> None:
    assert learned_label("lg", "power", True) == "lg_power_on"
    assert learned_label("lg", "mode", "cool") == "lg_mode_cool"


def test_library_falls_back_to_generic_table() -> None:
    raw = b"\x26\x00\x10"
    library = IRCodeLibrary({"LG": {"power_on": IRCode("power_on", "LG Power", protocol="lg", raw=raw)}})

    lg_power = library.get_code("lg", "power_on")
    assert lg_power is not None
    assert lg_power.protocol == "lg"
    assert lg_power.raw == raw

    lg_mode = library.get_code("lg", "mode_cool")
    assert lg_mode is not None
    assert lg_mode.protocol == "nec"
    assert lg_mode.brand == "lg"
    assert library.get_code("unknown-brand", "fan_auto") is not None
    assert library.get_code("lg", "turbo_boost") is None
    assert [entry["command"] for entry in library.available_commands("other")][:2] == ["power_on", "power_off"]


def test_build_state_command_fills_defaults() -> None:
    composite = IRCodeLibrary.build_state_command("daikin", {"temperature": 21, "mode": None})
    assert composite["state"] == {
        "power": "on",
        "temperature": 21,
        "mode": "cool",
        "fanSpeed": "auto",
        "swing": "off",
    }
    assert composite["description"] == "Set AC to 21C cool mode"


@pytest.mark.asyncio
async def test_learned_code_wins_over_library() -> None:
    blaster = FakeBlaster(capture=b"\x01\x02\x03\x04")
    controller = BlasterController()
    controller.register_blaster("rm4", blaster)

    learned = await controller.learn("rm4", learned_label("lg", "power", True))
    assert learned == {"success": True, "label": "lg_power_on", "blaster_id": "rm4", "code_length": 4}

    result = await controller.send("rm4", "lg", "power", True)
    assert result["sent"] is True
    assert result["source"] == "learned"
    assert blaster.sent == [b"\x01\x02\x03\x04"]


@pytest.mark.asyncio
async def test_library_code_without_timings_is_not_transmitted() -> None:
    blaster = FakeBlaster()
    controller = BlasterController()
    controller.register_blaster("rm4", blaster)

    result = await controller.send("rm4", "lg", "mode", "heat")

    assert result == {"sent": False, "source": "library", "code": "mode_heat", "protocol": "nec", "brand": "lg"}
    assert blaster.sent == []


@pytest.mark.asyncio
async def test_library_code_with_timings_is_transmitted() -> None:
    blaster = FakeBlaster()
    library = IRCodeLibrary({"lg": {"swing_on": IRCode("swing_on", "Swing", protocol="lg", raw=b"\x09")}})
    controller = BlasterController(library)
    controller.register_blaster("rm4", blaster)

    result = await controller.send("rm4", "lg", "swing", "on")

    assert result["sent"] is True
    assert blaster.sent == [b"\x09"]


@pytest.mark.asyncio
async def test_state_command_returns_composite() -> None:
    controller = BlasterController()
    controller.register_blaster("rm4", FakeBlaster())
    result = await controller.send("rm4", "daikin", "state", {"power": "off"})
    assert result["source"] == "state_composite"
    assert result["state"]["power"] == "off"
    assert result["sent"] is False


@pytest.mark.asyncio
async def test_gateway_errors() -> None:
    controller = BlasterController()
    with pytest.raises(InfraredError, match="not found"):
        await controller.send("missing", "lg", "power", True)

    controller.register_blaster("rm4", FakeBlaster())
    with pytest.raises(InfraredError, match="Cannot map"):
        await controller.send("rm4", "lg", "brightness", 5)
    with pytest.raises(InfraredError, match="No IR code"):
        await controller.send("rm4", "lg", "fanSpeed", "turbo")
    with pytest.raises(InfraredError, match="No IR code captured"):
        await controller.learn("rm4", "lg_power_on", timeout=0.1)
    assert controller.blaster_ids() == ["rm4"]


@pytest.mark.asyncio
async def test_registry_routes_infrared_through_blaster() -> None:
    blaster = FakeBlaster(capture=b"\xaa\xbb")
    controller = BlasterController()
    controller.register_blaster("rm4", blaster)
    await controller.learn("rm4", "lg_mode_cool")
    registry = TransportRegistry(Config(), ir_controller=controller)
    registry.register_device("nursery", brand="lg", ir_blaster_id="rm4")

    result = await registry.send_command("nursery", "mode", "cool")

    assert result.connection_type == "ir"
    assert result.result["source"] == "learned"
    assert blaster.sent == [b"\xaa\xbb"]


@pytest.mark.asyncio
async def test_registry_counts_gateway_errors_against_ir_health() -> None:
    controller = BlasterController()
    registry = TransportRegistry(Config(), ir_controller=controller)
    registry.register_device("spare", brand="lg", ir_blaster_id="absent")

    with pytest.raises(InfraredError):
        await registry.send_command("spare", "power", True)

    assert registry.health("spare")["ir"].failures == 1
