from pathlib import Path

import pytest

from aircon_bridge.config import (
    CONFIG_VERSION,
    MIN_SUPPORTED_CONFIG_VERSION,
    Config,
    DeviceConfig,
    load_config,
)


def test_default_config_passes_validation() -> None:
    config = Config()
    assert config.config_version == CONFIG_VERSION
    assert config.discovery_cache_ttl == 300.0
    assert config.transport_failure_threshold == 3


@pytest.mark.parametrize(
    "field,value,error",
    [
        ("discovery_timeout", 0.0, "discovery_timeout"),
        ("probe_batch_size", 0, "probe_batch_size"),
        ("probe_host_limit", 300, "probe_host_limit"),
        ("transport_failure_threshold", 0, "transport_failure_threshold"),
        ("ssdp_port", 70000, "ssdp_port"),
    ],
)
def test_bounds_enforced(field: str, value: object, error: str) -> None:
    with pytest.raises(ValueError, match=error):
        Config(**{field: value})


def test_future_config_version_rejected() -> None:
    with pytest.raises(ValueError, match="newer than supported"):
        Config(config_version=CONFIG_VERSION + 1)


def test_ancient_config_version_rejected() -> None:
    with pytest.raises(ValueError, match="too old"):
        Config(config_version=MIN_SUPPORTED_CONFIG_VERSION - 1)


def test_duplicate_device_ids_rejected() -> None:
    devices = (DeviceConfig(id="a", brand="daikin"), DeviceConfig(id="a", brand="samsung"))
    with pytest.raises(ValueError, match="Duplicate device id"):
        Config(devices=devices)


def test_logging_dict_masks_device_secrets() -> None:
    device = DeviceConfig(id="lounge", brand="samsung", ip="10.0.0.5", options={"token": "abc", "zone": 1})
    logged = Config(devices=(device,)).logging_dict()
    options = logged["devices"][0]["options"]
    assert options["token"] == "***REDACTED***"
    assert options["zone"] == 1


def test_file_env_and_overrides_layering(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "bridge.toml"
    config_file.write_text(
        "\n".join(
            [
                "discovery_timeout = 4",
                "ssdp_enabled = false",
                "log_level = 'debug'",
                "",
                "[[devices]]",
                "id = 'bedroom'",
                "brand = 'daikin'",
                "ip = '192.168.1.40'",
                "",
                "[[devices]]",
                "id = 'office'",
                "brand = 'samsung'",
                "cloud_id = 'st-123'",
                "connection_type = 'cloud'",
                "options = { token = 'secret' }",
            ]
        )
    )
    monkeypatch.setenv("AIRCON_BRIDGE_PROBE_TIMEOUT", "1.5")
    monkeypatch.setenv("AIRCON_BRIDGE_DISCOVERY_TIMEOUT", "6")

    config = Config.from_sources(config_file, {"log_format": "JSON"})

    assert config.discovery_timeout == 6.0
    assert config.probe_timeout == 1.5
    assert config.ssdp_enabled is False
    assert config.log_level == "DEBUG"
    assert config.log_format == "json"
    assert [device.id for device in config.devices] == ["bedroom", "office"]
    office = config.device("office")
    assert office is not None
    assert office.cloud_id == "st-123"
    assert office.connection_type == "cloud"
    assert office.options == {"token": "secret"}
    assert config.device("missing") is None


def test_device_entries_require_id_and_brand() -> None:
    with pytest.raises(ValueError, match="'id' and 'brand'"):
        Config.from_sources(overrides={"devices": [{"ip": "10.0.0.2"}]})


def test_load_config_reports_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.toml")
    assert "Failed to load configuration" in capsys.readouterr().err
