"""Configuration loading for the aircon bridge."""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - older interpreters use the tomli backport
    import tomli as tomllib  # type: ignore


CONFIG_ENV_PREFIX = "AIRCON_BRIDGE_"
CONFIG_VERSION = 1
MIN_SUPPORTED_CONFIG_VERSION = 1

_SECRET_OPTION_KEYS = {"token", "key", "access_token", "password"}


@dataclass(frozen=True)
class DeviceConfig:
    """Connection settings for a device declared in the config file."""

    id: str
    brand: str
    ip: Optional[str] = None
    port: Optional[int] = None
    cloud_id: Optional[str] = None
    ir_blaster_id: Optional[str] = None
    connection_type: str = "auto"
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    discovery_timeout: float = 8.0
    discovery_cache_ttl: float = 300.0
    mdns_enabled: bool = True
    ssdp_enabled: bool = True
    port_probe_enabled: bool = True
    ssdp_address: str = "239.255.255.250"
    ssdp_port: int = 1900
    ssdp_stage_delay: float = 0.3
    probe_timeout: float = 2.0
    probe_batch_size: int = 50
    probe_host_limit: int = 254
    probe_subnet: Optional[str] = None
    adapter_timeout: float = 5.0
    transport_timeout: float = 10.0
    transport_failure_threshold: int = 3
    ir_discovery_timeout: float = 5.0
    ir_local_ip: Optional[str] = None
    log_format: str = "plain"
    log_level: str = "INFO"
    discovery_log_level: Optional[str] = None
    registry_log_level: Optional[str] = None
    devices: Sequence[DeviceConfig] = ()
    config_version: int = CONFIG_VERSION

    def __post_init__(self) -> None:
        _validate_config(self)

    def logging_dict(self) -> Dict[str, Any]:
        """Return a sanitized mapping suitable for structured logging."""

        from .logging import redact_mapping

        devices = [
            {
                "id": device.id,
                "brand": device.brand,
                "ip": device.ip,
                "port": device.port,
                "cloud_id": device.cloud_id,
                "ir_blaster_id": device.ir_blaster_id,
                "connection_type": device.connection_type,
                "options": redact_mapping(device.options, _SECRET_OPTION_KEYS),
            }
            for device in self.devices
        ]
        return {
            "config_version": self.config_version,
            "discovery_timeout": self.discovery_timeout,
            "discovery_cache_ttl": self.discovery_cache_ttl,
            "mdns_enabled": self.mdns_enabled,
            "ssdp_enabled": self.ssdp_enabled,
            "port_probe_enabled": self.port_probe_enabled,
            "ssdp_address": self.ssdp_address,
            "ssdp_port": self.ssdp_port,
            "ssdp_stage_delay": self.ssdp_stage_delay,
            "probe_timeout": self.probe_timeout,
            "probe_batch_size": self.probe_batch_size,
            "probe_host_limit": self.probe_host_limit,
            "probe_subnet": self.probe_subnet,
            "adapter_timeout": self.adapter_timeout,
            "transport_timeout": self.transport_timeout,
            "transport_failure_threshold": self.transport_failure_threshold,
            "ir_discovery_timeout": self.ir_discovery_timeout,
            "ir_local_ip": self.ir_local_ip,
            "log_format": self.log_format,
            "log_level": self.log_level,
            "discovery_log_level": self.discovery_log_level,
            "registry_log_level": self.registry_log_level,
            "devices": devices,
        }

    def device(self, device_id: str) -> Optional[DeviceConfig]:
        """Return the configured device with the given id, if any."""

        for device in self.devices:
            if device.id == device_id:
                return device
        return None

    @classmethod
    def from_sources(
        cls,
        config_path: Optional[Path] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "Config":
        """Load configuration from defaults, file, env, and explicit overrides (in that order)."""

        file_config = _load_file_config(
            config_path
            or _coerce_optional_path(os.environ.get(f"{CONFIG_ENV_PREFIX}CONFIG"))
        )
        env_config = _load_env_config(CONFIG_ENV_PREFIX)

        config = cls()
        config = _apply_mapping(config, file_config)
        config = _apply_mapping(config, env_config)
        config = _apply_mapping(config, overrides or {})
        return config


def _validate_config(config: Config) -> None:
    _validate_version(config.config_version)
    _validate_range("discovery_timeout", config.discovery_timeout, 0.5, 120.0)
    _validate_range("discovery_cache_ttl", config.discovery_cache_ttl, 0.0, 86400.0)
    _validate_range("ssdp_port", config.ssdp_port, 1, 65535)
    _validate_range("ssdp_stage_delay", config.ssdp_stage_delay, 0.0, 10.0)
    _validate_range("probe_timeout", config.probe_timeout, 0.05, 60.0)
    _validate_range("probe_batch_size", config.probe_batch_size, 1, 1024)
    _validate_range("probe_host_limit", config.probe_host_limit, 1, 254)
    _validate_range("adapter_timeout", config.adapter_timeout, 0.1, 120.0)
    _validate_range("transport_timeout", config.transport_timeout, 0.1, 300.0)
    _validate_range("transport_failure_threshold", config.transport_failure_threshold, 1, 100)
    _validate_range("ir_discovery_timeout", config.ir_discovery_timeout, 0.5, 60.0)
    if config.log_format not in {"plain", "json"}:
        raise ValueError(f"log_format must be 'plain' or 'json'; got {config.log_format}.")
    for field_name, value in (
        ("log_level", config.log_level),
        ("discovery_log_level", config.discovery_log_level),
        ("registry_log_level", config.registry_log_level),
    ):
        _validate_log_level_value(value, field_name)
    seen = set()
    for device in config.devices:
        if device.id in seen:
            raise ValueError(f"Duplicate device id in configuration: {device.id}")
        seen.add(device.id)
        if device.port is not None:
            _validate_range(f"devices[{device.id}].port", device.port, 1, 65535)


def _validate_version(version: int) -> None:
    if version < MIN_SUPPORTED_CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is too old; minimum supported is {MIN_SUPPORTED_CONFIG_VERSION}."
        )
    if version > CONFIG_VERSION:
        raise ValueError(
            f"Config version {version} is newer than supported ({CONFIG_VERSION}); please upgrade the bridge."
        )


def _validate_range(name: str, value: float, minimum: float, maximum: float) -> None:
    if value < minimum or value > maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}; got {value}.")


def _validate_log_level_value(value: Optional[str], name: str) -> None:
    if value is None:
        return
    allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if value.upper() not in allowed:
        raise ValueError(f"{name} must be one of {sorted(allowed)}; got {value}.")


def _load_file_config(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {}
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("rb") as f:
        parsed = tomllib.load(f)
    if not isinstance(parsed, Mapping):
        raise ValueError("Configuration file must contain a TOML table.")
    return {k.replace("-", "_"): v for k, v in parsed.items()}


def _load_env_config(prefix: str) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {}
    for name in Config.__dataclass_fields__:
        env_key = f"{prefix}{name}".upper()
        if env_key in os.environ:
            mapping[name] = os.environ[env_key]
    return mapping


def _apply_mapping(config: Config, overrides: Mapping[str, Any]) -> Config:
    data: MutableMapping[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key in {
            "ssdp_port",
            "probe_batch_size",
            "probe_host_limit",
            "transport_failure_threshold",
            "config_version",
        }:
            data[key] = int(value)
        elif key in {
            "discovery_timeout",
            "discovery_cache_ttl",
            "ssdp_stage_delay",
            "probe_timeout",
            "adapter_timeout",
            "transport_timeout",
            "ir_discovery_timeout",
        }:
            data[key] = float(value)
        elif key in {"mdns_enabled", "ssdp_enabled", "port_probe_enabled"}:
            data[key] = _coerce_bool(value)
        elif key == "log_format":
            data[key] = str(value).lower()
        elif key in {"log_level", "discovery_log_level", "registry_log_level"}:
            data[key] = str(value).upper()
        elif key in {"ssdp_address", "probe_subnet", "ir_local_ip"}:
            data[key] = str(value)
        elif key == "devices":
            data[key] = _coerce_devices(value)
        elif key in Config.__dataclass_fields__:
            data[key] = value
    return replace(config, **data)


def _coerce_optional_path(value: Any) -> Optional[Path]:
    if value is None or value == "":
        return None
    return value if isinstance(value, Path) else Path(str(value)).expanduser()


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_devices(value: Any) -> Sequence[DeviceConfig]:
    if value is None:
        return ()
    if isinstance(value, str):
        return _coerce_devices(json.loads(value))
    if isinstance(value, DeviceConfig):
        return (value,)
    if isinstance(value, Mapping):
        return (_device_from_mapping(value),)
    if isinstance(value, Iterable):
        devices: List[DeviceConfig] = []
        for item in value:
            if isinstance(item, DeviceConfig):
                devices.append(item)
            elif isinstance(item, Mapping):
                devices.append(_device_from_mapping(item))
            else:
                raise ValueError("Unsupported device entry")
        return tuple(devices)
    raise ValueError("Unsupported devices configuration")


def _device_from_mapping(value: Mapping[str, Any]) -> DeviceConfig:
    if "id" not in value or "brand" not in value:
        raise ValueError("Configured devices require 'id' and 'brand' fields")
    options = value.get("options") or {}
    if not isinstance(options, Mapping):
        raise ValueError("Device options must be a table")

    def _opt_str(key: str) -> Optional[str]:
        raw = value.get(key)
        return str(raw) if raw not in (None, "") else None

    port = value.get("port")
    return DeviceConfig(
        id=str(value["id"]),
        brand=str(value["brand"]),
        ip=_opt_str("ip"),
        port=int(port) if port is not None else None,
        cloud_id=_opt_str("cloud_id"),
        ir_blaster_id=_opt_str("ir_blaster_id"),
        connection_type=str(value.get("connection_type") or "auto"),
        options=dict(options),
    )


def load_config(
    config_path: Optional[Path] = None, overrides: Optional[Mapping[str, Any]] = None
) -> Config:
    """Public helper used by the entrypoint."""

    try:
        return Config.from_sources(config_path, overrides)
    except Exception as exc:
        print(f"Failed to load configuration: {exc}", file=sys.stderr)
        raise
