"""Command-line tool for discovery and for driving configured devices."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

import yaml
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .blasters import register_discovered_blasters
from .config import Config, DeviceConfig, load_config
from .discovery import DiscoveryService
from .errors import AirconBridgeError
from .infrared import BlasterController
from .logging import configure_logging
from .metrics import latest_metrics
from .protocol import get_supported_brands
from .registry import TransportRegistry

OUTPUT_FORMATS = ("json", "yaml", "table")


class CliError(Exception):
    """Raised when the CLI encounters an expected error condition."""


CommandFunc = Callable[[Config, argparse.Namespace], Awaitable[Any]]
TableFunc = Callable[[Any], Table]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aircon-bridge",
        description=(
            "Discover air conditioners on the LAN and control devices declared in the "
            "config file. Settings come from the TOML file, AIRCON_BRIDGE_* env vars and flags."
        ),
    )
    parser.add_argument("--config", type=Path, help="Path to a TOML configuration file")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--log-format", choices=["plain", "json"], help="Log output format")
    parser.add_argument(
        "--output",
        choices=OUTPUT_FORMATS,
        default="json",
        help="Output format; defaults to 'json'",
    )
    parser.add_argument(
        "--metrics-file",
        type=Path,
        help="Write Prometheus metrics collected during the run to this file",
    )

    subparsers = parser.add_subparsers(dest="command")

    discover = subparsers.add_parser("discover", help="Scan the local network for AC units")
    discover.add_argument("--timeout", type=float, help="Scan budget in seconds")
    discover.set_defaults(func=_cmd_discover, table=_discovery_table)

    brands = subparsers.add_parser("brands", help="List brands with a local protocol adapter")
    brands.set_defaults(func=_cmd_brands, table=_brands_table)

    status = subparsers.add_parser("status", help="Read status of a configured device")
    status.add_argument("device_id", help="Device identifier from the config file")
    status.set_defaults(func=_cmd_status, table=_mapping_table)

    command = subparsers.add_parser("command", help="Send a command to a configured device")
    command.add_argument("device_id", help="Device identifier from the config file")
    command.add_argument(
        "name", help="Command: power, temperature, mode, fanSpeed, swing or specialMode"
    )
    command.add_argument("value", help="Command value; JSON literals such as true or 24 are decoded")
    command.set_defaults(func=_cmd_command, table=_mapping_table)

    connections = subparsers.add_parser(
        "connections", help="Show transport selection and health for configured devices"
    )
    connections.set_defaults(func=_cmd_connections, table=_connections_table)

    blasters = subparsers.add_parser("ir-blasters", help="Find Broadlink IR blasters on the LAN")
    blasters.add_argument("--timeout", type=float, help="Discovery time in seconds")
    blasters.set_defaults(func=_cmd_ir_blasters, table=_blasters_table)

    return parser


def _load_config(args: argparse.Namespace) -> Config:
    overrides: Dict[str, Any] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    try:
        return load_config(args.config, overrides)
    except (OSError, ValueError) as exc:
        raise CliError(f"Invalid configuration: {exc}") from exc


def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _build_registry(
    config: Config, ir_controller: Optional[BlasterController] = None
) -> TransportRegistry:
    registry = TransportRegistry(config, ir_controller=ir_controller or BlasterController())
    registry.register_configured()
    return registry


async def _ir_controller_for(config: Config, device: DeviceConfig) -> BlasterController:
    """Controller with LAN blasters registered when the device is reachable over IR."""

    controller = BlasterController()
    if device.ir_blaster_id:
        await register_discovered_blasters(
            controller, config.ir_discovery_timeout, config.ir_local_ip
        )
    return controller


def _require_device(config: Config, device_id: str) -> DeviceConfig:
    device = config.device(device_id)
    if device is None:
        raise CliError(f"Device {device_id} is not declared in the configuration")
    return device


async def _cmd_discover(config: Config, args: argparse.Namespace) -> List[Dict[str, Any]]:
    service = DiscoveryService(config)
    devices = await service.discover_all(args.timeout)
    return [device.as_dict() for device in devices]


async def _cmd_brands(config: Config, args: argparse.Namespace) -> List[str]:
    return get_supported_brands()


async def _cmd_status(config: Config, args: argparse.Namespace) -> Dict[str, Any]:
    _require_device(config, args.device_id)
    registry = _build_registry(config)
    try:
        result = await registry.get_status(args.device_id)
    finally:
        await registry.disconnect_all()
    return result.as_dict()


async def _cmd_command(config: Config, args: argparse.Namespace) -> Dict[str, Any]:
    device = _require_device(config, args.device_id)
    registry = _build_registry(config, await _ir_controller_for(config, device))
    try:
        result = await registry.send_command(args.device_id, args.name, _parse_value(args.value))
    finally:
        await registry.disconnect_all()
    return result.as_dict()


async def _cmd_connections(config: Config, args: argparse.Namespace) -> Dict[str, Any]:
    registry = _build_registry(config)
    return registry.get_connection_status()


async def _cmd_ir_blasters(config: Config, args: argparse.Namespace) -> List[Dict[str, Any]]:
    timeout = args.timeout if args.timeout is not None else config.ir_discovery_timeout
    controller = BlasterController()
    await register_discovered_blasters(controller, timeout, config.ir_local_ip)
    return controller.describe_blasters()


def _discovery_table(devices: Iterable[Mapping[str, Any]]) -> Table:
    table = Table(
        title=Text("Discovered Devices", justify="center"),
        show_header=True,
        header_style="bold cyan",
        box=box.ROUNDED,
    )
    table.add_column("IP", style="cyan")
    table.add_column("Port", style="magenta", justify="right")
    table.add_column("Name", style="yellow")
    table.add_column("Brand", style="green")
    table.add_column("Method", style="blue")
    for device in devices:
        table.add_row(
            str(device.get("ip", "")),
            str(device.get("port", "")),
            str(device.get("name", "")),
            str(device.get("brand", "")),
            str(device.get("discoveryMethod", "")),
        )
    return table


def _brands_table(brands: Iterable[str]) -> Table:
    table = Table(show_header=True, header_style="bold cyan", box=box.ROUNDED)
    table.add_column("Brand", style="green")
    for brand in brands:
        table.add_row(brand)
    return table


def _blasters_table(blasters: Iterable[Mapping[str, Any]]) -> Table:
    table = Table(
        title=Text("IR Blasters", justify="center"),
        show_header=True,
        header_style="bold cyan",
        box=box.ROUNDED,
    )
    table.add_column("Blaster ID", style="yellow")
    table.add_column("IP", style="cyan")
    table.add_column("Type", style="green")
    for blaster in blasters:
        table.add_row(str(blaster.get("id", "")), str(blaster.get("ip", "")), str(blaster.get("type") or ""))
    return table


def _mapping_table(data: Mapping[str, Any]) -> Table:
    table = Table(show_header=True, header_style="bold cyan", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    for key, value in data.items():
        rendered = json.dumps(value, default=str) if isinstance(value, (dict, list)) else str(value)
        table.add_row(key, rendered)
    return table


def _connections_table(snapshot: Mapping[str, Mapping[str, Any]]) -> Table:
    table = Table(
        title=Text("Device Connections", justify="center"),
        show_header=True,
        header_style="bold cyan",
        box=box.ROUNDED,
    )
    table.add_column("Device ID", style="yellow")
    table.add_column("Brand", style="green")
    table.add_column("Preferred", style="blue")
    table.add_column("Active", style="magenta")
    table.add_column("Health", style="white")
    for device_id, entry in snapshot.items():
        health = entry.get("health", {})
        summary = ", ".join(
            f"{name}:{'ok' if state['healthy'] else 'down'}/{state['failures']}"
            for name, state in health.items()
            if state.get("available")
        )
        table.add_row(
            device_id,
            str(entry.get("brand") or ""),
            str(entry.get("preferred_type")),
            str(entry.get("active_type")),
            summary or "-",
        )
    return table


def _print_output(data: Any, output: str, table: Optional[TableFunc] = None) -> None:
    if output == "yaml":
        yaml.safe_dump(data, sys.stdout, sort_keys=False)
    elif output == "table" and table is not None:
        Console().print(table(data))
    else:
        json.dump(data, sys.stdout, indent=2, default=str)
        sys.stdout.write("\n")


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(args=argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = _load_config(args)
        configure_logging(config)
        func: CommandFunc = args.func
        data = asyncio.run(func(config, args))
        _print_output(data, args.output, args.table)
        if args.metrics_file is not None:
            args.metrics_file.write_bytes(latest_metrics())
    except CliError as exc:  # pragma: no cover - CLI feedback path
        sys.stderr.write(f"Error: {exc}\n")
        sys.exit(1)
    except AirconBridgeError as exc:  # pragma: no cover - CLI feedback path
        sys.stderr.write(f"{type(exc).__name__}: {exc}\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
