"""Transport registry: per-device transport selection, health and failover."""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .config import Config, DeviceConfig
from .errors import (
    AirconBridgeError,
    AllTransportsFailedError,
    InfraredError,
    MissingCollaboratorError,
    NotRegisteredError,
    ProtocolNotImplementedError,
    TransportError,
    TransportFailureError,
    TransportTimeoutError,
    UnsupportedTransportError,
)
from .health import BLE, CLOUD, IR, TRANSPORT_PRIORITY, WIFI, TransportHealth
from .infrared import InfraredController
from .logging import get_logger
from .metrics import observe_operation, record_fallback, record_transport_attempt
from .protocol import ACProtocolAdapter, get_adapter

AUTO = "auto"
CLOUD_FALLBACK = "cloud_fallback"

_TRANSPORT_ALIASES: Dict[str, str] = {
    "auto": AUTO,
    "cloud": CLOUD,
    "smartthings": CLOUD,
    "wifi": WIFI,
    "wifi_local": WIFI,
    "local": WIFI,
    "lan": WIFI,
    "ble": BLE,
    "bluetooth": BLE,
    "ir": IR,
    "infrared": IR,
}

IR_STATUS_PLACEHOLDER: Dict[str, Any] = {
    "power": "unknown",
    "note": "IR connection - status not available",
}

# Failures counted against the transport's health record.
_HEALTH_ERRORS = (
    TransportError,
    ProtocolNotImplementedError,
    UnsupportedTransportError,
    InfraredError,
)
# Failures on wifi that may be retried once over cloud.
_FALLBACK_ERRORS = (TransportError, ProtocolNotImplementedError, UnsupportedTransportError)

CloudStatusFn = Callable[[str], Awaitable[Any]]
CloudSendFn = Callable[[str, str, Any], Awaitable[Any]]
AdapterFactory = Callable[..., ACProtocolAdapter]


def normalize_transport(value: Optional[str]) -> str:
    """Resolve a preferred-transport alias to a transport name or ``auto``."""

    if value is None or value == "":
        return AUTO
    try:
        return _TRANSPORT_ALIASES[str(value).strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown connection type: {value}. Supported: {', '.join(_TRANSPORT_ALIASES)}"
        ) from None


class CloudTransport(ABC):
    """Strategy used for the cloud transport (status reads and commands)."""

    @abstractmethod
    async def get_status(self, cloud_id: str) -> Any:
        pass

    @abstractmethod
    async def send_command(self, cloud_id: str, command: str, value: Any) -> Any:
        pass


class CallableCloudTransport(CloudTransport):
    """Cloud strategy built from two plain coroutine functions."""

    def __init__(
        self,
        status_fn: Optional[CloudStatusFn] = None,
        send_fn: Optional[CloudSendFn] = None,
    ) -> None:
        self.status_fn = status_fn
        self.send_fn = send_fn

    async def get_status(self, cloud_id: str) -> Any:
        if self.status_fn is None:
            raise MissingCollaboratorError("Cloud status function not provided", transport=CLOUD)
        return await self.status_fn(cloud_id)

    async def send_command(self, cloud_id: str, command: str, value: Any) -> Any:
        if self.send_fn is None:
            raise MissingCollaboratorError("Cloud send function not provided", transport=CLOUD)
        return await self.send_fn(cloud_id, command, value)


@dataclass
class DeviceConnection:
    """Configuration and live adapter state for one registered device."""

    device_id: str
    brand: Optional[str] = None
    ip: Optional[str] = None
    port: Optional[int] = None
    cloud_id: Optional[str] = None
    ir_blaster_id: Optional[str] = None
    preferred: str = AUTO
    options: Dict[str, Any] = field(default_factory=dict)
    adapter: Optional[ACProtocolAdapter] = None
    connected: bool = False
    last_seen: Optional[float] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def cloud_target(self) -> str:
        return self.cloud_id or self.device_id


@dataclass(frozen=True)
class StatusResult:
    device_id: str
    connection_type: str
    status: Mapping[str, Any]
    fallback: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {**self.status, "connectionType": self.connection_type, "deviceId": self.device_id}


@dataclass(frozen=True)
class CommandResult:
    success: bool
    connection_type: str
    device_id: str
    command: str
    value: Any
    result: Any = None

    @property
    def fallback(self) -> bool:
        return self.connection_type == CLOUD_FALLBACK

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "connectionType": self.connection_type,
            "deviceId": self.device_id,
            "command": self.command,
            "value": self.value,
            "result": self.result,
        }


def _status_mapping(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if hasattr(raw, "as_dict"):
        return dict(raw.as_dict())
    if isinstance(raw, Mapping):
        return dict(raw)
    return {"raw": raw}


def _with_context(exc: AirconBridgeError, device_id: str, transport: str) -> AirconBridgeError:
    if exc.device_id is None:
        exc.device_id = device_id
    if exc.transport is None:
        exc.transport = transport
    return exc


class TransportRegistry:
    """Single source of truth for how each device is reached right now.

    Every operation on one device runs under that device's lock, so adapter
    session state and health counters are never mutated concurrently.
    Different devices proceed independently.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        cloud: Optional[CloudTransport] = None,
        ir_controller: Optional[InfraredController] = None,
        adapter_factory: AdapterFactory = get_adapter,
        priority: Tuple[str, ...] = TRANSPORT_PRIORITY,
    ) -> None:
        self.config = config or Config()
        self.cloud = cloud
        self.ir_controller = ir_controller
        self._adapter_factory = adapter_factory
        self._priority = priority
        self._connections: Dict[str, DeviceConnection] = {}
        self._health: Dict[str, TransportHealth] = {}
        self._retired_adapters: List[ACProtocolAdapter] = []
        self.logger = get_logger("aircon.registry")

    # ===== Registration =====

    def register_device(
        self,
        device_id: str,
        *,
        brand: Optional[str] = None,
        ip: Optional[str] = None,
        port: Optional[int] = None,
        cloud_id: Optional[str] = None,
        ir_blaster_id: Optional[str] = None,
        connection_type: Optional[str] = AUTO,
        options: Optional[Mapping[str, Any]] = None,
    ) -> DeviceConnection:
        """Register (or re-register) a device and reset its health record.

        A re-registered device keeps its lock, so it stays serialized with
        operations already in flight.

        Raises:
            ValueError: If ``connection_type`` is not a known transport alias.
        """
        preferred = normalize_transport(connection_type)
        if not cloud_id and preferred == CLOUD:
            cloud_id = device_id

        previous = self._connections.get(device_id)
        if previous is not None and previous.adapter is not None:
            # Closed on the next disconnect_all().
            self._retired_adapters.append(previous.adapter)

        conn = DeviceConnection(
            lock=previous.lock if previous is not None else asyncio.Lock(),
            device_id=device_id,
            brand=brand,
            ip=ip or None,
            port=port,
            cloud_id=cloud_id or None,
            ir_blaster_id=ir_blaster_id or None,
            preferred=preferred,
            options=dict(options or {}),
        )
        self._connections[device_id] = conn
        self._health[device_id] = TransportHealth(
            device_id,
            wifi=bool(conn.ip),
            ble=False,
            cloud=bool(conn.cloud_id),
            ir=bool(conn.ir_blaster_id),
            failure_threshold=self.config.transport_failure_threshold,
        )
        self.logger.info(
            "Registered device",
            extra={
                "device_id": device_id,
                "brand": brand,
                "preferred": preferred,
                "ip": conn.ip,
            },
        )
        return conn

    def register_configured(self, devices: Optional[Iterable[DeviceConfig]] = None) -> List[DeviceConnection]:
        """Register devices declared in the configuration file."""

        registered = []
        for device in self.config.devices if devices is None else devices:
            registered.append(
                self.register_device(
                    device.id,
                    brand=device.brand,
                    ip=device.ip,
                    port=device.port,
                    cloud_id=device.cloud_id,
                    ir_blaster_id=device.ir_blaster_id,
                    connection_type=device.connection_type,
                    options=device.options,
                )
            )
        return registered

    async def deregister_device(self, device_id: str) -> None:
        await self.disconnect_device(device_id)
        self._connections.pop(device_id, None)
        self._health.pop(device_id, None)
        self.logger.info("Deregistered device", extra={"device_id": device_id})

    def device_ids(self) -> List[str]:
        return list(self._connections)

    def health(self, device_id: str) -> TransportHealth:
        self._connection(device_id)
        return self._health[device_id]

    # ===== Selection =====

    def get_active_connection_type(self, device_id: str) -> str:
        """Return the transport the next operation on ``device_id`` would use.

        An explicit preference always wins. Under ``auto`` the first transport
        in priority order that is available and not yet over the failure
        threshold is chosen; cloud is the default when nothing qualifies.
        """
        conn = self._connection(device_id)
        if conn.preferred != AUTO:
            return conn.preferred
        return self._health[device_id].select(self._priority)

    # ===== Operations =====

    async def get_status(
        self, device_id: str, cloud_status_fn: Optional[CloudStatusFn] = None
    ) -> StatusResult:
        """Read status over the active transport, falling back from wifi to cloud once.

        Raises:
            NotRegisteredError: Unknown device.
            AllTransportsFailedError: Both wifi and the cloud fallback failed.
        """
        conn = self._connection(device_id)
        cloud_status = self._cloud_status_fn(cloud_status_fn)
        start = time.perf_counter()
        result = "error"
        try:
            async with conn.lock:
                transport = self.get_active_connection_type(device_id)
                try:
                    status = await self._attempt(
                        conn, transport, "status", lambda: self._read_status(conn, transport, cloud_status)
                    )
                except _FALLBACK_ERRORS as exc:
                    if transport != WIFI or cloud_status is None:
                        raise
                    status = await self._fallback(
                        conn, "status", exc, lambda: cloud_status(conn.cloud_target)
                    )
                    result = "fallback"
                    return StatusResult(device_id, CLOUD_FALLBACK, _status_mapping(status), fallback=True)
                result = "success"
                return StatusResult(device_id, transport, status)
        finally:
            observe_operation("status", result, time.perf_counter() - start)

    async def send_command(
        self,
        device_id: str,
        command: str,
        value: Any,
        cloud_send_fn: Optional[CloudSendFn] = None,
    ) -> CommandResult:
        """Execute a normalized command with the same selection and failover rules as status."""

        conn = self._connection(device_id)
        cloud_send = self._cloud_send_fn(cloud_send_fn)
        start = time.perf_counter()
        result = "error"
        try:
            async with conn.lock:
                transport = self.get_active_connection_type(device_id)
                try:
                    payload = await self._attempt(
                        conn,
                        transport,
                        "command",
                        lambda: self._send(conn, transport, command, value, cloud_send),
                    )
                except _FALLBACK_ERRORS as exc:
                    if transport != WIFI or cloud_send is None:
                        raise
                    payload = await self._fallback(
                        conn, "command", exc, lambda: cloud_send(conn.cloud_target, command, value)
                    )
                    result = "fallback"
                    return CommandResult(True, CLOUD_FALLBACK, device_id, command, value, payload)
                result = "success"
                return CommandResult(True, transport, device_id, command, value, payload)
        finally:
            observe_operation("command", result, time.perf_counter() - start)

    def get_connection_status(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of configuration and health for every registered device."""

        snapshot: Dict[str, Dict[str, Any]] = {}
        for device_id, conn in self._connections.items():
            snapshot[device_id] = {
                "brand": conn.brand,
                "ip": conn.ip,
                "port": conn.port,
                "cloud_id": conn.cloud_id,
                "ir_blaster_id": conn.ir_blaster_id,
                "preferred_type": conn.preferred,
                "active_type": self.get_active_connection_type(device_id),
                "connected": conn.connected,
                "last_seen": conn.last_seen,
                "health": self._health[device_id].snapshot(),
            }
        return snapshot

    async def disconnect_device(self, device_id: str) -> None:
        """Release the device's adapter; the next local call creates a fresh one."""

        conn = self._connection(device_id)
        async with conn.lock:
            adapter, conn.adapter = conn.adapter, None
            conn.connected = False
            if adapter is not None:
                await self._close_adapter(adapter, device_id)

    async def disconnect_all(self) -> None:
        for device_id in list(self._connections):
            await self.disconnect_device(device_id)
        retired, self._retired_adapters = self._retired_adapters, []
        for adapter in retired:
            await self._close_adapter(adapter, None)

    # ===== Internal Helper Methods =====

    def _connection(self, device_id: str) -> DeviceConnection:
        conn = self._connections.get(device_id)
        if conn is None:
            raise NotRegisteredError(f"Device {device_id} not registered", device_id=device_id)
        return conn

    def _cloud_status_fn(self, override: Optional[CloudStatusFn]) -> Optional[CloudStatusFn]:
        if override is not None:
            return override
        if self.cloud is not None:
            return self.cloud.get_status
        return None

    def _cloud_send_fn(self, override: Optional[CloudSendFn]) -> Optional[CloudSendFn]:
        if override is not None:
            return override
        if self.cloud is not None:
            return self.cloud.send_command
        return None

    async def _local_adapter(self, conn: DeviceConnection) -> ACProtocolAdapter:
        if conn.adapter is None:
            if not conn.ip:
                raise UnsupportedTransportError(
                    f"No local address configured for {conn.device_id}", transport=WIFI
                )
            conn.adapter = self._adapter_factory(
                conn.brand or "",
                conn.ip,
                conn.port,
                conn.options,
                timeout=self.config.adapter_timeout,
            )
            conn.connected = False
        if not conn.connected:
            await conn.adapter.connect()
            conn.connected = True
        return conn.adapter

    async def _read_status(
        self, conn: DeviceConnection, transport: str, cloud_status: Optional[CloudStatusFn]
    ) -> Dict[str, Any]:
        if transport == WIFI:
            adapter = await self._local_adapter(conn)
            return _status_mapping(await adapter.get_status())
        if transport == CLOUD:
            if cloud_status is None:
                raise MissingCollaboratorError("Cloud status function not provided", transport=CLOUD)
            return _status_mapping(await cloud_status(conn.cloud_target))
        if transport == IR:
            return dict(IR_STATUS_PLACEHOLDER)
        raise UnsupportedTransportError(f"Unsupported connection type: {transport}", transport=transport)

    async def _send(
        self,
        conn: DeviceConnection,
        transport: str,
        command: str,
        value: Any,
        cloud_send: Optional[CloudSendFn],
    ) -> Any:
        if transport == WIFI:
            adapter = await self._local_adapter(conn)
            return await adapter.execute_command(command, value)
        if transport == CLOUD:
            if cloud_send is None:
                raise MissingCollaboratorError("Cloud send function not provided", transport=CLOUD)
            return await cloud_send(conn.cloud_target, command, value)
        if transport == IR:
            if self.ir_controller is None:
                raise MissingCollaboratorError("IR controller not configured", transport=IR)
            if not conn.ir_blaster_id:
                raise UnsupportedTransportError(
                    f"No IR blaster configured for {conn.device_id}", transport=IR
                )
            return await self.ir_controller.send(conn.ir_blaster_id, conn.brand or "", command, value)
        raise UnsupportedTransportError(f"Unsupported connection type: {transport}", transport=transport)

    async def _attempt(
        self,
        conn: DeviceConnection,
        transport: str,
        operation: str,
        call: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run one bounded attempt and record its outcome in the health record."""

        health = self._health[conn.device_id]
        timeout = self.config.transport_timeout
        try:
            result = await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            error: AirconBridgeError = TransportTimeoutError(
                f"{transport} {operation} timed out after {timeout}s",
                device_id=conn.device_id,
                transport=transport,
            )
            self._record_failure(health, transport, operation, error, "timeout")
            raise error from exc
        except _HEALTH_ERRORS as exc:
            _with_context(exc, conn.device_id, transport)
            self._record_failure(health, transport, operation, exc, "failure")
            raise
        except AirconBridgeError as exc:
            # Caller mistakes say nothing about the transport's health.
            _with_context(exc, conn.device_id, transport)
            record_transport_attempt(transport, operation, "rejected")
            raise
        except Exception as exc:
            # Cloud/IR collaborators may raise their own exception types.
            error = TransportFailureError(
                f"{transport} {operation} failed: {exc}",
                device_id=conn.device_id,
                transport=transport,
            )
            self._record_failure(health, transport, operation, error, "failure")
            raise error from exc
        health.mark_success(transport)
        conn.last_seen = time.time()
        record_transport_attempt(transport, operation, "success")
        return result

    async def _fallback(
        self,
        conn: DeviceConnection,
        operation: str,
        primary: AirconBridgeError,
        call: Callable[[], Awaitable[Any]],
    ) -> Any:
        self.logger.warning(
            "Local transport failed; falling back to cloud",
            extra={"device_id": conn.device_id, "operation": operation, "error": str(primary)},
        )
        try:
            result = await self._attempt(conn, CLOUD, operation, call)
        except AirconBridgeError as exc:
            record_fallback(WIFI, CLOUD, "failure")
            raise AllTransportsFailedError(
                f"All connections failed for {conn.device_id}: wifi: {primary}, cloud: {exc}",
                primary=primary,
                fallback=exc,
                device_id=conn.device_id,
            ) from exc
        record_fallback(WIFI, CLOUD, "success")
        return result

    def _record_failure(
        self,
        health: TransportHealth,
        transport: str,
        operation: str,
        error: BaseException,
        result: str,
    ) -> None:
        health.mark_failure(transport, error)
        record_transport_attempt(transport, operation, result)
        state = health[transport]
        self.logger.warning(
            "Transport attempt failed",
            extra={
                "device_id": health.device_id,
                "transport": transport,
                "operation": operation,
                "failures": state.failures,
                "healthy": state.healthy,
                "error": str(error),
            },
        )

    async def _close_adapter(self, adapter: ACProtocolAdapter, device_id: Optional[str]) -> None:
        try:
            await adapter.disconnect()
        except Exception as exc:
            self.logger.warning(
                "Adapter disconnect failed",
                extra={"device_id": device_id, "error": str(exc)},
            )


__all__ = [
    "AUTO",
    "CLOUD_FALLBACK",
    "IR_STATUS_PLACEHOLDER",
    "CallableCloudTransport",
    "CloudTransport",
    "CommandResult",
    "DeviceConnection",
    "StatusResult",
    "TransportRegistry",
    "normalize_transport",
]
