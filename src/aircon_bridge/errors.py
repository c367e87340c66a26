"""Exception hierarchy shared by the registry, adapters and gateways."""

from __future__ import annotations

from typing import Optional


class AirconBridgeError(Exception):
    """Base class for all bridge errors."""

    def __init__(
        self,
        message: str,
        *,
        device_id: Optional[str] = None,
        transport: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.device_id = device_id
        self.transport = transport


class NotRegisteredError(AirconBridgeError):
    """Raised when an operation targets an unknown device identifier."""


class UnsupportedTransportError(AirconBridgeError):
    """Raised when the selected transport has no implementation for the device."""


class MissingCollaboratorError(AirconBridgeError):
    """Raised when a required cloud strategy or infrared controller was not supplied."""


class TransportError(AirconBridgeError):
    """A single attempt over a transport failed."""


class TransportFailureError(TransportError):
    """The device or service answered with an error, or the connection failed."""


class TransportTimeoutError(TransportError):
    """The attempt did not complete within its time budget."""


class AllTransportsFailedError(AirconBridgeError):
    """Both the primary attempt and the fallback attempt failed."""

    def __init__(
        self,
        message: str,
        *,
        primary: BaseException,
        fallback: BaseException,
        device_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, device_id=device_id)
        self.primary = primary
        self.fallback = fallback


class UnsupportedValueError(AirconBridgeError):
    """An adapter rejected a value outside its declared capability set."""


class UnknownCommandError(AirconBridgeError):
    """The command name is not part of the normalized vocabulary."""


class ProtocolNotImplementedError(AirconBridgeError):
    """The brand's local protocol is a stub and cannot be used yet."""


class InfraredError(AirconBridgeError):
    """The infrared gateway could not resolve or transmit a code."""
