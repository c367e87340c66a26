"""Shared plumbing for adapters that talk to the device over local HTTP."""

from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx

from ..errors import TransportFailureError, TransportTimeoutError
from ..logging import get_logger
from .base import ACProtocolAdapter


class HttpProtocolAdapter(ACProtocolAdapter):
    """Adapter base owning an ``httpx.AsyncClient`` bound to the device."""

    scheme = "http"

    def __init__(
        self,
        host: str,
        port: Optional[int] = None,
        options: Optional[Mapping[str, Any]] = None,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(host, port, options, timeout=timeout)
        self.base_url = f"{self.options.get('scheme') or self.scheme}://{host}:{self.port}"
        self._client = client
        self._owns_client = client is None
        self.logger = get_logger(f"aircon.protocol.{self.brand}")

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                verify=bool(self.options.get("verify_tls", False)),
            )
            self._owns_client = True
        return self._client

    async def disconnect(self) -> None:
        self.connected = False
        if self._client is not None and self._owns_client:
            client, self._client = self._client, None
            try:
                await client.aclose()
            except httpx.HTTPError as exc:
                self.logger.debug(
                    "Error closing HTTP client",
                    extra={"host": self.host, "error": str(exc)},
                )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """Issue a request, mapping client errors to transport errors."""
        label = f"{self.brand} HTTP {method} {path}"
        try:
            response = await self._http().request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"{label} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise TransportFailureError(f"{label} failed: {exc}") from exc
        if response.status_code >= 400:
            raise TransportFailureError(f"{label} failed: HTTP {response.status_code}")
        self.logger.debug(
            "Device request complete",
            extra={"host": self.host, "path": path, "status": response.status_code},
        )
        return response
