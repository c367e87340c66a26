import json
import logging

import pytest

from aircon_bridge.config import Config
from aircon_bridge.errors import TransportFailureError
from aircon_bridge.logging import JsonFormatter, redact_mapping
from aircon_bridge.metrics import get_registry, latest_metrics
from aircon_bridge.registry import CLOUD_FALLBACK, TransportRegistry


def _sample(name: str, labels: dict) -> float:
    return get_registry().get_sample_value(name, labels) or 0.0


def test_redact_mapping_masks_secrets_case_insensitively() -> None:
    redacted = redact_mapping({"Token": "abc", "zone": 2, "deviceKey": "k"}, extra_keys=["devicekey"])
    assert redacted == {"Token": "***REDACTED***", "zone": 2, "deviceKey": "***REDACTED***"}


def test_json_formatter_includes_extra_fields() -> None:
    record = logging.LogRecord(
        name="aircon.registry",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="Transport attempt failed",
        args=(),
        exc_info=None,
    )
    record.device_id = "lounge"
    record.failures = 2

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "aircon.registry"
    assert payload["message"] == "Transport attempt failed"
    assert payload["device_id"] == "lounge"
    assert payload["failures"] == 2


class _BrokenAdapter:
    def __init__(self, *args, **kwargs) -> None:
        pass

    async def connect(self) -> None:
        raise TransportFailureError("unreachable")

    async def disconnect(self) -> None:
        pass


@pytest.mark.asyncio
async def test_fallback_is_counted_in_metrics() -> None:
    before_fallbacks = _sample(
        "aircon_transport_fallbacks_total", {"source": "wifi", "target": "cloud", "result": "success"}
    )
    before_failures = _sample(
        "aircon_transport_attempts_total", {"transport": "wifi", "operation": "status", "result": "failure"}
    )

    async def cloud_status(cloud_id: str) -> dict:
        return {"power": "on"}

    registry = TransportRegistry(Config(), adapter_factory=_BrokenAdapter)
    registry.register_device("metered", brand="daikin", ip="10.0.0.40")
    result = await registry.get_status("metered", cloud_status)

    assert result.connection_type == CLOUD_FALLBACK
    assert _sample(
        "aircon_transport_fallbacks_total", {"source": "wifi", "target": "cloud", "result": "success"}
    ) == before_fallbacks + 1
    assert _sample(
        "aircon_transport_attempts_total", {"transport": "wifi", "operation": "status", "result": "failure"}
    ) == before_failures + 1
    assert _sample("aircon_transport_healthy", {"device_id": "metered", "transport": "cloud"}) == 1.0

    payload = latest_metrics().decode("utf-8")
    assert "aircon_transport_fallbacks_total" in payload
    assert "aircon_operation_duration_seconds" in payload
