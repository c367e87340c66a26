from aircon_bridge.health import BLE, CLOUD, IR, WIFI, TransportHealth


def test_all_transports_present_and_cloud_starts_healthy() -> None:
    health = TransportHealth("dev-1", wifi=True)
    snapshot = health.snapshot()
    assert set(snapshot) == {WIFI, BLE, CLOUD, IR}
    assert snapshot[CLOUD]["healthy"] is True
    assert snapshot[CLOUD]["available"] is False
    assert snapshot[WIFI]["healthy"] is False
    assert snapshot[WIFI]["available"] is True


def test_threshold_hysteresis() -> None:
    health = TransportHealth("dev-2", wifi=True)
    health.mark_success(WIFI)
    health.mark_failure(WIFI, RuntimeError("boom"))
    health.mark_failure(WIFI)
    assert health[WIFI].healthy is True
    assert health[WIFI].failures == 2
    assert health[WIFI].last_error == "boom"

    health.mark_failure(WIFI)
    assert health[WIFI].healthy is False
    assert health[WIFI].failures == 3

    health.mark_success(WIFI)
    assert health[WIFI].healthy is True
    assert health[WIFI].failures == 0
    assert health[WIFI].last_error is None
    assert health[WIFI].last_check is not None


def test_select_defaults_to_cloud_when_nothing_available() -> None:
    assert TransportHealth("dev-3").select() == CLOUD


def test_select_skips_transport_over_threshold() -> None:
    health = TransportHealth("dev-4", wifi=True, ir=True)
    assert health.select() == WIFI
    for _ in range(3):
        health.mark_failure(WIFI)
    assert health.is_selectable(WIFI) is False
    assert health.select() == IR


def test_custom_threshold() -> None:
    health = TransportHealth("dev-5", wifi=True, failure_threshold=1)
    health.mark_failure(WIFI)
    assert health[WIFI].healthy is False
    assert health.failure_threshold == 1
