from __future__ import annotations

import threading

import pytest

from cbroute.health import HealthMonitor, Outcome
from cbroute.runtime.contracts import HealthPolicy


class _Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _monitor(clock: _Clock | None = None, **policy) -> HealthMonitor:
    return HealthMonitor(HealthPolicy(**policy), clock=clock or _Clock(), wall_clock=lambda: 1234.0)


def test_error_rate_follows_exponential_moving_average():
    monitor = _monitor(alpha=0.2)

    assert monitor.record("p", Outcome(success=False)).error_rate == pytest.approx(0.2)
    assert monitor.record("p", Outcome(success=False)).error_rate == pytest.approx(0.36)
    row = monitor.record("p", Outcome(success=True))

    assert row.error_rate == pytest.approx(0.288)
    assert row.consecutive_failures == 0
    assert row.last_check_timestamp == 1234.0


def test_concurrent_identical_outcomes_each_apply_one_update():
    monitor = _monitor(alpha=0.2, error_rate_threshold=1.0, max_consecutive_failures=1000)
    barrier = threading.Barrier(20)

    def _worker() -> None:
        barrier.wait()
        monitor.record("p", Outcome(success=False, error_kind="ProviderTransportError"))

    threads = [threading.Thread(target=_worker) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    row = monitor.get("p")
    assert row.consecutive_failures == 20
    assert row.error_rate == pytest.approx(1 - 0.8**20)
    assert row.last_error == "ProviderTransportError"


def test_latency_average_is_seeded_by_nominal_latency():
    monitor = _monitor(latency_alpha=0.2)
    monitor.register("seeded", nominal_latency_ms=200.0)

    assert monitor.get("seeded").average_latency_ms == 200.0
    assert monitor.record("seeded", Outcome(success=True, latency_ms=100.0)).average_latency_ms == pytest.approx(180.0)
    assert monitor.record("fresh", Outcome(success=True, latency_ms=100.0)).average_latency_ms == 100.0
    assert monitor.record("fresh", Outcome(success=True, latency_ms=200.0)).average_latency_ms == pytest.approx(120.0)


def test_error_rate_above_threshold_marks_provider_unhealthy():
    monitor = _monitor(alpha=0.2, error_rate_threshold=0.5)

    rows = [monitor.record("p", Outcome(success=False)) for _ in range(4)]

    assert [row.is_healthy for row in rows] == [True, True, True, False]


def test_consecutive_failures_above_limit_marks_provider_unhealthy():
    monitor = _monitor(alpha=0.01, error_rate_threshold=0.9, max_consecutive_failures=2)

    monitor.record("p", Outcome(success=False))
    monitor.record("p", Outcome(success=False))
    assert monitor.get("p").is_healthy is True

    assert monitor.record("p", Outcome(success=False)).is_healthy is False


def test_traffic_success_does_not_recover_unhealthy_provider():
    monitor = _monitor(max_consecutive_failures=0, error_rate_threshold=0.9)
    monitor.record("p", Outcome(success=False))

    row = monitor.record("p", Outcome(success=True))

    assert row.is_healthy is False
    assert row.consecutive_failures == 0


def test_probe_success_recovers_only_after_cooldown():
    clock = _Clock(100.0)
    monitor = _monitor(clock, max_consecutive_failures=0, recovery_cooldown_s=30.0)
    monitor.record("p", Outcome(success=False))
    assert monitor.get("p").is_healthy is False

    clock.now = 110.0
    early = monitor.record_probe("p", success=True)
    assert early.is_healthy is False
    assert early.consecutive_failures == 0

    clock.now = 130.0
    assert monitor.record_probe("p", success=True).is_healthy is True


def test_probe_failures_move_only_consecutive_failures():
    monitor = _monitor(max_consecutive_failures=10)

    monitor.record_probe("p", success=False, error_kind="ProviderTransportError")
    row = monitor.record_probe("p", success=False, error_kind="ProviderTransportError")

    assert row.error_rate == 0.0
    assert row.consecutive_failures == 2
    assert row.last_error == "ProviderTransportError"
    assert row.is_healthy is True


def test_snapshot_lists_every_known_provider():
    monitor = _monitor()
    monitor.register_many([("a", 50.0), ("b", None)])
    monitor.record("c", Outcome(success=True))

    snapshot = monitor.snapshot()

    assert sorted(snapshot) == ["a", "b", "c"]
    assert snapshot["a"].average_latency_ms == 50.0


def test_success_after_probe_recovery_keeps_provider_healthy():
    clock = _Clock(100.0)
    monitor = _monitor(clock, alpha=0.2, error_rate_threshold=0.5, recovery_cooldown_s=30.0)
    for _ in range(5):
        monitor.record("p", Outcome(success=False))
    assert monitor.get("p").is_healthy is False

    clock.now = 130.0
    assert monitor.record_probe("p", success=True).is_healthy is True

    row = monitor.record("p", Outcome(success=True, latency_ms=80.0))
    assert row.error_rate == pytest.approx(0.537856)
    assert row.is_healthy is True

    assert monitor.record("p", Outcome(success=False)).is_healthy is False
