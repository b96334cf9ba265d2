"""
Tests for top-up readiness state and the ops HTTP endpoints.
"""

import pytest

from conftest import serving
from fpc_services.topup.ops import OpsHandler, ReadinessState


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def reason_codes(state, now=None):
    return [r.code for r in state.reasons(now)]


class TestReadinessState:
    """Readiness transitions."""

    def test_not_ready_before_first_check(self):
        state = ReadinessState(check_interval_sec=10, clock=FakeClock())
        assert reason_codes(state) == ["no_successful_balance_checks"]
        assert state.snapshot()["status"] == "not_ready"

    def test_ready_after_success(self):
        state = ReadinessState(check_interval_sec=10, clock=FakeClock())
        state.record_balance_check_success()
        snapshot = state.snapshot()
        assert snapshot["ready"] is True
        assert snapshot["reasons"] == []
        assert snapshot["checks"]["last_balance_check_age_seconds"] == 0

    def test_failure_after_success_flips_not_ready(self):
        state = ReadinessState(check_interval_sec=10, clock=FakeClock())
        state.record_balance_check_success()
        state.record_balance_check_failure(RuntimeError("node down"))
        reasons = state.reasons()
        assert [r.code for r in reasons] == ["last_balance_check_failed"]
        assert "node down" in reasons[0].message
        state.record_balance_check_success()
        assert state.snapshot()["ready"] is True

    def test_stale_threshold_has_floor(self):
        clock = FakeClock()
        state = ReadinessState(check_interval_sec=1, clock=clock)
        assert state.stale_after_sec == 30
        state.record_balance_check_success()
        assert reason_codes(state, clock.now + 30) == []
        assert reason_codes(state, clock.now + 31) == ["stale_balance_checks"]

    def test_stale_threshold_scales_with_interval(self):
        clock = FakeClock()
        state = ReadinessState(check_interval_sec=60, clock=clock)
        state.record_balance_check_success()
        assert reason_codes(state, clock.now + 180) == []
        assert reason_codes(state, clock.now + 181) == ["stale_balance_checks"]

    def test_shutdown_makes_not_ready(self):
        state = ReadinessState(check_interval_sec=10, clock=FakeClock())
        state.record_balance_check_success()
        state.mark_shutdown_requested()
        assert reason_codes(state) == ["shutdown_in_progress"]

    def test_unknown_bridge_event_rejected(self):
        state = ReadinessState(check_interval_sec=10)
        with pytest.raises(ValueError):
            state.record_bridge_event("exploded")

    def test_metrics_rendered(self):
        clock = FakeClock()
        state = ReadinessState(check_interval_sec=10, clock=clock)
        state.record_balance_check_success()
        state.record_bridge_event("submitted")
        state.record_bridge_event("confirmed")
        state.set_bridge_in_flight(True)
        clock.now += 42

        text = state.render_metrics().decode()
        assert 'topup_bridge_events_total{event="submitted"} 1.0' in text
        assert 'topup_bridge_events_total{event="timeout"} 0.0' in text
        assert 'topup_balance_checks_total{outcome="success"} 1.0' in text
        assert "topup_readiness_status 1.0" in text
        assert "topup_uptime_seconds 42.0" in text
        assert "topup_bridge_in_flight 1.0" in text

    def test_independent_registries(self):
        first = ReadinessState(check_interval_sec=10)
        second = ReadinessState(check_interval_sec=10)
        first.record_bridge_event("failed")
        assert 'topup_bridge_events_total{event="failed"} 0.0' in second.render_metrics().decode()


class TestOpsHandler:
    """HTTP surface."""

    @pytest.mark.asyncio
    async def test_ready_endpoint_status_codes(self):
        state = ReadinessState(check_interval_sec=10)
        async with serving(OpsHandler(state).handle) as client:
            before = await client.get("/ready")
            state.record_balance_check_success()
            after = await client.get("/ready")

        assert before.status_code == 503
        assert before.json()["reasons"][0]["code"] == "no_successful_balance_checks"
        assert after.status_code == 200
        assert after.json()["status"] == "ready"

    @pytest.mark.asyncio
    async def test_health_metrics_and_errors(self):
        async with serving(OpsHandler(ReadinessState(check_interval_sec=10)).handle) as client:
            health = await client.get("/health")
            metrics = await client.get("/metrics")
            missing = await client.get("/missing")
            post = await client.post("/ready")

        assert health.json() == {"status": "ok"}
        assert "topup_readiness_status 0.0" in metrics.text
        assert missing.status_code == 404
        assert post.status_code == 405
