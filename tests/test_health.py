"""Tests for the HealthGate circuit breaker."""

import threading

import pytest

from session_transcriber.asr.health import CircuitState, HealthGate


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gate(clock) -> HealthGate:
    return HealthGate(failure_threshold=3, cooldown_seconds=300.0, clock=clock)


class TestHealthGate:
    def test_starts_closed_and_healthy(self, gate) -> None:
        assert gate.allow_request()
        assert gate.snapshot().state is CircuitState.CLOSED
        assert gate.summary() == "API healthy"

    def test_failures_below_threshold_keep_circuit_closed(self, gate) -> None:
        gate.record_failure("timeout")
        gate.record_failure("timeout")

        assert gate.allow_request()
        assert gate.summary() == "2/3 failures recorded"
        assert gate.snapshot().last_failure_reason == "timeout"

    def test_opens_at_threshold(self, gate, clock) -> None:
        for _ in range(3):
            gate.record_failure("502")

        snap = gate.snapshot()
        assert snap.state is CircuitState.OPEN
        assert snap.cooldown_expires_at == clock.now + 300.0
        assert not gate.allow_request()
        assert gate.summary() == "Circuit breaker open - retry in 300 seconds"

    def test_retry_after_counts_down(self, gate, clock) -> None:
        for _ in range(3):
            gate.record_failure("502")
        clock.now += 120.5

        assert gate.retry_after() == pytest.approx(179.5)
        assert gate.summary() == "Circuit breaker open - retry in 180 seconds"

    def test_success_resets_counter(self, gate) -> None:
        gate.record_failure("x")
        gate.record_failure("x")
        gate.record_success()
        gate.record_failure("x")

        assert gate.snapshot().consecutive_failures == 1
        assert gate.snapshot().state is CircuitState.CLOSED

    def test_half_open_admits_single_trial_call(self, gate, clock) -> None:
        for _ in range(3):
            gate.record_failure("x")
        clock.now += 300.0

        assert gate.allow_request()
        assert gate.snapshot().state is CircuitState.HALF_OPEN
        assert gate.summary() == "Circuit breaker half-open - probing"
        assert not gate.allow_request()

    def test_trial_success_closes(self, gate, clock) -> None:
        for _ in range(3):
            gate.record_failure("x")
        clock.now += 301.0
        assert gate.allow_request()

        gate.record_success()

        assert gate.snapshot().state is CircuitState.CLOSED
        assert gate.snapshot().consecutive_failures == 0
        assert gate.allow_request()
        assert gate.allow_request()

    def test_trial_failure_reopens_with_fresh_cooldown(self, gate, clock) -> None:
        for _ in range(3):
            gate.record_failure("x")
        clock.now += 301.0
        assert gate.allow_request()

        gate.record_failure("still down")

        snap = gate.snapshot()
        assert snap.state is CircuitState.OPEN
        assert snap.cooldown_expires_at == clock.now + 300.0
        assert not gate.allow_request()

    def test_release_frees_trial_slot(self, gate, clock) -> None:
        for _ in range(3):
            gate.record_failure("x")
        clock.now += 301.0
        assert gate.allow_request()

        gate.release()

        assert gate.snapshot().state is CircuitState.HALF_OPEN
        assert gate.allow_request()

    def test_retry_after_zero_when_closed(self, gate) -> None:
        assert gate.retry_after() == 0.0

    def test_invalid_threshold(self) -> None:
        with pytest.raises(ValueError):
            HealthGate(failure_threshold=0)

    def test_concurrent_failures_are_all_counted(self) -> None:
        gate = HealthGate(failure_threshold=1000)

        def fail_many() -> None:
            for _ in range(100):
                gate.record_failure("x")

        threads = [threading.Thread(target=fail_many) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert gate.snapshot().consecutive_failures == 800
