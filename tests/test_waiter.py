"""Tests for the long-running-operation waiter."""

import pytest
from otcprovider.engine.context import CancellationSignal
from otcprovider.engine.waiter import StateWaiter, WaitOutcome, wait_for_state


def _sequence(*states):
    """Probe returning the given states in order, repeating the last one."""
    calls = {"n": 0}

    def probe():
        index = min(calls["n"], len(states) - 1)
        calls["n"] += 1
        state = states[index]
        return {"status": state}, state

    probe.calls = calls
    return probe


class TestStateWaiter:
    def test_reaches_target(self, clock):
        result = wait_for_state(
            _sequence("BUILD", "BUILD", "ACTIVE"),
            pending={"BUILD"},
            target={"ACTIVE"},
            timeout=60,
            min_interval=3,
            clock=clock,
            sleep=clock.sleep,
        )
        assert result.ok
        assert result.polls == 3
        assert result.observation == {"status": "ACTIVE"}
        assert clock.sleeps == [3, 3]

    def test_initial_delay(self, clock):
        wait_for_state(
            _sequence("ACTIVE"),
            pending=(),
            target={"ACTIVE"},
            timeout=60,
            initial_delay=5,
            clock=clock,
            sleep=clock.sleep,
        )
        assert clock.sleeps == [5]

    def test_timeout_exactly_at_deadline(self, clock):
        """Test the last probe lands on the deadline and no further sleep happens."""
        result = wait_for_state(
            _sequence("BUILD"),
            pending={"BUILD"},
            target={"ACTIVE"},
            timeout=9,
            min_interval=3,
            clock=clock,
            sleep=clock.sleep,
        )
        assert result.outcome is WaitOutcome.TIMED_OUT
        assert result.polls == 4
        assert result.elapsed == 9
        assert sum(clock.sleeps) == 9
        assert "timeout" in result.describe()
        assert "'BUILD'" in result.describe()

    def test_sleep_clipped_to_deadline(self, clock):
        wait_for_state(
            _sequence("BUILD"),
            pending={"BUILD"},
            target={"ACTIVE"},
            timeout=7,
            min_interval=3,
            clock=clock,
            sleep=clock.sleep,
        )
        assert clock.sleeps == [3, 3, 1]

    def test_unexpected_state(self, clock):
        result = wait_for_state(
            _sequence("BUILD", "ERROR"),
            pending={"BUILD"},
            target={"ACTIVE"},
            timeout=60,
            clock=clock,
            sleep=clock.sleep,
        )
        assert result.outcome is WaitOutcome.UNEXPECTED_STATE
        assert result.state == "ERROR"
        assert "unexpected state 'ERROR'" == result.describe()

    def test_probe_error(self, clock):
        def probe():
            raise RuntimeError("boom")

        result = wait_for_state(probe, pending={"BUILD"}, target={"ACTIVE"}, timeout=60, clock=clock, sleep=clock.sleep)
        assert result.outcome is WaitOutcome.PROBE_ERROR
        assert isinstance(result.error, RuntimeError)
        assert result.polls == 0

    def test_cancelled_before_first_probe(self, clock):
        cancel = CancellationSignal()
        cancel.cancel()
        probe = _sequence("BUILD")
        result = wait_for_state(
            probe, pending={"BUILD"}, target={"ACTIVE"}, timeout=60, cancel=cancel, clock=clock, sleep=clock.sleep
        )
        assert result.outcome is WaitOutcome.TIMED_OUT
        assert result.cancelled
        assert probe.calls["n"] == 0
        assert result.describe().startswith("cancelled")

    def test_cancel_during_wait(self, clock):
        cancel = CancellationSignal()

        def sleep(seconds):
            clock.sleep(seconds)
            cancel.cancel()

        result = wait_for_state(
            _sequence("BUILD"), pending={"BUILD"}, target={"ACTIVE"}, timeout=60, cancel=cancel, clock=clock, sleep=sleep
        )
        assert result.cancelled
        assert result.polls == 1

    def test_empty_target_rejected(self):
        with pytest.raises(ValueError):
            StateWaiter(_sequence("A"), pending={"A"}, target=(), timeout=1)

    def test_cancellation_signal_wakes(self):
        cancel = CancellationSignal()
        cancel.cancel()
        assert cancel.wait(30) is True
