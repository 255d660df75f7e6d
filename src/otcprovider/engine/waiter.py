"""
Generic poller for long-running remote operations.

A probe returns ``(observation, state)``; the waiter keeps calling it
until ``state`` lands in the target set, leaves the pending set, the
probe raises, the deadline passes, or the cancellation signal fires.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable, Collection, Protocol

import structlog

logger = structlog.get_logger()

Probe = Callable[[], "tuple[Any, str]"]


class Cancellation(Protocol):
    def cancelled(self) -> bool: ...

    def wait(self, seconds: float) -> bool: ...


class WaitOutcome(StrEnum):
    REACHED = "reached"
    TIMED_OUT = "timed_out"
    UNEXPECTED_STATE = "unexpected_state"
    PROBE_ERROR = "probe_error"


@dataclass(frozen=True)
class WaitResult:
    observation: Any
    state: str | None
    outcome: WaitOutcome
    error: BaseException | None = None
    polls: int = 0
    elapsed: float = 0.0
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is WaitOutcome.REACHED

    def describe(self) -> str:
        if self.outcome is WaitOutcome.REACHED:
            return f"reached state {self.state!r} after {self.polls} poll(s)"
        if self.outcome is WaitOutcome.TIMED_OUT:
            reason = "cancelled" if self.cancelled else "timeout"
            return (
                f"{reason} after {self.elapsed:.1f}s waiting for target state; "
                f"last observed status: {self.state!r}"
            )
        if self.outcome is WaitOutcome.UNEXPECTED_STATE:
            return f"unexpected state {self.state!r}"
        return f"status probe failed: {self.error}"


class StateWaiter:
    """Block the calling thread until a probe reports a target state.

    ``timeout`` covers ``initial_delay`` as well as every poll. ``None``
    means no deadline. ``clock`` and ``sleep`` are injectable; when a
    cancellation signal is given its ``wait`` is used for sleeping so a
    cancel wakes the waiter immediately.
    """

    def __init__(
        self,
        probe: Probe,
        *,
        pending: Collection[str],
        target: Collection[str],
        timeout: float | None,
        min_interval: float = 3.0,
        initial_delay: float = 0.0,
        cancel: Cancellation | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] | None = None,
    ):
        if not target:
            raise ValueError("target states must not be empty")
        self.probe = probe
        self.pending = frozenset(pending)
        self.target = frozenset(target)
        self.timeout = timeout
        self.min_interval = min_interval
        self.initial_delay = initial_delay
        self.cancel = cancel
        self.clock = clock
        self._sleep = sleep

    def _pause(self, seconds: float) -> None:
        if seconds <= 0:
            return
        if self._sleep is not None:
            self._sleep(seconds)
        elif self.cancel is not None:
            self.cancel.wait(seconds)
        else:
            time.sleep(seconds)

    def _cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled()

    def wait(self) -> WaitResult:
        start = self.clock()
        deadline = None if self.timeout is None else start + self.timeout
        observation: Any = None
        state: str | None = None
        polls = 0

        def result(outcome: WaitOutcome, **kwargs: Any) -> WaitResult:
            return WaitResult(
                observation, state, outcome, polls=polls, elapsed=self.clock() - start, **kwargs
            )

        if deadline is not None:
            self._pause(min(self.initial_delay, max(deadline - self.clock(), 0.0)))
        else:
            self._pause(self.initial_delay)

        while True:
            if self._cancelled():
                logger.info("wait_cancelled", last_state=state, polls=polls)
                return result(WaitOutcome.TIMED_OUT, cancelled=True)

            try:
                observation, state = self.probe()
            except Exception as exc:
                logger.warning("wait_probe_error", error=str(exc), polls=polls)
                return result(WaitOutcome.PROBE_ERROR, error=exc)
            polls += 1

            if state in self.target:
                logger.debug("wait_reached", state=state, polls=polls)
                return result(WaitOutcome.REACHED)
            if state not in self.pending:
                logger.warning("wait_unexpected_state", state=state, polls=polls)
                return result(WaitOutcome.UNEXPECTED_STATE)

            now = self.clock()
            if deadline is not None and now >= deadline:
                logger.warning("wait_timed_out", last_state=state, polls=polls, timeout=self.timeout)
                return result(WaitOutcome.TIMED_OUT)

            remaining = self.min_interval if deadline is None else min(self.min_interval, deadline - now)
            self._pause(remaining)


def wait_for_state(
    probe: Probe,
    *,
    pending: Collection[str],
    target: Collection[str],
    timeout: float | None,
    min_interval: float = 3.0,
    initial_delay: float = 0.0,
    cancel: Cancellation | None = None,
    **kwargs: Any,
) -> WaitResult:
    return StateWaiter(
        probe,
        pending=pending,
        target=target,
        timeout=timeout,
        min_interval=min_interval,
        initial_delay=initial_delay,
        cancel=cancel,
        **kwargs,
    ).wait()
