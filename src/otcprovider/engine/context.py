"""
Operation context handed to every lifecycle handler.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Collection

import structlog

from otcprovider.core.errors import OperationCancelled
from otcprovider.diagnostics.classify import HandlerError
from otcprovider.diagnostics.models import Diagnostic, ErrorKind
from otcprovider.engine.coercion import ResourceInstance
from otcprovider.engine.waiter import Probe, WaitOutcome, WaitResult, wait_for_state
from otcprovider.schema.timeouts import Timeouts

if TYPE_CHECKING:
    from otcprovider.clients.base import ServiceClient
    from otcprovider.clients.factory import ClientFactory
    from otcprovider.engine.diff import ChangeSet
    from otcprovider.schema.registry import ResourceTypeDescriptor

logger = structlog.get_logger()


class CancellationSignal:
    """Thread-safe cancel flag the host can trip from another thread."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if cancelled meanwhile."""
        return self._event.wait(seconds)


@dataclass
class OperationContext:
    clients: "ClientFactory"
    region: str
    desired: ResourceInstance
    descriptor: "ResourceTypeDescriptor"
    operation: str
    prior: ResourceInstance | None = None
    change_set: "ChangeSet | None" = None
    timeouts: Timeouts = field(default_factory=Timeouts)
    deadline: float | None = None
    cancel: CancellationSignal = field(default_factory=CancellationSignal)
    provider_meta: dict[str, Any] = field(default_factory=dict)
    warnings: list[Diagnostic] = field(default_factory=list)
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], Any] | None = None

    @property
    def id(self) -> str:
        return self.desired.id

    def set_id(self, resource_id: str) -> None:
        self.desired.id = resource_id
        logger.debug("resource_id_set", type_name=self.descriptor.name, id=resource_id)

    def client(self, service: str, version: str) -> "ServiceClient":
        self.check_cancelled()
        return self.clients.client(service, version, self.region)

    def check_cancelled(self) -> None:
        if self.cancel.cancelled():
            raise OperationCancelled(f"{self.operation} of {self.descriptor.name} cancelled")

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(self.deadline - self.clock(), 0.0)

    def warn(self, diagnostic: Diagnostic) -> None:
        self.warnings.append(diagnostic)

    def wait(
        self,
        probe: Probe,
        *,
        pending: Collection[str],
        target: Collection[str],
        timeout: float | None = None,
        min_interval: float = 3.0,
        initial_delay: float = 0.0,
    ) -> WaitResult:
        """Run the waiter bounded by the remaining operation budget."""
        budget = self.remaining()
        if timeout is None:
            timeout = budget
        elif budget is not None:
            timeout = min(timeout, budget)
        return wait_for_state(
            probe,
            pending=pending,
            target=target,
            timeout=timeout,
            min_interval=min_interval,
            initial_delay=initial_delay,
            cancel=self.cancel,
            clock=self.clock,
            sleep=self.sleep,
        )

    def wait_until(self, probe: Probe, *, pending: Collection[str], target: Collection[str], **kwargs: Any) -> Any:
        """Like ``wait`` but raise unless the target was reached; returns the observation."""
        result = self.wait(probe, pending=pending, target=target, **kwargs)
        if result.ok:
            return result.observation
        if result.outcome is WaitOutcome.PROBE_ERROR and result.error is not None:
            raise result.error
        what = f"{self.descriptor.name} {self.id}".strip()
        raise HandlerError(
            f"Error waiting for {what} to become {'/'.join(sorted(target))}",
            result.describe(),
            kind=ErrorKind.UNKNOWN,
        )
