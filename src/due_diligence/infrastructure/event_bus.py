"""Event bus infrastructure for the due-diligence pipeline.

Provides an asynchronous pub-sub event bus and an in-memory event store for
replay and debugging.  The bus dispatches ``DomainEvent`` instances to
registered handlers, catching and logging errors so that a single failing
subscriber never breaks a run.

Subscriptions can be narrowed to one analysis: a dashboard following a resume
pass only hears about that analysis even when the bus is shared by several
concurrent runs.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from due_diligence.domain.events import DomainEvent

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------
AsyncHandler = Callable[[DomainEvent], Any]  # may be sync or async callable


@dataclass(frozen=True)
class Subscription:
    """A handler plus the analysis it is restricted to (``None`` = all)."""

    handler: AsyncHandler
    analysis_id: str | None = None

    def wants(self, event: DomainEvent) -> bool:
        return self.analysis_id is None or event.analysis_id == self.analysis_id


# ===================================================================== #
#  Asynchronous Event Bus                                                #
# ===================================================================== #

class AsyncEventBus:
    """Async event bus used by the runner, orchestrator and resume controller.

    Handlers may be either regular callables or async coroutines; the bus
    inspects each handler at dispatch time and ``await``s coroutines
    transparently.

    Usage::

        bus = AsyncEventBus()
        bus.subscribe(AgentFinished, on_agent_finished)
        bus.subscribe(EarlyWarningRaised, dashboard.print_warning_event,
                      analysis_id=analysis_id)
        await bus.publish(AgentFinished(agent_name="financial-auditor", ...))
    """

    def __init__(self) -> None:
        self._typed: dict[type[DomainEvent], list[Subscription]] = defaultdict(list)
        self._global: list[Subscription] = []

    # -- subscription -------------------------------------------------------

    def subscribe(
        self,
        event_type: type[DomainEvent],
        handler: AsyncHandler,
        *,
        analysis_id: str | None = None,
    ) -> Subscription:
        """Register *handler* for *event_type*, optionally for one analysis."""
        subscription = Subscription(handler, analysis_id)
        self._typed[event_type].append(subscription)
        return subscription

    def subscribe_all(
        self,
        handler: AsyncHandler,
        *,
        analysis_id: str | None = None,
    ) -> Subscription:
        """Register *handler* for every event type, optionally for one analysis."""
        subscription = Subscription(handler, analysis_id)
        self._global.append(subscription)
        return subscription

    # -- publishing ---------------------------------------------------------

    async def publish(self, event: DomainEvent) -> None:
        """Publish *event* to every interested handler (global first)."""
        for subscription in [*self._global, *self._typed.get(type(event), [])]:
            if subscription.wants(event):
                await self._dispatch(subscription.handler, event)

    async def _dispatch(self, handler: AsyncHandler, event: DomainEvent) -> None:
        try:
            if asyncio.iscoroutinefunction(handler):
                await handler(event)
            else:
                handler(event)
        except Exception:
            logger.exception(
                "Error in event handler %r for %s on analysis %s",
                handler,
                type(event).__name__,
                event.analysis_id or "-",
            )


# ===================================================================== #
#  Event Store                                                           #
# ===================================================================== #

class EventStore:
    """In-memory append-only event store for replay and debugging.

    Wire it to a bus via ``subscribe_all`` so that every published event is
    recorded::

        store = EventStore()
        bus = AsyncEventBus()
        bus.subscribe_all(store.append)
    """

    def __init__(self, max_size: int = 0) -> None:
        """Create a store.

        Parameters
        ----------
        max_size:
            Maximum number of events to keep.  ``0`` means unlimited.
        """
        self._events: list[DomainEvent] = []
        self._max_size = max_size
        self._lock = threading.Lock()

    def append(self, event: DomainEvent) -> None:
        """Append a single event, evicting the oldest beyond *max_size*."""
        with self._lock:
            self._events.append(event)
            if self._max_size > 0 and len(self._events) > self._max_size:
                self._events = self._events[-self._max_size:]

    def query(
        self,
        event_type: type[DomainEvent] | None = None,
        analysis_id: str | None = None,
        limit: int = 0,
    ) -> Sequence[DomainEvent]:
        """Return events matching the optional filters.

        Parameters
        ----------
        event_type:
            If given, only return events that are instances of this type.
        analysis_id:
            If given, only return events concerning this analysis.
        limit:
            Maximum number of (most recent) events to return; 0 = unlimited.
        """
        with self._lock:
            result: list[DomainEvent] = list(self._events)

        if event_type is not None:
            result = [e for e in result if isinstance(e, event_type)]
        if analysis_id is not None:
            result = [e for e in result if e.analysis_id == analysis_id]
        if limit > 0:
            result = result[-limit:]
        return result

    @property
    def latest(self) -> DomainEvent | None:
        """Return the most recently appended event, or ``None``."""
        with self._lock:
            return self._events[-1] if self._events else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
