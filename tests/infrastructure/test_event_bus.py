"""Tests for AsyncEventBus and EventStore."""

from __future__ import annotations

import pytest

from due_diligence.domain.events import (
    AgentFinished,
    AnalysisFinalized,
    DomainEvent,
    StageStarted,
)
from due_diligence.infrastructure.event_bus import AsyncEventBus, EventStore


class TestAsyncEventBus:
    """Subscribe and publish, globally or per analysis."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self) -> None:
        bus = AsyncEventBus()
        received: list[str] = []

        async def on_async(event: DomainEvent) -> None:
            received.append("async")

        bus.subscribe(AgentFinished, lambda e: received.append("sync"))
        bus.subscribe(AgentFinished, on_async)
        await bus.publish(AgentFinished(agent_name="audit", success=True))
        assert received == ["sync", "async"]

    @pytest.mark.asyncio
    async def test_typed_subscription_filters(self) -> None:
        bus = AsyncEventBus()
        received: list[DomainEvent] = []
        bus.subscribe(StageStarted, received.append)
        await bus.publish(AgentFinished(agent_name="audit"))
        await bus.publish(StageStarted(index=1))
        assert len(received) == 1
        assert isinstance(received[0], StageStarted)

    @pytest.mark.asyncio
    async def test_global_handlers_run_first(self) -> None:
        bus = AsyncEventBus()
        order: list[str] = []
        bus.subscribe(AgentFinished, lambda e: order.append("typed"))
        bus.subscribe_all(lambda e: order.append("global"))
        await bus.publish(AgentFinished())
        assert order == ["global", "typed"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self) -> None:
        bus = AsyncEventBus()
        received: list[DomainEvent] = []

        def broken(event: DomainEvent) -> None:
            raise RuntimeError("subscriber bug")

        bus.subscribe(AgentFinished, broken)
        bus.subscribe(AgentFinished, received.append)
        await bus.publish(AgentFinished())
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_subscription_narrowed_to_one_analysis(self) -> None:
        bus = AsyncEventBus()
        mine: list[DomainEvent] = []
        everything: list[DomainEvent] = []
        subscription = bus.subscribe(AgentFinished, mine.append, analysis_id="a1")
        bus.subscribe(AgentFinished, everything.append)

        await bus.publish(AgentFinished(analysis_id="a1", agent_name="x"))
        await bus.publish(AgentFinished(analysis_id="a2", agent_name="y"))

        assert subscription.analysis_id == "a1"
        assert [e.agent_name for e in mine] == ["x"]
        assert [e.agent_name for e in everything] == ["x", "y"]

    @pytest.mark.asyncio
    async def test_global_subscription_narrowed_to_one_analysis(self) -> None:
        bus = AsyncEventBus()
        recorded = EventStore()
        bus.subscribe_all(recorded.append, analysis_id="a2")
        await bus.publish(StageStarted(analysis_id="a1", index=0))
        await bus.publish(StageStarted(analysis_id="a2", index=1))
        await bus.publish(AnalysisFinalized(analysis_id="a2", status="FAILED"))
        assert len(recorded) == 2
        assert {e.analysis_id for e in recorded.query()} == {"a2"}


class TestEventStore:
    """Append-only recording and queries."""

    def test_query_filters(self) -> None:
        store = EventStore()
        store.append(AgentFinished(analysis_id="a1", agent_name="x"))
        store.append(AgentFinished(analysis_id="a2", agent_name="y"))
        store.append(AnalysisFinalized(analysis_id="a1", status="COMPLETED"))

        assert len(store) == 3
        assert len(store.query(AgentFinished)) == 2
        assert len(store.query(analysis_id="a1")) == 2
        assert store.query(AgentFinished, analysis_id="a2")[0].agent_name == "y"
        assert store.query(limit=1) == [store.latest]
        assert isinstance(store.latest, AnalysisFinalized)

    def test_max_size_evicts_oldest(self) -> None:
        store = EventStore(max_size=2)
        for index in range(3):
            store.append(StageStarted(index=index))
        assert [e.index for e in store.query()] == [1, 2]

