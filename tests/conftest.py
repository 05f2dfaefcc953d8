"""Shared fixtures for the due-diligence test suite."""

from __future__ import annotations

import pytest

from due_diligence.domain.entities import Analysis
from due_diligence.domain.exceptions import StorageError
from due_diligence.domain.values import DealContext, Document
from due_diligence.infrastructure.config import PipelineConfig, RunnerConfig
from due_diligence.infrastructure.deals import InMemoryDealProvider
from due_diligence.infrastructure.event_bus import AsyncEventBus, EventStore
from due_diligence.infrastructure.storage.memory import InMemoryStore

# ---------------------------------------------------------------------------
# Deal fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def deal() -> DealContext:
    """A seed-stage SaaS deal with one document."""
    return DealContext(
        deal_id="acme",
        name="Acme Analytics",
        sector="B2B SaaS",
        stage="seed",
        metadata={"country": "FR", "round_size": 3_000_000},
        documents=(
            Document(name="deck.pdf", kind="pitch_deck", text="Acme grows 3x year on year."),
        ),
        facts={"founded": 2021},
    )


@pytest.fixture
def deals(deal: DealContext) -> InMemoryDealProvider:
    return InMemoryDealProvider([deal])


# ---------------------------------------------------------------------------
# Infrastructure fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh in-memory repository and checkpoint store."""
    return InMemoryStore()


class FlakyStore(InMemoryStore):
    """In-memory store whose ``save`` fails while ``broken`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = False
        self.failed_saves = 0

    async def save(self, analysis: Analysis) -> None:
        if self.broken:
            self.failed_saves += 1
            raise StorageError("database unreachable")
        await super().save(analysis)


@pytest.fixture
def flaky_store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def event_bus() -> AsyncEventBus:
    return AsyncEventBus()


@pytest.fixture
def events(event_bus: AsyncEventBus) -> EventStore:
    """Event store recording everything published on ``event_bus``."""
    recorded = EventStore()
    event_bus.subscribe_all(recorded.append)
    return recorded


@pytest.fixture
def config() -> PipelineConfig:
    """Pipeline config with a short timeout and two attempts per agent."""
    return PipelineConfig(
        runner=RunnerConfig(timeout_seconds=1.0, max_retries=2, resume_max_retries=1)
    )
