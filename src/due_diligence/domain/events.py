"""Domain events for the due-diligence pipeline.

Every event is a frozen dataclass inheriting from ``DomainEvent``.  The
orchestrator and resume controller emit events instead of printing progress;
listeners (logging, presentation, an external observability collaborator)
subscribe through the event bus.

All events carry a ``timestamp`` and a ``source_id`` identifying the
originating component, plus the ``analysis_id`` they concern.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    timestamp: float = field(default_factory=time.time)
    source_id: str = ""
    analysis_id: str = ""


# ---------------------------------------------------------------------------
# Run lifecycle events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisClaimed(DomainEvent):
    """An analysis moved to RUNNING under this process's claim."""

    previous_status: str = ""


@dataclass(frozen=True)
class StagesPlanned(DomainEvent):
    """The dependency stages for a run were computed."""

    stages: tuple[tuple[str, ...], ...] = ()


@dataclass(frozen=True)
class StageStarted(DomainEvent):
    """A stage began executing its members concurrently."""

    index: int = 0
    agents: tuple[str, ...] = ()


@dataclass(frozen=True)
class CheckpointWritten(DomainEvent):
    """A checkpoint snapshot was appended."""

    checkpoint_id: str = ""
    label: str = ""
    completed: int = 0
    failed: int = 0


@dataclass(frozen=True)
class AnalysisFinalized(DomainEvent):
    """The run reached a terminal status."""

    status: str = ""
    completed_agents: int = 0
    total_agents: int = 0
    total_cost: float = 0.0


@dataclass(frozen=True)
class AnalysisAborted(DomainEvent):
    """An orchestrator-level error stopped the run."""

    error: str = ""


# ---------------------------------------------------------------------------
# Agent events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AgentAttemptFailed(DomainEvent):
    """One attempt of an agent failed (it may still be retried)."""

    agent_name: str = ""
    attempt: int = 0
    max_attempts: int = 0
    error: str = ""
    cost: float = 0.0


@dataclass(frozen=True)
class AgentFinished(DomainEvent):
    """An agent produced its terminal result for this pass."""

    agent_name: str = ""
    success: bool = False
    cost: float = 0.0
    execution_time_ms: int = 0
    attempts: int = 0
    error: str | None = None


@dataclass(frozen=True)
class DependencySkipped(DomainEvent):
    """An agent was not invoked because a hard dependency failed."""

    agent_name: str = ""
    missing: tuple[str, ...] = ()


@dataclass(frozen=True)
class EarlyWarningRaised(DomainEvent):
    """A merged result tripped an early-warning rule; the run continues."""

    agent_name: str = ""
    severity: str = ""
    category: str = ""
    title: str = ""
    recommendation: str = ""


# ---------------------------------------------------------------------------
# Resume events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResumeStarted(DomainEvent):
    """A resume pass began re-running still-owed agents."""

    owed: tuple[str, ...] = ()
    checkpoint_id: str = ""


@dataclass(frozen=True)
class ResumeSkipped(DomainEvent):
    """A resume request found nothing owed and changed nothing."""

    reason: str = ""
