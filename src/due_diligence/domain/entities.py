"""Domain entities for the due-diligence pipeline.

``Analysis`` is the one entity with identity and a mutable lifecycle: a run
of the pipeline against one deal.  Its ``results`` map only ever grows or has
a failed entry superseded; a successful entry is final.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .enums import AnalysisStatus
from .values import AgentResult, EarlyWarning

# ---------------------------------------------------------------------------
# Analysis entity
# ---------------------------------------------------------------------------

@dataclass
class Analysis:
    """One run of the pipeline against one deal.

    Invariants maintained by :meth:`merge`:

    * ``completed_agents`` equals the number of successful results.
    * ``total_cost`` never decreases and equals the sum of every merged
      result's cost.
    * a successful result is never replaced.

    Attributes
    ----------
    planned_agents:
        Names the run planned, in stage order.  Drives ``total_agents`` and
        :meth:`is_settled`.
    accepted_failures:
        Names whose terminal failure does not block ``COMPLETED``.
    early_warnings:
        Potential dealbreakers raised while the run progressed, in the
        order they were raised.
    """

    deal_id: str
    analysis_type: str = "full_analysis"
    mode: str = "full"
    analysis_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: AnalysisStatus = AnalysisStatus.PENDING
    total_agents: int = 0
    completed_agents: int = 0
    total_cost: float = 0.0
    results: dict[str, AgentResult] = field(default_factory=dict)
    planned_agents: list[str] = field(default_factory=list)
    accepted_failures: set[str] = field(default_factory=set)
    early_warnings: list[EarlyWarning] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None

    # -- results ----------------------------------------------------------------

    def merge(self, result: AgentResult) -> bool:
        """Merge *result* into ``results``.

        Returns ``False`` (and changes nothing) when the name already holds a
        successful result.
        """
        existing = self.results.get(result.agent_name)
        if existing is not None and existing.success:
            return False
        self.results[result.agent_name] = result
        self.total_cost += result.cost
        self.completed_agents = sum(1 for r in self.results.values() if r.success)
        return True

    def plan(self, agent_names: list[str], accepted_failures: set[str] | None = None) -> None:
        """Record the planned agent set."""
        self.planned_agents = list(agent_names)
        self.total_agents = len(self.planned_agents)
        self.accepted_failures = set(accepted_failures or ())

    def is_successful(self, agent_name: str) -> bool:
        result = self.results.get(agent_name)
        return result is not None and result.success

    def successful_agents(self) -> list[str]:
        return [name for name, r in self.results.items() if r.success]

    def failed_agents(self) -> list[AgentResult]:
        return [r for r in self.results.values() if not r.success]

    def pending_agents(self) -> list[str]:
        """Planned names with no result at all yet."""
        return [name for name in self.planned_agents if name not in self.results]

    def add_warnings(self, warnings: Iterable[EarlyWarning]) -> list[EarlyWarning]:
        """Record *warnings*, skipping any already held for the same agent and
        title.  Returns the ones actually added."""
        held = {(w.agent_name, w.title) for w in self.early_warnings}
        added: list[EarlyWarning] = []
        for warning in warnings:
            key = (warning.agent_name, warning.title)
            if key not in held:
                held.add(key)
                added.append(warning)
        self.early_warnings.extend(added)
        return added

    def is_settled(self) -> bool:
        """Whether every planned agent succeeded or is an accepted failure."""
        for name in self.planned_agents:
            if self.is_successful(name):
                continue
            if name in self.accepted_failures and name in self.results:
                continue
            return False
        return True

    # -- lifecycle ----------------------------------------------------------------

    def mark_running(self) -> None:
        self.status = AnalysisStatus.RUNNING
        self.started_at = time.time()
        self.completed_at = None

    def finalize(self) -> AnalysisStatus:
        """Set COMPLETED when settled, otherwise FAILED."""
        self.status = AnalysisStatus.COMPLETED if self.is_settled() else AnalysisStatus.FAILED
        self.completed_at = time.time()
        return self.status

    def mark_failed(self) -> None:
        self.status = AnalysisStatus.FAILED
        self.completed_at = time.time()

    # -- serialization --------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysis_id": self.analysis_id,
            "deal_id": self.deal_id,
            "analysis_type": self.analysis_type,
            "mode": self.mode,
            "status": self.status.value,
            "total_agents": self.total_agents,
            "completed_agents": self.completed_agents,
            "total_cost": self.total_cost,
            "results": {name: r.to_dict() for name, r in self.results.items()},
            "planned_agents": list(self.planned_agents),
            "accepted_failures": sorted(self.accepted_failures),
            "early_warnings": [w.to_dict() for w in self.early_warnings],
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Analysis:
        results = {
            name: AgentResult.from_dict(r) for name, r in (data.get("results") or {}).items()
        }
        return cls(
            analysis_id=data["analysis_id"],
            deal_id=data["deal_id"],
            analysis_type=data.get("analysis_type", "full_analysis"),
            mode=data.get("mode", "full"),
            status=AnalysisStatus(data.get("status", "PENDING")),
            total_agents=int(data.get("total_agents", 0)),
            completed_agents=sum(1 for r in results.values() if r.success),
            total_cost=float(data.get("total_cost", 0.0)),
            results=results,
            planned_agents=list(data.get("planned_agents") or ()),
            accepted_failures=set(data.get("accepted_failures") or ()),
            early_warnings=[
                EarlyWarning.from_dict(w) for w in data.get("early_warnings") or ()
            ],
            created_at=float(data.get("created_at") or time.time()),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )
