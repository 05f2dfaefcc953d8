"""Value objects for the due-diligence pipeline.

Value objects are immutable (``frozen=True``) and compared by value.  They
carry the data that flows between the registry, the runner, the stores and
the scorer: agent results, early warnings, checkpoint snapshots, extracted
metrics, benchmark records and the read-only deal context handed to agents.
"""

from __future__ import annotations

import copy
import math
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .enums import DataReliability, WarningSeverity

if TYPE_CHECKING:
    from .entities import Analysis


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


# ---------------------------------------------------------------------------
# AgentResult
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AgentResult:
    """Outcome of one agent attempt (or of a retried sequence of attempts).

    Exactly one of ``data`` / ``error`` is populated, according to
    ``success``.  Build instances through :meth:`succeeded` and
    :meth:`failed`, which enforce that rule.

    Attributes
    ----------
    agent_name:
        Registry name of the agent.
    success:
        Whether the agent produced a usable payload.
    data:
        Guarded payload (present iff ``success``).
    error:
        Error message (present iff not ``success``).
    cost:
        Metered spend, always ``>= 0`` even on failure.
    execution_time_ms:
        Wall time of the final attempt, in milliseconds.
    """

    agent_name: str
    success: bool
    data: Mapping[str, Any] | None = None
    error: str | None = None
    cost: float = 0.0
    execution_time_ms: int = 0

    def __post_init__(self) -> None:
        if self.success and self.data is None:
            raise ValueError(f"Successful result for {self.agent_name!r} needs data")
        if self.success and self.error is not None:
            raise ValueError(f"Successful result for {self.agent_name!r} cannot carry an error")
        if not self.success and (self.error is None or self.data is not None):
            raise ValueError(f"Failed result for {self.agent_name!r} needs an error and no data")
        if self.cost < 0:
            raise ValueError(f"cost must be >= 0, got {self.cost}")

    @classmethod
    def succeeded(
        cls,
        agent_name: str,
        data: Mapping[str, Any],
        cost: float = 0.0,
        execution_time_ms: int = 0,
    ) -> AgentResult:
        return cls(
            agent_name=agent_name,
            success=True,
            data=dict(data),
            cost=max(0.0, float(cost)),
            execution_time_ms=max(0, int(execution_time_ms)),
        )

    @classmethod
    def failed(
        cls,
        agent_name: str,
        error: str,
        cost: float = 0.0,
        execution_time_ms: int = 0,
    ) -> AgentResult:
        return cls(
            agent_name=agent_name,
            success=False,
            error=error or "Unknown error",
            cost=max(0.0, float(cost)),
            execution_time_ms=max(0, int(execution_time_ms)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "success": self.success,
            "data": copy.deepcopy(dict(self.data)) if self.data is not None else None,
            "error": self.error,
            "cost": self.cost,
            "execution_time_ms": self.execution_time_ms,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AgentResult:
        return cls(
            agent_name=data["agent_name"],
            success=bool(data["success"]),
            data=copy.deepcopy(data.get("data")),
            error=data.get("error"),
            cost=float(data.get("cost", 0.0)),
            execution_time_ms=int(data.get("execution_time_ms", 0)),
        )


# ---------------------------------------------------------------------------
# Early warnings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EarlyWarning:
    """A potential dealbreaker spotted in one agent's verdict.

    Warnings are raised while the run continues; they never stop it.

    Attributes
    ----------
    agent_name:
        Agent whose result triggered the warning.
    severity:
        ``critical``, ``high`` or ``medium``.
    category:
        Risk family, e.g. ``financial_critical`` or ``legal_existential``.
    recommendation:
        ``investigate``, ``likely_dealbreaker`` or ``absolute_dealbreaker``.
    evidence:
        Up to five excerpts from the triggering result.
    confidence:
        0-100, taken from the agent's own confidence when it reports one.
    """

    agent_name: str
    severity: WarningSeverity
    category: str
    title: str
    description: str = ""
    recommendation: str = "investigate"
    evidence: tuple[str, ...] = ()
    questions: tuple[str, ...] = ()
    confidence: int = 85
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "severity": self.severity.value,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "recommendation": self.recommendation,
            "evidence": list(self.evidence),
            "questions": list(self.questions),
            "confidence": self.confidence,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EarlyWarning:
        return cls(
            agent_name=data["agent_name"],
            severity=WarningSeverity(data.get("severity", "medium")),
            category=data.get("category", ""),
            title=data.get("title", ""),
            description=data.get("description", ""),
            recommendation=data.get("recommendation", "investigate"),
            evidence=tuple(data.get("evidence") or ()),
            questions=tuple(data.get("questions") or ()),
            confidence=int(data.get("confidence", 85)),
            created_at=float(data.get("created_at") or time.time()),
        )


# ---------------------------------------------------------------------------
# Checkpoint snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FailedAgent:
    """An agent name paired with the error of its latest failed attempt."""

    agent: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"agent": self.agent, "error": self.error}


@dataclass(frozen=True)
class CheckpointSnapshot:
    """Append-only progress snapshot of one Analysis.

    ``pending_agents`` lists planned agents that had no terminal result when
    the snapshot was taken (e.g. after an abort); resume treats them as owed
    alongside ``failed_agents``.
    """

    analysis_id: str
    completed_agents: tuple[str, ...] = ()
    failed_agents: tuple[FailedAgent, ...] = ()
    pending_agents: tuple[str, ...] = ()
    results: Mapping[str, AgentResult] = field(default_factory=dict)
    total_cost: float = 0.0
    label: str = ""
    early_warnings: tuple[EarlyWarning, ...] = ()
    checkpoint_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)

    @classmethod
    def capture(cls, analysis: Analysis, label: str = "") -> CheckpointSnapshot:
        """Snapshot the current progress of *analysis*."""
        return cls(
            analysis_id=analysis.analysis_id,
            completed_agents=tuple(analysis.successful_agents()),
            failed_agents=tuple(
                FailedAgent(agent=r.agent_name, error=r.error or "")
                for r in analysis.failed_agents()
            ),
            pending_agents=tuple(analysis.pending_agents()),
            results=dict(analysis.results),
            total_cost=analysis.total_cost,
            label=label,
            early_warnings=tuple(analysis.early_warnings),
        )

    @property
    def failed_names(self) -> list[str]:
        return [f.agent for f in self.failed_agents]

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkpoint_id": self.checkpoint_id,
            "analysis_id": self.analysis_id,
            "label": self.label,
            "completed_agents": list(self.completed_agents),
            "failed_agents": [f.to_dict() for f in self.failed_agents],
            "pending_agents": list(self.pending_agents),
            "results": {name: r.to_dict() for name, r in self.results.items()},
            "total_cost": self.total_cost,
            "early_warnings": [w.to_dict() for w in self.early_warnings],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CheckpointSnapshot:
        return cls(
            analysis_id=data["analysis_id"],
            completed_agents=tuple(data.get("completed_agents", ())),
            failed_agents=tuple(
                FailedAgent(agent=f["agent"], error=f.get("error", ""))
                for f in data.get("failed_agents", ())
            ),
            pending_agents=tuple(data.get("pending_agents", ())),
            results={
                name: AgentResult.from_dict(r)
                for name, r in (data.get("results") or {}).items()
            },
            total_cost=float(data.get("total_cost", 0.0)),
            label=data.get("label", ""),
            early_warnings=tuple(
                EarlyWarning.from_dict(w) for w in data.get("early_warnings") or ()
            ),
            checkpoint_id=data.get("checkpoint_id") or _new_id(),
            created_at=float(data.get("created_at", time.time())),
        )


# ---------------------------------------------------------------------------
# Scoring inputs and outputs
# ---------------------------------------------------------------------------

METRIC_ALIASES: dict[str, str] = {
    "annual_recurring_revenue": "arr",
    "monthly_recurring_revenue": "mrr",
    "arr_growth": "arr_growth_yoy",
    "revenue_growth": "arr_growth_yoy",
    "net_revenue_retention": "nrr",
    "burn_rate": "monthly_burn",
    "runway": "runway_months",
    "ltv_cac": "ltv_cac_ratio",
    "cac_payback": "cac_payback_months",
}


def normalize_metric_name(name: str) -> str:
    """Lower-case *name*, collapse punctuation to ``_`` and resolve aliases."""
    lowered = "".join(c if c.isalnum() or c == "_" else "_" for c in name.strip().lower())
    while "__" in lowered:
        lowered = lowered.replace("__", "_")
    lowered = lowered.strip("_")
    return METRIC_ALIASES.get(lowered, lowered)


@dataclass(frozen=True)
class ExtractedMetric:
    """A numeric metric pulled out of an agent payload."""

    name: str
    value: float
    unit: str = ""
    source: str = ""
    reliability: DataReliability = DataReliability.DECLARED
    category: str = ""

    @classmethod
    def from_payload(cls, item: Mapping[str, Any]) -> ExtractedMetric | None:
        """Build a metric from a guarded ``metrics`` item.

        Returns ``None`` when the item carries no numeric value.
        """
        value = item.get("value")
        if value is None or isinstance(value, bool):
            return None
        try:
            value = float(value)
        except (TypeError, ValueError, OverflowError):
            return None
        if math.isnan(value) or math.isinf(value):
            return None
        try:
            reliability = DataReliability(str(item.get("reliability", "DECLARED")).upper())
        except ValueError:
            reliability = DataReliability.DECLARED
        return cls(
            name=normalize_metric_name(str(item.get("name", ""))),
            value=value,
            unit=str(item.get("unit", "")),
            source=str(item.get("source", "")),
            reliability=reliability,
            category=str(item.get("category", "")),
        )


@dataclass(frozen=True)
class Benchmark:
    """Quartile record for one metric in one sector/stage cell."""

    metric: str
    p25: float
    median: float
    p75: float
    sector: str = "*"
    stage: str = "*"
    higher_is_better: bool = True
    source: str = ""

    def __post_init__(self) -> None:
        if not (self.p25 <= self.median <= self.p75):
            raise ValueError(
                f"Benchmark {self.metric!r} quartiles must be ordered, "
                f"got ({self.p25}, {self.median}, {self.p75})"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Benchmark:
        return cls(
            metric=normalize_metric_name(str(data["metric"])),
            p25=float(data["p25"]),
            median=float(data["median"]),
            p75=float(data["p75"]),
            sector=str(data.get("sector", "*")),
            stage=str(data.get("stage", "*")),
            higher_is_better=bool(data.get("higher_is_better", True)),
            source=str(data.get("source", "")),
        )


@dataclass(frozen=True)
class ScoringCriterion:
    """A named, weighted group of metrics."""

    name: str
    weight: float
    metrics: tuple[str, ...]

    def __post_init__(self) -> None:
        if self.weight < 0:
            raise ValueError(f"Criterion {self.name!r} weight must be >= 0")


@dataclass(frozen=True)
class CriterionScore:
    """Per-criterion line of a score breakdown."""

    criterion: str
    weight: float
    score: int
    has_data: bool
    justification: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "criterion": self.criterion,
            "weight": self.weight,
            "score": self.score,
            "has_data": self.has_data,
            "justification": self.justification,
        }


@dataclass(frozen=True)
class ScoreResult:
    """Output of the Metric Scorer."""

    value: int
    breakdown: tuple[CriterionScore, ...]
    coverage: float
    grade: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "grade": self.grade,
            "coverage": self.coverage,
            "breakdown": [c.to_dict() for c in self.breakdown],
        }


# ---------------------------------------------------------------------------
# Runner budget and deal context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunBudget:
    """Per-agent execution budget.

    ``max_retries`` is the total number of attempts (at least one attempt is
    always made).
    """

    timeout: float = 180.0
    max_retries: int = 2

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")

    @property
    def attempts(self) -> int:
        return max(1, self.max_retries)


@dataclass(frozen=True)
class Document:
    """A deal document with already-extracted text."""

    name: str
    kind: str = "other"
    text: str = ""


@dataclass(frozen=True)
class DealContext:
    """Read-only deal input handed to every agent."""

    deal_id: str
    name: str = ""
    sector: str | None = None
    stage: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    documents: Sequence[Document] = ()
    facts: Mapping[str, Any] = field(default_factory=dict)
    benchmarks: Sequence[Benchmark] = ()
    external: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DealContext:
        return cls(
            deal_id=str(data["deal_id"]),
            name=str(data.get("name", "")),
            sector=data.get("sector"),
            stage=data.get("stage"),
            metadata=dict(data.get("metadata") or {}),
            documents=tuple(
                Document(
                    name=str(d.get("name", "")),
                    kind=str(d.get("kind", "other")),
                    text=str(d.get("text", "")),
                )
                for d in data.get("documents") or ()
            ),
            facts=dict(data.get("facts") or {}),
            benchmarks=tuple(Benchmark.from_dict(b) for b in data.get("benchmarks") or ()),
            external=dict(data.get("external") or {}),
        )
