"""Service layer for the due-diligence pipeline.

Re-exports public service types for convenient top-level access::

    from due_diligence.services import (
        Orchestrator, ResumeController, AgentRunner, RunContext,
        MetricScorer, BenchmarkTable, coerce,
    )
"""

from due_diligence.services.orchestrator import (
    Orchestrator,
    ProgressUpdate,
    StageExecutor,
    plan_stages,
)
from due_diligence.services.resume import ResumeController
from due_diligence.services.runner import AgentRunner, CostMeter, RunContext
from due_diligence.services.schema_guard import GuardResult, coerce, shape_for
from due_diligence.services.scoring import BenchmarkTable, MetricScorer, percentile_rank

__all__ = [
    # Orchestration
    "Orchestrator",
    "ProgressUpdate",
    "StageExecutor",
    "plan_stages",
    "ResumeController",
    # Execution
    "AgentRunner",
    "CostMeter",
    "RunContext",
    # Payloads
    "GuardResult",
    "coerce",
    "shape_for",
    # Scoring
    "BenchmarkTable",
    "MetricScorer",
    "percentile_rank",
]
