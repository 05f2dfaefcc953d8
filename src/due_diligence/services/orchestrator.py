"""Orchestrator: plan, run and checkpoint a full analysis.

State machine per analysis::

    PENDING --claim--> RUNNING --finalize--> COMPLETED | FAILED

The agent set for a deal is split into dependency stages (topological
layers).  Each stage runs concurrently through the :class:`AgentRunner`,
reading a frozen snapshot of the results of earlier stages, and the whole
stage is terminal before the next one starts.  After every stage the results
are merged into the analysis, a checkpoint is appended and the record saved.
Every merged success is checked for early warnings, which are recorded on
the analysis without stopping the run.

Errors fall in three groups:

* agent failures -- recorded as failed results, never escalate;
* configuration errors (cycles, unknown sector, unknown tiers) -- raised
  before any agent runs;
* orchestrator-level errors (e.g. the store becomes unreachable) -- abort
  the run and leave it FAILED, resumable from the last checkpoint.  A run
  that has been claimed never raises them and never stays RUNNING.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from due_diligence.agents.base import AgentSpec
from due_diligence.domain.entities import Analysis
from due_diligence.domain.enums import ANALYSIS_TYPES, AnalysisStatus, Tier
from due_diligence.domain.events import (
    AnalysisAborted,
    AnalysisClaimed,
    AnalysisFinalized,
    CheckpointWritten,
    DependencySkipped,
    StagesPlanned,
    StageStarted,
)
from due_diligence.domain.exceptions import (
    AnalysisNotFound,
    ConfigurationError,
    CyclicDependencyError,
)
from due_diligence.domain.values import AgentResult, CheckpointSnapshot, DealContext, RunBudget
from due_diligence.infrastructure.config import PipelineConfig
from due_diligence.infrastructure.deals import DealContextProvider
from due_diligence.infrastructure.event_bus import AsyncEventBus
from due_diligence.infrastructure.registry import AgentRegistry
from due_diligence.infrastructure.storage import AnalysisRepository, CheckpointStore
from due_diligence.services.early_warnings import EarlyWarningDetector, warning_event
from due_diligence.services.runner import AgentRunner

logger = logging.getLogger(__name__)

DEPENDENCY_FAILED = "DependencyFailed"
COST_LIMIT_EXCEEDED = "CostLimitExceeded"


@dataclass(frozen=True)
class ProgressUpdate:
    """Passed to the ``on_progress`` callback after every agent result."""

    analysis_id: str
    agent_name: str
    success: bool
    completed_agents: int
    total_agents: int
    total_cost: float


ProgressCallback = Callable[[ProgressUpdate], Any]


# ===================================================================== #
#  Stage planning                                                        #
# ===================================================================== #

def plan_stages(
    agents: Sequence[AgentSpec], *, allow_external: bool = False
) -> list[list[AgentSpec]]:
    """Partition *agents* into dependency stages.

    Stage 0 holds agents with no planned dependency; stage *k* holds agents
    whose planned dependencies all sit in earlier stages.  Input order is
    kept inside a stage.  Soft dependencies on agents outside the plan are
    ignored, and so are hard ones when *allow_external* is set (a resume
    pass checks those against results already recorded).

    Raises
    ------
    ConfigurationError
        If a hard-required dependency is not part of the plan.
    CyclicDependencyError
        If the planned dependencies contain a cycle.
    """
    planned = {a.name for a in agents}
    for agent in () if allow_external else agents:
        missing = [d for d in agent.required if d not in planned]
        if missing:
            raise ConfigurationError(
                f"Agent {agent.name!r} hard-requires {missing}, which are not planned",
                details={"agent": agent.name, "missing": missing},
            )

    waiting = {a.name: {d for d in a.dependencies if d in planned} for a in agents}
    placed: set[str] = set()
    stages: list[list[AgentSpec]] = []
    remaining = list(agents)
    while remaining:
        stage = [a for a in remaining if waiting[a.name] <= placed]
        if not stage:
            names = [a.name for a in remaining]
            raise CyclicDependencyError(
                f"Cyclic dependencies among {names}", agents=names
            )
        stages.append(stage)
        placed.update(a.name for a in stage)
        remaining = [a for a in remaining if a.name not in placed]
    return stages


# ===================================================================== #
#  Stage execution (shared with the resume controller)                   #
# ===================================================================== #

def dependency_failed(agent: AgentSpec, missing: Sequence[str]) -> AgentResult:
    return AgentResult.failed(
        agent.name, f"{DEPENDENCY_FAILED}: {', '.join(missing)} did not succeed"
    )


class StageExecutor:
    """Runs one stage of agents concurrently.

    Members whose hard-required dependencies have no successful result are
    not invoked; they get a synthesized zero-cost ``DependencyFailed``
    result instead.
    """

    def __init__(
        self,
        runner: AgentRunner,
        event_bus: AsyncEventBus | None = None,
        max_concurrency: int = 0,
    ) -> None:
        self.runner = runner
        self.event_bus = event_bus
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None

    async def execute(
        self,
        stage: Sequence[AgentSpec],
        analysis: Analysis,
        deal: DealContext,
        budget: RunBudget,
    ) -> list[AgentResult]:
        previous: Mapping[str, AgentResult] = dict(analysis.results)
        slots: list[AgentResult | None] = []
        pending: list[tuple[int, AgentSpec, Awaitable[AgentResult]]] = []

        for agent in stage:
            missing = [d for d in agent.required if not analysis.is_successful(d)]
            if missing:
                logger.info("Skipping %s: hard dependencies %s failed", agent.name, missing)
                await self._publish(
                    DependencySkipped(
                        source_id="orchestrator",
                        analysis_id=analysis.analysis_id,
                        agent_name=agent.name,
                        missing=tuple(missing),
                    )
                )
                slots.append(dependency_failed(agent, missing))
                continue
            pending.append(
                (len(slots), agent, self._run_one(agent, deal, budget, previous, analysis))
            )
            slots.append(None)

        outcomes = await asyncio.gather(*(c for _, _, c in pending), return_exceptions=True)
        for (index, agent, _), outcome in zip(pending, outcomes):
            if isinstance(outcome, AgentResult):
                slots[index] = outcome
            elif isinstance(outcome, Exception):
                logger.error("Runner raised for %s: %r", agent.name, outcome)
                slots[index] = AgentResult.failed(
                    agent.name, f"{type(outcome).__name__}: {outcome}"
                )
            else:
                raise outcome
        return [r for r in slots if r is not None]

    async def _run_one(
        self,
        agent: AgentSpec,
        deal: DealContext,
        budget: RunBudget,
        previous: Mapping[str, AgentResult],
        analysis: Analysis,
    ) -> AgentResult:
        if self._semaphore is None:
            return await self.runner.run(agent, deal, budget, previous, analysis.analysis_id)
        async with self._semaphore:
            return await self.runner.run(agent, deal, budget, previous, analysis.analysis_id)

    async def _publish(self, event: Any) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event)


async def persist_failure(repository: AnalysisRepository, analysis: Analysis) -> None:
    """Mark *analysis* FAILED and persist it, keeping every merged result.

    Best effort: the full record first, the bare status second.  Never
    raises.
    """
    analysis.mark_failed()
    try:
        await repository.save(analysis)
    except Exception:
        logger.exception("Could not save failed analysis %s", analysis.analysis_id)
        try:
            await repository.update_status(analysis.analysis_id, AnalysisStatus.FAILED)
        except Exception:
            logger.exception(
                "Could not mark analysis %s FAILED; it needs manual recovery",
                analysis.analysis_id,
            )


# ===================================================================== #
#  Orchestrator                                                          #
# ===================================================================== #

class Orchestrator:
    """Runs analyses end to end.

    Parameters
    ----------
    registry:
        Agent registry used for planning.
    repository, checkpoints:
        Durable stores (often the same object).
    deals:
        Deal-context provider.
    runner:
        Agent runner; carries the completer and scorer.
    config:
        Pipeline configuration (budgets, concurrency, spend ceiling).
    event_bus:
        Receives lifecycle events.
    on_progress:
        Optional callback (sync or async) invoked after each agent result.
    warnings:
        Early-warning detector run on every merged result; defaults to the
        built-in rule table.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        repository: AnalysisRepository,
        checkpoints: CheckpointStore,
        deals: DealContextProvider,
        runner: AgentRunner | None = None,
        config: PipelineConfig | None = None,
        event_bus: AsyncEventBus | None = None,
        on_progress: ProgressCallback | None = None,
        warnings: EarlyWarningDetector | None = None,
    ) -> None:
        self.registry = registry
        self.repository = repository
        self.checkpoints = checkpoints
        self.deals = deals
        self.config = config or PipelineConfig()
        self.event_bus = event_bus
        self.runner = runner or AgentRunner(event_bus=event_bus)
        self.on_progress = on_progress
        self.warnings = warnings or EarlyWarningDetector()
        self.executor = StageExecutor(self.runner, event_bus, self.config.max_concurrency)

    # -- entry points ----------------------------------------------------------

    async def start(
        self,
        deal_id: str,
        analysis_type: str | None = None,
        *,
        tiers: Iterable[Tier | int] | None = None,
        mode: str = "full",
    ) -> Analysis:
        """Create a PENDING analysis for *deal_id* and run it.

        Configuration errors and unknown deals raise before anything is
        stored.
        """
        analysis_type = analysis_type or self.config.default_analysis_type
        resolved = self._tiers(analysis_type, tiers)
        deal = await self.deals.load(deal_id)
        stages = plan_stages(self.registry.agents_for(deal.sector, resolved))
        analysis = Analysis(deal_id=deal_id, analysis_type=analysis_type, mode=mode)
        await self.repository.create(analysis)
        logger.info(
            "Created analysis %s (%s) for deal %s", analysis.analysis_id, analysis_type, deal_id
        )
        return await self._execute(analysis.analysis_id, deal, stages, analysis.status)

    async def run(
        self,
        analysis_id: str,
        *,
        tiers: Iterable[Tier | int] | None = None,
    ) -> Analysis:
        """Run an existing PENDING (or FAILED) analysis.

        Agents that already succeeded are not run again.

        Raises
        ------
        AnalysisNotFound
            Unknown id.
        AnalysisClaimConflict
            The analysis is RUNNING or COMPLETED.
        ConfigurationError
            Planning failed; the analysis is marked FAILED first.
        """
        analysis = await self.repository.get(analysis_id)
        if analysis is None:
            raise AnalysisNotFound(analysis_id)
        try:
            resolved = self._tiers(analysis.analysis_type, tiers)
            deal = await self.deals.load(analysis.deal_id)
            stages = plan_stages(self.registry.agents_for(deal.sector, resolved))
        except ConfigurationError:
            if analysis.status is AnalysisStatus.PENDING:
                await self.repository.update_status(analysis_id, AnalysisStatus.FAILED)
            raise
        return await self._execute(analysis_id, deal, stages, analysis.status)

    def plan(self, sector: str | None, analysis_type: str) -> list[list[AgentSpec]]:
        """Stages a deal in *sector* would run, without running anything."""
        return plan_stages(self.registry.agents_for(sector, self._tiers(analysis_type, None)))

    @staticmethod
    def _tiers(analysis_type: str, tiers: Iterable[Tier | int] | None) -> tuple[Tier, ...]:
        if tiers is not None:
            return tuple(Tier(t) for t in tiers)
        try:
            return ANALYSIS_TYPES[analysis_type]
        except KeyError:
            raise ConfigurationError(
                f"Unknown analysis type {analysis_type!r}. Available: {sorted(ANALYSIS_TYPES)}"
            ) from None

    # -- execution ----------------------------------------------------------------

    async def _execute(
        self,
        analysis_id: str,
        deal: DealContext,
        stages: list[list[AgentSpec]],
        previous: AnalysisStatus,
    ) -> Analysis:
        analysis = await self.repository.claim(analysis_id)
        await self._publish(
            AnalysisClaimed(
                source_id="orchestrator",
                analysis_id=analysis_id,
                previous_status=previous.value,
            )
        )
        planned = [a.name for stage in stages for a in stage]
        analysis.plan(planned, {a.name for stage in stages for a in stage if a.optional})
        await self._publish(
            StagesPlanned(
                source_id="orchestrator",
                analysis_id=analysis_id,
                stages=tuple(tuple(a.name for a in stage) for stage in stages),
            )
        )
        budget = self.config.runner.budget()

        try:
            await self.repository.save(analysis)
            await self._checkpoint(analysis, "plan")
            for index, stage in enumerate(stages):
                todo = [a for a in stage if not analysis.is_successful(a.name)]
                if self._over_budget(analysis):
                    await self._stop_for_cost(analysis, stages[index:])
                    break
                if not todo:
                    continue
                await self._publish(
                    StageStarted(
                        source_id="orchestrator",
                        analysis_id=analysis_id,
                        index=index,
                        agents=tuple(a.name for a in todo),
                    )
                )
                results = await self.executor.execute(todo, analysis, deal, budget)
                await self._merge(analysis, results)
                await self._checkpoint(analysis, f"stage-{index}")

            status = analysis.finalize()
            await self.repository.save(analysis)
        except Exception as exc:
            logger.exception("Analysis %s aborted", analysis_id)
            await self.abort(analysis, exc)
            return analysis

        logger.info(
            "Analysis %s finished %s: %d/%d agents, $%.4f",
            analysis_id,
            status.value,
            analysis.completed_agents,
            analysis.total_agents,
            analysis.total_cost,
        )
        await self._publish(
            AnalysisFinalized(
                source_id="orchestrator",
                analysis_id=analysis_id,
                status=status.value,
                completed_agents=analysis.completed_agents,
                total_agents=analysis.total_agents,
                total_cost=analysis.total_cost,
            )
        )
        return analysis

    def _over_budget(self, analysis: Analysis) -> bool:
        limit = self.config.max_cost
        return limit is not None and analysis.total_cost >= limit

    async def _stop_for_cost(self, analysis: Analysis, stages: list[list[AgentSpec]]) -> None:
        message = (
            f"{COST_LIMIT_EXCEEDED}: spent ${analysis.total_cost:.4f} "
            f"of ${self.config.max_cost:.4f}"
        )
        logger.warning("Analysis %s stopped: %s", analysis.analysis_id, message)
        skipped = [
            AgentResult.failed(a.name, message)
            for stage in stages
            for a in stage
            if not analysis.is_successful(a.name)
        ]
        await self._merge(analysis, skipped)
        await self._checkpoint(analysis, "cost-limit")

    async def _merge(self, analysis: Analysis, results: Sequence[AgentResult]) -> None:
        for result in results:
            if analysis.merge(result):
                for warning in self.warnings.record(analysis, result):
                    await self._publish(
                        warning_event("orchestrator", analysis.analysis_id, warning)
                    )
            if self.on_progress is not None:
                await self._notify(
                    ProgressUpdate(
                        analysis_id=analysis.analysis_id,
                        agent_name=result.agent_name,
                        success=result.success,
                        completed_agents=analysis.completed_agents,
                        total_agents=analysis.total_agents,
                        total_cost=analysis.total_cost,
                    )
                )

    async def _notify(self, update: ProgressUpdate) -> None:
        try:
            outcome = self.on_progress(update)
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception:
            logger.exception("Error in progress callback %r", self.on_progress)

    async def _checkpoint(self, analysis: Analysis, label: str) -> CheckpointSnapshot:
        """Append a snapshot, then persist the record."""
        snapshot = CheckpointSnapshot.capture(analysis, label)
        await self.checkpoints.append(analysis.analysis_id, snapshot)
        await self.repository.save(analysis)
        await self._publish(
            CheckpointWritten(
                source_id="orchestrator",
                analysis_id=analysis.analysis_id,
                checkpoint_id=snapshot.checkpoint_id,
                label=label,
                completed=len(snapshot.completed_agents),
                failed=len(snapshot.failed_agents),
            )
        )
        return snapshot

    async def abort(self, analysis: Analysis, exc: BaseException) -> None:
        """Mark *analysis* FAILED after an orchestrator-level error."""
        await persist_failure(self.repository, analysis)
        await self._publish(
            AnalysisAborted(
                source_id="orchestrator",
                analysis_id=analysis.analysis_id,
                error=f"{type(exc).__name__}: {exc}",
            )
        )

    async def _publish(self, event: Any) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event)
