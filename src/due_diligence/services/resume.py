"""Resume Controller: finish an interrupted or partially failed analysis.

A resume pass reads the latest checkpoint of an analysis and re-runs only the
agents it still owes: those the checkpoint lists as failed or pending that do
not already hold a successful result.  Owed agents run in dependency order
among themselves; hard dependencies outside the owed set are read from the
results already recorded.  Nothing that succeeded is ever run again.

Resuming a COMPLETED analysis, or one that owes nothing, changes nothing.
"""

from __future__ import annotations

import logging
from typing import Any

from due_diligence.agents.base import AgentSpec
from due_diligence.domain.entities import Analysis
from due_diligence.domain.enums import AnalysisStatus
from due_diligence.domain.events import (
    AnalysisAborted,
    AnalysisClaimed,
    AnalysisFinalized,
    CheckpointWritten,
    ResumeSkipped,
    ResumeStarted,
)
from due_diligence.domain.exceptions import AnalysisNotFound, NoCheckpoint
from due_diligence.domain.values import CheckpointSnapshot
from due_diligence.infrastructure.config import PipelineConfig
from due_diligence.infrastructure.deals import DealContextProvider
from due_diligence.infrastructure.event_bus import AsyncEventBus
from due_diligence.infrastructure.registry import AgentRegistry
from due_diligence.infrastructure.storage import AnalysisRepository, CheckpointStore
from due_diligence.services.early_warnings import EarlyWarningDetector, warning_event
from due_diligence.services.orchestrator import StageExecutor, persist_failure, plan_stages
from due_diligence.services.runner import AgentRunner

logger = logging.getLogger(__name__)

RESUME_LABEL = "resume"


class ResumeController:
    """Re-runs the still-owed agents of an analysis from its latest checkpoint.

    Parameters
    ----------
    registry:
        Agent registry; owed names it no longer knows are skipped.
    repository, checkpoints:
        Durable stores (often the same object).
    deals:
        Deal-context provider.
    runner:
        Agent runner shared with the orchestrator.
    config:
        Pipeline configuration; ``runner.resume_max_retries`` sets the
        attempt budget of a resume pass.
    event_bus:
        Receives resume lifecycle events.
    warnings:
        Early-warning detector for re-run results.
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
        warnings: EarlyWarningDetector | None = None,
    ) -> None:
        self.registry = registry
        self.repository = repository
        self.checkpoints = checkpoints
        self.deals = deals
        self.config = config or PipelineConfig()
        self.event_bus = event_bus
        self.warnings = warnings or EarlyWarningDetector()
        self.runner = runner or AgentRunner(event_bus=event_bus)
        self.executor = StageExecutor(self.runner, event_bus, self.config.max_concurrency)

    async def owed(self, analysis_id: str) -> tuple[Analysis, CheckpointSnapshot, list[str]]:
        """Load an analysis and its latest checkpoint and list what it still owes.

        Raises
        ------
        AnalysisNotFound
            Unknown id.
        NoCheckpoint
            The analysis has never been checkpointed.
        """
        analysis = await self.repository.get(analysis_id)
        if analysis is None:
            raise AnalysisNotFound(analysis_id)
        checkpoint = await self.checkpoints.latest(analysis_id)
        if checkpoint is None:
            raise NoCheckpoint(analysis_id)
        return analysis, checkpoint, self._owed_names(analysis, checkpoint)

    def _owed_names(self, analysis: Analysis, checkpoint: CheckpointSnapshot) -> list[str]:
        names: list[str] = []
        for name in [*checkpoint.failed_names, *checkpoint.pending_agents]:
            if name in names or analysis.is_successful(name):
                continue
            if name not in self.registry:
                logger.warning(
                    "Analysis %s owes %r, which is no longer registered; skipping",
                    analysis.analysis_id,
                    name,
                )
                continue
            names.append(name)
        # stage order of the original plan where known
        order = {name: i for i, name in enumerate(analysis.planned_agents)}
        return sorted(names, key=lambda n: order.get(n, len(order)))

    async def resume(self, analysis_id: str) -> Analysis:
        """Re-run the owed agents of *analysis_id* and finalize it.

        Returns the analysis unchanged when it is COMPLETED or owes nothing.
        Agent failures and store errors during the pass never raise; the
        analysis ends FAILED with every merge applied so far.

        Raises
        ------
        AnalysisNotFound, NoCheckpoint
            Nothing to resume from.
        AnalysisClaimConflict
            Another process is running the analysis.
        DealNotFound
            The deal context is gone.
        """
        analysis, checkpoint, owed = await self.owed(analysis_id)
        if analysis.status is AnalysisStatus.COMPLETED or not owed:
            reason = "completed" if analysis.status is AnalysisStatus.COMPLETED else "nothing owed"
            logger.info("Resume of %s skipped: %s", analysis_id, reason)
            await self._publish(
                ResumeSkipped(source_id="resume", analysis_id=analysis_id, reason=reason)
            )
            return analysis

        deal = await self.deals.load(analysis.deal_id)
        plan_stages([self.registry.get(name) for name in owed], allow_external=True)

        previous = analysis.status
        analysis = await self.repository.claim(analysis_id)
        await self._publish(
            AnalysisClaimed(
                source_id="resume", analysis_id=analysis_id, previous_status=previous.value
            )
        )
        budget = self.config.runner.resume_budget()

        try:
            # another pass may have finished between the first read and the claim
            checkpoint = await self.checkpoints.latest(analysis_id) or checkpoint
            self._adopt(analysis, checkpoint)
            owed = self._owed_names(analysis, checkpoint)
            if not owed:
                status = analysis.finalize()
                await self.repository.save(analysis)
                logger.info("Resume of %s released: nothing owed after claim", analysis_id)
                await self._publish(
                    ResumeSkipped(source_id="resume", analysis_id=analysis_id, reason="nothing owed")
                )
                await self._publish(
                    AnalysisFinalized(
                        source_id="resume",
                        analysis_id=analysis_id,
                        status=status.value,
                        completed_agents=analysis.completed_agents,
                        total_agents=analysis.total_agents,
                        total_cost=analysis.total_cost,
                    )
                )
                return analysis

            specs: list[AgentSpec] = [self.registry.get(name) for name in owed]
            stages = plan_stages(specs, allow_external=True)
            logger.info(
                "Resuming %s from checkpoint %s: %s", analysis_id, checkpoint.checkpoint_id, owed
            )
            await self._publish(
                ResumeStarted(
                    source_id="resume",
                    analysis_id=analysis_id,
                    owed=tuple(owed),
                    checkpoint_id=checkpoint.checkpoint_id,
                )
            )

            for stage in stages:
                results = await self.executor.execute(stage, analysis, deal, budget)
                for result in results:
                    if not analysis.merge(result):
                        logger.warning(
                            "Discarded result for %s: already succeeded", result.agent_name
                        )
                        continue
                    for warning in self.warnings.record(analysis, result):
                        await self._publish(warning_event("resume", analysis_id, warning))
                await self.repository.save(analysis)

            snapshot = CheckpointSnapshot.capture(analysis, RESUME_LABEL)
            await self.checkpoints.append(analysis_id, snapshot)
            status = analysis.finalize()
            await self.repository.save(analysis)
        except Exception as exc:
            logger.exception("Resume of %s aborted", analysis_id)
            await persist_failure(self.repository, analysis)
            await self._publish(
                AnalysisAborted(
                    source_id="resume",
                    analysis_id=analysis_id,
                    error=f"{type(exc).__name__}: {exc}",
                )
            )
            return analysis

        await self._publish(
            CheckpointWritten(
                source_id="resume",
                analysis_id=analysis_id,
                checkpoint_id=snapshot.checkpoint_id,
                label=RESUME_LABEL,
                completed=len(snapshot.completed_agents),
                failed=len(snapshot.failed_agents),
            )
        )
        logger.info(
            "Resume of %s finished %s: %d/%d agents, $%.4f",
            analysis_id,
            status.value,
            analysis.completed_agents,
            analysis.total_agents,
            analysis.total_cost,
        )
        await self._publish(
            AnalysisFinalized(
                source_id="resume",
                analysis_id=analysis_id,
                status=status.value,
                completed_agents=analysis.completed_agents,
                total_agents=analysis.total_agents,
                total_cost=analysis.total_cost,
            )
        )
        return analysis

    @staticmethod
    def _adopt(analysis: Analysis, checkpoint: CheckpointSnapshot) -> None:
        """Take over checkpointed results and warnings the record lost (crash
        after append)."""
        for name, result in checkpoint.results.items():
            if name not in analysis.results:
                logger.info("Adopting checkpointed result for %s", name)
                analysis.merge(result)
        analysis.add_warnings(checkpoint.early_warnings)
        if not analysis.planned_agents:
            planned = [
                *checkpoint.completed_agents,
                *checkpoint.failed_names,
                *checkpoint.pending_agents,
            ]
            analysis.plan(list(dict.fromkeys(planned)), analysis.accepted_failures)

    async def _publish(self, event: Any) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event)
