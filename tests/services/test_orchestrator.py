"""Tests for stage planning and the Orchestrator."""

from __future__ import annotations

import asyncio

import pytest

from due_diligence.agents.base import AgentSpec
from due_diligence.domain.entities import Analysis
from due_diligence.domain.enums import AnalysisStatus, Tier
from due_diligence.domain.events import (
    AnalysisAborted,
    AnalysisClaimed,
    AnalysisFinalized,
    CheckpointWritten,
    DependencySkipped,
    StagesPlanned,
)
from due_diligence.domain.exceptions import (
    AnalysisClaimConflict,
    AnalysisNotFound,
    ConfigurationError,
    CyclicDependencyError,
    DealNotFound,
    UnknownSectorConfiguration,
)
from due_diligence.domain.values import AgentResult
from due_diligence.infrastructure.config import PipelineConfig, RunnerConfig
from due_diligence.infrastructure.registry import AgentRegistry
from due_diligence.services.orchestrator import Orchestrator, ProgressUpdate, plan_stages
from due_diligence.testing import ScriptedAgent

TIER1 = (Tier.INVESTIGATION,)


def _registry(*specs: AgentSpec) -> AgentRegistry:
    registry = AgentRegistry()
    for spec in specs:
        registry.register(spec)
    return registry


def _abc(a: ScriptedAgent, b: ScriptedAgent, c: ScriptedAgent) -> AgentRegistry:
    """A; B hard-requires A; C independent."""
    return _registry(
        AgentSpec(name="A", run=a),
        AgentSpec(name="B", run=b, dependencies=("A",), required=("A",)),
        AgentSpec(name="C", run=c),
    )


def _noop() -> ScriptedAgent:
    return ScriptedAgent([{"ok": True}])


# ===================================================================== #
#  plan_stages                                                           #
# ===================================================================== #


class TestPlanStages:
    """Topological layering of the planned agents."""

    def test_independent_agents_share_stage_zero(self) -> None:
        agents = [AgentSpec(name=n, run=_noop()) for n in ("x", "y", "z")]
        stages = plan_stages(agents)
        assert [[a.name for a in s] for s in stages] == [["x", "y", "z"]]

    def test_dependencies_push_agents_to_later_stages(self) -> None:
        agents = [
            AgentSpec(name="memo", run=_noop(), dependencies=("score",)),
            AgentSpec(name="score", run=_noop(), dependencies=("audit", "market")),
            AgentSpec(name="audit", run=_noop()),
            AgentSpec(name="market", run=_noop()),
        ]
        stages = plan_stages(agents)
        assert [[a.name for a in s] for s in stages] == [
            ["audit", "market"],
            ["score"],
            ["memo"],
        ]

    def test_soft_dependency_outside_plan_is_ignored(self) -> None:
        agents = [AgentSpec(name="x", run=_noop(), dependencies=("not-planned",))]
        assert [[a.name for a in s] for s in plan_stages(agents)] == [["x"]]

    def test_hard_dependency_outside_plan_raises(self) -> None:
        agents = [AgentSpec(name="x", run=_noop(), required=("not-planned",))]
        with pytest.raises(ConfigurationError, match="not-planned"):
            plan_stages(agents)

    def test_allow_external_accepts_unplanned_hard_dependency(self) -> None:
        agents = [AgentSpec(name="x", run=_noop(), required=("done-earlier",))]
        stages = plan_stages(agents, allow_external=True)
        assert [[a.name for a in s] for s in stages] == [["x"]]

    def test_cycle_raises(self) -> None:
        agents = [
            AgentSpec(name="a", run=_noop(), dependencies=("b",)),
            AgentSpec(name="b", run=_noop(), dependencies=("a",)),
            AgentSpec(name="c", run=_noop()),
        ]
        with pytest.raises(CyclicDependencyError) as excinfo:
            plan_stages(agents)
        assert sorted(excinfo.value.agents) == ["a", "b"]


# ===================================================================== #
#  Orchestrator                                                          #
# ===================================================================== #


class TestOrchestratorDependencyFailure:
    """The A / B(requires A) / C scenario."""

    @pytest.mark.asyncio
    async def test_failed_hard_dependency_skips_dependent(
        self, store, deals, config, event_bus, events
    ) -> None:
        a = ScriptedAgent([RuntimeError("upstream down")])
        b = _noop()
        c = _noop()
        orchestrator = Orchestrator(
            _abc(a, b, c), store, store, deals, config=config, event_bus=event_bus
        )

        analysis = await orchestrator.start("acme", tiers=TIER1)

        assert analysis.status is AnalysisStatus.FAILED
        assert a.calls == 2
        assert b.calls == 0
        assert c.calls == 1

        skipped = analysis.results["B"]
        assert not skipped.success
        assert skipped.error.startswith("DependencyFailed")
        assert skipped.cost == 0.0
        assert analysis.results["A"].error == "RuntimeError: upstream down"

        checkpoint = await store.latest(analysis.analysis_id)
        assert checkpoint is not None
        assert sorted(checkpoint.failed_names) == ["A", "B"]
        assert checkpoint.completed_agents == ("C",)

        planned = events.query(StagesPlanned)
        assert planned[0].stages == (("A", "C"), ("B",))
        assert events.query(DependencySkipped)[0].missing == ("A",)

    @pytest.mark.asyncio
    async def test_stored_record_matches_returned_analysis(self, store, deals, config) -> None:
        orchestrator = Orchestrator(
            _abc(ScriptedAgent([RuntimeError("x")]), _noop(), _noop()),
            store,
            store,
            deals,
            config=config,
        )
        analysis = await orchestrator.start("acme", tiers=TIER1)

        stored = await store.get(analysis.analysis_id)
        assert stored is not None
        assert stored.status is AnalysisStatus.FAILED
        assert stored.total_agents == 3
        assert stored.completed_agents == 1
        assert set(stored.results) == {"A", "B", "C"}
        assert await store.find_by_status(AnalysisStatus.RUNNING) == []


class TestOrchestratorSuccess:
    """Happy path, stage barrier and bookkeeping."""

    @pytest.mark.asyncio
    async def test_all_agents_succeed(self, store, deals, config, event_bus, events) -> None:
        orchestrator = Orchestrator(
            _abc(_noop(), _noop(), _noop()), store, store, deals, config=config,
            event_bus=event_bus,
        )
        analysis = await orchestrator.start("acme", tiers=TIER1)

        assert analysis.status is AnalysisStatus.COMPLETED
        assert analysis.completed_agents == analysis.total_agents == 3
        assert analysis.started_at is not None
        assert analysis.completed_at is not None

        claimed = events.query(AnalysisClaimed)
        assert claimed[0].previous_status == "PENDING"
        finalized = events.query(AnalysisFinalized)
        assert finalized[-1].status == "COMPLETED"
        labels = [e.label for e in events.query(CheckpointWritten)]
        assert labels == ["plan", "stage-0", "stage-1"]

    @pytest.mark.asyncio
    async def test_later_stage_sees_earlier_results(self, store, deals, config) -> None:
        seen: dict[str, object] = {}

        def read_a(context):
            seen["A"] = context.dependency("A")
            seen["C"] = context.dependency("C")
            return {"read": True}

        registry = _abc(ScriptedAgent([{"x": 1}]), ScriptedAgent([read_a]), _noop())
        orchestrator = Orchestrator(registry, store, store, deals, config=config)
        await orchestrator.start("acme", tiers=TIER1)

        assert seen["A"]["x"] == 1
        # C ran in the same stage as A, so it is visible to B as well
        assert seen["C"]["ok"] is True

    @pytest.mark.asyncio
    async def test_stage_waits_for_slowest_member(self, store, deals, config) -> None:
        finished: list[str] = []

        async def slow(context):
            await asyncio.sleep(0.05)
            finished.append("A")
            return {}

        def after(context):
            finished.append("B")
            return {}

        registry = _registry(
            AgentSpec(name="A", run=ScriptedAgent([slow])),
            AgentSpec(name="B", run=ScriptedAgent([after]), dependencies=("A",)),
        )
        orchestrator = Orchestrator(registry, store, store, deals, config=config)
        await orchestrator.start("acme", tiers=TIER1)
        assert finished == ["A", "B"]

    @pytest.mark.asyncio
    async def test_max_concurrency_caps_parallel_agents(self, store, deals) -> None:
        active = 0
        peak = 0

        async def track(context):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return {}

        registry = _registry(
            *(AgentSpec(name=f"agent-{i}", run=ScriptedAgent([track])) for i in range(4))
        )
        config = PipelineConfig(runner=RunnerConfig(timeout_seconds=1.0), max_concurrency=2)
        orchestrator = Orchestrator(registry, store, store, deals, config=config)
        analysis = await orchestrator.start("acme", tiers=TIER1)

        assert analysis.status is AnalysisStatus.COMPLETED
        assert peak == 2

    @pytest.mark.asyncio
    async def test_optional_agent_failure_still_completes(self, store, deals, config) -> None:
        registry = _registry(
            AgentSpec(name="core", run=_noop()),
            AgentSpec(name="extra", run=ScriptedAgent([ValueError("nope")]), optional=True),
        )
        orchestrator = Orchestrator(registry, store, store, deals, config=config)
        analysis = await orchestrator.start("acme", tiers=TIER1)

        assert analysis.status is AnalysisStatus.COMPLETED
        assert not analysis.results["extra"].success
        assert analysis.completed_agents == 1


class TestOrchestratorCost:
    """Cost accounting and the spend ceiling."""

    @pytest.mark.asyncio
    async def test_total_cost_is_monotonic_and_sums_results(self, store, deals, config) -> None:
        updates: list[ProgressUpdate] = []
        registry = _abc(
            ScriptedAgent([RuntimeError("x")], cost=0.1),
            _noop(),
            ScriptedAgent([{}], cost=0.2),
        )
        orchestrator = Orchestrator(
            registry, store, store, deals, config=config, on_progress=updates.append
        )
        analysis = await orchestrator.start("acme", tiers=TIER1)

        costs = [u.total_cost for u in updates]
        assert costs == sorted(costs)
        assert analysis.total_cost == pytest.approx(0.4)
        assert analysis.total_cost == pytest.approx(
            sum(r.cost for r in analysis.results.values())
        )
        assert [u.agent_name for u in updates] == ["A", "C", "B"]

    @pytest.mark.asyncio
    async def test_async_progress_callback_errors_are_swallowed(
        self, store, deals, config
    ) -> None:
        async def explode(update: ProgressUpdate) -> None:
            raise RuntimeError("listener bug")

        orchestrator = Orchestrator(
            _abc(_noop(), _noop(), _noop()), store, store, deals, config=config,
            on_progress=explode,
        )
        analysis = await orchestrator.start("acme", tiers=TIER1)
        assert analysis.status is AnalysisStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cost_limit_stops_remaining_stages(self, store, deals) -> None:
        late = _noop()
        registry = _registry(
            AgentSpec(name="A", run=ScriptedAgent([{}], cost=0.6)),
            AgentSpec(name="B", run=late, dependencies=("A",)),
        )
        config = PipelineConfig(runner=RunnerConfig(timeout_seconds=1.0), max_cost=0.5)
        orchestrator = Orchestrator(registry, store, store, deals, config=config)
        analysis = await orchestrator.start("acme", tiers=TIER1)

        assert analysis.status is AnalysisStatus.FAILED
        assert late.calls == 0
        assert analysis.results["B"].error.startswith("CostLimitExceeded")
        checkpoint = await store.latest(analysis.analysis_id)
        assert checkpoint.label == "cost-limit"


class TestOrchestratorErrors:
    """Configuration errors and orchestrator-level aborts."""

    @pytest.mark.asyncio
    async def test_cycle_raises_before_anything_is_stored(self, store, deals, config) -> None:
        registry = _registry(
            AgentSpec(name="a", run=_noop(), dependencies=("b",)),
            AgentSpec(name="b", run=_noop(), dependencies=("a",)),
        )
        orchestrator = Orchestrator(registry, store, store, deals, config=config)
        with pytest.raises(CyclicDependencyError):
            await orchestrator.start("acme", tiers=TIER1)
        assert await store.find_by_status(AnalysisStatus.PENDING) == []

    @pytest.mark.asyncio
    async def test_unknown_deal_raises(self, store, deals, config) -> None:
        orchestrator = Orchestrator(_registry(), store, store, deals, config=config)
        with pytest.raises(DealNotFound):
            await orchestrator.start("nope", tiers=TIER1)

    @pytest.mark.asyncio
    async def test_unknown_analysis_type_raises(self, store, deals, config) -> None:
        orchestrator = Orchestrator(_registry(), store, store, deals, config=config)
        with pytest.raises(ConfigurationError, match="Unknown analysis type"):
            await orchestrator.start("acme", "quick_look")

    @pytest.mark.asyncio
    async def test_sector_tier_without_default_expert_raises(self, store, deals, config) -> None:
        orchestrator = Orchestrator(_registry(), store, store, deals, config=config)
        with pytest.raises(UnknownSectorConfiguration):
            await orchestrator.start("acme", "tier2_sector")

    @pytest.mark.asyncio
    async def test_storage_failure_leaves_analysis_failed(
        self, flaky_store, deals, config, event_bus, events
    ) -> None:
        def break_store(context):
            flaky_store.broken = True
            return {}

        registry = _abc(_noop(), _noop(), ScriptedAgent([break_store]))
        orchestrator = Orchestrator(
            registry, flaky_store, flaky_store, deals, config=config, event_bus=event_bus
        )
        analysis = await orchestrator.start("acme", tiers=TIER1)

        assert analysis.status is AnalysisStatus.FAILED
        stored = await flaky_store.get(analysis.analysis_id)
        assert stored.status is AnalysisStatus.FAILED
        assert flaky_store.failed_saves == 2

        # the stage checkpoint was appended before the failing save
        checkpoint = await flaky_store.latest(analysis.analysis_id)
        assert checkpoint.label == "stage-0"
        assert checkpoint.pending_agents == ("B",)

        aborted = events.query(AnalysisAborted)
        assert aborted and "StorageError" in aborted[0].error


class TestOrchestratorRun:
    """Running an existing analysis record."""

    @pytest.mark.asyncio
    async def test_run_existing_pending_analysis(self, store, deals, config) -> None:
        created = await store.create(Analysis(deal_id="acme", analysis_type="tier1_complete"))
        orchestrator = Orchestrator(
            _abc(_noop(), _noop(), _noop()), store, store, deals, config=config
        )
        analysis = await orchestrator.run(created.analysis_id)
        assert analysis.analysis_id == created.analysis_id
        assert analysis.status is AnalysisStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_run_skips_agents_that_already_succeeded(self, store, deals, config) -> None:
        record = Analysis(deal_id="acme", analysis_type="tier1_complete")
        record.merge(AgentResult.succeeded("A", {"ok": True}, cost=0.3))
        record.status = AnalysisStatus.FAILED
        await store.create(record)

        a = _noop()
        orchestrator = Orchestrator(_abc(a, _noop(), _noop()), store, store, deals, config=config)
        analysis = await orchestrator.run(record.analysis_id)

        assert a.calls == 0
        assert analysis.status is AnalysisStatus.COMPLETED
        assert analysis.total_cost == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_run_completed_analysis_conflicts(self, store, deals, config) -> None:
        record = Analysis(deal_id="acme", analysis_type="tier1_complete")
        record.status = AnalysisStatus.COMPLETED
        await store.create(record)
        orchestrator = Orchestrator(
            _abc(_noop(), _noop(), _noop()), store, store, deals, config=config
        )
        with pytest.raises(AnalysisClaimConflict):
            await orchestrator.run(record.analysis_id)

    @pytest.mark.asyncio
    async def test_run_unknown_analysis(self, store, deals, config) -> None:
        orchestrator = Orchestrator(_registry(), store, store, deals, config=config)
        with pytest.raises(AnalysisNotFound):
            await orchestrator.run("missing")

    @pytest.mark.asyncio
    async def test_planning_error_marks_pending_record_failed(
        self, store, deals, config
    ) -> None:
        record = await store.create(Analysis(deal_id="acme", analysis_type="tier2_sector"))
        orchestrator = Orchestrator(_registry(), store, store, deals, config=config)
        with pytest.raises(UnknownSectorConfiguration):
            await orchestrator.run(record.analysis_id)
        stored = await store.get(record.analysis_id)
        assert stored.status is AnalysisStatus.FAILED


class TestOrchestratorPlan:
    """Dry-run planning."""

    def test_plan_selects_one_sector_expert(self, store, deals) -> None:
        registry = _registry(
            AgentSpec(name="audit", run=_noop()),
            AgentSpec(name="saas-expert", run=_noop(), tier=Tier.SECTOR, sectors=("saas",)),
            AgentSpec(name="fintech-expert", run=_noop(), tier=Tier.SECTOR, sectors=("fintech",)),
            AgentSpec(
                name="memo", run=_noop(), tier=Tier.SYNTHESIS,
                dependencies=("audit", "saas-expert", "fintech-expert"),
            ),
        )
        orchestrator = Orchestrator(registry, store, store, deals)
        stages = orchestrator.plan("B2B SaaS", "full_analysis")
        assert [[a.name for a in s] for s in stages] == [
            ["audit", "saas-expert"],
            ["memo"],
        ]
