"""Tests for the Analysis entity."""

from __future__ import annotations

import pytest

from due_diligence.domain.entities import Analysis
from due_diligence.domain.enums import AnalysisStatus, WarningSeverity
from due_diligence.domain.values import AgentResult, EarlyWarning


def _analysis(*names: str) -> Analysis:
    analysis = Analysis(deal_id="acme")
    analysis.plan(list(names))
    return analysis


class TestAnalysisMerge:
    """Result merging and the counters it maintains."""

    def test_defaults(self) -> None:
        analysis = Analysis(deal_id="acme")
        assert analysis.status is AnalysisStatus.PENDING
        assert analysis.analysis_type == "full_analysis"
        assert analysis.results == {}
        assert len(analysis.analysis_id) == 32

    def test_merge_updates_counters(self) -> None:
        analysis = _analysis("a", "b")
        assert analysis.merge(AgentResult.succeeded("a", {}, cost=0.5))
        assert analysis.merge(AgentResult.failed("b", "boom", cost=0.25))
        assert analysis.completed_agents == 1
        assert analysis.total_agents == 2
        assert analysis.total_cost == pytest.approx(0.75)

    def test_failure_is_superseded_by_success(self) -> None:
        analysis = _analysis("a")
        analysis.merge(AgentResult.failed("a", "boom", cost=0.1))
        assert analysis.merge(AgentResult.succeeded("a", {"ok": True}, cost=0.2))
        assert analysis.results["a"].success
        assert analysis.completed_agents == 1
        # spend of the failed attempt stays accounted
        assert analysis.total_cost == pytest.approx(0.3)

    def test_success_is_never_replaced(self) -> None:
        analysis = _analysis("a")
        analysis.merge(AgentResult.succeeded("a", {"v": 1}, cost=0.2))
        assert not analysis.merge(AgentResult.succeeded("a", {"v": 2}, cost=0.2))
        assert not analysis.merge(AgentResult.failed("a", "late failure"))
        assert analysis.results["a"].data == {"v": 1}
        assert analysis.total_cost == pytest.approx(0.2)

    def test_queries(self) -> None:
        analysis = _analysis("a", "b", "c")
        analysis.merge(AgentResult.succeeded("a", {}))
        analysis.merge(AgentResult.failed("b", "x"))
        assert analysis.is_successful("a")
        assert not analysis.is_successful("b")
        assert analysis.successful_agents() == ["a"]
        assert [r.agent_name for r in analysis.failed_agents()] == ["b"]
        assert analysis.pending_agents() == ["c"]


class TestAnalysisLifecycle:
    """Status transitions."""

    def test_finalize_completed_when_all_succeed(self) -> None:
        analysis = _analysis("a")
        analysis.mark_running()
        assert analysis.status is AnalysisStatus.RUNNING
        assert analysis.started_at is not None
        analysis.merge(AgentResult.succeeded("a", {}))
        assert analysis.finalize() is AnalysisStatus.COMPLETED
        assert analysis.completed_at is not None

    def test_finalize_failed_with_failure_or_pending(self) -> None:
        failed = _analysis("a")
        failed.merge(AgentResult.failed("a", "x"))
        assert failed.finalize() is AnalysisStatus.FAILED

        pending = _analysis("a", "b")
        pending.merge(AgentResult.succeeded("a", {}))
        assert pending.finalize() is AnalysisStatus.FAILED

    def test_accepted_failure_does_not_block_completion(self) -> None:
        analysis = Analysis(deal_id="acme")
        analysis.plan(["a", "extra"], {"extra"})
        analysis.merge(AgentResult.succeeded("a", {}))
        assert not analysis.is_settled()  # accepted, but it has not run yet
        analysis.merge(AgentResult.failed("extra", "x"))
        assert analysis.finalize() is AnalysisStatus.COMPLETED

    def test_mark_failed(self) -> None:
        analysis = _analysis("a")
        analysis.mark_failed()
        assert analysis.status is AnalysisStatus.FAILED
        assert analysis.status.is_terminal

    def test_mark_running_clears_completed_at(self) -> None:
        analysis = _analysis("a")
        analysis.mark_failed()
        analysis.mark_running()
        assert analysis.completed_at is None
        assert not analysis.status.is_terminal


class TestAnalysisSerialization:
    """Dict round trip used by the stores."""

    def test_round_trip(self) -> None:
        analysis = Analysis(deal_id="acme", analysis_type="tier1_complete", mode="quick")
        analysis.plan(["a", "b"], {"b"})
        analysis.merge(AgentResult.succeeded("a", {"nested": {"x": [1, 2]}}, cost=0.3))
        analysis.merge(AgentResult.failed("b", "boom"))
        analysis.mark_running()

        restored = Analysis.from_dict(analysis.to_dict())
        assert restored.to_dict() == analysis.to_dict()
        assert restored.accepted_failures == {"b"}
        assert restored.completed_agents == 1

    def test_round_trip_keeps_early_warnings(self) -> None:
        analysis = _analysis("a")
        warning = EarlyWarning(
            agent_name="a", severity=WarningSeverity.HIGH, category="market_dead", title="t"
        )
        assert analysis.add_warnings([warning, warning]) == [warning]
        restored = Analysis.from_dict(analysis.to_dict())
        assert restored.early_warnings == [warning]
        assert restored.add_warnings([warning]) == []

    def test_restored_results_do_not_share_state(self) -> None:
        analysis = _analysis("a")
        analysis.merge(AgentResult.succeeded("a", {"nested": {"x": 1}}))
        record = analysis.to_dict()
        restored = Analysis.from_dict(record)
        record["results"]["a"]["data"]["nested"]["x"] = 99
        assert restored.results["a"].data["nested"]["x"] == 1
