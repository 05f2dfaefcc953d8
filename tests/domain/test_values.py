"""Tests for domain value objects."""

from __future__ import annotations

import math

import pytest

from due_diligence.domain.entities import Analysis
from due_diligence.domain.enums import ANALYSIS_TYPES, DataReliability, Tier
from due_diligence.domain.values import (
    AgentResult,
    Benchmark,
    CheckpointSnapshot,
    DealContext,
    ExtractedMetric,
    FailedAgent,
    RunBudget,
    ScoringCriterion,
    normalize_metric_name,
)


class TestAgentResult:
    """Success/failure exclusivity."""

    def test_succeeded(self) -> None:
        result = AgentResult.succeeded("a", {"score": 70}, cost=0.1, execution_time_ms=12)
        assert result.success
        assert result.error is None
        assert result.data == {"score": 70}

    def test_failed(self) -> None:
        result = AgentResult.failed("a", "boom", cost=0.2)
        assert not result.success
        assert result.data is None
        assert result.error == "boom"

    def test_failed_without_message_gets_placeholder(self) -> None:
        assert AgentResult.failed("a", "").error == "Unknown error"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"success": True},
            {"success": True, "data": {}, "error": "x"},
            {"success": False},
            {"success": False, "data": {}, "error": "x"},
            {"success": False, "error": "x", "cost": -1.0},
        ],
    )
    def test_invalid_combinations_rejected(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            AgentResult(agent_name="a", **kwargs)

    def test_factories_clamp_negative_cost(self) -> None:
        assert AgentResult.failed("a", "x", cost=-3).cost == 0.0

    def test_round_trip_copies_data(self) -> None:
        result = AgentResult.succeeded("a", {"items": [1, 2]})
        record = result.to_dict()
        record["data"]["items"].append(3)
        assert result.data["items"] == [1, 2]
        assert AgentResult.from_dict(result.to_dict()) == result

    def test_immutable(self) -> None:
        result = AgentResult.failed("a", "x")
        with pytest.raises(AttributeError):
            result.error = "y"  # type: ignore[misc]


class TestCheckpointSnapshot:
    """Snapshots captured from an analysis."""

    def test_capture(self) -> None:
        analysis = Analysis(deal_id="acme")
        analysis.plan(["a", "b", "c"])
        analysis.merge(AgentResult.succeeded("a", {}, cost=0.4))
        analysis.merge(AgentResult.failed("b", "timeout"))

        snapshot = CheckpointSnapshot.capture(analysis, "stage-0")
        assert snapshot.analysis_id == analysis.analysis_id
        assert snapshot.completed_agents == ("a",)
        assert snapshot.failed_agents == (FailedAgent("b", "timeout"),)
        assert snapshot.failed_names == ["b"]
        assert snapshot.pending_agents == ("c",)
        assert snapshot.total_cost == pytest.approx(0.4)
        assert snapshot.label == "stage-0"
        assert set(snapshot.results) == {"a", "b"}

    def test_capture_is_detached_from_later_merges(self) -> None:
        analysis = Analysis(deal_id="acme")
        analysis.plan(["a"])
        snapshot = CheckpointSnapshot.capture(analysis)
        analysis.merge(AgentResult.succeeded("a", {}))
        assert snapshot.results == {}
        assert snapshot.pending_agents == ("a",)

    def test_round_trip(self) -> None:
        analysis = Analysis(deal_id="acme")
        analysis.plan(["a", "b"])
        analysis.merge(AgentResult.failed("a", "x", cost=0.1))
        snapshot = CheckpointSnapshot.capture(analysis, "plan")
        restored = CheckpointSnapshot.from_dict(snapshot.to_dict())
        assert restored == snapshot

    def test_ids_are_unique(self) -> None:
        assert CheckpointSnapshot("x").checkpoint_id != CheckpointSnapshot("x").checkpoint_id


class TestExtractedMetric:
    """Metric extraction from guarded payload items."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("ARR", "arr"),
            ("Net Revenue Retention", "nrr"),
            ("burn-rate", "monthly_burn"),
            ("  LTV/CAC  ", "ltv_cac_ratio"),
            ("gross_margin", "gross_margin"),
        ],
    )
    def test_normalize_metric_name(self, raw: str, expected: str) -> None:
        assert normalize_metric_name(raw) == expected

    def test_from_payload(self) -> None:
        metric = ExtractedMetric.from_payload(
            {"name": "ARR Growth", "value": "150", "reliability": "audited", "unit": "%"}
        )
        assert metric == ExtractedMetric(
            name="arr_growth_yoy", value=150.0, unit="%", reliability=DataReliability.AUDITED
        )

    @pytest.mark.parametrize("value", [None, True, "n/a", math.nan, math.inf, 10**400, [1]])
    def test_from_payload_rejects_non_numeric(self, value: object) -> None:
        assert ExtractedMetric.from_payload({"name": "arr", "value": value}) is None

    def test_unknown_reliability_defaults_to_declared(self) -> None:
        metric = ExtractedMetric.from_payload({"name": "arr", "value": 1, "reliability": "vibes"})
        assert metric.reliability is DataReliability.DECLARED


class TestSmallValues:
    """Budgets, criteria, benchmarks and deal contexts."""

    def test_run_budget_attempts(self) -> None:
        assert RunBudget().attempts == 2
        assert RunBudget(max_retries=0).attempts == 1
        with pytest.raises(ValueError):
            RunBudget(timeout=0)

    def test_negative_weight_rejected(self) -> None:
        with pytest.raises(ValueError):
            ScoringCriterion("x", -1, ("arr",))

    def test_benchmark_from_dict_normalizes_metric(self) -> None:
        benchmark = Benchmark.from_dict(
            {"metric": "Net Revenue Retention", "p25": 90, "median": 100, "p75": 120}
        )
        assert benchmark.metric == "nrr"
        assert benchmark.sector == "*"

    def test_deal_context_from_dict(self) -> None:
        deal = DealContext.from_dict(
            {
                "deal_id": "acme",
                "name": "Acme",
                "sector": "Fintech",
                "documents": [{"name": "deck.pdf", "kind": "pitch_deck", "text": "hello"}],
                "benchmarks": [{"metric": "nrr", "p25": 1, "median": 2, "p75": 3}],
            }
        )
        assert deal.documents[0].text == "hello"
        assert deal.benchmarks[0].median == 2
        assert deal.stage is None
        assert deal.facts == {}

    def test_reliability_weights(self) -> None:
        assert DataReliability.AUDITED.confidence == 100
        assert DataReliability.PROJECTED.penalty == 0.7
        assert DataReliability.VERIFIED.penalty == 1.0

    def test_analysis_types(self) -> None:
        assert ANALYSIS_TYPES["full_analysis"] == (Tier.INVESTIGATION, Tier.SECTOR, Tier.SYNTHESIS)
        assert ANALYSIS_TYPES["tier2_sector"] == (Tier.SECTOR,)
