"""Metric Scorer: deterministic 0-100 scores from extracted metrics.

Agents extract numeric metrics; this module, not the completion service,
turns them into a score.  Each metric is placed on a percentile scale against
a sector/stage benchmark, penalised by how reliable its source is, averaged
inside its criterion, and the criteria are combined by weight.

Results depend only on the arguments: no randomness, no clock.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import numpy as np

from due_diligence.domain.values import (
    Benchmark,
    CriterionScore,
    ExtractedMetric,
    ScoreResult,
    ScoringCriterion,
)

logger = logging.getLogger(__name__)

NO_BENCHMARK_SCORE = 50.0
EMPTY_SCORE = 50

STAGE_ORDER: tuple[str, ...] = (
    "pre_seed",
    "seed",
    "series_a",
    "series_b",
    "series_c",
    "growth",
)

GRADE_BANDS: tuple[tuple[int, str], ...] = ((80, "A"), (65, "B"), (50, "C"), (35, "D"))

DEFAULT_SECTOR = "saas"

# Fallback quartiles used when a deal supplies no benchmark data of its own.
DEFAULT_BENCHMARKS: tuple[Benchmark, ...] = (
    Benchmark("arr_growth_yoy", 70, 120, 200, sector="saas", stage="seed"),
    Benchmark("nrr", 95, 110, 130, sector="saas", stage="seed"),
    Benchmark("gross_margin", 65, 75, 85, sector="saas", stage="seed"),
    Benchmark("burn_multiple", 1.2, 2, 3, sector="saas", stage="seed", higher_is_better=False),
    Benchmark("ltv_cac_ratio", 2, 3, 5, sector="saas", stage="seed"),
    Benchmark("arr_growth_yoy", 60, 100, 150, sector="saas", stage="series_a"),
    Benchmark("nrr", 100, 115, 130, sector="saas", stage="series_a"),
    Benchmark("gross_margin", 68, 76, 84, sector="saas", stage="series_a"),
    Benchmark("burn_multiple", 1, 1.6, 2.5, sector="saas", stage="series_a", higher_is_better=False),
    Benchmark("ltv_cac_ratio", 2.5, 3.5, 5, sector="saas", stage="series_a"),
    Benchmark(
        "cac_payback_months", 12, 18, 24, sector="saas", stage="seed", higher_is_better=False
    ),
)


def _key(text: str | None) -> str:
    if not text:
        return "*"
    return text.strip().lower().replace("-", "_").replace(" ", "_") or "*"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def grade_for(score: int) -> str:
    for floor, grade in GRADE_BANDS:
        if score >= floor:
            return grade
    return "F"


# ===================================================================== #
#  Benchmarks                                                            #
# ===================================================================== #

class BenchmarkTable:
    """Benchmarks keyed by ``(sector, stage, metric)`` with fallbacks.

    Lookup order for a metric:

    1. the exact sector and stage;
    2. the same sector with a stage-agnostic (``*``) record, then the
       nearest configured stage;
    3. each word of a compound sector (``"SaaS B2B"`` tries ``saas`` and
       ``b2b``) in the same way;
    4. the generic sector ``*``;
    5. the default sector (``saas``).

    Records added later override earlier records for the same cell, so
    deal-supplied benchmarks replace the built-in defaults.
    """

    def __init__(self, benchmarks: Iterable[Benchmark] = DEFAULT_BENCHMARKS) -> None:
        self._cells: dict[tuple[str, str, str], Benchmark] = {}
        for benchmark in benchmarks:
            self.add(benchmark)

    def add(self, benchmark: Benchmark) -> None:
        cell = (_key(benchmark.sector), _key(benchmark.stage), benchmark.metric)
        self._cells[cell] = benchmark

    def extended(self, benchmarks: Iterable[Benchmark]) -> BenchmarkTable:
        """Return a copy with *benchmarks* layered on top."""
        table = BenchmarkTable(())
        table._cells = dict(self._cells)
        for benchmark in benchmarks:
            table.add(benchmark)
        return table

    def __len__(self) -> int:
        return len(self._cells)

    def lookup(self, metric: str, sector: str | None, stage: str | None) -> Benchmark | None:
        stage_key = _key(stage)
        for sector_key in self._sector_candidates(sector):
            found = self._in_sector(sector_key, stage_key, metric)
            if found is not None:
                return found
        return None

    def _sector_candidates(self, sector: str | None) -> list[str]:
        candidates: list[str] = []
        full = _key(sector)
        if full != "*":
            candidates.append(full)
            candidates.extend(part for part in full.split("_") if part and part != full)
        candidates.extend(["*", DEFAULT_SECTOR])
        seen: set[str] = set()
        return [c for c in candidates if not (c in seen or seen.add(c))]

    def _in_sector(self, sector_key: str, stage_key: str, metric: str) -> Benchmark | None:
        exact = self._cells.get((sector_key, stage_key, metric))
        if exact is not None:
            return exact
        anywhere = self._cells.get((sector_key, "*", metric))
        if anywhere is not None:
            return anywhere
        stages = [
            cell_stage
            for (cell_sector, cell_stage, cell_metric) in self._cells
            if cell_sector == sector_key and cell_metric == metric
        ]
        if not stages:
            return None
        target = STAGE_ORDER.index(stage_key) if stage_key in STAGE_ORDER else 1
        nearest = min(
            stages,
            key=lambda s: (
                abs((STAGE_ORDER.index(s) if s in STAGE_ORDER else len(STAGE_ORDER)) - target),
                STAGE_ORDER.index(s) if s in STAGE_ORDER else len(STAGE_ORDER),
                s,
            ),
        )
        return self._cells[(sector_key, nearest, metric)]


def percentile_rank(value: float, benchmark: Benchmark) -> int:
    """Place *value* on a 0-100 percentile scale against *benchmark*.

    Piecewise-linear between (p25, 25), (median, 50) and (p75, 75),
    extrapolated with the neighbouring slope outside that band and clamped to
    [0, 100].  Lower-is-better metrics are mirrored.
    """
    p25, median, p75 = benchmark.p25, benchmark.median, benchmark.p75
    lower_spread = median - p25
    upper_spread = p75 - median
    if value <= p25:
        if lower_spread > 0:
            pct = max(0.0, 25.0 - (p25 - value) / lower_spread * 25.0)
        else:
            pct = 10.0 if value < p25 else 25.0
    elif value > p75:
        pct = min(100.0, 75.0 + (value - p75) / upper_spread * 25.0) if upper_spread > 0 else 90.0
    else:
        pct = float(np.interp(value, [p25, median, p75], [25.0, 50.0, 75.0]))
    rank = round_half_up(pct)
    return rank if benchmark.higher_is_better else 100 - rank


# ===================================================================== #
#  Scorer                                                                #
# ===================================================================== #

def criteria_from_mapping(table: Mapping[str, Mapping[str, Any]]) -> tuple[ScoringCriterion, ...]:
    """Build criteria from ``{name: {"weight": w, "metrics": [...]}}``."""
    return tuple(
        ScoringCriterion(name=name, weight=float(spec["weight"]), metrics=tuple(spec["metrics"]))
        for name, spec in table.items()
    )


class MetricScorer:
    """Weighted, benchmark-relative scoring of extracted metrics.

    Parameters
    ----------
    benchmarks:
        Benchmark table; defaults to the built-in fallback quartiles.
    """

    def __init__(self, benchmarks: BenchmarkTable | None = None) -> None:
        self.benchmarks = benchmarks or BenchmarkTable()

    def metric_score(self, metric: ExtractedMetric, sector: str | None, stage: str | None) -> int:
        """Sub-score of one metric: percentile times reliability penalty."""
        benchmark = self.benchmarks.lookup(metric.name, sector, stage)
        base = percentile_rank(metric.value, benchmark) if benchmark else NO_BENCHMARK_SCORE
        return round_half_up(base * metric.reliability.penalty)

    def score(
        self,
        metrics: Sequence[ExtractedMetric],
        sector: str | None,
        stage: str | None,
        criteria: Sequence[ScoringCriterion],
    ) -> ScoreResult:
        """Score *metrics* against *criteria*.

        Criteria without any matching metric appear in the breakdown with
        ``has_data=False`` and do not count towards the weighted mean.  When
        no criterion has data the value is 50 and ``coverage`` is 0, which
        tells the caller to keep the agent's own score.
        """
        scored = [(m, self.metric_score(m, sector, stage)) for m in metrics]

        breakdown: list[CriterionScore] = []
        weighted: list[tuple[float, int]] = []
        for criterion in criteria:
            relevant = [(m, s) for m, s in scored if m.name in criterion.metrics]
            if not relevant:
                breakdown.append(
                    CriterionScore(
                        criterion=criterion.name,
                        weight=criterion.weight,
                        score=0,
                        has_data=False,
                        justification="No data available for this criterion",
                    )
                )
                continue
            values = np.array([s for _, s in relevant], dtype=float)
            weights = np.array([m.reliability.confidence for m, _ in relevant], dtype=float)
            mean = float(np.average(values, weights=weights)) if weights.sum() > 0 else 0.0
            criterion_score = int(np.clip(round_half_up(mean), 0, 100))
            breakdown.append(
                CriterionScore(
                    criterion=criterion.name,
                    weight=criterion.weight,
                    score=criterion_score,
                    has_data=True,
                    justification=" | ".join(
                        f"{m.name}: {m.value:g} ({m.reliability.value}, {s})" for m, s in relevant
                    ),
                )
            )
            weighted.append((criterion.weight, criterion_score))

        total_weight = sum(c.weight for c in criteria)
        covered_weight = sum(w for w, _ in weighted)
        if covered_weight > 0:
            raw = sum(w * s for w, s in weighted) / covered_weight
            value = int(np.clip(round_half_up(raw), 0, 100))
        else:
            value = EMPTY_SCORE
        coverage = covered_weight / total_weight if total_weight > 0 else 0.0

        logger.debug(
            "Scored %d metrics over %d criteria: %d (coverage %.2f)",
            len(metrics),
            len(criteria),
            value,
            coverage,
        )
        return ScoreResult(
            value=value,
            breakdown=tuple(breakdown),
            coverage=round(coverage, 4),
            grade=grade_for(value),
        )
