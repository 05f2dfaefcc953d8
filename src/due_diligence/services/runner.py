"""Agent Runner: one agent, one deal, a timeout and a retry budget.

The runner invokes an agent's ``run`` callable, retries it immediately on
error or timeout until the attempt budget is spent, and returns a single
:class:`AgentResult`.  Retries are local to the agent: siblings running in
the same stage are never blocked by them.

Every attempt gets its own :class:`CostMeter`.  Costs add up across attempts
(a failed or timed-out attempt may already have paid for completions);
execution time is that of the final attempt.

Successful payloads pass through the Schema Guard and, when the agent
declares scoring criteria and reports metrics, through the Metric Scorer,
whose value replaces the agent's self-reported ``score``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from langchain_core.messages import BaseMessage

from due_diligence.agents.base import AgentSpec
from due_diligence.domain.events import AgentAttemptFailed, AgentFinished
from due_diligence.domain.exceptions import LLMConnectionError
from due_diligence.domain.values import AgentResult, DealContext, ExtractedMetric, RunBudget
from due_diligence.infrastructure.event_bus import AsyncEventBus
from due_diligence.infrastructure.llm import Completion, TextCompleter
from due_diligence.services.schema_guard import coerce
from due_diligence.services.scoring import MetricScorer

logger = logging.getLogger(__name__)

TIMEOUT_PREFIX = "AgentTimeout"


# ===================================================================== #
#  Run context                                                           #
# ===================================================================== #

class CostMeter:
    """Accumulates the spend of one attempt."""

    def __init__(self) -> None:
        self.total = 0.0
        self.calls = 0

    def record(self, cost: float) -> None:
        self.calls += 1
        if cost > 0:
            self.total += cost


@dataclass(frozen=True)
class RunContext:
    """Everything an agent may read during one attempt.

    ``previous_results`` is a read-only view of the results accumulated by
    earlier stages (or seeded by a resume pass).
    """

    deal: DealContext
    previous_results: Mapping[str, AgentResult] = field(
        default_factory=lambda: MappingProxyType({})
    )
    agent_name: str = ""
    attempt: int = 1
    completer: TextCompleter | None = None
    meter: CostMeter = field(default_factory=CostMeter)

    def dependency(self, name: str) -> Mapping[str, Any] | None:
        """Payload of a successful earlier agent, or ``None``."""
        result = self.previous_results.get(name)
        return result.data if result is not None and result.success else None

    async def complete(self, messages: str | Sequence[BaseMessage]) -> Completion:
        """Call the text-completion service and meter its cost."""
        if self.completer is None:
            raise LLMConnectionError(f"No text completer configured for {self.agent_name!r}")
        completion = await self.completer.complete(messages)
        self.meter.record(completion.cost)
        return completion

    def charge(self, cost: float) -> None:
        """Meter spend made outside the completer (e.g. a paid data API)."""
        self.meter.record(cost)


# ===================================================================== #
#  Runner                                                                #
# ===================================================================== #

class AgentRunner:
    """Executes single agents under a :class:`RunBudget`.

    Parameters
    ----------
    completer:
        Text-completion service handed to agents through their context.
    scorer:
        Metric Scorer; deal-supplied benchmarks are layered on its table.
    event_bus:
        Optional bus receiving ``AgentAttemptFailed`` / ``AgentFinished``.
    """

    def __init__(
        self,
        completer: TextCompleter | None = None,
        scorer: MetricScorer | None = None,
        event_bus: AsyncEventBus | None = None,
    ) -> None:
        self.completer = completer
        self.scorer = scorer or MetricScorer()
        self.event_bus = event_bus

    async def run(
        self,
        agent: AgentSpec,
        deal: DealContext,
        budget: RunBudget,
        previous_results: Mapping[str, AgentResult] | None = None,
        analysis_id: str = "",
    ) -> AgentResult:
        """Run *agent* until it succeeds or the attempt budget is spent.

        Never raises for agent-level problems (errors, timeouts, malformed
        payloads); those become a failed result.
        """
        view = MappingProxyType(dict(previous_results or {}))
        attempts = budget.attempts
        total_cost = 0.0
        elapsed_ms = 0
        last_error = ""

        for attempt in range(1, attempts + 1):
            meter = CostMeter()
            context = RunContext(
                deal=deal,
                previous_results=view,
                agent_name=agent.name,
                attempt=attempt,
                completer=self.completer,
                meter=meter,
            )
            started = time.perf_counter()
            try:
                raw = await asyncio.wait_for(agent.run(context), timeout=budget.timeout)
                data = self._normalize(agent, raw, deal)
            except asyncio.TimeoutError:
                error = f"{TIMEOUT_PREFIX}: {agent.name} exceeded {budget.timeout:g}s"
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
            else:
                total_cost += meter.total
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                result = AgentResult.succeeded(
                    agent.name, data, cost=total_cost, execution_time_ms=elapsed_ms
                )
                await self._finished(result, attempt, analysis_id)
                return result

            total_cost += meter.total
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            last_error = error
            logger.warning(
                "Agent %s attempt %d/%d failed: %s", agent.name, attempt, attempts, error
            )
            if self.event_bus is not None:
                await self.event_bus.publish(
                    AgentAttemptFailed(
                        source_id="agent_runner",
                        analysis_id=analysis_id,
                        agent_name=agent.name,
                        attempt=attempt,
                        max_attempts=attempts,
                        error=error,
                        cost=meter.total,
                    )
                )

        result = AgentResult.failed(
            agent.name, last_error, cost=total_cost, execution_time_ms=elapsed_ms
        )
        await self._finished(result, attempts, analysis_id)
        return result

    async def _finished(self, result: AgentResult, attempts: int, analysis_id: str) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            AgentFinished(
                source_id="agent_runner",
                analysis_id=analysis_id,
                agent_name=result.agent_name,
                success=result.success,
                cost=result.cost,
                execution_time_ms=result.execution_time_ms,
                attempts=attempts,
                error=result.error,
            )
        )

    # -- payload normalization ---------------------------------------------------

    def _normalize(self, agent: AgentSpec, raw: Any, deal: DealContext) -> dict[str, Any]:
        if agent.shape is None:
            data: dict[str, Any] = dict(raw) if isinstance(raw, Mapping) else {"value": raw}
            fallback: list[str] = []
        else:
            guarded = coerce(raw, agent.shape)
            value = guarded.value
            data = dict(value) if isinstance(value, Mapping) else {"value": value}
            fallback = list(guarded.fallback_fields)
            if fallback:
                logger.info("Agent %s: defaulted fields %s", agent.name, fallback)
        data["fallback_fields"] = fallback
        data["scoring_method"] = "self_reported"

        if not agent.criteria:
            return data
        metrics = [
            metric
            for metric in (
                ExtractedMetric.from_payload(item)
                for item in data.get("metrics") or ()
                if isinstance(item, Mapping)
            )
            if metric is not None
        ]
        if not metrics:
            return data

        scorer = self.scorer
        if deal.benchmarks:
            scorer = MetricScorer(self.scorer.benchmarks.extended(deal.benchmarks))
        score = scorer.score(metrics, deal.sector, deal.stage, agent.criteria)
        if score.coverage <= 0:
            return data
        data["self_reported_score"] = data.get("score")
        data["score"] = score.value
        data["grade"] = score.grade
        data["score_coverage"] = score.coverage
        data["score_breakdown"] = [c.to_dict() for c in score.breakdown]
        data["scoring_method"] = "deterministic"
        return data
