#!/usr/bin/env python3
"""Example 01: full three-tier analysis of one deal.

Runs the built-in catalogue (investigation agents, the matching sector
expert, synthesis agents) against an in-memory deal and store, then prints
the result table and the checkpoint history.

Self-contained: runs with a scripted model by default (no API key required).
Set ANTHROPIC_API_KEY for real completions.

Run:
    PYTHONPATH=src python examples/01_full_analysis.py
"""

from __future__ import annotations

import asyncio
import os

from due_diligence import (
    AgentRunner,
    DealContext,
    Document,
    InMemoryDealProvider,
    InMemoryStore,
    Orchestrator,
    default_registry,
)
from due_diligence.infrastructure.config import LLMSettings, PipelineConfig, RunnerConfig
from due_diligence.infrastructure.llm import TextCompleter
from due_diligence.presentation.console import AnalysisDashboard
from due_diligence.services.orchestrator import ProgressUpdate
from due_diligence.testing import ScriptedChatModel


def _completer() -> tuple[TextCompleter, str]:
    if os.environ.get("ANTHROPIC_API_KEY"):
        return TextCompleter.from_settings(LLMSettings()), "real LLM"
    model = ScriptedChatModel(
        responses=[
            {
                "summary": "Fast-growing analytics platform with strong retention.",
                "score": 72,
                "confidence": 0.6,
                "strengths": ["Net revenue retention above 120%"],
                "concerns": ["Single enterprise customer is 30% of ARR"],
                "metrics": [
                    {"name": "ARR Growth", "value": 140, "unit": "%", "reliability": "VERIFIED"},
                    {"name": "NRR", "value": 124, "unit": "%", "reliability": "DECLARED"},
                    {"name": "Burn Multiple", "value": 1.8, "reliability": "PROJECTED"},
                ],
            }
        ],
        input_tokens=3000,
        output_tokens=600,
    )
    return TextCompleter(model), "simulated (set ANTHROPIC_API_KEY for real LLM)"


DEAL = DealContext(
    deal_id="acme",
    name="Acme Analytics",
    sector="B2B SaaS",
    stage="seed",
    metadata={"round": "2.5M seed", "founded": 2023},
    documents=[
        Document(
            name="deck.pdf",
            kind="deck",
            text=(
                "Acme turns product telemetry into revenue forecasts.\n"
                "ARR 1.2M, growing 140% YoY. NRR 124%. 38 customers.\n"
                "Burn 110k/month, 20 months of runway."
            ),
        )
    ],
    facts={"employees": 14},
)


async def main() -> None:
    completer, mode = _completer()
    dashboard = AnalysisDashboard()
    store = InMemoryStore()

    def progress(update: ProgressUpdate) -> None:
        mark = "ok" if update.success else "FAILED"
        dashboard.print(
            f"  [{update.completed_agents}/{update.total_agents}] {update.agent_name}: {mark}"
        )

    orchestrator = Orchestrator(
        default_registry(),
        store,
        store,
        InMemoryDealProvider([DEAL]),
        runner=AgentRunner(completer),
        config=PipelineConfig(runner=RunnerConfig(timeout_seconds=120), max_concurrency=6),
        on_progress=progress,
    )

    print("=== Due diligence: full analysis ===")
    print(f"Deal: {DEAL.name} ({DEAL.sector}, {DEAL.stage})")
    print(f"Mode: {mode}")
    print()

    dashboard.print_plan(orchestrator.plan(DEAL.sector, "full_analysis"))
    analysis = await orchestrator.start(DEAL.deal_id)

    dashboard.print_analysis(analysis)
    dashboard.print_checkpoints(await store.history(analysis.analysis_id))

    auditor = analysis.results["financial-auditor"].data
    print(
        f"financial-auditor: {auditor['scoring_method']} score {auditor['score']} "
        f"(self-reported {auditor.get('self_reported_score')})"
    )
    print()
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
