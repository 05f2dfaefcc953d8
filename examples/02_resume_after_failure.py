#!/usr/bin/env python3
"""Example 02: checkpoints and resume with a custom agent team.

Registers three small agents with the registry decorator:

- ``revenue`` reads the deal facts;
- ``market`` calls a flaky "data provider" that is down during the first run;
- ``verdict`` hard-requires both and combines their findings.

The first run ends FAILED: ``market`` exhausts its retries and ``verdict`` is
skipped because one of its hard dependencies did not succeed.  Once the
provider recovers, the resume controller re-runs only the owed agents and the
analysis completes.  The store is a SQLite database so the history survives
between the two passes.

Run:
    PYTHONPATH=src python examples/02_resume_after_failure.py
"""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

from due_diligence import (
    AgentRegistry,
    DealContext,
    InMemoryDealProvider,
    Orchestrator,
    ResumeController,
)
from due_diligence.domain.enums import Tier
from due_diligence.infrastructure.config import PipelineConfig, RunnerConfig
from due_diligence.infrastructure.storage.sql import SqlStore
from due_diligence.presentation.console import AnalysisDashboard
from due_diligence.services.runner import RunContext

provider_up = False

registry = AgentRegistry()


@registry.agent("revenue")
async def revenue(context: RunContext) -> dict:
    """Reads revenue facts from the deal."""
    arr = context.deal.facts.get("arr", 0)
    context.charge(0.01)
    return {"summary": f"ARR of {arr:,}", "score": 70 if arr > 1_000_000 else 40}


@registry.agent("market")
async def market(context: RunContext) -> dict:
    """Queries an external market-size provider."""
    context.charge(0.02)
    if not provider_up:
        raise ConnectionError("market data provider unavailable")
    return {"summary": "TAM of 8B, growing 18% a year", "score": 65}


@registry.agent("verdict", tier=Tier.SYNTHESIS, required=("revenue", "market"))
async def verdict(context: RunContext) -> dict:
    """Combines revenue and market findings into one score."""
    scores = [context.dependency(name)["score"] for name in ("revenue", "market")]
    return {"summary": "Combined view", "score": round(sum(scores) / len(scores))}


DEAL = DealContext(deal_id="acme", name="Acme Analytics", facts={"arr": 1_200_000})


async def main() -> None:
    global provider_up

    dashboard = AnalysisDashboard()
    deals = InMemoryDealProvider([DEAL])
    config = PipelineConfig(runner=RunnerConfig(timeout_seconds=5, max_retries=2))

    with tempfile.TemporaryDirectory() as tmp:
        store = SqlStore(f"sqlite:///{Path(tmp) / 'dd.db'}")

        print("=== First run: market provider is down ===")
        orchestrator = Orchestrator(registry, store, store, deals, config=config)
        first = await orchestrator.start("acme", tiers=[1, 3])
        dashboard.print_analysis(first)

        print("=== Resume: provider recovered ===")
        provider_up = True
        controller = ResumeController(registry, store, store, deals, config=config)
        _, _, owed = await controller.owed(first.analysis_id)
        print(f"Owed agents: {', '.join(owed)}")
        resumed = await controller.resume(first.analysis_id)
        dashboard.print_analysis(resumed)
        dashboard.print_checkpoints(await store.history(resumed.analysis_id))

        store.dispose()

    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
