"""Tests for completion-backed agents."""

from __future__ import annotations

from types import MappingProxyType

import pytest

from due_diligence.agents.base import AgentSpec
from due_diligence.agents.prompted import PromptedAgent, render_documents, render_findings
from due_diligence.agents.verdict import AgentVerdict
from due_diligence.domain.enums import Tier
from due_diligence.domain.values import AgentResult, DealContext, Document, RunBudget
from due_diligence.infrastructure.llm import TextCompleter
from due_diligence.services.runner import AgentRunner, RunContext
from due_diligence.testing import ScriptedChatModel


class TestRendering:
    """Prompt sections."""

    def test_no_documents(self) -> None:
        assert render_documents(DealContext(deal_id="x")) == "No documents provided."

    def test_documents_are_truncated(self) -> None:
        deal = DealContext(deal_id="x", documents=[Document("deck.pdf", "deck", "a" * 50)])
        rendered = render_documents(deal, limit=10)
        assert rendered.startswith("### deck.pdf (deck)\n")
        assert rendered.endswith("a" * 10 + "\n[...]")

    def test_findings(self) -> None:
        assert render_findings({}) == "None available."
        rendered = render_findings(
            {"financial-auditor": {"score": 62, "summary": "Thin margins."}, "x": {}}
        )
        assert rendered.splitlines() == [
            "- **financial-auditor** (score 62): Thin margins.",
            "- **x**",
        ]


class TestPromptedAgent:
    """Message construction from the run context."""

    def test_messages_carry_role_and_deal(self, deal: DealContext) -> None:
        agent = PromptedAgent("a forensic financial auditor", "Check the numbers.", AgentVerdict)
        system, human = agent.messages(RunContext(deal=deal))
        assert "a forensic financial auditor" in system.content
        assert "Check the numbers." in system.content
        assert '"summary"' in system.content
        assert "Acme Analytics" in human.content
        assert "B2B SaaS" in human.content
        assert "None available." in human.content

    def test_reads_restrict_findings(self, deal: DealContext) -> None:
        previous = MappingProxyType(
            {
                "a": AgentResult.succeeded("a", {"summary": "from a"}),
                "b": AgentResult.succeeded("b", {"summary": "from b"}),
                "c": AgentResult.failed("c", "boom"),
            }
        )
        context = RunContext(deal=deal, previous_results=previous)

        narrow = PromptedAgent("r", "i", AgentVerdict, reads=("a", "c"))
        _, human = narrow.messages(context)
        assert "from a" in human.content
        assert "from b" not in human.content
        assert "**c**" not in human.content

        wide = PromptedAgent("r", "i", AgentVerdict)
        _, human = wide.messages(context)
        assert "from a" in human.content and "from b" in human.content


class TestPromptedAgentThroughRunner:
    """Completions parsed, guarded and priced by the runner."""

    @staticmethod
    def _spec() -> AgentSpec:
        return AgentSpec(
            name="analyst",
            run=PromptedAgent("an analyst", "Assess.", AgentVerdict),
            tier=Tier.INVESTIGATION,
            shape=AgentVerdict,
        )

    @pytest.mark.asyncio
    async def test_fenced_json_reply(self, deal: DealContext) -> None:
        model = ScriptedChatModel(
            responses=['Here you go:\n```json\n{"summary": "Solid", "score": 140}\n```'],
            input_tokens=1000,
            output_tokens=1000,
        )
        runner = AgentRunner(completer=TextCompleter(model, 3.0, 15.0))
        result = await runner.run(self._spec(), deal, RunBudget(timeout=5, max_retries=2))

        assert result.success
        assert result.data["summary"] == "Solid"
        assert result.data["score"] == 100
        assert "confidence" in result.data["fallback_fields"]
        assert result.cost == pytest.approx(0.018)
        assert model.calls == 1

    @pytest.mark.asyncio
    async def test_malformed_reply_fails_after_retries(self, deal: DealContext) -> None:
        model = ScriptedChatModel(
            responses=["I cannot help with that."], input_tokens=1000, output_tokens=1000
        )
        runner = AgentRunner(completer=TextCompleter(model, 3.0, 15.0))
        result = await runner.run(self._spec(), deal, RunBudget(timeout=5, max_retries=2))

        assert not result.success
        assert result.error.startswith("LLMResponseError: No JSON object")
        assert model.calls == 2
        assert result.cost == pytest.approx(0.036)

    @pytest.mark.asyncio
    async def test_missing_completer_fails(self, deal: DealContext) -> None:
        result = await AgentRunner().run(self._spec(), deal, RunBudget(timeout=5, max_retries=1))
        assert not result.success
        assert result.error.startswith("LLMConnectionError")
