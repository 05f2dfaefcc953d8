"""Completion-backed agents.

:class:`PromptedAgent` is the ``run`` callable behind every built-in agent:
it renders the deal and the verdicts it depends on into a chat prompt, asks
the text-completion service for a JSON object and returns the decoded
payload untouched.  Guarding and scoring happen in the runner.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel

from due_diligence.domain.values import DealContext
from due_diligence.infrastructure.llm import parse_json_payload

if TYPE_CHECKING:
    from due_diligence.services.runner import RunContext

logger = logging.getLogger(__name__)

#: Characters of document text included per document.
DOCUMENT_EXCERPT_CHARS = 6000

# -- Prompt ------------------------------------------------------------------

AGENT_PROMPT = ChatPromptTemplate.from_messages(
    [
        (
            "system",
            "You are {role}, part of a venture-capital due-diligence team.\n"
            "{instructions}\n\n"
            "Ground every statement in the material provided. When a value is "
            "not in the material, leave it out rather than guessing. Tag each "
            "metric with its reliability: AUDITED, VERIFIED, DECLARED, "
            "PROJECTED, ESTIMATED or UNVERIFIABLE.\n\n"
            "Reply with a single JSON object and nothing else, following this "
            "JSON schema:\n{schema}",
        ),
        (
            "human",
            "## Deal\n"
            "**Name**: {deal_name}\n"
            "**Sector**: {sector}\n"
            "**Stage**: {stage}\n"
            "**Metadata**: {metadata}\n"
            "**Known facts**: {facts}\n\n"
            "## Documents\n{documents}\n\n"
            "## Earlier findings\n{findings}",
        ),
    ]
)


def render_documents(deal: DealContext, limit: int = DOCUMENT_EXCERPT_CHARS) -> str:
    if not deal.documents:
        return "No documents provided."
    parts = []
    for doc in deal.documents:
        text = doc.text if len(doc.text) <= limit else doc.text[:limit] + "\n[...]"
        parts.append(f"### {doc.name} ({doc.kind})\n{text}")
    return "\n\n".join(parts)


def render_findings(findings: Mapping[str, Mapping[str, Any]]) -> str:
    if not findings:
        return "None available."
    lines = []
    for name, data in findings.items():
        summary = data.get("summary") or ""
        score = data.get("score")
        line = f"- **{name}**"
        if score is not None:
            line += f" (score {score})"
        if summary:
            line += f": {summary}"
        lines.append(line)
    return "\n".join(lines)


class PromptedAgent:
    """Async ``run`` callable backed by one completion.

    Parameters
    ----------
    role:
        Who the model should act as (e.g. ``"a forensic financial auditor"``).
    instructions:
        What to investigate.
    output_model:
        Pydantic model whose JSON schema is shown to the model.
    reads:
        Names of earlier agents whose verdicts are included; empty includes
        every successful earlier result.
    prompt:
        Optional custom ``ChatPromptTemplate`` to replace the default.
    """

    def __init__(
        self,
        role: str,
        instructions: str,
        output_model: type[BaseModel],
        reads: Sequence[str] = (),
        prompt: ChatPromptTemplate | None = None,
    ) -> None:
        self.role = role
        self.instructions = instructions
        self.output_model = output_model
        self.reads = tuple(reads)
        self._prompt = prompt or AGENT_PROMPT
        self._schema = json.dumps(output_model.model_json_schema(), indent=None)

    def __repr__(self) -> str:
        return f"PromptedAgent(role={self.role!r}, output={self.output_model.__name__})"

    def _findings(self, context: RunContext) -> dict[str, Mapping[str, Any]]:
        names = self.reads or tuple(context.previous_results)
        findings: dict[str, Mapping[str, Any]] = {}
        for name in names:
            data = context.dependency(name)
            if data is not None:
                findings[name] = data
        return findings

    def messages(self, context: RunContext) -> list[Any]:
        deal = context.deal
        return self._prompt.format_messages(
            role=self.role,
            instructions=self.instructions,
            schema=self._schema,
            deal_name=deal.name or deal.deal_id,
            sector=deal.sector or "unknown",
            stage=deal.stage or "unknown",
            metadata=json.dumps(dict(deal.metadata), default=str) if deal.metadata else "N/A",
            facts=json.dumps(dict(deal.facts), default=str) if deal.facts else "N/A",
            documents=render_documents(deal),
            findings=render_findings(self._findings(context)),
        )

    async def __call__(self, context: RunContext) -> Any:
        completion = await context.complete(self.messages(context))
        logger.debug(
            "%s: %d chars from %s (attempt %d)",
            context.agent_name,
            len(completion.text),
            completion.model,
            context.attempt,
        )
        return parse_json_payload(completion.text)
