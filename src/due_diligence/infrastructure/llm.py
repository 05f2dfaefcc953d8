"""Text-completion layer.

The pipeline talks to any LangChain ``BaseChatModel``.  :class:`TextCompleter`
sends a prompt, flattens the reply to text and prices the provider-reported
token usage into a cost, so that every call can be metered against the agent
attempt that made it.  :func:`parse_json_payload` recovers a JSON object from
replies that wrap it in code fences or prose.

Provider packages are imported lazily by :func:`create_chat_model` so that
the pipeline (and its tests) work without any provider installed.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from due_diligence.domain.exceptions import LLMConnectionError, LLMResponseError
from due_diligence.infrastructure.config import LLMSettings

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class Completion:
    """One completion: text, its metered cost and raw token usage."""

    text: str
    cost: float = 0.0
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)


class TextCompleter:
    """Meter-aware wrapper around a chat model.

    Parameters
    ----------
    model:
        A LangChain chat model (e.g. ``ChatAnthropic``, ``ChatOpenAI``).
    input_cost_per_mtok, output_cost_per_mtok:
        USD per million input / output tokens.
    """

    def __init__(
        self,
        model: BaseChatModel,
        input_cost_per_mtok: float = 0.0,
        output_cost_per_mtok: float = 0.0,
    ) -> None:
        self.model = model
        self.input_cost_per_mtok = input_cost_per_mtok
        self.output_cost_per_mtok = output_cost_per_mtok

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> TextCompleter:
        return cls(
            create_chat_model(settings),
            input_cost_per_mtok=settings.input_cost_per_mtok,
            output_cost_per_mtok=settings.output_cost_per_mtok,
        )

    @property
    def model_name(self) -> str:
        return str(
            getattr(self.model, "model", None)
            or getattr(self.model, "model_name", None)
            or self.model._llm_type
        )

    def price(self, usage: dict[str, int]) -> float:
        """USD cost of a call with the given token usage."""
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        return (
            input_tokens * self.input_cost_per_mtok + output_tokens * self.output_cost_per_mtok
        ) / 1_000_000

    async def complete(self, messages: str | Sequence[BaseMessage]) -> Completion:
        """Send *messages* (or a bare prompt string) and return the reply.

        Raises
        ------
        LLMConnectionError
            When the provider call itself fails.
        """
        if isinstance(messages, str):
            messages = [HumanMessage(content=messages)]
        try:
            reply = await self.model.ainvoke(list(messages))
        except Exception as exc:
            raise LLMConnectionError(
                f"Completion failed: {exc}", provider=self.model._llm_type, model=self.model_name
            ) from exc

        usage = dict(getattr(reply, "usage_metadata", None) or {})
        usage = {k: int(v) for k, v in usage.items() if isinstance(v, (int, float))}
        completion = Completion(
            text=message_text(reply),
            cost=self.price(usage),
            model=self.model_name,
            usage=usage,
        )
        logger.debug(
            "Completion from %s: %d chars, %s tokens, $%.5f",
            completion.model,
            len(completion.text),
            usage.get("total_tokens", "?"),
            completion.cost,
        )
        return completion


def message_text(message: BaseMessage | AIMessage) -> str:
    """Flatten string or content-block message content into plain text."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


def parse_json_payload(text: str) -> Any:
    """Decode the JSON object carried by a completion.

    Tries the whole text, then the first fenced block, then the outermost
    ``{...}`` span.

    Raises
    ------
    LLMResponseError
        If no candidate decodes.
    """
    candidates = [text.strip()]
    fenced = _FENCE_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])
    for candidate in candidates:
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise LLMResponseError(
        f"No JSON object in completion ({len(text)} chars)", raw_text=text[:500]
    )


def create_chat_model(settings: LLMSettings) -> BaseChatModel:
    """Build the provider chat model named by *settings*.

    Imports the provider package lazily.

    Raises
    ------
    ImportError
        If the provider's LangChain integration is not installed.
    """
    settings.validate()
    kwargs: dict[str, Any] = {
        "model": settings.model,
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
    }
    if settings.api_key:
        kwargs["api_key"] = settings.api_key
    if settings.provider == "anthropic":
        from langchain_anthropic import ChatAnthropic

        return ChatAnthropic(**kwargs)
    if settings.provider == "openai":
        try:
            from langchain_openai import ChatOpenAI
        except ImportError as exc:
            raise ImportError(
                "The 'langchain-openai' package is required for provider 'openai'. "
                "Install it with: pip install 'due-diligence[openai]'"
            ) from exc
        return ChatOpenAI(**kwargs)
    raise ValueError(f"Unknown provider {settings.provider!r}")
