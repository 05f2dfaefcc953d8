"""Domain exceptions for the due-diligence pipeline.

All domain-specific exceptions inherit from ``DueDiligenceError`` so callers
can catch the full family with a single ``except`` clause when needed.

Agent-level failures are *not* exceptions at this layer: they are recorded as
failed ``AgentResult`` values.  The classes below cover configuration,
lookup, storage and claim errors.
"""

from __future__ import annotations

from typing import Any


class DueDiligenceError(Exception):
    """Base exception for all due-diligence domain errors."""

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


# ---------------------------------------------------------------------------
# Configuration errors (fatal, raised before any agent runs)
# ---------------------------------------------------------------------------

class ConfigurationError(DueDiligenceError):
    """Raised for invalid registry or pipeline configuration."""


class UnknownSectorConfiguration(ConfigurationError):
    """Raised when no sector expert matches and no default expert exists."""

    def __init__(
        self,
        message: str = "No sector expert matches and no default expert is registered",
        sector: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.sector = sector


class CyclicDependencyError(ConfigurationError):
    """Raised when the agent dependency graph contains a cycle."""

    def __init__(
        self,
        message: str = "Cyclic agent dependencies",
        agents: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.agents: list[str] = agents or []


# ---------------------------------------------------------------------------
# Lookup errors
# ---------------------------------------------------------------------------

class AnalysisNotFound(DueDiligenceError):
    """Raised when an analysis id does not exist in the repository."""

    def __init__(self, analysis_id: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Analysis {analysis_id!r} not found", details)
        self.analysis_id = analysis_id


class NoCheckpoint(DueDiligenceError):
    """Raised when resume is requested for an analysis with no checkpoint."""

    def __init__(self, analysis_id: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Analysis {analysis_id!r} has no checkpoint", details)
        self.analysis_id = analysis_id


class DealNotFound(DueDiligenceError):
    """Raised by a deal-context provider for an unknown deal id."""

    def __init__(self, deal_id: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Deal {deal_id!r} not found", details)
        self.deal_id = deal_id


# ---------------------------------------------------------------------------
# Storage / concurrency errors
# ---------------------------------------------------------------------------

class StorageError(DueDiligenceError):
    """Raised when the durable store cannot complete an operation."""


class AnalysisClaimConflict(DueDiligenceError):
    """Raised when an analysis cannot be claimed because its status moved.

    Claiming RUNNING is only allowed from the statuses listed in
    ``allowed``; a concurrent claimant sees this error instead of running
    the same agents twice.
    """

    def __init__(
        self,
        analysis_id: str = "",
        current: str = "",
        allowed: tuple[str, ...] = (),
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"Cannot claim analysis {analysis_id!r}: status is {current}, "
            f"expected one of {list(allowed)}",
            details,
        )
        self.analysis_id = analysis_id
        self.current = current
        self.allowed = allowed


# ---------------------------------------------------------------------------
# Text-completion errors
# ---------------------------------------------------------------------------

class LLMError(DueDiligenceError):
    """Base class for text-completion service errors."""

    def __init__(
        self,
        message: str = "LLM error",
        provider: str = "",
        model: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.provider = provider
        self.model = model


class LLMConnectionError(LLMError):
    """Raised when the completion service cannot be reached or errors out."""


class LLMResponseError(LLMError):
    """Raised when a completion cannot be decoded into a JSON payload."""

    def __init__(
        self,
        message: str = "Unparseable LLM response",
        raw_text: str = "",
        provider: str = "",
        model: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, provider, model, details)
        self.raw_text = raw_text
