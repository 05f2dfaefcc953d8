"""Configuration dataclasses for the due-diligence pipeline.

Each config is a plain frozen ``dataclass`` with a ``validate()`` method that
raises ``ValueError`` on invalid combinations, plus ``to_dict`` /
``from_dict`` helpers that ignore unknown keys.

:func:`load_config` reads a YAML or JSON file whose top-level sections are
``runner``, ``llm`` and ``pipeline``.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from due_diligence.domain.enums import ANALYSIS_TYPES
from due_diligence.domain.values import RunBudget


# ===================================================================== #
#  Runner Configuration                                                  #
# ===================================================================== #

@dataclass(frozen=True)
class RunnerConfig:
    """Per-agent execution budget.

    Attributes
    ----------
    timeout_seconds:
        Wall-clock limit for a single agent attempt.
    max_retries:
        Total attempts per agent during a regular run.
    resume_max_retries:
        Total attempts per owed agent during a resume pass.
    """

    timeout_seconds: float = 180.0
    max_retries: int = 2
    resume_max_retries: int = 1

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.resume_max_retries < 1:
            raise ValueError(
                f"resume_max_retries must be >= 1, got {self.resume_max_retries}"
            )

    def budget(self) -> RunBudget:
        return RunBudget(timeout=self.timeout_seconds, max_retries=self.max_retries)

    def resume_budget(self) -> RunBudget:
        return RunBudget(timeout=self.timeout_seconds, max_retries=self.resume_max_retries)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunnerConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  LLM Configuration                                                     #
# ===================================================================== #

_VALID_PROVIDERS = frozenset({"anthropic", "openai"})


@dataclass(frozen=True)
class LLMSettings:
    """Text-completion service settings and pricing.

    Costs are expressed in USD per million tokens and are used to turn the
    provider's reported token usage into a metered cost.
    """

    provider: str = "anthropic"
    model: str = "claude-sonnet-4-5"
    temperature: float = 0.2
    max_tokens: int = 4096
    input_cost_per_mtok: float = 3.0
    output_cost_per_mtok: float = 15.0
    api_key: str = ""

    def validate(self) -> None:
        if self.provider not in _VALID_PROVIDERS:
            raise ValueError(
                f"provider must be one of {sorted(_VALID_PROVIDERS)}, got '{self.provider}'"
            )
        if not self.model:
            raise ValueError("model must not be empty")
        if not (0.0 <= self.temperature <= 2.0):
            raise ValueError(f"temperature must be in [0, 2], got {self.temperature}")
        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {self.max_tokens}")
        if self.input_cost_per_mtok < 0 or self.output_cost_per_mtok < 0:
            raise ValueError("token costs must be >= 0")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("api_key")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LLMSettings:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Pipeline Configuration                                                #
# ===================================================================== #

@dataclass(frozen=True)
class PipelineConfig:
    """Top-level pipeline configuration.

    Attributes
    ----------
    runner:
        Agent execution budget.
    llm:
        Text-completion settings.
    max_concurrency:
        Cap on agents running at once inside a stage (0 = unlimited).
    max_cost:
        Spend ceiling in USD for one run; once reached, remaining agents are
        recorded as failed without being invoked.  ``None`` disables it.
    default_analysis_type:
        Tier selection used when a caller names none.
    """

    runner: RunnerConfig = field(default_factory=RunnerConfig)
    llm: LLMSettings = field(default_factory=LLMSettings)
    max_concurrency: int = 0
    max_cost: float | None = None
    default_analysis_type: str = "full_analysis"

    def validate(self) -> None:
        self.runner.validate()
        self.llm.validate()
        if self.max_concurrency < 0:
            raise ValueError(f"max_concurrency must be >= 0, got {self.max_concurrency}")
        if self.max_cost is not None and self.max_cost <= 0:
            raise ValueError(f"max_cost must be > 0 when set, got {self.max_cost}")
        if self.default_analysis_type not in ANALYSIS_TYPES:
            raise ValueError(
                f"default_analysis_type must be one of {sorted(ANALYSIS_TYPES)}, "
                f"got '{self.default_analysis_type}'"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "runner": self.runner.to_dict(),
            "llm": self.llm.to_dict(),
            "pipeline": {
                "max_concurrency": self.max_concurrency,
                "max_cost": self.max_cost,
                "default_analysis_type": self.default_analysis_type,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        pipeline = data.get("pipeline") or {}
        cfg = cls(
            runner=RunnerConfig.from_dict(data.get("runner") or {}),
            llm=LLMSettings.from_dict(data.get("llm") or {}),
            max_concurrency=int(pipeline.get("max_concurrency", 0)),
            max_cost=pipeline.get("max_cost"),
            default_analysis_type=pipeline.get("default_analysis_type", "full_analysis"),
        )
        cfg.validate()
        return cfg


# ===================================================================== #
#  Loader                                                                #
# ===================================================================== #

def load_config(path: str | Path | None = None) -> PipelineConfig:
    """Load a :class:`PipelineConfig` from a YAML or JSON file.

    ``None`` returns the defaults.  The file format is chosen by suffix
    (``.json`` is parsed as JSON, anything else as YAML).
    """
    if path is None:
        cfg = PipelineConfig()
        cfg.validate()
        return cfg
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    raw = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Top-level config in {path} must be a mapping")
    return PipelineConfig.from_dict(raw)
