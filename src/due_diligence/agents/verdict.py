"""Payload schemas for the built-in agents.

The models describe the JSON object each agent is prompted to return.  They
are never used to *validate* replies: the Schema Guard derives a shape from
them and coerces whatever the completion contained, recording every field it
had to default.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

# -- Shared pieces -----------------------------------------------------------


class MetricItem(BaseModel):
    """One quantitative metric extracted from the deal material."""

    name: str = Field(description="Metric identifier, e.g. 'arr' or 'nrr'")
    value: float | None = Field(default=None, description="Numeric value, no units")
    unit: str = ""
    source: str = Field(default="", description="Where the value was found")
    reliability: Literal[
        "AUDITED", "VERIFIED", "DECLARED", "PROJECTED", "ESTIMATED", "UNVERIFIABLE"
    ] = "DECLARED"
    category: str = ""


class RedFlag(BaseModel):
    title: str
    severity: Literal["critical", "high", "medium", "low"] = "medium"
    evidence: str = ""


class Question(BaseModel):
    question: str
    priority: Literal["must_ask", "should_ask", "nice_to_have"] = "should_ask"
    rationale: str = ""


# -- Tier 1 ------------------------------------------------------------------


class AgentVerdict(BaseModel):
    """Verdict of one investigation agent."""

    summary: str = Field(default="", description="Two or three sentence assessment")
    score: int = Field(default=50, ge=0, le=100, description="Self-assessed score [0, 100]")
    confidence: float = Field(default=0.5, ge=0, le=1)
    strengths: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)
    red_flags: list[RedFlag] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)
    metrics: list[MetricItem] = Field(default_factory=list)


# -- Tier 2 ------------------------------------------------------------------


class SectorVerdict(BaseModel):
    """Verdict of the sector expert chosen for the deal."""

    sector_name: str = ""
    sector_maturity: Literal["emerging", "growing", "mature", "declining"] = "growing"
    summary: str = ""
    score: int = Field(default=50, ge=0, le=100)
    competition_intensity: Literal["low", "moderate", "high", "intense"] = "moderate"
    regulatory_complexity: Literal["low", "medium", "high", "very_high"] = "medium"
    key_regulations: list[str] = Field(default_factory=list)
    sector_red_flags: list[RedFlag] = Field(default_factory=list)
    sector_questions: list[Question] = Field(default_factory=list)
    metrics: list[MetricItem] = Field(default_factory=list)


# -- Tier 3 ------------------------------------------------------------------


class Scenario(BaseModel):
    name: Literal["bear", "base", "bull"] = "base"
    probability: float = Field(default=0.0, ge=0, le=1)
    exit_multiple: float = Field(default=0.0, ge=0)
    narrative: str = ""


class SynthesisVerdict(BaseModel):
    """Verdict of a synthesis agent (scorer, challenger, memo writer, ...)."""

    summary: str = ""
    score: int = Field(default=50, ge=0, le=100)
    recommendation: Literal["invest", "pass", "watch", "more_dd_needed"] = "more_dd_needed"
    confidence: float = Field(default=0.5, ge=0, le=1)
    contradictions: list[str] = Field(default_factory=list)
    scenarios: list[Scenario] = Field(default_factory=list)
    key_risks: list[RedFlag] = Field(default_factory=list)
    questions: list[Question] = Field(default_factory=list)
    memo: str | None = None
