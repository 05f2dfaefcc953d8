"""Early warnings: spot potential dealbreakers as agent results arrive.

Every successful result merged into an analysis is checked against a table of
:class:`WarningRule` entries.  A rule names an agent (or ``"*"`` for any), a
dotted field path into the result payload and a condition; when it holds, an
:class:`~due_diligence.domain.values.EarlyWarning` is recorded on the analysis
and an ``EarlyWarningRaised`` event is published.  Warnings never stop a run.

Field paths use ``.`` between keys and ``*`` to fan out over list items, so
``red_flags.*.severity`` reads the severity of every red flag.  A rule holds
when any resolved value satisfies its condition.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from due_diligence.domain.entities import Analysis
from due_diligence.domain.enums import WarningSeverity
from due_diligence.domain.events import EarlyWarningRaised
from due_diligence.domain.values import AgentResult, EarlyWarning

logger = logging.getLogger(__name__)

ANY_AGENT = "*"
MAX_EVIDENCE = 5

Condition = Literal["equals", "below", "above", "contains", "exists"]

# Risk family used when a rule applies to any agent.
CATEGORY_BY_AGENT: dict[str, str] = {
    "deck-forensics": "founder_integrity",
    "financial-auditor": "financial_critical",
    "market-intelligence": "market_dead",
    "competitive-intel": "product_broken",
    "team-investigator": "founder_integrity",
    "technical-dd": "product_broken",
    "legal-regulatory": "legal_existential",
    "cap-table-auditor": "deal_structure",
    "gtm-analyst": "financial_critical",
    "customer-intel": "product_broken",
    "exit-strategist": "deal_structure",
}
DEFAULT_CATEGORY = "founder_integrity"

# Payload lists whose first entries are quoted as evidence.
_EVIDENCE_FIELDS = ("red_flags", "sector_red_flags", "key_risks", "concerns", "contradictions")


# ===================================================================== #
#  Rules                                                                 #
# ===================================================================== #

@dataclass(frozen=True)
class WarningRule:
    """One detection rule.

    ``description`` may use ``{value}`` (the triggering value) and
    ``{agent}``.  ``category=None`` takes the agent's family from
    :data:`CATEGORY_BY_AGENT`.
    """

    agent: str
    field: str
    condition: Condition
    severity: WarningSeverity
    title: str
    description: str
    threshold: Any = None
    category: str | None = None
    recommendation: str = "investigate"
    questions: tuple[str, ...] = ()

    def applies_to(self, agent_name: str) -> bool:
        return self.agent in (ANY_AGENT, agent_name)

    def triggers(self, values: Sequence[Any]) -> list[Any]:
        """The values among *values* that satisfy this rule."""
        return [v for v in values if _holds(self.condition, v, self.threshold)]


DEFAULT_RULES: tuple[WarningRule, ...] = (
    WarningRule(
        agent=ANY_AGENT,
        field="red_flags.*.severity",
        condition="equals",
        threshold="critical",
        severity=WarningSeverity.CRITICAL,
        title="Critical Red Flag Reported",
        description="{agent} reported at least one red flag of critical severity.",
        recommendation="likely_dealbreaker",
        questions=("What specific critical issue was identified?", "Can it be mitigated?"),
    ),
    WarningRule(
        agent=ANY_AGENT,
        field="sector_red_flags.*.severity",
        condition="equals",
        threshold="critical",
        severity=WarningSeverity.CRITICAL,
        category="market_dead",
        title="Critical Sector Risk",
        description="The sector expert flagged a critical sector-specific risk.",
        recommendation="likely_dealbreaker",
    ),
    WarningRule(
        agent=ANY_AGENT,
        field="regulatory_complexity",
        condition="equals",
        threshold="very_high",
        severity=WarningSeverity.MEDIUM,
        category="legal_existential",
        title="Very High Regulatory Complexity",
        description="The sector carries very high regulatory complexity.",
        questions=("Which licences or approvals are still outstanding?",),
    ),
    WarningRule(
        agent="financial-auditor",
        field="score",
        condition="below",
        threshold=20,
        severity=WarningSeverity.CRITICAL,
        category="financial_critical",
        title="Financial Metrics Below Viability Threshold",
        description="Financial score of {value}/100 indicates fundamental business model issues.",
        recommendation="likely_dealbreaker",
        questions=(
            "What explains the weak financial metrics?",
            "Is there a path to profitable unit economics?",
        ),
    ),
    WarningRule(
        agent="legal-regulatory",
        field="score",
        condition="below",
        threshold=25,
        severity=WarningSeverity.CRITICAL,
        category="legal_existential",
        title="Critical Legal Exposure",
        description="Legal score of {value}/100 points to licence, compliance or litigation risk.",
        recommendation="likely_dealbreaker",
        questions=("Is there pending regulatory action?", "What is the cost to comply?"),
    ),
    WarningRule(
        agent="team-investigator",
        field="score",
        condition="below",
        threshold=25,
        severity=WarningSeverity.HIGH,
        category="founder_integrity",
        title="Team Assessment Critical",
        description="Team score of {value}/100 indicates significant gaps or concerns.",
        questions=("What are the key team gaps?", "Are there background verification issues?"),
    ),
    WarningRule(
        agent="competitive-intel",
        field="score",
        condition="below",
        threshold=25,
        severity=WarningSeverity.HIGH,
        category="product_broken",
        title="Weak Competitive Position",
        description="Competitive score of {value}/100 indicates a vulnerable market position.",
        questions=("What prevents competitors from copying this?",),
    ),
    WarningRule(
        agent="market-intelligence",
        field="score",
        condition="below",
        threshold=25,
        severity=WarningSeverity.HIGH,
        category="market_dead",
        title="Market Opportunity In Doubt",
        description="Market score of {value}/100 questions the size or timing of the market.",
        questions=("What sources support the market size claims?",),
    ),
    WarningRule(
        agent="cap-table-auditor",
        field="score",
        condition="below",
        threshold=30,
        severity=WarningSeverity.HIGH,
        category="deal_structure",
        title="Problematic Cap Table Structure",
        description="Cap table score of {value}/100 indicates structural issues.",
        questions=("Can the cap table be cleaned up before investment?",),
    ),
    WarningRule(
        agent="customer-intel",
        field="score",
        condition="below",
        threshold=25,
        severity=WarningSeverity.HIGH,
        category="product_broken",
        title="Weak Product-Market Fit Signals",
        description="Customer score of {value}/100 indicates fundamental adoption challenges.",
        questions=("What evidence is there of product-market fit?",),
    ),
    WarningRule(
        agent="devils-advocate",
        field="key_risks.*.severity",
        condition="equals",
        threshold="critical",
        severity=WarningSeverity.CRITICAL,
        category="product_broken",
        title="Devil's Advocate: Dealbreakers Found",
        description="Critical review identified potential dealbreaking scenarios.",
        recommendation="likely_dealbreaker",
    ),
    WarningRule(
        agent="synthesis-deal-scorer",
        field="recommendation",
        condition="equals",
        threshold="pass",
        severity=WarningSeverity.CRITICAL,
        category="financial_critical",
        title="Pass Recommendation",
        description="The synthesis scorer recommends passing on this deal.",
        recommendation="likely_dealbreaker",
    ),
    WarningRule(
        agent="synthesis-deal-scorer",
        field="score",
        condition="below",
        threshold=30,
        severity=WarningSeverity.CRITICAL,
        category="financial_critical",
        title="Very Low Overall Score",
        description="Overall score of {value}/100 indicates issues across several dimensions.",
        recommendation="likely_dealbreaker",
    ),
)


def resolve(data: Any, path: str) -> list[Any]:
    """Values found at dotted *path* in *data*; ``*`` fans out over lists."""
    current = [data]
    for part in path.split("."):
        found: list[Any] = []
        for value in current:
            if part == "*":
                if isinstance(value, (list, tuple)):
                    found.extend(value)
            elif isinstance(value, Mapping) and part in value:
                found.append(value[part])
        current = found
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _holds(condition: Condition, value: Any, threshold: Any) -> bool:
    if condition == "equals":
        return value is not None and str(value).lower() == str(threshold).lower()
    if condition == "below":
        return _is_number(value) and value < threshold
    if condition == "above":
        return _is_number(value) and value > threshold
    if condition == "contains":
        needles = threshold if isinstance(threshold, (list, tuple)) else (threshold,)
        text = str(value).lower()
        return value is not None and any(str(n).lower() in text for n in needles)
    if condition == "exists":
        if isinstance(value, (list, tuple, Mapping, str)):
            return len(value) > 0
        return value is not None
    raise ValueError(f"Unknown condition {condition!r}")


def _display(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _excerpt(item: Any) -> str:
    if isinstance(item, Mapping):
        title = item.get("title") or item.get("name") or ""
        evidence = item.get("evidence") or ""
        return f"{title} ({evidence})" if title and evidence else str(title or evidence)
    return str(item)


# ===================================================================== #
#  Detection                                                             #
# ===================================================================== #

@dataclass(frozen=True)
class WarningSummary:
    """Counts and a one-line verdict over a set of warnings."""

    total: int
    critical: int
    high: int
    message: str

    @property
    def has_critical(self) -> bool:
        return self.critical > 0


def summarize(warnings: Sequence[EarlyWarning]) -> WarningSummary:
    critical = sum(1 for w in warnings if w.severity is WarningSeverity.CRITICAL)
    high = sum(1 for w in warnings if w.severity is WarningSeverity.HIGH)
    if critical:
        message = f"{critical} critical warning(s): potential dealbreakers identified"
    elif high:
        message = f"{high} high-priority warning(s) need investigation before proceeding"
    elif warnings:
        message = f"{len(warnings)} warning(s) raised, review recommended"
    else:
        message = "No early warnings"
    return WarningSummary(total=len(warnings), critical=critical, high=high, message=message)


class EarlyWarningDetector:
    """Checks agent results against a rule table.

    Parameters
    ----------
    rules:
        Detection rules; defaults to :data:`DEFAULT_RULES`.
    """

    def __init__(self, rules: Iterable[WarningRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def detect(self, result: AgentResult) -> list[EarlyWarning]:
        """Warnings raised by one result.  Failed results raise none."""
        if not result.success or not result.data:
            return []
        data = result.data
        warnings: list[EarlyWarning] = []
        for rule in self.rules:
            if not rule.applies_to(result.agent_name):
                continue
            triggered = rule.triggers(resolve(data, rule.field))
            if not triggered:
                continue
            value = triggered[0]
            warnings.append(
                EarlyWarning(
                    agent_name=result.agent_name,
                    severity=rule.severity,
                    category=rule.category
                    or CATEGORY_BY_AGENT.get(result.agent_name, DEFAULT_CATEGORY),
                    title=rule.title,
                    description=rule.description.format(
                        value=_display(value), agent=result.agent_name
                    ),
                    recommendation=rule.recommendation,
                    evidence=self._evidence(data, rule, value),
                    questions=rule.questions,
                    confidence=self._confidence(data),
                )
            )
        return warnings

    def record(self, analysis: Analysis, result: AgentResult) -> list[EarlyWarning]:
        """Detect warnings for *result* and add the new ones to *analysis*."""
        added = analysis.add_warnings(self.detect(result))
        for warning in added:
            logger.warning(
                "Early warning on %s from %s [%s]: %s",
                analysis.analysis_id,
                warning.agent_name,
                warning.severity.value,
                warning.title,
            )
        return added

    @staticmethod
    def _evidence(data: Mapping[str, Any], rule: WarningRule, value: Any) -> tuple[str, ...]:
        evidence = [f"{rule.field}: {_display(value)}"]
        for name in _EVIDENCE_FIELDS:
            items = data.get(name)
            if isinstance(items, (list, tuple)):
                evidence.extend(_excerpt(item) for item in items[:3])
        return tuple(e for e in evidence if e)[:MAX_EVIDENCE]

    @staticmethod
    def _confidence(data: Mapping[str, Any]) -> int:
        confidence = data.get("confidence")
        if _is_number(confidence) and 0 <= confidence <= 1:
            return int(round(confidence * 100))
        return 85


def warning_event(source_id: str, analysis_id: str, warning: EarlyWarning) -> EarlyWarningRaised:
    return EarlyWarningRaised(
        source_id=source_id,
        analysis_id=analysis_id,
        agent_name=warning.agent_name,
        severity=warning.severity.value,
        category=warning.category,
        title=warning.title,
        recommendation=warning.recommendation,
    )
