"""Domain enumerations for the due-diligence pipeline.

These enums capture the fixed vocabularies used across the domain layer:
analysis lifecycle statuses, agent tiers, the reliability grades attached
to extracted metrics and the severity of early warnings.
"""

from enum import Enum, IntEnum


class AnalysisStatus(Enum):
    """Lifecycle status of an Analysis run."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.COMPLETED, AnalysisStatus.FAILED)


class Tier(IntEnum):
    """Execution phase an agent belongs to."""

    INVESTIGATION = 1  # broad, mostly independent investigation
    SECTOR = 2  # exactly one sector expert per deal
    SYNTHESIS = 3  # consumes earlier verdicts


class DataReliability(Enum):
    """How far a metric value can be trusted."""

    AUDITED = "AUDITED"
    VERIFIED = "VERIFIED"
    DECLARED = "DECLARED"
    PROJECTED = "PROJECTED"
    ESTIMATED = "ESTIMATED"
    UNVERIFIABLE = "UNVERIFIABLE"

    @property
    def penalty(self) -> float:
        """Multiplier applied to a metric's percentile score."""
        return _PENALTIES.get(self, 1.0)

    @property
    def confidence(self) -> float:
        """Weight of a metric inside its criterion's mean."""
        return _CONFIDENCE[self]


_PENALTIES = {
    DataReliability.PROJECTED: 0.7,
    DataReliability.ESTIMATED: 0.8,
    DataReliability.UNVERIFIABLE: 0.5,
}

_CONFIDENCE = {
    DataReliability.AUDITED: 100.0,
    DataReliability.VERIFIED: 90.0,
    DataReliability.DECLARED: 70.0,
    DataReliability.PROJECTED: 50.0,
    DataReliability.ESTIMATED: 40.0,
    DataReliability.UNVERIFIABLE: 20.0,
}


class WarningSeverity(Enum):
    """How urgently an early warning needs attention."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    WarningSeverity.CRITICAL: 0,
    WarningSeverity.HIGH: 1,
    WarningSeverity.MEDIUM: 2,
}


# Named tier selections a caller may request.
ANALYSIS_TYPES: dict[str, tuple[Tier, ...]] = {
    "full_analysis": (Tier.INVESTIGATION, Tier.SECTOR, Tier.SYNTHESIS),
    "tier1_complete": (Tier.INVESTIGATION,),
    "tier2_sector": (Tier.SECTOR,),
    "tier3_synthesis": (Tier.SYNTHESIS,),
}
