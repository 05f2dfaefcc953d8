"""Agent capability contract.

An agent is a value, not a subclass: a name, a tier, the names it depends
on, and an async ``run(context)`` callable returning a raw (untrusted)
payload.  The runner guards and scores whatever ``run`` returns.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from due_diligence.domain.enums import Tier
from due_diligence.domain.values import ScoringCriterion

if TYPE_CHECKING:
    from due_diligence.services.runner import RunContext

AgentCallable = Callable[["RunContext"], Awaitable[Any]]


@dataclass(frozen=True)
class AgentSpec:
    """Registry entry for one agent.

    Attributes
    ----------
    name:
        Unique registry name (e.g. ``"financial-auditor"``).
    run:
        Async callable producing the raw payload.
    tier:
        Execution phase.
    dependencies:
        Agents whose output this one reads.  Only affects ordering unless
        also listed in ``required``.
    required:
        Hard-required subset of ``dependencies``: when one of them has no
        successful result, the agent is not invoked.
    optional:
        A terminal failure of this agent does not prevent COMPLETED.
    sectors:
        Sector patterns matched by tier-2 experts.
    shape:
        Schema Guard shape (or pydantic model) for the payload; ``None``
        skips guarding.
    criteria:
        Metric Scorer criteria; empty keeps the self-reported score.
    """

    name: str
    run: AgentCallable
    tier: Tier = Tier.INVESTIGATION
    dependencies: tuple[str, ...] = ()
    required: tuple[str, ...] = ()
    optional: bool = False
    sectors: tuple[str, ...] = ()
    shape: Any = None
    criteria: tuple[ScoringCriterion, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Agent name must not be empty")
        for attr in ("dependencies", "required", "sectors", "criteria"):
            value = getattr(self, attr)
            if not isinstance(value, tuple):
                object.__setattr__(self, attr, tuple(value))
        object.__setattr__(self, "tier", Tier(self.tier))
        if self.name in self.dependencies:
            raise ValueError(f"Agent {self.name!r} cannot depend on itself")
        extra = set(self.required) - set(self.dependencies)
        if extra:
            # a hard requirement is always also a dependency
            object.__setattr__(
                self, "dependencies", self.dependencies + tuple(sorted(extra))
            )

    def is_hard_dependency(self, name: str) -> bool:
        return name in self.required

