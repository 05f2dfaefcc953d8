"""Agent registry for the due-diligence pipeline.

Maps agent names to :class:`~due_diligence.agents.base.AgentSpec` entries,
either via the ``@registry.agent(...)`` decorator or the imperative
``registry.register(spec)`` API, and answers the one planning question the
orchestrator asks: which agents run for a deal in a given sector and set of
tiers.

Exactly one tier-2 sector expert is selected per deal.  Experts declare
sector patterns; the expert with the longest matching pattern wins, ties go
to the earliest registration, and a deal without a sector (or without a
match) gets the default expert.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from due_diligence.agents.base import AgentCallable, AgentSpec
from due_diligence.domain.enums import Tier
from due_diligence.domain.exceptions import UnknownSectorConfiguration
from due_diligence.domain.values import ScoringCriterion

logger = logging.getLogger(__name__)

# Patterns this short only match whole words ("ai" must not match "retail").
SHORT_PATTERN_LENGTH = 3


def normalize_sector(sector: str | None) -> str:
    return " ".join((sector or "").lower().split())


def sector_matches(pattern: str, sector: str) -> bool:
    """Whether *pattern* matches the normalized *sector* string."""
    pattern = normalize_sector(pattern)
    if not pattern or not sector:
        return False
    if len(pattern) <= SHORT_PATTERN_LENGTH:
        return re.search(rf"(^|[\s/,\-]){re.escape(pattern)}($|[\s/,\-])", sector) is not None
    return pattern in sector


class AgentRegistry:
    """Name-keyed registry of agent specs.

    Usage -- decorator style::

        @registry.agent("financial-auditor", criteria=FINANCIAL_CRITERIA)
        async def financial_auditor(context):
            ...

    Usage -- imperative style::

        registry.register(AgentSpec(name="exit-strategist", run=run_exit))
    """

    def __init__(self) -> None:
        # name -> spec, in registration order
        self._agents: dict[str, AgentSpec] = {}
        self._default_expert: str | None = None

    # ------------------------------------------------------------------ #
    #  Registration                                                       #
    # ------------------------------------------------------------------ #

    def register(
        self,
        spec: AgentSpec,
        *,
        overwrite: bool = False,
        default_expert: bool = False,
    ) -> AgentSpec:
        """Register *spec*.

        Parameters
        ----------
        overwrite:
            If ``True``, silently replace an existing registration.
            Otherwise raise ``ValueError`` on duplicates.
        default_expert:
            Make this tier-2 agent the fallback sector expert.
        """
        if not overwrite and spec.name in self._agents:
            raise ValueError(
                f"Agent '{spec.name}' is already registered. Pass overwrite=True to replace."
            )
        if default_expert and spec.tier is not Tier.SECTOR:
            raise ValueError(f"Default expert '{spec.name}' must be a tier-2 agent")
        self._agents[spec.name] = spec
        if default_expert:
            self._default_expert = spec.name
        logger.debug("Registered agent %s (tier %d)", spec.name, spec.tier)
        return spec

    def agent(
        self,
        name: str,
        *,
        tier: Tier = Tier.INVESTIGATION,
        dependencies: Sequence[str] = (),
        required: Sequence[str] = (),
        optional: bool = False,
        sectors: Sequence[str] = (),
        shape: Any = None,
        criteria: Sequence[ScoringCriterion] = (),
        description: str = "",
        default_expert: bool = False,
        overwrite: bool = False,
    ) -> Callable[[AgentCallable], AgentCallable]:
        """Decorator that registers an async function as an agent."""

        def decorator(fn: AgentCallable) -> AgentCallable:
            self.register(
                AgentSpec(
                    name=name,
                    run=fn,
                    tier=tier,
                    dependencies=tuple(dependencies),
                    required=tuple(required),
                    optional=optional,
                    sectors=tuple(sectors),
                    shape=shape,
                    criteria=tuple(criteria),
                    description=description or (fn.__doc__ or "").strip(),
                ),
                overwrite=overwrite,
                default_expert=default_expert,
            )
            return fn

        return decorator

    # ------------------------------------------------------------------ #
    #  Lookup                                                              #
    # ------------------------------------------------------------------ #

    def get(self, name: str) -> AgentSpec:
        """Return the spec registered under *name*.

        Raises ``KeyError`` if not found.
        """
        try:
            return self._agents[name]
        except KeyError:
            raise KeyError(
                f"Agent '{name}' not registered. Available: {self.names()}"
            ) from None

    def get_or_none(self, name: str) -> AgentSpec | None:
        return self._agents.get(name)

    def has(self, name: str) -> bool:
        """Return ``True`` if *name* is registered."""
        return name in self._agents

    def names(self, tier: Tier | None = None) -> list[str]:
        """Registered names in registration order, optionally for one tier."""
        return [n for n, s in self._agents.items() if tier is None or s.tier is tier]

    @property
    def default_expert(self) -> AgentSpec | None:
        return self._agents.get(self._default_expert) if self._default_expert else None

    # ------------------------------------------------------------------ #
    #  Planning                                                            #
    # ------------------------------------------------------------------ #

    def resolve_sector_expert(self, sector: str | None) -> AgentSpec:
        """Return the single tier-2 expert for *sector*.

        Raises
        ------
        UnknownSectorConfiguration
            If nothing matches and no default expert is registered.
        """
        normalized = normalize_sector(sector)
        best: AgentSpec | None = None
        best_length = 0
        if normalized:
            for spec in self._agents.values():
                if spec.tier is not Tier.SECTOR:
                    continue
                for pattern in spec.sectors:
                    length = len(normalize_sector(pattern))
                    if length > best_length and sector_matches(pattern, normalized):
                        best, best_length = spec, length
        if best is not None:
            logger.debug("Sector %r resolved to %s", sector, best.name)
            return best
        default = self.default_expert
        if default is None:
            raise UnknownSectorConfiguration(
                f"No sector expert matches {sector!r} and no default expert is registered",
                sector=sector,
            )
        logger.debug("Sector %r fell back to default expert %s", sector, default.name)
        return default

    def agents_for(self, sector: str | None, tiers: Iterable[Tier | int]) -> list[AgentSpec]:
        """Ordered agents for a deal: tiers ascending, registration order
        inside a tier, and exactly one expert for tier 2."""
        selected: list[AgentSpec] = []
        for tier in sorted({Tier(t) for t in tiers}):
            if tier is Tier.SECTOR:
                selected.append(self.resolve_sector_expert(sector))
            else:
                selected.extend(s for s in self._agents.values() if s.tier is tier)
        return selected

    # ------------------------------------------------------------------ #
    #  Removal / lifecycle                                                 #
    # ------------------------------------------------------------------ #

    def unregister(self, name: str) -> AgentSpec:
        """Remove and return a spec. Raises ``KeyError`` if missing."""
        try:
            spec = self._agents.pop(name)
        except KeyError:
            raise KeyError(f"Cannot unregister '{name}': not found.") from None
        if self._default_expert == name:
            self._default_expert = None
        return spec

    def clear(self) -> None:
        self._agents.clear()
        self._default_expert = None

    # ------------------------------------------------------------------ #
    #  Dunder helpers                                                      #
    # ------------------------------------------------------------------ #

    def __repr__(self) -> str:
        counts = {tier.name.lower(): len(self.names(tier)) for tier in Tier}
        parts = [f"{name}({count})" for name, count in counts.items()]
        return f"<AgentRegistry [{', '.join(parts)}]>"

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name in self._agents

    def __len__(self) -> int:
        return len(self._agents)
