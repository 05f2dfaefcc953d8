"""Built-in agent catalogue.

:func:`default_registry` returns a registry holding the standard team:

* tier 1 -- twelve investigation agents, each scored against its own
  criteria table;
* tier 2 -- twenty sector experts plus ``general-expert``, the fallback for
  sectors no expert claims;
* tier 3 -- five synthesis agents.  The contradiction detector, scenario
  modeler and devil's advocate read every earlier verdict; the deal scorer
  reads theirs; the memo generator cannot run without the deal scorer.

Sector experts are registered in precedence order: when two experts match a
sector with equally long patterns, the earlier one wins.
"""

from __future__ import annotations

from due_diligence.agents import criteria
from due_diligence.agents.base import AgentSpec
from due_diligence.agents.prompted import PromptedAgent
from due_diligence.agents.verdict import AgentVerdict, SectorVerdict, SynthesisVerdict
from due_diligence.domain.enums import Tier
from due_diligence.infrastructure.registry import AgentRegistry

# ===================================================================== #
#  Tier 1: investigation                                                 #
# ===================================================================== #

#: name -> (role, instructions)
INVESTIGATION_AGENTS: dict[str, tuple[str, str]] = {
    "deck-forensics": (
        "a pitch-deck forensic analyst",
        "Check the deck's narrative for coherence, verify its claims against the "
        "other material and list every inconsistency.",
    ),
    "financial-auditor": (
        "a forensic financial auditor",
        "Assess revenue quality, growth, unit economics, burn and valuation. "
        "Extract every financial metric you can find.",
    ),
    "market-intelligence": (
        "a market intelligence analyst",
        "Validate the TAM, SAM and SOM claims, the market growth rate and the "
        "timing of the opportunity.",
    ),
    "competitive-intel": (
        "a competitive intelligence analyst",
        "Map direct and indirect competitors, assess the moat and flag "
        "competitors the deck omits.",
    ),
    "team-investigator": (
        "a founder and team investigator",
        "Assess domain expertise, track record, completeness and cohesion of "
        "the founding team.",
    ),
    "technical-dd": (
        "a technical due-diligence lead",
        "Assess product maturity, the technology stack, scalability, security "
        "posture and technical debt.",
    ),
    "legal-regulatory": (
        "a legal and regulatory counsel",
        "Review corporate structure, compliance gaps, IP ownership and "
        "regulatory or litigation exposure.",
    ),
    "cap-table-auditor": (
        "a cap-table auditor",
        "Check ownership, dilution, ESOP adequacy, investor terms and "
        "governance balance.",
    ),
    "gtm-analyst": (
        "a go-to-market analyst",
        "Assess channels, sales efficiency, CAC payback and the scalability of "
        "the go-to-market motion.",
    ),
    "customer-intel": (
        "a customer intelligence analyst",
        "Assess customer quality, retention, product-market-fit signals and "
        "revenue concentration.",
    ),
    "exit-strategist": (
        "an exit strategist",
        "Assess realistic exit routes, comparable exits, expected multiples "
        "and time to liquidity.",
    ),
    "question-master": (
        "the due-diligence question master",
        "Turn the findings of the other analysts into the questions the "
        "founders must answer, ranked by priority, and name any dealbreaker.",
    ),
}

# question-master works from the other investigators' findings
QUESTION_MASTER_READS = tuple(n for n in INVESTIGATION_AGENTS if n != "question-master")

# ===================================================================== #
#  Tier 2: sector experts                                                #
# ===================================================================== #

SECTOR_EXPERTS: dict[str, tuple[str, ...]] = {
    "legaltech-expert": (
        "legaltech", "legal tech", "law tech", "legal software", "clm",
        "contract lifecycle management", "legal practice management", "legal research",
        "e-discovery", "ediscovery", "legal ai", "legal marketplace", "legal ops", "regtech",
    ),
    "hrtech-expert": (
        "hrtech", "hr tech", "hr software", "human resources", "people tech", "talent tech",
        "workforce", "wfm", "payroll", "hris", "hcm", "ats", "applicant tracking",
        "recruiting", "recruitment", "talent management", "talent acquisition",
        "benefits administration", "benefits tech", "employee engagement",
        "performance management", "compensation", "comp tech", "peo", "eor",
        "employer of record",
    ),
    "saas-expert": ("saas", "b2b software", "enterprise software", "software"),
    "proptech-expert": (
        "proptech", "prop tech", "real estate tech", "real estate", "construction tech",
        "contech", "mortgage tech", "cre tech", "commercial real estate", "co-working",
        "coworking", "smart building",
    ),
    "marketplace-expert": ("marketplace", "platform", "two-sided"),
    "fintech-expert": (
        "fintech", "payments", "banking", "insurance", "insurtech", "lending",
        "wealthtech", "neobank",
    ),
    "biotech-expert": (
        "biotech", "life sciences", "pharma", "drug discovery", "therapeutics", "biopharma",
        "gene therapy", "cell therapy", "biologics", "pharmaceuticals", "oncology",
        "immunotherapy",
    ),
    "healthtech-expert": (
        "healthtech", "medtech", "healthcare", "digital health", "femtech",
        "mental health", "telehealth",
    ),
    "ai-expert": (
        "ai", "ai/ml", "ai / machine learning", "ml", "machine learning", "llm", "genai",
        "generative ai", "nlp", "computer vision", "deep learning", "mlops",
    ),
    "cybersecurity-expert": (
        "cybersecurity", "cyber", "infosec", "information security", "security software",
        "network security", "endpoint security", "cloud security", "application security",
        "appsec", "devsecops", "security", "siem", "soar", "xdr", "edr", "iam", "identity",
        "zero trust", "threat intelligence", "vulnerability management", "mssp", "soc",
    ),
    "deeptech-expert": ("deeptech", "quantum"),
    "foodtech-expert": (
        "foodtech", "food tech", "food", "f&b", "agtech", "agritech", "alt protein",
        "alternative protein", "meal kit", "dark kitchen", "ghost kitchen",
        "vertical farming", "plant-based", "cpg food", "food & beverage",
    ),
    "climate-expert": ("cleantech", "climate", "energy", "sustainability", "greentech"),
    "spacetech-expert": (
        "spacetech", "space tech", "space", "aerospace", "newspace", "new space",
        "satellite", "satellites", "launch", "launcher", "rocket", "earth observation",
        "eo", "leo", "geo", "constellation", "space infrastructure", "in-space", "orbital",
    ),
    "hardware-expert": ("hardware", "iot", "robotics", "manufacturing", "industrial", "drones"),
    "creator-expert": (
        "creator economy", "creator", "influencer", "influencer marketing", "podcasting",
        "podcast", "newsletter", "streaming", "ugc", "user generated content",
        "creator tools", "creator platform", "patreon", "substack", "youtube", "tiktok",
        "twitch", "mcn", "multi-channel network", "digital media",
    ),
    "gaming-expert": ("gaming", "esports", "metaverse", "vr", "ar", "entertainment", "media tech"),
    "edtech-expert": (
        "edtech", "ed tech", "education", "education technology", "e-learning",
        "online learning", "learning platform", "corporate learning", "l&d", "k-12",
        "higher ed",
    ),
    "mobility-expert": (
        "mobility", "transportation", "logistics", "ridesharing", "rideshare",
        "micromobility", "fleet", "fleet management", "delivery", "last-mile", "last mile",
        "maas", "mobility as a service", "transit", "freight", "trucking", "shipping",
        "supply chain",
    ),
    "consumer-expert": ("consumer", "d2c", "social", "e-commerce", "retail", "lifestyle"),
}

DEFAULT_EXPERT = "general-expert"

EXPERT_INSTRUCTIONS = (
    "Judge the deal against the standards of its sector: benchmark its metrics "
    "against sector norms, assess sector dynamics and regulation, and list the "
    "sector-specific red flags and questions."
)

# ===================================================================== #
#  Tier 3: synthesis                                                     #
# ===================================================================== #

SYNTHESIS_AGENTS: dict[str, tuple[str, str]] = {
    "contradiction-detector": (
        "a contradiction detector",
        "Cross-check every earlier verdict and list the claims and findings that "
        "contradict each other, with their sources.",
    ),
    "scenario-modeler": (
        "a scenario modeler",
        "Build bear, base and bull scenarios with probabilities and exit "
        "multiples grounded in the earlier findings.",
    ),
    "devils-advocate": (
        "the devil's advocate",
        "Argue the strongest case against investing and name the risks the "
        "other analysts underweighted.",
    ),
    "synthesis-deal-scorer": (
        "the synthesis deal scorer",
        "Weigh every verdict into a final deal score and an investment "
        "recommendation, explaining the main drivers.",
    ),
    "memo-generator": (
        "an investment memo writer",
        "Write the investment memo: thesis, key metrics, risks, scenarios, "
        "open questions and the recommendation of the deal scorer.",
    ),
}

CROSS_CHECKERS = ("contradiction-detector", "scenario-modeler", "devils-advocate")


def default_registry() -> AgentRegistry:
    """Registry populated with the built-in catalogue."""
    registry = AgentRegistry()
    register_investigation_agents(registry)
    register_sector_experts(registry)
    register_synthesis_agents(registry)
    return registry


def register_investigation_agents(registry: AgentRegistry) -> None:
    for name, (role, instructions) in INVESTIGATION_AGENTS.items():
        reads = QUESTION_MASTER_READS if name == "question-master" else ()
        registry.register(
            AgentSpec(
                name=name,
                run=PromptedAgent(role, instructions, AgentVerdict, reads=reads),
                tier=Tier.INVESTIGATION,
                dependencies=reads,
                shape=AgentVerdict,
                criteria=criteria.BY_AGENT[name],
                description=instructions,
            )
        )


def register_sector_experts(registry: AgentRegistry) -> None:
    for name, patterns in SECTOR_EXPERTS.items():
        sector = name.removesuffix("-expert")
        registry.register(
            AgentSpec(
                name=name,
                run=PromptedAgent(f"the {sector} sector expert", EXPERT_INSTRUCTIONS, SectorVerdict),
                tier=Tier.SECTOR,
                sectors=patterns,
                shape=SectorVerdict,
                description=f"Sector expert for {sector} deals.",
            )
        )
    registry.register(
        AgentSpec(
            name=DEFAULT_EXPERT,
            run=PromptedAgent(
                "a generalist sector analyst",
                EXPERT_INSTRUCTIONS + " First identify the sector and its closest peers.",
                SectorVerdict,
            ),
            tier=Tier.SECTOR,
            shape=SectorVerdict,
            description="Fallback expert for sectors no specialist covers.",
        ),
        default_expert=True,
    )


def register_synthesis_agents(registry: AgentRegistry) -> None:
    # every expert is listed; only the one planned for a deal orders anything
    upstream = (*INVESTIGATION_AGENTS, *SECTOR_EXPERTS, DEFAULT_EXPERT)
    layout: dict[str, dict[str, tuple[str, ...]]] = {
        "contradiction-detector": {"dependencies": upstream},
        "scenario-modeler": {"dependencies": upstream},
        "devils-advocate": {"dependencies": upstream},
        "synthesis-deal-scorer": {"dependencies": (*upstream, *CROSS_CHECKERS)},
        "memo-generator": {
            "dependencies": (*upstream, *CROSS_CHECKERS),
            "required": ("synthesis-deal-scorer",),
        },
    }
    for name, (role, instructions) in SYNTHESIS_AGENTS.items():
        wiring = layout[name]
        registry.register(
            AgentSpec(
                name=name,
                run=PromptedAgent(role, instructions, SynthesisVerdict),
                tier=Tier.SYNTHESIS,
                dependencies=wiring["dependencies"],
                required=wiring.get("required", ()),
                optional=name == "devils-advocate",
                shape=SynthesisVerdict,
                description=instructions,
            )
        )
