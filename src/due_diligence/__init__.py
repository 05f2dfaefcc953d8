"""Due-diligence analysis pipeline.

Runs a team of analysis agents against a startup deal in dependency stages,
checkpoints progress after every stage and resumes interrupted or partially
failed analyses without re-running what already succeeded.
"""

__version__ = "0.1.0"

from due_diligence.agents.catalog import default_registry
from due_diligence.domain.entities import Analysis
from due_diligence.domain.values import AgentResult, DealContext, Document
from due_diligence.infrastructure.deals import FileDealProvider, InMemoryDealProvider
from due_diligence.infrastructure.registry import AgentRegistry
from due_diligence.infrastructure.storage.memory import InMemoryStore
from due_diligence.services.orchestrator import Orchestrator
from due_diligence.services.resume import ResumeController
from due_diligence.services.runner import AgentRunner

__all__ = [
    "Analysis",
    "AgentRegistry",
    "AgentResult",
    "AgentRunner",
    "DealContext",
    "Document",
    "FileDealProvider",
    "InMemoryDealProvider",
    "InMemoryStore",
    "Orchestrator",
    "ResumeController",
    "default_registry",
]
