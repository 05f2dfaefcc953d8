"""Agent contract, payload schemas and the built-in catalogue.

Import the catalogue explicitly (``due_diligence.agents.catalog``); this
package only exposes the contract so the service layer can depend on it.
"""

from due_diligence.agents.base import AgentCallable, AgentSpec

__all__ = ["AgentCallable", "AgentSpec"]
