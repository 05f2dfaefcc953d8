"""Public testing utilities for the due-diligence pipeline.

Provides scripted chat models and agents for writing self-contained examples
and tests without requiring API keys.
"""

from due_diligence.testing.mock_llm import ScriptedAgent, ScriptedChatModel

__all__ = ["ScriptedAgent", "ScriptedChatModel"]
