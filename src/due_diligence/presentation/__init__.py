"""Presentation layer: rich console rendering for the CLI."""

from due_diligence.presentation.console import AnalysisDashboard

__all__ = ["AnalysisDashboard"]
