"""Rich-based console rendering of analyses, plans and checkpoints."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.table import Table

from due_diligence.agents.base import AgentSpec
from due_diligence.domain.entities import Analysis
from due_diligence.domain.enums import AnalysisStatus, WarningSeverity
from due_diligence.domain.events import EarlyWarningRaised
from due_diligence.domain.values import CheckpointSnapshot, EarlyWarning
from due_diligence.services.early_warnings import summarize

_STATUS_COLOURS = {
    AnalysisStatus.PENDING: "cyan",
    AnalysisStatus.RUNNING: "yellow",
    AnalysisStatus.COMPLETED: "green",
    AnalysisStatus.FAILED: "red",
}

_SEVERITY_COLOURS = {
    WarningSeverity.CRITICAL: "bold red",
    WarningSeverity.HIGH: "red",
    WarningSeverity.MEDIUM: "yellow",
}


def _timestamp(value: float | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _score_colour(score: Any) -> str:
    if not isinstance(score, (int, float)):
        return "white"
    if score >= 70:
        return "green"
    if score >= 50:
        return "yellow"
    return "red"


class AnalysisDashboard:
    """Console presentation layer for the pipeline.

    Parameters
    ----------
    file:
        Output stream.  Defaults to ``sys.stdout``.
    colour:
        Disable to get plain text (e.g. when piping).
    """

    def __init__(self, file: Any = None, colour: bool = True) -> None:
        self._console = Console(file=file or sys.stdout, no_color=not colour, highlight=False)

    # -- public API --------------------------------------------------------

    def print_analysis(self, analysis: Analysis) -> None:
        """Print the status line and the per-agent result table."""
        colour = _STATUS_COLOURS[analysis.status]
        self._console.print()
        self._console.print(
            f"[bold]Analysis {analysis.analysis_id}[/bold]  deal={analysis.deal_id}  "
            f"type={analysis.analysis_type}  "
            f"status=[{colour}]{analysis.status.value}[/{colour}]"
        )
        self._console.print(
            f"  agents {analysis.completed_agents}/{analysis.total_agents}  "
            f"cost ${analysis.total_cost:.4f}  "
            f"started {_timestamp(analysis.started_at)}  "
            f"finished {_timestamp(analysis.completed_at)}"
        )

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Agent", style="bold")
        table.add_column("Result", justify="center")
        table.add_column("Score", justify="right")
        table.add_column("Grade", justify="center")
        table.add_column("Cost", justify="right")
        table.add_column("Time", justify="right")
        table.add_column("Detail")

        names = analysis.planned_agents or list(analysis.results)
        for name in names:
            result = analysis.results.get(name)
            if result is None:
                table.add_row(name, "[dim]pending[/dim]", "", "", "", "", "")
                continue
            data = result.data or {}
            score = data.get("score")
            sc = _score_colour(score)
            table.add_row(
                name,
                "[green]ok[/green]" if result.success else "[red]failed[/red]",
                f"[{sc}]{score}[/{sc}]" if score is not None else "",
                str(data.get("grade", "")),
                f"${result.cost:.4f}",
                f"{result.execution_time_ms} ms",
                result.error or str(data.get("summary", ""))[:80],
            )
        self._console.print(table)
        if analysis.early_warnings:
            self.print_warnings(analysis.early_warnings)
        self._console.print()

    def print_warnings(self, warnings: Sequence[EarlyWarning]) -> None:
        """Early warnings, most severe first."""
        summary = summarize(warnings)
        table = Table(title=summary.message, show_header=True, header_style="bold cyan")
        table.add_column("Severity")
        table.add_column("Agent")
        table.add_column("Warning")
        table.add_column("Category")
        table.add_column("Recommendation")
        for warning in sorted(warnings, key=lambda w: w.severity.rank):
            colour = _SEVERITY_COLOURS[warning.severity]
            table.add_row(
                f"[{colour}]{warning.severity.value}[/{colour}]",
                warning.agent_name,
                f"{warning.title}: {warning.description}",
                warning.category,
                warning.recommendation,
            )
        self._console.print(table)

    def print_warning_event(self, event: EarlyWarningRaised) -> None:
        """One live line per warning, for event-bus subscriptions."""
        colour = _SEVERITY_COLOURS[WarningSeverity(event.severity)]
        self._console.print(
            f"  [{colour}]warning[/{colour}] {event.agent_name}: {event.title} "
            f"({event.recommendation})"
        )

    def print_plan(self, stages: Sequence[Sequence[AgentSpec]]) -> None:
        table = Table(title="Execution plan", show_header=True, header_style="bold cyan")
        table.add_column("Stage", justify="right")
        table.add_column("Agents")
        for index, stage in enumerate(stages):
            table.add_row(str(index), ", ".join(a.name for a in stage))
        self._console.print(table)

    def print_checkpoints(self, history: Sequence[CheckpointSnapshot]) -> None:
        if not history:
            self._console.print("[dim]no checkpoints[/dim]")
            return
        table = Table(title="Checkpoints", show_header=True, header_style="bold cyan")
        table.add_column("Id")
        table.add_column("Label")
        table.add_column("Created")
        table.add_column("Completed", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Pending", justify="right")
        table.add_column("Cost", justify="right")
        for snapshot in history:
            table.add_row(
                snapshot.checkpoint_id,
                snapshot.label,
                _timestamp(snapshot.created_at),
                str(len(snapshot.completed_agents)),
                str(len(snapshot.failed_agents)),
                str(len(snapshot.pending_agents)),
                f"${snapshot.total_cost:.4f}",
            )
        self._console.print(table)

    def print_analyses(self, analyses: Sequence[Analysis], title: str) -> None:
        """One row per analysis, e.g. for the interrupted list."""
        if not analyses:
            self._console.print(f"[dim]{title}: none[/dim]")
            return
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("Analysis")
        table.add_column("Deal")
        table.add_column("Type")
        table.add_column("Status")
        table.add_column("Agents", justify="right")
        table.add_column("Cost", justify="right")
        table.add_column("Started")
        for analysis in analyses:
            colour = _STATUS_COLOURS[analysis.status]
            table.add_row(
                analysis.analysis_id,
                analysis.deal_id,
                analysis.analysis_type,
                f"[{colour}]{analysis.status.value}[/{colour}]",
                f"{analysis.completed_agents}/{analysis.total_agents}",
                f"${analysis.total_cost:.4f}",
                _timestamp(analysis.started_at),
            )
        self._console.print(table)

    def print(self, *objects: Any) -> None:
        self._console.print(*objects)
