"""Command-line interface for the due-diligence pipeline.

Provides subcommands for running an analysis on a deal, resuming an
interrupted one, inspecting stored analyses and querying package
information.

Entry point
-----------
The ``main()`` function is registered as a console script in
``pyproject.toml``::

    [project.scripts]
    due-diligence = "due_diligence.cli:main"

Usage examples::

    due-diligence run acme --deals ./deals --db sqlite:///dd.db
    due-diligence run acme --type tier1_complete --plan-only
    due-diligence interrupted --db sqlite:///dd.db
    due-diligence resume 3f2a... --db sqlite:///dd.db
    due-diligence show 3f2a... --checkpoints
    due-diligence info
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any

from due_diligence.domain.enums import ANALYSIS_TYPES, AnalysisStatus

DEFAULT_DB = "sqlite:///due_diligence.db"
DEFAULT_DEALS = "./deals"


def _build_parser() -> argparse.ArgumentParser:
    """Build the top-level argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="due-diligence",
        description="Multi-agent due-diligence pipeline -- run, resume and inspect analyses.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        default=False,
        help="Show package version and exit.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML or JSON pipeline configuration file.",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=DEFAULT_DB,
        help=f"SQLAlchemy database URL. (default: {DEFAULT_DB})",
    )
    parser.add_argument(
        "--deals",
        type=str,
        default=DEFAULT_DEALS,
        help=f"Directory of <deal_id>.json/.yaml deal files. (default: {DEFAULT_DEALS})",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        default=False,
        help="Use a scripted model instead of a provider (no API key needed).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log progress (-v) or debug details (-vv).",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available subcommands")

    # -- run ---------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        help="Run a new analysis on a deal.",
        description="Create an analysis for a deal and run every planned agent.",
    )
    run_parser.add_argument("deal_id", type=str, help="Deal identifier.")
    run_parser.add_argument(
        "--type",
        dest="analysis_type",
        type=str,
        default=None,
        choices=sorted(ANALYSIS_TYPES),
        help="Analysis type (tier selection). (default: from config)",
    )
    run_parser.add_argument(
        "--max-cost",
        type=float,
        default=None,
        help="Spend ceiling in USD for this run.",
    )
    run_parser.add_argument(
        "--plan-only",
        action="store_true",
        default=False,
        help="Print the dependency stages and exit without running anything.",
    )

    # -- resume ------------------------------------------------------------
    resume_parser = subparsers.add_parser(
        "resume",
        help="Resume an analysis from its latest checkpoint.",
        description="Re-run only the failed or pending agents of an analysis.",
    )
    resume_parser.add_argument("analysis_id", type=str, help="Analysis identifier.")

    # -- show --------------------------------------------------------------
    show_parser = subparsers.add_parser(
        "show",
        help="Display a stored analysis.",
        description="Display a stored analysis and, optionally, its checkpoints.",
    )
    show_parser.add_argument("analysis_id", type=str, help="Analysis identifier.")
    show_parser.add_argument(
        "--checkpoints",
        action="store_true",
        default=False,
        help="Also list the checkpoint history.",
    )
    show_parser.add_argument(
        "--format",
        type=str,
        default="table",
        choices=["table", "json"],
        help="Display format. (default: table)",
    )

    # -- interrupted -------------------------------------------------------
    subparsers.add_parser(
        "interrupted",
        help="List analyses left RUNNING or FAILED.",
        description="List analyses that are candidates for a resume.",
    )

    # -- info --------------------------------------------------------------
    subparsers.add_parser(
        "info",
        help="Show package version and the agent catalogue.",
        description="Display version, dependency status and registered agents.",
    )

    return parser


# =========================================================================
# Wiring
# =========================================================================

def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_config(args: argparse.Namespace) -> Any:
    from due_diligence.infrastructure.config import load_config

    config = load_config(args.config)
    max_cost = getattr(args, "max_cost", None)
    if max_cost is not None:
        config = dataclasses.replace(config, max_cost=max_cost)
        config.validate()
    return config


def _completer(args: argparse.Namespace, config: Any) -> Any:
    from due_diligence.infrastructure.llm import TextCompleter

    if args.offline:
        from due_diligence.testing import ScriptedChatModel

        return TextCompleter(ScriptedChatModel(responses=["{}"]))
    return TextCompleter.from_settings(config.llm)


def _components(args: argparse.Namespace) -> dict[str, Any]:
    """Build the shared pipeline components from CLI arguments."""
    from due_diligence.agents.catalog import default_registry
    from due_diligence.infrastructure.deals import FileDealProvider
    from due_diligence.infrastructure.event_bus import AsyncEventBus
    from due_diligence.infrastructure.storage.sql import SqlStore
    from due_diligence.services.runner import AgentRunner

    config = _load_config(args)
    bus = AsyncEventBus()
    store = SqlStore(args.db)
    return {
        "config": config,
        "bus": bus,
        "store": store,
        "registry": default_registry(),
        "deals": FileDealProvider(args.deals),
        "runner_factory": lambda: AgentRunner(_completer(args, config), event_bus=bus),
    }


# =========================================================================
# Subcommand handlers
# =========================================================================

def _cmd_run(args: argparse.Namespace) -> int:
    """Handle the ``run`` subcommand."""
    from due_diligence.domain.events import EarlyWarningRaised
    from due_diligence.presentation.console import AnalysisDashboard
    from due_diligence.services.orchestrator import Orchestrator, ProgressUpdate

    parts = _components(args)
    dashboard = AnalysisDashboard()
    config = parts["config"]
    analysis_type = args.analysis_type or config.default_analysis_type

    if args.plan_only:
        deal = asyncio.run(parts["deals"].load(args.deal_id))
        orchestrator = Orchestrator(
            parts["registry"], parts["store"], parts["store"], parts["deals"], config=config
        )
        dashboard.print_plan(orchestrator.plan(deal.sector, analysis_type))
        return 0

    def progress(update: ProgressUpdate) -> None:
        mark = "ok" if update.success else "FAILED"
        dashboard.print(
            f"  [{update.completed_agents}/{update.total_agents}] "
            f"{update.agent_name}: {mark}  (${update.total_cost:.4f})"
        )

    parts["bus"].subscribe(EarlyWarningRaised, dashboard.print_warning_event)
    orchestrator = Orchestrator(
        parts["registry"],
        parts["store"],
        parts["store"],
        parts["deals"],
        runner=parts["runner_factory"](),
        config=config,
        event_bus=parts["bus"],
        on_progress=progress,
    )
    dashboard.print(f"Running {analysis_type} on deal {args.deal_id}...")
    analysis = asyncio.run(orchestrator.start(args.deal_id, analysis_type))
    dashboard.print_analysis(analysis)
    return 0 if analysis.status is AnalysisStatus.COMPLETED else 2


def _cmd_resume(args: argparse.Namespace) -> int:
    """Handle the ``resume`` subcommand."""
    from due_diligence.domain.events import EarlyWarningRaised
    from due_diligence.presentation.console import AnalysisDashboard
    from due_diligence.services.resume import ResumeController

    parts = _components(args)
    dashboard = AnalysisDashboard()
    parts["bus"].subscribe(
        EarlyWarningRaised, dashboard.print_warning_event, analysis_id=args.analysis_id
    )
    controller = ResumeController(
        parts["registry"],
        parts["store"],
        parts["store"],
        parts["deals"],
        runner=parts["runner_factory"](),
        config=parts["config"],
        event_bus=parts["bus"],
    )
    analysis = asyncio.run(controller.resume(args.analysis_id))
    dashboard.print_analysis(analysis)
    return 0 if analysis.status is AnalysisStatus.COMPLETED else 2


def _cmd_show(args: argparse.Namespace) -> int:
    """Handle the ``show`` subcommand."""
    from due_diligence.domain.exceptions import AnalysisNotFound
    from due_diligence.infrastructure.storage.sql import SqlStore
    from due_diligence.presentation.console import AnalysisDashboard

    store = SqlStore(args.db)
    analysis = asyncio.run(store.get(args.analysis_id))
    if analysis is None:
        raise AnalysisNotFound(args.analysis_id)
    history = asyncio.run(store.history(args.analysis_id)) if args.checkpoints else []

    if args.format == "json":
        payload: dict[str, Any] = {"analysis": analysis.to_dict()}
        if args.checkpoints:
            payload["checkpoints"] = [s.to_dict() for s in history]
        print(json.dumps(payload, indent=2, default=str))
        return 0

    dashboard = AnalysisDashboard()
    dashboard.print_analysis(analysis)
    if args.checkpoints:
        dashboard.print_checkpoints(history)
    return 0


def _cmd_interrupted(args: argparse.Namespace) -> int:
    """Handle the ``interrupted`` subcommand."""
    from due_diligence.infrastructure.storage.sql import SqlStore
    from due_diligence.presentation.console import AnalysisDashboard

    store = SqlStore(args.db)

    async def collect() -> list[Any]:
        running = await store.find_by_status(AnalysisStatus.RUNNING)
        failed = await store.find_by_status(AnalysisStatus.FAILED)
        return [*running, *failed]

    AnalysisDashboard().print_analyses(asyncio.run(collect()), "Resumable analyses")
    return 0


def _cmd_info(args: argparse.Namespace) -> int:
    """Handle the ``info`` subcommand."""
    from due_diligence import __version__
    from due_diligence.agents.catalog import default_registry
    from due_diligence.domain.enums import Tier

    print(f"due-diligence v{__version__}")
    print()

    optional_deps = {
        "langchain_anthropic": "Anthropic provider (default)",
        "langchain_openai": "OpenAI provider",
        "sqlalchemy": "Relational analysis store (required)",
        "numpy": "Numerical computation (required)",
        "rich": "Console output (required)",
    }

    print("Dependencies:")
    for pkg, desc in optional_deps.items():
        try:
            mod = __import__(pkg)
            version = getattr(mod, "__version__", "unknown")
            print(f"  [installed] {pkg} {version} -- {desc}")
        except ImportError:
            print(f"  [missing]   {pkg} -- {desc}")
    print()

    registry = default_registry()
    print("Analysis Types:")
    for name, tiers in ANALYSIS_TYPES.items():
        print(f"  {name} -- tiers {', '.join(str(int(t)) for t in tiers)}")
    print()
    for tier in Tier:
        names = registry.names(tier)
        print(f"Tier {int(tier)} ({tier.name.lower()}, {len(names)}):")
        for name in names:
            marker = " (default)" if registry.default_expert and name == registry.default_expert.name else ""
            print(f"  - {name}{marker}")
        print()
    return 0


# =========================================================================
# Main entry point
# =========================================================================

def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parameters
    ----------
    argv:
        Command-line arguments.  Defaults to ``sys.argv[1:]``.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from due_diligence import __version__
        print(f"due-diligence {__version__}")
        sys.exit(0)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    _configure_logging(args.verbose)

    handlers: dict[str, Any] = {
        "run": _cmd_run,
        "resume": _cmd_resume,
        "show": _cmd_show,
        "interrupted": _cmd_interrupted,
        "info": _cmd_info,
    }

    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        exit_code = handler(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        exit_code = 130
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)
