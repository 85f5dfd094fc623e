"""Conductor command-line interface.

Commands::

    conductor recommend "<task>"                  - Rank agents for a task
    conductor orchestrate "<task>" [--priority P] - Plan and execute a task
    conductor metrics                             - Real-time cost and usage metrics
    conductor budget show                         - Budgets and spend today
    conductor budget set <identifier> <usd>       - Set a daily budget
    conductor budget speed <identifier> <ms>      - Set a provider latency ceiling
    conductor init-agents                         - Write the built-in agent definitions
    conductor serve [--host H] [--port N]         - Run the HTTP API

Every command works against the project in the current directory (or
CONDUCTOR settings from the environment); state lives in ``.conductor/``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import textwrap
from collections.abc import Callable

from rich.console import Console
from rich.table import Table

from conductor.agent.defaults import DEFAULT_AGENTS
from conductor.config import get_settings
from conductor.container import Container, build_container
from conductor.model_router.requests import Priority
from conductor.orchestration.errors import NoSuitableAgentError
from conductor.orchestration.models import OrchestrationRequest
from conductor.persistence.state_store import AGENT_DEFINITION_SUFFIX
from conductor.telemetry.logging import configure_logging

ContainerFactory = Callable[[], Container]


def _default_container() -> Container:
    return build_container(get_settings())


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


def cmd_recommend(args: argparse.Namespace, container: Container, console: Console) -> int:
    context = {"exclude_agents": args.exclude} if args.exclude else {}
    recommendations = container.orchestrator.recommend_agent_for_task(args.task, context)
    if not recommendations:
        console.print("[yellow]No suitable agents found for this task.[/yellow]")
        return 1

    if args.json:
        console.print_json(json.dumps([r.to_dict() for r in recommendations]))
        return 0

    table = Table(title="Agent recommendations")
    table.add_column("Agent", style="bold")
    table.add_column("Confidence", justify="right")
    table.add_column("Reasoning")
    table.add_column("Alternatives")
    for rec in recommendations:
        table.add_row(
            rec.agent_name,
            f"{rec.confidence:.2f}",
            rec.reasoning,
            ", ".join(rec.alternatives) or "-",
        )
    console.print(table)
    return 0


async def _orchestrate(args: argparse.Namespace, container: Container) -> str:
    request = OrchestrationRequest(
        task_description=args.task,
        priority=Priority(args.priority),
        max_agents=args.max_agents,
        requires_collaboration=not args.solo,
    )
    await container.startup()
    try:
        return await container.orchestrator.orchestrate_task(request)
    finally:
        await container.shutdown()


def cmd_orchestrate(args: argparse.Namespace, container: Container, console: Console) -> int:
    try:
        report = asyncio.run(_orchestrate(args, container))
    except NoSuitableAgentError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    console.print_json(report)
    return 0


def cmd_metrics(args: argparse.Namespace, container: Container, console: Console) -> int:  # noqa: ARG001
    asyncio.run(container.router.load_state())
    console.print_json(json.dumps(container.router.get_real_time_metrics()))
    return 0


def cmd_budget_show(args: argparse.Namespace, container: Container, console: Console) -> int:  # noqa: ARG001
    budget = container.router.budget
    asyncio.run(budget.load())
    table = Table(title="Daily budgets")
    table.add_column("Identifier", style="bold")
    table.add_column("Budget (USD)", justify="right")
    table.add_column("Spent today", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Emergency")
    for state in budget.states():
        if not state.daily_budget:
            continue
        table.add_row(
            state.identifier,
            f"{state.daily_budget:.2f}",
            f"{state.spent_today:.4f}",
            f"{state.utilization * 100:.1f}%",
            "yes" if state.downgraded else "no",
        )
    console.print(table)
    thresholds = budget.speed_thresholds()
    if thresholds:
        console.print("Speed thresholds: " + ", ".join(f"{k}={v}ms" for k, v in thresholds.items()))
    return 0


async def _set_budget(container: Container, identifier: str, amount: float) -> None:
    await container.router.budget.load()
    await container.router.set_cost_budget(identifier, amount)


async def _set_speed(container: Container, identifier: str, max_ms: int) -> None:
    await container.router.budget.load()
    await container.router.set_speed_threshold(identifier, max_ms)


def cmd_budget_set(args: argparse.Namespace, container: Container, console: Console) -> int:
    try:
        asyncio.run(_set_budget(container, args.identifier, args.amount))
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    console.print(f"[green]Daily budget for {args.identifier} set to ${args.amount:.2f}[/green]")
    return 0


def cmd_budget_speed(args: argparse.Namespace, container: Container, console: Console) -> int:
    try:
        asyncio.run(_set_speed(container, args.identifier, args.max_ms))
    except ValueError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    console.print(f"[green]Speed threshold for {args.identifier} set to {args.max_ms}ms[/green]")
    return 0


def cmd_init_agents(args: argparse.Namespace, container: Container, console: Console) -> int:
    store = container.store
    if not store.enabled:
        console.print("[red]Persistence is disabled (PERSIST_STATE=false).[/red]")
        return 1
    written = 0
    for agent in DEFAULT_AGENTS:
        path = store.agents_dir / f"{agent.name}{AGENT_DEFINITION_SUFFIX}"
        if path.exists() and not args.force:
            console.print(f"[yellow]skip[/yellow] {path} (exists)")
            continue
        store.write_agent_definition(agent.name, agent.to_dict())
        console.print(f"[green]wrote[/green] {path}")
        written += 1
    console.print(f"{written} agent definition(s) written to {store.agents_dir}")
    return 0


def cmd_serve(args: argparse.Namespace, container: Container, console: Console) -> int:  # noqa: ARG001
    from conductor.main import run

    run(host=args.host, port=args.port)
    return 0


# ------------------------------------------------------------------ #
# Parser
# ------------------------------------------------------------------ #


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser tree."""
    parser = argparse.ArgumentParser(
        prog="conductor",
        description="Multi-agent orchestration with cost-aware LLM routing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """\
            Examples:
              conductor recommend "analyze and test the payment module"
              conductor orchestrate "implement and test a rate limiter" --priority high
              conductor budget set DeveloperAgent 10
              conductor metrics
            """
        ),
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    recommend = subparsers.add_parser("recommend", help="Rank agents for a task")
    recommend.add_argument("task", help="Task description")
    recommend.add_argument(
        "--exclude", action="append", default=[], metavar="AGENT", help="Exclude an agent"
    )
    recommend.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    orchestrate = subparsers.add_parser("orchestrate", help="Plan and execute a task")
    orchestrate.add_argument("task", help="Task description")
    orchestrate.add_argument(
        "--priority", choices=[p.value for p in Priority], default=Priority.MEDIUM.value
    )
    orchestrate.add_argument("--max-agents", type=int, default=None, help="Primary + collaborators")
    orchestrate.add_argument("--solo", action="store_true", help="Plan with the primary agent only")

    subparsers.add_parser("metrics", help="Real-time cost and usage metrics")

    budget = subparsers.add_parser("budget", help="Budget administration")
    budget_sub = budget.add_subparsers(dest="budget_command", metavar="SUBCOMMAND")
    budget_sub.add_parser("show", help="Budgets and spend today")
    budget_set = budget_sub.add_parser("set", help="Set a daily USD budget")
    budget_set.add_argument("identifier", help="Agent name or task type")
    budget_set.add_argument("amount", type=float, help="Daily budget in USD")
    budget_speed = budget_sub.add_parser("speed", help="Set a max provider latency")
    budget_speed.add_argument("identifier", help="Agent name or task type")
    budget_speed.add_argument("max_ms", type=int, help="Max response time in ms")

    init_agents = subparsers.add_parser("init-agents", help="Write built-in agent definitions")
    init_agents.add_argument("--force", action="store_true", help="Overwrite existing files")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


_COMMANDS = {
    "recommend": cmd_recommend,
    "orchestrate": cmd_orchestrate,
    "metrics": cmd_metrics,
    "init-agents": cmd_init_agents,
    "serve": cmd_serve,
}

_BUDGET_COMMANDS = {
    "show": cmd_budget_show,
    "set": cmd_budget_set,
    "speed": cmd_budget_speed,
}


def main(
    argv: list[str] | None = None,
    *,
    container_factory: ContainerFactory = _default_container,
    console: Console | None = None,
) -> int:
    """Entry point for the conductor CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    console = console or Console()

    if args.command == "budget":
        handler = _BUDGET_COMMANDS.get(args.budget_command)
        if handler is None:
            parser.parse_args(["budget", "--help"])
            return 1
    else:
        handler = _COMMANDS.get(args.command)
        if handler is None:
            parser.print_help()
            return 1

    settings = get_settings()
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
    return handler(args, container_factory(), console)
