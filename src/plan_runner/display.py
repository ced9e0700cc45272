# display.py
# All terminal output for the plan runner.
#
# This module owns presentation entirely. harness.py never formats strings;
# it calls named functions here. Swap this file to change the entire UI.
#
# Colour language:
#   cyan     scaffolding / routing events
#   yellow   skipped steps and clarification requests
#   green    success / confirmed
#   red      failures, halts, rejected plans
#   magenta  dependency structure

import json

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from plan_runner.models import ExecutionPlan, ExecutionReport, ExecutionResult, SkipReason

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        value = value[:max_len] + "…"
    return escape(value)


def _status(result: ExecutionResult) -> str:
    if result.skipped:
        reason = {
            SkipReason.CONDITION_FALSE: "condition",
            SkipReason.UNMET_DEPENDENCY: "deps",
            SkipReason.CANCELLED: "cancelled",
        }.get(result.skip_reason, "skipped")
        return f"[yellow]SKIP ({reason})[/yellow]"
    if result.success:
        return "[bold green]✓[/bold green]"
    return "[bold red]✗[/bold red]"


# ---------------------------------------------------------------------------
# Pipeline entry
# ---------------------------------------------------------------------------


def banner(planner_model: str, synthesis_model: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]Plan Runner[/bold cyan]\n"
            "[dim]Dependency-ordered tool execution with conditional steps and shared state[/dim]\n\n"
            f"[dim]Planner model   :[/dim] [white]{planner_model}[/white]\n"
            f"[dim]Synthesis model :[/dim] [white]{synthesis_model}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def request_received(request: str) -> None:
    console.print()
    console.print(Rule("[cyan]NEW REQUEST[/cyan]", style="cyan"))
    console.print(
        Panel(
            f"[white]{escape(request)}[/white]",
            title=_label("REQUEST", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Plan display
# ---------------------------------------------------------------------------


def plan_parsed(plan: ExecutionPlan) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("ID", width=10)
    table.add_column("Tool", style="bold white", width=26)
    table.add_column("Params", style="dim white", width=32)
    table.add_column("Depends on", width=12)
    table.add_column("Description", style="white")

    for step in plan.steps:
        table.add_row(
            step.id,
            step.tool,
            _mono(json.dumps(step.params, ensure_ascii=False), 30),
            ", ".join(step.depends_on) or "—",
            escape(step.description),
        )

    console.print(
        Panel(
            table,
            title=_label("PLAN VALIDATED", "cyan"),
            subtitle=f"[dim]{escape(plan.summary or '')}[/dim]",
            border_style="cyan",
            padding=(0, 1),
        )
    )


def dependency_tree(plan: ExecutionPlan) -> None:
    """Render dependsOn edges as a tree rooted at steps with no dependencies."""
    graph = Tree("[bold magenta]Dependency graph[/bold magenta]")
    children: dict[str, list[str]] = {step.id: [] for step in plan.steps}
    for step in plan.steps:
        for dep in step.depends_on:
            children.setdefault(dep, []).append(step.id)

    def attach(node: Tree, step_id: str, seen: frozenset[str]) -> None:
        step = plan.get_step(step_id)
        label = f"[white]{escape(step_id)}[/white] [dim]{escape(step.tool) if step else '?'}[/dim]"
        if step and step.condition:
            cond = step.condition
            check = escape(" ".join([cond.step, cond.check, cond.value or ""]))
            label += f" [yellow]if {check}[/yellow]"
        branch = node.add(label)
        for child in children.get(step_id, []):
            if child not in seen:
                attach(branch, child, seen | {child})

    for step in plan.steps:
        if not step.depends_on:
            attach(graph, step.id, frozenset({step.id}))

    console.print(graph)


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


def execution_summary(report: ExecutionReport) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", width=10)
    table.add_column("Tool", width=26)
    table.add_column("Status", justify="center", width=16)
    table.add_column("Tries", justify="center", width=6)
    table.add_column("Detail", style="dim white")

    for result in report.results:
        detail = result.error or json.dumps(result.result, ensure_ascii=False, default=str)
        table.add_row(
            result.step_id,
            result.tool,
            _status(result),
            str(result.attempts),
            _mono(detail, 60),
        )

    outcome = "[bold green]SUCCESS[/bold green]" if report.success else "[bold red]FAILED[/bold red]"
    console.print(
        Panel(
            table,
            title="[dim]EXECUTION SUMMARY[/dim]",
            subtitle=outcome,
            border_style="dim",
            padding=(0, 1),
        )
    )


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{escape(result)}[/white]",
            title=_label("RESULT", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def clarification(message: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{escape(message)}[/white]",
            title=_label("CLARIFICATION NEEDED", "yellow"),
            border_style="yellow",
            padding=(0, 2),
        )
    )


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{escape(reason)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
