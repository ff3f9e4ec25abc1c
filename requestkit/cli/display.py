"""Rich display functions for the RequestKit CLI.

Secret variables are masked everywhere they would be printed unless the
caller asks to show them.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Set

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from requestkit.core.variables.functions import VariableFunction
from requestkit.core.variables.resolver import find_unresolved_markers
from requestkit.core.variables.types import (
    ReferenceNode,
    ResolutionContext,
    ResolutionResult,
    ResolutionTrace,
    StepType,
    TemplateValidationResult,
)
from requestkit.visualizer.dependency_tree import DependencyTree

console = Console()

MASK = "********"

_STEP_STYLES = {
    StepType.VARIABLE: "cyan",
    StepType.FUNCTION: "magenta",
    StepType.NESTED: "blue",
    StepType.CACHE_HIT: "green",
    StepType.CACHE_MISS: "yellow",
}


# Secret masking
def secret_names(context: ResolutionContext) -> Set[str]:
    """Names whose winning definition is marked secret."""
    return {
        name
        for name, variable in context.effective_variables().items()
        if variable.is_secret
    }


def secret_values(trace: ResolutionTrace, names: Set[str]) -> List[str]:
    """Raw and expanded values of secret variables seen in a trace.

    Longest first, so masking replaces whole values before their parts.
    """
    values = set()
    for step in trace.steps:
        if step.name in names and step.output and not step.error:
            values.add(step.output)
    return sorted(values, key=len, reverse=True)


def mask_text(text: str, values: Iterable[str]) -> str:
    for value in values:
        text = text.replace(value, MASK)
    return text


def mask_trace_dict(
    data: Dict[str, Any], names: Set[str], values: List[str]
) -> Dict[str, Any]:
    """Mask secret values in the output of ``ResolutionTrace.to_dict``."""
    data = dict(data)
    data["final_value"] = mask_text(data["final_value"], values)
    steps = []
    for step in data["steps"]:
        step = dict(step)
        step["output"] = mask_text(step["output"], values)
        if step["type"] == StepType.NESTED.value and step["name"] in names:
            step["input"] = mask_text(step["input"], values)
        steps.append(step)
    data["steps"] = steps
    return data


# Resolution output
def display_resolution(
    result: ResolutionResult,
    masked_values: Optional[List[str]] = None,
    show_steps: bool = False,
) -> None:
    """Display a resolved value followed by a summary of the trace.

    Args:
        result: Resolution result to display
        masked_values: Secret values to hide
        show_steps: Whether to list every recorded step
    """
    masked_values = masked_values or []
    trace = result.trace

    if result.success:
        console.print("✅ [bold green]Template resolved[/bold green]")
    else:
        console.print("⚠️  [bold yellow]Template partially resolved[/bold yellow]")

    console.print(
        mask_text(result.value, masked_values),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Property", style="cyan", width=12)
    table.add_column("Value", style="white")
    table.add_row("Resolved", ", ".join(trace.resolved_variables) or "-")
    table.add_row("Unresolved", ", ".join(trace.unresolved_variables) or "-")
    steps = str(len(trace.steps))
    if trace.truncated:
        steps += " (truncated)"
    table.add_row("Steps", steps)
    table.add_row(
        "Cache",
        f"{trace.metrics.cache_hits} hits / {trace.metrics.cache_misses} misses",
    )
    table.add_row("Time", f"{trace.total_time_ms:.2f}ms")
    console.print(table)

    if trace.errors:
        display_resolution_errors(trace.errors)

    markers = find_unresolved_markers(result.value)
    if markers:
        console.print(f"🔍 [dim]Unresolved markers: {', '.join(markers)}[/dim]")

    if show_steps:
        display_trace_steps(trace, masked_values)


def display_resolution_errors(errors: Iterable[Exception]) -> None:
    console.print("❌ [bold red]Errors:[/bold red]")
    for error in errors:
        kind = getattr(error, "kind", type(error).__name__)
        console.print(
            f"   • [red]{kind}[/red]: {escape(str(error))}", highlight=False
        )


def display_trace_steps(trace: ResolutionTrace, masked_values: List[str]) -> None:
    """Display the steps of a trace as a table."""
    table = Table(title="Resolution steps", show_header=True, header_style="bold blue")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Name", style="cyan")
    table.add_column("Scope")
    table.add_column("Output")
    table.add_column("ms", justify="right")

    for step in trace.steps:
        style = _STEP_STYLES.get(step.type, "white")
        output = escape(step.error or mask_text(step.output, masked_values))
        table.add_row(
            str(step.step_number),
            f"[{style}]{step.type.value}[/{style}]",
            step.name,
            step.scope or "-",
            output,
            f"{step.execution_time_ms:.2f}",
        )
    console.print(table)


def display_dependency_tree(tree: DependencyTree) -> None:
    """Display the dependency tree of a trace."""
    root = Tree("🌳 [bold blue]Dependencies[/bold blue]")
    branches = {-1: root}

    for depth, name, marker in tree.walk():
        variable = tree.variables[name]
        status = "[green]ok[/green]" if variable.resolved else "[red]failed[/red]"
        label = f"[cyan]{name}[/cyan] [dim]{variable.scope}[/dim] {status}"
        if marker:
            label += f" [yellow]({marker})[/yellow]"
        parent = branches.get(depth - 1, root)
        branches[depth] = parent.add(label)

    console.print(root)

    if tree.circular_dependencies:
        console.print("🔁 [bold red]Circular references:[/bold red]")
        for cycle in tree.circular_dependencies:
            console.print(f"   • {' -> '.join(cycle + cycle[:1])}")


# Inspection output
def display_validation(result: TemplateValidationResult) -> None:
    if result.is_valid:
        console.print("✅ [bold green]Template is valid[/bold green]")
        return

    console.print("❌ [bold red]Template is invalid[/bold red]")
    for error in result.errors:
        console.print(f"   • {error}", markup=False, highlight=False)


def display_references(variables: List[str], functions: List[ReferenceNode]) -> None:
    """Display the variables and function calls a template references."""
    if not variables and not functions:
        console.print("📋 [dim]No references found[/dim]")
        return

    if variables:
        console.print("📋 [bold blue]Variables:[/bold blue]")
        for name in variables:
            console.print(f"  [cyan]{name}[/cyan]")
    if functions:
        console.print("🔧 [bold blue]Functions:[/bold blue]")
        for node in functions:
            console.print(f"  [magenta]{escape(node.raw)}[/magenta]", highlight=False)


def display_functions(functions: List[VariableFunction]) -> None:
    table = Table(
        title="Available functions", show_header=True, header_style="bold blue"
    )
    table.add_column("Signature", style="cyan", no_wrap=True)
    table.add_column("Description")
    table.add_column("Built-in", justify="center")

    for function in functions:
        table.add_row(
            function.signature,
            function.description,
            "yes" if function.is_built_in else "no",
        )
    console.print(table)


# Utility display functions
def display_generic_error(error: Exception, context: str = "") -> None:
    """Display generic error with context.

    Args:
        error: Exception that occurred
        context: Optional context about where the error occurred
    """
    context_text = f" during {context}" if context else ""
    console.print(f"❌ [bold red]Error{context_text}[/bold red]")
    console.print(f"🔍 [dim]{escape(str(error))}[/dim]", highlight=False)


def display_json_output(data: Any) -> None:
    """Display JSON output.

    Args:
        data: Data to display as JSON
    """
    json_str = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    console.print(json_str, markup=False, highlight=False, soft_wrap=True)
