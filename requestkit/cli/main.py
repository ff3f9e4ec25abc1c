"""RequestKit CLI.

Typer application for resolving templates against a variables file and
inspecting what a template references.
"""

from typing import List, Optional

import typer
from rich.console import Console

from requestkit.cli.display import (
    display_dependency_tree,
    display_functions,
    display_generic_error,
    display_json_output,
    display_references,
    display_resolution,
    display_validation,
    mask_trace_dict,
    secret_names,
    secret_values,
)
from requestkit.core.config import create_resolver, load_config
from requestkit.core.variables.errors import (
    ConfigurationError,
    VariableResolutionError,
)
from requestkit.core.variables.loader import build_context_from_file
from requestkit.core.variables.types import RequestContext, ResolutionContext
from requestkit.logging import configure_logging, get_logger
from requestkit.visualizer.dependency_tree import build_dependency_tree

logger = get_logger(__name__)
console = Console()

app = typer.Typer(
    name="requestkit",
    help="RequestKit CLI - resolve and inspect variable templates",
    add_completion=False,
)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Only show warnings and errors"
    ),
) -> None:
    """RequestKit CLI - resolve and inspect variable templates.

    Examples:
        requestkit resolve 'Bearer ${API_TOKEN}' --vars variables.yml
        requestkit validate '${random(1, 10)}'
        requestkit preview 'Hello ${name}' --set name=World
    """
    if version:
        from requestkit import __version__

        console.print(f"RequestKit CLI v{__version__}")
        raise typer.Exit()

    configure_logging(verbose=verbose, quiet=quiet)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def resolve(
    template: str = typer.Argument(..., help="Template to resolve"),
    vars_file: Optional[str] = typer.Option(
        None, "--vars", "-f", help="Variables file (YAML)"
    ),
    profile: Optional[str] = typer.Option(
        None, "--profile", "-p", help="Profile whose variables are visible"
    ),
    rule: Optional[str] = typer.Option(
        None, "--rule", "-r", help="Rule whose variables are visible"
    ),
    url: Optional[str] = typer.Option(
        None, "--url", help="Request URL for the url/domain/path variables"
    ),
    method: str = typer.Option("GET", "--method", "-m", help="Request method"),
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Engine configuration file (YAML)"
    ),
    steps: bool = typer.Option(False, "--steps", help="Show every resolution step"),
    tree: bool = typer.Option(False, "--tree", help="Show the dependency tree"),
    json_output: bool = typer.Option(False, "--json", help="Print the trace as JSON"),
    show_secrets: bool = typer.Option(
        False, "--show-secrets", help="Do not mask secret variables"
    ),
) -> None:
    """Resolve a template and show the result.

    Exits with status 1 when any reference could not be resolved.
    """
    try:
        config = load_config(config_file)
        request = RequestContext.from_request(url, method) if url else None
        if vars_file:
            context = build_context_from_file(vars_file, profile, rule, request)
        elif profile or rule:
            raise ConfigurationError("--profile and --rule require --vars")
        else:
            context = ResolutionContext.build(request=request)

        result = create_resolver(config).resolve(template, context)
    except (ConfigurationError, VariableResolutionError) as e:
        display_generic_error(e, "resolution")
        logger.debug(f"Resolution setup failed: {e}")
        raise typer.Exit(1)

    names = set() if show_secrets else secret_names(context)
    masked = secret_values(result.trace, names)

    if json_output:
        display_json_output(mask_trace_dict(result.trace.to_dict(), names, masked))
    else:
        display_resolution(result, masked, show_steps=steps)
        if tree:
            display_dependency_tree(build_dependency_tree(result.trace))

    if not result.success:
        raise typer.Exit(1)


@app.command()
def validate(
    template: str = typer.Argument(..., help="Template to validate"),
) -> None:
    """Check a template for syntax errors."""
    result = create_resolver().validate_template(template)
    display_validation(result)
    if not result.is_valid:
        raise typer.Exit(1)


@app.command()
def refs(
    template: str = typer.Argument(..., help="Template to inspect"),
    json_output: bool = typer.Option(False, "--json", help="Print as JSON"),
) -> None:
    """List the variables and functions a template references."""
    resolver = create_resolver()
    variables = resolver.get_referenced_variables(template)
    functions = resolver.get_referenced_functions(template)

    if json_output:
        display_json_output(
            {
                "variables": variables,
                "functions": [
                    {"name": node.name, "args": list(node.args)} for node in functions
                ],
            }
        )
        return
    display_references(variables, functions)


@app.command()
def functions() -> None:
    """List the available template functions."""
    display_functions(create_resolver().functions.list_functions())


@app.command()
def preview(
    template: str = typer.Argument(..., help="Template to preview"),
    sample: List[str] = typer.Option(
        [], "--set", "-s", help="Sample variable as NAME=VALUE (repeatable)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the trace as JSON"),
) -> None:
    """Resolve a template against sample values.

    Time and UUID functions return fixed values and sample request details
    stand in for url, domain, path and method.
    """
    samples = {}
    for item in sample:
        name, separator, value = item.partition("=")
        if not separator or not name.strip():
            display_generic_error(
                ValueError(f"Expected NAME=VALUE, got {item!r}"), "preview"
            )
            raise typer.Exit(1)
        samples[name.strip()] = value

    result = create_resolver().preview(template, samples)
    if json_output:
        display_json_output(result.trace.to_dict())
    else:
        display_resolution(result)

    if not result.success:
        raise typer.Exit(1)


def cli() -> None:
    """Entry point for the CLI application."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n⚠️  [yellow]Operation cancelled by user[/yellow]")
        raise typer.Exit(130)
