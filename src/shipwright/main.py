"""Main CLI entry point for Shipwright.

This module provides the Typer application that drives the promotion
pipeline from a CI job or a developer shell.

Usage:
    shipwright run --name crm --version 123
    shipwright run --name crm --no-push
    shipwright validate app/src
    shipwright config

Exit codes:
    0  pipeline succeeded
    1  a pipeline stage failed
    2  invalid input or application source
    3  configuration could not be loaded
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Optional

import pydantic
import typer
from rich.console import Console
from rich.table import Table

from shipwright import __version__
from shipwright.config import ShipwrightConfig, load_config
from shipwright.errors import ValidationError
from shipwright.logging import setup_logging
from shipwright.models import PipelineResult, RunParameters, StageOutcome
from shipwright.runner import PromotionPipeline
from shipwright.validator import ApplicationValidator

EXIT_STAGE_FAILED = 1
EXIT_INVALID_INPUT = 2
EXIT_CONFIG_ERROR = 3

_SECRET_FIELDS = {"password", "token"}

app = typer.Typer(
    name="shipwright",
    help="Shipwright: build, smoke test and publish application images",
    no_args_is_help=True,
)

console = Console(stderr=True)

# Global config holder, set by the callback
_config: ShipwrightConfig | None = None


def get_config() -> ShipwrightConfig:
    """Return the configuration loaded by the CLI callback.

    Raises:
        RuntimeError: If the callback has not run
    """
    if _config is None:
        raise RuntimeError("Configuration not loaded. Invoke through the CLI.")
    return _config


def _render_stages(result: PipelineResult) -> Table:
    table = Table(title="Pipeline Stages")
    table.add_column("Stage", style="cyan")
    table.add_column("Outcome")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", overflow="fold")

    styles = {
        StageOutcome.SUCCEEDED: "green",
        StageOutcome.SKIPPED: "yellow",
        StageOutcome.FAILED: "red",
    }
    for record in result.stages:
        style = styles[record.outcome]
        table.add_row(
            record.name,
            f"[{style}]{record.outcome.value}[/{style}]",
            f"{record.duration_seconds:.1f}s",
            record.detail or "",
        )
    return table


@app.command()
def run(
    name: Annotated[
        str,
        typer.Option("--name", "-n", help="Application name (image repository)"),
    ],
    version: Annotated[
        Optional[str],
        typer.Option("--version", help="Version tag (defaults to BUILD_NUMBER)"),
    ] = None,
    source: Annotated[
        Path,
        typer.Option("--source", "-s", help="Application source directory"),
    ] = Path("app/src"),
    push: Annotated[
        bool,
        typer.Option("--push/--no-push", help="Push the image to the registry"),
    ] = True,
    rebuild_base: Annotated[
        bool,
        typer.Option("--rebuild-base/--no-rebuild-base", help="Rebuild the base images first"),
    ] = False,
    run_id: Annotated[
        Optional[str],
        typer.Option("--run-id", help="Run-scoped identifier (defaults to BUILD_NUMBER)"),
    ] = None,
    workspace: Annotated[
        Path,
        typer.Option("--workspace", "-w", help="Workspace root for relative paths"),
    ] = Path("."),
) -> None:
    """Run the full promotion pipeline.

    Args:
        name: Application name
        version: Version tag of the image
        source: Application source directory, relative to the workspace
        push: Push the built image
        rebuild_base: Rebuild and publish the base images first
        run_id: Run-scoped identifier
        workspace: Workspace root
    """
    config = get_config()

    overrides: dict[str, object] = {
        "source_path": source,
        "app_name": name,
        "push": push,
        "rebuild_base_images": rebuild_base,
    }
    if version is not None:
        overrides["version"] = version
    if run_id is not None:
        overrides["run_id"] = run_id

    try:
        params = RunParameters(**overrides)
    except pydantic.ValidationError as e:
        console.print(f"[red]Invalid run parameters:[/red] {e}")
        raise typer.Exit(code=EXIT_INVALID_INPUT)

    console.print(f"[bold cyan]Shipwright {__version__}[/bold cyan]")
    console.print(f"[dim]Application:[/dim] {params.app_name}")
    console.print(f"[dim]Version:[/dim] {params.version}")
    console.print(f"[dim]Run:[/dim] {params.run_id}")
    console.print()

    pipeline = PromotionPipeline(config, params, workspace.resolve(), console=console)
    result = asyncio.run(pipeline.run())

    console.print(_render_stages(result))

    if result.success:
        console.print(f"[green]Published[/green] {result.image.versioned if result.image else ''}")
        return

    console.print(f"[red]Pipeline failed:[/red] {result.error}")
    if result.error_type == ValidationError.__name__:
        raise typer.Exit(code=EXIT_INVALID_INPUT)
    raise typer.Exit(code=EXIT_STAGE_FAILED)


@app.command()
def validate(
    source: Annotated[Path, typer.Argument(help="Application source directory")] = Path("app/src"),
) -> None:
    """Check that a directory holds a buildable application project.

    Args:
        source: Application source directory
    """
    config = get_config()
    validator = ApplicationValidator(config.validator)

    try:
        markers = validator.validate(source)
    except ValidationError as e:
        console.print(f"[red]Invalid source:[/red] {e}")
        raise typer.Exit(code=EXIT_INVALID_INPUT)

    console.print(f"[green]Valid application source[/green] {source}")
    for marker in markers:
        console.print(f"  [dim]-[/dim] {marker}")


def _redact(data: dict) -> dict:
    redacted = {}
    for key, value in data.items():
        if isinstance(value, dict):
            redacted[key] = _redact(value)
        elif key in _SECRET_FIELDS and value:
            redacted[key] = "***"
        else:
            redacted[key] = value
    return redacted


@app.command(name="config")
def show_config() -> None:
    """Print the resolved configuration with secrets redacted."""
    config = get_config()
    data = _redact(config.model_dump(mode="json"))
    typer.echo(json.dumps(data, indent=2))


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Load configuration and configure logging.

    Args:
        config_path: Optional path to TOML configuration file
        verbose: Enable debug-level logging
    """
    global _config

    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    if verbose:
        config.logging.level = "DEBUG"
    setup_logging(config.logging)
    _config = config

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
