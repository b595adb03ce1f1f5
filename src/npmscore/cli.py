"""CLI entry point for npm-security-score."""

import asyncio
import json
import logging
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from npmscore import __version__
from npmscore.analyzers.service import BatchItem, ScoringService, parse_package_spec
from npmscore.config import Settings, load_settings
from npmscore.errors import ScoreError
from npmscore.models.schemas import ScoreResult
from npmscore.reporting import (
    build_comparison_report,
    build_json_report,
    print_batch,
    print_comparison,
    print_result,
    render_comparison_markdown,
    render_markdown,
)

app = typer.Typer(help="Security scoring for npm packages.")

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_settings(config: Path | None) -> Settings:
    try:
        return load_settings(config)
    except ScoreError as e:
        err_console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)


def _emit(text: str, output: Path | None) -> None:
    if output:
        output.write_text(text)
        err_console.print(f"[green]Saved to {output}[/green]")
    else:
        console.print(text, markup=False, highlight=False, soft_wrap=True)


@app.command()
def score(
    package: str = typer.Argument(..., help="Package to score, optionally with @version"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON report"),
    markdown: bool = typer.Option(False, "--markdown", help="Output Markdown report"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every rule and debug logs"),
    fail_below: float | None = typer.Option(
        None, "--fail-below", help="Exit with status 1 if the score is below this value"
    ),
    config: Path | None = typer.Option(None, "--config", "-c", help="JSON config file"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the report to a file"),
) -> None:
    """Score a single npm package."""
    setup_logging(verbose)
    settings = _load_settings(config)
    try:
        name, version = parse_package_spec(package)
    except ScoreError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    result = asyncio.run(_score_package(settings, name, version, show_progress=not (as_json or markdown)))

    if as_json:
        _emit(json.dumps(build_json_report(result), indent=2, default=str), output)
    elif markdown:
        _emit(render_markdown(result), output)
    else:
        print_result(console, result, verbose)
        if output:
            output.write_text(json.dumps(build_json_report(result), indent=2, default=str))
            console.print(f"\n[green]Saved to {output}[/green]")

    if fail_below is not None and result.score < fail_below:
        err_console.print(f"[red]Score {result.score:g} is below threshold {fail_below:g}[/red]")
        raise typer.Exit(1)


async def _score_package(
    settings: Settings, name: str, version: str | None, show_progress: bool = True
) -> ScoreResult:
    """Async implementation of score."""
    async with ScoringService(settings) as service:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=err_console,
            disable=not show_progress,
        ) as progress:
            progress.add_task(f"Scoring {name}...", total=None)
            try:
                return await service.score_package(name, version)
            except ScoreError as e:
                err_console.print(f"[red]Error scoring {name}: {e}[/red]")
                raise typer.Exit(1)


def read_package_file(path: Path) -> list[str]:
    """Package specs from a file, one per line; blank lines and ``#`` comments ignored."""
    specs = []
    for line in path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            specs.append(line)
    return specs


@app.command()
def batch(
    packages: list[str] | None = typer.Argument(None, help="Packages to score"),
    file: Path | None = typer.Option(None, "--file", "-f", help="File with one package per line"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
    fail_below: float | None = typer.Option(
        None, "--fail-below", help="Exit with status 1 if any score is below this value"
    ),
    config: Path | None = typer.Option(None, "--config", "-c", help="JSON config file"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write JSON results to a file"),
) -> None:
    """Score several npm packages."""
    setup_logging(verbose)
    settings = _load_settings(config)

    specs = list(packages or [])
    if file:
        try:
            specs.extend(read_package_file(file))
        except OSError as e:
            err_console.print(f"[red]Could not read {file}: {e}[/red]")
            raise typer.Exit(1)
    if not specs:
        err_console.print("[red]No packages given[/red]")
        raise typer.Exit(1)

    items = asyncio.run(_score_batch(settings, specs))

    if as_json or output:
        data = [_batch_json(item) for item in items]
        text = json.dumps(data, indent=2, default=str)
        if as_json:
            _emit(text, output)
        else:
            output.write_text(text)
    if not as_json:
        print_batch(console, items)

    failed = any(not item.success for item in items)
    below = fail_below is not None and any(
        item.result is not None and item.result.score < fail_below for item in items
    )
    if failed or below:
        raise typer.Exit(1)


async def _score_batch(settings: Settings, specs: list[str]) -> list[BatchItem]:
    async with ScoringService(settings) as service:
        return await service.score_packages(specs)


def _batch_json(item: BatchItem) -> dict:
    if item.success and item.result is not None:
        return {"success": True, "result": build_json_report(item.result)}
    return {"success": False, "package": item.package, "version": item.version, "error": item.error}


@app.command()
def compare(
    package1: str = typer.Argument(..., help="First package"),
    package2: str = typer.Argument(..., help="Second package"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
    markdown: bool = typer.Option(False, "--markdown", help="Output Markdown"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
    config: Path | None = typer.Option(None, "--config", "-c", help="JSON config file"),
) -> None:
    """Compare the scores of two npm packages."""
    setup_logging(verbose)
    settings = _load_settings(config)
    try:
        specs = [parse_package_spec(package1), parse_package_spec(package2)]
    except ScoreError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    first, second = asyncio.run(_compare(settings, specs))

    if as_json:
        _emit(json.dumps(build_comparison_report(first, second), indent=2, default=str), None)
    elif markdown:
        _emit(render_comparison_markdown(first, second), None)
    else:
        print_comparison(console, first, second)


async def _compare(settings: Settings, specs: list[tuple[str, str | None]]) -> list[ScoreResult]:
    results = []
    async with ScoringService(settings) as service:
        for name, version in specs:
            try:
                results.append(await service.score_package(name, version))
            except ScoreError as e:
                err_console.print(f"[red]Error scoring {name}: {e}[/red]")
                raise typer.Exit(1)
    return results


@app.command()
def rules(
    config: Path | None = typer.Option(None, "--config", "-c", help="JSON config file"),
) -> None:
    """List the configured scoring rules."""
    settings = _load_settings(config)
    calculator = ScoringService(settings).create_calculator()

    table = Table(title="Scoring Rules", show_header=True)
    table.add_column("Rule", style="cyan")
    table.add_column("Type")
    table.add_column("Weight", justify="right")
    table.add_column("Description", style="dim", max_width=60)

    for rule in calculator.get_rules():
        info = rule.info()
        table.add_row(info["name"], info["type"], str(info["weight"]), info["description"])

    console.print(table)


@app.command()
def version() -> None:
    """Show the version."""
    console.print(f"npm-security-score {__version__}")


if __name__ == "__main__":
    app()
