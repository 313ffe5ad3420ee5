"""Command line interface for the es-research toolkit."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import typer
from rich.table import Table

from . import workflows
from .api_client import GitHubApiClient
from .config import CONFIG_FILE, Config
from .console import console
from .constants import DISPLAY_LIMITS
from .exceptions import ESResearchError
from .logging_config import setup_logging
from .models import SelectionResult
from .statistics import required_sample_size

logger = logging.getLogger(__name__)

T = TypeVar("T")

app = typer.Typer(help="Measure JavaScript syntax compatibility across a sample of GitHub projects.")
config_app = typer.Typer(help="Manage configuration settings")
app.add_typer(config_app, name="config")


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output for debugging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output"),
    config_path: Path = typer.Option(CONFIG_FILE, "--config", help="Path to the configuration file"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also append logs to this file"),
) -> None:
    """CLI entry-point callback for shared initialisation."""
    console.set_verbose(verbose)
    console.set_quiet(quiet)
    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    ctx.obj = {"config_path": config_path}


def _config_path(ctx: typer.Context) -> Path:
    return (ctx.obj or {}).get("config_path", CONFIG_FILE)


def _load_config(ctx: typer.Context, overrides: Optional[Dict[str, Any]] = None) -> Config:
    """Load configuration and apply command-line overrides.

    Raises:
        typer.Exit: If the configuration is invalid
    """
    try:
        config = Config.load(_config_path(ctx))
        for key, value in (overrides or {}).items():
            if value is not None:
                config.set_value(key, str(value))
    except ESResearchError as exc:
        console.print_error(exc, "Configuration error:")
        raise typer.Exit(code=1) from exc
    return config


def _run(factory: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine, mapping es-research errors to exit code 1."""
    try:
        return asyncio.run(factory())
    except ESResearchError as exc:
        console.print_error(exc)
        raise typer.Exit(code=1) from exc


def _build_client(config: Config) -> GitHubApiClient:
    try:
        config.validate_required_fields()
        return GitHubApiClient(config)
    except ESResearchError as exc:
        console.print_error(exc, "Configuration error:")
        raise typer.Exit(code=1) from exc


def _print_top_projects(selection: SelectionResult) -> None:
    if not selection.sample:
        return
    table = Table(title=f"Top {DISPLAY_LIMITS['top_projects']} Projects by Stars")
    table.add_column("#", justify="right", style="muted")
    table.add_column("Project", style="repo")
    table.add_column("Stars", justify="right")
    table.add_column("Forks", justify="right")
    for index, record in enumerate(selection.sample[: DISPLAY_LIMITS['top_projects']], 1):
        table.add_row(str(index), record.full_name, str(record.stars), str(record.forks))
    console.print(table)


def _fetch_overrides(sample_size, min_stars, min_forks) -> Dict[str, Any]:
    return {
        "research.sample_size": sample_size,
        "research.min_stars": min_stars,
        "research.min_forks": min_forks,
    }


def _analyze_overrides(max_files, max_size, concurrency, max_projects) -> Dict[str, Any]:
    return {
        "analysis.max_files_per_project": max_files,
        "analysis.max_file_size": int(max_size * 1024 * 1024) if max_size is not None else None,
        "analysis.concurrency": concurrency,
        "analysis.max_projects": max_projects,
    }


# =============================================================================
# Pipeline commands
# =============================================================================


@app.command()
def fetch(
    ctx: typer.Context,
    sample_size: Optional[int] = typer.Option(None, "--sample-size", "-s", help="Number of projects to sample"),
    min_stars: Optional[int] = typer.Option(None, "--min-stars", help="Minimum stars"),
    min_forks: Optional[int] = typer.Option(None, "--min-forks", help="Minimum forks"),
) -> None:
    """Discover, validate and sample projects from GitHub."""
    config = _load_config(ctx, _fetch_overrides(sample_size, min_stars, min_forks))
    with _build_client(config) as client:
        selection = _run(lambda: workflows.fetch_projects(config, client, console))
    _print_top_projects(selection)


@app.command()
def analyze(
    ctx: typer.Context,
    max_files: Optional[int] = typer.Option(None, "--max-files", help="Maximum files per project"),
    max_size: Optional[float] = typer.Option(None, "--max-size", help="Maximum file size in MB"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Concurrent checker runs"),
    max_projects: Optional[int] = typer.Option(None, "--max-projects", help="Analyze only the first N projects"),
) -> None:
    """Analyze the sampled projects with es-guard."""
    config = _load_config(ctx, _analyze_overrides(max_files, max_size, concurrency, max_projects))
    with _build_client(config) as client:
        _run(lambda: workflows.analyze_projects(config, client, console=console))


@app.command()
def report(ctx: typer.Context) -> None:
    """Generate CSV, JSON, YAML and Markdown reports from analysis results."""
    config = _load_config(ctx)
    try:
        workflows.generate_reports(config, console)
    except ESResearchError as exc:
        console.print_error(exc)
        raise typer.Exit(code=1) from exc


@app.command()
def research(
    ctx: typer.Context,
    sample_size: Optional[int] = typer.Option(None, "--sample-size", "-s", help="Number of projects to sample"),
    min_stars: Optional[int] = typer.Option(None, "--min-stars", help="Minimum stars"),
    min_forks: Optional[int] = typer.Option(None, "--min-forks", help="Minimum forks"),
    max_files: Optional[int] = typer.Option(None, "--max-files", help="Maximum files per project"),
    max_size: Optional[float] = typer.Option(None, "--max-size", help="Maximum file size in MB"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Concurrent checker runs"),
    max_projects: Optional[int] = typer.Option(None, "--max-projects", help="Analyze only the first N projects"),
) -> None:
    """Run fetch, analyze and report in one go."""
    overrides = _fetch_overrides(sample_size, min_stars, min_forks)
    overrides.update(_analyze_overrides(max_files, max_size, concurrency, max_projects))
    config = _load_config(ctx, overrides)
    with _build_client(config) as client:
        _run(lambda: workflows.run_research(config, client, console=console))


@app.command()
def validate(ctx: typer.Context) -> None:
    """Check configuration, credentials and checker availability."""
    config = _load_config(ctx)
    problems = 0

    try:
        config.validate_required_fields()
        console.print_success("✓ Configuration is valid")
    except ESResearchError as exc:
        console.print_error(exc)
        problems += 1

    warning = config.sample_size_warning()
    if warning:
        console.print_warning(warning)

    if config.has_token():
        with GitHubApiClient(config) as client:
            try:
                core = client.get_rate_limit()
                console.print_success(
                    f"✓ GitHub API reachable ({core.get('remaining')}/{core.get('limit')} requests remaining)"
                )
            except ESResearchError as exc:
                console.print_error(exc, "GitHub API check failed:")
                problems += 1

    checker = workflows.build_checker(config)
    if asyncio.run(checker.is_available()):
        console.print_success("✓ es-guard is available")
    else:
        console.print_error(f"Checker '{config.analysis.checker_command}' is not available")
        problems += 1

    if problems:
        raise typer.Exit(code=1)


@app.command(name="sample-size")
def sample_size(
    confidence: float = typer.Option(0.95, "--confidence", help="Confidence level, e.g. 0.95"),
    margin: float = typer.Option(0.05, "--margin", help="Margin of error, e.g. 0.05"),
) -> None:
    """Print the sample size needed for a confidence level and margin."""
    try:
        size = required_sample_size(confidence, margin)
    except ESResearchError as exc:
        console.print_error(exc)
        raise typer.Exit(code=1) from exc
    console.print(
        f"Required sample size for ±{margin:.1%} at {confidence:.0%} confidence: [accent]{size}[/]"
    )


# =============================================================================
# Setup and configuration commands
# =============================================================================


@app.command()
def init(
    ctx: typer.Context,
    token: str = typer.Option(
        ...,
        "--token",
        prompt="GitHub token",
        hide_input=True,
        help="GitHub token used for search and content requests",
    ),
) -> None:
    """Store the GitHub token and write a default configuration file."""
    path = _config_path(ctx)
    config = _load_config(ctx)
    try:
        config.update_auth(token.strip())
        config.dump(path)
    except ESResearchError as exc:
        console.print_error(exc)
        raise typer.Exit(code=1) from exc
    console.print_success(f"✓ Configuration saved to {path}")


@config_app.command("show")
def show_config(ctx: typer.Context) -> None:
    """Display current configuration settings with the token masked."""
    config = _load_config(ctx)
    for section, values in config.to_display_dict().items():
        table = Table(title=section, show_header=False, title_style="title")
        table.add_column("Key", style="label")
        table.add_column("Value", style="value")
        for key, value in values.items():
            table.add_row(key, json.dumps(value) if isinstance(value, list) else str(value))
        console.print(table)


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Configuration key in dot notation (e.g. research.sample_size)"),
    value: str = typer.Argument(..., help="Value to set"),
) -> None:
    """Set a configuration value.

    Examples:
        es-research config set research.sample_size 400
        es-research config set analysis.file_patterns "**/*.js,**/*.ts"
    """
    config = _load_config(ctx, {key: value})
    try:
        config.dump(_config_path(ctx))
    except OSError as exc:
        console.print_error(exc)
        raise typer.Exit(code=1) from exc
    console.print(f"[success]✓ Configuration updated:[/] {key} = {config.get_value(key)}")


@config_app.command("get")
def config_get(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Configuration key in dot notation (e.g. research.sample_size)"),
) -> None:
    """Get a configuration value."""
    config = _load_config(ctx)
    try:
        value = config.get_value(key)
    except ESResearchError as exc:
        console.print_error(exc)
        raise typer.Exit(code=1) from exc
    console.print(f"{key} = {value}")


@app.command(name="clear-cache")
def clear_cache(ctx: typer.Context) -> None:
    """Delete the cached GitHub API responses."""
    config = _load_config(ctx)
    if GitHubApiClient.clear_cache(config.output.cache_path):
        console.print_success("Cleared API cache successfully")
    else:
        console.print("No cache found to clear")


if __name__ == "__main__":  # pragma: no cover
    app()
