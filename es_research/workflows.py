"""Stage orchestration: fetch the sample, analyze it, generate reports."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .aggregation import PopulationAggregator
from .analysis import ProjectAnalyzer
from .api_client import GitHubApiClient
from .checker import EsGuardChecker
from .config import Config
from .console import Console, console as default_console
from .constants import OUTPUT_FILES
from .discovery import ProjectDiscoverer
from .exceptions import CheckerUnavailableError, ReportGenerationError
from .files import FileCollector
from .models import AnalysisRun, RepositoryRecord, SelectionResult, utc_now
from .reporter import Reporter, format_duration
from .selector import SampleSelector
from .statistics import describe_sample
from .storage import load_json, save_json
from .validator import ProjectValidator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StoredSample:
    """Sample loaded back from the data directory."""

    projects: List[RepositoryRecord]
    metadata: Dict[str, Any]

    @property
    def excluded_indeterminate(self) -> int:
        return int(self.metadata.get("indeterminate_count", 0))


def make_progress(console: Console) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=False,
        disable=console.is_quiet(),
    )


def build_checker(config: Config) -> EsGuardChecker:
    analysis = config.analysis
    return EsGuardChecker(
        command=analysis.checker_command, timeout=analysis.analysis_timeout, target=analysis.target
    )


# =============================================================================
# Fetch
# =============================================================================


async def fetch_projects(
    config: Config,
    client: GitHubApiClient,
    console: Console = default_console,
) -> SelectionResult:
    """Discover, validate and sample projects, then persist the sample.

    Raises:
        ConfigurationError: If the population criteria are invalid
        SelectionError: If no candidate survives validation
        CriticalError: On authentication failure
    """
    criteria = config.criteria()
    warning = config.sample_size_warning()
    if warning:
        console.print_warning(warning)

    started = time.monotonic()
    with console.status("Searching for candidate projects..."):
        discovery_results, discovery_warnings = await ProjectDiscoverer(client).discover_all()
    for message in discovery_warnings:
        console.print_warning(message)

    manifest_path = config.research.manifest_path

    async def fetch_manifest(full_name: str) -> str:
        return await client.call(client.fetch_manifest, full_name, manifest_path)

    selector = SampleSelector(
        ProjectValidator(fetch_manifest, criteria.target_dependency),
        batch_size=config.research.validation_batch_size,
        batch_delay=config.github.request_delay,
        include_indeterminate=config.research.include_indeterminate,
    )
    with console.status("Validating candidates..."):
        selection = await selector.select(discovery_results, criteria)
    selection.warnings[:0] = discovery_warnings
    duration = time.monotonic() - started

    data_dir = config.output.data_path
    save_json(
        data_dir / OUTPUT_FILES['projects'],
        {
            "metadata": {
                **selection.to_dict(),
                "criteria": criteria.to_dict(),
                "timestamp": utc_now().isoformat(),
                "duration": duration,
            },
            "projects": [record.to_dict() for record in selection.sample],
        },
    )
    save_json(data_dir / OUTPUT_FILES['project_stats'], describe_sample(selection.sample))

    console.print_success(
        f"Selected {len(selection.sample)} of {selection.total_found} candidates "
        f"in {format_duration(duration)}"
    )
    for message in selection.warnings[len(discovery_warnings):]:
        console.print_warning(message)
    return selection


def load_sample(config: Config) -> StoredSample:
    """Load the sample written by :func:`fetch_projects`.

    Raises:
        ReportGenerationError: If no sample has been fetched yet
    """
    path = config.output.data_path / OUTPUT_FILES['projects']
    payload = load_json(path)
    if payload is None:
        raise ReportGenerationError(f"No project sample found at {path}. Run 'es-research fetch' first.")
    return StoredSample(
        projects=[RepositoryRecord.from_dict(item) for item in payload.get("projects", [])],
        metadata=dict(payload.get("metadata", {})),
    )


# =============================================================================
# Analyze
# =============================================================================


async def analyze_projects(
    config: Config,
    client: GitHubApiClient,
    checker: Optional[EsGuardChecker] = None,
    console: Console = default_console,
) -> AnalysisRun:
    """Analyze the stored sample and persist the population report.

    Raises:
        CheckerUnavailableError: If the checker cannot run
        ReportGenerationError: If no sample has been fetched yet
    """
    sample = load_sample(config)
    checker = checker or build_checker(config)
    if not await checker.is_available():
        raise CheckerUnavailableError(
            f"Checker '{config.analysis.checker_command}' is not available"
        )

    projects = sample.projects
    if config.analysis.max_projects:
        projects = projects[: config.analysis.max_projects]

    analyzer = ProjectAnalyzer(
        FileCollector(client),
        checker,
        concurrency=config.analysis.concurrency,
        project_delay=config.analysis.project_delay,
    )

    with make_progress(console) as progress:
        task_id = progress.add_task("Analyzing projects", total=len(projects))
        outcome = await analyzer.analyze_sample(
            projects, on_project_done=lambda _: progress.advance(task_id)
        )

    aggregator = PopulationAggregator(confidence_level=config.research.confidence_level)
    report = aggregator.aggregate(
        [result.statistics for result in outcome.results],
        len(outcome.failures),
        excluded_indeterminate=sample.excluded_indeterminate,
    )

    run = AnalysisRun(
        report=report,
        results=outcome.results,
        failures=outcome.failures,
        metadata={
            "total_projects": report.total_candidates,
            "analyzed_projects": report.analyzed_projects,
            "failed_projects": report.failed_projects,
            "timestamp": utc_now().isoformat(),
            "criteria": sample.metadata.get("criteria", config.criteria().to_dict()),
            "analysis": {
                "max_files_per_project": config.analysis.max_files_per_project,
                "max_file_size": config.analysis.max_file_size,
                "analysis_timeout": config.analysis.analysis_timeout,
                "concurrency": config.analysis.concurrency,
            },
        },
    )
    save_json(config.output.data_path / OUTPUT_FILES['analysis'], run.to_dict())

    console.print_success(
        f"Analyzed {report.analyzed_projects} projects ({report.failed_projects} failed); "
        f"{report.projects_with_issues} with issues"
    )
    return run


# =============================================================================
# Report
# =============================================================================


def load_analysis(config: Config) -> AnalysisRun:
    path = config.output.data_path / OUTPUT_FILES['analysis']
    payload = load_json(path)
    if payload is None:
        raise ReportGenerationError(
            f"No analysis results found at {path}. Run 'es-research analyze' first."
        )
    return AnalysisRun.from_dict(payload)


def generate_reports(config: Config, console: Console = default_console) -> List[Path]:
    """Render every report from the stored analysis results."""
    run = load_analysis(config)
    paths = Reporter(output_dir=config.output.reports_path).generate_all(run)
    console.print_success(f"Reports saved to: {config.output.reports_path}")
    return paths


async def run_research(
    config: Config,
    client: GitHubApiClient,
    checker: Optional[EsGuardChecker] = None,
    console: Console = default_console,
) -> List[Path]:
    """Run fetch, analyze and report back to back."""
    await fetch_projects(config, client, console)
    await analyze_projects(config, client, checker, console)
    return generate_reports(config, console)
