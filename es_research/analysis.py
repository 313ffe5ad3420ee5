"""Per-project analysis and the loop over a whole sample."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .aggregation import aggregate_file_results
from .checker import EsGuardChecker
from .exceptions import CriticalError, ProjectAnalysisError
from .files import FileCollector
from .models import FileAnalysisResult, ProjectAnalysisResult, ProjectFailure, RepositoryRecord
from .runner import BoundedConcurrencyRunner, Task, TaskResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SampleAnalysis:
    """Analyzed projects and hard failures for one sample."""

    results: List[ProjectAnalysisResult] = field(default_factory=list)
    failures: List[ProjectFailure] = field(default_factory=list)


class ProjectAnalyzer:
    """Collect, check and aggregate the files of sampled projects.

    Args:
        collector: Retrieves analyzable files of a project
        checker: Runs the external syntax checker
        concurrency: Checker invocations in flight per project
        project_delay: Pause between projects, in seconds
    """

    def __init__(
        self,
        collector: FileCollector,
        checker: EsGuardChecker,
        concurrency: int = 5,
        project_delay: float = 0.0,
    ):
        self.collector = collector
        self.checker = checker
        self.runner = BoundedConcurrencyRunner(concurrency=concurrency)
        self.project_delay = project_delay

    async def analyze_project(self, project: RepositoryRecord) -> ProjectAnalysisResult:
        """Analyze one project.

        Raises:
            ProjectAnalysisError: If the project has no fetchable files or every file failed
            CriticalError: If the checker cannot run at all
        """
        started = time.monotonic()
        collected = await self.collector.collect(project)
        logger.info("Analyzing %d files for %s", len(collected.files), project.full_name)

        tasks = [
            Task(
                entry.path,
                lambda entry=entry: self.checker.analyze_file(entry.path, entry.content),
            )
            for entry in collected.files
        ]
        results = [self._to_file_result(result) for result in await self.runner.run(tasks)]
        results.sort(key=lambda result: result.file_path)
        collected.discovery.analyzed_files = len(results)

        statistics = aggregate_file_results(results)
        if statistics.total_files > 0 and statistics.failed_files == statistics.total_files:
            raise ProjectAnalysisError(
                f"All {statistics.total_files} files of {project.full_name} failed analysis",
                project.full_name,
            )

        return ProjectAnalysisResult(
            project=project,
            statistics=statistics,
            results=results,
            file_discovery=collected.discovery,
            duration=time.monotonic() - started,
        )

    @staticmethod
    def _to_file_result(result: TaskResult[FileAnalysisResult]) -> FileAnalysisResult:
        if result.ok and result.value is not None:
            return result.value
        return FileAnalysisResult.failure(result.key, result.error_message or "no result")

    async def analyze_sample(
        self,
        projects: List[RepositoryRecord],
        on_project_done: Optional[Callable[[RepositoryRecord], None]] = None,
    ) -> SampleAnalysis:
        """Analyze every project, recording failures instead of stopping.

        Raises:
            CriticalError: The only failure that aborts the loop
        """
        analysis = SampleAnalysis()
        for index, project in enumerate(projects):
            if index and self.project_delay > 0:
                await asyncio.sleep(self.project_delay)
            try:
                analysis.results.append(await self.analyze_project(project))
            except CriticalError:
                raise
            except Exception as exc:
                logger.warning("Failed to analyze %s: %s", project.full_name, exc)
                analysis.failures.append(ProjectFailure(project=project.full_name, error=str(exc)))
            if on_project_done is not None:
                on_project_done(project)
        return analysis
