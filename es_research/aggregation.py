"""Project- and population-level aggregation of checker findings."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Mapping

from .constants import DISPLAY_LIMITS, RESEARCH_DEFAULTS
from .models import (
    FileAnalysisResult,
    PopulationReport,
    ProjectStatistics,
    severity_histogram,
)
from .statistics import confidence_interval, z_critical

logger = logging.getLogger(__name__)


def rank_histogram(counts: Mapping[str, int]) -> Dict[str, int]:
    """Order a histogram by count descending, ties by key ascending."""

    return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))


def aggregate_file_results(results: Iterable[FileAnalysisResult]) -> ProjectStatistics:
    """Reduce one project's per-file results into project statistics.

    Files that failed to analyze are counted in ``total_files`` and
    ``failed_files`` but never as files with issues. Missing categories are
    counted under ``"unknown"``, missing severities under ``"info"``.

    Args:
        results: File analysis results of one project

    Returns:
        Project statistics; all zero for an empty input
    """
    total_files = 0
    files_with_issues = 0
    failed_files = 0
    categories: Counter = Counter()
    issue_types: Counter = Counter()
    severity = severity_histogram()

    for result in results:
        total_files += 1
        if result.failed:
            failed_files += 1
        if result.has_issues:
            files_with_issues += 1
        for violation in result.violations:
            categories[violation.category_key] += 1
            issue_types[violation.type_key] += 1
            severity[violation.severity_key] += 1

    return ProjectStatistics(
        total_files=total_files,
        files_with_issues=files_with_issues,
        total_issues=sum(severity.values()),
        failed_files=failed_files,
        categories=rank_histogram(categories),
        severity=severity,
        issue_types=rank_histogram(issue_types),
    )


def _merge(histograms: Iterable[Mapping[str, int]]) -> Counter:
    merged: Counter = Counter()
    for histogram in histograms:
        merged.update(histogram)
    return merged


class PopulationAggregator:
    """Combine per-project statistics and hard failures into a report."""

    def __init__(
        self,
        confidence_level: float = RESEARCH_DEFAULTS['confidence_level'],
        top_issues: int = DISPLAY_LIMITS['top_issues'],
    ) -> None:
        z_critical(confidence_level)
        self.confidence_level = confidence_level
        self.top_issues = top_issues

    def aggregate(
        self,
        project_stats: List[ProjectStatistics],
        hard_failure_count: int,
        excluded_indeterminate: int = 0,
    ) -> PopulationReport:
        """Build the population report.

        Prevalence is computed over every candidate that was meant to be
        analyzed, so hard failures stay in the denominator.

        Args:
            project_stats: Statistics of every successfully analyzed project
            hard_failure_count: Number of sampled projects that failed outright
            excluded_indeterminate: Candidates left out because their
                population membership could not be determined

        Returns:
            Population report
        """
        if hard_failure_count < 0:
            raise ValueError(f"hard_failure_count must be non-negative, got {hard_failure_count}")

        analyzed = len(project_stats)
        total_candidates = analyzed + hard_failure_count
        with_issues = sum(1 for stats in project_stats if stats.has_issues)
        total_issues = sum(stats.total_issues for stats in project_stats)
        total_files = sum(stats.total_files for stats in project_stats)

        interval = confidence_interval(with_issues, total_candidates, self.confidence_level)
        prevalence = (with_issues / total_candidates * 100) if total_candidates else 0.0

        severity = severity_histogram()
        severity.update(_merge(stats.severity for stats in project_stats))
        issue_types = rank_histogram(_merge(stats.issue_types for stats in project_stats))
        top_issues = dict(list(issue_types.items())[: self.top_issues])

        logger.info(
            "Aggregated %d analyzed projects (%d failed): %d with issues",
            analyzed,
            hard_failure_count,
            with_issues,
        )

        return PopulationReport(
            total_candidates=total_candidates,
            analyzed_projects=analyzed,
            failed_projects=hard_failure_count,
            projects_with_issues=with_issues,
            projects_without_issues=analyzed - with_issues,
            total_files=total_files,
            total_issues=total_issues,
            confidence_level=self.confidence_level,
            prevalence_percentage=prevalence,
            confidence_interval=interval.as_percentages(),
            average_issues_per_project=total_issues / analyzed if analyzed else 0.0,
            average_issues_per_file=total_issues / total_files if total_files else 0.0,
            average_files_per_project=total_files / analyzed if analyzed else 0.0,
            issue_categories=rank_histogram(_merge(stats.categories for stats in project_stats)),
            issue_severity=rank_histogram(severity),
            issue_types=issue_types,
            top_issues=top_issues,
            excluded_indeterminate=excluded_indeterminate,
        )
