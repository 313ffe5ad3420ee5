from __future__ import annotations

import math
import random

import pytest
from scipy import stats

from es_research.aggregation import (
    PopulationAggregator,
    aggregate_file_results,
    rank_histogram,
)
from es_research.models import FileAnalysisResult, ProjectStatistics, Severity, Violation


def _error(path, rule="es2020", category="javascript"):
    return Violation(path, "unsupported syntax", Severity.ERROR, category, rule)


def test_empty_project_has_zero_statistics():
    statistics = aggregate_file_results([])

    assert statistics.total_files == 0
    assert statistics.total_issues == 0
    assert statistics.severity == {"error": 0, "warning": 0, "info": 0}
    assert not statistics.has_issues


def test_two_files_one_error_and_one_clean():
    results = [
        FileAnalysisResult("src/a.js", (_error("src/a.js"),)),
        FileAnalysisResult("src/b.js"),
    ]

    statistics = aggregate_file_results(results)

    assert statistics.total_files == 2
    assert statistics.files_with_issues == 1
    assert statistics.total_issues == 1
    assert statistics.categories == {"javascript": 1}
    assert statistics.severity == {"error": 1, "warning": 0, "info": 0}


@pytest.mark.parametrize("count", [1, 3, 10])
def test_one_error_per_file(count):
    results = [
        FileAnalysisResult(f"f{i}.js", (_error(f"f{i}.js"),)) for i in range(count)
    ]

    statistics = aggregate_file_results(results)

    assert statistics.total_files == count
    assert statistics.files_with_issues == count
    assert statistics.total_issues == count
    assert statistics.severity["error"] == count


def test_missing_severity_category_and_type_use_defaults():
    results = [FileAnalysisResult("x.js", (Violation("x.js", "?"),))]

    statistics = aggregate_file_results(results)

    assert statistics.severity == {"error": 0, "warning": 0, "info": 1}
    assert statistics.categories == {"unknown": 1}
    assert statistics.issue_types == {"unknown": 1}


def test_failed_files_are_counted_but_never_have_issues():
    results = [
        FileAnalysisResult.failure("a.js", "Analysis timeout"),
        FileAnalysisResult("b.js"),
    ]

    statistics = aggregate_file_results(results)

    assert statistics.total_files == 2
    assert statistics.failed_files == 1
    assert statistics.files_with_issues == 0


def test_severity_total_always_matches_issue_count():
    results = [
        FileAnalysisResult(
            "a.ts",
            (
                Violation("a.ts", severity=Severity.WARNING),
                Violation("a.ts", severity=Severity.ERROR),
                Violation("a.ts"),
            ),
        ),
        FileAnalysisResult("b.ts", (Violation("b.ts", severity=Severity.INFO),)),
    ]

    statistics = aggregate_file_results(results)

    assert sum(statistics.severity.values()) == statistics.total_issues == 4
    assert sum(statistics.categories.values()) == statistics.total_issues
    assert statistics.files_with_issues <= statistics.total_files


def test_rank_histogram_breaks_ties_by_key():
    ranked = rank_histogram({"b": 2, "c": 5, "a": 2, "d": 1})

    assert list(ranked) == ["c", "a", "b", "d"]


def _project(issues, files=2, rule="es2020"):
    histogram = {"error": issues, "warning": 0, "info": 0}
    return ProjectStatistics(
        total_files=files,
        files_with_issues=min(issues, files),
        total_issues=issues,
        categories={"javascript": issues} if issues else {},
        severity=histogram,
        issue_types={rule: issues} if issues else {},
    )


def test_population_with_a_hard_failure():
    report = PopulationAggregator(0.95).aggregate(
        [_project(2), _project(1), _project(0), _project(4)], hard_failure_count=1
    )

    assert report.total_candidates == 5
    assert report.analyzed_projects == 4
    assert report.failed_projects == 1
    assert report.projects_with_issues == 3
    assert report.projects_without_issues == 1
    assert report.prevalence_percentage == pytest.approx(60.0)

    z = stats.norm.ppf(0.975)
    margin = z * math.sqrt(0.6 * 0.4 / 5)
    assert report.confidence_interval.margin == pytest.approx(margin * 100)
    assert report.confidence_interval.lower == pytest.approx((0.6 - margin) * 100)
    assert report.confidence_interval.upper == pytest.approx(min(1.0, 0.6 + margin) * 100)


def test_population_invariants_hold():
    projects = [_project(i % 3, files=1 + i) for i in range(9)]

    report = PopulationAggregator().aggregate(projects, hard_failure_count=2)

    assert report.analyzed_projects + report.failed_projects == report.total_candidates
    assert report.projects_with_issues + report.projects_without_issues == report.analyzed_projects
    assert sum(report.issue_severity.values()) == report.total_issues
    assert 0.0 <= report.confidence_interval.lower <= report.prevalence_percentage
    assert report.prevalence_percentage <= report.confidence_interval.upper <= 100.0


def test_empty_population_reports_zeros():
    report = PopulationAggregator().aggregate([], hard_failure_count=0)

    assert report.total_candidates == 0
    assert report.prevalence_percentage == 0.0
    assert report.average_issues_per_project == 0.0
    assert report.average_issues_per_file == 0.0
    assert report.average_files_per_project == 0.0
    assert report.confidence_interval.to_dict() == {"lower": 0.0, "upper": 0.0, "margin": 0.0}
    assert report.issue_severity == {"error": 0, "warning": 0, "info": 0}


def test_all_projects_failed_keeps_denominator():
    report = PopulationAggregator().aggregate([], hard_failure_count=3)

    assert report.total_candidates == 3
    assert report.prevalence_percentage == 0.0
    assert report.confidence_interval.margin == 0.0


def test_report_is_independent_of_input_order():
    projects = [
        _project(3, rule="es2020"),
        _project(1, rule="es2022"),
        _project(0),
        _project(2, rule="es2021"),
        _project(2, rule="es2019"),
    ]
    shuffled = list(projects)
    random.Random(4).shuffle(shuffled)

    aggregator = PopulationAggregator()
    first = aggregator.aggregate(projects, 1).to_dict()
    second = aggregator.aggregate(shuffled, 1).to_dict()

    assert first == second
    assert list(first["issue_types"]) == list(second["issue_types"])


def test_top_issues_are_ranked_and_truncated():
    projects = [
        _project(5, rule="es2020"),
        _project(2, rule="es2022"),
        _project(2, rule="es2019"),
        _project(1, rule="es2021"),
    ]

    report = PopulationAggregator(top_issues=3).aggregate(projects, 0)

    assert list(report.top_issues.items()) == [("es2020", 5), ("es2019", 2), ("es2022", 2)]


def test_averages_are_computed_over_analyzed_projects():
    report = PopulationAggregator().aggregate([_project(4, files=8), _project(0, files=2)], 3)

    assert report.average_issues_per_project == pytest.approx(2.0)
    assert report.average_issues_per_file == pytest.approx(0.4)
    assert report.average_files_per_project == pytest.approx(5.0)


def test_excluded_candidates_are_reported():
    report = PopulationAggregator().aggregate([_project(1)], 0, excluded_indeterminate=4)

    assert report.excluded_indeterminate == 4


def test_negative_failure_count_is_rejected():
    with pytest.raises(ValueError):
        PopulationAggregator().aggregate([], hard_failure_count=-1)
