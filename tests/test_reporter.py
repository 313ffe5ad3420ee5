from __future__ import annotations

import csv
import json

import pytest
import yaml

from es_research.aggregation import PopulationAggregator, aggregate_file_results
from es_research.models import (
    AnalysisRun,
    FileAnalysisResult,
    FileDiscovery,
    ProjectAnalysisResult,
    ProjectFailure,
    RepositoryRecord,
    Severity,
    Violation,
)
from es_research.reporter import (
    ISSUE_DETAIL_HEADERS,
    PROJECT_SUMMARY_HEADERS,
    Reporter,
    format_bytes,
    format_duration,
)


def _run():
    clean = [FileAnalysisResult("src/a.js")]
    dirty = [
        FileAnalysisResult(
            "src/b.ts",
            (
                Violation("src/b.ts", "Optional chaining", Severity.ERROR, "typescript", "es2020", 4, 2),
                Violation("src/b.ts", "Class fields", Severity.WARNING, "typescript", "es2022"),
            ),
        )
    ]
    results = [
        ProjectAnalysisResult(
            project=RepositoryRecord("acme/clean", stars=900, forks=90),
            statistics=aggregate_file_results(clean),
            results=clean,
            file_discovery=FileDiscovery(total_files=10, filtered_files=1, analyzed_files=1),
        ),
        ProjectAnalysisResult(
            project=RepositoryRecord("acme/dirty", stars=300, forks=30),
            statistics=aggregate_file_results(dirty),
            results=dirty,
            file_discovery=FileDiscovery(total_files=5, filtered_files=1, analyzed_files=1),
        ),
    ]
    failures = [ProjectFailure("acme/broken", "No analyzable files found in acme/broken")]
    report = PopulationAggregator().aggregate([r.statistics for r in results], len(failures))
    metadata = {
        "timestamp": "2024-01-01T00:00:00+00:00",
        "criteria": {"sample_size": 3, "min_stars": 100, "min_forks": 10, "created_after": "2020-01-01"},
        "analysis": {"max_files_per_project": 100, "max_file_size": 1048576, "analysis_timeout": 30.0},
    }
    return AnalysisRun(report=report, results=results, failures=failures, metadata=metadata)


def _read_csv(path):
    with path.open(encoding="utf-8", newline="") as handle:
        return list(csv.reader(handle))


def test_generate_all_writes_every_report(tmp_path):
    paths = Reporter(output_dir=tmp_path).generate_all(_run())

    names = sorted(path.name for path in paths)
    assert names == sorted(
        [
            "project-summary.csv",
            "issues-detail.csv",
            "statistics-summary.csv",
            "detailed-results.json",
            "summary-report.json",
            "summary.yaml",
            "research-report.md",
        ]
    )
    assert all(path.exists() for path in paths)


def test_csv_reports_have_headers_and_rows(tmp_path):
    Reporter(output_dir=tmp_path).generate_all(_run())

    projects = _read_csv(tmp_path / "project-summary.csv")
    issues = _read_csv(tmp_path / "issues-detail.csv")
    statistics = _read_csv(tmp_path / "statistics-summary.csv")

    assert projects[0] == PROJECT_SUMMARY_HEADERS
    assert [row[0] for row in projects[1:]] == ["acme/clean", "acme/dirty"]
    assert projects[2][-1] == "Yes"
    assert issues[0] == ISSUE_DETAIL_HEADERS
    assert issues[1] == ["acme/dirty", "src/b.ts", "es2020", "typescript", "error", "Optional chaining", "4", "2"]
    assert issues[2][-2:] == ["", ""]
    rows = {row[0]: row for row in statistics[1:]}
    assert rows["Failed Projects"][1] == "1"
    assert rows["Projects with Issues"][2] == "33.3%"


def test_json_and_yaml_reports_carry_failures(tmp_path):
    Reporter(output_dir=tmp_path).generate_all(_run())

    detailed = json.loads((tmp_path / "detailed-results.json").read_text(encoding="utf-8"))
    summary = yaml.safe_load((tmp_path / "summary.yaml").read_text(encoding="utf-8"))

    assert detailed["errors"][0]["project"] == "acme/broken"
    assert detailed["results"][1]["top_issues"] == {"es2020": 1, "es2022": 1}
    assert summary["summary"]["overview"]["failed_projects"] == 1


def test_markdown_discloses_failures_next_to_prevalence():
    content = Reporter().generate_markdown_content(_run())

    assert "33.3% of sampled projects" in content
    assert "including 1 failed analyses" in content
    assert "## Failed Analyses" in content
    assert "`acme/broken`" in content
    assert "**Max File Size**: 1 MB" in content


def test_markdown_without_failures_has_no_failure_section():
    run = _run()
    run.failures = []

    assert "## Failed Analyses" not in Reporter().generate_markdown_content(run)


@pytest.mark.parametrize(
    "size,expected",
    [(0, "0 Bytes"), (512, "512 Bytes"), (1024, "1 KB"), (1536, "1.5 KB"), (1048576, "1 MB")],
)
def test_format_bytes(size, expected):
    assert format_bytes(size) == expected


def test_format_duration():
    assert format_duration(0.25) == "250ms"
    assert format_duration(12.34) == "12.3s"
    assert format_duration(90) == "1.5m"
    assert format_duration(7200) == "2.0h"
