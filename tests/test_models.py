from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import date, datetime, timezone

import pytest

from es_research.exceptions import ConfigurationError
from es_research.models import (
    AnalysisRun,
    ConfidenceInterval,
    FileAnalysisResult,
    PopulationCriteria,
    PopulationReport,
    ProjectFailure,
    RepositoryRecord,
    Severity,
    ValidationOutcome,
    ValidationStatus,
    Violation,
    parse_timestamp,
)


def test_repository_record_from_api_maps_github_fields():
    payload = {
        "id": 7,
        "name": "x",
        "full_name": "a/x",
        "description": None,
        "stargazers_count": 500,
        "forks_count": 50,
        "language": "JavaScript",
        "created_at": "2021-01-01T00:00:00Z",
        "updated_at": "2024-01-01T00:00:00Z",
        "clone_url": "https://github.com/a/x.git",
        "default_branch": "canary",
    }

    record = RepositoryRecord.from_api(payload)

    assert record.full_name == "a/x"
    assert (record.owner, record.name) == ("a", "x")
    assert (record.stars, record.forks) == (500, 50)
    assert record.default_branch == "canary"
    assert record.created_datetime() == datetime(2021, 1, 1, tzinfo=timezone.utc)
    assert record.to_dict() == payload


@pytest.mark.parametrize("value", ["", "   ", "not-a-date", None])
def test_parse_timestamp_rejects_missing_or_invalid_values(value):
    assert parse_timestamp(value) is None


def test_parse_timestamp_assumes_utc_for_naive_values():
    assert parse_timestamp("2020-01-01") == datetime(2020, 1, 1, tzinfo=timezone.utc)


def test_population_criteria_accepts_zero_thresholds_and_iso_strings():
    criteria = PopulationCriteria(min_stars=0, min_forks=0, created_after="2020-01-01")

    assert criteria.created_after == date(2020, 1, 1)
    assert criteria.created_after_datetime == datetime(2020, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "overrides",
    [
        {"min_stars": -1},
        {"min_forks": -5},
        {"sample_size": 0},
        {"confidence_level": 1.0},
        {"margin_of_error": 0.0},
        {"created_after": "yesterday"},
        {"target_dependency": ""},
    ],
)
def test_population_criteria_rejects_invalid_values(overrides):
    with pytest.raises(ConfigurationError):
        PopulationCriteria(**overrides)


def test_population_criteria_is_immutable():
    criteria = PopulationCriteria()

    with pytest.raises(FrozenInstanceError):
        criteria.sample_size = 5  # type: ignore[misc]


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("error", Severity.ERROR),
        ("WARNING", Severity.WARNING),
        (" info ", Severity.INFO),
        ("fatal", None),
        (None, None),
        (3, None),
    ],
)
def test_severity_parse(raw, expected):
    assert Severity.parse(raw) is expected


def test_violation_defaults_for_missing_fields():
    violation = Violation(file_path="a.js")

    assert violation.severity_key == "info"
    assert violation.category_key == "unknown"
    assert violation.type_key == "unknown"


def test_file_analysis_result_summary_counts_categories_and_severities():
    result = FileAnalysisResult(
        file_path="src/app.js",
        violations=(
            Violation("src/app.js", severity=Severity.ERROR, category="javascript"),
            Violation("src/app.js", severity=Severity.WARNING, category="javascript"),
            Violation("src/app.js"),
        ),
    )

    assert result.has_issues
    assert not result.failed
    assert result.summary() == {
        "total": 3,
        "categories": {"javascript": 2, "unknown": 1},
        "severity": {"error": 1, "warning": 1, "info": 1},
    }


def test_failure_result_is_distinct_from_clean_result():
    failed = FileAnalysisResult.failure("src/app.js", "Analysis timeout")
    clean = FileAnalysisResult("src/app.js")

    assert failed.failed and not failed.has_issues
    assert not clean.failed and not clean.has_issues


def test_file_analysis_result_survives_serialisation():
    result = FileAnalysisResult(
        file_path="pages/index.tsx",
        violations=(
            Violation("pages/index.tsx", "Optional chaining", Severity.ERROR, "typescript", "es2020", 3, 9),
        ),
    )

    restored = FileAnalysisResult.from_dict(result.to_dict())

    assert restored == result


def test_validation_outcome_constructors():
    assert ValidationOutcome.valid("^14.0.0").status is ValidationStatus.VALID
    assert ValidationOutcome.valid("^14.0.0").version == "^14.0.0"
    assert "14.0.0" in ValidationOutcome.valid("^14.0.0").reason
    assert ValidationOutcome.invalid("dependency absent").to_dict() == {
        "status": "invalid",
        "reason": "dependency absent",
    }
    assert not ValidationOutcome.indeterminate("boom").is_valid


def test_population_report_round_trips_through_dict():
    report = PopulationReport(
        total_candidates=5,
        analyzed_projects=4,
        failed_projects=1,
        projects_with_issues=3,
        projects_without_issues=1,
        total_files=40,
        total_issues=12,
        confidence_level=0.95,
        prevalence_percentage=60.0,
        confidence_interval=ConfidenceInterval(17.06, 100.0, 42.94),
        average_issues_per_project=3.0,
        average_issues_per_file=0.3,
        average_files_per_project=10.0,
        issue_categories={"javascript": 12},
        issue_severity={"error": 12, "warning": 0, "info": 0},
        issue_types={"es2020": 12},
        top_issues={"es2020": 12},
        excluded_indeterminate=2,
    )

    payload = report.to_dict()

    assert payload["overview"]["failed_projects"] == 1
    assert payload["statistics"]["issue_prevalence"]["confidence_interval"]["upper"] == 100.0
    assert PopulationReport.from_dict(payload) == report


def test_analysis_run_restores_failures():
    report = PopulationReport.from_dict({})
    run = AnalysisRun(report=report, failures=[ProjectFailure("a/x", "no files")])

    restored = AnalysisRun.from_dict(run.to_dict())

    assert [failure.project for failure in restored.failures] == ["a/x"]
    assert restored.failures[0].error == "no files"
