"""Report generation from stored analysis results."""

from __future__ import annotations

import csv
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

from .constants import DISPLAY_LIMITS, OUTPUT_FILES
from .exceptions import ReportGenerationError
from .models import AnalysisRun, PopulationReport, ProjectAnalysisResult
from .storage import save_json, save_yaml

logger = logging.getLogger(__name__)

PROJECT_SUMMARY_HEADERS = [
    "Project",
    "Stars",
    "Forks",
    "Total Files",
    "Analyzed Files",
    "Files With Issues",
    "Total Issues",
    "Issue Categories",
    "Has Issues",
]

ISSUE_DETAIL_HEADERS = [
    "Project",
    "File Path",
    "Issue Type",
    "Category",
    "Severity",
    "Message",
    "Line",
    "Column",
]


def format_bytes(size: int) -> str:
    """Format a byte count using binary units."""
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    for unit in ("Bytes", "KB", "MB"):
        if value < 1024:
            return f"{value:.2f}".rstrip("0").rstrip(".") + f" {unit}"
        value /= 1024
    return f"{value:.2f}".rstrip("0").rstrip(".") + " GB"


def format_duration(seconds: float) -> str:
    """Format a duration in seconds for display."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


def _percent(part: int, whole: int) -> str:
    return f"{part / whole * 100:.1f}%" if whole else "0.0%"


def top_issues_for_project(result: ProjectAnalysisResult, limit: int) -> Dict[str, int]:
    counts = Counter(
        violation.type_key for file_result in result.results for violation in file_result.violations
    )
    return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit])


@dataclass(slots=True)
class Reporter:
    """Create CSV, JSON, YAML and Markdown artefacts from an analysis run."""

    output_dir: Path = Path("reports")

    def ensure_structure(self) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def generate_all(self, run: AnalysisRun) -> List[Path]:
        """Write every report format.

        Raises:
            ReportGenerationError: If a report cannot be written
        """
        try:
            self.ensure_structure()
            paths = self.write_csv_reports(run)
            paths += self.write_json_reports(run)
            paths.append(self.write_yaml_report(run))
            paths.append(self.generate_markdown(run))
        except OSError as exc:
            raise ReportGenerationError(f"Failed to write reports to {self.output_dir}: {exc}") from exc
        return paths

    # ------------------------------------------------------------------
    # CSV
    # ------------------------------------------------------------------

    def _write_rows(self, name: str, headers: List[str], rows: List[List[Any]]) -> Path:
        path = self.output_dir / OUTPUT_FILES[name]
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(headers)
            writer.writerows(rows)
        logger.debug("Wrote %d rows to %s", len(rows), path)
        return path

    def write_csv_reports(self, run: AnalysisRun) -> List[Path]:
        project_rows = [
            [
                result.project.full_name,
                result.project.stars,
                result.project.forks,
                result.file_discovery.total_files,
                result.file_discovery.analyzed_files,
                result.statistics.files_with_issues,
                result.statistics.total_issues,
                "; ".join(result.statistics.categories),
                "Yes" if result.statistics.has_issues else "No",
            ]
            for result in run.results
        ]

        issue_rows = [
            [
                result.project.full_name,
                file_result.file_path,
                violation.type_key,
                violation.category_key,
                violation.severity_key,
                violation.message,
                "" if violation.line is None else violation.line,
                "" if violation.column is None else violation.column,
            ]
            for result in run.results
            for file_result in result.results
            for violation in file_result.violations
        ]

        return [
            self._write_rows("project_csv", PROJECT_SUMMARY_HEADERS, project_rows),
            self._write_rows("issues_csv", ISSUE_DETAIL_HEADERS, issue_rows),
            self._write_rows(
                "statistics_csv", ["Metric", "Value", "Percentage"], self._statistics_rows(run.report)
            ),
        ]

    @staticmethod
    def _statistics_rows(report: PopulationReport) -> List[List[Any]]:
        total = report.total_candidates
        return [
            ["Total Projects", total, "100%" if total else "0.0%"],
            ["Analyzed Projects", report.analyzed_projects, _percent(report.analyzed_projects, total)],
            ["Failed Projects", report.failed_projects, _percent(report.failed_projects, total)],
            ["Projects with Issues", report.projects_with_issues, f"{report.prevalence_percentage:.1f}%"],
            [
                "Projects without Issues",
                report.projects_without_issues,
                _percent(report.projects_without_issues, total),
            ],
            ["Total Files Analyzed", report.total_files, ""],
            ["Total Issues Found", report.total_issues, ""],
            ["Average Issues per Project", f"{report.average_issues_per_project:.1f}", ""],
            ["Average Issues per File", f"{report.average_issues_per_file:.2f}", ""],
        ]

    # ------------------------------------------------------------------
    # JSON / YAML
    # ------------------------------------------------------------------

    def write_json_reports(self, run: AnalysisRun) -> List[Path]:
        summary = run.report.to_dict()
        limit = DISPLAY_LIMITS['top_issues_per_project']
        detailed = {
            "metadata": run.metadata,
            "summary": summary,
            "results": [
                {
                    "project": result.project.to_dict(),
                    "statistics": result.statistics.to_dict(),
                    "file_discovery": result.file_discovery.to_dict(),
                    "duration": result.duration,
                    "top_issues": top_issues_for_project(result, limit),
                }
                for result in run.results
            ],
            "errors": [failure.to_dict() for failure in run.failures],
        }
        overview = {
            "metadata": run.metadata,
            "summary": summary,
            "issue_breakdown": {
                "by_category": run.report.issue_categories,
                "by_severity": run.report.issue_severity,
                "top_issues": run.report.top_issues,
            },
            "confidence_intervals": {
                "issue_prevalence": run.report.confidence_interval.to_dict(),
            },
        }
        return [
            save_json(self.output_dir / OUTPUT_FILES['detailed_json'], detailed),
            save_json(self.output_dir / OUTPUT_FILES['summary_json'], overview),
        ]

    def write_yaml_report(self, run: AnalysisRun) -> Path:
        return save_yaml(
            self.output_dir / OUTPUT_FILES['summary_yaml'],
            {"metadata": run.metadata, "summary": run.report.to_dict()},
        )

    # ------------------------------------------------------------------
    # Markdown
    # ------------------------------------------------------------------

    def generate_markdown(self, run: AnalysisRun) -> Path:
        """Write the research report in Markdown."""
        path = self.output_dir / OUTPUT_FILES['report_md']
        path.write_text(self.generate_markdown_content(run), encoding="utf-8")
        return path

    def generate_markdown_content(self, run: AnalysisRun) -> str:
        report = run.report
        metadata = run.metadata
        criteria = metadata.get("criteria", {})
        interval = report.confidence_interval
        level = f"{report.confidence_level:.0%}"

        lines = [
            "# JavaScript Syntax Compatibility Research Report",
            "",
            "## Executive Summary",
            "",
            f"This report covers {report.total_candidates} sampled projects: "
            f"{report.analyzed_projects} analyzed and {report.failed_projects} that could not be analyzed.",
            "",
            "### Key Findings",
            "",
            f"- **Issue Prevalence**: {report.prevalence_percentage:.1f}% of sampled projects "
            f"({report.projects_with_issues} of {report.total_candidates}, "
            f"including {report.failed_projects} failed analyses in the denominator)",
            f"- **Confidence Interval**: {interval.lower:.1f}% - {interval.upper:.1f}% ({level} confidence)",
            f"- **Total Issues Found**: {report.total_issues} across {report.total_files} files",
            f"- **Average Issues per Project**: {report.average_issues_per_project:.1f}",
            "",
            "## Methodology",
            "",
            "### Sample Selection",
            f"- **Target Sample Size**: {criteria.get('sample_size', 'n/a')} projects",
            f"- **Minimum Stars**: {criteria.get('min_stars', 'n/a')}",
            f"- **Minimum Forks**: {criteria.get('min_forks', 'n/a')}",
            f"- **Created After**: {criteria.get('created_after', 'n/a')}",
            f"- **Excluded (membership indeterminate)**: {report.excluded_indeterminate}",
            "",
            "## Detailed Results",
            "",
            "### Project Overview",
            f"- **Total Projects**: {report.total_candidates}",
            f"- **Projects Analyzed**: {report.analyzed_projects}",
            f"- **Failed Analyses**: {report.failed_projects}",
            f"- **Projects with Issues**: {report.projects_with_issues}",
            f"- **Projects without Issues**: {report.projects_without_issues}",
            "",
            "### Issue Distribution",
            "",
            "#### By Category",
            *self._histogram_lines(report.issue_categories, "issues"),
            "",
            "#### By Severity",
            *self._histogram_lines(report.issue_severity, "issues"),
            "",
            "#### Top Issue Types",
            *self._histogram_lines(report.top_issues, "occurrences"),
            "",
            "### Statistical Precision",
            f"- **Confidence Level**: {level}",
            f"- **Margin of Error**: ±{interval.margin:.1f}%",
            "",
        ]

        if run.failures:
            lines += ["## Failed Analyses", ""]
            lines += [f"- `{failure.project}`: {failure.error}" for failure in run.failures]
            lines.append("")

        analysis = metadata.get("analysis", {})
        if analysis:
            lines += [
                "## Technical Details",
                "",
                f"- **Max Files per Project**: {analysis.get('max_files_per_project')}",
                f"- **Max File Size**: {format_bytes(int(analysis.get('max_file_size', 0)))}",
                f"- **Analysis Timeout**: {analysis.get('analysis_timeout')}s",
                f"- **Collection Date**: {metadata.get('timestamp', 'n/a')}",
                "",
            ]
        return "\n".join(lines)

    @staticmethod
    def _histogram_lines(histogram: Dict[str, int], unit: str) -> List[str]:
        if not histogram:
            return ["- None"]
        return [f"- **{key}**: {count} {unit}" for key, count in histogram.items()]
