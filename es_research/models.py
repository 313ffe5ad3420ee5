"""Domain models shared across the es-research toolkit."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ConfigurationError

UNKNOWN_CATEGORY = "unknown"
UNKNOWN_TYPE = "unknown"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a GitHub API timestamp string.

    Args:
        value: ISO format timestamp string, optionally with a trailing ``Z``

    Returns:
        Timezone-aware datetime, or None if the value is empty or invalid
    """
    if not value or not value.strip():
        return None
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RepositoryRecord:
    """One discovered candidate unit of the population."""

    full_name: str
    stars: int = 0
    forks: int = 0
    created_at: str = ""
    language: Optional[str] = None
    description: Optional[str] = None
    clone_url: str = ""
    default_branch: str = "main"
    id: Optional[int] = None
    updated_at: str = ""

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        parts = self.full_name.split("/", 1)
        return parts[1] if len(parts) > 1 else ""

    def created_datetime(self) -> Optional[datetime]:
        """Return the parsed creation timestamp, or None if unparseable."""
        return parse_timestamp(self.created_at)

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "RepositoryRecord":
        """Build a record from a GitHub repository payload."""

        return cls(
            full_name=str(payload["full_name"]),
            stars=int(payload.get("stargazers_count") or 0),
            forks=int(payload.get("forks_count") or 0),
            created_at=payload.get("created_at") or "",
            language=payload.get("language"),
            description=payload.get("description"),
            clone_url=payload.get("clone_url") or "",
            default_branch=payload.get("default_branch") or "main",
            id=payload.get("id"),
            updated_at=payload.get("updated_at") or "",
        )

    # Persisted with GitHub's field names so stored samples stay readable.
    from_dict = from_api

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the record for JSON persistence."""

        return {
            "id": self.id,
            "name": self.name,
            "full_name": self.full_name,
            "description": self.description,
            "stargazers_count": self.stars,
            "forks_count": self.forks,
            "language": self.language,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "clone_url": self.clone_url,
            "default_branch": self.default_branch,
        }


@dataclass(slots=True, frozen=True)
class PopulationCriteria:
    """Immutable population definition used for one sampling run."""

    min_stars: int = 100
    min_forks: int = 10
    created_after: date = date(2020, 1, 1)
    sample_size: int = 1000
    confidence_level: float = 0.95
    margin_of_error: float = 0.05
    target_dependency: str = "next"

    def __post_init__(self) -> None:
        if isinstance(self.created_after, str):
            try:
                parsed = date.fromisoformat(self.created_after)
            except ValueError as exc:
                raise ConfigurationError(
                    f"created_after must be an ISO date, got {self.created_after!r}"
                ) from exc
            object.__setattr__(self, "created_after", parsed)

        errors = []
        if self.min_stars < 0:
            errors.append(f"min_stars must be non-negative, got {self.min_stars}")
        if self.min_forks < 0:
            errors.append(f"min_forks must be non-negative, got {self.min_forks}")
        if self.sample_size < 1:
            errors.append(f"sample_size must be at least 1, got {self.sample_size}")
        if not 0 < self.confidence_level < 1:
            errors.append(
                f"confidence_level must be between 0 and 1, got {self.confidence_level}"
            )
        if not 0 < self.margin_of_error < 1:
            errors.append(
                f"margin_of_error must be between 0 and 1, got {self.margin_of_error}"
            )
        if not self.target_dependency:
            errors.append("target_dependency cannot be empty")
        if errors:
            raise ConfigurationError("Invalid population criteria:\n  - " + "\n  - ".join(errors))

    @property
    def created_after_datetime(self) -> datetime:
        return datetime.combine(self.created_after, datetime.min.time(), tzinfo=timezone.utc)

    def to_dict(self) -> Dict[str, object]:
        return {
            "min_stars": self.min_stars,
            "min_forks": self.min_forks,
            "created_after": self.created_after.isoformat(),
            "sample_size": self.sample_size,
            "confidence_level": self.confidence_level,
            "margin_of_error": self.margin_of_error,
            "target_dependency": self.target_dependency,
        }


class ValidationStatus(str, Enum):
    """Population membership verdict for one candidate."""

    VALID = "valid"
    INVALID = "invalid"
    INDETERMINATE = "indeterminate"


@dataclass(slots=True, frozen=True)
class ValidationOutcome:
    """Tri-state result of validating a repository record."""

    status: ValidationStatus
    reason: str = ""
    version: Optional[str] = None

    @classmethod
    def valid(cls, version: str) -> "ValidationOutcome":
        return cls(ValidationStatus.VALID, f"declares version {version}", version)

    @classmethod
    def invalid(cls, reason: str) -> "ValidationOutcome":
        return cls(ValidationStatus.INVALID, reason)

    @classmethod
    def indeterminate(cls, reason: str) -> "ValidationOutcome":
        return cls(ValidationStatus.INDETERMINATE, reason)

    @property
    def is_valid(self) -> bool:
        return self.status is ValidationStatus.VALID

    def to_dict(self) -> Dict[str, Optional[str]]:
        payload: Dict[str, Optional[str]] = {
            "status": self.status.value,
            "reason": self.reason,
        }
        if self.version is not None:
            payload["version"] = self.version
        return payload


class Severity(str, Enum):
    """Severity levels reported by the syntax checker."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @classmethod
    def parse(cls, value: Any) -> Optional["Severity"]:
        """Map a raw severity value onto a level.

        Unrecognised or missing values yield None so that aggregation applies
        its default.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


DEFAULT_SEVERITY = Severity.INFO


@dataclass(slots=True, frozen=True)
class Violation:
    """One issue instance reported by the external checker."""

    file_path: str
    message: str = ""
    severity: Optional[Severity] = None
    category: Optional[str] = None
    rule: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    @property
    def severity_key(self) -> str:
        return (self.severity or DEFAULT_SEVERITY).value

    @property
    def category_key(self) -> str:
        return self.category or UNKNOWN_CATEGORY

    @property
    def type_key(self) -> str:
        return self.rule or UNKNOWN_TYPE

    def to_dict(self) -> Dict[str, object]:
        return {
            "file_path": self.file_path,
            "message": self.message,
            "severity": self.severity.value if self.severity else None,
            "category": self.category,
            "type": self.rule,
            "line": self.line,
            "column": self.column,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Violation":
        return cls(
            file_path=payload.get("file_path", ""),
            message=payload.get("message") or "",
            severity=Severity.parse(payload.get("severity")),
            category=payload.get("category"),
            rule=payload.get("type"),
            line=payload.get("line"),
            column=payload.get("column"),
        )


def severity_histogram() -> Dict[str, int]:
    """Return a severity histogram with every level present."""
    return {level.value: 0 for level in Severity}


@dataclass(slots=True, frozen=True)
class FileAnalysisResult:
    """Outcome of running the checker on one file."""

    file_path: str
    violations: Tuple[Violation, ...] = ()
    timestamp: datetime = field(default_factory=utc_now)
    error: Optional[str] = None

    @classmethod
    def failure(cls, file_path: str, error: str) -> "FileAnalysisResult":
        return cls(file_path=file_path, error=error)

    @property
    def has_issues(self) -> bool:
        return len(self.violations) > 0

    @property
    def failed(self) -> bool:
        return self.error is not None

    def summary(self) -> Dict[str, object]:
        """Counts per category and per severity for this file."""

        severity = severity_histogram()
        for violation in self.violations:
            severity[violation.severity_key] += 1
        return {
            "total": len(self.violations),
            "categories": dict(Counter(v.category_key for v in self.violations)),
            "severity": severity,
        }

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "file_path": self.file_path,
            "has_issues": self.has_issues,
            "violations": [v.to_dict() for v in self.violations],
            "summary": self.summary(),
            "timestamp": self.timestamp.isoformat(),
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FileAnalysisResult":
        return cls(
            file_path=payload["file_path"],
            violations=tuple(Violation.from_dict(v) for v in payload.get("violations", [])),
            timestamp=parse_timestamp(payload.get("timestamp")) or utc_now(),
            error=payload.get("error"),
        )


@dataclass(slots=True, frozen=True)
class ProjectStatistics:
    """Aggregate over one project's file analysis results."""

    total_files: int = 0
    files_with_issues: int = 0
    total_issues: int = 0
    failed_files: int = 0
    categories: Dict[str, int] = field(default_factory=dict)
    severity: Dict[str, int] = field(default_factory=severity_histogram)
    issue_types: Dict[str, int] = field(default_factory=dict)

    @property
    def has_issues(self) -> bool:
        return self.files_with_issues > 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_files": self.total_files,
            "files_with_issues": self.files_with_issues,
            "total_issues": self.total_issues,
            "failed_files": self.failed_files,
            "categories": dict(self.categories),
            "severity": dict(self.severity),
            "issue_types": dict(self.issue_types),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProjectStatistics":
        severity = severity_histogram()
        severity.update(payload.get("severity", {}))
        return cls(
            total_files=int(payload.get("total_files", 0)),
            files_with_issues=int(payload.get("files_with_issues", 0)),
            total_issues=int(payload.get("total_issues", 0)),
            failed_files=int(payload.get("failed_files", 0)),
            categories=dict(payload.get("categories", {})),
            severity=severity,
            issue_types=dict(payload.get("issue_types", {})),
        )


@dataclass(slots=True, frozen=True)
class ConfidenceInterval:
    """Proportion interval; all fields lie in [0, 1]."""

    lower: float = 0.0
    upper: float = 0.0
    margin: float = 0.0

    def as_percentages(self) -> "ConfidenceInterval":
        return ConfidenceInterval(self.lower * 100, self.upper * 100, self.margin * 100)

    def to_dict(self) -> Dict[str, float]:
        return {"lower": self.lower, "upper": self.upper, "margin": self.margin}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ConfidenceInterval":
        return cls(
            lower=float(payload.get("lower", 0.0)),
            upper=float(payload.get("upper", 0.0)),
            margin=float(payload.get("margin", 0.0)),
        )


@dataclass(slots=True)
class PopulationReport:
    """Population-level findings with prevalence and its confidence interval.

    ``prevalence_percentage`` and ``confidence_interval`` are expressed in
    percent. The failure count is always reported next to the prevalence.
    """

    total_candidates: int
    analyzed_projects: int
    failed_projects: int
    projects_with_issues: int
    projects_without_issues: int
    total_files: int
    total_issues: int
    confidence_level: float
    prevalence_percentage: float
    confidence_interval: ConfidenceInterval
    average_issues_per_project: float
    average_issues_per_file: float
    average_files_per_project: float
    issue_categories: Dict[str, int] = field(default_factory=dict)
    issue_severity: Dict[str, int] = field(default_factory=dict)
    issue_types: Dict[str, int] = field(default_factory=dict)
    top_issues: Dict[str, int] = field(default_factory=dict)
    excluded_indeterminate: int = 0

    def to_dict(self) -> Dict[str, object]:
        """Serialise the report into a JSON/YAML friendly structure."""

        return {
            "overview": {
                "total_projects": self.total_candidates,
                "analyzed_projects": self.analyzed_projects,
                "failed_projects": self.failed_projects,
                "projects_with_issues": self.projects_with_issues,
                "projects_without_issues": self.projects_without_issues,
                "total_files": self.total_files,
                "total_issues": self.total_issues,
                "excluded_indeterminate": self.excluded_indeterminate,
            },
            "statistics": {
                "issue_prevalence": {
                    "percentage": self.prevalence_percentage,
                    "confidence_level": self.confidence_level,
                    "confidence_interval": self.confidence_interval.to_dict(),
                },
                "average_issues_per_project": self.average_issues_per_project,
                "average_issues_per_file": self.average_issues_per_file,
                "average_files_per_project": self.average_files_per_project,
            },
            "issue_categories": dict(self.issue_categories),
            "issue_severity": dict(self.issue_severity),
            "issue_types": dict(self.issue_types),
            "top_issues": dict(self.top_issues),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PopulationReport":
        overview = payload.get("overview", {})
        statistics = payload.get("statistics", {})
        prevalence = statistics.get("issue_prevalence", {})
        return cls(
            total_candidates=int(overview.get("total_projects", 0)),
            analyzed_projects=int(overview.get("analyzed_projects", 0)),
            failed_projects=int(overview.get("failed_projects", 0)),
            projects_with_issues=int(overview.get("projects_with_issues", 0)),
            projects_without_issues=int(overview.get("projects_without_issues", 0)),
            total_files=int(overview.get("total_files", 0)),
            total_issues=int(overview.get("total_issues", 0)),
            excluded_indeterminate=int(overview.get("excluded_indeterminate", 0)),
            confidence_level=float(prevalence.get("confidence_level", 0.95)),
            prevalence_percentage=float(prevalence.get("percentage", 0.0)),
            confidence_interval=ConfidenceInterval.from_dict(
                prevalence.get("confidence_interval", {})
            ),
            average_issues_per_project=float(statistics.get("average_issues_per_project", 0.0)),
            average_issues_per_file=float(statistics.get("average_issues_per_file", 0.0)),
            average_files_per_project=float(statistics.get("average_files_per_project", 0.0)),
            issue_categories=dict(payload.get("issue_categories", {})),
            issue_severity=dict(payload.get("issue_severity", {})),
            issue_types=dict(payload.get("issue_types", {})),
            top_issues=dict(payload.get("top_issues", {})),
        )


@dataclass(slots=True)
class SelectionResult:
    """Outcome of one sampling run."""

    sample: List[RepositoryRecord]
    total_found: int
    total_valid: int
    invalid: Dict[str, ValidationOutcome] = field(default_factory=dict)
    indeterminate: Dict[str, ValidationOutcome] = field(default_factory=dict)
    filtered_out: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def invalid_count(self) -> int:
        return len(self.invalid)

    @property
    def indeterminate_count(self) -> int:
        return len(self.indeterminate)

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_found": self.total_found,
            "total_valid": self.total_valid,
            "invalid_count": self.invalid_count,
            "indeterminate_count": self.indeterminate_count,
            "filtered_out": self.filtered_out,
            "sampled": len(self.sample),
            "invalid": {name: o.to_dict() for name, o in self.invalid.items()},
            "indeterminate": {name: o.to_dict() for name, o in self.indeterminate.items()},
            "warnings": list(self.warnings),
        }


@dataclass(slots=True, frozen=True)
class FileEntry:
    """A file listed in a repository tree."""

    path: str
    size: Optional[int] = None


@dataclass(slots=True, frozen=True)
class FileToAnalyze:
    """A file whose content has been retrieved for analysis."""

    path: str
    content: str


@dataclass(slots=True)
class FileDiscovery:
    """How many files were seen, kept and analyzed for one project."""

    total_files: int = 0
    filtered_files: int = 0
    analyzed_files: int = 0
    skipped_files: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_files": self.total_files,
            "filtered_files": self.filtered_files,
            "analyzed_files": self.analyzed_files,
            "skipped_files": self.skipped_files,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FileDiscovery":
        return cls(**{key: int(payload.get(key, 0)) for key in cls.__slots__})


@dataclass(slots=True)
class ProjectAnalysisResult:
    """Everything produced by analyzing one sampled project."""

    project: RepositoryRecord
    statistics: ProjectStatistics
    results: List[FileAnalysisResult] = field(default_factory=list)
    file_discovery: FileDiscovery = field(default_factory=FileDiscovery)
    duration: float = 0.0
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, object]:
        return {
            "project": self.project.to_dict(),
            "statistics": self.statistics.to_dict(),
            "file_discovery": self.file_discovery.to_dict(),
            "duration": self.duration,
            "timestamp": self.timestamp.isoformat(),
            "results": [result.to_dict() for result in self.results],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProjectAnalysisResult":
        return cls(
            project=RepositoryRecord.from_dict(payload["project"]),
            statistics=ProjectStatistics.from_dict(payload.get("statistics", {})),
            results=[FileAnalysisResult.from_dict(r) for r in payload.get("results", [])],
            file_discovery=FileDiscovery.from_dict(payload.get("file_discovery", {})),
            duration=float(payload.get("duration", 0.0)),
            timestamp=parse_timestamp(payload.get("timestamp")) or utc_now(),
        )


@dataclass(slots=True)
class ProjectFailure:
    """A sampled project that could not be analyzed at all."""

    project: str
    error: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, str]:
        return {
            "project": self.project,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProjectFailure":
        return cls(
            project=payload["project"],
            error=payload.get("error", ""),
            timestamp=parse_timestamp(payload.get("timestamp")) or utc_now(),
        )


@dataclass(slots=True)
class AnalysisRun:
    """Persisted outcome of the analysis stage, consumed by the reporter."""

    report: PopulationReport
    results: List[ProjectAnalysisResult] = field(default_factory=list)
    failures: List[ProjectFailure] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "metadata": dict(self.metadata),
            "summary": self.report.to_dict(),
            "results": [result.to_dict() for result in self.results],
            "errors": [failure.to_dict() for failure in self.failures],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AnalysisRun":
        return cls(
            report=PopulationReport.from_dict(payload.get("summary", {})),
            results=[ProjectAnalysisResult.from_dict(r) for r in payload.get("results", [])],
            failures=[ProjectFailure.from_dict(f) for f in payload.get("errors", [])],
            metadata=dict(payload.get("metadata", {})),
        )
