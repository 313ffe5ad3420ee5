"""Custom exceptions for the es-research toolkit."""

from __future__ import annotations


class ESResearchError(Exception):
    """Base exception for all es-research errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(ESResearchError):
    """Raised when there's a configuration problem."""
    pass


# =============================================================================
# Critical Errors
# =============================================================================


class CriticalError(ESResearchError):
    """Raised for failures that must stop the whole pipeline.

    Only subclasses of this class are allowed to escape a unit of work
    (a discovery strategy, a project, a file).
    """
    pass


class AuthenticationError(CriticalError):
    """Raised when GitHub rejects the configured token."""
    pass


class CheckerUnavailableError(CriticalError):
    """Raised when the external syntax checker cannot be started at all."""
    pass


# =============================================================================
# API Errors
# =============================================================================


class ApiError(ESResearchError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, status_code: int | None = None):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code if available
        """
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ApiError):
    """Raised when GitHub API rate limit is exceeded."""
    pass


class NotFoundError(ApiError):
    """Raised when the requested repository or file does not exist."""
    pass


# =============================================================================
# Sampling Errors
# =============================================================================


class SelectionError(ESResearchError):
    """Raised when no candidate survives validation."""
    pass


# =============================================================================
# Analysis Errors
# =============================================================================


class AnalysisError(ESResearchError):
    """Base exception for analysis errors."""
    pass


class CheckerError(AnalysisError):
    """Raised when the checker exits abnormally or emits malformed output."""
    pass


class CheckerTimeoutError(CheckerError):
    """Raised when a checker invocation exceeds its timeout."""
    pass


class ProjectAnalysisError(AnalysisError):
    """Raised when a project cannot be analyzed at all."""

    def __init__(self, message: str, project: str | None = None):
        """Initialize project analysis error.

        Args:
            message: Error message
            project: Full name of the project that failed
        """
        super().__init__(message)
        self.project = project


# =============================================================================
# Report Generation Errors
# =============================================================================


class ReportGenerationError(ESResearchError):
    """Raised when reports cannot be produced from stored results."""
    pass
