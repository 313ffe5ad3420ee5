"""Configuration utilities for the es-research CLI."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib as tomli  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - older runtimes use the tomli backport
    import tomli  # type: ignore[no-redef]
import keyring
from keyring.errors import KeyringError
from pydantic import BaseModel, ValidationError, field_validator
from tomli_w import dump as toml_dump

from .constants import (
    ANALYSIS_DEFAULTS,
    API_DEFAULTS,
    DEFAULT_CACHE_DIR,
    DEFAULT_DATA_DIR,
    DEFAULT_REPORTS_DIR,
    EXCLUDE_PATTERNS,
    FILE_PATTERNS,
    RATE_LIMIT_CONFIG,
    RESEARCH_DEFAULTS,
    RETRY_CONFIG,
)
from .exceptions import ConfigurationError
from .models import PopulationCriteria
from .statistics import required_sample_size

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "es_research"
CONFIG_FILE = CONFIG_DIR / "config.toml"
CONFIG_VERSION = "1.0.0"
TOKEN_ENV_VAR = "GITHUB_TOKEN"
KEYRING_SERVICE = "es-research"
KEYRING_USERNAME = "github-token"


def _format_validation_error(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}" for error in exc.errors()
    )


class GitHubConfig(BaseModel):
    """Connection details for the GitHub REST API."""

    api_url: str = API_DEFAULTS['api_url']
    user_agent: str = API_DEFAULTS['user_agent']
    timeout: int = API_DEFAULTS['timeout']
    max_retries: int = RETRY_CONFIG['max_retries']
    request_delay: float = RATE_LIMIT_CONFIG['request_delay']
    rate_limit_floor: int = RATE_LIMIT_CONFIG['remaining_floor']
    enable_cache: bool = True
    cache_expire_after: int = API_DEFAULTS['cache_expire_seconds']

    @field_validator("timeout", "max_retries", "cache_expire_after")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        """Validate that numeric fields are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @field_validator("request_delay", "rate_limit_floor")
    @classmethod
    def validate_non_negative(cls, v, info):
        if v < 0:
            raise ValueError(f"{info.field_name} must be non-negative, got {v}")
        return v

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"api_url must be a valid HTTP(S) URL, got: {v}")
        return v


class ResearchConfig(BaseModel):
    """Population definition and statistical parameters."""

    sample_size: int = RESEARCH_DEFAULTS['sample_size']
    confidence_level: float = RESEARCH_DEFAULTS['confidence_level']
    margin_of_error: float = RESEARCH_DEFAULTS['margin_of_error']
    min_stars: int = RESEARCH_DEFAULTS['min_stars']
    min_forks: int = RESEARCH_DEFAULTS['min_forks']
    created_after: str = RESEARCH_DEFAULTS['created_after']
    language: str = RESEARCH_DEFAULTS['language']
    framework: str = RESEARCH_DEFAULTS['framework']
    target_dependency: str = RESEARCH_DEFAULTS['target_dependency']
    manifest_path: str = RESEARCH_DEFAULTS['manifest_path']
    validation_batch_size: int = RESEARCH_DEFAULTS['validation_batch_size']
    include_indeterminate: bool = False

    @field_validator("sample_size", "validation_batch_size")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        """Validate that numeric fields are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @field_validator("min_stars", "min_forks")
    @classmethod
    def validate_non_negative(cls, v: int, info) -> int:
        """Zero thresholds are allowed; negative ones are not."""
        if v < 0:
            raise ValueError(f"{info.field_name} must be non-negative, got {v}")
        return v

    @field_validator("confidence_level", "margin_of_error")
    @classmethod
    def validate_open_unit_interval(cls, v: float, info) -> float:
        if not 0 < v < 1:
            raise ValueError(f"{info.field_name} must be between 0 and 1, got {v}")
        return v

    @field_validator("created_after")
    @classmethod
    def validate_created_after(cls, v: str) -> str:
        try:
            date.fromisoformat(v)
        except ValueError as exc:
            raise ValueError(f"created_after must be an ISO date (YYYY-MM-DD), got: {v}") from exc
        return v

    @field_validator("target_dependency", "manifest_path")
    @classmethod
    def validate_not_empty(cls, v: str, info) -> str:
        if not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty")
        return v


class AnalysisConfig(BaseModel):
    """Limits and tooling for per-project analysis."""

    max_files_per_project: int = ANALYSIS_DEFAULTS['max_files_per_project']
    max_file_size: int = ANALYSIS_DEFAULTS['max_file_size']
    analysis_timeout: float = ANALYSIS_DEFAULTS['analysis_timeout']
    concurrency: int = ANALYSIS_DEFAULTS['concurrency']
    project_delay: float = ANALYSIS_DEFAULTS['project_delay']
    max_projects: int = 0  # 0 analyzes the whole sample
    file_patterns: List[str] = list(FILE_PATTERNS)
    exclude_patterns: List[str] = list(EXCLUDE_PATTERNS)
    checker_command: str = ANALYSIS_DEFAULTS['checker_command']
    target: str = ""

    @field_validator("max_files_per_project", "max_file_size", "concurrency")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        """Validate that numeric fields are positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive, got {v}")
        return v

    @field_validator("analysis_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"analysis_timeout must be positive, got {v}")
        return v

    @field_validator("project_delay", "max_projects")
    @classmethod
    def validate_non_negative(cls, v, info):
        if v < 0:
            raise ValueError(f"{info.field_name} must be non-negative, got {v}")
        return v

    @field_validator("checker_command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("checker_command cannot be empty")
        return v


class OutputConfig(BaseModel):
    """Where data files, reports and the HTTP cache are written."""

    data_dir: str = DEFAULT_DATA_DIR
    reports_dir: str = DEFAULT_REPORTS_DIR
    cache_dir: str = DEFAULT_CACHE_DIR

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def reports_path(self) -> Path:
        return Path(self.reports_dir)

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir)


@dataclass(slots=True)
class Config:
    """Top-level configuration container."""

    version: str = CONFIG_VERSION
    github: GitHubConfig = field(default_factory=GitHubConfig)
    research: ResearchConfig = field(default_factory=ResearchConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @classmethod
    def load(cls, path: Path = CONFIG_FILE) -> "Config":
        """Load configuration data from disk.

        Args:
            path: Optional override for the configuration file path.

        Returns:
            Config: The loaded configuration object, defaults if the file is absent.

        Raises:
            ConfigurationError: If the file is corrupted or holds invalid values.
        """

        if not path.exists():
            return cls()

        try:
            with path.open("rb") as handle:
                raw: Dict[str, Any] = tomli.load(handle)
        except (OSError, tomli.TOMLDecodeError) as exc:
            raise ConfigurationError(f"Failed to parse configuration file {path}: {exc}") from exc

        version = raw.get("version", CONFIG_VERSION)
        if version != CONFIG_VERSION:
            logger.warning("Configuration version %s differs from %s", version, CONFIG_VERSION)

        try:
            github = GitHubConfig(**raw.get("github", {}))
            research = ResearchConfig(**raw.get("research", {}))
            analysis = AnalysisConfig(**raw.get("analysis", {}))
            output = OutputConfig(**raw.get("output", {}))
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid configuration: {_format_validation_error(exc)}"
            ) from exc

        return cls(version=version, github=github, research=research, analysis=analysis, output=output)

    def dump(self, path: Path = CONFIG_FILE, backup: bool = True) -> None:
        """Persist the configuration to disk.

        Args:
            path: Path to save the configuration file.
            backup: If True and config file exists, create a backup before overwriting.
        """

        path.parent.mkdir(parents=True, exist_ok=True)

        if backup and path.exists():
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = path.parent / f"{path.stem}.{timestamp}.bak"
            shutil.copy2(path, backup_path)

        with path.open("wb") as handle:
            toml_dump(self._sections(), handle)

    def _sections(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "github": self.github.model_dump(),
            "research": self.research.model_dump(),
            "analysis": self.analysis.model_dump(),
            "output": self.output.model_dump(),
        }

    def _section_models(self) -> Dict[str, BaseModel]:
        return {
            "github": self.github,
            "research": self.research,
            "analysis": self.analysis,
            "output": self.output,
        }

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def update_auth(self, token: str) -> None:
        """Store the GitHub token in the system keyring.

        Raises:
            ConfigurationError: If the keyring backend rejects the write.
        """
        try:
            keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, token)
        except KeyringError as exc:
            raise ConfigurationError(
                f"Failed to store the token in the system keyring: {exc}. "
                f"Set the {TOKEN_ENV_VAR} environment variable instead."
            ) from exc

    def get_token(self) -> Optional[str]:
        """Return the GitHub token.

        The ``GITHUB_TOKEN`` environment variable wins over the keyring entry.
        """
        token = os.environ.get(TOKEN_ENV_VAR, "").strip()
        if token:
            return token
        try:
            return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
        except KeyringError as exc:
            logger.warning("System keyring is not accessible: %s", exc)
            return None

    def has_token(self) -> bool:
        return bool(self.get_token())

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def criteria(self) -> PopulationCriteria:
        """Build the immutable population criteria for a sampling run."""

        research = self.research
        return PopulationCriteria(
            min_stars=research.min_stars,
            min_forks=research.min_forks,
            created_after=date.fromisoformat(research.created_after),
            sample_size=research.sample_size,
            confidence_level=research.confidence_level,
            margin_of_error=research.margin_of_error,
            target_dependency=research.target_dependency,
        )

    def sample_size_warning(self) -> Optional[str]:
        """Describe a sample size too small for the configured precision."""

        required = required_sample_size(
            self.research.confidence_level, self.research.margin_of_error
        )
        if self.research.sample_size < required:
            return (
                f"Sample size {self.research.sample_size} is below the {required} projects "
                f"needed for a ±{self.research.margin_of_error:.1%} margin at "
                f"{self.research.confidence_level:.0%} confidence."
            )
        return None

    def validate_required_fields(self) -> None:
        """Validate that all required configuration fields are set.

        Raises:
            ConfigurationError: If any required field is missing or invalid.
        """
        errors = []

        if not self.has_token():
            errors.append(
                f"GitHub token is not set. Export {TOKEN_ENV_VAR} or run 'es-research init'."
            )

        try:
            self.criteria()
        except ConfigurationError as exc:
            errors.append(str(exc))

        if errors:
            raise ConfigurationError("Configuration is incomplete:\n  - " + "\n  - ".join(errors))

    def to_display_dict(self) -> Dict[str, Any]:
        """Return a serialisable representation for display purposes."""

        payload = self._sections()
        payload.pop("version")
        return {"auth": {"token": "<set>" if self.has_token() else "<not set>"}, **payload}

    # ------------------------------------------------------------------
    # Dot-notation access
    # ------------------------------------------------------------------

    def _resolve(self, key: str) -> tuple[str, str, BaseModel]:
        parts = key.split(".")
        if len(parts) != 2:
            raise ConfigurationError(f"Invalid key format '{key}'. Expected format: section.field")

        section, field_name = parts
        sections = self._section_models()
        if section not in sections:
            valid_sections = ", ".join(sections.keys())
            raise ConfigurationError(
                f"Invalid section '{section}'. Valid sections: {valid_sections}"
            )

        config_obj = sections[section]
        if field_name not in type(config_obj).model_fields:
            valid_fields = ", ".join(type(config_obj).model_fields.keys())
            raise ConfigurationError(
                f"Invalid field '{field_name}' for section '{section}'. Valid fields: {valid_fields}"
            )
        return section, field_name, config_obj

    def set_value(self, key: str, value: str) -> None:
        """Set a configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., 'research.sample_size')
            value: Value to set; list fields take comma separated values

        Raises:
            ConfigurationError: If key is invalid or value cannot be converted
        """
        section, field_name, config_obj = self._resolve(key)
        field_type = type(config_obj).model_fields[field_name].annotation

        try:
            if field_type is int:
                converted: Any = int(value)
            elif field_type is float:
                converted = float(value)
            elif field_type is bool:
                converted = value.lower() in ("true", "1", "yes", "on")
            elif field_type == List[str]:
                converted = [item.strip() for item in value.split(",") if item.strip()]
            else:
                converted = value
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"Cannot convert '{value}' to {field_type} for {key}") from exc

        current_data = config_obj.model_dump()
        current_data[field_name] = converted
        try:
            validated = type(config_obj).model_validate(current_data)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Validation error for {key}: {_format_validation_error(exc)}"
            ) from exc

        setattr(self, section, validated)

    def get_value(self, key: str) -> Any:
        """Get a configuration value using dot notation.

        Raises:
            ConfigurationError: If key is invalid
        """
        _, field_name, config_obj = self._resolve(key)
        return getattr(config_obj, field_name)
