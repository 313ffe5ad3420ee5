"""Selection and retrieval of the source files analyzed per project."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Sequence

from .api_client import GitHubApiClient
from .exceptions import CriticalError, ESResearchError, ProjectAnalysisError
from .models import FileDiscovery, FileEntry, FileToAnalyze, RepositoryRecord

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> Pattern[str]:
    """Translate a ``**``-style glob into a compiled full-match regex.

    ``**/`` matches zero or more directories, ``**`` anything, ``*`` anything
    within one path segment and ``?`` a single non-separator character.
    """
    parts: List[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts) + r"\Z")


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(glob_to_regex(pattern).match(path) for pattern in patterns)


def filter_files(
    files: Iterable[FileEntry],
    include_patterns: Sequence[str],
    exclude_patterns: Sequence[str],
    max_size: int,
) -> List[FileEntry]:
    """Keep files matching an include pattern, no exclude pattern, and the size ceiling.

    Files of unknown size are kept.
    """
    kept: List[FileEntry] = []
    for entry in files:
        if not matches_any(entry.path, include_patterns):
            continue
        if matches_any(entry.path, exclude_patterns):
            continue
        if entry.size is not None and entry.size > max_size:
            continue
        kept.append(entry)
    return kept


@dataclass(slots=True)
class CollectedFiles:
    """Files retrieved for one project plus how they were counted."""

    files: List[FileToAnalyze] = field(default_factory=list)
    discovery: FileDiscovery = field(default_factory=FileDiscovery)


class FileCollector:
    """Fetch the file tree of a project and the content of selected files."""

    def __init__(
        self,
        client: GitHubApiClient,
        include_patterns: Optional[Sequence[str]] = None,
        exclude_patterns: Optional[Sequence[str]] = None,
        max_file_size: Optional[int] = None,
        max_files: Optional[int] = None,
    ):
        analysis = client.config.analysis
        self.client = client
        self.include_patterns = list(include_patterns or analysis.file_patterns)
        self.exclude_patterns = list(
            exclude_patterns if exclude_patterns is not None else analysis.exclude_patterns
        )
        self.max_file_size = max_file_size or analysis.max_file_size
        self.max_files = max_files or analysis.max_files_per_project

    async def collect(self, project: RepositoryRecord) -> CollectedFiles:
        """Collect analyzable files for one project.

        Files whose content cannot be fetched are skipped and counted.

        Raises:
            ProjectAnalysisError: If the tree is unavailable or no file could be fetched
            CriticalError: If a pipeline-stopping failure occurs
        """
        try:
            tree = await self.client.call(
                self.client.get_tree, project.full_name, project.default_branch
            )
        except CriticalError:
            raise
        except ESResearchError as exc:
            raise ProjectAnalysisError(
                f"Could not list files of {project.full_name}: {exc}", project.full_name
            ) from exc

        selected = filter_files(
            tree, self.include_patterns, self.exclude_patterns, self.max_file_size
        )[: self.max_files]
        collected = CollectedFiles(
            discovery=FileDiscovery(total_files=len(tree), filtered_files=len(selected))
        )

        for entry in selected:
            try:
                content = await self.client.call(
                    self.client.get_file_content, project.full_name, entry.path
                )
            except CriticalError:
                raise
            except ESResearchError as exc:
                logger.warning("Skipping %s in %s: %s", entry.path, project.full_name, exc)
                content = None
            if content is None:
                collected.discovery.skipped_files += 1
                continue
            collected.files.append(FileToAnalyze(path=entry.path, content=content))

        if not selected:
            raise ProjectAnalysisError(
                f"No analyzable files found in {project.full_name}", project.full_name
            )
        if not collected.files:
            raise ProjectAnalysisError(
                f"None of the {len(selected)} selected files of {project.full_name} could be fetched",
                project.full_name,
            )
        return collected
