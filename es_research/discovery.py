"""Candidate discovery through several independent search strategies."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .api_client import GitHubApiClient
from .config import ResearchConfig
from .exceptions import ApiError, CriticalError
from .models import RepositoryRecord

logger = logging.getLogger(__name__)

REPOSITORY_SEARCH = "repositories"
CODE_SEARCH = "code"

KEYWORD_TEMPLATES = [
    "{framework} starter",
    "{framework_dotted} template",
    "{framework} boilerplate",
    "{framework_dotted} app",
]


@dataclass(slots=True)
class DiscoveryStrategy:
    """A named group of search queries run against one search endpoint."""

    name: str
    queries: List[str]
    kind: str = REPOSITORY_SEARCH


def _dotted(framework: str) -> str:
    """``nextjs`` -> ``next.js``; other names are returned unchanged."""
    if framework.endswith("js") and not framework.endswith(".js"):
        return f"{framework[:-2]}.js"
    return framework


def default_strategies(research: ResearchConfig) -> List[DiscoveryStrategy]:
    """Build the framework, manifest and keyword strategies from configuration."""

    framework = research.framework
    dotted = _dotted(framework)
    popularity = f"stars:>={research.min_stars}"
    created = f"created:>={research.created_after}"
    language = f"language:{research.language}"

    framework_queries = [
        f"{framework} {popularity} {created}",
        f"{dotted} {popularity} {created}",
        f"{framework} {language} {popularity} forks:>={research.min_forks}",
        f"{dotted} {language} {popularity} forks:>={research.min_forks}",
    ]
    manifest_query = (
        f'filename:{research.manifest_path} "{research.target_dependency}": {language}'
    )
    keyword_queries = [
        f"{template.format(framework=framework, framework_dotted=dotted)} "
        f"{language} {popularity} {created}"
        for template in KEYWORD_TEMPLATES
    ]

    # Keep insertion order and drop queries made identical by the dotted form.
    framework_queries = list(dict.fromkeys(framework_queries))

    return [
        DiscoveryStrategy("framework", framework_queries),
        DiscoveryStrategy("manifest", [manifest_query], kind=CODE_SEARCH),
        DiscoveryStrategy("keywords", keyword_queries),
    ]


class ProjectDiscoverer:
    """Run discovery strategies against the GitHub search API."""

    def __init__(
        self,
        client: GitHubApiClient,
        strategies: Optional[List[DiscoveryStrategy]] = None,
        per_query: int = 100,
    ):
        self.client = client
        self.strategies = strategies if strategies is not None else default_strategies(
            client.config.research
        )
        self.per_query = per_query

    async def discover(self, strategy: DiscoveryStrategy) -> List[RepositoryRecord]:
        """Run every query of one strategy.

        Zero results is not an error. Transport failures propagate to the
        caller, which decides whether they are fatal.
        """
        records: List[RepositoryRecord] = []
        for query in strategy.queries:
            logger.debug("[%s] searching: %s", strategy.name, query)
            if strategy.kind == CODE_SEARCH:
                records.extend(await self._discover_from_code(query))
            else:
                items = await self.client.call(
                    self.client.search_repositories, query, self.per_query
                )
                records.extend(RepositoryRecord.from_api(item) for item in items)
        logger.info("[%s] found %d candidates", strategy.name, len(records))
        return records

    async def _discover_from_code(self, query: str) -> List[RepositoryRecord]:
        """Map code search hits to full repository records.

        Code search only returns abbreviated repository objects, so each
        distinct repository is looked up once for its popularity signals.
        """
        items = await self.client.call(self.client.search_code, query, self.per_query)
        names: Dict[str, None] = {}
        for item in items:
            repository = item.get("repository") or {}
            if repository.get("full_name"):
                names.setdefault(repository["full_name"], None)

        records: List[RepositoryRecord] = []
        for full_name in names:
            try:
                details = await self.client.call(self.client.get_repository, full_name)
            except CriticalError:
                raise
            except ApiError as exc:
                logger.warning("Skipping %s: repository lookup failed: %s", full_name, exc)
                continue
            records.append(RepositoryRecord.from_api(details))
        return records

    async def discover_all(self) -> Tuple[List[List[RepositoryRecord]], List[str]]:
        """Run all strategies; a failing strategy contributes no records.

        Returns:
            One record list per strategy, and the warnings raised on the way

        Raises:
            CriticalError: If a strategy hits an error that must stop the run
        """
        results: List[List[RepositoryRecord]] = []
        warnings: List[str] = []
        for strategy in self.strategies:
            try:
                results.append(await self.discover(strategy))
            except CriticalError:
                raise
            except Exception as exc:
                message = f"Discovery strategy '{strategy.name}' failed: {exc}"
                logger.warning(message)
                warnings.append(message)
                results.append([])
        return results, warnings
