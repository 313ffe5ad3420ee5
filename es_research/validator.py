"""Population membership check for discovered repositories."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .exceptions import CriticalError, NotFoundError
from .models import RepositoryRecord, ValidationOutcome

logger = logging.getLogger(__name__)

DEPENDENCY_SECTIONS = ("dependencies", "devDependencies")

# fetch_manifest(full_name) -> manifest text; raises NotFoundError when absent.
ManifestFetcher = Callable[[str], Awaitable[str]]


def find_declared_version(manifest: Dict[str, Any], dependency: str) -> Optional[str]:
    """Return the version a manifest declares for ``dependency``.

    Only exact keys in ``dependencies`` and ``devDependencies`` count.
    """
    for section in DEPENDENCY_SECTIONS:
        declared = manifest.get(section)
        if isinstance(declared, dict) and dependency in declared:
            return str(declared[dependency])
    return None


class ProjectValidator:
    """Classify repositories as valid, invalid or indeterminate members.

    Args:
        fetch_manifest: Coroutine returning the manifest text of a repository
        target_dependency: Package name that defines the population
    """

    def __init__(self, fetch_manifest: ManifestFetcher, target_dependency: str = "next"):
        self.fetch_manifest = fetch_manifest
        self.target_dependency = target_dependency

    async def validate(self, record: RepositoryRecord) -> ValidationOutcome:
        """Validate one repository record.

        Critical errors propagate; every other failure becomes an
        indeterminate outcome.
        """
        try:
            content = await self.fetch_manifest(record.full_name)
        except NotFoundError:
            return ValidationOutcome.invalid("manifest absent")
        except CriticalError:
            raise
        except Exception as exc:
            logger.debug("Manifest fetch failed for %s: %s", record.full_name, exc)
            return ValidationOutcome.indeterminate(str(exc) or type(exc).__name__)

        try:
            manifest = json.loads(content)
        except (TypeError, ValueError):
            return ValidationOutcome.indeterminate("unparseable manifest")
        if not isinstance(manifest, dict):
            return ValidationOutcome.indeterminate("unparseable manifest")

        version = find_declared_version(manifest, self.target_dependency)
        if version is None:
            return ValidationOutcome.invalid("dependency absent")
        return ValidationOutcome.valid(version)
