from __future__ import annotations

import json

import pytest

from es_research.exceptions import ApiError, AuthenticationError, NotFoundError, RateLimitError
from es_research.models import RepositoryRecord, ValidationStatus
from es_research.validator import ProjectValidator, find_declared_version


def _fetcher(content=None, error=None):
    async def fetch_manifest(full_name):
        if error is not None:
            raise error
        return content

    return fetch_manifest


def _record(name="acme/site"):
    return RepositoryRecord(name, stars=500, forks=50, created_at="2021-01-01T00:00:00Z")


def test_find_declared_version_matches_exact_keys_only():
    manifest = {
        "dependencies": {"next-auth": "^4.0.0", "react": "18.2.0"},
        "devDependencies": {"@next/font": "13.0.0"},
    }

    assert find_declared_version(manifest, "next") is None
    assert find_declared_version(manifest, "react") == "18.2.0"


def test_find_declared_version_reads_dev_dependencies():
    manifest = {"devDependencies": {"next": "14.1.0"}}

    assert find_declared_version(manifest, "next") == "14.1.0"


def test_find_declared_version_ignores_malformed_sections():
    assert find_declared_version({"dependencies": ["next"]}, "next") is None


@pytest.mark.asyncio
async def test_validate_declared_dependency_is_valid():
    content = json.dumps({"dependencies": {"next": "^14.0.0"}})
    validator = ProjectValidator(_fetcher(content), "next")

    outcome = await validator.validate(_record())

    assert outcome.status is ValidationStatus.VALID
    assert outcome.version == "^14.0.0"


@pytest.mark.asyncio
async def test_validate_missing_dependency_is_invalid():
    content = json.dumps({"dependencies": {"next-auth": "^4.0.0"}})

    outcome = await ProjectValidator(_fetcher(content), "next").validate(_record())

    assert outcome.status is ValidationStatus.INVALID
    assert outcome.reason == "dependency absent"


@pytest.mark.asyncio
async def test_validate_missing_manifest_is_invalid():
    validator = ProjectValidator(_fetcher(error=NotFoundError("Not Found", 404)), "next")

    outcome = await validator.validate(_record())

    assert outcome.status is ValidationStatus.INVALID
    assert outcome.reason == "manifest absent"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [RateLimitError("rate limited", 403), ApiError("boom", 500), ConnectionError("reset")],
)
async def test_validate_transient_failures_are_indeterminate(error):
    outcome = await ProjectValidator(_fetcher(error=error), "next").validate(_record())

    assert outcome.status is ValidationStatus.INDETERMINATE
    assert outcome.reason


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["{not json", "[1, 2]", "null"])
async def test_validate_unparseable_manifest_is_indeterminate(content):
    outcome = await ProjectValidator(_fetcher(content), "next").validate(_record())

    assert outcome.status is ValidationStatus.INDETERMINATE
    assert outcome.reason == "unparseable manifest"


@pytest.mark.asyncio
async def test_validate_authentication_failure_propagates():
    validator = ProjectValidator(_fetcher(error=AuthenticationError("bad credentials")), "next")

    with pytest.raises(AuthenticationError):
        await validator.validate(_record())
