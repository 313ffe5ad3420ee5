from __future__ import annotations

import pytest

from es_research.config import Config
from es_research.constants import EXCLUDE_PATTERNS, FILE_PATTERNS
from es_research.exceptions import (
    ApiError,
    AuthenticationError,
    NotFoundError,
    ProjectAnalysisError,
)
from es_research.files import FileCollector, filter_files, glob_to_regex, matches_any
from es_research.models import FileEntry, RepositoryRecord


@pytest.mark.parametrize(
    "pattern,path,expected",
    [
        ("**/*.js", "index.js", True),
        ("**/*.js", "src/lib/util.js", True),
        ("**/*.js", "src/lib/util.jsx", False),
        ("*.js", "src/index.js", False),
        ("src/*.ts", "src/a.ts", True),
        ("src/*.ts", "src/deep/a.ts", False),
        ("?.js", "a.js", True),
        ("?.js", "ab.js", False),
        ("**/node_modules/**", "node_modules/react/index.js", True),
        ("**/node_modules/**", "apps/web/node_modules/x/y.js", True),
        ("**/.next/**", "src/next/a.js", False),
        ("**/next.config.mjs", "next.config.mjs", True),
    ],
)
def test_glob_semantics(pattern, path, expected):
    assert bool(glob_to_regex(pattern).match(path)) is expected


def test_matches_any():
    assert matches_any("pages/index.tsx", FILE_PATTERNS)
    assert not matches_any("README.md", FILE_PATTERNS)


def test_filter_files_applies_patterns_and_size():
    files = [
        FileEntry("src/app.js", 100),
        FileEntry("src/big.js", 5_000),
        FileEntry("node_modules/react/index.js", 10),
        FileEntry("dist/bundle.js", 10),
        FileEntry("styles.css", 10),
        FileEntry("pages/index.tsx", None),
    ]

    kept = filter_files(files, FILE_PATTERNS, EXCLUDE_PATTERNS, max_size=1_000)

    assert [entry.path for entry in kept] == ["src/app.js", "pages/index.tsx"]


class FakeClient:
    """Answers tree and content requests from an in-memory repository."""

    def __init__(self, tree=None, contents=None, tree_error=None, content_errors=None):
        self.config = Config()
        self.tree = tree or []
        self.contents = contents or {}
        self.tree_error = tree_error
        self.content_errors = content_errors or {}
        self.fetched = []

    async def call(self, func, *args):
        return func(*args)

    def get_tree(self, full_name, ref):
        if self.tree_error is not None:
            raise self.tree_error
        return self.tree

    def get_file_content(self, full_name, path):
        self.fetched.append(path)
        if path in self.content_errors:
            raise self.content_errors[path]
        return self.contents.get(path)


PROJECT = RepositoryRecord("acme/site", stars=500, forks=50, default_branch="main")


@pytest.mark.asyncio
async def test_collect_fetches_selected_files():
    client = FakeClient(
        tree=[FileEntry("src/a.js", 10), FileEntry("src/b.ts", 10), FileEntry("README.md", 10)],
        contents={"src/a.js": "a?.b", "src/b.ts": "let x = 1"},
    )

    collected = await FileCollector(client).collect(PROJECT)

    assert [entry.path for entry in collected.files] == ["src/a.js", "src/b.ts"]
    assert collected.discovery.total_files == 3
    assert collected.discovery.filtered_files == 2
    assert collected.discovery.skipped_files == 0


@pytest.mark.asyncio
async def test_collect_respects_file_limit():
    tree = [FileEntry(f"src/f{i}.js", 10) for i in range(5)]
    client = FakeClient(tree=tree, contents={entry.path: "x" for entry in tree})

    collected = await FileCollector(client, max_files=2).collect(PROJECT)

    assert client.fetched == ["src/f0.js", "src/f1.js"]
    assert collected.discovery.filtered_files == 2


@pytest.mark.asyncio
async def test_unfetchable_files_are_skipped_and_counted():
    client = FakeClient(
        tree=[FileEntry("a.js", 1), FileEntry("b.js", 1), FileEntry("c.js", 1)],
        contents={"a.js": "x"},
        content_errors={"b.js": ApiError("Could not decode b.js")},
    )

    collected = await FileCollector(client).collect(PROJECT)

    assert [entry.path for entry in collected.files] == ["a.js"]
    assert collected.discovery.skipped_files == 2


@pytest.mark.asyncio
async def test_project_without_analyzable_files_fails():
    client = FakeClient(tree=[FileEntry("README.md", 10)])

    with pytest.raises(ProjectAnalysisError) as excinfo:
        await FileCollector(client).collect(PROJECT)

    assert excinfo.value.project == "acme/site"


@pytest.mark.asyncio
async def test_project_whose_files_cannot_be_fetched_fails():
    client = FakeClient(tree=[FileEntry("a.js", 1)])

    with pytest.raises(ProjectAnalysisError):
        await FileCollector(client).collect(PROJECT)


@pytest.mark.asyncio
async def test_missing_tree_fails_the_project():
    client = FakeClient(tree_error=NotFoundError("Not found", 404))

    with pytest.raises(ProjectAnalysisError):
        await FileCollector(client).collect(PROJECT)


@pytest.mark.asyncio
async def test_authentication_failure_propagates():
    client = FakeClient(tree_error=AuthenticationError("bad credentials"))

    with pytest.raises(AuthenticationError):
        await FileCollector(client).collect(PROJECT)
