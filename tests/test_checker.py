from __future__ import annotations

import asyncio
import json
import sys

import pytest

from es_research.checker import (
    EsGuardChecker,
    category_from_path,
    normalize_directory_output,
    normalize_output,
)
from es_research.exceptions import CheckerError, CheckerTimeoutError, CheckerUnavailableError
from es_research.models import Severity


def _script_checker(payload, exit_code=0, timeout=10.0, **kwargs):
    """Checker whose command is a Python one-liner printing ``payload``."""
    code = (
        "import sys; sys.stdin.read(); "
        f"sys.stdout.write({json.dumps(payload)!r}); sys.exit({exit_code})"
    )
    return EsGuardChecker(command=[sys.executable, "-c", code], timeout=timeout, **kwargs)


def test_category_from_path():
    assert category_from_path("src/index.JS") == "javascript"
    assert category_from_path("pages/_app.tsx") == "typescript"
    assert category_from_path("next.config.mjs") == "javascript"
    assert category_from_path("README.md") is None


def test_normalize_flat_issue_list():
    payload = {
        "issues": [
            {"message": "Optional chaining", "severity": "error", "category": "es2020", "type": "syntax", "line": 3},
            {"message": "Top level await", "severity": "warning"},
        ]
    }

    violations = normalize_output(payload, "src/app.js")

    assert [v.severity for v in violations] == [Severity.ERROR, Severity.WARNING]
    assert violations[0].category == "es2020"
    assert violations[0].rule == "syntax"
    assert violations[0].line == 3
    assert violations[1].category is None
    assert all(v.file_path == "src/app.js" for v in violations)


def test_normalize_bare_list():
    violations = normalize_output([{"message": "x", "severity": "fatal"}], "a.js")

    assert len(violations) == 1
    assert violations[0].severity is None
    assert violations[0].severity_key == "info"


def test_normalize_nested_eslint_shape():
    payload = [
        {
            "filePath": "src/util.ts",
            "messages": [
                {"message": "Class fields", "severity": 2, "ruleId": "es-x/no-class-fields", "line": 1, "column": 5},
                {"message": "Hashbang", "severity": 1},
                {"message": "Note", "severity": 0},
            ],
        }
    ]

    violations = normalize_output(payload, "ignored.js")

    assert [v.severity for v in violations] == [Severity.ERROR, Severity.WARNING, Severity.INFO]
    assert {v.category for v in violations} == {"typescript"}
    assert violations[0].rule == "es-x/no-class-fields"
    assert (violations[0].line, violations[0].column) == (1, 5)
    assert all(v.file_path == "src/util.ts" for v in violations)


def test_normalize_empty_outputs():
    assert normalize_output({"issues": []}, "a.js") == []
    assert normalize_output([], "a.js") == []
    assert normalize_output([{"filePath": "a.js", "messages": []}], "a.js") == []


@pytest.mark.parametrize("payload", ["oops", 42, {"result": []}, None])
def test_normalize_rejects_unknown_shapes(payload):
    with pytest.raises(CheckerError):
        normalize_output(payload, "a.js")


def test_normalize_rejects_malformed_issues():
    with pytest.raises(CheckerError):
        normalize_output({"issues": ["not an object"]}, "a.js")


def test_directory_output_is_grouped_by_file(tmp_path):
    payload = [
        {"filePath": str(tmp_path / "src" / "a.js"), "messages": [{"message": "m", "severity": 2}]},
        {"filePath": str(tmp_path / "src" / "b.ts"), "messages": []},
    ]

    grouped = normalize_directory_output(payload, root=tmp_path)

    assert set(grouped) == {"src/a.js", "src/b.ts"}
    assert len(grouped["src/a.js"]) == 1
    assert grouped["src/b.ts"] == []


def test_flat_directory_output_uses_file_key():
    payload = {"issues": [{"file": "a.js", "message": "m"}, {"file": "b.js", "message": "n"}, {"message": "o"}]}

    grouped = normalize_directory_output(payload, default_path="root")

    assert {path: len(items) for path, items in grouped.items()} == {"a.js": 1, "b.js": 1, "root": 1}


def test_target_is_passed_to_the_checker():
    checker = EsGuardChecker(command="npx es-guard --json", target="es2018")

    assert checker._argv("src") == ["npx", "es-guard", "--json", "--target", "es2018", "src"]


def test_empty_command_is_rejected():
    with pytest.raises(ValueError):
        EsGuardChecker(command="")


@pytest.mark.asyncio
async def test_analyze_file_returns_violations():
    checker = _script_checker({"issues": [{"message": "Optional chaining", "severity": "error"}]})

    result = await checker.analyze_file("src/app.js", "a?.b")

    assert not result.failed
    assert result.has_issues
    assert result.violations[0].file_path == "src/app.js"


@pytest.mark.asyncio
async def test_non_zero_exit_with_output_is_still_parsed():
    checker = _script_checker({"issues": [{"message": "m", "severity": "error"}]}, exit_code=1)

    result = await checker.analyze_file("a.js", "x")

    assert len(result.violations) == 1


@pytest.mark.asyncio
async def test_non_zero_exit_without_output_is_a_file_failure():
    code = "import sys; sys.stdin.read(); sys.stderr.write('boom'); sys.exit(2)"
    checker = EsGuardChecker(command=[sys.executable, "-c", code])

    result = await checker.analyze_file("a.js", "x")

    assert result.failed
    assert "boom" in result.error


@pytest.mark.asyncio
async def test_malformed_output_is_a_file_failure():
    code = "import sys; sys.stdin.read(); sys.stdout.write('not json')"
    checker = EsGuardChecker(command=[sys.executable, "-c", code])

    result = await checker.analyze_file("a.js", "x")

    assert result.failed
    assert not result.has_issues


@pytest.mark.asyncio
async def test_timeout_becomes_failure_result():
    code = "import time; time.sleep(5)"
    checker = EsGuardChecker(command=[sys.executable, "-c", code], timeout=0.5)

    with pytest.raises(CheckerTimeoutError):
        await checker.check_content("x")

    result = await checker.analyze_file("slow.js", "x")
    assert result.failed
    assert "timeout" in result.error.lower()


@pytest.mark.asyncio
async def test_missing_executable_is_critical():
    checker = EsGuardChecker(command=["es-research-missing-checker-binary"])

    with pytest.raises(CheckerUnavailableError):
        await checker.analyze_file("a.js", "x")

    assert await checker.is_available() is False


@pytest.mark.asyncio
async def test_is_available_with_working_checker():
    assert await _script_checker({"issues": []}).is_available() is True


@pytest.mark.asyncio
async def test_check_directory_groups_results_relative_to_root(tmp_path):
    payload = [
        {"filePath": str(tmp_path / "src" / "b.ts"), "messages": [{"message": "Class fields", "severity": 2}]},
        {"filePath": str(tmp_path / "src" / "a.js"), "messages": []},
    ]

    results = await _script_checker(payload).check_directory(tmp_path)

    assert [result.file_path for result in results] == ["src/a.js", "src/b.ts"]
    assert not results[0].has_issues
    assert results[1].violations[0].category == "typescript"
    assert results[1].violations[0].file_path == "src/b.ts"


@pytest.mark.asyncio
async def test_check_directory_failure_is_a_single_result(tmp_path):
    code = "import sys; sys.stderr.write('crashed'); sys.exit(3)"
    checker = EsGuardChecker(command=[sys.executable, "-c", code])

    results = await checker.check_directory(tmp_path)

    assert len(results) == 1
    assert results[0].failed
    assert results[0].file_path == tmp_path.as_posix()
    assert "crashed" in results[0].error


@pytest.mark.asyncio
async def test_cancelled_check_stops_the_checker_process():
    code = "import time; time.sleep(30)"
    checker = EsGuardChecker(command=[sys.executable, "-c", code], timeout=60.0)

    task = asyncio.create_task(checker.check_content("x"))
    await asyncio.sleep(0.5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
