"""Adapter around the external es-guard syntax compatibility checker."""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from collections import defaultdict
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Sequence, Union

from .constants import ANALYSIS_DEFAULTS, EXTENSION_CATEGORIES, NUMERIC_SEVERITIES
from .exceptions import CheckerError, CheckerTimeoutError, CheckerUnavailableError
from .models import FileAnalysisResult, Severity, Violation

logger = logging.getLogger(__name__)

AVAILABILITY_SNIPPET = 'console.log("test");'


def category_from_path(path: str) -> Optional[str]:
    """Map a file extension onto a violation category."""
    suffix = PurePosixPath(path).suffix.lstrip(".").lower()
    return EXTENSION_CATEGORIES.get(suffix)


def _parse_severity(value: Any) -> Optional[Severity]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return Severity.parse(NUMERIC_SEVERITIES.get(value))
    return Severity.parse(value)


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _violation(issue: Dict[str, Any], file_path: str, default_category: Optional[str]) -> Violation:
    return Violation(
        file_path=file_path,
        message=str(issue.get("message") or ""),
        severity=_parse_severity(issue.get("severity")),
        category=issue.get("category") or default_category,
        rule=issue.get("type") or issue.get("ruleId") or issue.get("rule"),
        line=_optional_int(issue.get("line")),
        column=_optional_int(issue.get("column")),
    )


def _is_nested(payload: Any) -> bool:
    return isinstance(payload, list) and any(
        isinstance(item, dict) and "messages" in item for item in payload
    )


def normalize_output(payload: Any, file_path: str) -> List[Violation]:
    """Flatten checker output for a single file into violations.

    Accepts ``{"issues": [...]}``, a bare list of issues, or the nested
    ``[{"filePath": ..., "messages": [...]}]`` form.

    Raises:
        CheckerError: If the payload has none of these shapes
    """
    grouped = normalize_directory_output(payload, default_path=file_path)
    return [violation for violations in grouped.values() for violation in violations]


def normalize_directory_output(
    payload: Any, default_path: str = "", root: Optional[Path] = None
) -> Dict[str, List[Violation]]:
    """Group checker output by originating file.

    Nested entries carry their own file path and get an extension-derived
    category when the checker omits one. Flat issues use their ``file`` key
    when present, otherwise ``default_path``.

    Raises:
        CheckerError: If the payload shape is not recognised
    """
    grouped: Dict[str, List[Violation]] = defaultdict(list)

    if _is_nested(payload):
        for entry in payload:
            if not isinstance(entry, dict):
                continue
            path = _relative(str(entry.get("filePath") or default_path), root)
            category = category_from_path(path)
            grouped.setdefault(path, [])
            for message in entry.get("messages") or []:
                if isinstance(message, dict):
                    grouped[path].append(_violation(message, path, category))
        return dict(grouped)

    if isinstance(payload, dict) and isinstance(payload.get("issues"), list):
        issues = payload["issues"]
    elif isinstance(payload, list):
        issues = payload
    else:
        raise CheckerError(f"Unrecognised checker output: {type(payload).__name__}")

    for issue in issues:
        if not isinstance(issue, dict):
            raise CheckerError(f"Malformed issue in checker output: {issue!r}")
        path = _relative(str(issue.get("file") or issue.get("filePath") or default_path), root)
        grouped[path].append(_violation(issue, path, None))
    return dict(grouped)


def _relative(path: str, root: Optional[Path]) -> str:
    if root is None:
        return path
    try:
        return Path(path).resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path


class EsGuardChecker:
    """Run es-guard as a subprocess, one invocation per file or directory.

    Args:
        command: Command line used to start the checker
        timeout: Seconds allowed per invocation
        target: Optional ECMAScript target passed as ``--target``
    """

    def __init__(
        self,
        command: Union[str, Sequence[str]] = ANALYSIS_DEFAULTS['checker_command'],
        timeout: float = ANALYSIS_DEFAULTS['analysis_timeout'],
        target: str = "",
    ):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError("checker command cannot be empty")
        self.timeout = timeout
        self.target = target

    def _argv(self, *extra: str) -> List[str]:
        argv = list(self.command)
        if self.target:
            argv += ["--target", self.target]
        return argv + list(extra)

    async def _run(self, argv: List[str], stdin: Optional[bytes] = None) -> Any:
        """Run the checker and decode its JSON output.

        Raises:
            CheckerUnavailableError: If the executable cannot be started
            CheckerTimeoutError: If the invocation exceeds the timeout
            CheckerError: If the checker fails or prints malformed output
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise CheckerUnavailableError(f"Cannot start checker '{argv[0]}': {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(stdin), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.communicate()
            raise CheckerTimeoutError(f"Analysis timeout after {self.timeout}s")
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        output = stdout.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0 and not output:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise CheckerError(f"es-guard failed with code {proc.returncode}: {message}")

        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise CheckerError(f"Failed to parse es-guard output: {exc}") from exc

    async def check_content(self, content: str, file_path: str = "<stdin>") -> List[Violation]:
        """Check source text and return its violations."""
        payload = await self._run(self._argv(), stdin=content.encode("utf-8"))
        return normalize_output(payload, file_path)

    async def analyze_file(self, file_path: str, content: str) -> FileAnalysisResult:
        """Analyze one file; checker failures become a failure-typed result.

        Raises:
            CheckerUnavailableError: If the checker cannot be started at all
        """
        try:
            violations = await self.check_content(content, file_path)
        except CheckerError as exc:
            logger.debug("Checker failed on %s: %s", file_path, exc)
            return FileAnalysisResult.failure(file_path, str(exc))
        return FileAnalysisResult(file_path=file_path, violations=tuple(violations))

    async def check_directory(self, directory: Path) -> List[FileAnalysisResult]:
        """Analyze a whole project directory in one invocation.

        Returns:
            One result per reported file; a single failure result for the
            directory if the checker fails
        """
        directory = Path(directory)
        try:
            payload = await self._run(self._argv(str(directory)))
            grouped = normalize_directory_output(payload, default_path=".", root=directory)
        except CheckerError as exc:
            return [FileAnalysisResult.failure(directory.as_posix(), str(exc))]
        return [
            FileAnalysisResult(file_path=path, violations=tuple(violations))
            for path, violations in sorted(grouped.items())
        ]

    async def is_available(self) -> bool:
        """Run the checker on a trivial snippet to confirm it works."""
        try:
            await self.check_content(AVAILABILITY_SNIPPET)
        except (CheckerError, CheckerUnavailableError) as exc:
            logger.error("es-guard is not available: %s", exc)
            return False
        return True
