"""Hallucination guard: checks that plan steps refer to real things.

The executor calls the guard before a step runs (does the file it
reads exist? does the file it creates not exist yet?) and after a
file-writing step (is the written content well-formed?).

``HallucinationGuard`` is the contract.  ``FileSystemGuard`` is the
bundled implementation: path containment and existence checks, plus a
syntax check for JSON.  Richer checks (import resolution, project
design rules) plug in by subclassing.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from codeplan_agent.models.results import CheckResult, Severity, ValidationResult

logger = logging.getLogger(__name__)


class HallucinationGuard(ABC):
    """Contract for step validation."""

    @abstractmethod
    async def validate_file_path(self, path: str, must_exist: bool = True) -> CheckResult:
        """Check *path* against the expected existence state."""

    @abstractmethod
    async def validate_code(
        self,
        content: str,
        language: str,
        path: str = "",
    ) -> ValidationResult:
        """Check generated or modified *content* written to *path*."""


class FileSystemGuard(HallucinationGuard):
    """Guard backed by the local file system.

    Args:
        project_root: Directory all paths are resolved against.  Paths
            escaping it are blocked.
    """

    def __init__(self, project_root: str | Path) -> None:
        self._root = Path(project_root).resolve()

    async def validate_file_path(self, path: str, must_exist: bool = True) -> CheckResult:
        full_path = (self._root / path).resolve()

        if not full_path.is_relative_to(self._root):
            return CheckResult(
                passed=False,
                type="file_existence",
                severity=Severity.BLOCK,
                message=f'Security violation: Path "{path}" is outside project root',
                details={"path": path, "project_root": str(self._root)},
            )

        exists = full_path.exists()

        if must_exist and not exists:
            return CheckResult(
                passed=False,
                type="file_existence",
                severity=Severity.BLOCK,
                message=f'Hallucination detected: File "{path}" does not exist',
                details={"path": path, "exists": False},
            )

        if not must_exist and exists:
            return CheckResult(
                passed=False,
                type="file_existence",
                severity=Severity.WARN,
                message=f'File "{path}" already exists',
                details={"path": path, "exists": True},
            )

        if exists and not full_path.is_file():
            return CheckResult(
                passed=False,
                type="file_existence",
                severity=Severity.BLOCK,
                message=f'"{path}" exists but is not a file',
                details={"path": path, "is_dir": full_path.is_dir()},
            )

        return CheckResult(
            passed=True,
            type="file_existence",
            severity=Severity.INFO,
            message=(
                f'File "{path}" exists'
                if must_exist
                else f'File "{path}" does not exist (as expected)'
            ),
        )

    async def validate_code(
        self,
        content: str,
        language: str,
        path: str = "",
    ) -> ValidationResult:
        checks: list[CheckResult] = []

        if language == "json":
            checks.append(self._check_json(content, path))

        if not content.strip():
            checks.append(
                CheckResult(
                    passed=False,
                    type="empty_content",
                    severity=Severity.BLOCK,
                    message=f'Generated content for "{path}" is empty',
                )
            )

        return ValidationResult.from_checks(checks)

    @staticmethod
    def _check_json(content: str, path: str) -> CheckResult:
        try:
            json.loads(content)
        except json.JSONDecodeError as exc:
            return CheckResult(
                passed=False,
                type="syntax_validity",
                severity=Severity.BLOCK,
                message=f'Invalid JSON in "{path}": {exc.msg} (line {exc.lineno})',
                details={"line": exc.lineno, "column": exc.colno},
            )
        return CheckResult(
            passed=True,
            type="syntax_validity",
            message=f'"{path}" is valid JSON',
        )

    def __repr__(self) -> str:
        return f"FileSystemGuard(root={str(self._root)!r})"
