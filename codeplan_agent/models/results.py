"""Result types produced while executing a plan.

``StepResult`` is attached to a step once per execution attempt.
``CheckResult`` / ``ValidationResult`` come from the hallucination guard
and from the executor's own pre- and post-execution passes;
``ExecutorOutput`` bundles the three for the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Severity(Enum):
    """How a failed check affects execution.

    Attributes:
        BLOCK: The step must not proceed (or is reported failed).
        WARN: Reported but does not block.
        INFO: Informational; used for passing checks.
    """

    BLOCK = "block"
    WARN = "warn"
    INFO = "info"


@dataclass
class StepResult:
    """Outcome of one step execution attempt.

    Attributes:
        success: Whether the step succeeded.  Skipped steps are
            reported as successes with ``output["skipped"] == True``.
        output: Tool result, or a ``{"skipped": True, "reason": ...}``
            marker.
        error: Human-readable error description.  Empty on success.
        duration: Wall-clock time of the attempt in milliseconds.
        snapshot_id: Rollback checkpoint returned by the tool, if any.
    """

    success: bool
    output: Any = None
    error: str = ""
    duration: float = 0.0
    snapshot_id: str = ""

    @property
    def skipped(self) -> bool:
        """Whether this result marks a skipped (no-op) step."""
        return isinstance(self.output, dict) and bool(self.output.get("skipped"))

    @property
    def skip_reason(self) -> str:
        """The recorded skip reason, or an empty string."""
        if self.skipped:
            return str(self.output.get("reason", ""))
        return ""


@dataclass
class CheckResult:
    """A single guard check.

    Attributes:
        passed: Whether the check passed.
        type: Check identifier, e.g. ``"file_existence"``.
        severity: Effect of a failure.
        message: Human-readable description.
        details: Check-specific diagnostic payload.
    """

    passed: bool
    type: str
    severity: Severity = Severity.INFO
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def blocking(self) -> bool:
        """Whether this check failed with ``BLOCK`` severity."""
        return not self.passed and self.severity is Severity.BLOCK


@dataclass
class ValidationResult:
    """Aggregate of several checks.

    Attributes:
        passed: ``True`` when no check blocks.
        results: Individual check results.
        blocked_by: Messages of the blocking checks.
        warnings: Messages of the warning checks.
    """

    passed: bool
    results: list[CheckResult] = field(default_factory=list)
    blocked_by: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls) -> ValidationResult:
        """A passing result with no checks."""
        return cls(passed=True)

    @classmethod
    def from_checks(cls, results: list[CheckResult]) -> ValidationResult:
        """Aggregate *results*, blocking on any ``BLOCK`` failure."""
        blocked = [r.message or r.type for r in results if r.blocking]
        warnings = [
            r.message or r.type
            for r in results
            if not r.passed and r.severity is Severity.WARN
        ]
        return cls(
            passed=not blocked,
            results=list(results),
            blocked_by=blocked,
            warnings=warnings,
        )

    @classmethod
    def blocked(cls, *messages: str) -> ValidationResult:
        """A failing result carrying *messages* and no check details."""
        return cls(passed=False, blocked_by=list(messages))


@dataclass
class ExecutorOutput:
    """Everything the executor reports for one step.

    Attributes:
        step_result: The attempt's outcome.
        validation: The validation pass that decided the outcome.
        needs_rollback: Whether the caller should stop the batch and
            roll back.
    """

    step_result: StepResult
    validation: ValidationResult
    needs_rollback: bool = False


@dataclass
class RollbackResult:
    """Outcome of a rollback request."""

    success: bool
    message: str = ""
