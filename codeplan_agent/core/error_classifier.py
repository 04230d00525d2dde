"""Classifies step errors as skippable or fatal.

Tool backends and the hallucination guard report failures as plain
strings.  Some of those failures are recoverable by simply skipping the
step (reading a file that does not exist yet, pointing a file tool at a
directory, a dev command whose module is not installed); everything
else must fail the step.  Every matching rule lives in this module so
the rules can be tested and swapped in one place.

This is a pure-logic module with no side effects.

Typical usage::

    from codeplan_agent.core.error_classifier import (
        ErrorSeverity,
        classify_error,
    )

    severity = classify_error("run_command", "Cannot find module 'vite'")
    if severity is ErrorSeverity.SKIPPABLE:
        ...
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from codeplan_agent.models.plan import ActionType


class ErrorPhase(Enum):
    """Where in ``execute_step`` the error surfaced."""

    PRECONDITION = "precondition"
    TOOL = "tool"


class ErrorSeverity(Enum):
    """Effect of an error on the step."""

    SKIPPABLE = "skippable"
    FATAL = "fatal"


@dataclass(frozen=True)
class _Rule:
    pattern: re.Pattern[str]
    description: str
    actions: frozenset[ActionType] | None = None

    def matches(self, action: ActionType | None, message: str) -> bool:
        if self.actions is not None and action not in self.actions:
            return False
        return bool(self.pattern.search(message))


def _rule(
    pattern: str,
    description: str,
    *actions: ActionType,
) -> _Rule:
    return _Rule(
        pattern=re.compile(pattern, re.IGNORECASE),
        description=description,
        actions=frozenset(actions) if actions else None,
    )


# Guard failures raised before the tool is called.
_PRECONDITION_RULES: tuple[_Rule, ...] = (
    _rule(r"not a file", "target is not a regular file"),
    _rule(r"does not exist", "file to read does not exist", ActionType.READ_FILE),
)

# Failures reported by the tool backend itself.
_TOOL_RULES: tuple[_Rule, ...] = (
    _rule(r"file not found in context", "patch target was never read",
          ActionType.APPLY_PATCH),
    _rule(r"directory not found", "directory not found"),
    _rule(r"file not found", "file not found"),
    _rule(r"not a directory", "target is not a directory"),
    _rule(r"not a file", "target is not a regular file"),
    _rule(r"Command failed", "command exited non-zero", ActionType.RUN_COMMAND),
    _rule(r"Cannot find module", "missing module", ActionType.RUN_COMMAND),
    _rule(r"MODULE_NOT_FOUND", "missing module", ActionType.RUN_COMMAND),
    _rule(r"ENOENT", "missing executable or path", ActionType.RUN_COMMAND),
)

_RULES: dict[ErrorPhase, tuple[_Rule, ...]] = {
    ErrorPhase.PRECONDITION: _PRECONDITION_RULES,
    ErrorPhase.TOOL: _TOOL_RULES,
}


@dataclass(frozen=True)
class ErrorClassification:
    """Result of classifying one error message.

    Attributes:
        severity: Whether the step may be skipped.
        phase: Where the error surfaced.
        description: Which rule matched, or ``"unrecognised error"``.
    """

    severity: ErrorSeverity
    phase: ErrorPhase
    description: str

    @property
    def skippable(self) -> bool:
        return self.severity is ErrorSeverity.SKIPPABLE


def _resolve_action(action: ActionType | str) -> ActionType | None:
    if isinstance(action, ActionType):
        return action
    try:
        return ActionType(action)
    except ValueError:
        return None


def classify(
    action: ActionType | str,
    message: str,
    phase: ErrorPhase = ErrorPhase.TOOL,
) -> ErrorClassification:
    """Classify *message* reported for a step performing *action*.

    Args:
        action: The step's action (enum or its string value).
            Unknown strings only match action-agnostic rules.
        message: The error text.
        phase: Which rule set to apply.

    Returns:
        An ``ErrorClassification``; ``FATAL`` when no rule matches.
    """
    resolved = _resolve_action(action)
    for rule in _RULES[phase]:
        if rule.matches(resolved, message or ""):
            return ErrorClassification(
                severity=ErrorSeverity.SKIPPABLE,
                phase=phase,
                description=rule.description,
            )
    return ErrorClassification(
        severity=ErrorSeverity.FATAL,
        phase=phase,
        description="unrecognised error",
    )


def classify_error(
    action: ActionType | str,
    message: str,
    phase: ErrorPhase = ErrorPhase.TOOL,
) -> ErrorSeverity:
    """Shorthand for ``classify(...).severity``."""
    return classify(action, message, phase).severity
