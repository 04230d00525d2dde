"""Exception hierarchy for the planner / executor pipeline.

Most failures inside a run are reported as data (``StepResult`` with
``success=False``).  The exceptions here are the ones that cross a
component boundary and must be handled by the caller.
"""

from __future__ import annotations


class AgentError(Exception):
    """Base class for all CodePlan Agent errors."""


class GenerationError(AgentError):
    """The generation backend could not produce a response.

    Raised after the retry budget is exhausted, or immediately for
    non-retryable HTTP errors (4xx) and missing credentials.
    """


class SchemaValidationError(AgentError):
    """Structured model output did not match the expected schema.

    Attributes:
        errors: Individual problems found, one message per entry.
        raw: The raw text the model returned, kept for debugging.
    """

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        raw: str = "",
    ) -> None:
        super().__init__(message)
        self.errors: list[str] = list(errors or [])
        self.raw = raw


class CodeGenerationError(AgentError):
    """Dynamic code generation could not be attempted or produced nothing."""


class UnregisteredToolError(AgentError):
    """A step referenced a tool with no registered backend."""


class DependencyError(AgentError):
    """Step dependencies are circular or reference unknown step ids.

    Attributes:
        pending: Ids of the steps that could not be scheduled.
    """

    def __init__(self, message: str, pending: list[str] | None = None) -> None:
        super().__init__(message)
        self.pending: list[str] = list(pending or [])
