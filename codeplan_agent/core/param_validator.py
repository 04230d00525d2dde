"""Pre-flight parameter checks for plan steps.

A step whose parameters are missing or empty for its action is a
planning defect, not a runtime fault: the executor records it as a
skipped success instead of calling any tool.  ``validate_step_params``
is a pure function of the step.
"""

from __future__ import annotations

from dataclasses import dataclass

from codeplan_agent.models.plan import ActionType, PlanStep

# Required non-empty parameter per action.  Actions not listed here
# take no mandatory parameters.
_REQUIRED_PARAM: dict[ActionType, str] = {
    ActionType.READ_FILE: "path",
    ActionType.CREATE_FILE: "path",
    ActionType.APPLY_PATCH: "path",
    ActionType.LIST_DIRECTORY: "path",
    ActionType.GET_AST: "path",
    ActionType.SEARCH_CODE: "pattern",
    ActionType.RUN_COMMAND: "command",
    ActionType.BROWSER_NAVIGATE: "url",
    ActionType.BROWSER_CLICK: "selector",
    ActionType.BROWSER_TYPE: "selector",
}


@dataclass(frozen=True)
class ParamValidation:
    """Outcome of a parameter check.

    Attributes:
        valid: Whether the step's parameters are well-formed.
        reason: Why they are not.  Empty when ``valid``.
    """

    valid: bool
    reason: str = ""


def required_param(action: ActionType) -> str | None:
    """Return the mandatory parameter name for *action*, if any."""
    return _REQUIRED_PARAM.get(action)


def validate_step_params(step: PlanStep) -> ParamValidation:
    """Check that *step* carries the parameters its action needs.

    A value counts as present when it is a non-blank string, or any
    other non-``None`` value.
    """
    field_name = required_param(step.action)
    if field_name is None:
        return ParamValidation(valid=True)

    value = step.params.get(field_name)
    if value is None or (isinstance(value, str) and not value.strip()):
        return ParamValidation(
            valid=False,
            reason=(
                f"{step.action.value} requires non-empty "
                f"{field_name} parameter"
            ),
        )
    return ParamValidation(valid=True)
