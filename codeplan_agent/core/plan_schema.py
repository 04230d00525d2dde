"""Plan schema: the JSON shape of a valid execution plan.

The planner asks the model for JSON matching ``PlanSchema.describe()``
and converts the decoded result with ``PlanSchema.parse``.  Parsing is
strict about structure (a malformed plan is rejected as a whole with
``SchemaValidationError``) and lenient about optional fields, which get
defaults:

* ``stepId`` -- ``step_<n>`` (1-based position) when absent.
* ``dependencies`` / ``validation`` -- empty lists.
* ``needsCodeGeneration`` -- derived from the action and params.

Keys are accepted in camelCase (as prompted) or snake_case.
"""

from __future__ import annotations

from typing import Any

from codeplan_agent.core.errors import SchemaValidationError
from codeplan_agent.core.generation import ObjectSchema
from codeplan_agent.models.plan import (
    CODE_WRITING_ACTIONS,
    ActionType,
    ExecutionPlan,
    PlanStep,
    ValidationRule,
)

_ACTION_VALUES: tuple[str, ...] = tuple(a.value for a in ActionType)

_PLAN_SHAPE: str = (
    "{\n"
    '  "summary": string -- one-paragraph description of the approach,\n'
    '  "steps": [\n'
    "    {\n"
    '      "stepId": string -- unique id, e.g. "step_1",\n'
    '      "description": string -- what this step does,\n'
    f'      "action": one of {", ".join(_ACTION_VALUES)},\n'
    '      "tool": string -- tool name to call,\n'
    '      "params": object -- tool arguments (no source code),\n'
    '      "reasoning": string -- why the step is needed,\n'
    '      "needsCodeGeneration": boolean -- true for create_file /\n'
    "         apply_patch steps whose content must be written,\n"
    '      "dependencies": [stepId, ...] -- steps that must run first,\n'
    '      "validation": [{"type": string, "required": boolean}]\n'
    "    }\n"
    "  ],\n"
    '  "risks": [string] (optional),\n'
    '  "alternatives": [string] (optional)\n'
    "}"
)


def _get(item: dict, camel: str, snake: str, default: Any = None) -> Any:
    if camel in item:
        return item[camel]
    return item.get(snake, default)


def _derive_needs_code_generation(action: ActionType, params: dict) -> bool:
    if action not in CODE_WRITING_ACTIONS:
        return False
    if action is ActionType.CREATE_FILE:
        return not params.get("content")
    return not params.get("patches") and not params.get("content")


class PlanSchema(ObjectSchema[ExecutionPlan]):
    """Validator and converter for execution plans."""

    name = "execution plan"

    def describe(self) -> str:
        return _PLAN_SHAPE

    def parse(self, data: Any) -> ExecutionPlan:
        """Convert decoded JSON into an ``ExecutionPlan``.

        Args:
            data: The decoded JSON value.

        Returns:
            A populated ``ExecutionPlan`` with every step ``PENDING``.

        Raises:
            SchemaValidationError: Listing every problem found.
        """
        if not isinstance(data, dict):
            raise SchemaValidationError(
                "Plan must be a JSON object",
                errors=[f"expected object, got {type(data).__name__}"],
            )

        errors: list[str] = []

        summary = data.get("summary")
        if not isinstance(summary, str):
            errors.append("summary: expected string")

        raw_steps = data.get("steps")
        if not isinstance(raw_steps, list):
            errors.append("steps: expected array")
            raw_steps = []

        risks = self._string_list(data, "risks", errors)
        alternatives = self._string_list(data, "alternatives", errors)

        steps: list[PlanStep] = []
        for index, item in enumerate(raw_steps):
            step = self._parse_step(item, index, errors)
            if step is not None:
                steps.append(step)

        seen: set[str] = set()
        for step in steps:
            if step.step_id in seen:
                errors.append(f"steps: duplicate stepId {step.step_id!r}")
            seen.add(step.step_id)

        if errors:
            raise SchemaValidationError(
                f"Plan failed schema validation ({len(errors)} problem(s)): "
                + "; ".join(errors[:5]),
                errors=errors,
            )

        return ExecutionPlan(
            summary=summary,
            steps=steps,
            risks=risks,
            alternatives=alternatives,
        )

    # -- Private helpers --------------------------------------------

    @staticmethod
    def _string_list(data: dict, key: str, errors: list[str]) -> list[str]:
        value = data.get(key)
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            errors.append(f"{key}: expected array of strings")
            return []
        return list(value)

    def _parse_step(
        self,
        item: Any,
        index: int,
        errors: list[str],
    ) -> PlanStep | None:
        where = f"steps[{index}]"
        if not isinstance(item, dict):
            errors.append(f"{where}: expected object")
            return None

        problems: list[str] = []

        action_str = item.get("action")
        action: ActionType | None = None
        if action_str in _ACTION_VALUES:
            action = ActionType(action_str)
        else:
            problems.append(f"{where}.action: {action_str!r} is not a valid action")

        for key in ("description", "tool", "reasoning"):
            if not isinstance(item.get(key), str):
                problems.append(f"{where}.{key}: expected string")

        params = item.get("params")
        if not isinstance(params, dict):
            problems.append(f"{where}.params: expected object")

        step_id = _get(item, "stepId", "step_id", f"step_{index + 1}")
        if not isinstance(step_id, str) or not step_id:
            problems.append(f"{where}.stepId: expected non-empty string")

        dependencies = item.get("dependencies", [])
        if not isinstance(dependencies, list) or not all(
            isinstance(d, str) for d in dependencies
        ):
            problems.append(f"{where}.dependencies: expected array of strings")

        validation = self._parse_validation(item.get("validation", []), where, problems)

        needs_gen = _get(item, "needsCodeGeneration", "needs_code_generation")
        if needs_gen is not None and not isinstance(needs_gen, bool):
            problems.append(f"{where}.needsCodeGeneration: expected boolean")

        if problems:
            errors.extend(problems)
            return None

        if needs_gen is None:
            needs_gen = _derive_needs_code_generation(action, params)
        elif action not in CODE_WRITING_ACTIONS:
            # Only file writes have content to generate.
            needs_gen = False

        return PlanStep(
            step_id=step_id,
            description=item["description"],
            action=action,
            tool=item["tool"],
            params=dict(params),
            reasoning=item["reasoning"],
            needs_code_generation=needs_gen,
            dependencies=list(dependencies),
            validation=validation,
        )

    @staticmethod
    def _parse_validation(
        raw: Any,
        where: str,
        problems: list[str],
    ) -> list[ValidationRule]:
        if not isinstance(raw, list):
            problems.append(f"{where}.validation: expected array")
            return []
        rules: list[ValidationRule] = []
        for i, rule in enumerate(raw):
            if not isinstance(rule, dict) or not isinstance(rule.get("type"), str):
                problems.append(f"{where}.validation[{i}]: expected {{type, required}}")
                continue
            rules.append(
                ValidationRule(
                    type=rule["type"],
                    required=bool(rule.get("required", False)),
                    params=dict(rule.get("params") or {}),
                )
            )
        return rules


PLAN_SCHEMA = PlanSchema()
