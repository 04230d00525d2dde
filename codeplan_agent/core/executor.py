"""Executor: runs plan steps against the registered tool backends.

Stage two of the two-stage pipeline.  ``execute_steps`` walks a plan in
dependency order, one step at a time.  ``execute_step`` takes a single
step through a fixed sequence:

1. Parameter check.  Missing required parameters are a planning defect
   and the step is recorded as a skipped success.
2. Pre-execution validation through the hallucination guard (files to
   read must exist, files to create must not).  Skippable precondition
   errors also become skipped successes.
3. Dynamic code generation for ``create_file`` / ``apply_patch`` steps
   that carry a description instead of content.
4. Dispatch through the ``ToolRegistry``.
5. Classification of tool-reported failures (skippable or fatal).
6. Post-execution validation of written code.

A failed step requests a rollback only when it declares a ``required``
validation rule.  Failed steps still count as resolved for dependency
purposes, so independent branches keep running.

Typical usage::

    executor = Executor(registry, guard, code_generator, settings)
    outputs = await executor.execute_steps(plan.steps, context)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from codeplan_agent.config.settings import Settings
from codeplan_agent.core.code_generator import CodeGenerator, detect_language
from codeplan_agent.core.errors import CodeGenerationError, DependencyError
from codeplan_agent.core.error_classifier import ErrorPhase, classify
from codeplan_agent.core.guard import HallucinationGuard
from codeplan_agent.core.param_validator import validate_step_params
from codeplan_agent.core.tool_registry import ToolRegistry
from codeplan_agent.models.context import ExecutionContext
from codeplan_agent.models.events import (
    AgentEvent,
    AgentEventType,
    EventCallback,
    no_op_callback,
)
from codeplan_agent.models.plan import ActionType, PlanStep, StepStatus
from codeplan_agent.models.results import (
    CheckResult,
    ExecutorOutput,
    RollbackResult,
    StepResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)

StepCallback = Callable[[PlanStep, ExecutorOutput], None]

_TRUNCATION_MARKER: str = "\n... (truncated)"


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000.0


def _skipped(reason: str, start: float) -> ExecutorOutput:
    return ExecutorOutput(
        step_result=StepResult(
            success=True,
            output={"skipped": True, "reason": reason},
            duration=_elapsed_ms(start),
        ),
        validation=ValidationResult.ok(),
        needs_rollback=False,
    )


def _check_dependencies(steps: list[PlanStep]) -> None:
    """Raise ``DependencyError`` unless every step can eventually run."""
    known = {step.step_id for step in steps}
    missing = sorted(
        {dep for step in steps for dep in step.dependencies if dep not in known}
    )
    if missing:
        raise DependencyError(
            f"Missing dependency: unknown step id(s) {', '.join(missing)}",
            pending=[s.step_id for s in steps if set(s.dependencies) & set(missing)],
        )

    resolved: set[str] = set()
    remaining = list(steps)
    progress = True
    while remaining and progress:
        ready = [s for s in remaining if all(d in resolved for d in s.dependencies)]
        progress = bool(ready)
        resolved.update(s.step_id for s in ready)
        remaining = [s for s in remaining if s.step_id not in resolved]
    if remaining:
        raise DependencyError(
            "Circular dependency detected among steps: "
            + ", ".join(s.step_id for s in remaining),
            pending=[s.step_id for s in remaining],
        )


class Executor:
    """Executes plan steps with on-demand code generation.

    Args:
        registry: Tool-name to client lookup used for every dispatch.
        guard: Hallucination guard for pre- and post-execution checks.
        code_generator: Synthesises file content for file-writing steps.
        settings: Supplies the context truncation length and the
            fallback language.
        on_event: Receives ``AgentEvent`` notifications.  Defaults to a
            no-op.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        guard: HallucinationGuard,
        code_generator: CodeGenerator,
        settings: Settings,
        on_event: EventCallback | None = None,
    ) -> None:
        self._registry = registry
        self._guard = guard
        self._code_generator = code_generator
        self._settings = settings
        self._on_event: EventCallback = on_event or no_op_callback

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute_step(
        self,
        step: PlanStep,
        context: ExecutionContext,
    ) -> ExecutorOutput:
        """Execute one step and report the outcome.

        Never raises.  Unexpected exceptions (including unregistered
        tools and generation failures) are reported as a failed output
        with ``needs_rollback=True``.

        Args:
            step: The step to execute.  Not mutated here.
            context: Run context.  Successful file steps write their
                content into ``context.files``.

        Returns:
            An ``ExecutorOutput`` for the step.
        """
        start = time.monotonic()

        try:
            return await self._execute_step(step, context, start)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.exception("step %s raised: %s", step.step_id, message)
            return ExecutorOutput(
                step_result=StepResult(
                    success=False,
                    error=message,
                    duration=_elapsed_ms(start),
                ),
                validation=ValidationResult.blocked(message),
                needs_rollback=True,
            )

    async def execute_steps(
        self,
        steps: list[PlanStep],
        context: ExecutionContext,
        on_step_complete: StepCallback | None = None,
    ) -> list[ExecutorOutput]:
        """Execute *steps* sequentially in dependency order.

        Each iteration picks the first pending step whose dependencies
        have all been resolved.  A step is resolved once it has run,
        whether it succeeded or not.  A failed step with
        ``needs_rollback`` halts the batch; remaining steps are marked
        ``SKIPPED``.

        Args:
            steps: Steps to run.  Their ``status`` and ``result`` are
                updated in place.
            context: Run context shared by all steps.
            on_step_complete: Called after each step with the step and
                its output.

        Returns:
            One ``ExecutorOutput`` per step that ran, in run order.

        Raises:
            DependencyError: If a step depends on an unknown step id
                or the dependencies form a cycle.  Checked before any
                step runs, so no partial batch is executed.
        """
        _check_dependencies(steps)

        outputs: list[ExecutorOutput] = []
        resolved: set[str] = set()
        pending = list(steps)

        while pending:
            index = next(
                (
                    i
                    for i, candidate in enumerate(pending)
                    if all(dep in resolved for dep in candidate.dependencies)
                ),
                None,
            )
            if index is None:
                blocked = [s.step_id for s in pending]
                raise DependencyError(
                    "Circular dependency detected or missing dependency "
                    f"(unresolved steps: {', '.join(blocked)})",
                    pending=blocked,
                )

            step = pending.pop(index)
            step.status = StepStatus.RUNNING
            self._emit(AgentEventType.STEP_STARTED, step.step_id,
                       action=step.action.value, description=step.description)

            output = await self.execute_step(step, context)
            step.result = output.step_result
            self._record_status(step, output)

            outputs.append(output)
            resolved.add(step.step_id)

            if on_step_complete is not None:
                on_step_complete(step, output)

            if not output.step_result.success and output.needs_rollback:
                logger.warning(
                    "step %s failed with rollback requested; skipping %d "
                    "remaining step(s)",
                    step.step_id,
                    len(pending),
                )
                for remaining in pending:
                    remaining.status = StepStatus.SKIPPED
                break

        return outputs

    async def rollback(self, snapshot_id: str) -> RollbackResult:
        """Undo a step's file-system effects through the ``rollback`` tool.

        Never raises; failures are returned as an unsuccessful result.
        """
        self._emit(AgentEventType.ROLLBACK_STARTED, snapshot_id=snapshot_id)
        try:
            raw = await self._registry.call("rollback", {"snapshotId": snapshot_id})
        except Exception as exc:
            logger.error("rollback of %s failed: %s", snapshot_id, exc)
            result = RollbackResult(success=False, message=str(exc))
        else:
            if isinstance(raw, dict):
                result = RollbackResult(
                    success=bool(raw.get("success", False)),
                    message=str(raw.get("message") or raw.get("error") or ""),
                )
            else:
                result = RollbackResult(success=bool(raw), message=str(raw or ""))

        self._emit(
            AgentEventType.ROLLBACK_COMPLETED,
            snapshot_id=snapshot_id,
            success=result.success,
            message=result.message,
        )
        return result

    # ------------------------------------------------------------------
    # Step pipeline
    # ------------------------------------------------------------------

    async def _execute_step(
        self,
        step: PlanStep,
        context: ExecutionContext,
        start: float,
    ) -> ExecutorOutput:
        # 1. Parameter check.
        params_check = validate_step_params(step)
        if not params_check.valid:
            logger.info("step %s skipped: %s", step.step_id, params_check.reason)
            return _skipped(params_check.reason, start)

        # 2. Pre-execution validation.
        pre_validation = await self._validate_before(step)
        if not pre_validation.passed:
            message = "; ".join(pre_validation.blocked_by)
            if classify(step.action, message, ErrorPhase.PRECONDITION).skippable:
                logger.info("step %s skipped: %s", step.step_id, message)
                return _skipped(message, start)
            return ExecutorOutput(
                step_result=StepResult(
                    success=False,
                    error=f"Pre-execution validation failed: {message}",
                    duration=_elapsed_ms(start),
                ),
                validation=pre_validation,
                needs_rollback=step.has_required_validation,
            )

        # 3. Dynamic code generation.
        tool_params = dict(step.params)
        if self._needs_code_generation(step, tool_params):
            tool_params = await self._generate_content(step, tool_params, context)

        # 4. Dispatch.
        logger.debug("step %s: calling %s", step.step_id, step.tool)
        tool_result = await self._registry.call(step.tool, tool_params)

        # 5. Tool-reported failures.
        if isinstance(tool_result, dict) and tool_result.get("success") is False:
            error = str(tool_result.get("error") or "Tool execution failed")
            if classify(step.action, error, ErrorPhase.TOOL).skippable:
                logger.info("step %s skipped: %s", step.step_id, error)
                return _skipped(error, start)
            validation = ValidationResult.blocked(error)
        else:
            # 6. Post-execution validation.
            validation = await self._validate_after(step, tool_params, tool_result)

        step_result = StepResult(
            success=validation.passed,
            output=tool_result,
            error="" if validation.passed else "; ".join(validation.blocked_by),
            duration=_elapsed_ms(start),
            snapshot_id=self._snapshot_id(tool_result),
        )

        if step_result.success:
            self._update_context(step, tool_params, tool_result, context)

        return ExecutorOutput(
            step_result=step_result,
            validation=validation,
            needs_rollback=not step_result.success and step.has_required_validation,
        )

    async def _validate_before(self, step: PlanStep) -> ValidationResult:
        checks: list[CheckResult] = []
        path = step.params.get("path")

        if step.action is ActionType.READ_FILE and path:
            checks.append(await self._guard.validate_file_path(path, must_exist=True))
        elif (
            step.action is ActionType.CREATE_FILE
            and path
            and not step.params.get("overwrite")
        ):
            checks.append(await self._guard.validate_file_path(path, must_exist=False))

        return ValidationResult.from_checks(checks)

    async def _validate_after(
        self,
        step: PlanStep,
        tool_params: dict[str, Any],
        tool_result: Any,
    ) -> ValidationResult:
        if step.action not in (ActionType.CREATE_FILE, ActionType.APPLY_PATCH):
            return ValidationResult.ok()

        content = None
        if isinstance(tool_result, dict):
            content = tool_result.get("content")
        if not content:
            content = tool_params.get("content")
        path = tool_params.get("path", "")

        if not content or not path:
            return ValidationResult.ok()

        language = detect_language(path)
        if language is None:
            return ValidationResult.ok()
        return await self._guard.validate_code(content, language, path)

    # ------------------------------------------------------------------
    # Code generation
    # ------------------------------------------------------------------

    @staticmethod
    def _needs_code_generation(step: PlanStep, tool_params: dict[str, Any]) -> bool:
        if step.action is ActionType.CREATE_FILE:
            return step.needs_code_generation or not tool_params.get("content")
        if step.action is ActionType.APPLY_PATCH:
            return step.needs_code_generation or not (
                tool_params.get("patches") or tool_params.get("content")
            )
        return False

    async def _generate_content(
        self,
        step: PlanStep,
        tool_params: dict[str, Any],
        context: ExecutionContext,
    ) -> dict[str, Any]:
        file_path = tool_params["path"]
        language = detect_language(file_path) or self._settings.default_language
        sdd_constraints = context.sdd_constraints or None

        if step.action is ActionType.CREATE_FILE:
            description = tool_params.get("codeDescription") or step.description
            code = await self._code_generator.generate_code_for_file(
                task=context.task.description,
                file_path=file_path,
                code_description=description,
                context=self._build_context_string(context),
                language=language,
                sdd_constraints=sdd_constraints,
            )
            tool_params["content"] = code
        else:
            original = context.files.get(file_path)
            if not original:
                raise CodeGenerationError(
                    f"Cannot apply patch: file not found in context: {file_path}"
                )
            description = tool_params.get("changeDescription") or step.description
            code = await self._code_generator.generate_modified_code(
                original_code=original,
                change_description=description,
                file_path=file_path,
                language=language,
                sdd_constraints=sdd_constraints,
            )
            tool_params["patches"] = [
                {
                    "operation": "replace",
                    "startLine": 1,
                    "endLine": len(original.split("\n")),
                    "content": code,
                }
            ]
            tool_params["content"] = code

        self._emit(AgentEventType.CODE_GENERATED, step.step_id,
                   path=file_path, chars=len(code), language=language)
        return tool_params

    def _build_context_string(self, context: ExecutionContext) -> str:
        """Render ``context.files`` for a generation prompt.

        Each file body is cut to ``settings.context_truncate_chars``.
        """
        if not context.files:
            return ""

        limit = self._settings.context_truncate_chars
        parts = ["Related files:"]
        for path, content in context.files.items():
            if len(content) > limit:
                content = content[:limit] + _TRUNCATION_MARKER
            parts.append(f"\n--- {path} ---\n{content}")
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _snapshot_id(tool_result: Any) -> str:
        if not isinstance(tool_result, dict):
            return ""
        return str(tool_result.get("snapshotId") or tool_result.get("snapshot_id") or "")

    @staticmethod
    def _update_context(
        step: PlanStep,
        tool_params: dict[str, Any],
        tool_result: Any,
        context: ExecutionContext,
    ) -> None:
        path = tool_params.get("path")
        if not path:
            return
        if step.action in (ActionType.CREATE_FILE, ActionType.APPLY_PATCH):
            # The tool's post-write text wins over the requested content.
            content = None
            if isinstance(tool_result, dict):
                content = tool_result.get("content")
            if not isinstance(content, str):
                content = tool_params.get("content")
            if isinstance(content, str):
                context.files[path] = content
        elif step.action is ActionType.READ_FILE and isinstance(tool_result, dict):
            content = tool_result.get("content")
            # Partial reads would corrupt a later whole-file patch.
            partial = "startLine" in tool_params or "endLine" in tool_params
            if isinstance(content, str) and not partial:
                context.files[path] = content

    def _record_status(self, step: PlanStep, output: ExecutorOutput) -> None:
        result = output.step_result
        if result.skipped:
            step.status = StepStatus.SKIPPED
            self._emit(AgentEventType.STEP_SKIPPED, step.step_id,
                       reason=result.skip_reason)
        elif result.success:
            step.status = StepStatus.COMPLETED
            self._emit(AgentEventType.STEP_COMPLETED, step.step_id,
                       duration=result.duration)
        else:
            step.status = StepStatus.FAILED
            self._emit(AgentEventType.STEP_FAILED, step.step_id,
                       error=result.error, needs_rollback=output.needs_rollback)

    def _emit(self, event_type: AgentEventType, step_id: str = "", **data: Any) -> None:
        self._on_event(AgentEvent(type=event_type, step_id=step_id, data=data))
