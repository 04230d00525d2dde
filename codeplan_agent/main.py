"""CodePlan Agent main entry point.

Wires the two-stage pipeline together (generation backend, Planner,
dynamic code generator, hallucination guard, tool registry with the
local file and shell backends, Executor) and exposes a CLI to run one
task against a project directory.

Typical usage::

    python -m codeplan_agent.main --task "Add a formatPrice helper" \\
        --project-root ./my-app --files src/utils/format.ts

Programmatic usage::

    from codeplan_agent.main import build_agent

    agent = build_agent(api_key="sk-ant-...")
    result = agent.run_task_sync("Add a formatPrice helper")
    print(result.success)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from dataclasses import dataclass, field, replace
from pathlib import Path

from codeplan_agent.config.settings import Settings
from codeplan_agent.core.code_generator import CodeGenerator
from codeplan_agent.core.errors import AgentError
from codeplan_agent.core.executor import Executor
from codeplan_agent.core.generation import (
    GenerationBackend,
    GenerationService,
    create_backend,
)
from codeplan_agent.core.guard import FileSystemGuard, HallucinationGuard
from codeplan_agent.core.planner import Planner
from codeplan_agent.core.tool_registry import ToolRegistry
from codeplan_agent.models.context import ExecutionContext, TaskInfo
from codeplan_agent.models.events import (
    AgentEvent,
    AgentEventType,
    EventCallback,
    no_op_callback,
)
from codeplan_agent.models.plan import ExecutionPlan, StepStatus
from codeplan_agent.models.results import ExecutorOutput
from codeplan_agent.tools.file_tools import register_file_tools
from codeplan_agent.tools.shell_tools import register_shell_tools

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Task result
# ---------------------------------------------------------------------------


@dataclass
class TaskResult:
    """Outcome of one ``run_task`` call.

    Attributes:
        task_description: The task as given.
        success: ``True`` when planning succeeded and no step failed.
        plan: The generated plan, ``None`` if planning failed.
        outputs: Per-step executor outputs, in run order.
        steps_total: Number of planned steps.
        steps_completed: Steps that ran and succeeded (not skipped).
        steps_skipped: Steps skipped for any reason.
        steps_failed: Steps that failed.
        rolled_back: Snapshot ids that were rolled back.
        duration_ms: Wall-clock time of the whole run.
        error: Human-readable error, empty on success.
    """

    task_description: str
    success: bool
    plan: ExecutionPlan | None = None
    outputs: list[ExecutorOutput] = field(default_factory=list)
    steps_total: int = 0
    steps_completed: int = 0
    steps_skipped: int = 0
    steps_failed: int = 0
    rolled_back: list[str] = field(default_factory=list)
    duration_ms: float = 0.0
    error: str = ""


# ---------------------------------------------------------------------------
# CodePlan Agent
# ---------------------------------------------------------------------------


@dataclass
class CodePlanAgent:
    """Top-level agent that holds all component references.

    Constructed via the ``build_agent`` factory function.

    Attributes:
        backend: Provider-specific generation backend.
        service: Generation service shared by planner and generator.
        planner: Stage one, produces code-free plans.
        code_generator: Stage two, synthesises file content.
        guard: Pre- and post-execution validation.
        registry: Tool-name to client lookup.
        executor: Runs plan steps.
        settings: Immutable application configuration.
        on_event: Receives agent lifecycle events.
    """

    backend: GenerationBackend
    service: GenerationService
    planner: Planner
    code_generator: CodeGenerator
    guard: HallucinationGuard
    registry: ToolRegistry
    executor: Executor
    settings: Settings
    on_event: EventCallback = no_op_callback

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_task(
        self,
        task: str,
        context: str = "",
        files: dict[str, str] | None = None,
        sdd_constraints: str = "",
        plan_only: bool = False,
    ) -> TaskResult:
        """Plan and execute a natural-language task end-to-end.

        Full sequence:

        1. Generate a plan from the task, the context text, and the
           preloaded files.
        2. Unless *plan_only*, execute the plan's steps in dependency
           order.
        3. If a failure halted the batch and ``rollback_on_failure`` is
           set, roll back every recorded snapshot, newest first.

        Args:
            task: Natural-language description of the work.
            context: Free-form project context for the planner.
            files: Project-relative path -> content of files the run
                starts with.  Patch steps can only modify files that
                are known here or were read earlier in the run.
            sdd_constraints: Project design constraints threaded into
                planning and code generation prompts.
            plan_only: Stop after planning.

        Returns:
            A ``TaskResult``.  Planning and dependency errors are
            reported in ``error`` rather than raised.
        """
        start = time.monotonic()
        files = dict(files or {})
        self._emit(AgentEventType.TASK_STARTED, task=task)

        # 1. Planning.
        self._emit(AgentEventType.PLANNING_STARTED)
        try:
            plan = await self.planner.generate_plan(
                task,
                self._planning_context(context, files),
                sdd_constraints or None,
            )
        except AgentError as exc:
            logger.error("Planning failed: %s", exc)
            return self._failed(task, start, f"Planning failed: {exc}")

        self._emit(
            AgentEventType.PLANNING_COMPLETED,
            summary=plan.summary,
            steps=len(plan.steps),
        )
        result = TaskResult(
            task_description=task,
            success=True,
            plan=plan,
            steps_total=len(plan.steps),
        )
        if plan_only:
            result.duration_ms = (time.monotonic() - start) * 1000.0
            self._emit(AgentEventType.TASK_COMPLETED, plan_only=True)
            return result

        # 2. Execution.
        execution_context = ExecutionContext(
            task=TaskInfo(description=task),
            files=files,
            sdd_constraints=sdd_constraints,
        )
        try:
            result.outputs = await self.executor.execute_steps(
                plan.steps, execution_context
            )
        except AgentError as exc:
            logger.error("Execution aborted: %s", exc)
            return self._failed(task, start, str(exc), plan=plan)

        for step in plan.steps:
            if step.status is StepStatus.SKIPPED:
                result.steps_skipped += 1
            elif step.status is StepStatus.FAILED:
                result.steps_failed += 1
            elif step.status is StepStatus.COMPLETED:
                result.steps_completed += 1

        failed = [o for o in result.outputs if not o.step_result.success]
        if failed:
            result.success = False
            result.error = failed[0].step_result.error

        # 3. Rollback.
        halted = any(o.needs_rollback for o in failed)
        if halted and self.settings.rollback_on_failure:
            result.rolled_back = await self._rollback_all(result.outputs)

        result.duration_ms = (time.monotonic() - start) * 1000.0
        self._emit(
            AgentEventType.TASK_COMPLETED if result.success else AgentEventType.TASK_FAILED,
            error=result.error,
            completed=result.steps_completed,
            failed=result.steps_failed,
            skipped=result.steps_skipped,
        )
        logger.info(
            "Task %s: %d/%d steps completed, %d skipped, %d failed in %.1f ms",
            "succeeded" if result.success else "failed",
            result.steps_completed,
            result.steps_total,
            result.steps_skipped,
            result.steps_failed,
            result.duration_ms,
        )
        return result

    def run_task_sync(
        self,
        task: str,
        context: str = "",
        files: dict[str, str] | None = None,
        sdd_constraints: str = "",
        plan_only: bool = False,
    ) -> TaskResult:
        """Synchronous version of ``run_task``.  Blocks until done."""
        return asyncio.run(
            self.run_task(task, context, files, sdd_constraints, plan_only)
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _planning_context(self, context: str, files: dict[str, str]) -> str:
        parts = [context] if context else []
        limit = self.settings.context_truncate_chars
        for path, content in files.items():
            if len(content) > limit:
                content = content[:limit] + "\n... (truncated)"
            parts.append(f"--- {path} ---\n{content}")
        return "\n\n".join(parts)

    async def _rollback_all(self, outputs: list[ExecutorOutput]) -> list[str]:
        rolled_back: list[str] = []
        for output in reversed(outputs):
            snapshot_id = output.step_result.snapshot_id
            if not snapshot_id:
                continue
            rollback = await self.executor.rollback(snapshot_id)
            if rollback.success:
                rolled_back.append(snapshot_id)
            else:
                logger.warning("Rollback of %s failed: %s", snapshot_id, rollback.message)
        return rolled_back

    def _failed(
        self,
        task: str,
        start: float,
        error: str,
        plan: ExecutionPlan | None = None,
    ) -> TaskResult:
        self._emit(AgentEventType.TASK_FAILED, error=error)
        return TaskResult(
            task_description=task,
            success=False,
            plan=plan,
            steps_total=len(plan.steps) if plan else 0,
            duration_ms=(time.monotonic() - start) * 1000.0,
            error=error,
        )

    def _emit(self, event_type: AgentEventType, **data: object) -> None:
        self.on_event(AgentEvent(type=event_type, data=dict(data)))


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_agent(
    api_key: str = "",
    settings: Settings | None = None,
    on_event: EventCallback | None = None,
    backend: GenerationBackend | None = None,
) -> CodePlanAgent:
    """Create all components and return a fully wired ``CodePlanAgent``.

    Args:
        api_key: Provider API key.  Falls back to the provider's
            environment variable when empty.
        settings: Optional settings override.  When ``None`` the
            default settings are used.
        on_event: Optional lifecycle event callback shared by the agent
            and the executor.
        backend: Optional pre-built generation backend (tests, custom
            providers).  When ``None`` one is created from *settings*.

    Returns:
        A fully constructed ``CodePlanAgent`` instance.
    """
    if settings is None:
        settings = Settings()
    callback = on_event or no_op_callback

    # 1. Generation
    if backend is None:
        backend = create_backend(settings, api_key=api_key)
    service = GenerationService(backend, settings)

    # 2. Planner and code generator
    planner = Planner(service, settings)
    code_generator = CodeGenerator(service, settings)

    # 3. Guard
    guard = FileSystemGuard(settings.project_root)

    # 4. Tools
    registry = ToolRegistry()
    register_file_tools(registry, settings)
    register_shell_tools(registry, settings)
    logger.info("Registered tools: %s", ", ".join(registry.tool_names))

    # 5. Executor
    executor = Executor(
        registry=registry,
        guard=guard,
        code_generator=code_generator,
        settings=settings,
        on_event=callback,
    )

    return CodePlanAgent(
        backend=backend,
        service=service,
        planner=planner,
        code_generator=code_generator,
        guard=guard,
        registry=registry,
        executor=executor,
        settings=settings,
        on_event=callback,
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="codeplan-agent",
        description=(
            "CodePlan Agent -- plan a coding task, then generate and "
            "apply the code step by step."
        ),
    )
    parser.add_argument(
        "--task",
        "-t",
        required=True,
        help="The task to execute (e.g. 'Add a cart badge to the navbar').",
    )
    parser.add_argument(
        "--context-file",
        default="",
        help="Text file with extra project context for the planner.",
    )
    parser.add_argument(
        "--files",
        "-f",
        nargs="*",
        default=[],
        help="Project files (relative to --project-root) to preload.",
    )
    parser.add_argument(
        "--project-root",
        "-p",
        default=".",
        help="Project directory the file and shell tools are confined to.",
    )
    parser.add_argument(
        "--sdd-file",
        default="",
        help="Text file with project design constraints.",
    )
    parser.add_argument(
        "--provider",
        choices=("anthropic", "openai"),
        default=Settings.llm_provider,
        help="Generation provider.",
    )
    parser.add_argument("--model", default=Settings.model, help="Model identifier.")
    parser.add_argument(
        "--base-url",
        default="",
        help="API base URL override (proxies or compatible APIs).",
    )
    parser.add_argument(
        "--api-key",
        "-k",
        default="",
        help=(
            "Provider API key. Falls back to ANTHROPIC_API_KEY / "
            "OPENAI_API_KEY / API_KEY if not provided."
        ),
    )
    parser.add_argument(
        "--plan-only",
        action="store_true",
        help="Print the plan without executing it.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Overlay CLI arguments on the default settings."""
    return replace(
        Settings(),
        llm_provider=args.provider,
        model=args.model,
        api_base_url=args.base_url,
        project_root=args.project_root,
    )


def load_files(project_root: str, paths: list[str]) -> dict[str, str]:
    """Read *paths* (relative to *project_root*) into a path -> content map.

    Missing files are logged and skipped.
    """
    root = Path(project_root)
    files: dict[str, str] = {}
    for rel in paths:
        path = root / rel
        if not path.is_file():
            logger.warning("Skipping missing file: %s", rel)
            continue
        files[rel] = path.read_text(encoding="utf-8")
    return files


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments, build the agent, run the task, and print results."""
    args = build_parser().parse_args(argv)

    # -- Logging setup ---------------------------------------------------
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # -- Inputs ----------------------------------------------------------
    settings = settings_from_args(args)
    context = Path(args.context_file).read_text(encoding="utf-8") if args.context_file else ""
    sdd = Path(args.sdd_file).read_text(encoding="utf-8") if args.sdd_file else ""
    files = load_files(args.project_root, args.files)

    # -- Build and run ---------------------------------------------------
    logger.info("Building CodePlan Agent (%s, %s)", settings.llm_provider, settings.model)
    try:
        agent = build_agent(api_key=args.api_key, settings=settings)
    except ValueError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    logger.info("Running task: %s", args.task)
    result = agent.run_task_sync(
        args.task,
        context=context,
        files=files,
        sdd_constraints=sdd,
        plan_only=args.plan_only,
    )

    # -- Print result summary --------------------------------------------
    if result.plan is not None:
        _print_plan(result.plan)
    _print_result_summary(result)

    sys.exit(0 if result.success else 1)


def _print_plan(plan: ExecutionPlan) -> None:
    """Print the plan, one line per step."""
    print(f"Plan: {plan.summary}")
    for step in plan.steps:
        deps = f" (after {', '.join(step.dependencies)})" if step.dependencies else ""
        print(f"  [{step.status.value:>9}] {step.step_id} {step.action.value}: "
              f"{step.description}{deps}")
    for risk in plan.risks:
        print(f"  risk: {risk}")


def _print_result_summary(result: TaskResult) -> None:
    """Print a human-readable summary of the task result.

    Args:
        result: The ``TaskResult`` returned by the agent.
    """
    separator = "-" * 60
    print(separator)
    print(f"Task:       {result.task_description}")
    print(f"Status:     {'SUCCESS' if result.success else 'FAILED'}")
    print(
        f"Steps:      {result.steps_completed}/{result.steps_total} "
        f"completed, {result.steps_skipped} skipped, "
        f"{result.steps_failed} failed"
    )
    if result.rolled_back:
        print(f"Rolled back: {len(result.rolled_back)} snapshot(s)")
    print(f"Duration:   {result.duration_ms:.0f} ms")
    if result.error:
        print(f"Error:      {result.error}")
    print(separator)


if __name__ == "__main__":
    main()
