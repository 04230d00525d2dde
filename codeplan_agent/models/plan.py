"""Execution plan data models: actions, steps, and plans.

A plan is a structured, code-free description of the work needed to
accomplish a task.  It is produced once by the ``Planner`` and then
borrowed by the ``Executor``, which only writes back each step's
``status`` and ``result``.

These dataclasses are shared between the Planner, the plan schema, and
the Executor.  Keeping them in the models layer avoids circular imports
between core modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from codeplan_agent.models.results import StepResult


class ActionType(Enum):
    """The kind of work a plan step performs.

    Attributes:
        READ_FILE: Read a file's content into the execution context.
        LIST_DIRECTORY: List the entries of a directory.
        CREATE_FILE: Create a new file (content generated on demand).
        APPLY_PATCH: Modify an existing file (content generated on
            demand).
        SEARCH_CODE: Regex search over project files.
        GET_AST: Structural analysis of a source file.
        RUN_COMMAND: Run a shell command in the project root.
        BROWSER_NAVIGATE: Open a URL in the controlled browser.
        GET_PAGE_STRUCTURE: Capture the current page's DOM outline.
        BROWSER_CLICK: Click an element by CSS selector.
        BROWSER_TYPE: Type into an element by CSS selector.
        BROWSER_SCREENSHOT: Capture a screenshot of the page.
    """

    READ_FILE = "read_file"
    LIST_DIRECTORY = "list_directory"
    CREATE_FILE = "create_file"
    APPLY_PATCH = "apply_patch"
    SEARCH_CODE = "search_code"
    GET_AST = "get_ast"
    RUN_COMMAND = "run_command"
    BROWSER_NAVIGATE = "browser_navigate"
    GET_PAGE_STRUCTURE = "get_page_structure"
    BROWSER_CLICK = "browser_click"
    BROWSER_TYPE = "browser_type"
    BROWSER_SCREENSHOT = "browser_screenshot"


# Actions whose file content is produced by the dynamic code generator.
CODE_WRITING_ACTIONS: frozenset[ActionType] = frozenset(
    {ActionType.CREATE_FILE, ActionType.APPLY_PATCH}
)


class StepStatus(Enum):
    """Lifecycle status of a plan step.

    ``PENDING -> RUNNING -> {COMPLETED | FAILED | SKIPPED}``.  A step
    can also go straight from ``PENDING`` to ``SKIPPED`` when an
    earlier failure halts the batch.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ValidationRule:
    """A validation requirement declared on a step.

    Attributes:
        type: Check identifier, e.g. ``"file_exists"``,
            ``"syntax_valid"``, ``"sdd_compliant"``.
        required: When ``True`` a failure of this step requests a
            rollback of the whole batch.
        params: Check-specific options.
    """

    type: str
    required: bool = False
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class PlanStep:
    """A single unit of planned work.

    Attributes:
        step_id: Unique id within the plan.  Referenced by other
            steps' ``dependencies``.
        description: Human-readable summary of what the step does.
        action: The kind of work to perform.
        tool: Name of the tool backend to dispatch to.
        params: Tool arguments.  File-writing steps carry a
            natural-language ``codeDescription`` or
            ``changeDescription`` here, never source code.
        reasoning: Why the planner included this step.
        needs_code_generation: Whether the executor must synthesise
            file content before dispatch.
        dependencies: Step ids that must be resolved first.
        validation: Declared validation requirements.
        status: Current lifecycle status (mutated by the executor).
        result: Outcome of the execution attempt, ``None`` until the
            step has run.
    """

    step_id: str
    description: str
    action: ActionType
    tool: str
    params: dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    needs_code_generation: bool = False
    dependencies: list[str] = field(default_factory=list)
    validation: list[ValidationRule] = field(default_factory=list)
    status: StepStatus = StepStatus.PENDING
    result: StepResult | None = None

    @property
    def has_required_validation(self) -> bool:
        """Whether any declared validation rule is marked required."""
        return any(rule.required for rule in self.validation)


@dataclass
class ExecutionPlan:
    """A decomposed, code-free task plan.

    Attributes:
        summary: Short description of the overall approach.
        steps: Steps in planner order.  Execution order is derived
            from ``dependencies``.
        risks: Potential problems the planner identified.
        alternatives: Other approaches the planner considered.
    """

    summary: str
    steps: list[PlanStep] = field(default_factory=list)
    risks: list[str] = field(default_factory=list)
    alternatives: list[str] = field(default_factory=list)
