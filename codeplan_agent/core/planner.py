"""Planner: turns a natural-language task into a structured plan.

Stage one of the two-stage pipeline.  Given a task description and a
textual summary of the project, the planner asks the generation
service for a JSON plan of tool steps and validates it against
``PlanSchema``.  The plan never contains source code: steps that write
files carry a natural-language ``codeDescription`` (new files) or
``changeDescription`` (modifications), and the executor generates the
actual content later, one file at a time.

Typical usage::

    from codeplan_agent.core.planner import Planner

    planner = Planner(service, settings)
    plan = await planner.generate_plan(
        "Add a formatPrice helper",
        context="src/utils/ contains format.ts ...",
    )
    for step in plan.steps:
        print(step.step_id, step.action.value, step.description)
"""

from __future__ import annotations

import logging

from codeplan_agent.config.settings import Settings
from codeplan_agent.core.generation import GenerationService, Message
from codeplan_agent.core.plan_schema import PLAN_SCHEMA
from codeplan_agent.models.plan import ExecutionPlan

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# System prompt that instructs the model to return a code-free plan.
# ------------------------------------------------------------------
_SYSTEM_PROMPT: str = (
    "You are a senior frontend engineering agent. Analyse the task and "
    "produce an execution plan made of tool steps.\n"
    "\n"
    "Rules:\n"
    "- Describe WHAT each step does. Do NOT write any source code in the "
    "plan, not even snippets.\n"
    "- Every step must have action, tool, params and reasoning.\n"
    "- For create_file steps put a natural-language description of the "
    'file in params.codeDescription and set "needsCodeGeneration": true.\n'
    "- For apply_patch steps put a natural-language description of the "
    'change in params.changeDescription and set "needsCodeGeneration": '
    "true. Read the file in an earlier step and list that step in "
    "dependencies.\n"
    "- Use params.path for file and directory steps, params.pattern for "
    "search_code, params.command for run_command, params.url for "
    "browser_navigate and params.selector for browser_click / "
    "browser_type.\n"
    "- Only reference stepIds that exist in this plan.\n"
    "- Keep plans short and ordered; prefer reading before writing.\n"
    "\n"
    "Project constraints:\n"
    "{constraints}\n"
)


class Planner:
    """Decomposes tasks into validated, code-free execution plans.

    Args:
        service: Generation service used for structured output.
        settings: Supplies the plan temperature and step cap.
    """

    def __init__(self, service: GenerationService, settings: Settings) -> None:
        self._service = service
        self._settings = settings

    # -- Prompt construction ----------------------------------------

    def build_system_prompt(self, sdd_constraints: str | None = None) -> str:
        """Return the system prompt with project constraints inlined."""
        return _SYSTEM_PROMPT.format(
            constraints=sdd_constraints or "(no special constraints)"
        )

    def build_messages(self, task: str, context: str) -> list[Message]:
        """Return the user message for a planning call."""
        user_text = (
            f"Task: {task}\n"
            "\n"
            "Context:\n"
            f"{context or '(no context collected)'}\n"
            "\n"
            "Produce the execution plan."
        )
        return [Message(role="user", content=user_text)]

    # -- Planning ---------------------------------------------------

    async def generate_plan(
        self,
        task: str,
        context: str,
        sdd_constraints: str | None = None,
    ) -> ExecutionPlan:
        """Generate a plan for *task*.

        Args:
            task: Natural-language description of the work.
            context: Project information gathered so far (file list,
                relevant file contents, page structure...).
            sdd_constraints: Optional project design constraints.

        Returns:
            An ``ExecutionPlan`` whose steps are all ``PENDING``.

        Raises:
            SchemaValidationError: If the model output cannot be
                coerced into a plan.
            GenerationError: If the backend could not be reached.
        """
        plan = await self._service.generate_object(
            self.build_messages(task, context),
            system=self.build_system_prompt(sdd_constraints),
            schema=PLAN_SCHEMA,
            temperature=self._settings.plan_temperature,
        )

        limit = self._settings.max_plan_steps
        if limit > 0 and len(plan.steps) > limit:
            logger.warning(
                "Planner: plan has %d steps, truncating to %d",
                len(plan.steps),
                limit,
            )
            plan.steps = plan.steps[:limit]

        logger.info(
            "Planner: %d step(s) planned: %s",
            len(plan.steps),
            plan.summary,
        )
        return plan

    def __repr__(self) -> str:
        return f"Planner(max_steps={self._settings.max_plan_steps})"
