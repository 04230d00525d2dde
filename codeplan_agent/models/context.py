"""Execution context shared by the executor and the code generator."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class TaskInfo:
    """The task a plan is being executed for.

    Attributes:
        description: The original natural-language task.
        task_id: Optional identifier used in logs and events.
    """

    description: str
    task_id: str = ""


@dataclass
class ExecutionContext:
    """State visible to every step of a run.

    The executor treats this as read-only except for ``files``: file
    content read, created, or patched by a successful step is stored
    there so later steps see earlier output.

    Attributes:
        task: The task being executed.
        files: Project-relative path -> file content.
        sdd_constraints: Project design constraints rendered as text,
            threaded into every code generation prompt.
    """

    task: TaskInfo
    files: dict[str, str] = field(default_factory=dict)
    sdd_constraints: str = ""
