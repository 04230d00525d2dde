"""Agent events emitted while planning and executing a task.

An ``AgentEvent`` records a lifecycle transition -- a plan was
produced, a step started or failed, a rollback ran.  Events are handed
to an injected callback so callers (and tests) can observe a run
without parsing logs.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AgentEventType(Enum):
    """Classification of agent lifecycle events."""

    TASK_STARTED = "task_started"
    PLANNING_STARTED = "planning_started"
    PLANNING_COMPLETED = "planning_completed"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_SKIPPED = "step_skipped"
    STEP_FAILED = "step_failed"
    CODE_GENERATED = "code_generated"
    ROLLBACK_STARTED = "rollback_started"
    ROLLBACK_COMPLETED = "rollback_completed"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"


@dataclass
class AgentEvent:
    """A single lifecycle event.

    Attributes:
        type: The kind of event.
        step_id: Id of the step involved, or an empty string for
            task-level events.
        data: Event-specific payload.  Common keys include:

            * ``error`` (str): Failure message for ``*_FAILED`` events.
            * ``reason`` (str): Skip reason for ``STEP_SKIPPED``.
            * ``path`` / ``chars`` for ``CODE_GENERATED``.
            * ``snapshot_id`` for rollback events.
    """

    type: AgentEventType
    step_id: str = ""
    data: dict[str, Any] = field(default_factory=dict)


EventCallback = Callable[[AgentEvent], None]


def no_op_callback(event: AgentEvent) -> None:
    """Default event callback: discards the event."""
