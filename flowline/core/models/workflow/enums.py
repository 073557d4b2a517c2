"""Workflow status, task kind and routing enums."""

from __future__ import annotations

from enum import Enum


TERMINAL = 'terminal'
"""Routing sentinel: a task routed here ends its branch of the walk."""


class WorkflowStatus(str, Enum):
    """
    Overall status of a finished run.

    FAILED iff at least one reached task ended FAILED and its ``on_failure``
    route did not lead into a recovery task that COMPLETED.
    """

    COMPLETED = 'COMPLETED'
    """Every reached task completed, or each failure was recovered"""

    FAILED = 'FAILED'
    """At least one unrecovered task failure"""

    @property
    def is_terminal(self) -> bool:
        """Run results are only produced once the walk has ended."""
        return self in WORKFLOW_TERMINAL_STATES


WORKFLOW_TERMINAL_STATES: frozenset[WorkflowStatus] = frozenset(
    {
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
    }
)


class TaskKind(str, Enum):
    """
    Execution kind of a task; selects the delegate the task dispatches to.
    """

    LLM = 'llm'
    """Prompt plus call parameters sent to the LLM delegate"""

    NAMED_TOOL = 'named_tool'
    """Resolved input passed as arguments to a named tool on the dispatcher"""

    HANDLER = 'handler'
    """Caller-supplied function receiving the input and the workflow context"""
