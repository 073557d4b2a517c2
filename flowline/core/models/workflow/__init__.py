"""Workflow models: routing enums, the task container, run context and result.

Import the concrete classes from their modules (``definition``, ``context``,
``result``) or from the top-level ``flowline`` package. This package only
re-exports the enums, which the task model needs while it is being imported.
"""

from flowline.core.models.workflow.enums import (
    TERMINAL,
    WORKFLOW_TERMINAL_STATES,
    TaskKind,
    WorkflowStatus,
)

__all__ = [
    'TERMINAL',
    'WORKFLOW_TERMINAL_STATES',
    'TaskKind',
    'WorkflowStatus',
]
