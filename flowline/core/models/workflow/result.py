"""Terminal snapshot of a workflow run."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from flowline.core.models.tasks import Task
from flowline.core.types.status import TaskStatus

from .enums import TERMINAL, WorkflowStatus


@dataclass
class WorkflowResult:
    """
    Overall status of a run plus the final state of every task.

    ``tasks`` holds the run's own task copies, in workflow insertion order,
    including tasks that were never reached (PENDING, or SKIPPED when the
    engine is configured to mark them).

    Attributes:
        workflow_id: Id of the workflow that ran
        status: COMPLETED, or FAILED when a failure was not recovered
        tasks: Final task state keyed by task id
        errors: Error message of every unrecovered failure, keyed by task id
    """

    workflow_id: str
    status: WorkflowStatus
    tasks: dict[str, Task]
    errors: dict[str, str] = field(default_factory=lambda: {})

    @classmethod
    def from_tasks(cls, workflow_id: str, tasks: Mapping[str, Task]) -> WorkflowResult:
        """Derive the run status from the final task ledger.

        A FAILED task is recovered when its ``on_failure`` route names a task
        of this run that ended COMPLETED.
        """
        errors: dict[str, str] = {}
        for task in tasks.values():
            if task.status != TaskStatus.FAILED:
                continue
            if is_recovered(task, tasks):
                continue
            errors[task.id] = error_message(task.output)
        status = WorkflowStatus.FAILED if errors else WorkflowStatus.COMPLETED
        return cls(workflow_id=workflow_id, status=status, tasks=dict(tasks), errors=errors)

    @property
    def is_completed(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED

    def output_for(self, task_id: str) -> Any:
        """Output (or error payload) recorded for a task; None if it never finished."""
        return self.tasks[task_id].output

    def status_for(self, task_id: str) -> TaskStatus:
        return self.tasks[task_id].status

    @property
    def reached_tasks(self) -> dict[str, Task]:
        """Tasks the walk reached, in insertion order."""
        return {
            task_id: task
            for task_id, task in self.tasks.items()
            if task.status not in (TaskStatus.PENDING, TaskStatus.SKIPPED)
        }

    @property
    def failed_tasks(self) -> dict[str, Task]:
        return {
            task_id: task
            for task_id, task in self.tasks.items()
            if task.status == TaskStatus.FAILED
        }

    def summary(self) -> dict[str, Any]:
        """Plain-data view: status plus per-task status and output."""
        return {
            'workflow_id': self.workflow_id,
            'status': self.status.value,
            'tasks': {
                task_id: {'status': task.status.value, 'output': task.output}
                for task_id, task in self.tasks.items()
            },
        }


def is_recovered(task: Task, tasks: Mapping[str, Task]) -> bool:
    target = task.on_failure
    if target is None or target == TERMINAL:
        return False
    recovery = tasks.get(target)
    return recovery is not None and recovery.status == TaskStatus.COMPLETED


def error_message(payload: Any) -> str:
    if isinstance(payload, Mapping) and 'error' in payload:
        return str(payload['error'])
    return str(payload)
