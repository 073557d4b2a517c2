"""Workflow container: an insertion-ordered graph of tasks."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from flowline.core.errors import (
    ErrorCode,
    ValidationReport,
    WorkflowValidationError,
    raise_collected,
    routing_error,
)
from flowline.core.models.tasks import Task

from .enums import TERMINAL


# =============================================================================
# Workflow
# =============================================================================


@dataclass
class Workflow:
    """
    A named collection of tasks forming an execution graph.

    Tasks are kept in insertion order, which is also the default traversal
    when a task declares neither ``on_success`` nor ``on_failure``. Routing
    targets are not checked on insertion so tasks may route forward to ids
    added later; the engine checks each route when it is taken.

    Example:
        ```python
        wf = Workflow('orders', name='Nightly orders')
        wf.add_tasks(
            Task.for_handler('fetch', fetch_orders),
            Task.for_handler('double', double, input_template={'value': '${fetch.value}'}),
        )
        result = WorkflowEngine(wf).run({'day': '2024-01-01'})
        ```
    """

    id: str
    name: str = ''
    start_task_id: str | None = None
    """Explicit entry point; defaults to the first inserted task"""

    tasks: dict[str, Task] = field(default_factory=lambda: {})

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise WorkflowValidationError(
                message='workflow id must be a non-empty string',
                code=ErrorCode.WORKFLOW_NO_ID,
            )
        if not self.name:
            self.name = self.id
        initial = list(self.tasks.values())
        self.tasks = {}
        self.add_tasks(*initial)

    # --- building ---
    def add_task(self, task: Task) -> Task:
        """Append a task; its id must be unique within the workflow."""
        if not isinstance(task, Task):
            raise TypeError(f'expected Task, got {type(task).__name__}')
        if task.id in self.tasks:
            raise WorkflowValidationError(
                message=f"duplicate task id '{task.id}' in workflow '{self.id}'",
                code=ErrorCode.WORKFLOW_DUPLICATE_TASK_ID,
                help_text='task ids must be unique within a workflow',
            )
        self.tasks[task.id] = task
        return task

    def add_tasks(self, *tasks: Task) -> None:
        for task in tasks:
            self.add_task(task)

    # --- lookup ---
    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def __getitem__(self, task_id: str) -> Task:
        return self.tasks[task_id]

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self.tasks.values())

    def __len__(self) -> int:
        return len(self.tasks)

    @property
    def task_ids(self) -> list[str]:
        return list(self.tasks)

    @property
    def first_task_id(self) -> str | None:
        return next(iter(self.tasks), None)

    def next_task_id(self, task_id: str) -> str | None:
        """Return the id inserted right after ``task_id``, or None if it is last."""
        ids = self.task_ids
        position = ids.index(task_id)
        return ids[position + 1] if position + 1 < len(ids) else None

    def fresh_tasks(self) -> dict[str, Task]:
        """PENDING copies of every task, in insertion order, for a new run."""
        return {task_id: task.fresh_copy() for task_id, task in self.tasks.items()}

    # --- validation ---
    def validate(self) -> None:
        """Check every route and reference up front instead of at first use.

        Optional: the engine validates lazily, so workflows that are only
        partly wired can still run the branches that are complete.

        Raises:
            WorkflowValidationError: On the first problem found, or
                MultipleValidationErrors when there are several.
        """
        report = ValidationReport('workflow')
        for error in self._collect_structure_errors():
            report.add(error)
        for error in self._collect_route_errors():
            report.add(error)
        for error in self._collect_reference_errors():
            report.add(error)
        raise_collected(report)

    def _collect_structure_errors(self) -> list[WorkflowValidationError]:
        errors: list[WorkflowValidationError] = []
        if not self.tasks:
            errors.append(
                WorkflowValidationError(
                    message=f"workflow '{self.id}' has no tasks",
                    code=ErrorCode.WORKFLOW_NO_TASKS,
                )
            )
        if self.start_task_id is not None and self.start_task_id not in self.tasks:
            errors.append(
                routing_error(
                    f"start task '{self.start_task_id}' is not defined in workflow '{self.id}'",
                    task_id=None,
                    target_id=self.start_task_id,
                    code=ErrorCode.WORKFLOW_UNKNOWN_START_TASK,
                    notes=[f'defined tasks: {self.task_ids}'],
                )
            )
        return errors

    def _collect_route_errors(self) -> list[WorkflowValidationError]:
        errors: list[WorkflowValidationError] = []
        for task in self.tasks.values():
            for label, target in (('on_success', task.on_success), ('on_failure', task.on_failure)):
                if target is None or target == TERMINAL or target in self.tasks:
                    continue
                errors.append(
                    routing_error(
                        f"task '{task.id}' routes {label} to unknown task '{target}'",
                        task_id=task.id,
                        target_id=target,
                        code=ErrorCode.WORKFLOW_UNKNOWN_ROUTE_TARGET,
                        help_text=f"add a task with id '{target}' or route to '{TERMINAL}'",
                    )
                )
        return errors

    def _collect_reference_errors(self) -> list[WorkflowValidationError]:
        errors: list[WorkflowValidationError] = []
        for task in self.tasks.values():
            for ref in sorted(task.references):
                if ref not in self.tasks:
                    errors.append(unknown_reference_error(self, task, ref))
        return errors


def unknown_reference_error(
    workflow: Workflow, task: Task, reference: str,
) -> WorkflowValidationError:
    return WorkflowValidationError(
        message=f"task '{task.id}' references '{reference}', which is not defined in workflow '{workflow.id}'",
        code=ErrorCode.WORKFLOW_UNKNOWN_REFERENCE,
        notes=[f'defined tasks: {workflow.task_ids}'],
        help_text='use ${input.<field>} for the initial input or ${<task_id>.<field>} for a task output',
    )
