"""Workflow context handed to handler tasks."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from flowline.core.workflows.resolver import INPUT_ALIASES


# =============================================================================
# WorkflowContext (read-only view of the run so far)
# =============================================================================


class WorkflowContext(BaseModel):
    """
    Context passed to handler tasks as their ``workflow_variables`` argument.

    Only injected if the handler declares a second positional parameter:

        def score(resolved_input, workflow_ctx: WorkflowContext):
            if workflow_ctx.has_output('fetch'):
                ...

    Use output_for(task_id) to read an earlier task's output. The context is a
    snapshot taken right before dispatch; outputs recorded later by parallel
    branches are not visible through it.

    Attributes:
        workflow_id: Id of the running workflow
        task_id: Id of the task being executed
        task_name: Display name of the task being executed
        initial_input: The value passed to ``engine.run()``
    """

    model_config = {'arbitrary_types_allowed': True}

    workflow_id: str
    task_id: str
    task_name: str
    initial_input: Any = None

    # Internal storage: terminal outputs keyed by task id
    _outputs_by_id: dict[str, Any] = {}

    def __init__(
        self,
        workflow_id: str,
        task_id: str,
        task_name: str,
        initial_input: Any = None,
        outputs_by_id: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            workflow_id=workflow_id,
            task_id=task_id,
            task_name=task_name,
            initial_input=initial_input,
            **kwargs,
        )
        # Store outputs internally (not exposed as Pydantic field)
        object.__setattr__(self, '_outputs_by_id', dict(outputs_by_id or {}))

    def output_for(self, task_id: str) -> Any:
        """
        Get the recorded output of an earlier task.

        For a FAILED task this is its error payload (``{'error': ...}``).

        Raises:
            KeyError: If the task has not reached a terminal status yet.
        """
        if task_id not in self._outputs_by_id:
            raise KeyError(
                f"task '{task_id}' has no recorded output in this workflow context"
            )
        return self._outputs_by_id[task_id]

    def has_output(self, task_id: str) -> bool:
        """Check if an output is recorded for the given task."""
        return task_id in self._outputs_by_id

    @property
    def outputs(self) -> dict[str, Any]:
        """Copy of every recorded output, keyed by task id."""
        return dict(self._outputs_by_id)

    @property
    def variables(self) -> dict[str, Any]:
        """Flat view: the initial input under each input alias, plus outputs by task id."""
        flat: dict[str, Any] = {alias: self.initial_input for alias in sorted(INPUT_ALIASES)}
        flat.update(self._outputs_by_id)
        return flat
