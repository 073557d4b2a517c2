# flowline/core/models/tasks.py
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from pydantic import BaseModel

from flowline.core.delegates import (
    KIND_DISPATCH,
    DispatchFn,
    Handler,
    handler_accepts_context,
)
from flowline.core.errors import ErrorCode, task_definition_error
from flowline.core.exception_mapper import (
    ExceptionMapper,
    validate_error_code_string,
    validate_exception_mapper,
)
from flowline.core.models.workflow.enums import TERMINAL, TaskKind
from flowline.core.types.status import TaskStatus
from flowline.core.workflows.resolver import INPUT_ALIASES, find_references

if TYPE_CHECKING:
    from flowline.core.delegates import Delegates
    from flowline.core.models.workflow.context import WorkflowContext

# Dots separate path segments in ${task.field} references, so ids exclude them.
TASK_ID_PATTERN = re.compile(r'^[A-Za-z0-9_\-:]+$')


class TaskErrorCode(str, Enum):
    """
    Error codes produced by the engine itself when a task fails.

    User code maps its own exceptions to codes through ``exception_mapper``;
    anything unmapped falls back to ``UNHANDLED_EXCEPTION``.
    """

    RESOLUTION_ERROR = 'RESOLUTION_ERROR'
    UPSTREAM_FAILED = 'UPSTREAM_FAILED'
    TOOL_NOT_FOUND = 'TOOL_NOT_FOUND'
    INVALID_LLM_INPUT = 'INVALID_LLM_INPUT'
    TASK_CANCELLED = 'TASK_CANCELLED'
    TASK_TIMEOUT = 'TASK_TIMEOUT'
    UNHANDLED_EXCEPTION = 'UNHANDLED_EXCEPTION'


class TaskError(BaseModel):
    """
    Structured failure of a task, stored as its output in payload form.

    A task error is produced by:
    - a delegate raising (LLM adapter, tool, handler)
    - the engine refusing to dispatch (unresolvable input, failed upstream)
    """

    message: str
    error_code: Optional[Union[TaskErrorCode, str]] = None
    exception_type: Optional[str] = None
    data: Optional[Any] = None

    def as_payload(self) -> dict[str, Any]:
        """Render as the ``{'error': message, ...}`` mapping stored on the task."""
        code = self.error_code
        payload: dict[str, Any] = {
            'error': self.message,
            'error_code': code.value if isinstance(code, Enum) else code,
        }
        if self.exception_type is not None:
            payload['exception_type'] = self.exception_type
        if self.data is not None:
            payload['data'] = self.data
        return payload


class TaskStateError(RuntimeError):
    """Raised on an invalid task status transition."""


@dataclass
class Task:
    """
    A unit of work in a workflow graph.

    The kind selects the delegate: the LLM adapter, a named tool on the tool
    dispatcher, or a caller-supplied handler. ``input_template`` is resolved
    against the initial input and earlier outputs right before dispatch.

    Example:
        ```python
        fetch = Task.for_handler('fetch', load_orders, input_template={'day': '${input.day}'})
        summarize = Task.for_llm(
            'summarize',
            input_template={'prompt': 'Summarize: ${fetch.orders}'},
            on_failure='notify',
        )
        ```
    """

    id: str
    kind: TaskKind
    name: str = ''
    input_template: Any = field(default_factory=lambda: {})
    tool_name: str | None = None
    handler: Handler | None = field(default=None, repr=False)

    on_success: str | None = None
    """
    - Next task id after COMPLETED, or TERMINAL to end the branch
    - When both routes are unset the walk continues in insertion order
    """

    on_failure: str | None = None
    """
    - Next task id after FAILED, or TERMINAL to end the branch
    - Routing into a task that then COMPLETES counts as recovering the failure
    """

    allow_failed_deps: bool = True
    """
    - If True (default), references to FAILED tasks resolve to their error payload
    - If False, the task fails with UPSTREAM_FAILED without being dispatched
    """

    exception_mapper: ExceptionMapper | None = field(default=None, repr=False)
    default_error_code: str | None = None

    # Run state, owned by the engine
    status: TaskStatus = field(default=TaskStatus.PENDING, init=False)
    output: Any = field(default=None, init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or TASK_ID_PATTERN.match(self.id) is None:
            raise task_definition_error(
                f'invalid task id {self.id!r}',
                code=ErrorCode.TASK_INVALID_ID,
                notes=['task ids must match [A-Za-z0-9_\\-:]+ (no dots)'],
                help_text='dots separate path segments in ${task_id.field} references',
            )
        if self.id == TERMINAL or self.id in INPUT_ALIASES:
            raise task_definition_error(
                f"task id '{self.id}' is reserved",
                code=ErrorCode.TASK_INVALID_ID,
                notes=[f'reserved names: {sorted(INPUT_ALIASES | {TERMINAL})}'],
            )
        try:
            self.kind = TaskKind(self.kind)
        except ValueError:
            raise task_definition_error(
                f"task '{self.id}' has unknown kind {self.kind!r}",
                code=ErrorCode.TASK_INVALID_KIND,
                notes=[f'valid kinds: {[k.value for k in TaskKind]}'],
            ) from None
        if not self.name:
            self.name = self.id

        match self.kind:
            case TaskKind.NAMED_TOOL:
                if not self.tool_name:
                    raise task_definition_error(
                        f"tool task '{self.id}' has no tool_name",
                        code=ErrorCode.TASK_MISSING_TOOL_NAME,
                        help_text='use Task.for_tool(task_id, tool_name, ...)',
                    )
            case TaskKind.HANDLER:
                if not callable(self.handler):
                    raise task_definition_error(
                        f"handler task '{self.id}' needs a callable handler",
                        code=ErrorCode.TASK_INVALID_HANDLER,
                        notes=[f'got {type(self.handler).__name__}'],
                    )
            case TaskKind.LLM:
                if self.tool_name is not None or self.handler is not None:
                    raise task_definition_error(
                        f"LLM task '{self.id}' cannot set tool_name or handler",
                        code=ErrorCode.TASK_INVALID_KIND,
                    )

        problems = validate_exception_mapper(self.exception_mapper) if self.exception_mapper else []
        if self.default_error_code is not None:
            problem = validate_error_code_string(self.default_error_code, field_name='default_error_code')
            if problem is not None:
                problems.append(problem)
        if problems:
            raise task_definition_error(
                f"task '{self.id}' has an invalid error-code mapping",
                code=ErrorCode.TASK_INVALID_ERROR_MAPPING,
                fn=self.handler,
                notes=problems,
            )

        self._dispatch: DispatchFn = KIND_DISPATCH[self.kind]
        self.handler_takes_context: bool = (
            self.handler is not None and handler_accepts_context(self.handler)
        )
        self.references: frozenset[str] = frozenset(find_references(self.input_template))

    # --- factories ---
    @classmethod
    def for_llm(cls, task_id: str, *, input_template: Mapping[str, Any], **options: Any) -> Task:
        return cls(id=task_id, kind=TaskKind.LLM, input_template=input_template, **options)

    @classmethod
    def for_tool(
        cls, task_id: str, tool_name: str, *, input_template: Any = None, **options: Any,
    ) -> Task:
        return cls(
            id=task_id,
            kind=TaskKind.NAMED_TOOL,
            tool_name=tool_name,
            input_template={} if input_template is None else input_template,
            **options,
        )

    @classmethod
    def for_handler(
        cls, task_id: str, handler: Handler, *, input_template: Any = None, **options: Any,
    ) -> Task:
        return cls(
            id=task_id,
            kind=TaskKind.HANDLER,
            handler=handler,
            input_template={} if input_template is None else input_template,
            **options,
        )

    # --- routing ---
    @property
    def has_routes(self) -> bool:
        return self.on_success is not None or self.on_failure is not None

    def route_for(self, status: TaskStatus) -> str | None:
        """Return the route taken after ``status``; None ends the branch."""
        if status == TaskStatus.COMPLETED:
            return self.on_success
        if status == TaskStatus.FAILED:
            return self.on_failure
        return None

    # --- execution ---
    async def execute(
        self, resolved_input: Any, delegates: Delegates, context: WorkflowContext,
    ) -> Any:
        """Run the kind-specific delegate and return its result."""
        return await self._dispatch(self, resolved_input, delegates, context)

    # --- lifecycle ---
    def mark_running(self) -> None:
        self._transition({TaskStatus.PENDING}, TaskStatus.RUNNING)

    def mark_completed(self, output: Any) -> None:
        self._transition({TaskStatus.RUNNING}, TaskStatus.COMPLETED)
        self.output = output

    def mark_failed(self, payload: dict[str, Any]) -> None:
        # PENDING covers tasks whose input never resolved
        self._transition({TaskStatus.PENDING, TaskStatus.RUNNING}, TaskStatus.FAILED)
        self.output = payload

    def mark_skipped(self) -> None:
        self._transition({TaskStatus.PENDING}, TaskStatus.SKIPPED)

    def _transition(self, allowed: set[TaskStatus], target: TaskStatus) -> None:
        if self.status not in allowed:
            raise TaskStateError(
                f"task '{self.id}' cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def fresh_copy(self) -> Task:
        """Return a PENDING copy sharing this task's read-only configuration."""
        return replace(self)
