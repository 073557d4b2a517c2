"""Workflow execution engine: graph walk, input resolution, routing and fan-out."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import Mapping
from typing import Any

from flowline.core.delegates import (
    Delegates,
    InvalidLLMInputError,
    LLMCallable,
    LLMDelegate,
    ToolDispatcher,
)
from flowline.core.errors import (
    ConfigurationError,
    ErrorCode,
    FlowlineError,
    ResolutionError,
    WorkflowValidationError,
    routing_error,
)
from flowline.core.exception_mapper import ErrorCodeResolver
from flowline.core.logging import get_logger
from flowline.core.models.config import EngineConfig
from flowline.core.models.tasks import Task, TaskError, TaskErrorCode
from flowline.core.models.workflow.context import WorkflowContext
from flowline.core.models.workflow.definition import Workflow, unknown_reference_error
from flowline.core.models.workflow.enums import TERMINAL, TaskKind
from flowline.core.models.workflow.result import WorkflowResult
from flowline.core.registry.tools import ToolNotFoundError
from flowline.core.types.status import TaskStatus
from flowline.core.utils.loop_runner import get_shared_runner
from flowline.core.workflows.resolver import resolve

logger = get_logger('engine')

# Returned by _prepare when the task already failed before dispatch
_NOT_DISPATCHED = object()

# Failures the library classifies itself, ahead of task and engine defaults
LIBRARY_ERROR_CODES: tuple[tuple[type[BaseException], str], ...] = (
    (ToolNotFoundError, TaskErrorCode.TOOL_NOT_FOUND.value),
    (InvalidLLMInputError, TaskErrorCode.INVALID_LLM_INPUT.value),
    (TimeoutError, TaskErrorCode.TASK_TIMEOUT.value),
)


# =============================================================================
# RunLedger (the only state shared between parallel branches)
# =============================================================================


class RunLedger:
    """
    Terminal outputs of one run, keyed by task id.

    Holds the outputs of FAILED tasks too (their error payload), so that
    references to a failed upstream resolve to ``{'error': ...}``. Every
    write and every snapshot happens under one lock.
    """

    def __init__(self, tasks: Mapping[str, Task]) -> None:
        self._tasks = tasks
        self._outputs: dict[str, Any] = {}
        self._lock = threading.RLock()

    def record(self, task: Task) -> None:
        if task.status not in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            raise ValueError(f"task '{task.id}' is {task.status.value}, not terminal")
        with self._lock:
            self._outputs[task.id] = task.output

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._outputs)

    def status_of(self, task_id: str) -> TaskStatus | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.status if task is not None else None

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._outputs


# =============================================================================
# WorkflowEngine
# =============================================================================


class WorkflowEngine:
    """
    Executes a Workflow against an LLM delegate and a tool dispatcher.

    Every run works on fresh PENDING copies of the workflow's tasks, so the
    same engine (and the same Workflow) can be run any number of times.

    Example:
        ```python
        tools = ToolRegistry()
        tools.register(web_search, name='web_search')

        engine = WorkflowEngine(wf, llm=my_llm, tools=tools)
        result = engine.run({'topic': 'solar'})
        if not result.is_completed:
            print(result.errors)
        ```

    Only structural problems (unknown route target or start task, routing
    cycles, references to undefined task ids) and delegate configuration
    errors raise from ``run()``. Every other failure is recorded on its task.
    """

    def __init__(
        self,
        workflow: Workflow,
        llm: LLMDelegate | LLMCallable | None = None,
        tools: ToolDispatcher | None = None,
        *,
        config: EngineConfig | None = None,
        start_task_id: str | None = None,
    ) -> None:
        self.workflow = workflow
        self.config = config or EngineConfig()
        self.delegates = Delegates.build(
            llm, tools, self.config.llm_defaults.as_parameters(),
        )
        self.start_task_id = start_task_id or workflow.start_task_id
        self.error_codes = ErrorCodeResolver(
            global_mapper=self.config.exception_mapper,
            global_default=self.config.default_unhandled_error_code,
            classified=LIBRARY_ERROR_CODES,
        )

    def run(self, initial_input: Any = None) -> WorkflowResult:
        """Run the workflow to completion, blocking the calling thread.

        From async code use ``await engine.run_async(...)`` instead.
        """
        return get_shared_runner().call(self.run_async, initial_input)

    async def run_async(self, initial_input: Any = None) -> WorkflowResult:
        run = _WorkflowRun(self, initial_input)
        logger.info(
            f"Running workflow '{self.workflow.id}' ({len(run.tasks)} tasks)"
        )
        try:
            result = await run.walk()
        except FlowlineError as exc:
            exc.partial_result = run.result()
            logger.error(
                f"Workflow '{self.workflow.id}' aborted: {exc.message}"
            )
            raise
        log = logger.info if result.is_completed else logger.warning
        log(
            f"Workflow '{self.workflow.id}' finished {result.status.value} "
            f'({len(result.reached_tasks)}/{len(result.tasks)} tasks reached)'
        )
        return result


class _WorkflowRun:
    """State and steps of a single ``run_async`` call."""

    def __init__(self, engine: WorkflowEngine, initial_input: Any) -> None:
        self.workflow = engine.workflow
        self.config = engine.config
        self.delegates = engine.delegates
        self.start_task_id = engine.start_task_id
        self.error_codes = engine.error_codes
        self.initial_input = initial_input

        self.tasks: dict[str, Task] = self.workflow.fresh_tasks()
        self.order: list[str] = list(self.tasks)
        self.ledger = RunLedger(self.tasks)
        self.visited: set[str] = set()
        self.semaphore: asyncio.Semaphore | None = None

    # --- walk ---
    async def walk(self) -> WorkflowResult:
        if not self.tasks:
            raise WorkflowValidationError(
                message=f"workflow '{self.workflow.id}' has no tasks",
                code=ErrorCode.WORKFLOW_NO_TASKS,
                help_text='add tasks with workflow.add_task(...) before running it',
            )
        if self.config.max_parallel_branches is not None:
            self.semaphore = asyncio.Semaphore(self.config.max_parallel_branches)

        current: str | None = self._start_id()
        previous: str | None = None
        while current is not None:
            if current in self.visited:
                raise routing_error(
                    f"routing cycle: task '{previous}' leads back to '{current}'",
                    task_id=previous,
                    target_id=current,
                    code=ErrorCode.WORKFLOW_CYCLE_DETECTED,
                    notes=[f'visited so far: {[t for t in self.order if t in self.visited]}'],
                    help_text=f"route to '{TERMINAL}' to end the branch instead",
                )
            group = self._fan_out_group(current)
            self.visited.update(group)
            if len(group) == 1:
                await self._run_task(self.tasks[current])
            else:
                await self._run_group(group)
            previous = group[-1]
            current = self._next_task_id(self.tasks[previous])

        if self.config.mark_unreached_skipped:
            for task in self.tasks.values():
                if task.status == TaskStatus.PENDING:
                    task.mark_skipped()
        return self.result()

    def result(self) -> WorkflowResult:
        return WorkflowResult.from_tasks(self.workflow.id, self.tasks)

    def _start_id(self) -> str:
        start = self.start_task_id or self.order[0]
        if start not in self.tasks:
            raise routing_error(
                f"start task '{start}' is not defined in workflow '{self.workflow.id}'",
                task_id=None,
                target_id=start,
                code=ErrorCode.WORKFLOW_UNKNOWN_START_TASK,
                notes=[f'defined tasks: {self.order}'],
            )
        return start

    def _next_task_id(self, task: Task) -> str | None:
        """Pick the route out of a terminal task; None ends the walk."""
        if not task.has_routes:
            position = self.order.index(task.id)
            return self.order[position + 1] if position + 1 < len(self.order) else None

        target = task.route_for(task.status)
        if target is None or target == TERMINAL:
            return None
        if target not in self.tasks:
            label = 'on_success' if task.status == TaskStatus.COMPLETED else 'on_failure'
            raise routing_error(
                f"task '{task.id}' routes {label} to unknown task '{target}'",
                task_id=task.id,
                target_id=target,
                code=ErrorCode.WORKFLOW_UNKNOWN_ROUTE_TARGET,
                notes=[f'defined tasks: {self.order}'],
                help_text=f"add a task with id '{target}' or route to '{TERMINAL}'",
            )
        return target

    def _fan_out_group(self, start_id: str) -> list[str]:
        """
        Collect the tasks that may run concurrently starting at ``start_id``.

        Walks forward in insertion order from an unrouted task, adding each
        following task until one references an earlier member, was already
        visited, or receives the workflow context. A member that declares
        routes closes the group; routing then continues from the last member.
        """
        group = [start_id]
        if not self.config.parallel_fan_out or self.tasks[start_id].has_routes:
            return group

        position = self.order.index(start_id)
        for task_id in self.order[position + 1:]:
            candidate = self.tasks[task_id]
            if task_id in self.visited or candidate.references & set(group):
                break
            # Handlers may read any earlier output through the context
            if candidate.handler_takes_context:
                break
            group.append(task_id)
            if candidate.has_routes:
                break
        return group

    async def _run_group(self, group: list[str]) -> None:
        logger.debug(f'Fan-out: running {group} concurrently')
        members = [self.tasks[task_id] for task_id in group]
        # Members never reference each other, so inputs resolve against the same ledger
        prepared = [(task, self._prepare(task)) for task in members]
        outcomes = await asyncio.gather(
            *(
                self._dispatch(task, resolved)
                for task, resolved in prepared
                if resolved is not _NOT_DISPATCHED
            ),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        logger.debug(f'Fan-out joined: {group}')

    async def _run_task(self, task: Task) -> None:
        resolved = self._prepare(task)
        if resolved is not _NOT_DISPATCHED:
            await self._dispatch(task, resolved)

    # --- per task ---
    def _prepare(self, task: Task) -> Any:
        """Resolve a task's input, or fail the task and return _NOT_DISPATCHED."""
        for ref in sorted(task.references):
            if ref not in self.tasks:
                raise unknown_reference_error(self.workflow, task, ref)

        if not task.allow_failed_deps:
            failed = [
                ref for ref in sorted(task.references)
                if self.ledger.status_of(ref) == TaskStatus.FAILED
            ]
            if failed:
                self._record_failure(
                    task,
                    TaskError(
                        message=f'upstream task(s) failed: {", ".join(failed)}',
                        error_code=TaskErrorCode.UPSTREAM_FAILED,
                        data={'failed_upstream': failed},
                    ),
                )
                return _NOT_DISPATCHED

        try:
            return resolve(task.input_template, self.initial_input, self.ledger.snapshot())
        except ResolutionError as exc:
            self._record_failure(
                task,
                TaskError(
                    message=exc.message,
                    error_code=TaskErrorCode.RESOLUTION_ERROR,
                    exception_type=type(exc).__name__,
                    data={'path': exc.path, 'reference': exc.reference},
                ),
            )
            return _NOT_DISPATCHED
        except Exception as exc:
            self._record_failure(
                task,
                TaskError(
                    message=f'could not resolve input: {exc}',
                    error_code=TaskErrorCode.RESOLUTION_ERROR,
                    exception_type=type(exc).__name__,
                ),
            )
            return _NOT_DISPATCHED

    async def _dispatch(self, task: Task, resolved_input: Any) -> None:
        context = WorkflowContext(
            workflow_id=self.workflow.id,
            task_id=task.id,
            task_name=task.name,
            initial_input=self.initial_input,
            outputs_by_id=self.ledger.snapshot(),
        )
        async with self.semaphore or contextlib.nullcontext():
            task.mark_running()
            logger.debug(f"Task '{task.id}' ({task.kind.value}) running")
            try:
                output = await task.execute(resolved_input, self.delegates, context)
            except ConfigurationError as exc:
                # LLM and tool delegates: missing credentials and the like abort the run
                if task.kind is not TaskKind.HANDLER:
                    raise
                self._record_failure(task, self._error_for(task, exc))
                return
            except asyncio.CancelledError as exc:
                current = asyncio.current_task()
                if current is not None and current.cancelling():
                    raise
                self._record_failure(
                    task,
                    TaskError(
                        message=str(exc) or 'task was cancelled',
                        error_code=TaskErrorCode.TASK_CANCELLED,
                        exception_type=type(exc).__name__,
                    ),
                )
                return
            except Exception as exc:
                self._record_failure(task, self._error_for(task, exc))
                return

        task.mark_completed(output)
        self.ledger.record(task)
        logger.info(f"Task '{task.id}' completed")

    def _error_for(self, task: Task, exc: Exception) -> TaskError:
        code = self.error_codes.resolve(exc, task.exception_mapper, task.default_error_code)
        message = exc.message if isinstance(exc, FlowlineError) else str(exc)
        return TaskError(
            message=message or type(exc).__name__,
            error_code=code,
            exception_type=type(exc).__name__,
        )

    def _record_failure(self, task: Task, error: TaskError) -> None:
        task.mark_failed(error.as_payload())
        self.ledger.record(task)
        logger.warning(
            f"Task '{task.id}' failed [{task.output['error_code']}]: {error.message}"
        )

