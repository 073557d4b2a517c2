"""Unit tests for Task construction, lifecycle and kind dispatch."""

from __future__ import annotations

from typing import Any

import pytest

from flowline.core.delegates import Delegates
from flowline.core.errors import ErrorCode, TaskDefinitionError
from flowline.core.models.tasks import (
    Task,
    TaskError,
    TaskErrorCode,
    TaskStateError,
)
from flowline.core.models.workflow.context import WorkflowContext
from flowline.core.models.workflow.enums import TERMINAL, TaskKind
from flowline.core.types.status import TaskStatus


def _echo(resolved_input: Any) -> Any:
    return resolved_input


def _with_ctx(resolved_input: Any, workflow_ctx: WorkflowContext) -> Any:
    return {'task': workflow_ctx.task_id, 'input': resolved_input}


def _ctx(task_id: str = 't') -> WorkflowContext:
    return WorkflowContext(workflow_id='wf', task_id=task_id, task_name=task_id)


@pytest.mark.unit
class TestTaskConstruction:
    """Validation performed when a Task is created."""

    def test_handler_factory(self) -> None:
        task = Task.for_handler('fetch', _echo, input_template={'day': '${input.day}'})
        assert task.kind == TaskKind.HANDLER
        assert task.name == 'fetch'
        assert task.status == TaskStatus.PENDING
        assert task.output is None
        assert task.references == frozenset()

    def test_tool_factory(self) -> None:
        task = Task.for_tool('search', 'web_search', input_template={'q': '${plan.query}'})
        assert task.kind == TaskKind.NAMED_TOOL
        assert task.tool_name == 'web_search'
        assert task.references == frozenset({'plan'})

    def test_llm_factory(self) -> None:
        task = Task.for_llm('summarize', input_template={'prompt': '${fetch.text}'}, name='Summary')
        assert task.kind == TaskKind.LLM
        assert task.name == 'Summary'

    def test_kind_accepts_string_value(self) -> None:
        task = Task(id='t', kind='handler', handler=_echo)  # type: ignore[arg-type]
        assert task.kind is TaskKind.HANDLER

    def test_unknown_kind(self) -> None:
        with pytest.raises(TaskDefinitionError) as exc_info:
            Task(id='t', kind='shell', handler=_echo)  # type: ignore[arg-type]
        assert exc_info.value.code == ErrorCode.TASK_INVALID_KIND

    @pytest.mark.parametrize('task_id', ['', 'has.dot', 'has space', 'slash/id'])
    def test_invalid_ids(self, task_id: str) -> None:
        with pytest.raises(TaskDefinitionError) as exc_info:
            Task.for_handler(task_id, _echo)
        assert exc_info.value.code == ErrorCode.TASK_INVALID_ID

    @pytest.mark.parametrize('task_id', ['input', 'initial_input', TERMINAL])
    def test_reserved_ids(self, task_id: str) -> None:
        with pytest.raises(TaskDefinitionError, match='reserved'):
            Task.for_handler(task_id, _echo)

    def test_valid_id_characters(self) -> None:
        assert Task.for_handler('step-1:fetch_all', _echo).id == 'step-1:fetch_all'

    def test_tool_task_requires_tool_name(self) -> None:
        with pytest.raises(TaskDefinitionError) as exc_info:
            Task(id='t', kind=TaskKind.NAMED_TOOL)
        assert exc_info.value.code == ErrorCode.TASK_MISSING_TOOL_NAME

    def test_handler_task_requires_callable(self) -> None:
        with pytest.raises(TaskDefinitionError) as exc_info:
            Task(id='t', kind=TaskKind.HANDLER, handler='not callable')  # type: ignore[arg-type]
        assert exc_info.value.code == ErrorCode.TASK_INVALID_HANDLER

    def test_llm_task_rejects_tool_name(self) -> None:
        with pytest.raises(TaskDefinitionError):
            Task(id='t', kind=TaskKind.LLM, tool_name='web_search')

    def test_error_mapping_validated(self) -> None:
        with pytest.raises(TaskDefinitionError) as exc_info:
            Task.for_handler(
                't', _echo,
                exception_mapper={KeyError: 'KeyError'},
                default_error_code='oops',
            )
        assert exc_info.value.code == ErrorCode.TASK_INVALID_ERROR_MAPPING
        assert len(exc_info.value.notes) == 2

    def test_handler_arity_detected_once(self) -> None:
        assert Task.for_handler('a', _echo).handler_takes_context is False
        assert Task.for_handler('b', _with_ctx).handler_takes_context is True


@pytest.mark.unit
class TestTaskLifecycle:
    """State machine enforced by the mark_* helpers."""

    def test_success_path(self) -> None:
        task = Task.for_handler('t', _echo)
        task.mark_running()
        assert task.status == TaskStatus.RUNNING
        task.mark_completed({'value': 1})
        assert task.status == TaskStatus.COMPLETED
        assert task.output == {'value': 1}

    def test_failure_path(self) -> None:
        task = Task.for_handler('t', _echo)
        task.mark_running()
        task.mark_failed({'error': 'boom'})
        assert task.status == TaskStatus.FAILED
        assert task.output == {'error': 'boom'}

    def test_fail_from_pending(self) -> None:
        """Resolution failures fail a task that never ran."""
        task = Task.for_handler('t', _echo)
        task.mark_failed({'error': 'unresolved'})
        assert task.status == TaskStatus.FAILED

    def test_terminal_status_set_exactly_once(self) -> None:
        task = Task.for_handler('t', _echo)
        task.mark_running()
        task.mark_completed('ok')
        with pytest.raises(TaskStateError):
            task.mark_failed({'error': 'late'})
        with pytest.raises(TaskStateError):
            task.mark_completed('again')
        assert task.output == 'ok'

    def test_complete_requires_running(self) -> None:
        task = Task.for_handler('t', _echo)
        with pytest.raises(TaskStateError, match='PENDING to COMPLETED'):
            task.mark_completed('x')

    def test_skip_only_from_pending(self) -> None:
        task = Task.for_handler('t', _echo)
        task.mark_skipped()
        assert task.status == TaskStatus.SKIPPED
        with pytest.raises(TaskStateError):
            task.mark_running()

    def test_fresh_copy_resets_run_state(self) -> None:
        task = Task.for_handler('t', _echo, input_template={'a': 1}, on_failure='recover')
        task.mark_running()
        task.mark_completed('done')

        copy = task.fresh_copy()
        assert copy is not task
        assert copy.status == TaskStatus.PENDING
        assert copy.output is None
        assert copy.on_failure == 'recover'
        assert copy.input_template == {'a': 1}
        assert task.status == TaskStatus.COMPLETED


@pytest.mark.unit
class TestTaskRouting:
    def test_has_routes(self) -> None:
        assert Task.for_handler('a', _echo).has_routes is False
        assert Task.for_handler('b', _echo, on_success=TERMINAL).has_routes is True
        assert Task.for_handler('c', _echo, on_failure='x').has_routes is True

    def test_route_for_status(self) -> None:
        task = Task.for_handler('a', _echo, on_success='next', on_failure='recover')
        assert task.route_for(TaskStatus.COMPLETED) == 'next'
        assert task.route_for(TaskStatus.FAILED) == 'recover'
        assert task.route_for(TaskStatus.PENDING) is None


@pytest.mark.unit
class TestTaskExecute:
    """Task.execute delegates to the function bound for its kind."""

    @pytest.mark.asyncio
    async def test_handler_without_context(self) -> None:
        task = Task.for_handler('t', _echo)
        assert await task.execute({'x': 1}, Delegates(), _ctx()) == {'x': 1}

    @pytest.mark.asyncio
    async def test_handler_with_context(self) -> None:
        task = Task.for_handler('t', _with_ctx)
        result = await task.execute('in', Delegates(), _ctx('t'))
        assert result == {'task': 't', 'input': 'in'}

    @pytest.mark.asyncio
    async def test_async_handler(self) -> None:
        async def handler(resolved_input: Any) -> Any:
            return resolved_input * 2

        task = Task.for_handler('t', handler)
        assert await task.execute(21, Delegates(), _ctx()) == 42

    @pytest.mark.asyncio
    async def test_tool_task_invokes_dispatcher(self) -> None:
        calls: list[tuple[str, Any]] = []

        class Dispatcher:
            def invoke(self, tool_name: str, arguments: Any) -> Any:
                calls.append((tool_name, arguments))
                return {'hits': 3}

        task = Task.for_tool('search', 'web_search', input_template={'q': 'x'})
        result = await task.execute({'q': 'x'}, Delegates(tools=Dispatcher()), _ctx())
        assert result == {'hits': 3}
        assert calls == [('web_search', {'q': 'x'})]

    @pytest.mark.asyncio
    async def test_llm_task_sends_messages_and_parameters(self) -> None:
        seen: dict[str, Any] = {}

        def llm(prompt: list[dict[str, Any]], parameters: dict[str, Any]) -> str:
            seen['prompt'] = prompt
            seen['parameters'] = parameters
            return 'summary'

        task = Task.for_llm('s', input_template={'prompt': 'p'})
        delegates = Delegates(llm=llm, llm_defaults={'temperature': 0.7, 'max_tokens': 1000})
        result = await task.execute(
            {'prompt': 'Summarize', 'model_params': {'temperature': 0.1}},
            delegates,
            _ctx(),
        )
        assert result == 'summary'
        assert seen['prompt'] == [{'role': 'user', 'content': 'Summarize'}]
        assert seen['parameters'] == {'temperature': 0.1, 'max_tokens': 1000}


@pytest.mark.unit
class TestTaskError:
    def test_payload_shape(self) -> None:
        payload = TaskError(
            message='boom',
            error_code=TaskErrorCode.UNHANDLED_EXCEPTION,
            exception_type='ValueError',
        ).as_payload()
        assert payload == {
            'error': 'boom',
            'error_code': 'UNHANDLED_EXCEPTION',
            'exception_type': 'ValueError',
        }

    def test_payload_with_custom_code_and_data(self) -> None:
        payload = TaskError(message='slow', error_code='RATE_LIMITED', data={'retry_in': 5}).as_payload()
        assert payload['error_code'] == 'RATE_LIMITED'
        assert payload['data'] == {'retry_in': 5}
        assert 'exception_type' not in payload
