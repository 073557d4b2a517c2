"""Boundary contracts for the collaborators a task dispatches to.

The engine never looks inside a delegate. It only needs three contracts:

- LLM delegate: ``call(prompt, parameters) -> text_or_structured_result``
- Tool dispatcher: ``invoke(tool_name, arguments) -> result``
- Handler: ``fn(resolved_input, workflow_ctx) -> result``

Any of them may be sync or async. Sync callables run on a worker thread so
that parallel branches do not block each other.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Protocol,
    runtime_checkable,
)

from flowline.core.errors import ConfigurationError, ErrorCode, TaskExecutionError
from flowline.core.models.workflow.enums import TaskKind

if TYPE_CHECKING:
    from flowline.core.models.tasks import Task
    from flowline.core.models.workflow.context import WorkflowContext


Message = dict[str, Any]
LLMCallable = Callable[[list[Message], dict[str, Any]], Any]
Handler = Callable[..., Any]

# Keys of an LLM task's input that are not forwarded as call parameters
_LLM_RESERVED_KEYS = frozenset({'prompt', 'model_params', 'parameters'})


@runtime_checkable
class LLMDelegate(Protocol):
    """Turns a prompt and call parameters into a model response."""

    def call(self, prompt: list[Message], parameters: dict[str, Any]) -> Any: ...


@runtime_checkable
class ToolDispatcher(Protocol):
    """Dispatches a named capability to its implementation."""

    def invoke(self, tool_name: str, arguments: Any) -> Any: ...


class InvalidLLMInputError(TaskExecutionError):
    """An LLM task's resolved input has no usable prompt or parameters."""


@dataclass
class Delegates:
    """The collaborators available to tasks during one run."""

    llm: LLMCallable | None = None
    tools: ToolDispatcher | None = None
    llm_defaults: dict[str, Any] = field(default_factory=lambda: {})

    @classmethod
    def build(
        cls,
        llm: LLMDelegate | LLMCallable | None,
        tools: ToolDispatcher | None,
        llm_defaults: Mapping[str, Any] | None = None,
    ) -> Delegates:
        """Normalize caller-supplied collaborators.

        Raises:
            ConfigurationError: If ``llm`` has no ``call`` method and is not
                callable, or ``tools`` has no ``invoke`` method.
        """
        llm_fn: LLMCallable | None = None
        if llm is not None:
            if isinstance(llm, LLMDelegate):
                llm_fn = llm.call
            elif callable(llm):
                llm_fn = llm
            else:
                raise ConfigurationError(
                    message=f'LLM delegate of type {type(llm).__name__} is not usable',
                    code=ErrorCode.DELEGATE_MISCONFIGURED,
                    help_text='pass an object with call(prompt, parameters) or a callable',
                )
        if tools is not None and not isinstance(tools, ToolDispatcher):
            raise ConfigurationError(
                message=f'tool dispatcher of type {type(tools).__name__} has no invoke()',
                code=ErrorCode.DELEGATE_MISCONFIGURED,
                help_text='pass a ToolRegistry or an object with invoke(tool_name, arguments)',
            )
        return cls(llm=llm_fn, tools=tools, llm_defaults=dict(llm_defaults or {}))


async def call_delegate(fn: Callable[..., Any], *args: Any) -> Any:
    """Invoke a sync or async delegate and return its final result."""
    if inspect.iscoroutinefunction(fn):
        result = await fn(*args)
    else:
        result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


# =============================================================================
# LLM input handling
# =============================================================================


def as_messages(prompt: Any) -> list[Message]:
    """Normalize a prompt into a chat message list.

    - ``str``: a single user message
    - mapping: a one-message list
    - sequence of mappings: copied as-is
    """
    if isinstance(prompt, str):
        return [{'role': 'user', 'content': prompt}]
    if isinstance(prompt, Mapping):
        return [dict(prompt)]
    if isinstance(prompt, Sequence) and not isinstance(prompt, bytes):
        messages: list[Message] = []
        for item in prompt:
            if not isinstance(item, Mapping):
                raise InvalidLLMInputError(
                    f'Invalid prompt message: expected a mapping, got {type(item).__name__}'
                )
            messages.append(dict(item))
        if messages:
            return messages
    raise InvalidLLMInputError(f'Invalid prompt format: {type(prompt).__name__}')


def split_llm_input(
    resolved_input: Any,
    defaults: Mapping[str, Any],
) -> tuple[list[Message], dict[str, Any]]:
    """Split an LLM task's input into messages and merged call parameters."""
    if not isinstance(resolved_input, Mapping):
        raise InvalidLLMInputError(
            f'LLM task input must be a mapping with a prompt, got {type(resolved_input).__name__}'
        )
    if resolved_input.get('prompt') in (None, ''):
        raise InvalidLLMInputError('LLM task input requires a prompt')

    explicit = resolved_input.get('model_params', resolved_input.get('parameters')) or {}
    if not isinstance(explicit, Mapping):
        raise InvalidLLMInputError(
            f'model_params must be a mapping, got {type(explicit).__name__}'
        )

    parameters: dict[str, Any] = dict(defaults)
    parameters.update(explicit)
    for key, value in resolved_input.items():
        if key not in _LLM_RESERVED_KEYS:
            parameters[key] = value
    return as_messages(resolved_input['prompt']), parameters


# =============================================================================
# Per-kind dispatch
# =============================================================================


async def dispatch_llm(
    task: Task, resolved_input: Any, delegates: Delegates, context: WorkflowContext,
) -> Any:
    if delegates.llm is None:
        raise ConfigurationError(
            message=f"task '{task.id}' is an LLM task but no LLM delegate is configured",
            code=ErrorCode.DELEGATE_NOT_CONFIGURED,
            help_text='pass llm=... when constructing the WorkflowEngine',
        )
    messages, parameters = split_llm_input(resolved_input, delegates.llm_defaults)
    return await call_delegate(delegates.llm, messages, parameters)


async def dispatch_tool(
    task: Task, resolved_input: Any, delegates: Delegates, context: WorkflowContext,
) -> Any:
    if delegates.tools is None:
        raise ConfigurationError(
            message=f"task '{task.id}' calls tool '{task.tool_name}' but no tool dispatcher is configured",
            code=ErrorCode.DELEGATE_NOT_CONFIGURED,
            help_text='pass tools=ToolRegistry(...) when constructing the WorkflowEngine',
        )
    return await call_delegate(delegates.tools.invoke, task.tool_name, resolved_input)


async def dispatch_handler(
    task: Task, resolved_input: Any, delegates: Delegates, context: WorkflowContext,
) -> Any:
    assert task.handler is not None
    if task.handler_takes_context:
        return await call_delegate(task.handler, resolved_input, context)
    return await call_delegate(task.handler, resolved_input)


DispatchFn = Callable[['Task', Any, Delegates, 'WorkflowContext'], Awaitable[Any]]

KIND_DISPATCH: dict[TaskKind, DispatchFn] = {
    TaskKind.LLM: dispatch_llm,
    TaskKind.NAMED_TOOL: dispatch_tool,
    TaskKind.HANDLER: dispatch_handler,
}


def handler_accepts_context(fn: Handler) -> bool:
    """Whether ``fn`` takes the workflow context as a second positional argument.

    Callables whose signature cannot be inspected get both arguments.
    """
    inspect_target: Handler = getattr(fn, '_original_fn', None) or fn
    try:
        sig = inspect.signature(inspect_target)
    except (TypeError, ValueError):
        return True
    positional = 0
    for param in sig.parameters.values():
        if param.kind == inspect.Parameter.VAR_POSITIONAL:
            return True
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            positional += 1
    return positional >= 2
