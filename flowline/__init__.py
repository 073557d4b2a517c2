"""flowline - run task graphs over LLM calls, named tools and plain functions"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.models.tasks import Task, TaskError, TaskErrorCode, TaskStateError
from .core.models.workflow.enums import (
    TERMINAL,
    TaskKind,
    WorkflowStatus,
    WORKFLOW_TERMINAL_STATES,
)
from .core.models.workflow.definition import Workflow
from .core.models.workflow.context import WorkflowContext
from .core.models.workflow.result import WorkflowResult
from .core.models.config import EngineConfig, LLMDefaults
from .core.workflows.engine import WorkflowEngine
from .core.workflows.resolver import resolve
from .core.registry.tools import ToolRegistry, ToolNotFoundError, DuplicateToolNameError
from .core.delegates import LLMDelegate, ToolDispatcher, InvalidLLMInputError
from .core.types.status import TaskStatus, TASK_TERMINAL_STATES
from .core.errors import (
    ErrorCode,
    FlowlineError,
    WorkflowValidationError,
    RoutingError,
    TaskDefinitionError,
    ConfigurationError,
    RegistryError,
    ResolutionError,
    TaskExecutionError,
    ValidationReport,
    MultipleValidationErrors,
)
from .core.exception_mapper import ExceptionMapper

__all__ = [
    # Core
    'Task',
    'TaskKind',
    'Workflow',
    'WorkflowEngine',
    'WorkflowResult',
    'WorkflowContext',
    'EngineConfig',
    'LLMDefaults',
    'TERMINAL',
    'resolve',
    # Statuses
    'TaskStatus',
    'TASK_TERMINAL_STATES',
    'WorkflowStatus',
    'WORKFLOW_TERMINAL_STATES',
    # Task failures
    'TaskError',
    'TaskErrorCode',
    'TaskStateError',
    # Delegates
    'LLMDelegate',
    'ToolDispatcher',
    'ToolRegistry',
    'ToolNotFoundError',
    'DuplicateToolNameError',
    'InvalidLLMInputError',
    # Errors
    'ErrorCode',
    'FlowlineError',
    'WorkflowValidationError',
    'RoutingError',
    'TaskDefinitionError',
    'ConfigurationError',
    'RegistryError',
    'ResolutionError',
    'TaskExecutionError',
    'ValidationReport',
    'MultipleValidationErrors',
    # Exception mapper
    'ExceptionMapper',
]
