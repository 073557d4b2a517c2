"""Rust-style error display for flowline configuration and routing errors."""

from __future__ import annotations

import inspect
import linecache
import os
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

# Absolute path to the flowline package directory.
# Used by _find_user_frame to tell library frames apart from user code.
_FLOWLINE_PKG_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ErrorCode(str, Enum):
    """Error codes for structural and configuration errors.

    Organized by category:
    - E001-E099: Workflow structure and routing errors
    - E100-E199: Task definition errors
    - E200-E299: Engine/delegate configuration errors
    - E300-E399: Tool registry errors
    - E400-E499: Variable resolution errors
    """

    # Workflow structure (E001-E099)
    WORKFLOW_NO_ID = 'E001'
    WORKFLOW_NO_TASKS = 'E002'
    WORKFLOW_DUPLICATE_TASK_ID = 'E004'
    WORKFLOW_UNKNOWN_ROUTE_TARGET = 'E006'
    WORKFLOW_CYCLE_DETECTED = 'E007'
    WORKFLOW_UNKNOWN_START_TASK = 'E008'
    WORKFLOW_UNKNOWN_REFERENCE = 'E009'

    # Task definition (E100-E199)
    TASK_INVALID_ID = 'E100'
    TASK_INVALID_KIND = 'E101'
    TASK_MISSING_TOOL_NAME = 'E102'
    TASK_INVALID_HANDLER = 'E103'
    TASK_INVALID_ERROR_MAPPING = 'E105'

    # Config (E200-E299)
    CONFIG_INVALID_PARALLELISM = 'E200'
    CONFIG_INVALID_EXCEPTION_MAPPER = 'E201'
    CONFIG_INVALID_LLM_DEFAULTS = 'E202'
    DELEGATE_NOT_CONFIGURED = 'E203'
    DELEGATE_MISCONFIGURED = 'E204'

    # Registry (E300-E399)
    TOOL_NOT_REGISTERED = 'E300'
    TOOL_DUPLICATE_NAME = 'E301'

    # Resolution (E400-E499)
    RESOLUTION_MALFORMED_PATH = 'E400'
    RESOLUTION_UNRESOLVED_REFERENCE = 'E401'


class _Colors:
    """ANSI escape codes for terminal colors."""

    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    DIM = '\033[2m'


class _NoColors:
    """No-op color codes for non-TTY output."""

    RESET = ''
    BOLD = ''
    RED = ''
    BLUE = ''
    CYAN = ''
    GREEN = ''
    YELLOW = ''
    DIM = ''


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def _should_use_colors() -> bool:
    """Determine if colors should be used in output."""
    if _env_flag('FLOWLINE_FORCE_COLOR'):
        return True

    # NO_COLOR standard (https://no-color.org/)
    if os.environ.get('NO_COLOR') is not None:
        return False

    return hasattr(sys.stderr, 'isatty') and sys.stderr.isatty()


def _should_show_verbose() -> bool:
    """Determine if verbose output (full traceback) should be shown."""
    return _env_flag('FLOWLINE_VERBOSE')


def _should_use_plain_errors() -> bool:
    """Determine if plain Python errors should be used instead of Rust-style."""
    return _env_flag('FLOWLINE_PLAIN_ERRORS')


@dataclass
class SourceLocation:
    """Source code location information."""

    file: str
    line: int
    column: int | None = None
    end_column: int | None = None

    @classmethod
    def from_frame(cls, frame: Any) -> SourceLocation:
        return cls(file=frame.f_code.co_filename, line=frame.f_lineno)

    @classmethod
    def from_function(cls, fn: Callable[..., Any]) -> SourceLocation | None:
        """Create SourceLocation from a function object.

        Returns None for callables without code objects (builtins, partials, mocks).
        """
        code = getattr(fn, '__code__', None)
        if code is None:
            return None
        return cls(file=code.co_filename, line=code.co_firstlineno)

    def get_source_line(self) -> str | None:
        try:
            line = linecache.getline(self.file, self.line)
            return line.rstrip('\n') if line else None
        except Exception:
            return None

    def format_short(self) -> str:
        """Format as 'file:line' or 'file:line:col'."""
        if self.column is not None:
            return f'{self.file}:{self.line}:{self.column}'
        return f'{self.file}:{self.line}'


@dataclass
class FlowlineError(Exception):
    """Base exception for flowline structural and configuration errors.

    Provides Rust-style error formatting with:
    - Error code and category
    - Source location with code snippet
    - Notes and help text

    ``partial_result`` is filled in by the engine when the error aborts a run,
    so callers can still inspect the tasks reached before the abort.
    """

    message: str
    code: ErrorCode | None = None
    location: SourceLocation | None = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: str | None = None
    partial_result: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        super().__init__(self.message)

        if self.location is None:
            user_frame = _find_user_frame()
            if user_frame is not None:
                self.location = SourceLocation.from_frame(user_frame)

    def with_note(self, note: str) -> FlowlineError:
        """Add a note to the error (fluent API)."""
        self.notes.append(note)
        return self

    def with_help(self, help_text: str) -> FlowlineError:
        """Set help text (fluent API)."""
        self.help_text = help_text
        return self

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        """Format the error in Rust style."""
        if use_colors is None:
            use_colors = _should_use_colors()

        c = _Colors if use_colors else _NoColors
        lines: list[str] = ['']

        # error[E001]: message
        code_part = f'[{self.code.value}]' if self.code else ''
        lines.append(f'{c.BOLD}{c.RED}error{code_part}:{c.RESET} {self.message}')

        if self.location:
            source_line = self.location.get_source_line()
            lines.append(
                f'  {c.BLUE}-->{c.RESET} {c.CYAN}{self.location.format_short()}{c.RESET}'
            )

            if source_line:
                line_num = str(self.location.line)
                padding = ' ' * len(line_num)
                lines.append(f'   {c.BLUE}{padding}|{c.RESET}')
                lines.append(f'   {c.BLUE}{line_num}|{c.RESET} {source_line}')

                if self.location.column is not None:
                    start_col = self.location.column
                    end_col = self.location.end_column or (start_col + 1)
                    underline = ' ' * start_col + '^' * max(1, end_col - start_col)
                else:
                    stripped = source_line.lstrip()
                    indent = len(source_line) - len(stripped)
                    underline = ' ' * indent + '^' * len(stripped)
                lines.append(
                    f'   {c.BLUE}{padding}|{c.RESET} {c.RED}{underline}{c.RESET}'
                )

        for note in self.notes:
            note_lines = note.split('\n')
            lines.append(
                f'   {c.BLUE}={c.RESET} {c.BOLD}{c.BLUE}note{c.RESET}: {note_lines[0]}'
            )
            for note_line in note_lines[1:]:
                lines.append(f'          {note_line}')

        if self.help_text:
            lines.append('')
            lines.append(f'   {c.BLUE}={c.RESET} {c.BOLD}{c.GREEN}help{c.RESET}:')
            for help_line in self.help_text.split('\n'):
                lines.append(f'        {help_line}')

        return '\n'.join(lines)

    def __str__(self) -> str:
        """Plain-text rendering, safe for logs and error payloads."""
        return self.format_rust_style(use_colors=False)


_original_excepthook = sys.excepthook


def _flowline_excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: Any,
) -> None:
    """Custom exception hook for FlowlineError exceptions."""
    if _should_use_plain_errors() or not isinstance(exc_value, FlowlineError):
        _original_excepthook(exc_type, exc_value, exc_tb)
        return

    print(exc_value.format_rust_style(), file=sys.stderr)

    if _should_show_verbose():
        print(file=sys.stderr)
        c = _Colors if _should_use_colors() else _NoColors
        print(f'{c.DIM}Full traceback (FLOWLINE_VERBOSE=1):{c.RESET}', file=sys.stderr)
        traceback.print_exception(exc_type, exc_value, exc_tb, file=sys.stderr)


def install_error_handler() -> None:
    """Install the custom exception hook for Rust-style error display."""
    sys.excepthook = _flowline_excepthook


def uninstall_error_handler() -> None:
    """Restore the original exception hook."""
    sys.excepthook = _original_excepthook


# =============================================================================
# Specific Error Classes
# =============================================================================


@dataclass
class WorkflowValidationError(FlowlineError):
    """Raised when a workflow is structurally invalid."""

    pass


@dataclass
class RoutingError(WorkflowValidationError):
    """Raised when a route points at a missing task or closes a cycle.

    Always fatal: the engine stops the run without executing further tasks.
    """

    task_id: str | None = None
    target_id: str | None = None


@dataclass
class TaskDefinitionError(FlowlineError):
    """Raised when a task is constructed with an invalid definition."""

    pass


@dataclass
class ConfigurationError(FlowlineError):
    """Raised when engine or delegate configuration is invalid.

    Delegates raise this for problems no retry can fix (missing credentials,
    unsupported provider). The engine treats it as fatal to the run.
    """

    pass


@dataclass
class RegistryError(FlowlineError):
    """Raised when a tool registry operation fails."""

    pass


@dataclass
class ResolutionError(FlowlineError):
    """Raised when an interpolation marker cannot be resolved.

    Scoped to the task being prepared: the engine records it as that task's
    failure payload instead of aborting the run.
    """

    path: str = ''
    reference: str | None = None


class TaskExecutionError(RuntimeError):
    """Transient delegate failure; recorded as an ordinary task failure."""


# =============================================================================
# Phase-Gated Error Collection
# =============================================================================


class ValidationReport:
    """Collects multiple FlowlineError instances within a validation phase."""

    def __init__(self, phase_name: str) -> None:
        self.phase_name: str = phase_name
        self.errors: list[FlowlineError] = []

    def add(self, error: FlowlineError) -> None:
        self.errors.append(error)

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        """Format all collected errors, then append an aborting summary."""
        if use_colors is None:
            use_colors = _should_use_colors()

        c = _Colors if use_colors else _NoColors
        parts = [error.format_rust_style(use_colors=use_colors) for error in self.errors]
        parts.append(
            f'\n{c.BOLD}{c.RED}error{c.RESET}: aborting due to {len(self.errors)} previous errors'
        )
        return '\n'.join(parts)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class MultipleValidationErrors(FlowlineError):
    """Wraps a ValidationReport containing 2+ errors."""

    report: ValidationReport = field(default_factory=lambda: ValidationReport(''))

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f'aborting due to {len(self.report.errors)} previous errors'
        # Location is per-error in the report
        super(FlowlineError, self).__init__(self.message)

    def format_rust_style(self, use_colors: bool | None = None) -> str:
        return self.report.format_rust_style(use_colors=use_colors)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


def raise_collected(report: ValidationReport) -> None:
    """Raise collected errors.

    - 0 errors: no-op
    - 1 error: raises the original error (preserves except clauses)
    - 2+ errors: raises MultipleValidationErrors wrapping the report
    """
    count = len(report.errors)
    if count == 0:
        return
    if count == 1:
        raise report.errors[0]
    raise MultipleValidationErrors(
        message=f'aborting due to {count} previous errors',
        report=report,
    )


# =============================================================================
# Helper Functions for Creating Errors
# =============================================================================


def _find_user_frame() -> Any | None:
    """Find the first frame outside of flowline internals."""
    frame = inspect.currentframe()
    while frame is not None:
        filename = frame.f_code.co_filename

        if filename.startswith('<'):
            frame = frame.f_back
            continue

        if not filename.startswith(_FLOWLINE_PKG_DIR) and '/site-packages/' not in filename:
            return frame

        frame = frame.f_back

    return None


def routing_error(
    message: str,
    *,
    task_id: str | None,
    target_id: str | None,
    code: ErrorCode,
    notes: list[str] | None = None,
    help_text: str | None = None,
) -> RoutingError:
    """Create a RoutingError naming the offending task and target."""
    return RoutingError(
        message=message,
        code=code,
        notes=notes or [],
        help_text=help_text,
        task_id=task_id,
        target_id=target_id,
    )


def task_definition_error(
    message: str,
    *,
    code: ErrorCode | None = None,
    fn: Callable[..., Any] | None = None,
    notes: list[str] | None = None,
    help_text: str | None = None,
) -> TaskDefinitionError:
    """Create a TaskDefinitionError, pointing at ``fn`` when one is given."""
    location = SourceLocation.from_function(fn) if fn is not None else None
    return TaskDefinitionError(
        message=message,
        code=code,
        location=location,
        notes=notes or [],
        help_text=help_text,
    )
