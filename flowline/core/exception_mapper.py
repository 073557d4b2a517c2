"""Exception-to-error-code mapping for task failures.

User mappers match by exact class (``type(exc) in mapper``); a subclass never
inherits its parent's entry. Library-classified failures (unknown tool,
timeout, bad LLM input) match with ``isinstance`` and sit between the
mappers and the defaults.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import cast

ExceptionMapper = dict[type[BaseException], str]
ERROR_CODE_RE = re.compile(r'^[A-Z][A-Z0-9_]*$')
EXCEPTION_NAME_RE = re.compile(r'^[A-Z][A-Za-z0-9_]*(Error|Exception)$')


def lookup_code(
    exc: BaseException,
    mapper: Mapping[type[BaseException], str] | None,
) -> str | None:
    if not isinstance(mapper, Mapping):
        return None
    code = mapper.get(type(exc))
    return code if isinstance(code, str) else None


@dataclass(frozen=True)
class ErrorCodeResolver:
    """
    Picks the error code recorded on a failed task.

    Resolution order:
        1. the task's own mapper (exact class)
        2. the engine-wide mapper (exact class)
        3. the first matching library classification (isinstance)
        4. the task's default code
        5. the engine-wide default
    """

    global_mapper: Mapping[type[BaseException], str] = field(default_factory=dict)
    global_default: str = 'UNHANDLED_EXCEPTION'
    classified: Sequence[tuple[type[BaseException], str]] = ()

    def resolve(
        self,
        exc: BaseException,
        task_mapper: Mapping[type[BaseException], str] | None = None,
        task_default: str | None = None,
    ) -> str:
        code = lookup_code(exc, task_mapper) or lookup_code(exc, self.global_mapper)
        if code is not None:
            return code
        for exc_type, classified_code in self.classified:
            if isinstance(exc, exc_type):
                return classified_code
        return task_default if task_default is not None else self.global_default


def validate_error_code_string(
    value: object,
    *,
    field_name: str,
) -> str | None:
    """Returns an error message, or None when ``value`` is a usable code."""
    if not isinstance(value, str) or not value:
        return f'{field_name} must be a non-empty string, got {value!r}'
    if EXCEPTION_NAME_RE.fullmatch(value) is not None:
        return (
            f"{field_name} '{value}' looks like an exception class name; "
            'error codes are UPPER_SNAKE_CASE names such as RATE_LIMITED'
        )
    if ERROR_CODE_RE.fullmatch(value) is None:
        return f"{field_name} '{value}' is not UPPER_SNAKE_CASE (e.g. RATE_LIMITED)"
    return None


def validate_exception_mapper(mapper: object) -> list[str]:
    """Check every mapper entry. An empty list means the mapper is usable."""
    if not isinstance(mapper, Mapping):
        return ['exception_mapper must be a mapping of {ExceptionClass: "ERROR_CODE"} entries']

    problems: list[str] = []
    for key, value in cast(Mapping[object, object], mapper).items():
        if not isinstance(key, type) or not issubclass(key, BaseException):
            problems.append(f'Mapper key {key!r} is not a BaseException subclass')
            label = repr(key)
        else:
            label = key.__name__
        problem = validate_error_code_string(value, field_name=f'Mapper value for {label}')
        if problem is not None:
            problems.append(problem)
    return problems
