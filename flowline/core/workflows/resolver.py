"""Interpolation of ``${path}`` markers in task input templates.

A template is any nesting of mappings, lists, tuples and scalars. Strings may
hold markers of the form ``${root.segment.segment}``:

- ``root`` is either an input alias (``input`` / ``initial_input``) or the id
  of a task whose output is already recorded. Unknown roots are an error.
- later segments walk into the value: mapping keys by name, sequence items by
  non-negative integer index, attributes on plain objects. A missing segment
  resolves to ``None`` instead of failing the template.

Example:
    >>> resolve('${fetch.items.0}', {}, {'fetch': {'items': ['a', 'b']}})
    'a'
    >>> resolve('total: ${fetch.count}', {}, {'fetch': {'count': 3}})
    'total: 3'
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from flowline.core.errors import ErrorCode, ResolutionError

MARKER_RE = re.compile(r'\$\{([^{}]*)\}')
INDEX_RE = re.compile(r'[0-9]+')

INPUT_ALIASES: frozenset[str] = frozenset({'input', 'initial_input'})

# Segments naming a task's whole output, as in ``${fetch.output}``.
TASK_OUTPUT_SEGMENTS: frozenset[str] = frozenset({'output', 'output_data'})

_SCALAR_TYPES = (str, bytes, int, float, bool, type(None))


def parse_path(path: str) -> tuple[str, ...]:
    """Split a marker path into segments.

    Raises:
        ResolutionError: If the path is empty or has an empty segment.
    """
    segments = tuple(part.strip() for part in path.split('.'))
    if not path.strip() or any(not part for part in segments):
        raise ResolutionError(
            message=f"malformed reference '${{{path}}}'",
            code=ErrorCode.RESOLUTION_MALFORMED_PATH,
            notes=['references are dot-separated, e.g. ${task_id.field.0}'],
            path=path,
        )
    return segments


def lookup(value: Any, segments: Sequence[str]) -> Any:
    """Walk ``segments`` into ``value``. Any miss yields None."""
    current = value
    for segment in segments:
        if current is None:
            return None
        current = _step(current, segment)
    return current


def _step(value: Any, segment: str) -> Any:
    if isinstance(value, Mapping):
        if segment in value:
            return value[segment]
        # Non-string keys are matched through their canonical string form
        for key, item in value.items():
            if not isinstance(key, str) and _canonical_key(key) == segment:
                return item
        return None

    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        if not INDEX_RE.fullmatch(segment):
            return None
        index = int(segment)
        return value[index] if index < len(value) else None

    if isinstance(value, _SCALAR_TYPES) or segment.startswith('_'):
        return None
    return getattr(value, segment, None)


def resolve_reference(
    path: str,
    initial_input: Any,
    outputs: Mapping[str, Any],
) -> Any:
    """Resolve a single marker path against the input and recorded outputs."""
    root, *rest = parse_path(path)

    if root in INPUT_ALIASES:
        return lookup(initial_input, rest)

    if root not in outputs:
        raise ResolutionError(
            message=f"unresolved reference '${{{path}}}': no output recorded for '{root}'",
            code=ErrorCode.RESOLUTION_UNRESOLVED_REFERENCE,
            notes=[
                f"'{root}' is not an input alias and has not finished yet",
                f'recorded outputs: {sorted(outputs)}',
            ],
            help_text='reference only tasks that run before this one, or the initial input',
            path=path,
            reference=root,
        )

    value = outputs[root]
    if rest and rest[0] in TASK_OUTPUT_SEGMENTS:
        if not (isinstance(value, Mapping) and rest[0] in value):
            rest = rest[1:]
    return lookup(value, rest)


def resolve(template: Any, initial_input: Any, outputs: Mapping[str, Any]) -> Any:
    """Substitute every marker in ``template``, preserving its shape.

    Raises:
        ResolutionError: If a marker's root is neither an input alias nor a
            recorded task output, or a marker is malformed.
    """
    if isinstance(template, str):
        return _resolve_string(template, initial_input, outputs)
    if isinstance(template, Mapping):
        return {
            _canonical_key(key): resolve(item, initial_input, outputs)
            for key, item in template.items()
        }
    if isinstance(template, tuple):
        return tuple(resolve(item, initial_input, outputs) for item in template)
    if isinstance(template, list):
        return [resolve(item, initial_input, outputs) for item in template]
    return template


def _resolve_string(text: str, initial_input: Any, outputs: Mapping[str, Any]) -> Any:
    whole = MARKER_RE.fullmatch(text)
    if whole is not None:
        return resolve_reference(whole.group(1), initial_input, outputs)

    if '${' not in text:
        return text

    return MARKER_RE.sub(
        lambda match: stringify(
            resolve_reference(match.group(1), initial_input, outputs)
        ),
        text,
    )


def stringify(value: Any) -> str:
    """Render a resolved value for splicing into surrounding text."""
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(_json_safe(value), default=str, ensure_ascii=False)
    return str(value)


def find_references(template: Any) -> set[str]:
    """Return the task ids referenced anywhere in ``template``.

    Input aliases are excluded; malformed markers are ignored here and
    reported by ``resolve``.
    """
    found: set[str] = set()
    _collect_references(template, found)
    return found


def _collect_references(template: Any, found: set[str]) -> None:
    if isinstance(template, str):
        for match in MARKER_RE.finditer(template):
            root = match.group(1).split('.', 1)[0].strip()
            if root and root not in INPUT_ALIASES:
                found.add(root)
    elif isinstance(template, Mapping):
        for item in template.values():
            _collect_references(item, found)
    elif isinstance(template, (list, tuple)):
        for item in template:
            _collect_references(item, found)


def _canonical_key(key: Any) -> str:
    if isinstance(key, str):
        return key
    if isinstance(key, Enum):
        return str(key.value)
    return str(key)


def _json_safe(value: Any) -> Any:
    """Rebuild mappings with string keys so ``json.dumps`` accepts any output."""
    if isinstance(value, Mapping):
        return {_canonical_key(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value
