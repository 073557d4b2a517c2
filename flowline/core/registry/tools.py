# flowline/core/registry/tools.py
from __future__ import annotations
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterator, MutableMapping
from flowline.core.errors import RegistryError, ErrorCode, SourceLocation

ToolFn = Callable[..., Any]


class ToolNotFoundError(RegistryError, KeyError):
    """Raised when a tool name is not present in the registry.

    Inherits from KeyError so MutableMapping.__contains__ works correctly
    (it catches KeyError to implement the ``in`` operator).
    """

    def __init__(self, tool_name: str, available: list[str] | None = None) -> None:
        notes = [f"requested tool: '{tool_name}'"]
        if available is not None:
            notes.append(f'registered tools: {sorted(available)}')
        RegistryError.__init__(
            self,
            message=f"tool '{tool_name}' not registered",
            code=ErrorCode.TOOL_NOT_REGISTERED,
            notes=notes,
            help_text='register the tool with registry.register(fn, name=...) or @registry.tool()',
        )
        self.tool_name = tool_name


class DuplicateToolNameError(RegistryError):
    """Raised when a tool name is registered more than once within the same registry."""

    def __init__(self, tool_name: str, context: str = '') -> None:
        super().__init__(
            message=f"duplicate tool name '{tool_name}'",
            code=ErrorCode.TOOL_DUPLICATE_NAME,
            notes=[context] if context else [],
            help_text='each tool name must be unique within a registry\nor unregister the old tool first',
        )
        self.tool_name = tool_name


class ToolRegistry(MutableMapping[str, ToolFn]):
    """Registry mapping tool name -> callable, and the engine's tool dispatcher.

    Passed explicitly to ``WorkflowEngine(tools=...)``; there is no
    process-wide table. Tracks source locations to detect duplicate registrations:
    - Same name + same source: silently skip (re-import scenario)
    - Same name + different source: raise DuplicateToolNameError
    """

    def __init__(self, initial: Dict[str, ToolFn] | None = None) -> None:
        self._data: Dict[str, ToolFn] = {}
        self._sources: Dict[str, str] = {}  # tool_name -> "file:lineno"
        for name, fn in (initial or {}).items():
            self.register(fn, name=name)

    def __getitem__(self, key: str) -> ToolFn:
        try:
            return self._data[key]
        except KeyError:
            raise ToolNotFoundError(key, list(self._data)) from None

    def __setitem__(self, key: str, value: ToolFn) -> None:
        """Discourage direct assignment; enforce uniqueness like register()."""
        if key in self._data:
            raise DuplicateToolNameError(key, 'detected via direct assignment')
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self._sources.pop(key, None)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    # --- convenience ---
    def register(self, fn: ToolFn, *, name: str | None = None) -> ToolFn:
        """Insert a tool under `name` (defaults to the function's name).

        Returns:
            The registered tool (existing if re-import, new otherwise).

        Raises:
            DuplicateToolNameError: If same name registered from different source.
            TypeError: If ``fn`` is not callable.
        """
        if not callable(fn):
            raise TypeError(f'tool must be callable, got {type(fn).__name__}')
        tool_name = name or getattr(fn, '__name__', None)
        if not tool_name:
            raise TypeError('tool name could not be derived; pass name=...')

        location = SourceLocation.from_function(fn)
        source = location.format_short() if location is not None else None
        if tool_name in self._data:
            existing_source = self._sources.get(tool_name)
            if existing_source and source and existing_source == source:
                # Same source location - this is a re-import, skip silently
                return self._data[tool_name]
            raise DuplicateToolNameError(tool_name, 'tool with this name already exists')
        self._data[tool_name] = fn
        if source:
            self._sources[tool_name] = source
        return fn

    def tool(self, name: str | None = None) -> Callable[[ToolFn], ToolFn]:
        """Decorator form of register().

        Example:
            tools = ToolRegistry()

            @tools.tool('web_search')
            def search(query: str, limit: int = 5) -> list[dict[str, str]]:
                ...
        """

        def decorator(fn: ToolFn) -> ToolFn:
            return self.register(fn, name=name)

        return decorator

    def unregister(self, name: str) -> None:
        self._data.pop(name, None)
        self._sources.pop(name, None)

    # --- dispatch ---
    def invoke(self, tool_name: str, arguments: Any) -> Any:
        """Call a registered tool with a task's resolved input.

        Mapping arguments are passed as keywords, ``None`` as no arguments,
        anything else as a single positional argument.

        Raises:
            ToolNotFoundError: If no tool is registered under ``tool_name``.
        """
        fn = self[tool_name]
        if arguments is None:
            return fn()
        if isinstance(arguments, Mapping):
            return fn(**{str(key): value for key, value in arguments.items()})
        return fn(arguments)
