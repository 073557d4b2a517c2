"""Unit tests for flowline logging module."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator

import pytest

from flowline.core.logging import ColoredFormatter, get_logger, set_default_level

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _restore_default_level() -> Iterator[None]:
    """Save and restore the module-level _default_level after each test."""
    from flowline.core import logging as flowline_logging

    original = flowline_logging._default_level
    yield
    set_default_level(original)


def _unique_name() -> str:
    return f'test_{uuid.uuid4().hex[:8]}'


class TestSetDefaultLevel:
    """Tests for set_default_level()."""

    def test_changes_module_variable(self) -> None:
        from flowline.core import logging as flowline_logging

        set_default_level(logging.DEBUG)
        assert flowline_logging._default_level == logging.DEBUG

        set_default_level(logging.WARNING)
        assert flowline_logging._default_level == logging.WARNING

    def test_new_logger_uses_default_level(self) -> None:
        set_default_level(logging.WARNING)
        logger = get_logger(_unique_name())
        assert logger.level == logging.WARNING

    def test_logger_handler_respects_default_level(self) -> None:
        set_default_level(logging.ERROR)
        logger = get_logger(_unique_name())

        assert len(logger.handlers) > 0
        for handler in logger.handlers:
            assert handler.level == logging.ERROR


class TestGetLogger:
    def test_namespaced_and_not_propagating(self) -> None:
        name = _unique_name()
        logger = get_logger(name)
        assert logger.name == f'flowline.{name}'
        assert logger.propagate is False

    def test_handler_added_once(self) -> None:
        name = _unique_name()
        get_logger(name)
        assert len(get_logger(name).handlers) == 1


class TestColoredFormatter:
    def test_component_and_level_in_output(self) -> None:
        record = logging.LogRecord(
            'flowline.engine', logging.WARNING, __file__, 1,
            "Task 'a' failed", None, None,
        )
        formatted = ColoredFormatter().format(record)
        assert '[engine]' in formatted
        assert '[WARNING]' in formatted
        assert "Task 'a' failed" in formatted

    def test_plain_output_without_colors(self) -> None:
        record = logging.LogRecord(
            'flowline.loop_runner', logging.INFO, __file__, 1, 'started', None, None,
        )
        formatted = ColoredFormatter(use_colors=False).format(record)
        assert '\033[' not in formatted
        assert formatted.endswith('[loop_runner] [INFO]    started')


class TestLevelChanges:
    def test_existing_loggers_follow_default_level(self) -> None:
        logger = get_logger(_unique_name())
        set_default_level(logging.DEBUG)
        assert logger.level == logging.DEBUG
        assert all(handler.level == logging.DEBUG for handler in logger.handlers)

    @pytest.mark.parametrize(
        ('value', 'expected'),
        [('debug', logging.DEBUG), ('WARNING', logging.WARNING), ('', logging.INFO), ('loud', logging.INFO)],
    )
    def test_level_from_env(
        self, value: str, expected: int, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        from flowline.core.logging import _level_from_env

        monkeypatch.setenv('FLOWLINE_LOG_LEVEL', value)
        assert _level_from_env() == expected
