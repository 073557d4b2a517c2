# flowline/core/logging.py
import logging
import os
import sys
from datetime import datetime


def _level_from_env() -> int:
    name = os.environ.get('FLOWLINE_LOG_LEVEL', '').strip().upper()
    level = logging.getLevelName(name) if name else logging.INFO
    return level if isinstance(level, int) else logging.INFO


# Module-level default log level, can be changed by set_default_level()
_default_level: int = _level_from_env()

# Every logger handed out by get_logger(), so level changes reach them too
_loggers: dict[str, logging.Logger] = {}


class ColoredFormatter(logging.Formatter):
    """Column-aligned formatter for flowline loggers, colored unless NO_COLOR is set"""

    COLORS = {
        'RESET': '\033[0m',
        'LIGHT_BLUE': '\033[94m',
        'WHITE': '\033[97m',
        'GRAY': '\033[90m',
        'GREEN': '\033[92m',
        'YELLOW': '\033[93m',
        'RED': '\033[91m',
        'BRIGHT_RED': '\033[1;91m',
    }

    LEVEL_COLORS = {
        'DEBUG': 'GRAY',
        'INFO': 'GREEN',
        'WARNING': 'YELLOW',
        'ERROR': 'RED',
        'CRITICAL': 'BRIGHT_RED',
    }

    def __init__(self, use_colors: bool | None = None) -> None:
        super().__init__()
        if use_colors is None:
            use_colors = os.environ.get('NO_COLOR') is None
        self.use_colors = use_colors

    def _paint(self, color: str, text: str) -> str:
        if not self.use_colors:
            return text
        return f"{self.COLORS[color]}{text}{self.COLORS['RESET']}"

    def format(self, record: logging.LogRecord) -> str:
        time_str = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')

        # 'flowline.engine' -> 'engine'
        component = record.name.rsplit('.', 1)[-1]

        component_padded = f'[{component}]'.ljust(14)  # [loop_runner] = 13 chars
        level_padded = f'[{record.levelname}]'.ljust(10)  # [WARNING] = 9 chars

        formatted = (
            self._paint('LIGHT_BLUE', f'[{time_str}]')
            + ' '
            + self._paint('WHITE', component_padded)
            + self._paint(self.LEVEL_COLORS.get(record.levelname, 'WHITE'), level_padded)
            + self._paint('WHITE', record.getMessage())
        )

        if record.exc_info:
            formatted += '\n' + self.formatException(record.exc_info)

        return formatted


def set_default_level(level: int) -> None:
    """Set the level for new loggers and every flowline logger created so far."""
    global _default_level
    _default_level = level
    for logger in _loggers.values():
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)


def get_logger(component_name: str) -> logging.Logger:
    """Get the ``flowline.<component_name>`` logger, writing to stdout."""
    logger = logging.getLogger(f'flowline.{component_name}')

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ColoredFormatter())
        handler.setLevel(_default_level)
        logger.addHandler(handler)
        logger.setLevel(_default_level)

        # Prevent duplicate logs from parent loggers
        logger.propagate = False

    _loggers[logger.name] = logger
    return logger
