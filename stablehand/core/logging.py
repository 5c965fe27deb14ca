# stablehand/core/logging.py
import logging
import os
import sys
from datetime import datetime
from typing import Optional, TextIO

LOGGER_NAMESPACE = 'stablehand'

# Level given to loggers created from now on; see set_default_level()
_default_level: int = logging.INFO

# '[hypervisor]' is the widest component tag
_COMPONENT_WIDTH = 14
_LEVEL_WIDTH = 10

_RESET = '\033[0m'
_TIME_COLOR = '\033[94m'
_TEXT_COLOR = '\033[97m'


def stream_supports_color(stream: TextIO) -> bool:
    """STABLEHAND_FORCE_COLOR wins, then NO_COLOR, then whether ``stream`` is a tty."""
    if os.environ.get('STABLEHAND_FORCE_COLOR', '').lower() in ('1', 'true', 'yes'):
        return True
    if os.environ.get('NO_COLOR') is not None:
        return False
    isatty = getattr(stream, 'isatty', None)
    return bool(isatty and isatty())


class ColoredFormatter(logging.Formatter):
    """
    Tabular one-line records: ``[12:00:01.250] [runner]      [INFO]    message``.

    The component is the last part of the logger name, so
    ``stablehand.executor`` renders as ``[executor]``.
    """

    LEVEL_COLORS = {
        'DEBUG': '\033[90m',
        'INFO': '\033[92m',
        'WARNING': '\033[93m',
        'ERROR': '\033[91m',
        'CRITICAL': '\033[1;91m',
    }

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors

    def _paint(self, text: str, color: str) -> str:
        return f'{color}{text}{_RESET}' if self.use_colors else text

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created)
        time_str = f'{stamp:%H:%M:%S}.{stamp.microsecond // 1000:03d}'
        component = record.name.rsplit('.', 1)[-1]

        line = (
            self._paint(f'[{time_str}]', _TIME_COLOR)
            + ' '
            + self._paint(f'[{component}]'.ljust(_COMPONENT_WIDTH), _TEXT_COLOR)
            + self._paint(
                f'[{record.levelname}]'.ljust(_LEVEL_WIDTH),
                self.LEVEL_COLORS.get(record.levelname, _TEXT_COLOR),
            )
            + self._paint(record.getMessage(), _TEXT_COLOR)
        )
        if record.exc_info:
            line += '\n' + self.formatException(record.exc_info)
        return line


def set_default_level(level: int) -> None:
    """Set the level given to loggers created after this call."""
    global _default_level
    _default_level = level


def apply_level(level: int) -> None:
    """Set ``level`` as the default and on every stablehand logger created so far."""
    set_default_level(level)
    prefix = f'{LOGGER_NAMESPACE}.'
    for name in list(logging.Logger.manager.loggerDict):
        if isinstance(name, str) and name.startswith(prefix):
            existing = logging.getLogger(name)
            existing.setLevel(level)
            for handler in existing.handlers:
                handler.setLevel(level)


def get_logger(component_name: str, stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Logger ``stablehand.<component_name>`` writing to stdout.

    Configured once, on first request: one handler, the current default
    level, no propagation to the root logger.
    """
    logger = logging.getLogger(f'{LOGGER_NAMESPACE}.{component_name}')
    if logger.handlers:
        return logger

    target = stream if stream is not None else sys.stdout
    handler = logging.StreamHandler(target)
    handler.setFormatter(ColoredFormatter(use_colors=stream_supports_color(target)))
    handler.setLevel(_default_level)
    logger.addHandler(handler)
    logger.setLevel(_default_level)
    logger.propagate = False
    return logger
