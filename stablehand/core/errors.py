"""Startup and validation errors, reported the way rustc reports them.

    error[E201]: stall_threshold_ms too low
      --> /srv/app/queue.py:12
       |
    12 | executor=ExecutorConfig(stall_threshold_ms=30_000),
       | ^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^
       = note: threshold must be greater than the runner interval

Runtime failures of task bodies are not StablehandErrors; they are logged by
the executor and never reach the excepthook.
"""

from __future__ import annotations

import linecache
import os
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from types import FrameType
from typing import Any, Optional

from stablehand.core.logging import stream_supports_color

# Frames under this directory belong to the library, not to the caller
_PACKAGE_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class ErrorCode(str, Enum):
    """
    Stable identifiers for startup/validation errors.

    - E1xx: task submission
    - E2xx: store, executor and CLI configuration
    """

    TASK_INVALID_BODY = 'E100'
    TASK_NO_TRANSACTION = 'E101'
    TASK_NOT_SERIALIZABLE = 'E102'

    STORE_INVALID_URL = 'E200'
    CONFIG_INVALID_EXECUTOR = 'E201'
    CLI_INVALID_ARGS = 'E202'
    CLI_INVALID_LOCATOR = 'E203'


@dataclass(frozen=True)
class _Palette:
    reset: str = ''
    bold: str = ''
    red: str = ''
    blue: str = ''
    cyan: str = ''
    green: str = ''
    dim: str = ''


_PLAIN = _Palette()
_ANSI = _Palette(
    reset='\033[0m',
    bold='\033[1m',
    red='\033[91m',
    blue='\033[94m',
    cyan='\033[96m',
    green='\033[92m',
    dim='\033[2m',
)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes')


def _colors_enabled() -> bool:
    return stream_supports_color(sys.stderr)


def _verbose_enabled() -> bool:
    """STABLEHAND_VERBOSE=1 appends the Python traceback to the report."""
    return _env_flag('STABLEHAND_VERBOSE')


def _plain_errors_enabled() -> bool:
    """STABLEHAND_PLAIN_ERRORS=1 leaves every exception to the default hook."""
    return _env_flag('STABLEHAND_PLAIN_ERRORS')


def _palette(use_colors: Optional[bool]) -> _Palette:
    if use_colors is None:
        use_colors = _colors_enabled()
    return _ANSI if use_colors else _PLAIN


@dataclass
class SourceLocation:
    """The user code line an error points at."""

    file: str
    line: int

    @classmethod
    def from_frame(cls, frame: FrameType) -> SourceLocation:
        return cls(file=frame.f_code.co_filename, line=frame.f_lineno)

    def read_line(self) -> Optional[str]:
        """The source text at this location, or None if it cannot be read."""
        text = linecache.getline(self.file, self.line)
        return text.rstrip('\n') or None

    def __str__(self) -> str:
        return f'{self.file}:{self.line}'


def _render_location(location: SourceLocation, p: _Palette) -> list[str]:
    rendered = [f'  {p.blue}-->{p.reset} {p.cyan}{location}{p.reset}']
    source = location.read_line()
    if source is None:
        return rendered

    gutter = ' ' * len(str(location.line))
    code = source.lstrip()
    marker = ' ' * (len(source) - len(code)) + '^' * len(code)
    rendered.append(f'   {p.blue}{gutter}|{p.reset}')
    rendered.append(f'   {p.blue}{location.line}|{p.reset} {source}')
    rendered.append(f'   {p.blue}{gutter}|{p.reset} {p.red}{marker}{p.reset}')
    return rendered


def _render_note(note: str, p: _Palette) -> list[str]:
    first, *rest = note.split('\n')
    return [f'   {p.blue}={p.reset} {p.bold}{p.blue}note{p.reset}: {first}'] + [
        f'          {line}' for line in rest
    ]


def _render_help(help_text: str, p: _Palette) -> list[str]:
    return ['', f'   {p.blue}={p.reset} {p.bold}{p.green}help{p.reset}:'] + [
        f'        {line}' for line in help_text.split('\n')
    ]


@dataclass
class StablehandError(Exception):
    """
    Base class for errors raised while configuring or using the library.

    Carries an optional ``ErrorCode``, the user code location it was raised
    from (found automatically), notes and a help text.
    """

    message: str
    code: Optional[ErrorCode] = None
    location: Optional[SourceLocation] = None
    notes: list[str] = field(default_factory=lambda: [])
    help_text: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.location is None:
            frame = _caller_frame()
            if frame is not None:
                self.location = SourceLocation.from_frame(frame)

    def with_note(self, note: str) -> StablehandError:
        self.notes.append(note)
        return self

    def with_help(self, help_text: str) -> StablehandError:
        self.help_text = help_text
        return self

    def format_rust_style(self, use_colors: Optional[bool] = None) -> str:
        p = _palette(use_colors)
        code = f'[{self.code.value}]' if self.code else ''
        rendered = ['', f'{p.bold}{p.red}error{code}:{p.reset} {self.message}']
        if self.location is not None:
            rendered.extend(_render_location(self.location, p))
        for note in self.notes:
            rendered.extend(_render_note(note, p))
        if self.help_text:
            rendered.extend(_render_help(self.help_text, p))
        return '\n'.join(rendered)

    def __str__(self) -> str:
        # Never colored: str() ends up in log files
        return self.format_rust_style(use_colors=False)


@dataclass
class ConfigurationError(StablehandError):
    """Invalid store, executor or CLI configuration."""

    pass


@dataclass
class InvalidTaskError(StablehandError):
    """
    ``enqueue`` was given something it cannot queue.

    Raised for objects that are not task bodies, for sessions without an open
    transaction and for payloads the codec refuses.
    """

    pass


class InconsistentTaskStateError(Exception):
    """A claimed record is missing, unclaimed or already completed."""

    def __init__(self, task_id: str, reason: str) -> None:
        self.task_id = task_id
        self.reason = reason
        super().__init__(f'Not executing task {task_id}: {reason}')


class ValidationReport:
    """Errors gathered while validating one phase, raised together at its end."""

    def __init__(self, phase_name: str) -> None:
        self.phase_name = phase_name
        self.errors: list[StablehandError] = []

    def add(self, error: StablehandError) -> None:
        self.errors.append(error)

    def has_errors(self) -> bool:
        return bool(self.errors)

    def format_rust_style(self, use_colors: Optional[bool] = None) -> str:
        p = _palette(use_colors)
        blocks = [error.format_rust_style(use_colors=p is _ANSI) for error in self.errors]
        blocks.append(
            f'\n{p.bold}{p.red}error{p.reset}: '
            f'aborting due to {len(self.errors)} previous errors'
        )
        return '\n'.join(blocks)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


@dataclass
class MultipleValidationErrors(StablehandError):
    """Raised by ``raise_collected`` when a report holds two or more errors."""

    report: ValidationReport = field(default_factory=lambda: ValidationReport(''))

    def __post_init__(self) -> None:
        # each collected error carries its own location
        Exception.__init__(self, self.message)

    def format_rust_style(self, use_colors: Optional[bool] = None) -> str:
        return self.report.format_rust_style(use_colors=use_colors)

    def __str__(self) -> str:
        return self.format_rust_style(use_colors=False)


def raise_collected(report: ValidationReport) -> None:
    """
    Raise what ``report`` collected: nothing for no errors, the error itself
    for exactly one (so ``except ConfigurationError`` keeps working), and a
    ``MultipleValidationErrors`` otherwise.
    """
    match report.errors:
        case []:
            return
        case [only]:
            raise only
        case errors:
            raise MultipleValidationErrors(
                message=f'aborting due to {len(errors)} previous errors',
                report=report,
            )


_default_excepthook = sys.excepthook


def _excepthook(
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_tb: Any,
) -> None:
    if _plain_errors_enabled() or not isinstance(exc_value, StablehandError):
        _default_excepthook(exc_type, exc_value, exc_tb)
        return

    print(exc_value.format_rust_style(), file=sys.stderr)
    if _verbose_enabled():
        p = _palette(None)
        print(file=sys.stderr)
        print(f'{p.dim}Full traceback (STABLEHAND_VERBOSE=1):{p.reset}', file=sys.stderr)
        traceback.print_exception(exc_type, exc_value, exc_tb, file=sys.stderr)


def install_error_handler() -> None:
    """Report uncaught StablehandErrors rust-style; other exceptions are untouched."""
    sys.excepthook = _excepthook


def uninstall_error_handler() -> None:
    sys.excepthook = _default_excepthook


def _caller_frame() -> Optional[FrameType]:
    """The innermost frame that is neither library code nor a third-party package."""
    frame = sys._getframe(1)
    while frame is not None:
        filename = frame.f_code.co_filename
        if not (
            filename.startswith('<')
            or filename.startswith(_PACKAGE_ROOT)
            or f'{os.sep}site-packages{os.sep}' in filename
        ):
            return frame
        frame = frame.f_back
    return None
