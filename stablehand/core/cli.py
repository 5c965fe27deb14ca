# stablehand/core/cli.py
"""
CLI for running and inspecting a stablehand queue.

The app is located the way Celery does it:
1. Dotted module path: `stablehand worker myproject.queue:app`
2. File path: `stablehand worker myproject/queue.py:app`
3. Convenience: if cwd has a pyproject.toml, cwd is added to sys.path
"""

import argparse
import asyncio
import importlib
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from types import ModuleType
from typing import Awaitable, Callable, TypeVar

from stablehand.core.app import Stablehand
from stablehand.core.errors import ConfigurationError, ErrorCode, StablehandError
from stablehand.core.logging import apply_level, get_logger
from stablehand.core.utils.imports import import_file_path, setup_sys_path_from_cwd
from stablehand.core.worker.service import ExecutorService

T = TypeVar('T')

_LOCATOR_HELP = (
    'provide the app locator in one of these formats:\n'
    '  stablehand worker myproject.queue:app  (recommended)\n'
    '  stablehand worker myproject/queue.py:app  (file path)\n'
    '  stablehand worker myproject.queue  (auto-discover the app variable)'
)


def _resolve_module_argument(args: argparse.Namespace) -> str:
    """Return the app locator from --module or the positional, error if missing."""
    locator = getattr(args, 'module', None) or getattr(args, 'module_pos', None)
    if not locator:
        raise ConfigurationError(
            message='app locator is required',
            code=ErrorCode.CLI_INVALID_ARGS,
            notes=['no --module flag or positional locator provided'],
            help_text=_LOCATOR_HELP,
        )
    return locator


def parse_locator(locator: str) -> tuple[str, str | None]:
    """
    Split a locator into (module_or_path, attribute_name).

    - "myproject.queue:app" -> ("myproject.queue", "app")
    - "myproject.queue" -> ("myproject.queue", None)
    - "/srv/queue.py:app" -> ("/srv/queue.py", "app")
    """
    if ':' in locator:
        module_part, attr = locator.rsplit(':', 1)
        if not module_part or not attr:
            raise ConfigurationError(
                message=f"malformed app locator: '{locator}'",
                code=ErrorCode.CLI_INVALID_LOCATOR,
                help_text=_LOCATOR_HELP,
            )
        return (module_part, attr)
    return (locator, None)


def is_file_locator(path: str) -> bool:
    return path.endswith('.py') or os.path.sep in path or '/' in path


def _import_locator_module(module_path: str, attr_name: str | None) -> ModuleType:
    if is_file_locator(module_path):
        if not module_path.endswith('.py'):
            module_path += '.py'
        file_path = os.path.realpath(module_path)
        if not os.path.exists(file_path):
            stem = module_path.removesuffix('.py')
            if '.' in stem and '/' not in stem and os.path.sep not in stem:
                attr_hint = attr_name or '<app_name>'
                raise ConfigurationError(
                    message=f"ambiguous app locator: '{module_path}'",
                    code=ErrorCode.CLI_INVALID_LOCATOR,
                    notes=['dotted module notation mixed with a .py extension'],
                    help_text=(
                        f'use dotted module path: {stem}:{attr_hint}\n'
                        f'or use file path:       {stem.replace(".", "/")}.py:{attr_hint}'
                    ),
                )
            raise ConfigurationError(
                message=f'app module file not found: {file_path}',
                code=ErrorCode.CLI_INVALID_LOCATOR,
            )
        return import_file_path(file_path)

    try:
        return importlib.import_module(module_path)
    except ModuleNotFoundError as e:
        raise ConfigurationError(
            message=f'module not found: {module_path}',
            code=ErrorCode.CLI_INVALID_LOCATOR,
            notes=[str(e), f'sys.path: {sys.path[:5]}...'],
            help_text=(
                'run from your project root\n'
                'or set PYTHONPATH to include it'
            ),
        ) from e


def discover_app(locator: str) -> tuple[Stablehand, str]:
    """
    Import the module a locator points at and find its Stablehand instance.

    Returns:
        (app_instance, variable_name)
    """
    logger = get_logger('cli')

    project_root = setup_sys_path_from_cwd()
    if project_root:
        logger.debug(f'Added project root to sys.path: {project_root}')

    module_path, attr_name = parse_locator(locator)
    module = _import_locator_module(module_path, attr_name)

    if attr_name:
        obj = getattr(module, attr_name, None)
        if not isinstance(obj, Stablehand):
            found = 'nothing' if obj is None else type(obj).__name__
            raise ConfigurationError(
                message=f"'{attr_name}' in {module.__name__} is not a Stablehand app",
                code=ErrorCode.CLI_INVALID_LOCATOR,
                notes=[f'found {found}'],
            )
        app, var_name = obj, attr_name
    else:
        candidates = [
            (obj, name)
            for name, obj in vars(module).items()
            if not name.startswith('_') and isinstance(obj, Stablehand)
        ]
        if len(candidates) != 1:
            names = [name for _, name in candidates]
            raise ConfigurationError(
                message=(
                    f'no Stablehand app found in {module.__name__}'
                    if not candidates
                    else f'multiple Stablehand apps in {module.__name__}: {names}'
                ),
                code=ErrorCode.CLI_INVALID_LOCATOR,
                help_text='name the variable explicitly: module.path:variable',
            )
        app, var_name = candidates[0]

    logger.info(f"Discovered stablehand app '{var_name}' from {module.__name__}")
    return app, var_name


def setup_logging(loglevel: str) -> None:
    """Configure the level of every stablehand logger."""
    apply_level(getattr(logging, loglevel.upper(), logging.INFO))


def _load_app_or_exit(args: argparse.Namespace) -> Stablehand:
    logger = get_logger('cli')
    try:
        app, _var_name = discover_app(_resolve_module_argument(args))
    except StablehandError as e:
        print(e.format_rust_style(), file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.error(f'Failed to load app: {type(e).__name__}: {e}')
        sys.exit(1)
    return app


def _run_with_app(app: Stablehand, body: Callable[[Stablehand], Awaitable[T]]) -> T:
    """Run ``body`` on a fresh event loop; the app's engine is disposed afterwards."""

    async def _main() -> T:
        try:
            await app.get_store().ensure_schema_initialized()
            return await body(app)
        finally:
            await app.close()

    return asyncio.run(_main())


def worker_command(args: argparse.Namespace) -> None:
    """Handle worker command."""
    logger = get_logger('cli')
    setup_logging(args.loglevel)
    app = _load_app_or_exit(args)

    async def run_service() -> None:
        service = ExecutorService(app)
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            logger.info('Received interrupt signal, stopping worker...')
            service.request_stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, signal_handler)
            except NotImplementedError:
                pass

        await service.run_forever()

    logger.info(f'Starting stablehand worker with loglevel={args.loglevel}')
    try:
        asyncio.run(run_service())
    except KeyboardInterrupt:
        logger.info('Worker interrupted by user')
    except Exception as e:
        logger.error(f'Worker failed: {e}')
        sys.exit(1)


def run_once_command(args: argparse.Namespace) -> None:
    """Handle run-once command: one runner drain, then one hypervisor sweep."""
    setup_logging(args.loglevel)
    app = _load_app_or_exit(args)

    async def body(app: Stablehand) -> str:
        executor = app.get_executor()
        summary = await executor.runner()
        reset = await executor.hypervisor()
        return f'runner: {summary}\nhypervisor: reset={reset}'

    print(_run_with_app(app, body))


def init_schema_command(args: argparse.Namespace) -> None:
    """Handle init-schema command."""
    setup_logging(args.loglevel)
    app = _load_app_or_exit(args)

    async def body(app: Stablehand) -> None:
        return None

    _run_with_app(app, body)
    print('ok: queue schema is ready')


def stats_command(args: argparse.Namespace) -> None:
    """Handle stats command."""
    setup_logging(args.loglevel)
    app = _load_app_or_exit(args)

    async def body(app: Stablehand) -> str:
        store = app.get_store()
        async with store.transaction() as session:
            stats = await store.count_by_state(
                session,
                datetime.now(timezone.utc),
                app.config.executor.stall_threshold,
            )
        return '\n'.join(
            f'{label:<10} {value}'
            for label, value in (
                ('total', stats.total),
                ('queued', stats.queued),
                ('eligible', stats.eligible),
                ('in_flight', stats.in_flight),
                ('stalled', stats.stalled),
                ('completed', stats.completed),
            )
        )

    print(_run_with_app(app, body))


def _add_app_arguments(
    parser: argparse.ArgumentParser, *, default_loglevel: str = 'INFO'
) -> None:
    parser.add_argument(
        '-m',
        '--module',
        dest='module',
        help='App locator (e.g., myproject.queue:app)',
    )
    parser.add_argument(
        'module_pos',
        nargs='?',
        help='App locator (e.g., myproject.queue:app)',
    )
    parser.add_argument(
        '--loglevel',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=default_loglevel,
        type=str.upper,
        help=f'Logging level (default: {default_loglevel})',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='stablehand',
        description='Stablehand durable task queue - worker and maintenance commands',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the runner and hypervisor loops
  stablehand worker myproject.queue:app

  # One drain and one stall sweep, then exit (cron-friendly)
  stablehand run-once myproject/queue.py:app

  # Create the queue table
  stablehand init-schema myproject.queue:app

  # Queue counts by state
  stablehand stats myproject.queue
""",
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    _add_app_arguments(subparsers.add_parser('worker', help='Start a stablehand worker'))
    _add_app_arguments(
        subparsers.add_parser(
            'run-once', help='Run one runner drain and one hypervisor sweep'
        )
    )
    _add_app_arguments(
        subparsers.add_parser('init-schema', help='Create the queue table if missing'),
        default_loglevel='WARNING',
    )
    _add_app_arguments(
        subparsers.add_parser('stats', help='Print queue counts by state'),
        default_loglevel='WARNING',
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)

        match args.command:
            case 'worker':
                worker_command(args)
            case 'run-once':
                run_once_command(args)
            case 'init-schema':
                init_schema_command(args)
            case 'stats':
                stats_command(args)
            case _:
                parser.print_help()
                sys.exit(1)
    except KeyboardInterrupt:
        print('\nInterrupted by user')
        sys.exit(0)


if __name__ == '__main__':
    main()
