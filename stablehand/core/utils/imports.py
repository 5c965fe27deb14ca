"""
Loading the module that holds a Stablehand app.

Two ways in, both explicit:
- a dotted module path, resolved against sys.path as the caller set it up
- a file path, loaded under a stable synthetic module name

The only implicit step is adding cwd to sys.path when cwd is a project root.
"""

from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from types import ModuleType

from stablehand.core.logging import get_logger

logger = get_logger('imports')

_PROJECT_MARKERS = ('pyproject.toml', 'setup.cfg', 'setup.py')


def is_project_root(directory: str) -> bool:
    """True when ``directory`` itself (not a parent) holds a packaging marker."""
    directory = os.path.abspath(directory)
    return any(
        os.path.exists(os.path.join(directory, marker)) for marker in _PROJECT_MARKERS
    )


def setup_sys_path_from_cwd() -> str | None:
    """
    Put cwd first on sys.path if it is a project root.

    Parent directories are never considered, so a monorepo root cannot
    shadow a service's own modules.

    Returns cwd if it was added, None otherwise.
    """
    cwd = os.getcwd()
    if is_project_root(cwd) and cwd not in sys.path:
        sys.path.insert(0, cwd)
        logger.debug(f'Added cwd to sys.path: {cwd}')
        return cwd
    return None


def synthetic_module_name(path: str) -> str:
    """
    Module name for a file loaded by path.

    Derived from the file's realpath so every process loading the same file
    agrees on it; task classes defined there keep an importable qualified
    name across workers.
    """
    digest = hashlib.sha256(os.path.realpath(path).encode()).hexdigest()[:12]
    return f'stablehand_app_{digest}'


def import_file_path(file_path: str, *, add_parent_to_path: bool = True) -> ModuleType:
    """
    Import a module from a ``.py`` file.

    A file already imported (under any name) is returned as is.

    Raises:
        FileNotFoundError: the file does not exist
        ImportError: no loader could be created for it
    """
    file_path = os.path.realpath(file_path)
    if not os.path.exists(file_path):
        raise FileNotFoundError(f'Module file not found: {file_path}')

    for mod in list(sys.modules.values()):
        mod_file = getattr(mod, '__file__', None)
        if mod_file and os.path.realpath(mod_file) == file_path:
            return mod

    if add_parent_to_path:
        parent_dir = os.path.dirname(file_path)
        if parent_dir not in sys.path:
            sys.path.insert(0, parent_dir)

    module_name = synthetic_module_name(file_path)
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        raise ImportError(f'Could not load module from path: {file_path}')

    mod = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = mod
    try:
        spec.loader.exec_module(mod)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return mod
