# stablehand/core/codec/serde.py
from __future__ import annotations
import inspect
import json
from importlib import import_module
from typing import Any, Dict, Protocol, Type, cast
from pydantic import ValidationError
from pydantic_core import PydanticSerializationError
from stablehand.core.logging import get_logger
from stablehand.core.task import BaseTask

logger = get_logger('serde')

TASK_ENVELOPE_KEY = '__task__'


class SerializationError(Exception):
    """
    Raised when a task body cannot be frozen to bytes or thawed back.
    """

    pass


class PayloadCodec(Protocol):
    """Converts task bodies to and from the bytes stored on a queue record."""

    def encode(self, task: BaseTask) -> bytes: ...

    def decode(self, data: bytes) -> BaseTask: ...


def _qualified_class_path(cls: type) -> tuple[str, str]:
    """
    Get the module and qualname for a task class, checking workers can import it.

    Raises SerializationError if the class is:
    - Defined in __main__ (entrypoint script)
    - Defined inside a function (``<locals>`` in its qualname)
    """
    module_name = cls.__module__
    qualname = cls.__qualname__

    if module_name in ('__main__', '__mp_main__'):
        raise SerializationError(
            f"Cannot serialize '{qualname}' because it is defined in '__main__'. "
            'Move the task class to a module the worker can import.'
        )

    if '<locals>' in qualname:
        raise SerializationError(
            f"Cannot serialize '{qualname}' because it is defined inside a function. "
            'Move the task class to module level.'
        )

    return (module_name, qualname)


class JsonPayloadCodec:
    """
    UTF-8 JSON payloads.

    Layout::

        {"__task__": true, "module": "...", "qualname": "...", "data": {...}}

    ``data`` is the task's ``model_dump(mode='json')``, so the trigger stamp
    and the bound record id (both excluded fields) are never part of it.
    """

    def __init__(self) -> None:
        # resolved task classes keyed by "module:qualname"
        self._class_cache: Dict[str, Type[BaseTask]] = {}

    def encode(self, task: BaseTask) -> bytes:
        if not isinstance(task, BaseTask):
            raise SerializationError(
                f'Expected a BaseTask instance, got {type(task).__name__}'
            )
        module_name, qualname = _qualified_class_path(type(task))
        try:
            data = task.model_dump(mode='json')
        except PydanticSerializationError as e:
            raise SerializationError(
                f'Cannot serialize fields of {module_name}:{qualname}: {e}'
            ) from e

        envelope: Dict[str, Any] = {
            TASK_ENVELOPE_KEY: True,
            'module': module_name,
            'qualname': qualname,
            'data': data,
        }
        try:
            return json.dumps(envelope, ensure_ascii=False).encode('utf-8')
        except (TypeError, ValueError) as e:
            raise SerializationError(f'Cannot encode task payload: {e}') from e

    def decode(self, data: bytes) -> BaseTask:
        try:
            envelope = json.loads(bytes(data).decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise SerializationError(f'Malformed task payload: {e}') from e

        if not isinstance(envelope, dict) or envelope.get(TASK_ENVELOPE_KEY) is not True:
            raise SerializationError('Payload is not a task envelope')

        module_name = envelope.get('module')
        qualname = envelope.get('qualname')
        if not isinstance(module_name, str) or not isinstance(qualname, str):
            raise SerializationError('Task envelope is missing module/qualname')

        cls = self._resolve_class(module_name, qualname)
        try:
            return cls.model_validate(envelope.get('data') or {})
        except (ValidationError, TypeError) as e:
            logger.error(f'Failed to rehydrate task {module_name}:{qualname}: {e}')
            raise SerializationError(
                f'Failed to rehydrate {module_name}:{qualname}: {e}'
            ) from e

    def _resolve_class(self, module_name: str, qualname: str) -> Type[BaseTask]:
        cache_key = f'{module_name}:{qualname}'
        cached = self._class_cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            module = import_module(module_name)
        except Exception as e:
            # the module itself may fail at import time with any error
            raise SerializationError(
                f"Could not import module '{module_name}'. "
                f'Was the task module moved or renamed? Error: {e}'
            ) from e

        obj: Any = module
        try:
            # nested classes (ClassA.ClassB)
            for part in qualname.split('.'):
                obj = getattr(obj, part)
        except AttributeError as e:
            raise SerializationError(f'{cache_key} not found: {e}') from e

        if not (isinstance(obj, type) and issubclass(obj, BaseTask)):
            raise SerializationError(f'{cache_key} is not a BaseTask subclass')

        if inspect.isabstract(obj):
            raise SerializationError(f'{cache_key} is abstract and cannot be run')

        cls = cast(Type[BaseTask], obj)
        self._class_cache[cache_key] = cls
        return cls
