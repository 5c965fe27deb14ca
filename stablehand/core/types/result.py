"""Minimal Ok/Err result type used for store and protocol outcomes.

Pattern-matches positionally::

    match await store.update(...):
        case Ok(task):
            ...
        case Err(conflict):
            ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, NoReturn, TypeAlias, TypeGuard, TypeVar, Union

T = TypeVar('T')
E = TypeVar('E')


@dataclass(slots=True, frozen=True)
class Ok(Generic[T]):
    ok_value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.ok_value

    def unwrap_err(self) -> NoReturn:
        raise ValueError(f'Called unwrap_err on Ok: {self.ok_value!r}')


@dataclass(slots=True, frozen=True)
class Err(Generic[E]):
    err_value: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        raise ValueError(f'Called unwrap on Err: {self.err_value!r}')

    def unwrap_err(self) -> E:
        return self.err_value


Result: TypeAlias = Union[Ok[T], Err[E]]


def is_ok(result: Ok[Any] | Err[Any]) -> TypeGuard[Ok[Any]]:
    return isinstance(result, Ok)


def is_err(result: Ok[Any] | Err[Any]) -> TypeGuard[Err[Any]]:
    return isinstance(result, Err)
