"""Unit tests for the Ok/Err result type."""

from __future__ import annotations

import pytest

from stablehand.core.store.result_types import VersionConflict
from stablehand.core.types.result import Err, Ok, is_err, is_ok

pytestmark = pytest.mark.unit


class TestResult:
    def test_ok(self) -> None:
        result = Ok(5)
        assert result.is_ok() and not result.is_err()
        assert is_ok(result) and not is_err(result)
        assert result.unwrap() == 5
        with pytest.raises(ValueError):
            result.unwrap_err()

    def test_err(self) -> None:
        conflict = VersionConflict(task_id='t', expected_version=3)
        result = Err(conflict)
        assert result.is_err() and not result.is_ok()
        assert is_err(result)
        assert result.unwrap_err() is conflict
        with pytest.raises(ValueError):
            result.unwrap()

    def test_pattern_matching(self) -> None:
        def describe(result: Ok[int] | Err[VersionConflict]) -> str:
            match result:
                case Ok(value):
                    return f'ok {value}'
                case Err(conflict):
                    return conflict.message

        assert describe(Ok(1)) == 'ok 1'
        assert 'expected version 3' in describe(
            Err(VersionConflict(task_id='t', expected_version=3))
        )

    def test_frozen(self) -> None:
        with pytest.raises(AttributeError):
            Ok(1).ok_value = 2  # type: ignore[misc]
