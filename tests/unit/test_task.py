"""Unit tests for BaseTask."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from stablehand.core.task import BaseTask
from tests.tasks import Outer, RecordingTask

pytestmark = pytest.mark.unit


class TestBaseTask:
    def test_abstract_without_body(self) -> None:
        class Incomplete(BaseTask):
            label: str

        with pytest.raises(TypeError):
            Incomplete(label='x')  # type: ignore[abstract]

    def test_defaults(self) -> None:
        task = RecordingTask(label='x')
        assert task.trigger_stamp is None
        assert task.queued_task_id is None

    def test_fields_are_validated(self) -> None:
        with pytest.raises(ValidationError):
            RecordingTask()  # type: ignore[call-arg]

    def test_task_name(self) -> None:
        assert RecordingTask(label='x').task_name == 'tests.tasks.RecordingTask'
        assert Outer.NestedTask(payload={}).task_name == 'tests.tasks.Outer.NestedTask'


class TestScheduling:
    def test_schedule_at_keeps_aware_utc(self) -> None:
        when = datetime(2030, 5, 1, 9, 30, tzinfo=timezone.utc)
        task = RecordingTask(label='x').schedule_at(when)
        assert task.trigger_stamp == when

    def test_naive_is_taken_as_utc(self) -> None:
        task = RecordingTask(label='x').schedule_at(datetime(2030, 5, 1, 9, 30))
        assert task.trigger_stamp == datetime(2030, 5, 1, 9, 30, tzinfo=timezone.utc)

    def test_other_offsets_are_converted(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        task = RecordingTask(label='x').schedule_at(datetime(2030, 5, 1, 11, 30, tzinfo=plus_two))
        assert task.trigger_stamp is not None
        assert task.trigger_stamp.utcoffset() == timedelta(0)
        assert task.trigger_stamp.hour == 9

    def test_schedule_in_relative_to_now(self) -> None:
        now = datetime(2030, 1, 1, tzinfo=timezone.utc)
        task = RecordingTask(label='x').schedule_in(timedelta(seconds=10), now=now)
        assert task.trigger_stamp == now + timedelta(seconds=10)

    def test_schedule_in_defaults_to_wall_clock(self) -> None:
        before = datetime.now(timezone.utc)
        task = RecordingTask(label='x').schedule_in(timedelta(minutes=1))
        assert task.trigger_stamp is not None
        assert task.trigger_stamp >= before + timedelta(minutes=1)
