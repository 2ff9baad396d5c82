"""
Unit Tests - Critical Path Scheduling
=====================================
Calendar arithmetic, network ordering and the CPM passes.

2024-01-01 is a Monday; dates below are picked around it.
"""

from datetime import date

import pytest

from exceptions import SchedulingError
from services.scheduling import (
    Link,
    ScheduleTask,
    add_business_days,
    business_days_between,
    calculate_duration,
    compute_schedule,
    creates_cycle,
    subtract_business_days,
    topological_order,
)

MONDAY = date(2024, 1, 1)


def link(pred: ScheduleTask, succ: ScheduleTask, type: str = "FS", lag: int = 0) -> None:
    pred.successors.append(Link(succ.id, type, lag))
    succ.predecessors.append(Link(pred.id, type, lag))


class TestCalendar:

    @pytest.mark.unit
    @pytest.mark.parametrize("hours,days", [(None, 1), (0, 1), (8, 1), (9, 2), (40, 5)])
    def test_calculate_duration(self, hours, days):
        assert calculate_duration(hours) == days

    @pytest.mark.unit
    def test_add_business_days_skips_weekend(self):
        # Friday + 1 working day is Monday
        assert add_business_days(date(2024, 1, 5), 1) == date(2024, 1, 8)

    @pytest.mark.unit
    def test_add_negative_days_goes_backwards(self):
        assert add_business_days(date(2024, 1, 8), -1) == date(2024, 1, 5)

    @pytest.mark.unit
    def test_subtract_business_days(self):
        assert subtract_business_days(date(2024, 1, 8), 2) == date(2024, 1, 4)

    @pytest.mark.unit
    def test_business_days_between(self):
        assert business_days_between(date(2024, 1, 5), date(2024, 1, 8)) == 1
        assert business_days_between(date(2024, 1, 8), date(2024, 1, 5)) == -1
        assert business_days_between(MONDAY, MONDAY) == 0


class TestNetwork:

    @pytest.mark.unit
    def test_topological_order_predecessors_first(self):
        a, b, c = ScheduleTask(1), ScheduleTask(2), ScheduleTask(3)
        link(c, b)
        link(b, a)

        assert topological_order({1: a, 2: b, 3: c}) == [3, 2, 1]

    @pytest.mark.unit
    def test_cycle_raises_scheduling_error(self):
        a, b = ScheduleTask(1), ScheduleTask(2)
        link(a, b)
        link(b, a)

        with pytest.raises(SchedulingError) as exc_info:
            topological_order({1: a, 2: b})

        assert exc_info.value.status_code == 422
        assert exc_info.value.context["task_ids"] == [1, 2]

    @pytest.mark.unit
    def test_creates_cycle(self):
        edges = [(1, 2), (2, 3)]

        assert creates_cycle(edges, 3, 1) is True
        assert creates_cycle(edges, 1, 3) is False
        assert creates_cycle(edges, 4, 4) is True


class TestComputeSchedule:

    @pytest.mark.unit
    def test_empty_network(self):
        result = compute_schedule([], MONDAY)

        assert result.success is True
        assert result.tasks_updated == 0

    @pytest.mark.unit
    def test_finish_to_start_chain_with_float(self):
        """A(2d) -> B(3d) is critical; the one-day C -> B has a day of float."""
        a = ScheduleTask(1, duration=2)
        b = ScheduleTask(2, duration=3)
        c = ScheduleTask(3, duration=1)
        link(a, b)
        link(c, b)

        result = compute_schedule([a, b, c], MONDAY)

        assert (a.early_start, a.early_finish) == (date(2024, 1, 1), date(2024, 1, 2))
        assert (b.early_start, b.early_finish) == (date(2024, 1, 3), date(2024, 1, 5))
        assert (c.early_start, c.early_finish) == (date(2024, 1, 1), date(2024, 1, 1))
        assert result.project_end_date == date(2024, 1, 5)

        assert a.total_float == 0 and b.total_float == 0
        assert c.total_float == 1
        assert c.free_float == 1
        assert c.late_start == date(2024, 1, 2)

        assert result.critical_tasks == [1, 2]
        assert result.critical_path_length == 5
        assert not c.is_critical_path

    @pytest.mark.unit
    def test_duration_spans_weekend(self):
        task = ScheduleTask(1, duration=3)

        compute_schedule([task], date(2024, 1, 4))

        assert task.early_finish == date(2024, 1, 8)

    @pytest.mark.unit
    def test_finish_to_start_lag(self):
        a, b = ScheduleTask(1), ScheduleTask(2)
        link(a, b, lag=2)

        compute_schedule([a, b], MONDAY)

        assert b.early_start == date(2024, 1, 4)

    @pytest.mark.unit
    def test_start_to_start(self):
        a, b = ScheduleTask(1, duration=3), ScheduleTask(2, duration=1)
        link(a, b, type="SS", lag=1)

        compute_schedule([a, b], MONDAY)

        assert b.early_start == date(2024, 1, 2)

    @pytest.mark.unit
    def test_finish_to_finish(self):
        a, b = ScheduleTask(1, duration=3), ScheduleTask(2, duration=2)
        link(a, b, type="FF")

        compute_schedule([a, b], MONDAY)

        assert b.early_finish == a.early_finish == date(2024, 1, 3)

    @pytest.mark.unit
    def test_start_no_earlier_than_constraint(self):
        task = ScheduleTask(1, constraint_type="snet", constraint_date=date(2024, 1, 10))

        compute_schedule([task], MONDAY)

        assert task.early_start == date(2024, 1, 10)

    @pytest.mark.unit
    def test_must_start_on_constraint_overrides_predecessors(self):
        a = ScheduleTask(1, duration=5)
        b = ScheduleTask(2, constraint_type="mso", constraint_date=date(2024, 1, 2))
        link(a, b)

        compute_schedule([a, b], MONDAY)

        assert b.early_start == date(2024, 1, 2)

    @pytest.mark.unit
    def test_cycle_propagates(self):
        a, b = ScheduleTask(1), ScheduleTask(2)
        link(a, b)
        link(b, a)

        with pytest.raises(SchedulingError):
            compute_schedule([a, b], MONDAY)


class TestStartToFinish:
    """SF: the successor may not finish before the predecessor starts (plus lag)."""

    @pytest.mark.unit
    def test_start_to_finish_with_lag(self):
        a = ScheduleTask(1, duration=3)
        b = ScheduleTask(2, duration=2)
        c = ScheduleTask(3, duration=5)
        link(a, b, type="SF", lag=2)

        result = compute_schedule([a, b, c], MONDAY)

        # B finishes two working days after A starts
        assert (b.early_start, b.early_finish) == (date(2024, 1, 2), date(2024, 1, 3))
        assert b.early_finish == add_business_days(a.early_start, 2)
        assert result.project_end_date == date(2024, 1, 5)

        # Backward: A's LF = (B.LF - 2) + (3 - 1)
        assert (b.late_start, b.late_finish) == (date(2024, 1, 4), date(2024, 1, 5))
        assert (a.late_start, a.late_finish) == (date(2024, 1, 3), date(2024, 1, 5))

        assert (a.total_float, a.free_float) == (2, 0)
        assert (b.total_float, b.free_float) == (2, 2)
        assert result.critical_tasks == [3]

    @pytest.mark.unit
    def test_start_to_finish_without_lag_aligns_finish_with_start(self):
        a = ScheduleTask(1, duration=2)
        b = ScheduleTask(2, duration=1)
        link(a, b, type="SF")

        compute_schedule([a, b], date(2024, 1, 3))

        assert b.early_finish == a.early_start == date(2024, 1, 3)


class TestFinishConstraints:
    """``fnet`` and ``mfo`` act on the backward pass (LF/LS) only."""

    @pytest.mark.unit
    @pytest.mark.parametrize("constraint_date,late_finish,late_start,total_float", [
        # Earlier than the project end: pulls LF in
        (date(2024, 1, 3), date(2024, 1, 3), date(2024, 1, 2), 1),
        # Later than the project end: no effect
        (date(2024, 1, 10), date(2024, 1, 5), date(2024, 1, 4), 3),
    ])
    def test_finish_no_earlier_than(self, constraint_date, late_finish, late_start, total_float):
        a = ScheduleTask(1, duration=2, constraint_type="fnet", constraint_date=constraint_date)
        c = ScheduleTask(2, duration=5)

        compute_schedule([a, c], MONDAY)

        assert (a.early_start, a.early_finish) == (date(2024, 1, 1), date(2024, 1, 2))
        assert (a.late_start, a.late_finish) == (late_start, late_finish)
        assert a.total_float == total_float
        assert a.free_float == total_float
        assert not a.is_critical_path

    @pytest.mark.unit
    @pytest.mark.parametrize("constraint_date,late_finish,late_start,total_float", [
        (date(2024, 1, 2), date(2024, 1, 2), date(2024, 1, 1), 0),
        # Pinned past the project end
        (date(2024, 1, 9), date(2024, 1, 9), date(2024, 1, 8), 5),
        # Pinned before the early finish: negative float
        (date(2024, 1, 1), date(2024, 1, 1), date(2023, 12, 29), -1),
    ])
    def test_must_finish_on_pins_late_finish(self, constraint_date, late_finish, late_start, total_float):
        a = ScheduleTask(1, duration=2, constraint_type="mfo", constraint_date=constraint_date)
        c = ScheduleTask(2, duration=5)

        compute_schedule([a, c], MONDAY)

        assert a.early_finish == date(2024, 1, 2)
        assert (a.late_start, a.late_finish) == (late_start, late_finish)
        assert a.total_float == total_float
        assert a.is_critical_path is (total_float <= 0)

    @pytest.mark.unit
    def test_must_finish_on_pulls_predecessors_critical(self):
        p = ScheduleTask(1, duration=1)
        a = ScheduleTask(2, duration=2, constraint_type="mfo", constraint_date=date(2024, 1, 3))
        c = ScheduleTask(3, duration=5)
        link(p, a)

        result = compute_schedule([p, a, c], MONDAY)

        assert (a.early_start, a.early_finish) == (date(2024, 1, 2), date(2024, 1, 3))
        assert a.late_finish == date(2024, 1, 3)
        assert (p.late_start, p.late_finish) == (date(2024, 1, 1), date(2024, 1, 1))
        assert p.total_float == 0 and a.total_float == 0
        assert result.critical_tasks == [1, 2, 3]

    @pytest.mark.unit
    def test_constraint_type_without_date_is_ignored(self):
        a = ScheduleTask(1, duration=2, constraint_type="mfo")
        c = ScheduleTask(2, duration=5)

        compute_schedule([a, c], MONDAY)

        assert a.late_finish == date(2024, 1, 5)
        assert a.total_float == 3
