"""Tests for attendance folding and midnight-crossing repair."""

from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from typing import Any

from gaji_engine.calculators.attendance import (
    apply_midnight_repair,
    find_midnight_repairs,
    is_late,
    overtime_minutes,
    session_worked_minutes,
    summarize_period,
)
from gaji_engine.calculators.types import (
    AttendanceSummary,
    DateRange,
    ScheduledShift,
    SessionTimes,
)

WEEK = DateRange(start=date(2025, 3, 3), end=date(2025, 3, 7), label="3-7 March 2025")


def _shift(day: date, start: time = time(9, 0), minutes: int = 450) -> ScheduledShift:
    return ScheduledShift(work_date=day, start_time=start, work_minutes=minutes)


def _full_day(clock_in: time = time(9, 0)) -> SessionTimes:
    """Two pairs totalling 7.5 h."""
    return SessionTimes(
        clock_in_1=clock_in,
        clock_out_1=time(13, 0),
        clock_in_2=time(14, 0),
        clock_out_2=time(17, 30),
    )


@dataclass
class Record:
    """In-memory clock record with the attributes the repair touches."""

    employee_id: Any
    work_date: date
    clock_in_1: time | None = None
    clock_out_1: time | None = None
    clock_in_2: time | None = None
    clock_out_2: time | None = None
    slot_metadata: dict[str, Any] = field(default_factory=dict)
    status: str = "in_progress"
    total_work_minutes: int = 0
    ot_minutes: int = 0


class TestWorkedMinutes:
    """Test per-session worked minutes."""

    def test_two_pairs(self):
        assert session_worked_minutes(_full_day()) == 450

    def test_single_pair(self):
        session = SessionTimes(clock_in_1=time(9, 0), clock_out_1=time(12, 15))
        assert session_worked_minutes(session) == 195

    def test_in_and_final_out_only(self):
        """clock_in_1 and clock_out_2 without a break span the whole shift."""
        session = SessionTimes(clock_in_1=time(9, 0), clock_out_2=time(18, 0))
        assert session_worked_minutes(session) == 540

    def test_crosses_midnight(self):
        session = SessionTimes(clock_in_1=time(18, 0), clock_out_2=time(1, 15))
        assert session_worked_minutes(session) == 435

    def test_open_session_counts_nothing(self):
        assert session_worked_minutes(SessionTimes(clock_in_1=time(9, 0))) == 0


class TestOvertime:
    """Test the OT qualifying floor and 30-minute blocks."""

    def test_under_an_hour_is_not_ot(self):
        """8 h 05 min on a 7.5 h shift: 35 raw minutes do not qualify."""
        assert overtime_minutes(485, 450) == 0

    def test_floored_to_half_hour(self):
        """8 h 55 min: 85 raw minutes floor to 60."""
        assert overtime_minutes(535, 450) == 60
        assert AttendanceSummary(ot_minutes=60).ot_hours == Decimal("1.00")

    def test_exact_blocks(self):
        assert overtime_minutes(540, 450) == 90
        assert overtime_minutes(509, 450) == 0
        assert overtime_minutes(510, 450) == 60

    def test_short_day(self):
        assert overtime_minutes(300, 450) == 0


class TestLate:
    """Test late detection against shift start."""

    def test_within_grace(self):
        assert is_late(time(9, 10), time(9, 0), grace_minutes=10) is False

    def test_after_grace(self):
        assert is_late(time(9, 11), time(9, 0), grace_minutes=10) is True

    def test_unscheduled(self):
        assert is_late(time(11, 0), None) is False


class TestSummarizePeriod:
    """Test folding a period of sessions against the schedule."""

    def test_full_attendance(self):
        days = [date(2025, 3, d) for d in range(3, 8)]
        summary = summarize_period(
            WEEK,
            {d: _full_day() for d in days},
            {d: _shift(d) for d in days},
        )
        assert summary.days_worked == 5
        assert summary.worked_minutes == 5 * 450
        assert summary.absent_days == 0
        assert summary.short_minutes == 0
        assert summary.late_days == 0

    def test_absence_skips_leave_holidays_and_future(self):
        """Only scheduled, non-leave, non-holiday days up to ``until`` are absent."""
        days = [date(2025, 3, d) for d in range(3, 8)]
        summary = summarize_period(
            WEEK,
            {},
            {d: _shift(d) for d in days},
            holidays=[date(2025, 3, 4)],
            leave_days=[date(2025, 3, 5)],
            until=date(2025, 3, 6),
        )
        # 3rd and 6th; the 4th is a holiday, the 5th on leave, the 7th not yet judged
        assert summary.absent_days == 2

    def test_off_days_are_never_absent(self):
        off = ScheduledShift(work_date=date(2025, 3, 3), is_off=True)
        summary = summarize_period(WEEK, {}, {date(2025, 3, 3): off})
        assert summary.absent_days == 0

    def test_absence_disabled(self):
        summary = summarize_period(
            WEEK, {}, {date(2025, 3, 3): _shift(date(2025, 3, 3))}, count_absence=False
        )
        assert summary.absent_days == 0

    def test_short_hours_and_late(self):
        day = date(2025, 3, 3)
        session = SessionTimes(clock_in_1=time(10, 0), clock_out_2=time(16, 0))
        summary = summarize_period(WEEK, {day: session}, {day: _shift(day)})
        assert summary.late_days == 1
        assert summary.short_minutes == 90
        assert summary.short_hours == Decimal("1.50")

    def test_unclosed_session_is_short_not_absent(self):
        """Clocked in but never out: present, with the whole shift short."""
        day = date(2025, 3, 3)
        summary = summarize_period(
            WEEK, {day: SessionTimes(clock_in_1=time(9, 0))}, {day: _shift(day)}
        )
        assert summary.absent_days == 0
        assert summary.short_minutes == 450
        assert summary.late_days == 0
        assert summary.days_worked == 0

    def test_unclosed_session_after_until_not_judged(self):
        day = date(2025, 3, 7)
        summary = summarize_period(
            WEEK,
            {day: SessionTimes(clock_in_1=time(9, 0))},
            {day: _shift(day)},
            until=date(2025, 3, 6),
        )
        assert summary.absent_days == 0
        assert summary.short_minutes == 0

    def test_short_within_tolerance(self):
        day = date(2025, 3, 3)
        session = SessionTimes(clock_in_1=time(9, 0), clock_out_2=time(16, 25))
        summary = summarize_period(WEEK, {day: session}, {day: _shift(day)}, short_tolerance_minutes=10)
        assert summary.short_minutes == 0

    def test_unscheduled_work_has_no_short_hours(self):
        day = date(2025, 3, 3)
        session = SessionTimes(clock_in_1=time(9, 0), clock_out_2=time(12, 0))
        summary = summarize_period(WEEK, {day: session}, {})
        assert summary.short_minutes == 0
        assert summary.days_worked == 1

    def test_public_holiday_worked(self):
        day = date(2025, 3, 4)
        summary = summarize_period(WEEK, {day: _full_day()}, {}, holidays=[day])
        assert summary.ph_days_worked == 1

    def test_ot_per_day(self):
        day = date(2025, 3, 3)
        session = SessionTimes(clock_in_1=time(9, 0), clock_out_2=time(18, 0))
        summary = summarize_period(WEEK, {day: session}, {day: _shift(day)})
        assert summary.ot_minutes == 90
        assert summary.ot_hours == Decimal("1.50")

    def test_part_time_hours_round_down_to_half(self):
        assert AttendanceSummary(worked_minutes=275).part_time_hours == Decimal("4.5")
        assert AttendanceSummary(worked_minutes=300).part_time_hours == Decimal("5.0")


class TestMidnightRepair:
    """Test pairing stray after-midnight clock-ins with the previous shift."""

    def test_repairs_previous_day(self):
        """18:00 open shift closed by a lone 01:15 clock-in the next day."""
        prior = Record("emp-a", date(2025, 3, 10), clock_in_1=time(18, 0))
        stray = Record(
            "emp-a",
            date(2025, 3, 11),
            clock_in_1=time(1, 15),
            slot_metadata={"clock_in_1": {"photo": "p.jpg"}},
        )

        repairs = find_midnight_repairs([prior, stray])
        assert len(repairs) == 1

        delete_stray = apply_midnight_repair(repairs[0])

        assert delete_stray is True
        assert prior.clock_out_2 == time(1, 15)
        assert prior.status == "completed"
        assert prior.total_work_minutes == 435
        assert prior.ot_minutes == 0
        assert prior.slot_metadata == {"clock_out_2": {"photo": "p.jpg"}}
        assert stray.clock_in_1 is None

    def test_second_pass_changes_nothing(self):
        """Repair is idempotent: the repaired state yields no new repairs."""
        prior = Record("emp-a", date(2025, 3, 10), clock_in_1=time(18, 0))
        stray = Record("emp-a", date(2025, 3, 11), clock_in_1=time(1, 15))
        apply_midnight_repair(find_midnight_repairs([prior, stray])[0])

        assert find_midnight_repairs([prior]) == []
        assert find_midnight_repairs([prior, stray]) == []

    def test_stray_with_other_data_is_kept(self):
        prior = Record("emp-a", date(2025, 3, 10), clock_in_1=time(18, 0))
        stray = Record(
            "emp-a",
            date(2025, 3, 11),
            clock_in_1=time(0, 45),
            clock_out_1=time(3, 45),
        )
        delete_stray = apply_midnight_repair(find_midnight_repairs([prior, stray])[0])

        assert delete_stray is False
        assert stray.clock_in_1 is None
        assert stray.clock_out_1 == time(3, 45)

    def test_after_cutoff_is_not_a_stray(self):
        prior = Record("emp-a", date(2025, 3, 10), clock_in_1=time(18, 0))
        morning = Record("emp-a", date(2025, 3, 11), clock_in_1=time(1, 30))
        assert find_midnight_repairs([prior, morning]) == []

    def test_needs_open_prior_session(self):
        closed = Record(
            "emp-a", date(2025, 3, 10), clock_in_1=time(9, 0), clock_out_2=time(17, 0)
        )
        stray = Record("emp-a", date(2025, 3, 11), clock_in_1=time(0, 30))
        assert find_midnight_repairs([closed, stray]) == []

    def test_other_employee_not_paired(self):
        prior = Record("emp-a", date(2025, 3, 10), clock_in_1=time(18, 0))
        stray = Record("emp-b", date(2025, 3, 11), clock_in_1=time(1, 0))
        assert find_midnight_repairs([prior, stray]) == []
