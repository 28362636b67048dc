"""Attendance folding: worked minutes, overtime, absence and midnight repair."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Any, Iterable, Protocol

from gaji_engine.calculators.types import (
    AttendanceSummary,
    DateRange,
    ScheduledShift,
    SessionTimes,
)

MINUTES_PER_DAY = 24 * 60
STANDARD_SHIFT_MINUTES = 450
OT_QUALIFYING_MINUTES = 60
OT_BLOCK_MINUTES = 30
MIDNIGHT_CUTOFF = time(1, 30)


class ClockSessionLike(Protocol):
    """Attributes the midnight repair reads and writes."""

    employee_id: Any
    work_date: date
    clock_in_1: time | None
    clock_out_1: time | None
    clock_in_2: time | None
    clock_out_2: time | None
    slot_metadata: dict[str, Any]
    status: str
    total_work_minutes: int
    ot_minutes: int


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def span_minutes(start: time, end: time) -> int:
    """Minutes from start to end; an end before start is on the next day."""
    diff = _minutes(end) - _minutes(start)
    if diff < 0:
        diff += MINUTES_PER_DAY
    return diff


def session_worked_minutes(session: SessionTimes | ClockSessionLike) -> int:
    """Worked minutes for one session of up to two in/out pairs."""
    in1, out1 = session.clock_in_1, session.clock_out_1
    in2, out2 = session.clock_in_2, session.clock_out_2

    first = in1 is not None and out1 is not None
    second = in2 is not None and out2 is not None

    if first and second:
        return span_minutes(in1, out1) + span_minutes(in2, out2)
    if in1 is not None and out2 is not None and out1 is None and in2 is None:
        return span_minutes(in1, out2)

    total = 0
    if first:
        total += span_minutes(in1, out1)
    if second:
        total += span_minutes(in2, out2)
    return total


def overtime_minutes(worked: int, standard: int = STANDARD_SHIFT_MINUTES) -> int:
    """Qualifying OT minutes.

    Raw overtime under 60 minutes does not count; qualifying overtime is
    floored to 30-minute blocks (90 -> 90, 85 -> 60, 59 -> 0).
    """
    raw = max(0, worked - standard)
    if raw < OT_QUALIFYING_MINUTES:
        return 0
    return (raw // OT_BLOCK_MINUTES) * OT_BLOCK_MINUTES


def is_late(clock_in: time | None, shift_start: time | None, grace_minutes: int = 10) -> bool:
    """True when clock-in is after shift start plus the grace period."""
    if clock_in is None or shift_start is None:
        return False
    return _minutes(clock_in) > _minutes(shift_start) + grace_minutes


def summarize_period(
    period: DateRange,
    sessions: dict[date, SessionTimes],
    schedule: dict[date, ScheduledShift],
    holidays: Iterable[date] = (),
    leave_days: Iterable[date] = (),
    *,
    standard_minutes: int = STANDARD_SHIFT_MINUTES,
    short_tolerance_minutes: int = 10,
    late_grace_minutes: int = 10,
    count_absence: bool = True,
    until: date | None = None,
) -> AttendanceSummary:
    """Fold one employee's sessions over a period.

    Absence and short hours only apply to scheduled working days. Days
    covered by approved leave are never absent, and days after ``until``
    (normally today) are not judged yet.
    """
    holiday_set = set(holidays)
    leave_set = set(leave_days)
    summary = AttendanceSummary()

    day = period.start
    while day <= period.end:
        session = sessions.get(day)
        shift = schedule.get(day)
        worked = session_worked_minutes(session) if session is not None else 0
        scheduled = shift is not None and not shift.is_off
        shift_minutes = (shift.work_minutes if shift and shift.work_minutes else standard_minutes)

        if worked > 0:
            summary.days_worked += 1
            summary.worked_minutes += worked
            summary.ot_minutes += overtime_minutes(worked, shift_minutes)
            if day in holiday_set:
                summary.ph_days_worked += 1
            if scheduled:
                if worked < shift_minutes - short_tolerance_minutes:
                    summary.short_minutes += shift_minutes - worked
                if is_late(session.clock_in_1, shift.start_time, late_grace_minutes):
                    summary.late_days += 1
        elif session is not None:
            # Present but never clocked out: the whole shift is short, not absent
            if (
                scheduled
                and day not in leave_set
                and day not in holiday_set
                and (until is None or day <= until)
            ):
                summary.short_minutes += shift_minutes
                if is_late(session.clock_in_1, shift.start_time, late_grace_minutes):
                    summary.late_days += 1
        elif (
            count_absence
            and scheduled
            and day not in leave_set
            and day not in holiday_set
            and (until is None or day <= until)
        ):
            summary.absent_days += 1

        day += timedelta(days=1)

    return summary


# ===== Midnight-crossing repair =====


@dataclass(frozen=True)
class MidnightRepair:
    """A stray early-morning clock-in and the open session it closes."""

    prior: Any
    stray: Any


def is_midnight_stray(record: ClockSessionLike) -> bool:
    return record.clock_in_1 is not None and record.clock_in_1 < MIDNIGHT_CUTOFF


def is_open_session(record: ClockSessionLike) -> bool:
    return record.clock_in_1 is not None and record.clock_out_2 is None


def find_midnight_repairs(records: Iterable[ClockSessionLike]) -> list[MidnightRepair]:
    """Pair each stray clock-in before 01:30 with the prior day's open session."""
    by_key = {(r.employee_id, r.work_date): r for r in records}
    repairs: list[MidnightRepair] = []
    for (employee_id, work_date), record in sorted(
        by_key.items(), key=lambda kv: (str(kv[0][0]), kv[0][1])
    ):
        if not is_midnight_stray(record):
            continue
        prior = by_key.get((employee_id, work_date - timedelta(days=1)))
        if prior is None or prior is record or not is_open_session(prior):
            continue
        repairs.append(MidnightRepair(prior=prior, stray=record))
    return repairs


def apply_midnight_repair(
    repair: MidnightRepair, standard_minutes: int = STANDARD_SHIFT_MINUTES
) -> bool:
    """Move the stray time into the prior session's clock_out_2.

    Returns True when the stray record has no other data and should be
    deleted; otherwise its clock_in_1 has been blanked in place.
    """
    prior, stray = repair.prior, repair.stray

    prior.clock_out_2 = stray.clock_in_1
    stray_meta = dict(stray.slot_metadata or {})
    moved_meta = stray_meta.pop("clock_in_1", None)
    prior_meta = dict(prior.slot_metadata or {})
    if moved_meta is not None:
        prior_meta["clock_out_2"] = moved_meta
    prior.slot_metadata = prior_meta

    prior.total_work_minutes = session_worked_minutes(prior)
    prior.ot_minutes = overtime_minutes(prior.total_work_minutes, standard_minutes)
    prior.status = "completed"

    delete_stray = all(
        getattr(stray, slot) is None for slot in ("clock_out_1", "clock_in_2", "clock_out_2")
    )
    stray.clock_in_1 = None
    stray.slot_metadata = stray_meta
    if not delete_stray:
        stray.total_work_minutes = session_worked_minutes(stray)
        stray.ot_minutes = overtime_minutes(stray.total_work_minutes, standard_minutes)
    return delete_stray
