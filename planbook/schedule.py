"""Timetable logic: slot generation, override resolution, week grids and session navigation."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Sequence

from planbook.core.models import DAY_KEYS, Activity, Snapshot, TimeSlot, entry_key, schedule_key

PASTEL_COLORS: tuple[str, ...] = (
    "#FFADAD",
    "#FFD6A5",
    "#FDFFB6",
    "#CAFFBF",
    "#9BF6FF",
    "#A0C4FF",
    "#BDB2FF",
    "#FFC6FF",
)
SESSION_SEARCH_DAYS = 366

_HHMM = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")
_HEX = re.compile(r"^#?([0-9a-fA-F]{6})$")


@dataclass(frozen=True)
class Session:
    """One concrete occurrence of an activity in the timetable."""

    activity_id: str
    day: str
    time: str
    date: date


@dataclass
class WeekCell:
    day: str
    date: date
    label: str
    activity: Optional[Activity] = None
    overridden: bool = False
    has_plan: bool = False
    is_today: bool = False


@dataclass
class WeekRow:
    label: str
    cells: List[WeekCell] = field(default_factory=list)


def parse_hhmm(value: str) -> int:
    """Minutes since midnight for an ``HH:MM`` string."""
    match = _HHMM.match(value or "")
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return hours * 60 + minutes


def format_hhmm(total_minutes: int) -> str:
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


def generate_time_slots(
    start: str,
    end: str,
    class_minutes: int,
    *,
    break_minutes: int = 0,
    break_start: str | None = None,
) -> List[TimeSlot]:
    """Lay out consecutive class slots between ``start`` and ``end``.

    The break only applies when a slot boundary falls inside the break window;
    a class that would run past ``end`` is dropped.
    """
    if not start or not end:
        raise ValueError("Start and end times are required")
    if class_minutes <= 0:
        raise ValueError("Class duration must be a positive number of minutes")
    start_minutes = parse_hhmm(start)
    end_minutes = parse_hhmm(end)
    break_at = parse_hhmm(break_start) if break_start else None
    break_minutes = max(break_minutes or 0, 0)

    slots: List[TimeSlot] = []
    current = start_minutes
    while current < end_minutes:
        if break_minutes > 0 and break_at is not None and break_at <= current < break_at + break_minutes:
            break_end = break_at + break_minutes
            slots.append(TimeSlot(label=f"{format_hhmm(break_at)}-{format_hhmm(break_end)}", position=len(slots)))
            current = break_end
            continue
        class_end = current + class_minutes
        if class_end > end_minutes:
            break
        slots.append(TimeSlot(label=f"{format_hhmm(current)}-{format_hhmm(class_end)}", position=len(slots)))
        current = class_end
    return slots


def next_position(time_slots: Sequence[TimeSlot]) -> int:
    return max((slot.position for slot in time_slots), default=-1) + 1


# -- Weeks -----------------------------------------------------------------


def week_start(on_date: date) -> date:
    return on_date - timedelta(days=on_date.weekday())


def week_dates(on_date: date) -> List[date]:
    monday = week_start(on_date)
    return [monday + timedelta(days=offset) for offset in range(len(DAY_KEYS))]


def week_range_label(on_date: date) -> str:
    days = week_dates(on_date)
    return f"{days[0]:%d/%m/%Y} - {days[-1]:%d/%m/%Y}"


def shift_week(on_date: date, weeks: int) -> date:
    return on_date + timedelta(days=7 * weeks)


def day_key_for(on_date: date) -> str | None:
    weekday = on_date.weekday()
    return DAY_KEYS[weekday] if weekday < len(DAY_KEYS) else None


# -- Resolution ------------------------------------------------------------


def resolve_activity_id(snapshot: Snapshot, day: str, label: str, on_date: date) -> tuple[str | None, bool]:
    """Activity scheduled in a cell on a date, and whether an override supplied it.

    Overrides are checked in list order and the first covering one wins.
    """
    for override in snapshot.schedule_overrides:
        if override.day == day and override.time == label and override.covers(on_date):
            return override.activity_id, True
    return snapshot.schedule.get(schedule_key(day, label)), False


def activity_in_range(activity: Activity, on_date: date, snapshot: Snapshot) -> bool:
    """Whether the activity runs on ``on_date`` given course and activity windows."""
    course_start = snapshot.course_start_date
    course_end = snapshot.course_end_date
    activity_start = activity.start_date or course_start
    activity_end = activity.end_date or course_end
    if course_start and on_date < course_start:
        return False
    if course_end and on_date > course_end:
        return False
    if activity_start and on_date < activity_start:
        return False
    if activity_end and on_date > activity_end:
        return False
    return True


def effective_activity(snapshot: Snapshot, day: str, label: str, on_date: date) -> tuple[Activity | None, bool]:
    activity_id, overridden = resolve_activity_id(snapshot, day, label, on_date)
    activity = snapshot.find_activity(activity_id)
    if activity is None or not activity_in_range(activity, on_date, snapshot):
        return None, overridden
    return activity, overridden


def build_week_grid(snapshot: Snapshot, reference: date, today: date | None = None) -> List[WeekRow]:
    today = today or date.today()
    days = week_dates(reference)
    rows: List[WeekRow] = []
    for slot in snapshot.time_slots:
        row = WeekRow(label=slot.label)
        for day, cell_date in zip(DAY_KEYS, days):
            activity, overridden = effective_activity(snapshot, day, slot.label, cell_date)
            has_plan = False
            if activity is not None:
                entry = snapshot.class_entries.get(entry_key(activity.id, cell_date))
                has_plan = bool(entry and entry.planned)
            row.cells.append(
                WeekCell(
                    day=day,
                    date=cell_date,
                    label=slot.label,
                    activity=activity,
                    overridden=overridden,
                    has_plan=has_plan,
                    is_today=cell_date == today,
                )
            )
        rows.append(row)
    return rows


def _sessions_on(snapshot: Snapshot, activity_id: str, on_date: date, *, reverse: bool = False) -> List[Session]:
    day = day_key_for(on_date)
    if day is None:
        return []
    found = []
    for slot in snapshot.time_slots:
        activity, _ = effective_activity(snapshot, day, slot.label, on_date)
        if activity is not None and activity.id == activity_id:
            found.append(Session(activity_id=activity_id, day=day, time=slot.label, date=on_date))
    return list(reversed(found)) if reverse else found


def find_next_session(
    snapshot: Snapshot,
    activity_id: str,
    from_date: date,
    *,
    max_days: int = SESSION_SEARCH_DAYS,
) -> Session | None:
    """First session of the activity strictly after ``from_date``."""
    limit = from_date + timedelta(days=max_days)
    if snapshot.course_end_date and snapshot.course_end_date < limit:
        limit = snapshot.course_end_date
    cursor = from_date + timedelta(days=1)
    while cursor <= limit:
        sessions = _sessions_on(snapshot, activity_id, cursor)
        if sessions:
            return sessions[0]
        cursor += timedelta(days=1)
    return None


def find_previous_session(
    snapshot: Snapshot,
    activity_id: str,
    from_date: date,
    *,
    max_days: int = SESSION_SEARCH_DAYS,
) -> Session | None:
    """Latest session of the activity strictly before ``from_date``."""
    limit = from_date - timedelta(days=max_days)
    if snapshot.course_start_date and snapshot.course_start_date > limit:
        limit = snapshot.course_start_date
    cursor = from_date - timedelta(days=1)
    while cursor >= limit:
        sessions = _sessions_on(snapshot, activity_id, cursor, reverse=True)
        if sessions:
            return sessions[0]
        cursor -= timedelta(days=1)
    return None


# -- Mutations -------------------------------------------------------------


def rename_time_slot(snapshot: Snapshot, old_label: str, new_label: str) -> None:
    """Move schedule cells and overrides from ``old_label`` to ``new_label``."""
    if old_label == new_label:
        return
    for key in list(snapshot.schedule):
        day, _, label = key.partition("-")
        if label == old_label:
            snapshot.schedule[schedule_key(day, new_label)] = snapshot.schedule.pop(key)
    for override in snapshot.schedule_overrides:
        if override.time == old_label:
            override.time = new_label


# -- Colors ----------------------------------------------------------------


def pick_pastel_color(used: Sequence[str], rng: random.Random | None = None) -> str:
    taken = {color.upper() for color in used if color}
    for color in PASTEL_COLORS:
        if color not in taken:
            return color
    return (rng or random).choice(PASTEL_COLORS)


def darken_color(color: str, percent: float) -> str:
    """Subtract ``percent`` of full scale from each RGB channel."""
    match = _HEX.match(color or "")
    if not match:
        return color
    value = match.group(1)
    amount = round(2.55 * percent)
    channels = [max(0, min(255, int(value[index : index + 2], 16) - amount)) for index in (0, 2, 4)]
    return "#" + "".join(f"{channel:02x}" for channel in channels)
