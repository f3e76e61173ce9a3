"""Named action handlers that mutate the planner state, plus the registry that dispatches them."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Mapping

from planbook import schedule
from planbook.core.models import Activity, ClassEntry, ScheduleOverride, Snapshot, Student, TimeSlot, entry_key
from planbook.state import VIEWS, AppState, SessionRef, StateSynchronizer

LOGGER = logging.getLogger("planbook.actions")

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")

Payload = Mapping[str, str]
ActionHandler = Callable[["ActionContext", Payload], None]


class ActionError(ValueError):
    """Raised when an action payload fails validation; the message is shown to the user."""


@dataclass
class ActionContext:
    state: AppState
    sync: StateSynchronizer
    today: Callable[[], date] = date.today

    @property
    def snapshot(self) -> Snapshot:
        return self.state.snapshot


@dataclass(frozen=True)
class ActionBinding:
    name: str
    handler: ActionHandler
    rerender: bool = True


@dataclass(frozen=True)
class ActionResult:
    name: str
    rerender: bool


class ActionRegistry:
    """Flat map of action names to handlers."""

    def __init__(self) -> None:
        self._actions: Dict[str, ActionBinding] = {}

    def register(self, name: str, handler: ActionHandler, *, rerender: bool = True) -> None:
        if name in self._actions:
            raise ValueError(f"Action {name} already registered")
        self._actions[name] = ActionBinding(name=name, handler=handler, rerender=rerender)

    def get(self, name: str) -> ActionBinding:
        try:
            return self._actions[name]
        except KeyError:
            raise KeyError(f"Unknown action {name}") from None

    def names(self) -> list[str]:
        return sorted(self._actions)

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def dispatch(self, name: str, context: ActionContext, payload: Payload | None = None) -> ActionResult:
        binding = self.get(name)
        LOGGER.debug("Dispatching action %s", name)
        binding.handler(context, payload or {})
        return ActionResult(name=name, rerender=binding.rerender)


# -- Payload helpers ---------------------------------------------------------


def _text(payload: Payload, key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def _raw(payload: Payload, key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


def _required(payload: Payload, key: str) -> str:
    value = _text(payload, key)
    if not value:
        raise ActionError(f"Missing field '{key}'")
    return value


def _optional_date(payload: Payload, key: str) -> date | None:
    value = _text(payload, key)
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ActionError(f"Invalid date for '{key}': {value}") from None


def _required_date(payload: Payload, key: str) -> date:
    parsed = _optional_date(payload, key)
    if parsed is None:
        raise ActionError(f"Missing field '{key}'")
    return parsed


def _int(payload: Payload, key: str, default: int | None = None) -> int:
    value = _text(payload, key)
    if not value:
        if default is None:
            raise ActionError(f"Missing field '{key}'")
        return default
    try:
        return int(value)
    except ValueError:
        raise ActionError(f"Field '{key}' must be a whole number") from None


def _activity(ctx: ActionContext, payload: Payload, key: str = "activity_id") -> Activity:
    activity = ctx.snapshot.find_activity(_required(payload, key))
    if activity is None:
        raise ActionError(f"Unknown activity {payload.get(key)}")
    return activity


def _student(ctx: ActionContext, payload: Payload) -> Student:
    student = ctx.snapshot.find_student(_required(payload, "student_id"))
    if student is None:
        raise ActionError(f"Unknown student {payload.get('student_id')}")
    return student


def _time_slot(ctx: ActionContext, payload: Payload) -> TimeSlot:
    slot_id = _required(payload, "time_slot_id")
    slot = next((slot for slot in ctx.snapshot.time_slots if slot.id == slot_id), None)
    if slot is None:
        raise ActionError(f"Unknown time slot {slot_id}")
    return slot


def _enroll(ctx: ActionContext, activity: Activity, name: str) -> None:
    """Add a student by name, reusing an existing student with the same name."""
    student = ctx.snapshot.find_student_by_name(name)
    if student is None:
        student = Student(name=name)
        ctx.snapshot.students.append(student)
        student = ctx.sync.save_student(student, created=True)
    if student.id not in activity.student_ids:
        activity.student_ids.append(student.id)


def _session_entry(ctx: ActionContext) -> ClassEntry:
    session = ctx.state.selected_activity
    if session is None:
        raise ActionError("No session selected")
    key = entry_key(session.activity_id, session.date)
    return ctx.snapshot.class_entries.setdefault(key, ClassEntry())


def _select_session(ctx: ActionContext, payload: Payload) -> None:
    activity = _activity(ctx, payload)
    ctx.state.selected_activity = SessionRef(
        activity_id=activity.id,
        day=_required(payload, "day"),
        time=_required(payload, "time"),
        date=_required_date(payload, "date"),
    )


# -- Students -----------------------------------------------------------------


def add_student_to_class(ctx: ActionContext, payload: Payload) -> None:
    activity = _activity(ctx, payload)
    name = _text(payload, "name")
    if not name:
        raise ActionError("Student name is required")
    _enroll(ctx, activity, name)
    ctx.sync.save_activity(activity)
    ctx.sync.save()


def add_selected_student_to_class(ctx: ActionContext, payload: Payload) -> None:
    activity = _activity(ctx, payload)
    student = _student(ctx, payload)
    if student.id in activity.student_ids:
        return
    activity.student_ids.append(student.id)
    ctx.sync.save_activity(activity)
    ctx.sync.save()


def remove_student_from_class(ctx: ActionContext, payload: Payload) -> None:
    activity = _activity(ctx, payload)
    student_id = _required(payload, "student_id")
    activity.student_ids = [sid for sid in activity.student_ids if sid != student_id]
    ctx.sync.save_activity(activity)
    ctx.sync.save()


def import_students(ctx: ActionContext, payload: Payload) -> None:
    activity = ctx.snapshot.find_activity(_text(payload, "activity_id"))
    names = [line.strip() for line in _raw(payload, "names").splitlines() if line.strip()]
    if activity is None or not names:
        raise ActionError("Select a class and paste the student list")
    for name in names:
        _enroll(ctx, activity, name)
    ctx.sync.save_activity(activity)
    ctx.sync.save()


def select_student(ctx: ActionContext, payload: Payload) -> None:
    student = _student(ctx, payload)
    ctx.state.selected_student_id = student.id
    ctx.state.active_view = "studentDetail"


def back_to_classes(ctx: ActionContext, payload: Payload) -> None:
    ctx.state.selected_student_id = None
    ctx.state.active_view = "classes"


def edit_student_name(ctx: ActionContext, payload: Payload) -> None:
    student = _student(ctx, payload)
    name = _text(payload, "name")
    if not name:
        raise ActionError("Student name is required")
    student.name = name
    ctx.sync.save_student(student)
    ctx.sync.save()


def edit_student_notes(ctx: ActionContext, payload: Payload) -> None:
    student = _student(ctx, payload)
    student.general_notes = _raw(payload, "notes")
    ctx.sync.save_student(student)
    ctx.sync.save()


def edit_session_annotation(ctx: ActionContext, payload: Payload) -> None:
    key = _required(payload, "entry_key")
    entry = ctx.snapshot.class_entries.get(key)
    if entry is None:
        raise ActionError(f"Unknown class entry {key}")
    entry.annotations[_required(payload, "student_id")] = _raw(payload, "value")
    ctx.sync.save()


# -- Activities ---------------------------------------------------------------


def add_activity(ctx: ActionContext, payload: Payload) -> None:
    name = _text(payload, "name")
    if not name:
        raise ActionError("Activity name is required")
    activity_type = _text(payload, "type") or "class"
    if activity_type not in ("class", "general"):
        raise ActionError(f"Unknown activity type {activity_type}")
    activity = Activity(
        name=name,
        type=activity_type,
        color=schedule.pick_pastel_color([existing.color for existing in ctx.snapshot.activities]),
        start_date=ctx.snapshot.course_start_date,
        end_date=ctx.snapshot.course_end_date,
    )
    ctx.snapshot.activities.append(activity)
    ctx.sync.save_activity(activity, created=True)
    ctx.sync.save()


def delete_activity(ctx: ActionContext, payload: Payload) -> None:
    activity = _activity(ctx, payload)
    ctx.sync.delete_activity(activity.id)
    if ctx.state.editing_activity_id == activity.id:
        ctx.state.editing_activity_id = None
    ctx.sync.save()


def edit_activity(ctx: ActionContext, payload: Payload) -> None:
    ctx.state.editing_activity_id = _activity(ctx, payload).id


def cancel_edit_activity(ctx: ActionContext, payload: Payload) -> None:
    ctx.state.editing_activity_id = None


def save_activity(ctx: ActionContext, payload: Payload) -> None:
    activity = _activity(ctx, payload)
    start = _optional_date(payload, "start_date")
    end = _optional_date(payload, "end_date")
    if start and end and end < start:
        raise ActionError("The end date must not precede the start date")
    name = _text(payload, "name")
    if name:
        activity.name = name
    activity.start_date = start
    activity.end_date = end
    ctx.sync.save_activity(activity)
    ctx.state.editing_activity_id = None
    ctx.sync.save()


def change_activity_color(ctx: ActionContext, payload: Payload) -> None:
    activity = _activity(ctx, payload)
    color = _required(payload, "color")
    if not _HEX_COLOR.match(color):
        raise ActionError(f"Invalid color {color}")
    activity.color = color
    ctx.sync.save_activity(activity)
    ctx.sync.save()


# -- Time slots ---------------------------------------------------------------


def add_timeslot(ctx: ActionContext, payload: Payload) -> None:
    label = _text(payload, "label")
    if not label:
        raise ActionError("Time slot label is required")
    slot = TimeSlot(label=label, position=schedule.next_position(ctx.snapshot.time_slots))
    ctx.snapshot.time_slots.append(slot)
    ctx.sync.save_time_slot(slot, created=True)
    ctx.sync.save()


def delete_timeslot(ctx: ActionContext, payload: Payload) -> None:
    slot = _time_slot(ctx, payload)
    ctx.sync.delete_time_slot(slot.id)
    if ctx.state.editing_time_slot_id == slot.id:
        ctx.state.editing_time_slot_id = None
    ctx.sync.save()


def edit_timeslot(ctx: ActionContext, payload: Payload) -> None:
    ctx.state.editing_time_slot_id = _time_slot(ctx, payload).id


def cancel_edit_timeslot(ctx: ActionContext, payload: Payload) -> None:
    ctx.state.editing_time_slot_id = None


def save_timeslot(ctx: ActionContext, payload: Payload) -> None:
    slot = _time_slot(ctx, payload)
    new_label = _text(payload, "label")
    ctx.state.editing_time_slot_id = None
    if not new_label or new_label == slot.label:
        return
    retargeted = [override for override in ctx.snapshot.schedule_overrides if override.time == slot.label]
    schedule.rename_time_slot(ctx.snapshot, slot.label, new_label)
    slot.label = new_label
    ctx.sync.save_time_slot(slot)
    for override in retargeted:
        ctx.sync.save_override(override)
    ctx.sync.save()


def reorder_timeslot(ctx: ActionContext, payload: Payload) -> None:
    slots = ctx.snapshot.time_slots
    index = _int(payload, "index")
    direction = _text(payload, "direction")
    if direction not in ("up", "down"):
        raise ActionError(f"Unknown direction {direction}")
    other = index - 1 if direction == "up" else index + 1
    if not (0 <= index < len(slots) and 0 <= other < len(slots)):
        raise ActionError("Cannot move the time slot further")
    slots[index], slots[other] = slots[other], slots[index]
    for position, slot in enumerate(slots):
        if slot.position != position:
            slot.position = position
            ctx.sync.save_time_slot(slot)
    ctx.sync.save()


def generate_schedule_slots(ctx: ActionContext, payload: Payload) -> None:
    try:
        generated = schedule.generate_time_slots(
            _text(payload, "start"),
            _text(payload, "end"),
            _int(payload, "class_minutes", default=0),
            break_minutes=_int(payload, "break_minutes", default=0),
            break_start=_text(payload, "break_start") or None,
        )
    except ValueError as exc:
        raise ActionError(str(exc)) from exc
    for slot in list(ctx.snapshot.time_slots):
        ctx.sync.delete_time_slot(slot.id)
    ctx.snapshot.time_slots = generated
    for slot in generated:
        ctx.sync.save_time_slot(slot, created=True)
    ctx.sync.save()


# -- Schedule -----------------------------------------------------------------


def schedule_change(ctx: ActionContext, payload: Payload) -> None:
    key = f"{_required(payload, 'day')}-{_required(payload, 'time')}"
    activity_id = _text(payload, "activity_id")
    if activity_id:
        ctx.snapshot.schedule[key] = activity_id
    else:
        ctx.snapshot.schedule.pop(key, None)
    ctx.sync.save()


def add_schedule_override(ctx: ActionContext, payload: Payload) -> None:
    fields = ("day", "time", "activity_id", "start_date", "end_date")
    if any(not _text(payload, name) for name in fields):
        raise ActionError("Fill in every field of the substitution")
    start = _required_date(payload, "start_date")
    end = _required_date(payload, "end_date")
    if end < start:
        raise ActionError("The end date must not precede the start date")
    override = ScheduleOverride(
        day=_text(payload, "day"),
        time=_text(payload, "time"),
        activity_id=_activity(ctx, payload).id,
        start_date=start,
        end_date=end,
    )
    ctx.snapshot.schedule_overrides.append(override)
    ctx.sync.save_override(override, created=True)
    ctx.sync.save()


def delete_schedule_override(ctx: ActionContext, payload: Payload) -> None:
    ctx.sync.delete_override(_required(payload, "override_id"))
    ctx.sync.save()


# -- Navigation ---------------------------------------------------------------


def select_activity(ctx: ActionContext, payload: Payload) -> None:
    _select_session(ctx, payload)
    ctx.state.active_view = "activityDetail"


def navigate_to_session(ctx: ActionContext, payload: Payload) -> None:
    _select_session(ctx, payload)


def back_to_schedule(ctx: ActionContext, payload: Payload) -> None:
    ctx.state.selected_activity = None
    ctx.state.active_view = "schedule"


def prev_week(ctx: ActionContext, payload: Payload) -> None:
    ctx.state.current_date = schedule.shift_week(ctx.state.current_date, -1)


def next_week(ctx: ActionContext, payload: Payload) -> None:
    ctx.state.current_date = schedule.shift_week(ctx.state.current_date, 1)


def go_to_today(ctx: ActionContext, payload: Payload) -> None:
    ctx.state.current_date = ctx.today()


def set_view(ctx: ActionContext, payload: Payload) -> None:
    view = _required(payload, "view")
    if view not in VIEWS:
        raise ActionError(f"Unknown view {view}")
    ctx.state.active_view = view


# -- Class entries --------------------------------------------------------------


def planned_change(ctx: ActionContext, payload: Payload) -> None:
    _session_entry(ctx).planned = _raw(payload, "value")
    ctx.sync.save()


def completed_change(ctx: ActionContext, payload: Payload) -> None:
    _session_entry(ctx).completed = _raw(payload, "value")
    ctx.sync.save()


def annotation_change(ctx: ActionContext, payload: Payload) -> None:
    student_id = _required(payload, "student_id")
    _session_entry(ctx).annotations[student_id] = _raw(payload, "value")
    ctx.sync.save()


# -- Data management ------------------------------------------------------------


def update_course_date(ctx: ActionContext, payload: Payload) -> None:
    which = _required(payload, "type")
    if which not in ("start", "end"):
        raise ActionError(f"Unknown course date {which}")
    value = _optional_date(payload, "value")
    if which == "start":
        ctx.snapshot.course_start_date = value
    else:
        ctx.snapshot.course_end_date = value
    ctx.sync.save()


def import_data(ctx: ActionContext, payload: Payload) -> None:
    raw = _raw(payload, "data")
    if not raw.strip():
        raise ActionError("The backup file is empty")
    try:
        snapshot = Snapshot.from_backup(json.loads(raw))
    except ValueError as exc:
        raise ActionError(f"Could not import the backup: {exc}") from exc
    ctx.sync.replace_snapshot(snapshot)


def delete_all_data(ctx: ActionContext, payload: Payload) -> None:
    ctx.sync.reset()


_DEFAULT_ACTIONS: tuple[tuple[str, ActionHandler, bool], ...] = (
    ("add-student-to-class", add_student_to_class, True),
    ("add-selected-student-to-class", add_selected_student_to_class, True),
    ("remove-student-from-class", remove_student_from_class, True),
    ("import-students", import_students, True),
    ("select-student", select_student, True),
    ("back-to-classes", back_to_classes, True),
    ("edit-student-name", edit_student_name, False),
    ("edit-student-notes", edit_student_notes, False),
    ("edit-session-annotation", edit_session_annotation, False),
    ("add-activity", add_activity, True),
    ("delete-activity", delete_activity, True),
    ("edit-activity", edit_activity, True),
    ("cancel-edit-activity", cancel_edit_activity, True),
    ("save-activity", save_activity, True),
    ("change-activity-color", change_activity_color, True),
    ("add-timeslot", add_timeslot, True),
    ("delete-timeslot", delete_timeslot, True),
    ("edit-timeslot", edit_timeslot, True),
    ("cancel-edit-timeslot", cancel_edit_timeslot, True),
    ("save-timeslot", save_timeslot, True),
    ("reorder-timeslot", reorder_timeslot, True),
    ("generate-schedule-slots", generate_schedule_slots, True),
    ("schedule-change", schedule_change, True),
    ("add-schedule-override", add_schedule_override, True),
    ("delete-schedule-override", delete_schedule_override, True),
    ("select-activity", select_activity, True),
    ("back-to-schedule", back_to_schedule, True),
    ("navigate-to-session", navigate_to_session, True),
    ("prev-week", prev_week, True),
    ("next-week", next_week, True),
    ("today", go_to_today, True),
    ("set-view", set_view, True),
    ("planned-change", planned_change, False),
    ("completed-change", completed_change, False),
    ("annotation-change", annotation_change, False),
    ("update-course-date", update_course_date, True),
    ("import-data", import_data, True),
    ("delete-all-data", delete_all_data, True),
)


def build_default_registry() -> ActionRegistry:
    registry = ActionRegistry()
    for name, handler, rerender in _DEFAULT_ACTIONS:
        registry.register(name, handler, rerender=rerender)
    return registry


__all__ = [
    "ActionBinding",
    "ActionContext",
    "ActionError",
    "ActionRegistry",
    "ActionResult",
    "build_default_registry",
]
