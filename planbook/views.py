"""HTML renderers: each view turns the state tree into a page fragment."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from planbook import schedule
from planbook.core.models import DAY_KEYS, Activity, ClassEntry, Student, entry_key, split_entry_key
from planbook.i18n import SUPPORTED_LANGUAGES, Translator
from planbook.state import AppState

TEMPLATES_DIR = Path(__file__).with_name("templates")
DELETED_ACTIVITY_COLOR = "#cccccc"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)
_env.globals["darken_color"] = schedule.darken_color
_env.globals["day_keys"] = DAY_KEYS


@dataclass
class AnnotationItem:
    entry_key: str
    date: date
    activity_name: str
    activity_color: str
    annotation: str


def _render(template: str, translator: Translator, **context: Any) -> str:
    return _env.get_template(template).render(t=translator, **context)


def render_schedule_view(state: AppState, translator: Translator, *, today: date | None = None) -> str:
    today = today or date.today()
    days = [
        {"key": day, "date": day_date, "is_today": day_date == today}
        for day, day_date in zip(DAY_KEYS, schedule.week_dates(state.current_date))
    ]
    return _render(
        "schedule.html",
        translator,
        days=days,
        rows=schedule.build_week_grid(state.snapshot, state.current_date, today),
        week_label=schedule.week_range_label(state.current_date),
    )


def render_classes_view(state: AppState, translator: Translator) -> str:
    snapshot = state.snapshot
    classes = []
    for activity in snapshot.activities:
        if not activity.is_class:
            continue
        enrolled = [student for student in snapshot.students if student.id in activity.student_ids]
        available = [student for student in snapshot.students if student.id not in activity.student_ids]
        classes.append({"activity": activity, "enrolled": enrolled, "available": available})
    return _render("classes.html", translator, classes=classes)


def student_annotations(state: AppState, student: Student, translator: Translator) -> List[AnnotationItem]:
    """Non-empty notes about one student across every session, newest first."""
    items: List[AnnotationItem] = []
    for key, entry in state.snapshot.class_entries.items():
        note = entry.annotations.get(student.id, "")
        if not note.strip():
            continue
        activity_id, raw_date = split_entry_key(key)
        try:
            entry_date = date.fromisoformat(raw_date)
        except ValueError:
            continue
        activity = state.snapshot.find_activity(activity_id)
        items.append(
            AnnotationItem(
                entry_key=key,
                date=entry_date,
                activity_name=activity.name if activity else translator("deleted_class"),
                activity_color=activity.color if activity else DELETED_ACTIVITY_COLOR,
                annotation=note,
            )
        )
    items.sort(key=lambda item: item.date, reverse=True)
    return items


def render_student_detail_view(state: AppState, translator: Translator) -> str:
    student = state.snapshot.find_student(state.selected_student_id)
    if student is None:
        return _render("student_detail.html", translator, student=None)
    enrolled = [
        activity
        for activity in state.snapshot.activities
        if activity.is_class and student.id in activity.student_ids
    ]
    return _render(
        "student_detail.html",
        translator,
        student=student,
        enrolled=enrolled,
        annotations=student_annotations(state, student, translator),
    )


def render_settings_view(state: AppState, translator: Translator) -> str:
    snapshot = state.snapshot
    overrides = [
        {"override": override, "activity": snapshot.find_activity(override.activity_id)}
        for override in snapshot.schedule_overrides
    ]
    return _render(
        "settings.html",
        translator,
        snapshot=snapshot,
        classes=[activity for activity in snapshot.activities if activity.is_class],
        editing_activity_id=state.editing_activity_id,
        editing_time_slot_id=state.editing_time_slot_id,
        overrides=overrides,
    )


def render_activity_detail_view(state: AppState, translator: Translator) -> str:
    session = state.selected_activity
    activity: Optional[Activity] = state.snapshot.find_activity(session.activity_id) if session else None
    if session is None or activity is None:
        return _render("activity_detail.html", translator, session=None, activity=None)
    entry = state.snapshot.class_entries.get(entry_key(activity.id, session.date)) or ClassEntry()
    students = [student for student in state.snapshot.students if student.id in activity.student_ids]
    return _render(
        "activity_detail.html",
        translator,
        session=session,
        activity=activity,
        entry=entry,
        students=students,
        previous_session=schedule.find_previous_session(state.snapshot, activity.id, session.date),
        next_session=schedule.find_next_session(state.snapshot, activity.id, session.date),
    )


def render_view(state: AppState, translator: Translator, *, today: date | None = None) -> str:
    view = state.active_view
    if view == "classes":
        return render_classes_view(state, translator)
    if view == "settings":
        return render_settings_view(state, translator)
    if view == "studentDetail":
        return render_student_detail_view(state, translator)
    if view == "activityDetail":
        return render_activity_detail_view(state, translator)
    return render_schedule_view(state, translator, today=today)


def render_page(
    state: AppState,
    translator: Translator,
    *,
    today: date | None = None,
    error: str | None = None,
    auth_enabled: bool = False,
) -> str:
    """Full document: navigation, language switcher, online indicator and the active view."""
    return _render(
        "layout.html",
        translator,
        content=render_view(state, translator, today=today),
        active_view=state.active_view,
        is_online=state.is_online,
        language=translator.language,
        languages=SUPPORTED_LANGUAGES,
        error=error,
        auth_enabled=auth_enabled,
    )


def render_login_page(translator: Translator, *, failed: bool = False) -> str:
    return _render(
        "login.html",
        translator,
        failed=failed,
        language=translator.language,
        languages=SUPPORTED_LANGUAGES,
    )


def view_context_summary(state: AppState) -> Dict[str, Any]:
    """Plain summary of what the active view points at, used by the JSON state endpoint."""
    session = state.selected_activity
    return {
        "active_view": state.active_view,
        "current_date": state.current_date.isoformat(),
        "week": schedule.week_range_label(state.current_date),
        "selected_activity": (
            {
                "activity_id": session.activity_id,
                "day": session.day,
                "time": session.time,
                "date": session.date.isoformat(),
            }
            if session
            else None
        ),
        "selected_student_id": state.selected_student_id,
        "language": state.language,
        "is_online": state.is_online,
    }
