"""
Domain entities for the planner.

Python attributes and remote rows use snake_case. Backup files and the local
cache use the camelCase aliases (``studentIds``, ``timeSlots``...), which keeps
older exports importable as-is.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

ActivityType = Literal["class", "general"]

# Stored weekday identifiers used in schedule keys ("Lunes-08:00-08:55").
DAY_KEYS: tuple[str, ...] = ("Lunes", "Martes", "Miércoles", "Jueves", "Viernes")


def new_id() -> str:
    return str(uuid.uuid4())


def entry_key(activity_id: str, on_date: date | str) -> str:
    """Key of the ClassEntry for one activity on one date."""
    day = on_date.isoformat() if isinstance(on_date, date) else str(on_date)
    return f"{activity_id}_{day}"


def split_entry_key(key: str) -> tuple[str, str]:
    activity_id, _, day = key.rpartition("_")
    return activity_id, day


def schedule_key(day: str, label: str) -> str:
    return f"{day}-{label}"


def _blank_date(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _Entity(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_row(self) -> Dict[str, Any]:
        """Snake_case JSON-safe row for the remote backend."""
        return self.model_dump(mode="json")

    def to_backup(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Activity(_Entity):
    """A class or general calendar event occupying timetable slots."""

    id: str = Field(default_factory=new_id)
    name: str
    type: ActivityType = "class"
    color: str = "#A0C4FF"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    student_ids: List[str] = Field(default_factory=list)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def blank_dates(cls, value: Any) -> Any:
        return _blank_date(value)

    @field_validator("student_ids", mode="before")
    @classmethod
    def dedupe_students(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            seen: Dict[str, None] = {}
            for item in value:
                seen.setdefault(str(item), None)
            return list(seen)
        return value

    @property
    def is_class(self) -> bool:
        return self.type == "class"


class Student(_Entity):
    id: str = Field(default_factory=new_id)
    name: str
    general_notes: str = ""

    @field_validator("general_notes", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class TimeSlot(_Entity):
    """A named, ordered interval of the school day."""

    id: str = Field(default_factory=new_id)
    label: str
    position: int = Field(default=0, alias="order")

    @field_validator("position", mode="before")
    @classmethod
    def none_to_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class ScheduleOverride(_Entity):
    """A date-bounded substitution of one activity into a day/slot."""

    id: str = Field(default_factory=new_id)
    day: str
    time: str
    activity_id: str
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_window(self) -> "ScheduleOverride":
        if self.end_date < self.start_date:
            raise ValueError("Override end_date must not precede start_date")
        return self

    def covers(self, on_date: date) -> bool:
        return self.start_date <= on_date <= self.end_date


class ClassEntry(_Entity):
    """What was planned and done in one activity on one date, plus per-student notes."""

    planned: str = ""
    completed: str = ""
    annotations: Dict[str, str] = Field(default_factory=dict)

    @field_validator("planned", "completed", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("annotations", mode="before")
    @classmethod
    def none_to_dict(cls, value: Any) -> Any:
        return {} if value is None else value


class CourseSettings(_Entity):
    course_start_date: Optional[date] = None
    course_end_date: Optional[date] = None

    @field_validator("course_start_date", "course_end_date", mode="before")
    @classmethod
    def blank_dates(cls, value: Any) -> Any:
        return _blank_date(value)

    @property
    def is_set(self) -> bool:
        return self.course_start_date is not None or self.course_end_date is not None


class Snapshot(_Entity):
    """Everything that gets persisted, in one document."""

    activities: List[Activity] = Field(default_factory=list)
    students: List[Student] = Field(default_factory=list)
    time_slots: List[TimeSlot] = Field(default_factory=list)
    schedule: Dict[str, str] = Field(default_factory=dict)
    schedule_overrides: List[ScheduleOverride] = Field(default_factory=list)
    class_entries: Dict[str, ClassEntry] = Field(default_factory=dict)
    course_start_date: Optional[date] = None
    course_end_date: Optional[date] = None

    @field_validator("course_start_date", "course_end_date", mode="before")
    @classmethod
    def blank_dates(cls, value: Any) -> Any:
        return _blank_date(value)

    @field_validator("schedule", mode="before")
    @classmethod
    def drop_empty_cells(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(key): str(activity) for key, activity in value.items() if activity}
        return {} if value is None else value

    @field_validator("activities", "students", "time_slots", "schedule_overrides", mode="before")
    @classmethod
    def none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("class_entries", mode="before")
    @classmethod
    def none_to_mapping(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def course(self) -> CourseSettings:
        return CourseSettings(course_start_date=self.course_start_date, course_end_date=self.course_end_date)

    def has_data(self) -> bool:
        return bool(self.activities or self.students or self.time_slots or self.schedule)

    def find_activity(self, activity_id: str | None) -> Activity | None:
        if not activity_id:
            return None
        return next((activity for activity in self.activities if activity.id == activity_id), None)

    def find_student(self, student_id: str | None) -> Student | None:
        if not student_id:
            return None
        return next((student for student in self.students if student.id == student_id), None)

    def find_student_by_name(self, name: str) -> Student | None:
        normalized = name.strip().lower()
        return next((student for student in self.students if student.name.lower() == normalized), None)

    def counts(self) -> Dict[str, int]:
        return {
            "activities": len(self.activities),
            "students": len(self.students),
            "time_slots": len(self.time_slots),
            "schedule_cells": len(self.schedule),
            "schedule_overrides": len(self.schedule_overrides),
            "class_entries": len(self.class_entries),
        }

    @classmethod
    def from_backup(cls, payload: Any) -> "Snapshot":
        """Parse a backup/cache document, accepting camelCase or snake_case keys."""
        if not isinstance(payload, dict):
            raise ValueError(f"Expected a JSON object for planbook data, received {type(payload).__name__}")
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise ValueError("Invalid planbook data") from exc


__all__ = [
    "Activity",
    "ActivityType",
    "ClassEntry",
    "CourseSettings",
    "DAY_KEYS",
    "ScheduleOverride",
    "Snapshot",
    "Student",
    "TimeSlot",
    "entry_key",
    "new_id",
    "schedule_key",
    "split_entry_key",
]
