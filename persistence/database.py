"""Database service: remote CRUD with best-effort fallback values.

Every call first checks whether the remote backend is usable. A failing call is
logged, recorded in the sync journal and answered with a fallback (empty reads,
echoed writes) so the UI keeps working from memory and the local cache.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from planbook.core.journal import SyncEvent, SyncJournal
from planbook.core.models import (
    Activity,
    ClassEntry,
    CourseSettings,
    ScheduleOverride,
    Snapshot,
    Student,
    TimeSlot,
    split_entry_key,
)

from .remote import Remote, RemoteError

LOGGER = logging.getLogger("planbook.database")

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseService:
    def __init__(self, remote: Remote | None, *, journal: SyncJournal | None = None) -> None:
        self.remote = remote
        self.journal = journal
        self.initialized = False
        self.use_remote = remote is not None
        self.healthy = remote is not None
        self.last_error: str | None = None
        self.failure_count = 0

    def is_remote_available(self) -> bool:
        return self.use_remote and self.remote is not None

    def initialize_schema(self) -> bool:
        """Check the backend once; a failing check disables the remote for this process."""
        if not self.is_remote_available():
            LOGGER.info("Remote backend unavailable; using the local cache.")
            self.initialized = True
            self.healthy = False
            return False
        try:
            self.remote.select("activities", columns="id", limit=1)
        except RemoteError as exc:
            LOGGER.error("Schema check failed, continuing with the local cache: %s", exc)
            self._record_failure("activities", "schema-check", exc)
            self.use_remote = False
            self.initialized = True
            return False
        LOGGER.debug("Remote schema verified.")
        self.initialized = True
        self.healthy = True
        return True

    # -- Activities -------------------------------------------------------

    def get_activities(self) -> List[Activity]:
        return self._attempt(
            "activities",
            "select",
            lambda: self._parse_rows(Activity, self.remote.select("activities", order="name"), "activities"),
            [],
        )

    def create_activity(self, activity: Activity) -> Activity:
        return self._attempt(
            "activities",
            "insert",
            lambda: Activity.model_validate(self.remote.insert("activities", activity.to_row())),
            activity,
        )

    def update_activity(self, activity: Activity) -> Activity:
        return self._attempt(
            "activities",
            "update",
            lambda: self._updated(Activity, "activities", activity),
            activity,
        )

    def delete_activity(self, activity_id: str) -> None:
        self._attempt(
            "activities",
            "delete",
            lambda: self.remote.delete("activities", filters={"id": activity_id}),
            None,
        )

    # -- Students ---------------------------------------------------------

    def get_students(self) -> List[Student]:
        return self._attempt(
            "students",
            "select",
            lambda: self._parse_rows(Student, self.remote.select("students", order="name"), "students"),
            [],
        )

    def create_student(self, student: Student) -> Student:
        return self._attempt(
            "students",
            "insert",
            lambda: Student.model_validate(self.remote.insert("students", student.to_row())),
            student,
        )

    def update_student(self, student: Student) -> Student:
        return self._attempt(
            "students",
            "update",
            lambda: self._updated(Student, "students", student),
            student,
        )

    def delete_student(self, student_id: str) -> None:
        self._attempt(
            "students",
            "delete",
            lambda: self.remote.delete("students", filters={"id": student_id}),
            None,
        )

    # -- Time slots -------------------------------------------------------

    def get_time_slots(self) -> List[TimeSlot]:
        return self._attempt(
            "time_slots",
            "select",
            lambda: self._parse_rows(TimeSlot, self.remote.select("time_slots", order="position"), "time_slots"),
            [],
        )

    def create_time_slot(self, time_slot: TimeSlot) -> TimeSlot:
        return self._attempt(
            "time_slots",
            "insert",
            lambda: TimeSlot.model_validate(self.remote.insert("time_slots", time_slot.to_row())),
            time_slot,
        )

    def update_time_slot(self, time_slot: TimeSlot) -> TimeSlot:
        return self._attempt(
            "time_slots",
            "update",
            lambda: self._updated(TimeSlot, "time_slots", time_slot),
            time_slot,
        )

    def delete_time_slot(self, time_slot_id: str) -> None:
        self._attempt(
            "time_slots",
            "delete",
            lambda: self.remote.delete("time_slots", filters={"id": time_slot_id}),
            None,
        )

    # -- Weekly schedule --------------------------------------------------

    def get_schedule(self) -> Dict[str, str]:
        def _load() -> Dict[str, str]:
            rows = self.remote.select("schedules")
            return {
                str(row["day_time_key"]): str(row["activity_id"])
                for row in rows
                if row.get("day_time_key") and row.get("activity_id")
            }

        return self._attempt("schedules", "select", _load, {})

    def update_schedule_slot(self, day_time_key: str, activity_id: str | None) -> None:
        """Upsert one timetable cell; an empty activity id removes the cell."""

        def _write() -> None:
            if activity_id:
                self.remote.upsert(
                    "schedules",
                    {"day_time_key": day_time_key, "activity_id": activity_id, "updated_at": _now()},
                    on_conflict="day_time_key",
                )
            else:
                self.remote.delete("schedules", filters={"day_time_key": day_time_key})

        self._attempt("schedules", "upsert" if activity_id else "delete", _write, None)

    # -- Schedule overrides -----------------------------------------------

    def get_schedule_overrides(self) -> List[ScheduleOverride]:
        return self._attempt(
            "schedule_overrides",
            "select",
            lambda: self._parse_rows(
                ScheduleOverride,
                self.remote.select("schedule_overrides", order="start_date"),
                "schedule_overrides",
            ),
            [],
        )

    def create_schedule_override(self, override: ScheduleOverride) -> ScheduleOverride:
        return self._attempt(
            "schedule_overrides",
            "insert",
            lambda: ScheduleOverride.model_validate(self.remote.insert("schedule_overrides", override.to_row())),
            override,
        )

    def update_schedule_override(self, override: ScheduleOverride) -> ScheduleOverride:
        return self._attempt(
            "schedule_overrides",
            "update",
            lambda: self._updated(ScheduleOverride, "schedule_overrides", override),
            override,
        )

    def delete_schedule_override(self, override_id: str) -> None:
        self._attempt(
            "schedule_overrides",
            "delete",
            lambda: self.remote.delete("schedule_overrides", filters={"id": override_id}),
            None,
        )

    # -- Class entries ----------------------------------------------------

    def get_class_entries(self) -> Dict[str, ClassEntry]:
        def _load() -> Dict[str, ClassEntry]:
            entries: Dict[str, ClassEntry] = {}
            for row in self.remote.select("class_entries", order="date"):
                key = row.get("entry_key")
                if not key:
                    continue
                try:
                    entries[str(key)] = ClassEntry.model_validate(row)
                except ValidationError as exc:
                    LOGGER.warning("Skipping malformed class entry %s: %s", key, exc)
            return entries

        return self._attempt("class_entries", "select", _load, {})

    def update_class_entry(self, key: str, entry: ClassEntry) -> None:
        activity_id, day = split_entry_key(key)
        row = {
            "entry_key": key,
            "activity_id": activity_id,
            "date": day,
            "planned": entry.planned,
            "completed": entry.completed,
            "annotations": dict(entry.annotations),
            "updated_at": _now(),
        }
        self._attempt(
            "class_entries",
            "upsert",
            lambda: self.remote.upsert("class_entries", row, on_conflict="entry_key"),
            None,
        )

    # -- Course settings --------------------------------------------------

    def get_course_settings(self) -> CourseSettings:
        def _load() -> CourseSettings:
            rows = self.remote.select("course_settings", order="created_at", descending=True, limit=1)
            if not rows:
                return CourseSettings()
            return CourseSettings(
                course_start_date=rows[0].get("start_date"),
                course_end_date=rows[0].get("end_date"),
            )

        return self._attempt("course_settings", "select", _load, CourseSettings())

    def update_course_settings(self, settings: CourseSettings) -> None:
        """Update the newest settings row, inserting one when none exists."""
        self._attempt("course_settings", "upsert", lambda: self._write_course_settings(settings), None)

    def _write_course_settings(self, settings: CourseSettings) -> None:
        values = {
            "start_date": settings.course_start_date.isoformat() if settings.course_start_date else None,
            "end_date": settings.course_end_date.isoformat() if settings.course_end_date else None,
        }
        existing = self.remote.select("course_settings", columns="id", order="created_at", descending=True, limit=1)
        if existing:
            self.remote.update(
                "course_settings",
                {**values, "updated_at": _now()},
                filters={"id": existing[0]["id"]},
            )
        else:
            self.remote.insert("course_settings", values)

    # -- Bulk -------------------------------------------------------------

    def fetch_snapshot(self) -> Snapshot:
        """Read every table; failing tables contribute their fallback value."""
        settings = self.get_course_settings()
        return Snapshot(
            activities=self.get_activities(),
            students=self.get_students(),
            time_slots=self.get_time_slots(),
            schedule=self.get_schedule(),
            schedule_overrides=self.get_schedule_overrides(),
            class_entries=self.get_class_entries(),
            course_start_date=settings.course_start_date,
            course_end_date=settings.course_end_date,
        )

    def migrate_from_local(self, snapshot: Snapshot) -> bool:
        """Copy a local snapshot to the backend entity by entity.

        There is no transaction: a failure part-way leaves the rows written so
        far in place and re-raises. Rows are upserted, so re-running a partial
        migration converges instead of tripping over duplicates.
        """
        if not self.is_remote_available():
            LOGGER.info("Remote backend unavailable, skipping migration.")
            return False

        self._journal("migrate", "Starting migration from the local cache", payload=snapshot.counts())
        try:
            if snapshot.course.is_set:
                self._write_course_settings(snapshot.course)
            for student in snapshot.students:
                self.remote.upsert("students", student.to_row())
            for time_slot in snapshot.time_slots:
                self.remote.upsert("time_slots", time_slot.to_row())
            for activity in snapshot.activities:
                self.remote.upsert("activities", activity.to_row())
            for day_time_key, activity_id in snapshot.schedule.items():
                self.remote.upsert(
                    "schedules",
                    {"day_time_key": day_time_key, "activity_id": activity_id, "updated_at": _now()},
                    on_conflict="day_time_key",
                )
            for override in snapshot.schedule_overrides:
                self.remote.upsert("schedule_overrides", override.to_row())
            for key, entry in snapshot.class_entries.items():
                activity_id, day = split_entry_key(key)
                self.remote.upsert(
                    "class_entries",
                    {
                        "entry_key": key,
                        "activity_id": activity_id,
                        "date": day,
                        "planned": entry.planned,
                        "completed": entry.completed,
                        "annotations": dict(entry.annotations),
                        "updated_at": _now(),
                    },
                    on_conflict="entry_key",
                )
        except RemoteError as exc:
            LOGGER.error("Data migration failed: %s", exc)
            self._record_failure("snapshot", "migrate", exc)
            raise
        self.healthy = True
        self._journal("migrate", "Migration completed")
        return True

    # -- Internals --------------------------------------------------------

    def _attempt(self, entity: str, operation: str, func: Callable[[], T], fallback: T) -> T:
        if not self.is_remote_available():
            return fallback
        try:
            result = func()
        except RemoteError as exc:
            LOGGER.error("Remote %s on %s failed; using fallback: %s", operation, entity, exc)
            self._record_failure(entity, operation, exc)
            return fallback
        self.healthy = True
        return result

    def _updated(self, model: Type[M], table: str, entity: M) -> M:
        values = {**entity.to_row(), "updated_at": _now()}
        values.pop("id", None)
        rows = self.remote.update(table, values, filters={"id": entity.id})
        if not rows:
            return entity
        return model.model_validate(rows[0])

    def _parse_rows(self, model: Type[M], rows: List[Dict[str, Any]], entity: str) -> List[M]:
        parsed: List[M] = []
        for row in rows:
            try:
                parsed.append(model.model_validate(row))
            except ValidationError as exc:
                LOGGER.warning("Skipping malformed %s row %s: %s", entity, row.get("id"), exc)
        return parsed

    def _record_failure(self, entity: str, operation: str, exc: RemoteError) -> None:
        self.healthy = False
        self.failure_count += 1
        self.last_error = str(exc)
        self._journal(
            "fallback",
            f"Remote {operation} failed",
            entity=entity,
            payload={"error": str(exc), "status_code": exc.status_code},
        )

    def _journal(self, stage: str, message: str, *, entity: str | None = None, payload: Dict[str, Any] | None = None) -> None:
        if self.journal is None:
            return
        self.journal.log(SyncEvent(stage=stage, message=message, entity=entity, payload=payload or {}))
