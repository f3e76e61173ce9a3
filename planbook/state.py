"""In-memory planner state and its synchronization with the backend and the local cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional

from persistence.database import DatabaseService
from persistence.local_store import LocalCache
from persistence.remote import RemoteError
from planbook.core.journal import SyncEvent, SyncJournal
from planbook.core.models import Activity, ScheduleOverride, Snapshot, Student, TimeSlot

LOGGER = logging.getLogger("planbook.state")

VIEWS = ("schedule", "classes", "studentDetail", "settings", "activityDetail")

StatusListener = Callable[[bool], None]


@dataclass
class SessionRef:
    """The activity session open in the detail view."""

    activity_id: str
    day: str
    time: str
    date: date


@dataclass
class AppState:
    snapshot: Snapshot = field(default_factory=Snapshot)
    active_view: str = "schedule"
    current_date: date = field(default_factory=date.today)
    selected_activity: Optional[SessionRef] = None
    selected_student_id: Optional[str] = None
    editing_time_slot_id: Optional[str] = None
    editing_activity_id: Optional[str] = None
    is_loading: bool = False
    is_online: bool = True
    language: str = "es"

    def reset_navigation(self) -> None:
        self.active_view = "schedule"
        self.selected_activity = None
        self.selected_student_id = None
        self.editing_time_slot_id = None
        self.editing_activity_id = None


class StateSynchronizer:
    """Moves the state tree between memory, the remote backend and the local cache.

    Remote writes are best effort: the database service absorbs backend errors,
    so the local cache always holds the latest copy and the online flag follows
    the service's health.
    """

    def __init__(
        self,
        state: AppState,
        db: DatabaseService,
        cache: LocalCache,
        *,
        journal: SyncJournal | None = None,
    ) -> None:
        self.state = state
        self.db = db
        self.cache = cache
        self.journal = journal
        self._listeners: List[StatusListener] = []

    # -- Status -------------------------------------------------------------

    def add_status_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> None:
        changed = online != self.state.is_online
        self.state.is_online = online
        if not changed:
            return
        LOGGER.info("Planbook is now %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)

    # -- Load / save --------------------------------------------------------

    def load(self) -> str:
        """Populate the state and return where the data came from.

        One of ``remote``, ``migrated`` or ``cache``.
        """
        self.state.is_loading = True
        source = "cache"
        try:
            self.db.initialize_schema()
            if not self.db.is_remote_available():
                self._load_from_cache()
                self.set_online(False)
            else:
                failures = self.db.failure_count
                snapshot = self.db.fetch_snapshot()
                if self.db.failure_count > failures:
                    self.db.healthy = False
                    self._load_from_cache()
                elif not snapshot.has_data() and self.cache.has_snapshot():
                    source = self._migrate_from_cache(snapshot)
                else:
                    self.state.snapshot = snapshot
                    source = "remote"
                self.set_online(self.db.healthy)
        except (RemoteError, ValueError) as exc:
            LOGGER.error("Loading from the backend failed, using the local cache: %s", exc)
            self.set_online(False)
            self._load_from_cache()
            source = "cache"
        finally:
            self.state.is_loading = False
        self._journal("load", f"State loaded from {source}", payload=self.state.snapshot.counts())
        return source

    def _load_from_cache(self) -> None:
        cached = self.cache.load_snapshot()
        if cached is not None:
            self.state.snapshot = cached
            LOGGER.info("State loaded from the local cache.")

    def _migrate_from_cache(self, remote_snapshot: Snapshot) -> str:
        local = self.cache.load_snapshot()
        if local is None or not local.has_data():
            self.state.snapshot = remote_snapshot
            return "remote"
        LOGGER.info("Backend is empty; migrating the local cache.")
        try:
            self.db.migrate_from_local(local)
        except RemoteError:
            self.state.snapshot = local
            return "cache"
        self.state.snapshot = self.db.fetch_snapshot()
        return "migrated"

    def save(self) -> None:
        """Push the frequently changing parts and refresh the local copy."""
        if self.state.is_loading:
            return
        snapshot = self.state.snapshot
        try:
            if self.db.is_remote_available():
                if snapshot.course.is_set:
                    self.db.update_course_settings(snapshot.course)
                current = self.db.get_schedule()
                for key, activity_id in snapshot.schedule.items():
                    if current.get(key) != activity_id:
                        self.db.update_schedule_slot(key, activity_id)
                # An empty tree (failed load, fresh reset) never prunes remote cells.
                removable = current if snapshot.has_data() else {}
                for key in removable:
                    if key not in snapshot.schedule:
                        self.db.update_schedule_slot(key, None)
                for key, entry in snapshot.class_entries.items():
                    self.db.update_class_entry(key, entry)
        finally:
            self.cache.save_snapshot(snapshot)
            self.set_online(self.db.is_remote_available() and self.db.healthy)

    # -- Entity writes ------------------------------------------------------

    def save_activity(self, activity: Activity, *, created: bool = False) -> Activity:
        if created:
            stored = self.db.create_activity(activity)
            _replace(self.state.snapshot.activities, activity.id, stored)
            return stored
        return self.db.update_activity(activity)

    def save_student(self, student: Student, *, created: bool = False) -> Student:
        if created:
            stored = self.db.create_student(student)
            _replace(self.state.snapshot.students, student.id, stored)
            return stored
        return self.db.update_student(student)

    def save_time_slot(self, time_slot: TimeSlot, *, created: bool = False) -> TimeSlot:
        if created:
            stored = self.db.create_time_slot(time_slot)
            _replace(self.state.snapshot.time_slots, time_slot.id, stored)
            return stored
        return self.db.update_time_slot(time_slot)

    def save_override(self, override: ScheduleOverride, *, created: bool = False) -> ScheduleOverride:
        if created:
            stored = self.db.create_schedule_override(override)
            _replace(self.state.snapshot.schedule_overrides, override.id, stored)
            return stored
        return self.db.update_schedule_override(override)

    def delete_activity(self, activity_id: str) -> None:
        self.db.delete_activity(activity_id)
        snapshot = self.state.snapshot
        snapshot.activities = [activity for activity in snapshot.activities if activity.id != activity_id]

    def delete_student(self, student_id: str) -> None:
        self.db.delete_student(student_id)
        snapshot = self.state.snapshot
        snapshot.students = [student for student in snapshot.students if student.id != student_id]

    def delete_time_slot(self, time_slot_id: str) -> None:
        self.db.delete_time_slot(time_slot_id)
        snapshot = self.state.snapshot
        snapshot.time_slots = [slot for slot in snapshot.time_slots if slot.id != time_slot_id]

    def delete_override(self, override_id: str) -> None:
        self.db.delete_schedule_override(override_id)
        snapshot = self.state.snapshot
        snapshot.schedule_overrides = [
            override for override in snapshot.schedule_overrides if override.id != override_id
        ]

    # -- Whole snapshots ----------------------------------------------------

    def push_snapshot(self, snapshot: Snapshot | None = None, *, prune: bool = False) -> bool:
        """Send a whole snapshot to the backend.

        With ``prune`` the remote activities, students, time slots, overrides and
        schedule cells missing from the snapshot are deleted, so the backend mirrors it.
        """
        snapshot = snapshot or self.state.snapshot
        if not self.db.is_remote_available():
            return False
        if prune:
            self._prune_remote(snapshot)
        try:
            return self.db.migrate_from_local(snapshot)
        except RemoteError as exc:
            LOGGER.error("Pushing the snapshot failed: %s", exc)
            return False
        finally:
            self.set_online(self.db.healthy)

    def _prune_remote(self, snapshot: Snapshot) -> None:
        keep = {activity.id for activity in snapshot.activities}
        for activity in self.db.get_activities():
            if activity.id not in keep:
                self.db.delete_activity(activity.id)
        keep = {student.id for student in snapshot.students}
        for student in self.db.get_students():
            if student.id not in keep:
                self.db.delete_student(student.id)
        keep = {slot.id for slot in snapshot.time_slots}
        for slot in self.db.get_time_slots():
            if slot.id not in keep:
                self.db.delete_time_slot(slot.id)
        keep = {override.id for override in snapshot.schedule_overrides}
        for override in self.db.get_schedule_overrides():
            if override.id not in keep:
                self.db.delete_schedule_override(override.id)
        for key in self.db.get_schedule():
            if key not in snapshot.schedule:
                self.db.update_schedule_slot(key, None)

    def replace_snapshot(self, snapshot: Snapshot) -> None:
        """Swap in imported data, mirror it remotely and rewrite the cache."""
        self.state.snapshot = snapshot
        self.state.reset_navigation()
        self.push_snapshot(snapshot, prune=True)
        self.save()
        self._journal("import", "Snapshot replaced", payload=snapshot.counts())

    def reset(self) -> str:
        """Drop the local copy and reload from the backend; remote rows are untouched.

        Offline this leaves an empty state.
        """
        self.cache.clear_snapshot()
        self.state.snapshot = Snapshot()
        self.state.reset_navigation()
        source = self.load()
        self._journal("reset", "Local data cleared", payload={"reloaded_from": source})
        return source

    def _journal(self, stage: str, message: str, *, payload: dict | None = None) -> None:
        if self.journal is None:
            return
        self.journal.log(SyncEvent(stage=stage, message=message, payload=payload or {}))


def _replace(items: list, entity_id: str, stored) -> None:
    for index, item in enumerate(items):
        if item.id == entity_id:
            items[index] = stored
            return
    items.append(stored)
