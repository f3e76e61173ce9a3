from datetime import date

import pytest

from persistence.database import DatabaseService
from persistence.local_store import LocalCache, LocalStore
from persistence.remote import InMemoryRemote, RemoteError
from planbook.core.journal import SyncJournal
from planbook.core.models import Activity, ClassEntry, Snapshot, Student, TimeSlot
from planbook.state import AppState, StateSynchronizer


class FlakyRemote(InMemoryRemote):
    """Backend whose reads of one table always fail."""

    def __init__(self, broken_table: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.broken_table = broken_table

    def select(self, table, **kwargs):
        if table == self.broken_table:
            raise RemoteError(f"{table} unavailable", status_code=503)
        return super().select(table, **kwargs)


class FailingUpsertRemote(InMemoryRemote):
    """Backend that reads fine but rejects every upsert."""

    def upsert(self, table, row, *, on_conflict=None):
        raise RemoteError(f"upsert into {table} rejected", status_code=500)


def _local_snapshot() -> Snapshot:
    return Snapshot(
        activities=[Activity(id="a1", name="Math 1A", student_ids=["s1"])],
        students=[Student(id="s1", name="Ana")],
        time_slots=[TimeSlot(id="t1", label="08:00-08:55")],
        schedule={"Lunes-08:00-08:55": "a1"},
        class_entries={"a1_2024-09-16": ClassEntry(planned="Fractions")},
        course_start_date=date(2024, 9, 9),
    )


@pytest.fixture()
def cache(tmp_path) -> LocalCache:
    return LocalCache(LocalStore(tmp_path / "cache.sqlite"))


@pytest.fixture()
def journal(tmp_path) -> SyncJournal:
    return SyncJournal(tmp_path / "sync.jsonl")


def _sync(remote, cache, journal=None) -> StateSynchronizer:
    return StateSynchronizer(AppState(), DatabaseService(remote, journal=journal), cache, journal=journal)


def test_load_without_remote_uses_cache_and_goes_offline(cache, journal) -> None:
    cache.save_snapshot(_local_snapshot())
    sync = _sync(None, cache, journal)
    statuses = []
    sync.add_status_listener(statuses.append)

    assert sync.load() == "cache"
    assert sync.state.snapshot.students[0].name == "Ana"
    assert sync.state.is_online is False
    assert sync.state.is_loading is False
    assert statuses == [False]
    assert journal.tail()[-1].stage == "load"


def test_load_prefers_remote_data(cache) -> None:
    cache.save_snapshot(_local_snapshot())
    remote = InMemoryRemote({"students": [{"id": "r1", "name": "Remote student"}]})
    sync = _sync(remote, cache)

    assert sync.load() == "remote"
    assert [student.id for student in sync.state.snapshot.students] == ["r1"]
    assert sync.state.is_online is True


def test_empty_backend_is_seeded_from_cache(cache) -> None:
    cache.save_snapshot(_local_snapshot())
    remote = InMemoryRemote()
    sync = _sync(remote, cache)

    assert sync.load() == "migrated"
    assert [row["id"] for row in remote.tables["students"]] == ["s1"]
    assert remote.tables["schedules"][0]["day_time_key"] == "Lunes-08:00-08:55"
    assert sync.state.snapshot.counts() == _local_snapshot().counts()
    assert sync.state.snapshot.course_start_date == date(2024, 9, 9)


def test_partial_remote_failure_falls_back_to_cache(cache) -> None:
    cache.save_snapshot(_local_snapshot())
    remote = FlakyRemote("students", tables={"activities": [{"id": "x", "name": "Remote only"}]})
    sync = _sync(remote, cache)

    assert sync.load() == "cache"
    assert sync.state.snapshot.find_activity("a1") is not None
    assert sync.state.is_online is False


def test_unreachable_backend_at_startup(cache) -> None:
    remote = InMemoryRemote()
    remote.fail_with = RemoteError("connection refused")
    sync = _sync(remote, cache)

    assert sync.load() == "cache"
    assert sync.state.snapshot.has_data() is False
    assert sync.state.is_online is False


def test_save_diffs_schedule_and_upserts_entries(cache) -> None:
    remote = InMemoryRemote(
        {
            "activities": [{"id": "a1", "name": "Math"}],
            "schedules": [
                {"day_time_key": "Lunes-08:00-08:55", "activity_id": "a1"},
                {"day_time_key": "Martes-08:00-08:55", "activity_id": "a1"},
            ],
        }
    )
    sync = _sync(remote, cache)
    sync.load()
    snapshot = sync.state.snapshot
    del snapshot.schedule["Martes-08:00-08:55"]
    snapshot.schedule["Viernes-08:00-08:55"] = "a1"
    snapshot.class_entries["a1_2024-09-20"] = ClassEntry(completed="Quiz")
    snapshot.course_end_date = date(2025, 6, 20)

    sync.save()

    keys = sorted(row["day_time_key"] for row in remote.tables["schedules"])
    assert keys == ["Lunes-08:00-08:55", "Viernes-08:00-08:55"]
    assert remote.tables["class_entries"][0]["completed"] == "Quiz"
    assert remote.tables["course_settings"][0]["end_date"] == "2025-06-20"
    assert cache.load_snapshot().schedule == snapshot.schedule


def test_save_is_skipped_while_loading(cache) -> None:
    sync = _sync(InMemoryRemote(), cache)
    sync.state.is_loading = True

    sync.save()

    assert cache.has_snapshot() is False


def test_save_keeps_local_copy_when_backend_fails(cache) -> None:
    remote = InMemoryRemote()
    sync = _sync(remote, cache)
    sync.load()
    statuses = []
    sync.add_status_listener(statuses.append)
    sync.state.snapshot.schedule["Lunes-08:00-08:55"] = "a1"
    remote.fail_with = RemoteError("timeout")

    sync.save()

    assert cache.load_snapshot().schedule == {"Lunes-08:00-08:55": "a1"}
    assert statuses == [False]

    remote.fail_with = None
    sync.save()
    assert statuses == [False, True]
    assert remote.tables["schedules"][0]["activity_id"] == "a1"


def test_entity_writes_keep_state_and_remote_in_step(cache) -> None:
    remote = InMemoryRemote()
    sync = _sync(remote, cache)
    sync.load()
    student = Student(id="s9", name="Bea")
    sync.state.snapshot.students.append(student)

    sync.save_student(student, created=True)
    student.name = "Bea R."
    sync.save_student(student)
    assert remote.tables["students"][0]["name"] == "Bea R."
    assert len(sync.state.snapshot.students) == 1

    sync.delete_student("s9")
    assert sync.state.snapshot.students == []
    assert remote.tables["students"] == []


def test_replace_snapshot_mirrors_import(cache, journal) -> None:
    remote = InMemoryRemote(
        {
            "students": [{"id": "old", "name": "Old student"}],
            "activities": [{"id": "old-act", "name": "Old class"}],
        }
    )
    sync = _sync(remote, cache, journal)
    sync.load()
    sync.state.active_view = "settings"

    sync.replace_snapshot(_local_snapshot())

    assert [row["id"] for row in remote.tables["students"]] == ["s1"]
    assert [row["id"] for row in remote.tables["activities"]] == ["a1"]
    assert sync.state.active_view == "schedule"
    assert cache.load_snapshot().counts() == _local_snapshot().counts()
    assert journal.tail()[-1].stage == "import"


def test_reset_clears_local_data_only(cache, journal) -> None:
    remote = InMemoryRemote(
        {
            "students": [{"id": "s1", "name": "Ana"}],
            "schedules": [{"day_time_key": "Lunes-08:00-08:55", "activity_id": "a1"}],
        }
    )
    sync = _sync(remote, cache, journal)
    sync.load()
    sync.save()
    sync.state.active_view = "settings"

    assert sync.reset() == "remote"

    assert cache.has_snapshot() is False
    assert sync.state.active_view == "schedule"
    assert [student.id for student in sync.state.snapshot.students] == ["s1"]
    assert remote.tables["students"][0]["id"] == "s1"
    assert journal.tail()[-1].stage == "reset"

    sync.save()
    assert [row["day_time_key"] for row in remote.tables["schedules"]] == ["Lunes-08:00-08:55"]


def test_reset_offline_leaves_empty_state(cache) -> None:
    cache.save_snapshot(_local_snapshot())
    sync = _sync(None, cache)
    sync.load()

    assert sync.reset() == "cache"
    assert sync.state.snapshot.has_data() is False
    assert cache.has_snapshot() is False


def test_empty_tree_never_prunes_remote_schedule(cache) -> None:
    remote = InMemoryRemote({"schedules": [{"day_time_key": "Lunes-08:00-08:55", "activity_id": "a1"}]})
    sync = _sync(remote, cache)
    sync.state.snapshot = Snapshot(course_start_date=date(2024, 9, 9))

    sync.save()

    assert [row["day_time_key"] for row in remote.tables["schedules"]] == ["Lunes-08:00-08:55"]


def test_failed_startup_migration_uses_cache(cache) -> None:
    cache.save_snapshot(_local_snapshot())
    remote = FailingUpsertRemote()
    sync = _sync(remote, cache)

    assert sync.load() == "cache"
    assert sync.state.snapshot.find_activity("a1") is not None
    assert sync.state.snapshot.course_start_date == date(2024, 9, 9)
    assert sync.state.is_online is False


def test_delete_removes_entity_even_when_backend_fails(cache) -> None:
    remote = InMemoryRemote({"students": [{"id": "s1", "name": "Ana"}]})
    sync = _sync(remote, cache)
    sync.load()
    remote.fail_with = RemoteError("timeout")

    sync.delete_student("s1")

    assert sync.state.snapshot.students == []
    assert remote.tables["students"][0]["id"] == "s1"
    assert sync.db.healthy is False

