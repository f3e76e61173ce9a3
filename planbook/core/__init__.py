"""
Configuration, domain models and the sync journal shared by every layer.
"""

from .config import AppConfig, AuthConfig, I18nConfig, RemoteConfig, StorageConfig, load_app_config
from .journal import SyncEvent, SyncJournal
from .models import (
    Activity,
    ClassEntry,
    CourseSettings,
    ScheduleOverride,
    Snapshot,
    Student,
    TimeSlot,
)

__all__ = [
    "Activity",
    "AppConfig",
    "AuthConfig",
    "ClassEntry",
    "CourseSettings",
    "I18nConfig",
    "RemoteConfig",
    "ScheduleOverride",
    "Snapshot",
    "Student",
    "StorageConfig",
    "SyncEvent",
    "SyncJournal",
    "TimeSlot",
    "load_app_config",
]
