"""Wiring of config, storage, sync and actions into one object shared by the web app and CLI."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

import httpx

from persistence.database import DatabaseService
from persistence.local_store import LocalCache, LocalStore
from persistence.remote import Remote, build_remote
from planbook.actions import ActionContext, ActionRegistry, ActionResult, build_default_registry
from planbook.auth import AuthGate
from planbook.core.config import AppConfig
from planbook.core.journal import SyncJournal
from planbook.i18n import Translator, get_translator, pick_language
from planbook.state import AppState, StateSynchronizer

LOGGER = logging.getLogger("planbook.runtime")


@dataclass
class PlanbookRuntime:
    config: AppConfig
    state: AppState
    db: DatabaseService
    cache: LocalCache
    sync: StateSynchronizer
    journal: SyncJournal
    registry: ActionRegistry
    auth: AuthGate
    today: Callable[[], date] = date.today
    loaded_from: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        remote: Remote | None = None,
        http_client: httpx.Client | None = None,
        today: Callable[[], date] = date.today,
    ) -> "PlanbookRuntime":
        journal = SyncJournal(config.storage.journal_path)
        if remote is None:
            remote = build_remote(config.remote, client=http_client)
        db = DatabaseService(remote, journal=journal)
        cache = LocalCache(LocalStore(config.storage.local_path))
        state = AppState(current_date=today())
        state.language = pick_language(cache.preferred_language(), None, config.i18n.default_language)
        return cls(
            config=config,
            state=state,
            db=db,
            cache=cache,
            sync=StateSynchronizer(state, db, cache, journal=journal),
            journal=journal,
            registry=build_default_registry(),
            auth=AuthGate(config.auth.password, password_hash=config.auth.password_hash),
            today=today,
        )

    def start(self) -> "PlanbookRuntime":
        self.loaded_from = self.sync.load()
        LOGGER.info("Planbook ready (data from %s, online=%s)", self.loaded_from, self.state.is_online)
        return self

    def dispatch(self, name: str, payload: dict[str, str] | None = None) -> ActionResult:
        context = ActionContext(state=self.state, sync=self.sync, today=self.today)
        with self._lock:
            return self.registry.dispatch(name, context, payload)

    def resolve_language(self, accept_language: str | None = None) -> str:
        self.state.language = pick_language(
            self.cache.preferred_language(), accept_language, self.config.i18n.default_language
        )
        return self.state.language

    def set_language(self, lang: str) -> str:
        translator = get_translator(lang)
        self.cache.set_preferred_language(translator.language)
        self.state.language = translator.language
        return translator.language

    def translator(self, accept_language: str | None = None) -> Translator:
        return get_translator(self.resolve_language(accept_language))

    def close(self) -> None:
        if self.db.remote is not None:
            self.db.remote.close()
