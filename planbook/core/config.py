"""
Typed configuration for the planbook web app and CLI.

Values come from a YAML file first and are then overridden by environment
variables, so a deployment can inject secrets without touching the file.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

CONFIG_ENV_VAR = "PLANBOOK_CONFIG"
DEFAULT_CONFIG_PATH = Path("config/planbook.yaml")

SupportedLanguage = Literal["es", "ca", "en"]

_TRUTHY = {"1", "true", "yes", "on"}
_SHA256_HEX = re.compile(r"[0-9a-f]{64}")


class RemoteConfig(BaseModel):
    """Connection info for the PostgREST-compatible backend."""

    url: Optional[str] = None
    anon_key: Optional[str] = None
    use_mock: bool = Field(default=False, description="Use the in-memory backend instead of HTTP.")
    timeout: float = Field(default=10.0, gt=0)

    @field_validator("url", "anon_key", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @property
    def configured(self) -> bool:
        return self.use_mock or bool(self.url and self.anon_key)


class StorageConfig(BaseModel):
    """Paths for the local fallback cache and the sync journal."""

    local_path: Path = Field(default=Path("data/planbook.sqlite"))
    journal_path: Path = Field(default=Path("data/sync-journal.jsonl"))

    @field_validator("local_path", "journal_path", mode="before")
    @classmethod
    def coerce_path(cls, value: Any) -> Path:
        return Path(value).expanduser()


class AuthConfig(BaseModel):
    password: Optional[str] = None
    password_hash: Optional[str] = None

    @field_validator("password", "password_hash", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if value is None:
            return None
        value = str(value)
        return value if value else None

    @field_validator("password_hash")
    @classmethod
    def check_hash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().lower()
        if not value:
            return None
        if not _SHA256_HEX.fullmatch(value):
            raise ValueError("password_hash must be a 64-character SHA-256 hex digest")
        return value


class I18nConfig(BaseModel):
    default_language: SupportedLanguage = "es"


class AppConfig(BaseModel):
    """Top-level configuration for planbook."""

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    i18n: I18nConfig = Field(default_factory=I18nConfig)


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected mapping at root of {path}, received {type(data)}")
    return data


def _resolve_config_path(value: Any, base_dir: Path) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    else:
        path = path.resolve()
    return str(path)


def _absolutize_storage_paths(data: Dict[str, Any], base_dir: Path) -> None:
    storage = data.get("storage")
    if isinstance(storage, dict):
        for key in ("local_path", "journal_path"):
            if storage.get(key):
                storage[key] = _resolve_config_path(storage[key], base_dir)


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    remote = data.setdefault("remote", {})
    storage = data.setdefault("storage", {})
    auth = data.setdefault("auth", {})

    if os.getenv("SUPABASE_URL"):
        remote["url"] = os.environ["SUPABASE_URL"]
    if os.getenv("SUPABASE_ANON_KEY"):
        remote["anon_key"] = os.environ["SUPABASE_ANON_KEY"]
    use_mock = os.getenv("USE_MOCK")
    if use_mock is not None and use_mock.strip():
        remote["use_mock"] = use_mock.strip().lower() in _TRUTHY
    if os.getenv("PLANBOOK_PASSWORD") is not None:
        auth["password"] = os.environ["PLANBOOK_PASSWORD"]
    if os.getenv("PLANBOOK_PASSWORD_HASH") is not None:
        auth["password_hash"] = os.environ["PLANBOOK_PASSWORD_HASH"]
    if os.getenv("PLANBOOK_LOCAL_STORE"):
        storage["local_path"] = str(Path(os.environ["PLANBOOK_LOCAL_STORE"]).expanduser().resolve())
    if os.getenv("PLANBOOK_JOURNAL"):
        storage["journal_path"] = str(Path(os.environ["PLANBOOK_JOURNAL"]).expanduser().resolve())


def resolve_config_path(path: Path | None = None) -> Path | None:
    """Pick the config file: explicit path, then $PLANBOOK_CONFIG, then the default if present."""
    if path is not None:
        return path.expanduser().resolve()
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser().resolve()
    default = DEFAULT_CONFIG_PATH.resolve()
    return default if default.exists() else None


def load_app_config(path: Path | None = None, *, base_dir: Path | None = None, use_env: bool = True) -> AppConfig:
    """Load the app config from YAML (optional) plus environment overrides."""
    if use_env:
        load_dotenv()
    resolved = resolve_config_path(path)
    data: Dict[str, Any] = {}
    if resolved is not None:
        data = read_yaml_file(resolved)
        _absolutize_storage_paths(data, base_dir=(base_dir or resolved.parent).resolve())
    else:
        _absolutize_storage_paths(data, base_dir=(base_dir or Path.cwd()).resolve())
    if use_env:
        _apply_env_overrides(data)
    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid planbook config in {resolved or '<defaults>'}") from exc
