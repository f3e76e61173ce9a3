"""Locale loading and string lookup for the UI."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Mapping

LOGGER = logging.getLogger("planbook.i18n")

SUPPORTED_LANGUAGES: tuple[str, ...] = ("es", "ca", "en")
DEFAULT_LANGUAGE = "es"
LOCALES_DIR = Path(__file__).with_name("locales")


def normalize_language(code: str | None) -> str | None:
    """Return the supported two-letter code for ``code`` (``ca-ES`` -> ``ca``), or None."""
    if not code:
        return None
    primary = code.strip().split("-")[0].split("_")[0].lower()
    return primary if primary in SUPPORTED_LANGUAGES else None


def language_from_header(accept_language: str | None) -> str | None:
    """First supported language in an ``Accept-Language`` header, honouring listed order."""
    if not accept_language:
        return None
    for part in accept_language.split(","):
        lang = normalize_language(part.split(";")[0])
        if lang:
            return lang
    return None


def pick_language(saved: str | None, accept_language: str | None = None, default: str = DEFAULT_LANGUAGE) -> str:
    """Saved preference first, then the browser header, then ``default``."""
    return normalize_language(saved) or language_from_header(accept_language) or default


def load_translations(lang: str, locales_dir: Path = LOCALES_DIR) -> Dict[str, str]:
    path = locales_dir / f"{lang}.json"
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    return {str(key): str(value) for key, value in data.items()}


class Translator:
    """Callable lookup: ``t("nav_schedule")``; unknown keys render as ``[key]``."""

    def __init__(self, language: str, translations: Mapping[str, str]) -> None:
        self.language = language
        self._translations = dict(translations)

    def t(self, key: str) -> str:
        return self._translations.get(key) or f"[{key}]"

    __call__ = t

    def day(self, day_key: str) -> str:
        """Label for a stored weekday key such as ``Lunes``."""
        return self.t(day_key.lower())


@lru_cache(maxsize=None)
def _cached_translator(lang: str, locales_dir: Path) -> Translator:
    try:
        return Translator(lang, load_translations(lang, locales_dir))
    except (OSError, ValueError) as exc:
        if lang == DEFAULT_LANGUAGE:
            LOGGER.error("Default locale %s failed to load: %s", lang, exc)
            return Translator(lang, {})
        LOGGER.warning("Locale %s failed to load, falling back to %s: %s", lang, DEFAULT_LANGUAGE, exc)
        return _cached_translator(DEFAULT_LANGUAGE, locales_dir)


def get_translator(lang: str | None, locales_dir: Path = LOCALES_DIR) -> Translator:
    """Translator for ``lang``; unsupported or unloadable languages fall back to Spanish."""
    resolved = normalize_language(lang) or DEFAULT_LANGUAGE
    return _cached_translator(resolved, locales_dir)


__all__ = [
    "DEFAULT_LANGUAGE",
    "SUPPORTED_LANGUAGES",
    "Translator",
    "get_translator",
    "language_from_header",
    "load_translations",
    "normalize_language",
    "pick_language",
]
