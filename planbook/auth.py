"""Shared-password gate remembered through a long-lived cookie."""

from __future__ import annotations

import hashlib
import hmac
import logging

LOGGER = logging.getLogger("planbook.auth")

COOKIE_NAME = "cuaderno_auth"
COOKIE_MAX_AGE = 365 * 24 * 60 * 60


def hash_password(password: str) -> str:
    """SHA-256 hex digest of a password."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


class AuthGate:
    """Checks passwords and cookies against the configured password.

    A precomputed ``password_hash`` takes precedence over a plain password.
    Without either the gate is open. The cookie value is an
    HMAC keyed by the password hash, so changing the password signs everyone out.
    """

    def __init__(self, password: str | None = None, *, password_hash: str | None = None) -> None:
        if password_hash:
            self._password_hash = password_hash.lower()
        else:
            self._password_hash = hash_password(password) if password else None

    @property
    def enabled(self) -> bool:
        return self._password_hash is not None

    def verify(self, candidate: str) -> bool:
        if self._password_hash is None:
            LOGGER.warning("No password configured; refusing password checks.")
            return False
        return hmac.compare_digest(hash_password(candidate or ""), self._password_hash)

    def cookie_value(self) -> str:
        if self._password_hash is None:
            raise RuntimeError("Cannot issue an auth cookie without a configured password")
        return hmac.new(self._password_hash.encode("ascii"), COOKIE_NAME.encode("ascii"), hashlib.sha256).hexdigest()

    def is_authenticated(self, cookie: str | None) -> bool:
        if not self.enabled:
            return True
        if not cookie:
            return False
        return hmac.compare_digest(cookie, self.cookie_value())


__all__ = ["AuthGate", "COOKIE_MAX_AGE", "COOKIE_NAME", "hash_password"]
