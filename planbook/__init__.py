"""
Planbook: a single-teacher planner with remote sync and a local fallback cache.

The package stays import-light so the CLI and the web app can share it without
pulling in FastAPI for offline commands.
"""

from importlib import metadata


def get_version() -> str:
    """Return the installed project version."""
    try:
        return metadata.version("planbook")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
