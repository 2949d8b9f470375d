"""Home directory path utilities.

Centralizes kiosk-side and server-side files to ``~/.faceenroll`` by default.
Override with the ``FACEENROLL_HOME`` environment variable.
"""

import os
from pathlib import Path


def get_home_dir() -> Path:
    """Return the faceenroll home directory, creating it if needed.

    Resolution order:
        1. ``FACEENROLL_HOME`` environment variable.
        2. ``~/.faceenroll`` (default).

    Returns:
        Absolute path to the home directory.
    """
    home = os.environ.get("FACEENROLL_HOME")
    if home:
        home_dir = Path(home)
    else:
        home_dir = Path.home() / ".faceenroll"
    home_dir.mkdir(parents=True, exist_ok=True)
    return home_dir


def get_store_path() -> Path:
    """Default JSON file backing the identity store."""
    return get_home_dir() / "enrollments.json"


def get_snapshots_dir() -> Path:
    """Default directory for uploaded telemetry snapshots.

    The directory is **not** created by this function; the store creates
    year/month subdirectories when it writes.
    """
    return get_home_dir() / "snapshots"
