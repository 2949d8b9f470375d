"""Persistence layer for EnrollmentStore.

JSON save/load with numpy ndarray <-> list conversion.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import numpy as np

from faceenroll.store.store import EnrollmentRecord, EnrollmentStore, SnapshotRecord, UserRecord

FORMAT_VERSION = 1


def save_store(store: EnrollmentStore, path: str | Path) -> None:
    """Save an EnrollmentStore to JSON.

    Descriptors are written as float lists. Includes _version metadata.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "users": [
            {
                "id": u.id,
                "name": u.name,
                "username": u.username,
                "card_hash": u.card_hash,
                "face_id_enabled": u.face_id_enabled,
            }
            for u in store.users.values()
        ],
        "enrollments": [
            {
                "id": e.id,
                "user_id": e.user_id,
                "descriptor": e.descriptor.tolist(),
                "enrolled_at": e.enrolled_at,
            }
            for e in store.enrollments.values()
        ],
        "snapshots": [asdict(s) for s in store.snapshots],
        "_next_user_id": store._next_user_id,
        "_next_enrollment_id": store._next_enrollment_id,
        "_version": {
            "app": "faceenroll",
            "format": FORMAT_VERSION,
            "descriptor_dim": store.descriptor_dim,
            "saved_at": datetime.now(timezone.utc).isoformat(),
        },
    }

    # Atomic replace.
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    tmp.replace(path)


def load_store(path: str | Path, snapshots_dir: Optional[str | Path] = None) -> EnrollmentStore:
    """Load an EnrollmentStore from JSON.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file was written by a newer format.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Enrollment store not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    version = data.get("_version", {})
    if version.get("format", FORMAT_VERSION) > FORMAT_VERSION:
        raise ValueError(f"Unsupported store format {version.get('format')} in {path}")

    store = EnrollmentStore(
        path=path,
        snapshots_dir=snapshots_dir,
        descriptor_dim=version.get("descriptor_dim", 128),
    )
    for u in data.get("users", []):
        store.users[u["id"]] = UserRecord(
            id=u["id"],
            name=u["name"],
            username=u["username"],
            card_hash=u["card_hash"],
            face_id_enabled=u.get("face_id_enabled", False),
        )
    for e in data.get("enrollments", []):
        store.enrollments[e["user_id"]] = _dict_to_enrollment(e)
    store.snapshots = [SnapshotRecord(**s) for s in data.get("snapshots", [])]

    store._next_user_id = data.get("_next_user_id", max(store.users, default=0) + 1)
    store._next_enrollment_id = data.get(
        "_next_enrollment_id",
        max((e.id for e in store.enrollments.values()), default=0) + 1,
    )
    return store


def _dict_to_enrollment(data: Any) -> EnrollmentRecord:
    return EnrollmentRecord(
        id=data["id"],
        user_id=data["user_id"],
        descriptor=np.array(data["descriptor"], dtype=np.float32),
        enrolled_at=data.get("enrolled_at", ""),
    )


__all__ = ["save_store", "load_store", "FORMAT_VERSION"]
