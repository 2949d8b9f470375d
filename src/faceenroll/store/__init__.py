"""Backend side of the identity contracts."""

from faceenroll.store.persistence import load_store, save_store
from faceenroll.store.store import (
    EnrollmentRecord,
    EnrollmentStore,
    SnapshotRecord,
    UserRecord,
    hash_card,
)

__all__ = [
    "EnrollmentStore",
    "UserRecord",
    "EnrollmentRecord",
    "SnapshotRecord",
    "hash_card",
    "save_store",
    "load_store",
]
