"""Backend identity store.

Holds users, their face enrollments and telemetry snapshot metadata, and
implements the IdentityService operations against them. Card numbers are
stored as SHA-256 hashes only. A store opened with a path is saved after
every mutation.

Example:
    >>> store = EnrollmentStore(path="~/.faceenroll/enrollments.json")
    >>> user = store.add_user("Ada Lovelace", "ada", card_number="0042")
    >>> store.verify_credential("0042").has_existing_enrollment
    False
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from faceenroll.errors import (
    AuthorizationError,
    CredentialError,
    NotFoundError,
    ValidationError,
)
from faceenroll.services.codec import decode_snapshot, deserialize_descriptor
from faceenroll.types import EnrollmentIdentity, VerificationResult, mask_token

logger = logging.getLogger(__name__)

MAX_SNAPSHOT_BYTES = 5 * 1024 * 1024
_EVENT_TYPE_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


def hash_card(card_number: str) -> str:
    return hashlib.sha256(card_number.strip().encode("utf-8")).hexdigest()


@dataclass
class UserRecord:
    id: int
    name: str
    username: str
    card_hash: str
    face_id_enabled: bool = False

    def identity(self) -> EnrollmentIdentity:
        return EnrollmentIdentity(id=self.id, name=self.name, username=self.username)


@dataclass
class EnrollmentRecord:
    id: int
    user_id: int
    descriptor: np.ndarray = field(repr=False)
    enrolled_at: str = ""


@dataclass
class SnapshotRecord:
    path: str
    event_type: str
    user_id: Optional[int] = None
    face_detected: bool = False
    confidence: Optional[float] = None
    created_at: str = ""


class EnrollmentStore:
    """Users, enrollments and snapshots with IdentityService semantics.

    Args:
        path: JSON file to persist to after every mutation (None = in memory).
        snapshots_dir: Directory for snapshot images (None = snapshots rejected).
        descriptor_dim: Required descriptor length.
        now: Clock for timestamps.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        snapshots_dir: Optional[Union[str, Path]] = None,
        descriptor_dim: int = 128,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.path = Path(path).expanduser() if path is not None else None
        self.snapshots_dir = Path(snapshots_dir).expanduser() if snapshots_dir is not None else None
        self.descriptor_dim = descriptor_dim
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()

        self.users: Dict[int, UserRecord] = {}
        self.enrollments: Dict[int, EnrollmentRecord] = {}  # keyed by user id
        self.snapshots: List[SnapshotRecord] = []
        self._next_user_id = 1
        self._next_enrollment_id = 1

    # ── Users ──

    def add_user(self, name: str, username: str, card_number: str) -> UserRecord:
        """Register a user with their card.

        Raises:
            ValueError: If the card or username is already registered.
        """
        if not card_number or not card_number.strip():
            raise ValueError("Card number is required")
        card_hash = hash_card(card_number)
        with self._lock:
            for user in self.users.values():
                if user.card_hash == card_hash:
                    raise ValueError(f"Card already registered to user {user.id}")
                if user.username == username:
                    raise ValueError(f"Username already exists: {username}")

            user = UserRecord(
                id=self._next_user_id, name=name, username=username, card_hash=card_hash,
            )
            self._next_user_id += 1
            self.users[user.id] = user
            self._autosave()
        logger.info("Added user %d (%s)", user.id, username)
        return user

    def find_user_by_card(self, card_number: str) -> Optional[UserRecord]:
        card_hash = hash_card(card_number)
        with self._lock:
            for user in self.users.values():
                if user.card_hash == card_hash:
                    return user
        return None

    def get_enrollment(self, user_id: int) -> Optional[EnrollmentRecord]:
        with self._lock:
            return self.enrollments.get(user_id)

    # ── IdentityService ──

    def verify_credential(self, token: str) -> VerificationResult:
        if not token or not token.strip():
            raise CredentialError("Card number is required")
        user = self.find_user_by_card(token)
        if user is None:
            logger.info("Unknown card %s", mask_token(token))
            raise CredentialError("Card not recognized. Please try again.")
        with self._lock:
            has_existing = user.id in self.enrollments
        return VerificationResult(identity=user.identity(), has_existing_enrollment=has_existing)

    def delete_enrollment(self, identity_id: int) -> None:
        with self._lock:
            removed = self.enrollments.pop(identity_id, None)
            user = self.users.get(identity_id)
            if user is not None:
                user.face_id_enabled = False
            if removed is not None:
                self._autosave()
        if removed is not None:
            logger.info("Deleted enrollment %d of user %d", removed.id, identity_id)

    def commit_enrollment(self, identity_id: int, descriptor: str, token: str) -> int:
        """Validate and store a descriptor, replacing any previous one.

        Raises:
            ValidationError: Wrong length or non-finite values.
            NotFoundError: Unknown user.
            AuthorizationError: Token does not belong to the user.
        """
        vec = deserialize_descriptor(descriptor, expected_dim=self.descriptor_dim)
        if not np.all(np.isfinite(vec)):
            raise ValidationError("Invalid descriptor: contains non-finite values")

        with self._lock:
            user = self.users.get(identity_id)
            if user is None:
                raise NotFoundError(f"User {identity_id} not found")
            if not token or hash_card(token) != user.card_hash:
                logger.warning("Card %s does not match user %d, rejecting enrollment",
                               mask_token(token), identity_id)
                raise AuthorizationError("Card does not match the user being enrolled")

            enrolled_at = self._now().isoformat()
            existing = self.enrollments.get(identity_id)
            if existing is not None:
                existing.descriptor = vec
                existing.enrolled_at = enrolled_at
                record = existing
            else:
                record = EnrollmentRecord(
                    id=self._next_enrollment_id,
                    user_id=identity_id,
                    descriptor=vec,
                    enrolled_at=enrolled_at,
                )
                self._next_enrollment_id += 1
                self.enrollments[identity_id] = record
            user.face_id_enabled = True
            self._autosave()

        logger.info("Stored enrollment %d for user %d", record.id, identity_id)
        return record.id

    def upload_telemetry_snapshot(
        self,
        image: str,
        event_type: str,
        identity_id: Optional[int] = None,
        face_detected: bool = False,
        confidence: Optional[float] = None,
    ) -> str:
        """Write a snapshot image and record its metadata.

        Returns:
            Path of the image relative to the snapshots directory.
        """
        if self.snapshots_dir is None:
            raise ValidationError("Snapshot storage is not configured")
        data = decode_snapshot(image)
        if len(data) > MAX_SNAPSHOT_BYTES:
            raise ValidationError(
                f"Snapshot too large: {len(data)} bytes (max {MAX_SNAPSHOT_BYTES})"
            )

        now = self._now()
        event = _EVENT_TYPE_UNSAFE.sub("_", event_type) or "UNKNOWN"
        owner = f"user-{identity_id}" if identity_id is not None else "anonymous"
        relative = Path(f"{now:%Y}") / f"{now:%m}" / f"{int(now.timestamp() * 1000)}_{owner}_{event}.jpg"

        target = self.snapshots_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

        with self._lock:
            self.snapshots.append(SnapshotRecord(
                path=relative.as_posix(),
                event_type=event_type,
                user_id=identity_id,
                face_detected=face_detected,
                confidence=confidence,
                created_at=now.isoformat(),
            ))
            self._autosave()
        logger.debug("Stored snapshot %s (%d bytes)", relative, len(data))
        return relative.as_posix()

    # ── Persistence ──

    def save(self, path: Optional[Union[str, Path]] = None) -> None:
        from faceenroll.store.persistence import save_store

        target = path or self.path
        if target is None:
            raise ValueError("No path to save the store to")
        with self._lock:
            save_store(self, target)

    @classmethod
    def open(
        cls,
        path: Union[str, Path],
        snapshots_dir: Optional[Union[str, Path]] = None,
        descriptor_dim: int = 128,
    ) -> "EnrollmentStore":
        """Load a store from ``path``, or start an empty one there."""
        from faceenroll.store.persistence import load_store

        path = Path(path).expanduser()
        if path.exists():
            store = load_store(path, snapshots_dir=snapshots_dir)
            store.descriptor_dim = descriptor_dim
            return store
        return cls(path=path, snapshots_dir=snapshots_dir, descriptor_dim=descriptor_dim)

    def _autosave(self) -> None:
        if self.path is not None:
            self.save()


__all__ = [
    "EnrollmentStore",
    "UserRecord",
    "EnrollmentRecord",
    "SnapshotRecord",
    "hash_card",
    "MAX_SNAPSHOT_BYTES",
]
