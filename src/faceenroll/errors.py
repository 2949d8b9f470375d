"""Exception hierarchy for the enrollment pipeline.

Every error carries a single human readable message; the workflow shows
exactly that message in its ``error`` state.
"""

from typing import Dict, Type


class EnrollmentError(Exception):
    """Base class for enrollment failures."""

    kind = "enrollment"

    def __init__(self, message: str = "Enrollment failed"):
        super().__init__(message)
        self.message = message


class CredentialError(EnrollmentError):
    """Credential token is invalid, expired or unknown."""

    kind = "credential"


class SetupTimeout(EnrollmentError):
    """Camera or detection models did not become ready in time."""

    kind = "setup_timeout"


class CommitError(EnrollmentError):
    """Backend rejected the enrollment."""

    kind = "commit"


class RemoteError(EnrollmentError):
    """Transport failure or timeout while talking to the backend."""

    kind = "remote"


class ValidationError(CommitError):
    """Descriptor failed server-side validation."""

    kind = "validation"


class AuthorizationError(CommitError):
    """Verification token does not belong to the identity being enrolled."""

    kind = "authorization"


class NotFoundError(CommitError):
    """Identity does not exist on the backend."""

    kind = "not_found"


_BY_KIND: Dict[str, Type[EnrollmentError]] = {
    cls.kind: cls
    for cls in (
        EnrollmentError,
        CredentialError,
        SetupTimeout,
        CommitError,
        RemoteError,
        ValidationError,
        AuthorizationError,
        NotFoundError,
    )
}


def error_from_kind(kind: str, message: str) -> EnrollmentError:
    """Rebuild an error received over the wire."""
    cls = _BY_KIND.get(kind, EnrollmentError)
    return cls(message)


__all__ = [
    "EnrollmentError",
    "CredentialError",
    "SetupTimeout",
    "CommitError",
    "RemoteError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "error_from_kind",
]
