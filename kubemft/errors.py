"""Error taxonomy shared by the storage, transport and signature layers.

Every error carries the repository / tag / digest context in its message so
callers can surface it without re-wrapping.  Callers branch on the class:

* ``NotFoundError``: tag, key, blob or signature absent.
* ``ConflictError``: destination tag already exists during a copy.
* ``UnauthorizedError`` / ``ForbiddenError``: remote auth / permission.
* ``NetworkError``: connection or timeout; never retried by the core.
* ``CorruptionError``: malformed index/manifest JSON or digest mismatch.
* ``VerificationFailedError``: signatures exist but none validate.
"""

from __future__ import annotations


class MftError(RuntimeError):
    """Base class for all kubemft errors."""


class NotFoundError(MftError, LookupError):
    """Raised when a tag, blob, key, or signature does not exist."""


class ConflictError(MftError):
    """Raised when a destination tag already exists and would be overwritten."""


class CorruptionError(MftError):
    """Raised when stored content does not match its digest or cannot be parsed."""


class VerificationFailedError(MftError):
    """Raised when signatures were found but none validated against any key."""


class CancelledError(MftError):
    """Raised when an operation is cancelled or exceeds its deadline."""


class TransferError(MftError):
    """Generic remote transfer failure; the original exception is ``__cause__``."""


class UnauthorizedError(TransferError):
    """Credentials were missing or rejected by the registry."""


class ForbiddenError(TransferError):
    """Credentials were accepted but lack permission on the repository."""


class NetworkError(TransferError):
    """Connection failure or timeout talking to a registry."""


class KeyStoreError(MftError):
    """Raised for invalid key names, unreadable key files or insecure permissions."""


class ManifestInvalidError(MftError):
    """Raised by a manifest validator when a file fails schema validation."""


class ApplyError(MftError):
    """Raised when the cluster-apply tool is missing or exits non-zero."""


__all__ = [
    "MftError",
    "NotFoundError",
    "ConflictError",
    "CorruptionError",
    "VerificationFailedError",
    "CancelledError",
    "TransferError",
    "UnauthorizedError",
    "ForbiddenError",
    "NetworkError",
    "KeyStoreError",
    "ManifestInvalidError",
    "ApplyError",
]
