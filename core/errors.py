"""
core/errors.py -- Error taxonomy for credential store operations.

Every error carries an HTTP-equivalent `status` so a host (web plugin, CLI)
can map it to a response without a lookup table of its own. Sanity errors are
raised before any file is touched; I/O errors (PermissionError, OSError) are
not wrapped and reach the caller unchanged once the lock has been released.

authenticate() never raises these -- a failed login is a plain False so the
caller cannot tell "wrong password" from "no such user".
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for all credential store errors."""

    status: int = 500

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        if status is not None:
            self.status = status


class MissingInputError(StoreError):
    """Username or password was empty."""

    status = 400


class UnauthorizedError(StoreError):
    """The user exists and the supplied password does not match its hash."""

    status = 401


class CapacityError(StoreError):
    """The configured max_users limit has been reached."""

    status = 403


class DuplicateUserError(StoreError):
    """The user exists and the supplied password matches -- already registered."""

    status = 409


class ValidationError(StoreError):
    """Username contains characters that are not URI-safe."""

    status = 409


class LockTimeoutError(StoreError):
    """The advisory file lock was not acquired within lock_timeout."""

    status = 503
