# -*- coding: utf-8 -*-
"""Exception hierarchy shared by the Jarida storage engine.

Every component raises one of these and never retries. Callers decide what
to report; only ``DecryptionFailed`` has a fixed, detail-free message.
"""
from __future__ import annotations

from typing import Optional
import errno as _errno


class JaridaError(Exception):
    """Base class for all storage engine errors."""


class InvalidCredentials(JaridaError):
    """Username or password is empty or malformed."""


class NoJournalFound(JaridaError):
    """No marked journal in any ancestor nor in the home fallback."""


class FilesystemRootReached(JaridaError):
    """The upward walk hit the filesystem root without finding a marker."""


class JournalExists(JaridaError):
    """``init_journal`` was asked to initialise an already marked directory."""


class AccessDenied(JaridaError):
    """Permission was refused while examining or touching a path."""

    def __init__(self, path, message: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message or f"Access denied: {path}")


class EntryNotFound(JaridaError):
    """No entry file exists for the requested id."""


class DecryptionFailed(JaridaError):
    """Wrong key, corrupted blob or tampering. Deliberately indistinguishable."""

    MESSAGE = "could not decrypt entry"

    def __init__(self) -> None:
        super().__init__(self.MESSAGE)


class IoFailure(JaridaError):
    """Any other filesystem failure. Keeps the originating ``errno``."""

    def __init__(self, path, errno: Optional[int] = None, message: Optional[str] = None) -> None:
        self.path = path
        self.errno = errno
        super().__init__(message or f"I/O failure on {path} (errno={errno})")


class DiskFull(IoFailure):
    """No space left on device (or quota exceeded)."""


class PathTooLong(IoFailure):
    """The filesystem rejected a path as too long."""


def from_os_error(path, exc: OSError) -> JaridaError:
    """Map an ``OSError`` onto the taxonomy. The caller chains with ``from``."""
    if isinstance(exc, PermissionError):
        return AccessDenied(path)
    if exc.errno in (_errno.ENOSPC, getattr(_errno, "EDQUOT", _errno.ENOSPC)):
        return DiskFull(path, exc.errno)
    if exc.errno == _errno.ENAMETOOLONG:
        return PathTooLong(path, exc.errno)
    return IoFailure(path, exc.errno)
