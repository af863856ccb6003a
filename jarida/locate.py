# -*- coding: utf-8 -*-
"""Journal root discovery and initialisation.

A directory is a journal root iff it contains the ``.jarida`` marker. Lookup
walks from a starting directory up through its ancestors (nearest wins) and
falls back to the home location, the way a VCS finds its repository.
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterator, Optional, Union
import logging
import os
import secrets
import shutil

from .errors import (
    AccessDenied,
    FilesystemRootReached,
    IoFailure,
    JournalExists,
    NoJournalFound,
    from_os_error,
)

logger = logging.getLogger(__name__)

MARKER_NAME = ".jarida"
ENTRIES_DIR = "entries"
SALT_FILE = "salt"
SALT_LEN = 16

HOME_ENV = "JARIDA_HOME"

PathLike = Union[str, os.PathLike]


def _has_marker(directory: Path) -> bool:
    """Return True if *directory* holds the marker (dir or sentinel file)."""
    try:
        os.stat(directory / MARKER_NAME)
    except (FileNotFoundError, NotADirectoryError):
        return False
    except PermissionError as exc:
        raise AccessDenied(directory) from exc
    except OSError as exc:
        raise from_os_error(directory, exc) from exc
    return True


def is_journal_root(path: PathLike) -> bool:
    return _has_marker(Path(path))


def _ancestors(start: Path) -> Iterator[Path]:
    yield start
    yield from start.parents


def find_in_ancestors(start: PathLike) -> Path:
    """Return the nearest directory at or above *start* holding the marker."""
    start = Path(os.path.abspath(start))
    for candidate in _ancestors(start):
        if _has_marker(candidate):
            logger.debug("journal root found at %s", candidate)
            return candidate
    raise FilesystemRootReached(f"No {MARKER_NAME} between {start} and the filesystem root")


def home_journal_dir() -> Path:
    """Fallback journal location: ``$JARIDA_HOME`` or the user's home."""
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home()


def locate(start: Optional[PathLike] = None) -> Path:
    """Find the journal root for *start* (defaults to the cwd).

    Raises ``NoJournalFound`` when neither an ancestor nor the home fallback is
    marked. ``AccessDenied`` from the walk propagates unchanged.
    """
    try:
        return find_in_ancestors(Path.cwd() if start is None else start)
    except FilesystemRootReached as exc:
        home = home_journal_dir()
        if _has_marker(home):
            logger.debug("using home journal at %s", home)
            return home
        raise NoJournalFound(f"No journal above {start or Path.cwd()} and none at {home}") from exc


# ---------------------------------------------------------------------
# Initialisation
# ---------------------------------------------------------------------

def marker_dir(root: PathLike) -> Path:
    return Path(root) / MARKER_NAME


def entries_dir(root: PathLike) -> Path:
    return Path(root) / ENTRIES_DIR


def read_salt(root: PathLike) -> bytes:
    """Return the journal salt, or ``b""`` for journals created without one.

    A salt file of the wrong length raises ``IoFailure``.
    """
    path = marker_dir(root) / SALT_FILE
    try:
        salt = path.read_bytes()
    except (FileNotFoundError, NotADirectoryError):
        return b""
    except OSError as exc:
        raise from_os_error(path, exc) from exc
    if len(salt) != SALT_LEN:
        raise IoFailure(path, message=f"Malformed journal salt: {path} holds {len(salt)} bytes")
    return salt


def init_journal(path: Optional[PathLike] = None, *, salted: bool = True) -> Path:
    """Mark *path* (default: home fallback) as a new journal root.

    Creates the marker directory, ``entries/`` and, when *salted*, a random
    per-journal salt that is mixed into key derivation. The marker is staged
    under a temporary name and renamed into place last, so a failed init
    leaves no marker behind.
    """
    root = Path(path) if path is not None else home_journal_dir()
    marker = marker_dir(root)
    if os.path.lexists(marker):
        raise JournalExists(f"{root} is already initialized")
    staging = root / f"{MARKER_NAME}.{secrets.token_hex(4)}.tmp"
    try:
        root.mkdir(parents=True, exist_ok=True)
        entries_dir(root).mkdir(exist_ok=True)
        staging.mkdir()
        try:
            if salted:
                (staging / SALT_FILE).write_bytes(secrets.token_bytes(SALT_LEN))
            os.rename(staging, marker)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
    except FileExistsError as exc:
        raise JournalExists(f"{root} is already initialized") from exc
    except OSError as exc:
        if os.path.isdir(marker) and os.listdir(marker):
            # another init published its marker first
            raise JournalExists(f"{root} is already initialized") from exc
        raise from_os_error(root, exc) from exc
    logger.info("initialized journal at %s", root)
    return root
