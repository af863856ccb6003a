# -*- coding: utf-8 -*-
"""Application logic that composes locate + crypto + store.

This module provides the public API used by a CLI or editor front end. It
does not prompt, print or spawn processes. All side effects (filesystem and
config I/O) are explicit and local.
"""
from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple
import json
import logging

from .crypto import DEFAULT_KDF, Credentials, KdfParams, SecretKey
from .errors import InvalidCredentials, from_os_error
from .locate import PathLike, init_journal, locate, marker_dir, read_salt
from .store import EntryId, EntryMetadata, EntryStore, IdLike

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Config management (JSON inside the journal marker)
# ---------------------------------------------------------------------

CONFIG_FILE = "config.json"

DEFAULT_CONFIG: Dict[str, object] = {
    # Path to the editor used to write entries; empty means $EDITOR.
    "editor": "",
    # Scratch directory for plaintext while editing; empty means the OS default.
    "temp_dir": "",
    "date_format": "%a %d-%b-%Y %H:%M",
}


def _config_path(root: PathLike) -> Path:
    return marker_dir(root) / CONFIG_FILE


def load_config(root: PathLike) -> Dict[str, object]:
    """Load the merged configuration (defaults + file). Values are opaque."""
    path = _config_path(root)
    merged = json.loads(json.dumps(DEFAULT_CONFIG))
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return merged
    except OSError as exc:
        raise from_os_error(path, exc) from exc
    if isinstance(data, dict):
        merged.update(data)
    return merged


def save_config(root: PathLike, cfg: Dict[str, object]) -> None:
    """Persist *cfg* to the journal's JSON config file."""
    path = _config_path(root)
    try:
        with path.open("w", encoding="utf-8") as f:
            json.dump(cfg, f, indent=2)
    except OSError as exc:
        raise from_os_error(path, exc) from exc


def create_journal(path: Optional[PathLike] = None, *, salted: bool = True) -> Path:
    """Initialise a journal and write the default config next to the marker."""
    root = init_journal(path, salted=salted)
    save_config(root, DEFAULT_CONFIG)
    return root


# ---------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------

class JournalSession:
    """One command's view of a journal: root, store, the derived key and author."""

    def __init__(self, root: Path, key: SecretKey, author: str = "") -> None:
        self.root = root
        self.store = EntryStore(root)
        self.key = key
        self.author = author

    def new_entry(self, text: str) -> EntryId:
        """Encrypt and save *text*; blank entries are rejected."""
        if not text or text.isspace():
            raise ValueError("Entry was empty/blank. No journal entry saved.")
        return self.store.write_new(text.encode("utf-8"), self.key, author=self.author)

    def show(self, entry_id: IdLike) -> str:
        return self.store.read_one(entry_id, self.key).decode("utf-8")

    def show_with_metadata(self, entry_id: IdLike) -> Tuple[EntryMetadata, str]:
        """Return (metadata, text): author, created and modified times."""
        entry = self.store.read_entry(entry_id, self.key)
        return entry.metadata, entry.content.decode("utf-8")

    def edit(self, entry_id: IdLike, text: str) -> EntryId:
        return self.store.update(entry_id, text.encode("utf-8"), self.key)

    def list_ids(self) -> List[EntryId]:
        return self.store.list_ids()


@contextmanager
def open_session(
    username: Optional[str],
    password,
    start: Optional[PathLike] = None,
    params: KdfParams = DEFAULT_KDF,
) -> Iterator[JournalSession]:
    """Locate the journal, derive its key and yield a session.

    *password* may be text, bytes, a ``bytearray`` (cleared afterwards) or a
    ``Credentials`` object, in which case *username* may be ``None`` and must
    otherwise match. The credentials are wiped as soon as the key exists and
    the key is wiped when the block exits, including on errors.
    """
    if isinstance(password, Credentials):
        creds = password
        if username is not None and username != creds.username:
            creds.clear()
            raise InvalidCredentials("username does not match the supplied credentials")
    else:
        creds = Credentials(username, password)
    author = creds.username
    try:
        root = locate(start)
        key = creds.derive(salt=read_salt(root), params=params)
    finally:
        creds.clear()
        if isinstance(password, bytearray):
            password[:] = bytes(len(password))
    try:
        logger.debug("session opened on %s", root)
        yield JournalSession(root, key, author=author)
    finally:
        key.clear()
        logger.debug("session closed on %s", root)
