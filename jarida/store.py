# -*- coding: utf-8 -*-
"""Filesystem storage for encrypted journal entries.

One file per entry under ``<root>/entries/``, named by its :class:`EntryId`.
Blobs are written to a hidden temp file first and only then published under
the final name, so a crash never leaves a partial entry visible.

Each blob seals a small metadata header (created, modified, author) together
with the content, so both are covered by the same authentication tag.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple, Union
import json
import logging
import os
import re
import secrets

from .crypto import SecretKey, decrypt_entry, encrypt_entry
from .errors import DecryptionFailed, EntryNotFound, from_os_error
from .locate import PathLike, entries_dir

logger = logging.getLogger(__name__)

ID_TIME_FORMAT = "%Y%m%dT%H%M%SZ"
ID_RE = re.compile(r"(?P<ts>[0-9]{8}T[0-9]{6}Z)(?:-(?P<seq>[1-9][0-9]*))?")
TMP_SUFFIX = ".tmp"
HEADER_LEN_BYTES = 4


# ---------------------------------------------------------------------
# Entry identifiers
# ---------------------------------------------------------------------

def _utc_seconds(when: datetime) -> datetime:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True, order=True)
class EntryId:
    """Creation second (UTC) plus a disambiguator for same-second entries."""

    timestamp: datetime
    seq: int = 0

    @classmethod
    def at(cls, when: datetime, seq: int = 0) -> "EntryId":
        return cls(timestamp=_utc_seconds(when), seq=seq)

    @classmethod
    def parse(cls, text: str) -> "EntryId":
        """Parse the on-disk name; raise ``ValueError`` if it is not an id."""
        m = ID_RE.fullmatch(text)
        if not m:
            raise ValueError(f"not an entry id: {text!r}")
        ts = datetime.strptime(m.group("ts"), ID_TIME_FORMAT).replace(tzinfo=timezone.utc)
        return cls(timestamp=ts, seq=int(m.group("seq") or 0))

    def next(self) -> "EntryId":
        return EntryId(self.timestamp, self.seq + 1)

    def aad(self) -> bytes:
        """Associated data binding a ciphertext to this id."""
        return str(self).encode("ascii")

    def __str__(self) -> str:
        base = self.timestamp.strftime(ID_TIME_FORMAT)
        return base if self.seq == 0 else f"{base}-{self.seq}"


IdLike = Union[EntryId, str]


def _coerce_id(entry_id: IdLike) -> EntryId:
    if isinstance(entry_id, EntryId):
        return entry_id
    try:
        return EntryId.parse(str(entry_id))
    except ValueError as exc:
        raise EntryNotFound(f"No entry {entry_id!r}") from exc


# ---------------------------------------------------------------------
# Entry records (metadata header + content)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class EntryMetadata:
    """Who wrote an entry and when it was created / last modified (UTC)."""

    created: datetime
    modified: datetime
    author: str

    @classmethod
    def new(cls, author: str, now: datetime) -> "EntryMetadata":
        now = _utc_seconds(now)
        return cls(created=now, modified=now, author=author)

    @property
    def edited(self) -> bool:
        return self.modified != self.created

    def touched(self, now: datetime) -> "EntryMetadata":
        return EntryMetadata(self.created, _utc_seconds(now), self.author)

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "created": self.created.isoformat(),
                "modified": self.modified.isoformat(),
                "author": self.author,
            },
            sort_keys=True,
        ).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "EntryMetadata":
        data = json.loads(raw.decode("utf-8"))
        return cls(
            created=datetime.fromisoformat(data["created"]),
            modified=datetime.fromisoformat(data["modified"]),
            author=str(data["author"]),
        )


@dataclass(frozen=True)
class StoredEntry:
    id: EntryId
    metadata: EntryMetadata
    content: bytes


def pack_record(metadata: EntryMetadata, content: bytes) -> bytes:
    header = metadata.to_json()
    return len(header).to_bytes(HEADER_LEN_BYTES, "big") + header + bytes(content)


def unpack_record(plaintext: bytes) -> Tuple[EntryMetadata, bytes]:
    """Split a decrypted record; a malformed record is a ``DecryptionFailed``."""
    size = int.from_bytes(plaintext[:HEADER_LEN_BYTES], "big")
    end = HEADER_LEN_BYTES + size
    if len(plaintext) < end:
        raise DecryptionFailed()
    try:
        metadata = EntryMetadata.from_json(plaintext[HEADER_LEN_BYTES:end])
    except (ValueError, KeyError, TypeError):
        raise DecryptionFailed() from None
    return metadata, plaintext[end:]


# ---------------------------------------------------------------------
# Low-level file helpers
# ---------------------------------------------------------------------

def _write_temp(directory: Path, stem: str, payload: bytes) -> Path:
    """Write *payload* to a fresh hidden temp file in *directory* and fsync it."""
    tmp = directory / f".{stem}.{secrets.token_hex(4)}{TMP_SUFFIX}"
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
    except BaseException:
        _discard(tmp)
        raise
    return tmp


def _discard(path: Path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def _fsync_dir(directory: Path) -> None:
    if os.name == "nt":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


# ---------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------

class EntryStore:
    """Read/write encrypted entries of one journal root."""

    def __init__(self, root: PathLike) -> None:
        self.root = Path(root)
        self.entries = entries_dir(self.root)

    def path_for(self, entry_id: IdLike) -> Path:
        return self.entries / str(_coerce_id(entry_id))

    def exists(self, entry_id: IdLike) -> bool:
        try:
            return self.path_for(entry_id).is_file()
        except EntryNotFound:
            return False

    def _ensure_entries_dir(self) -> None:
        try:
            self.entries.mkdir(exist_ok=True)
        except OSError as exc:
            raise from_os_error(self.entries, exc) from exc

    def _after_publish(self, tmp: Path, entry_id: EntryId) -> None:
        """Tidy up once *entry_id* is visible; failures here are only logged."""
        try:
            _discard(tmp)
        except OSError as exc:
            logger.warning("entry %s saved, but temp file %s remains: %s", entry_id, tmp, exc)
        try:
            _fsync_dir(self.entries)
        except OSError as exc:
            logger.warning("entry %s saved, but directory sync failed: %s", entry_id, exc)

    def write_new(
        self,
        content: bytes,
        key: SecretKey,
        now: Optional[datetime] = None,
        author: str = "",
    ) -> EntryId:
        """Encrypt *content* and publish it under a freshly allocated id.

        Publication uses ``os.link`` which refuses to overwrite, so two writers
        racing for the same second end up with distinct sequence numbers.
        """
        self._ensure_entries_dir()
        now = now or datetime.now(timezone.utc)
        record = pack_record(EntryMetadata.new(author, now), content)
        entry_id = EntryId.at(now)
        while True:
            final = self.entries / str(entry_id)
            if os.path.lexists(final):
                entry_id = entry_id.next()
                continue
            blob = encrypt_entry(record, key, aad=entry_id.aad()).to_bytes()
            try:
                tmp = _write_temp(self.entries, str(entry_id), blob)
            except OSError as exc:
                raise from_os_error(final, exc) from exc
            try:
                os.link(tmp, final)
            except FileExistsError:
                _discard(tmp)
                logger.debug("id %s taken concurrently, retrying with next", entry_id)
                entry_id = entry_id.next()
                continue
            except BaseException as exc:
                _discard(tmp)
                if isinstance(exc, OSError):
                    raise from_os_error(final, exc) from exc
                raise
            break
        self._after_publish(tmp, entry_id)
        logger.debug("wrote entry %s (%d bytes)", entry_id, len(blob))
        return entry_id

    def read_entry(self, entry_id: IdLike, key: SecretKey) -> StoredEntry:
        """Return content and metadata of *entry_id*.

        ``DecryptionFailed`` from the codec propagates unchanged.
        """
        eid = _coerce_id(entry_id)
        path = self.entries / str(eid)
        try:
            blob = path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise EntryNotFound(f"No entry {eid}") from exc
        except OSError as exc:
            raise from_os_error(path, exc) from exc
        metadata, content = unpack_record(decrypt_entry(blob, key, aad=eid.aad()))
        return StoredEntry(id=eid, metadata=metadata, content=content)

    def read_one(self, entry_id: IdLike, key: SecretKey) -> bytes:
        """Return the decrypted content of *entry_id*."""
        return self.read_entry(entry_id, key).content

    def update(
        self,
        entry_id: IdLike,
        content: bytes,
        key: SecretKey,
        now: Optional[datetime] = None,
    ) -> EntryId:
        """Re-encrypt an existing entry in place under a fresh nonce.

        The previous record must decrypt under *key*; its creation time and
        author are kept and ``modified`` is set to *now*.
        """
        current = self.read_entry(entry_id, key)
        eid = current.id
        final = self.entries / str(eid)
        metadata = current.metadata.touched(now or datetime.now(timezone.utc))
        blob = encrypt_entry(pack_record(metadata, content), key, aad=eid.aad()).to_bytes()
        try:
            tmp = _write_temp(self.entries, str(eid), blob)
            try:
                os.replace(tmp, final)
            except BaseException:
                _discard(tmp)
                raise
            _fsync_dir(self.entries)
        except OSError as exc:
            raise from_os_error(final, exc) from exc
        logger.debug("updated entry %s", eid)
        return eid

    def list_ids(self) -> List[EntryId]:
        """Return all entry ids in chronological order. No decryption."""
        try:
            names = os.listdir(self.entries)
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise from_os_error(self.entries, exc) from exc
        ids: List[EntryId] = []
        for name in names:
            if name.startswith("."):
                continue
            try:
                ids.append(EntryId.parse(name))
            except ValueError:
                logger.debug("ignoring foreign file %s in %s", name, self.entries)
        return sorted(ids)
