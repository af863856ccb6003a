from __future__ import annotations

import errno
import os
from pathlib import Path

import pytest

from jarida import locate as locate_mod
from jarida.errors import (
    AccessDenied,
    DiskFull,
    FilesystemRootReached,
    IoFailure,
    JournalExists,
    NoJournalFound,
)
from jarida.locate import (
    MARKER_NAME,
    find_in_ancestors,
    init_journal,
    is_journal_root,
    locate,
    read_salt,
)


def _tree(tmp_path: Path) -> Path:
    a = tmp_path / "a"
    (a / "b" / "c").mkdir(parents=True)
    (a / MARKER_NAME).mkdir()
    return a


def test_nearest_ancestor_marker_wins(tmp_path: Path) -> None:
    a = _tree(tmp_path)
    assert locate(a / "b" / "c") == a

    (a / "b" / MARKER_NAME).mkdir()
    assert locate(a / "b" / "c") == a / "b"
    assert locate(a) == a


def test_sentinel_file_marker(tmp_path: Path) -> None:
    root = tmp_path / "j"
    (root / "sub").mkdir(parents=True)
    (root / MARKER_NAME).write_text("", encoding="utf-8")
    assert is_journal_root(root)
    assert locate(root / "sub") == root


def test_relative_start(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    a = _tree(tmp_path)
    monkeypatch.chdir(a / "b")
    assert locate("c").resolve() == a.resolve()
    assert locate().resolve() == a.resolve()


def test_no_marker_and_no_home_journal(tmp_path: Path) -> None:
    outside = tmp_path / "elsewhere"
    outside.mkdir()
    with pytest.raises(FilesystemRootReached):
        find_in_ancestors(outside)
    with pytest.raises(NoJournalFound):
        locate(outside)


def test_home_fallback(tmp_path: Path, isolated_home: Path) -> None:
    outside = tmp_path / "elsewhere"
    outside.mkdir()
    (isolated_home / MARKER_NAME).mkdir()
    assert locate(outside) == isolated_home


def test_ancestor_preferred_over_home(tmp_path: Path, isolated_home: Path) -> None:
    a = _tree(tmp_path)
    (isolated_home / MARKER_NAME).mkdir()
    assert locate(a / "b") == a


def test_permission_error_is_access_denied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    a = _tree(tmp_path)
    blocked = a / "b" / MARKER_NAME
    real_stat = os.stat

    def fake_stat(path, *args, **kwargs):
        if Path(path) == blocked:
            raise PermissionError(13, "Permission denied", str(path))
        return real_stat(path, *args, **kwargs)

    monkeypatch.setattr(locate_mod.os, "stat", fake_stat)
    with pytest.raises(AccessDenied) as info:
        locate(a / "b" / "c")
    assert info.value.path == a / "b"


def test_init_journal_layout(tmp_path: Path) -> None:
    root = init_journal(tmp_path / "new")
    assert (root / MARKER_NAME).is_dir()
    assert (root / "entries").is_dir()
    assert len(read_salt(root)) == 16
    assert locate(root) == root


def test_init_journal_unsalted(tmp_path: Path) -> None:
    root = init_journal(tmp_path / "plain", salted=False)
    assert read_salt(root) == b""


def test_init_journal_salts_differ(tmp_path: Path) -> None:
    one = init_journal(tmp_path / "one")
    two = init_journal(tmp_path / "two")
    assert read_salt(one) != read_salt(two)


def test_init_journal_defaults_to_home(isolated_home: Path) -> None:
    assert init_journal() == isolated_home
    assert is_journal_root(isolated_home)


def test_init_journal_twice(tmp_path: Path) -> None:
    init_journal(tmp_path / "j")
    with pytest.raises(JournalExists):
        init_journal(tmp_path / "j")


@pytest.mark.skipif(not hasattr(os, "symlink") or os.name == "nt", reason="needs POSIX symlinks")
def test_marker_symlink_loop_is_mapped(tmp_path: Path) -> None:
    a = _tree(tmp_path)
    os.symlink(MARKER_NAME, a / "b" / MARKER_NAME)
    with pytest.raises(IoFailure) as info:
        locate(a / "b" / "c")
    assert info.value.errno == errno.ELOOP
    assert info.value.path == a / "b"


def test_failed_init_leaves_no_marker(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "j"

    def no_space(self, data):
        raise OSError(errno.ENOSPC, "No space left on device")

    with monkeypatch.context() as m:
        m.setattr(Path, "write_bytes", no_space)
        with pytest.raises(DiskFull):
            init_journal(target)
    assert not is_journal_root(target)
    assert [p.name for p in target.iterdir()] == ["entries"]

    root = init_journal(target)
    assert len(read_salt(root)) == 16


def test_malformed_salt_is_rejected(tmp_path: Path) -> None:
    root = init_journal(tmp_path / "j")
    (root / MARKER_NAME / "salt").write_bytes(b"short")
    with pytest.raises(IoFailure):
        read_salt(root)
