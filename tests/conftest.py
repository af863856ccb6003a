from __future__ import annotations

from pathlib import Path

import pytest

from jarida.crypto import KdfParams, derive_key
from jarida.locate import HOME_ENV, init_journal

FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def fast_kdf() -> KdfParams:
    return FAST_KDF


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv(HOME_ENV, str(home))
    return home


@pytest.fixture
def key():
    k = derive_key("alice", "correct horse", params=FAST_KDF)
    yield k
    k.clear()


@pytest.fixture
def other_key():
    k = derive_key("alice", "wrong horse", params=FAST_KDF)
    yield k
    k.clear()


@pytest.fixture
def journal(tmp_path: Path) -> Path:
    return init_journal(tmp_path / "journal")
