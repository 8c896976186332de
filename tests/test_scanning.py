import hashlib
import os

import pytest

from pelico.exceptions import FileHashError, InvalidRootError
from pelico.models import ContentIdentity
from pelico.scanning.filesystem import DirectoryWalker
from pelico.scanning.hasher import FileHasher


def test_compute_identity(tmp_path):
    p = tmp_path / "sample.rom"
    data = b"hello world" * 10
    p.write_bytes(data)

    ident = FileHasher().compute_identity(p)
    assert ident.digest == hashlib.sha256(data).hexdigest()
    assert ident.size_bytes == len(data)


def test_identity_is_stable_and_path_independent(tmp_path):
    a = tmp_path / "a.rom"
    b = tmp_path / "sub" / "b.rom"
    b.parent.mkdir()
    a.write_bytes(b"same bytes")
    b.write_bytes(b"same bytes")

    hasher = FileHasher()
    assert hasher.compute_identity(a) == hasher.compute_identity(a)
    assert hasher.compute_identity(a) == hasher.compute_identity(b)


def test_one_byte_change_changes_identity(tmp_path):
    p = tmp_path / "game.rom"
    p.write_bytes(b"\x00" * 1024)
    hasher = FileHasher()
    before = hasher.compute_identity(p)

    p.write_bytes(b"\x00" * 1023 + b"\x01")
    after = hasher.compute_identity(p)
    assert before != after
    assert before.size_bytes == after.size_bytes


def test_chunked_read_matches_single_read(tmp_path):
    p = tmp_path / "big.iso"
    data = os.urandom(10_000)
    p.write_bytes(data)

    assert FileHasher(chunk_size=7).compute_identity(p) == FileHasher().compute_identity(p)


def test_empty_file_has_identity(tmp_path):
    p = tmp_path / "empty.rom"
    p.write_bytes(b"")
    ident = FileHasher().compute_identity(p)
    assert ident == ContentIdentity(hashlib.sha256(b"").hexdigest(), 0)


def test_missing_file_raises_file_hash_error(tmp_path):
    missing = tmp_path / "gone.rom"
    with pytest.raises(FileHashError) as exc:
        FileHasher().compute_identity(missing)
    assert exc.value.path == missing
    assert isinstance(exc.value, OSError)


def test_walker_rejects_missing_root(tmp_path):
    with pytest.raises(InvalidRootError):
        DirectoryWalker(tmp_path / "nope")


def test_walker_rejects_file_root(tmp_path):
    f = tmp_path / "file.rom"
    f.write_bytes(b"x")
    with pytest.raises(InvalidRootError):
        DirectoryWalker(f)


def test_walker_filters_extensions_case_insensitively(tmp_path):
    (tmp_path / "a.ROM").write_bytes(b"a")
    (tmp_path / "b.sfc").write_bytes(b"b")
    (tmp_path / "notes.txt").write_text("skip me")
    sub = tmp_path / "nested" / "deeper"
    sub.mkdir(parents=True)
    (sub / "c.rom").write_bytes(b"c")

    walker = DirectoryWalker(tmp_path, extensions=["rom", ".SFC"])
    names = sorted(d.path.name for d in walker)
    assert names == ["a.ROM", "b.sfc", "c.rom"]


def test_walker_descriptor_fields(tmp_path):
    p = tmp_path / "Zelda.N64"
    p.write_bytes(b"12345")

    [desc] = list(DirectoryWalker(tmp_path, extensions=[".n64"]))
    assert desc.path.is_absolute()
    assert desc.size_bytes == 5
    assert desc.ext == ".n64"


def test_walker_is_restartable(tmp_path):
    for name in ("a.rom", "b.rom"):
        (tmp_path / name).write_bytes(name.encode())

    walker = DirectoryWalker(tmp_path, extensions=[".rom"])
    first = sorted(d.path for d in walker)
    second = sorted(d.path for d in walker)
    assert first == second
    assert len(first) == 2


def test_walker_skips_dirs(tmp_path):
    skip = tmp_path / "skip"
    skip.mkdir()
    (skip / "hidden.rom").write_bytes(b"h")
    (tmp_path / "kept.rom").write_bytes(b"k")

    walker = DirectoryWalker(tmp_path, extensions=[".rom"], skip_dirs={skip})
    assert [d.path.name for d in walker] == ["kept.rom"]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_walker_survives_symlink_cycle(tmp_path):
    sub = tmp_path / "sub"
    sub.mkdir()
    (sub / "game.rom").write_bytes(b"g")
    os.symlink(tmp_path, sub / "loop", target_is_directory=True)

    paths = list(DirectoryWalker(tmp_path, extensions=[".rom"]))
    assert len(paths) == 1


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_walker_follows_symlinked_dirs_once(tmp_path):
    real = tmp_path / "real"
    real.mkdir()
    (real / "game.rom").write_bytes(b"g")
    os.symlink(real, tmp_path / "alias", target_is_directory=True)

    paths = list(DirectoryWalker(tmp_path, extensions=[".rom"]))
    assert len(paths) == 1


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs a non-root POSIX user")
def test_walker_records_unreadable_directory(tmp_path):
    locked = tmp_path / "locked"
    locked.mkdir()
    (locked / "secret.rom").write_bytes(b"s")
    (tmp_path / "open.rom").write_bytes(b"o")
    locked.chmod(0)
    try:
        walker = DirectoryWalker(tmp_path, extensions=[".rom"])
        names = [d.path.name for d in walker]
    finally:
        locked.chmod(0o755)

    assert names == ["open.rom"]
    assert any("locked" in w for w in walker.warnings)


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs a non-root POSIX user")
def test_walker_skips_unreadable_file(tmp_path):
    p = tmp_path / "private.rom"
    p.write_bytes(b"p")
    p.chmod(0)
    try:
        walker = DirectoryWalker(tmp_path, extensions=[".rom"])
        assert list(walker) == []
    finally:
        p.chmod(0o644)
    assert walker.warnings
