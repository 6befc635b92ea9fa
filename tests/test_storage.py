import pytest

from sealink.storage import DirectoryStorage


def test_lookup_inside_root(tmp_path):
    root = tmp_path / "ISLAND1"
    (root / "docs").mkdir(parents=True)
    (root / "helloworld.txt").write_bytes(b"hello world\n")
    (root / "docs" / "a.bin").write_bytes(b"\x00\x01")
    store = DirectoryStorage(root)

    assert store.lookup("/helloworld.txt") == b"hello world\n"
    assert store.lookup("helloworld.txt") == b"hello world\n"
    assert store.lookup("/docs/a.bin") == b"\x00\x01"


def test_lookup_missing_or_not_a_file(tmp_path):
    (tmp_path / "dir").mkdir()
    store = DirectoryStorage(tmp_path)
    assert store.lookup("/nope.txt") is None
    assert store.lookup("/dir") is None
    assert store.lookup("") is None


def test_lookup_cannot_escape_root(tmp_path):
    (tmp_path / "secret.txt").write_bytes(b"secret")
    root = tmp_path / "served"
    root.mkdir()
    store = DirectoryStorage(root)
    assert store.lookup("/../secret.txt") is None
    assert store.lookup("../secret.txt") is None
    assert store.lookup(str(tmp_path / "secret.txt")) is None


def test_root_must_exist(tmp_path):
    with pytest.raises(ValueError):
        DirectoryStorage(tmp_path / "missing")
