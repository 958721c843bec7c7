"""Tests for NAR serialization."""

import base64
import hashlib
import os
import struct
from pathlib import Path

import pytest

from flk.nar import File, Symlink, nar_hash, nar_hash_hex, nar_serialize


# From: nix hash path /tmp/hello.txt (file containing "hello", no newline)
HELLO_NAR_HASH = base64.b64decode("CkMIecJm+LV/QJKg+TXPP6zUi7zN5XYNR0jKQFFx6Wk=")


def _str(s: str | bytes) -> bytes:
    """NAR string encoding helper for building expected output."""
    if isinstance(s, str):
        s = s.encode()
    pad = (8 - len(s) % 8) % 8
    return struct.pack("<Q", len(s)) + s + b"\0" * pad


def test_regular_file(tmp_path):
    path = tmp_path / "hello.txt"
    path.write_text("hello")
    expected = (
        _str("nix-archive-1") + _str("(") + _str("type") + _str("regular")
        + _str("contents") + _str("hello") + _str(")")
    )
    assert nar_serialize(path) == expected
    assert nar_hash(path) == HELLO_NAR_HASH


def test_in_memory_file_matches_disk():
    assert nar_hash(b"hello") == HELLO_NAR_HASH
    assert nar_hash(File(b"hello")) == HELLO_NAR_HASH


def test_in_memory_tree_matches_disk(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.rs").write_text("fn main() {}")
    run = tmp_path / "run.sh"
    run.write_text("#!/bin/sh\n")
    os.chmod(run, 0o755)
    (tmp_path / "link").symlink_to("run.sh")

    tree = {
        "src": {"main.rs": b"fn main() {}"},
        "run.sh": File(b"#!/bin/sh\n", executable=True),
        "link": Symlink("run.sh"),
    }
    assert nar_hash_hex(tree) == nar_hash_hex(tmp_path)


def test_directory_entries_sorted(tmp_path):
    Path(tmp_path, "b.txt").write_text("bbb")
    Path(tmp_path, "a.txt").write_text("aaa")
    nar = nar_serialize(tmp_path)
    assert _str("directory") in nar
    assert nar.index(_str("a.txt")) < nar.index(_str("b.txt"))


def test_executable_bit_changes_hash():
    assert nar_hash(File(b"x", executable=True)) != nar_hash(File(b"x"))


def test_bad_entry_name():
    with pytest.raises(ValueError, match="invalid NAR entry name"):
        nar_serialize({"a/b": b""})


def test_hash_is_sha256_of_serialization():
    tree = {"a": b"1"}
    assert nar_hash(tree) == hashlib.sha256(nar_serialize(tree)).digest()
