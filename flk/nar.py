"""NAR (Nix Archive) serialization and hashing.

NAR keeps only what matters for content addressing: file contents, the
executable bit, symlink targets and sorted directory entries. No
timestamps, owners or permission modes, so identical trees always give
identical bytes.

Every token is written as ``uint64_le(len) + bytes + zero pad to 8``::

    "nix-archive-1" node
    node := "(" "type" ( "regular" ["executable" ""] "contents" <data>
                       | "symlink" "target" <target>
                       | "directory" { "entry" "(" "name" <n> "node" node ")" } ) ")"

Trees can be real paths or in-memory mappings of name to ``bytes``,
``File``, ``Symlink`` or a nested mapping (a directory).

See: nix/src/libutil/archive.cc — dump()
"""

import hashlib
import os
import struct
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

NAR_MAGIC = "nix-archive-1"


@dataclass(frozen=True)
class File:
    contents: bytes
    executable: bool = False


@dataclass(frozen=True)
class Symlink:
    target: str


def _token(value: str | bytes) -> bytes:
    if isinstance(value, str):
        value = value.encode()
    return struct.pack("<Q", len(value)) + value + b"\0" * (-len(value) % 8)


def _regular(contents: bytes, executable: bool) -> list[bytes]:
    out = [_token("type"), _token("regular")]
    if executable:
        out += [_token("executable"), _token("")]
    return out + [_token("contents"), _token(contents)]


def _dump_path(path: Path, out: list[bytes]) -> None:
    out.append(_token("("))
    if path.is_symlink():
        out += [_token("type"), _token("symlink"), _token("target"), _token(os.readlink(path))]
    elif path.is_file():
        out += _regular(path.read_bytes(), os.access(path, os.X_OK))
    elif path.is_dir():
        out += [_token("type"), _token("directory")]
        for name in sorted(os.listdir(path)):
            out += [_token("entry"), _token("("), _token("name"), _token(name), _token("node")]
            _dump_path(path / name, out)
            out.append(_token(")"))
    else:
        raise ValueError(f"unsupported file type: {path}")
    out.append(_token(")"))


def _dump_node(node, out: list[bytes]) -> None:
    out.append(_token("("))
    if isinstance(node, bytes):
        out += _regular(node, False)
    elif isinstance(node, File):
        out += _regular(node.contents, node.executable)
    elif isinstance(node, Symlink):
        out += [_token("type"), _token("symlink"), _token("target"), _token(node.target)]
    elif isinstance(node, Mapping):
        out += [_token("type"), _token("directory")]
        for name in sorted(node):
            if not name or "/" in name or name in (".", ".."):
                raise ValueError(f"invalid NAR entry name: {name!r}")
            out += [_token("entry"), _token("("), _token("name"), _token(name), _token("node")]
            _dump_node(node[name], out)
            out.append(_token(")"))
    else:
        raise ValueError(f"unsupported tree node: {type(node).__name__}")
    out.append(_token(")"))


def nar_serialize(tree) -> bytes:
    """Serialize a filesystem path or an in-memory tree to NAR bytes."""
    out = [_token(NAR_MAGIC)]
    if isinstance(tree, (str, Path)):
        _dump_path(Path(tree), out)
    else:
        _dump_node(tree, out)
    return b"".join(out)


def nar_hash(tree) -> bytes:
    """SHA-256 of the NAR serialization, what ``nix hash path`` prints."""
    return hashlib.sha256(nar_serialize(tree)).digest()


def nar_hash_hex(tree) -> str:
    return nar_hash(tree).hex()
