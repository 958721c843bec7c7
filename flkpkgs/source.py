"""Source trees imported into the store.

A SourceTree is the ``src = ./.`` of a package: a directory on disk or an
in-memory tree, addressed by its NAR hash. Directory imports are cleaned
the way ``lib.cleanSource`` does it, so VCS metadata, build products and
``result`` symlinks never perturb the hash.
"""

from __future__ import annotations

import fnmatch
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path

from flk.nar import File, Symlink, nar_hash
from flk.store_path import make_source_store_path
from flkpkgs.errors import LockFileInvalid

DEFAULT_EXCLUDES = (".git", ".hg", ".svn", "target", "result", "result-*", ".direnv", "*~", "*.swp")


def _excluded(name: str, patterns) -> bool:
    return any(fnmatch.fnmatch(name, p) for p in patterns)


def _read_tree(path: Path, excludes) -> Mapping | bytes | File | Symlink:
    if path.is_symlink():
        return Symlink(os.readlink(path))
    if path.is_file():
        return File(path.read_bytes(), os.access(path, os.X_OK))
    return {
        child.name: _read_tree(child, excludes)
        for child in sorted(path.iterdir())
        if not _excluded(child.name, excludes)
    }


def _as_node(value):
    if isinstance(value, str):
        return value.encode()
    if isinstance(value, Mapping):
        return {k: _as_node(v) for k, v in value.items()}
    return value


def _nest(files: Mapping[str, object]) -> dict:
    """``{"src/main.rs": "..."}`` → ``{"src": {"main.rs": b"..."}}``."""
    root: dict = {}
    for rel, contents in files.items():
        parts = [p for p in rel.split("/") if p]
        if not parts:
            raise ValueError(f"empty path in source tree: {rel!r}")
        node = root
        for part in parts[:-1]:
            node = node.setdefault(part, {})
            if not isinstance(node, dict):
                raise ValueError(f"{rel!r} is below a file")
        node[parts[-1]] = _as_node(contents)
    return root


@dataclass(frozen=True, eq=False)
class SourceTree:
    name: str
    tree: Mapping

    @classmethod
    def from_path(cls, path: str | Path, name: str = "source",
                  excludes: tuple[str, ...] = DEFAULT_EXCLUDES) -> SourceTree:
        path = Path(path)
        if not path.is_dir():
            raise FileNotFoundError(f"source tree is not a directory: {path}")
        return cls(name, _read_tree(path, excludes))

    @classmethod
    def from_files(cls, files: Mapping[str, object], name: str = "source") -> SourceTree:
        return cls(name, _nest(files))

    @classmethod
    def empty(cls, name: str = "source") -> SourceTree:
        return cls(name, {})

    def __eq__(self, other):
        if not isinstance(other, SourceTree):
            return NotImplemented
        return self.name == other.name and self.digest == other.digest

    def __hash__(self) -> int:
        return hash((self.name, self.digest))

    @cached_property
    def digest(self) -> bytes:
        return nar_hash(self.tree)

    @cached_property
    def store_path(self) -> str:
        return make_source_store_path(self.name, self.digest)

    @property
    def is_empty(self) -> bool:
        return not self.tree

    def read(self, rel: str) -> bytes | None:
        node = self.tree
        for part in rel.split("/"):
            if not isinstance(node, Mapping) or part not in node:
                return None
            node = node[part]
        if isinstance(node, File):
            return node.contents
        return node if isinstance(node, bytes) else None

    def exists(self, rel: str) -> bool:
        return self.read(rel) is not None

    @cached_property
    def manifest(self) -> dict | None:
        """Parsed ``Cargo.toml``, or None when the tree has none."""
        raw = self.read("Cargo.toml")
        if raw is None:
            return None
        try:
            return tomllib.loads(raw.decode())
        except (UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
            raise LockFileInvalid(f"Cargo.toml is not valid TOML: {e}") from e
