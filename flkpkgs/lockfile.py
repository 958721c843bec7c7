"""Cargo.lock loading and validation.

The lock file is the single source of truth for dependency versions: the
package build vendors exactly what it lists and nothing else. It is
read, never written. Both the ``[[package]]`` layout (lock versions 2-4)
and the version-1 ``[metadata]`` checksum table are understood.
"""

from __future__ import annotations

import json
import re
import tomllib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from flk.hash import sha256
from flkpkgs.errors import LockFileInvalid

CRATES_IO_SOURCES = (
    "registry+https://github.com/rust-lang/crates.io-index",
    "sparse+https://index.crates.io/",
)
CRATES_IO_DOWNLOAD = "https://crates.io/api/v1/crates/{name}/{version}/download"

_CHECKSUM_RE = re.compile(r"^[0-9a-f]{64}$")
_DEP_RE = re.compile(r"^(?P<name>[^ ]+)(?: (?P<version>[^ ]+))?(?: \((?P<source>.+)\))?$")
_METADATA_KEY_RE = re.compile(r"^checksum (?P<name>[^ ]+) (?P<version>[^ ]+) \((?P<source>.+)\)$")


@dataclass(frozen=True)
class LockEntry:
    name: str
    version: str
    source: str | None = None
    checksum: str | None = None
    dependencies: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.name} {self.version}"

    @property
    def is_registry(self) -> bool:
        return self.source is not None and self.source.startswith(("registry+", "sparse+"))

    @property
    def is_git(self) -> bool:
        return self.source is not None and self.source.startswith("git+")

    @property
    def is_local(self) -> bool:
        """Workspace members and path dependencies have no source."""
        return self.source is None

    def download_url(self) -> str:
        if self.source not in CRATES_IO_SOURCES:
            raise LockFileInvalid(f"{self.key}: unsupported registry {self.source}")
        return CRATES_IO_DOWNLOAD.format(name=self.name, version=self.version)


@dataclass(frozen=True)
class LockFile:
    """Ordered lock entries plus the exact text they came from."""

    version: int
    entries: tuple[LockEntry, ...]
    text: str

    @property
    def digest(self) -> bytes:
        return sha256(self.text.encode())

    def names(self) -> set[str]:
        return {e.name for e in self.entries}

    def by_name(self, name: str) -> list[LockEntry]:
        return [e for e in self.entries if e.name == name]

    def registry_entries(self) -> list[LockEntry]:
        return [e for e in self.entries if e.is_registry]

    def git_entries(self) -> list[LockEntry]:
        return [e for e in self.entries if e.is_git]

    @classmethod
    def from_entries(cls, entries: Iterable[LockEntry], version: int = 3) -> LockFile:
        entries = tuple(entries)
        return cls(version, entries, render(entries, version))


def _toml_str(s: str) -> str:
    return json.dumps(s)


def render(entries: Iterable[LockEntry], version: int = 3) -> str:
    """Cargo's own layout, so a rendered lock reads like a generated one."""
    lines = [
        "# This file is automatically @generated by Cargo.",
        "# It is not intended for manual editing.",
        f"version = {version}",
    ]
    for e in entries:
        lines += ["", "[[package]]", f"name = {_toml_str(e.name)}", f"version = {_toml_str(e.version)}"]
        if e.source is not None:
            lines.append(f"source = {_toml_str(e.source)}")
        if e.checksum is not None:
            lines.append(f"checksum = {_toml_str(e.checksum)}")
        if e.dependencies:
            lines.append("dependencies = [")
            lines += [f" {_toml_str(d)}," for d in e.dependencies]
            lines.append("]")
    return "\n".join(lines) + "\n"


def parse_lock_file(text: str) -> LockFile:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise LockFileInvalid(f"Cargo.lock is not valid TOML: {e}") from e

    version = data.get("version", 1)
    if not isinstance(version, int) or not 1 <= version <= 4:
        raise LockFileInvalid(f"unsupported lock file version: {version!r}")

    metadata = data.get("metadata", {})
    legacy = {}
    for key, value in metadata.items() if isinstance(metadata, Mapping) else ():
        m = _METADATA_KEY_RE.match(key)
        if m:
            legacy[(m["name"], m["version"], m["source"])] = value

    raw = data.get("package", [])
    if not isinstance(raw, list):
        raise LockFileInvalid("[[package]] must be an array of tables")

    entries = []
    for i, pkg in enumerate(raw):
        if not isinstance(pkg, Mapping):
            raise LockFileInvalid(f"package #{i} is not a table")
        name, ver = pkg.get("name"), pkg.get("version")
        if not isinstance(name, str) or not name:
            raise LockFileInvalid(f"package #{i} has no name")
        if not isinstance(ver, str) or not ver:
            raise LockFileInvalid(f"package {name!r} has no version")
        source = pkg.get("source")
        checksum = pkg.get("checksum") or legacy.get((name, ver, source))
        deps = pkg.get("dependencies", [])
        if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
            raise LockFileInvalid(f"package {name!r} has malformed dependencies")
        entries.append(LockEntry(name, ver, source, checksum, tuple(deps)))

    return LockFile(version, tuple(entries), text)


def load_lock_file(path: str | Path) -> LockFile:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise LockFileInvalid(f"cannot read lock file {path}: {e}") from e
    return parse_lock_file(text)


def validate(lock: LockFile, *, allow_multiple_versions: bool = False) -> LockFile:
    """Check the lock is internally consistent; return it with exact duplicates dropped.

    Rejected:
      - one name locked at several versions (unless allow_multiple_versions)
      - one name+version locked with different sources or checksums
      - registry entries without a sha256 checksum
      - dependency references that match no entry
    """
    unique: dict[tuple[str, str], LockEntry] = {}
    for e in lock.entries:
        seen = unique.get((e.name, e.version))
        if seen is None:
            unique[(e.name, e.version)] = e
        elif seen != e:
            raise LockFileInvalid(
                f"{e.key} is locked twice with different contents "
                f"({seen.source}, {seen.checksum}) vs ({e.source}, {e.checksum})"
            )

    versions: dict[str, list[str]] = {}
    for name, version in unique:
        versions.setdefault(name, []).append(version)
    if not allow_multiple_versions:
        conflicting = {n: v for n, v in versions.items() if len(v) > 1}
        if conflicting:
            detail = "; ".join(f"{n}: {', '.join(v)}" for n, v in sorted(conflicting.items()))
            raise LockFileInvalid(f"conflicting versions locked for the same name: {detail}")

    for e in unique.values():
        if e.is_registry and (e.checksum is None or not _CHECKSUM_RE.match(e.checksum)):
            raise LockFileInvalid(f"{e.key} from {e.source} has no valid sha256 checksum")
        for dep in e.dependencies:
            m = _DEP_RE.match(dep)
            if m is None or m["name"] not in versions:
                raise LockFileInvalid(f"{e.key} depends on {dep!r}, which is not locked")
            if m["version"] and m["version"] not in versions[m["name"]]:
                raise LockFileInvalid(f"{e.key} depends on {dep!r}, which is not locked")

    if len(unique) == len(lock.entries):
        return lock
    return LockFile(lock.version, tuple(unique.values()), lock.text)
