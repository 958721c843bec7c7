"""Per-system package index and the definitions it holds.

A PackageIndex is what ``import nixpkgs { inherit system overlays; }``
evaluates to: a read-only mapping from attribute name to definition,
bound to one system. Indices are values; ``merged()`` returns a new one.

Definitions are declarative. ``ToolDef.package(system)`` turns one into
a derivation only when a consumer asks for it.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from flk.hash import parse_sha256
from flk.store_path import check_name
from flkpkgs.drv import Package, drv
from flkpkgs.fetchurl import fetchurl
from flkpkgs.systems import System


@dataclass(frozen=True)
class Source:
    """A prebuilt archive for one system, pinned by its unpacked NAR hash."""

    url: str
    sha256: str

    def __post_init__(self):
        if not isinstance(self.sha256, str):
            raise TypeError(f"sha256 must be a string, got {type(self.sha256).__name__}")
        parse_sha256(self.sha256)


@dataclass(frozen=True)
class ToolDef:
    """A tool that can be put on PATH.

    ``sources`` maps system names to archives. An empty mapping declares
    a tool that exists on every system and is provided as-is.
    """

    name: str
    version: str
    sources: Mapping[str, Source] = field(default_factory=dict)
    programs: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "sources", MappingProxyType(dict(self.sources)))
        object.__setattr__(self, "programs", tuple(self.programs or (self.name,)))
        check_name(self.pname)

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.name, self.version, tuple(sorted(self.sources))))

    @property
    def pname(self) -> str:
        return f"{self.name}-{self.version}"

    def supports(self, system: System | str) -> bool:
        return not self.sources or str(system) in self.sources

    def package(self, system: System | str) -> Package:
        system = str(system)
        if not self.supports(system):
            raise KeyError(f"{self.name} has no source for {system}")
        src = self.sources.get(system)
        if src is None:
            return drv(
                name=self.pname,
                builder="/bin/sh",
                system=system,
                args=["-c", "mkdir -p $out/bin"],
                env={"pname": self.name, "version": self.version,
                     "programs": " ".join(self.programs)},
            )
        return fetchurl(f"{self.pname}-{system}", src.url, src.sha256, unpack=True)


@dataclass(frozen=True)
class ToolchainDef(ToolDef):
    """A compiler toolchain published on a release channel.

    For Rust: channel ``stable``, compiler ``rustc``, linker ``cc`` and
    build tool ``cargo``, all shipped in the same archive.
    """

    channel: str = "stable"
    compiler: str = "rustc"
    linker: str = "cc"
    build_tool: str = "cargo"

    def __post_init__(self):
        super().__post_init__()
        if not self.channel:
            raise ValueError(f"toolchain {self.name} has no channel")

    def __hash__(self) -> int:
        return hash((super().__hash__(), self.channel))


class PackageIndex(Mapping):
    """Immutable name → definition mapping for one system."""

    def __init__(self, system: System | str, entries: Mapping[str, Any] | None = None):
        self._system = System.parse(system)
        self._entries = MappingProxyType(dict(entries or {}))

    @property
    def system(self) -> System:
        return self._system

    def __getitem__(self, name: str) -> Any:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other) -> bool:
        if isinstance(other, PackageIndex):
            return self._system == other._system and dict(self._entries) == dict(other._entries)
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"PackageIndex({str(self._system)!r}, {sorted(self._entries)!r})"

    def merged(self, delta: Mapping[str, Any]) -> PackageIndex:
        """A new index with ``delta`` layered on top (delta wins)."""
        return PackageIndex(self._system, {**self._entries, **delta})
