"""Toolchain resolution.

Like ``pkgs.rust-bin.stable.latest.default`` from rust-overlay: pick the
toolchain published on a channel, at a pinned version or the newest one,
for exactly one system. Resolution only describes the toolchain; the
build runtime installs it when something depending on it is realized.
"""

import logging
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass

from flkpkgs.drv import Package
from flkpkgs.errors import SystemMismatch, ToolchainNotFound
from flkpkgs.index import PackageIndex, ToolchainDef
from flkpkgs.systems import System

logger = logging.getLogger(__name__)

LATEST = "latest"


@dataclass(frozen=True)
class VersionChannel:
    """``stable``, ``stable.latest``, ``stable.1.78.0``, ``nightly.2024-05-01``."""

    name: str
    version: str = LATEST

    def __str__(self) -> str:
        return f"{self.name}.{self.version}"

    @classmethod
    def parse(cls, text: "str | VersionChannel") -> "VersionChannel":
        if isinstance(text, VersionChannel):
            return text
        name, _, version = text.strip().partition(".")
        if not name:
            raise ValueError(f"empty channel name in {text!r}")
        return cls(name, version or LATEST)


@dataclass(frozen=True)
class Toolchain:
    """A resolved toolchain, bound to one system.

    ``compiler``, ``linker`` and ``build_tool`` are program paths inside
    the toolchain package.
    """

    name: str
    channel: str
    version: str
    system: System
    package: Package

    compiler: str
    linker: str
    build_tool: str

    @property
    def identity(self) -> str:
        """What a build depends on: the toolchain's .drv and the system."""
        return f"{self.package.drv_path}@{self.system}"

    def check_system(self, system: System | str) -> None:
        if System.parse(system) != self.system:
            raise SystemMismatch(
                f"toolchain {self.name}-{self.version} was resolved for {self.system}, not {system}"
            )


def _version_key(version: str) -> tuple:
    # numeric parts compare as numbers, so 1.10.0 sorts after 1.9.0
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in re.split(r"[.\-]", version))


def _walk(value, seen: set[int]) -> Iterator[ToolchainDef]:
    if isinstance(value, ToolchainDef):
        yield value
    elif isinstance(value, Mapping) and id(value) not in seen:
        seen.add(id(value))
        for key in sorted(value, key=str):
            yield from _walk(value[key], seen)


def candidates(index: PackageIndex) -> list[ToolchainDef]:
    """Every ToolchainDef reachable from ``index``, nested sets included."""
    found: dict[ToolchainDef, None] = {}
    for tc in _walk(index, set()):
        found.setdefault(tc, None)
    return list(found)


def resolve(index: PackageIndex, channel: "VersionChannel | str", system: System | str) -> Toolchain:
    """Select the toolchain for ``channel`` on ``system`` from ``index``.

    Raises ToolchainNotFound when the channel (or pinned version) has no
    entry supporting the system, and SystemMismatch when the index was
    composed for a different system.
    """
    system = System.parse(system)
    try:
        channel = VersionChannel.parse(channel)
    except ValueError as e:
        raise ToolchainNotFound(repr(channel), system) from e
    if index.system != system:
        raise SystemMismatch(f"index was composed for {index.system}, not {system}")

    matches = [
        tc for tc in candidates(index)
        if tc.channel == channel.name
        and (channel.version == LATEST or tc.version == channel.version)
        and tc.supports(system)
    ]
    if not matches:
        raise ToolchainNotFound(channel, system)

    chosen = max(matches, key=lambda tc: (_version_key(tc.version), tc.name))
    logger.debug("%s: channel %s resolved to %s", system, channel, chosen.pname)
    package = chosen.package(system)
    return Toolchain(
        name=chosen.name,
        channel=chosen.channel,
        version=chosen.version,
        system=system,
        package=package,
        compiler=f"{package}/bin/{chosen.compiler}",
        linker=f"{package}/bin/{chosen.linker}",
        build_tool=f"{package}/bin/{chosen.build_tool}",
    )
