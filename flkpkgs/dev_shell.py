"""Development shells, like ``pkgs.mkShell { buildInputs = [...]; }``.

A DevShell is just the toolchain plus a set of auxiliary tools, resolved
for one system. It has no outputs and is never stored: entering it means
realizing the tools and putting their ``bin`` directories on PATH.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from flkpkgs.drv import Package
from flkpkgs.errors import SystemMismatch, ToolUnavailable
from flkpkgs.index import PackageIndex, ToolDef
from flkpkgs.systems import System
from flkpkgs.toolchain import Toolchain

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class ToolRef:
    name: str

    def __str__(self) -> str:
        return self.name

    @classmethod
    def parse(cls, ref: ToolRef | str) -> ToolRef:
        return ref if isinstance(ref, ToolRef) else cls(ref)


@dataclass(frozen=True)
class DevShell:
    system: System
    toolchain: Toolchain
    tools: Mapping[str, Package]

    def __post_init__(self):
        object.__setattr__(self, "tools", MappingProxyType(dict(self.tools)))

    def __hash__(self) -> int:
        return hash((self.system, self.toolchain, tuple(sorted(self.tools))))

    @property
    def packages(self) -> tuple[Package, ...]:
        """Toolchain first, then tools by name; each derivation once."""
        unique = {self.toolchain.package.drv_path: self.toolchain.package}
        for name in sorted(self.tools):
            pkg = self.tools[name]
            unique.setdefault(pkg.drv_path, pkg)
        return tuple(unique.values())

    @property
    def path_entries(self) -> list[str]:
        return [f"{pkg}/bin" for pkg in self.packages]

    def env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Environment for a shell process: tools prepended to PATH."""
        env = dict(os.environ if base is None else base)
        path = os.pathsep.join(self.path_entries)
        env["PATH"] = f"{path}{os.pathsep}{env['PATH']}" if env.get("PATH") else path
        env["CARGO"] = self.toolchain.build_tool
        env["RUSTC"] = self.toolchain.compiler
        env["IN_NIX_SHELL"] = "impure"
        return env


def _resolve_tool(ref: ToolRef, index: PackageIndex, system: System) -> Package:
    if ref.name not in index:
        raise ToolUnavailable(f"{ref.name} is not defined for {system}")
    entry = index[ref.name]
    if isinstance(entry, Package):
        return entry
    if not isinstance(entry, ToolDef):
        raise ToolUnavailable(f"{ref.name} is not a tool ({type(entry).__name__})")
    if not entry.supports(system):
        raise ToolUnavailable(f"{ref.name} {entry.version} is not available for {system}")
    try:
        return entry.package(system)
    except (KeyError, ValueError) as e:
        raise ToolUnavailable(f"{ref.name} {entry.version} cannot be provided for {system}: {e}") from e


def assemble(
    toolchain: Toolchain,
    aux_tools: Iterable[ToolRef | str],
    index: PackageIndex,
) -> DevShell:
    """Build a DevShell from ``toolchain`` and tools looked up in ``index``.

    ``aux_tools`` is treated as a set: order is irrelevant and duplicates
    collapse. Raises ToolUnavailable for any tool that cannot be resolved
    on the toolchain's system.
    """
    system = toolchain.system
    if index.system != system:
        raise SystemMismatch(f"index is for {index.system}, toolchain for {system}")
    refs = sorted({ToolRef.parse(r) for r in aux_tools})
    tools = {ref.name: _resolve_tool(ref, index, system) for ref in refs}
    logger.debug("%s: dev shell with %s", system, ", ".join(tools) or "toolchain only")
    return DevShell(system, toolchain, tools)
