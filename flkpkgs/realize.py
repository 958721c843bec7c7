"""Hand planned derivations to the Nix daemon for building.

This is the only place that touches the store: it registers sources and
.drv files, then asks the daemon to build outputs. Everything it does
is idempotent, so a cancelled or failed realization can simply be run
again with the same inputs.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from collections.abc import Mapping
from pathlib import Path

from flk.daemon import DaemonConnection, NixDaemonError
from flk.derivation import serialize
from flk.nar import File, Symlink
from flkpkgs.cargo import PackageDerivation
from flkpkgs.dev_shell import DevShell
from flkpkgs.drv import Package
from flkpkgs.errors import RealizationError
from flkpkgs.source import SourceTree

logger = logging.getLogger(__name__)


class BuildRuntime:
    """Interface to whatever performs builds."""

    def realize(self, target: Package | PackageDerivation) -> str:
        """Build ``target``; return its default output path."""
        raise NotImplementedError

    def realize_shell(self, shell: DevShell) -> list[str]:
        """Build every tool in ``shell``; return the PATH entries."""
        for pkg in shell.packages:
            self.realize(pkg)
        return shell.path_entries


def write_tree(node, dest: Path) -> None:
    """Materialize an in-memory source tree at ``dest``."""
    if isinstance(node, Mapping):
        dest.mkdir()
        for name, child in node.items():
            write_tree(child, dest / name)
    elif isinstance(node, Symlink):
        os.symlink(node.target, dest)
    else:
        data = node.contents if isinstance(node, File) else node
        dest.write_bytes(data)
        if isinstance(node, File) and node.executable:
            dest.chmod(0o755)


class DaemonRuntime(BuildRuntime):
    """Builds through the daemon's worker protocol.

    Source trees go through ``nix-store --add`` from a filtered copy, so
    the path the store assigns can be checked against the planned one.
    """

    def __init__(self, socket_path: str | None = None, nix_store: str = "nix-store"):
        self.socket_path = socket_path
        self.nix_store = nix_store

    def _add_source(self, conn: DaemonConnection, source: SourceTree) -> None:
        if conn.is_valid_path(source.store_path):
            return
        if shutil.which(self.nix_store) is None:
            raise RealizationError(f"{self.nix_store} not found on PATH")
        with tempfile.TemporaryDirectory() as tmp:
            dest = Path(tmp) / source.name
            write_tree(source.tree, dest)
            proc = subprocess.run([self.nix_store, "--add", str(dest)],
                                  capture_output=True, text=True)
        if proc.returncode != 0:
            raise RealizationError(f"nix-store --add failed: {proc.stderr.strip()}")
        added = proc.stdout.strip()
        if added != source.store_path:
            raise RealizationError(f"source imported as {added}, planned {source.store_path}")

    def _register(self, conn: DaemonConnection, pkg: Package) -> None:
        for p in pkg.closure():
            refs = sorted(p.drv.input_drvs) + sorted(p.drv.input_srcs)
            path = conn.add_text_to_store(p.name + ".drv", serialize(p.drv), refs)
            if path != p.drv_path:
                raise RealizationError(f"daemon stored {p.name}.drv at {path}, expected {p.drv_path}")

    def realize(self, target: Package | PackageDerivation) -> str:
        pkg = target.package if isinstance(target, PackageDerivation) else target
        try:
            with DaemonConnection(self.socket_path) as conn:
                if isinstance(target, PackageDerivation):
                    conn.add_text_to_store("Cargo.lock", target.lock.text)
                    self._add_source(conn, target.source)
                self._register(conn, pkg)
                logger.info("building %s", pkg.drv_path)
                conn.build_paths([f"{pkg.drv_path}!{name}" for name in sorted(pkg.outputs)])
        except (NixDaemonError, OSError) as e:
            raise RealizationError(f"{pkg.name}: {e}") from e
        return pkg.out
