"""Lock-bound Rust package builds.

Python equivalent of ``rustPlatform.buildRustPackage`` with
``cargoLock.lockFile``::

    pkg = plan(SourceTree.from_path("."), load_lock_file("Cargo.lock"), toolchain)

Every crate in the lock becomes a fixed-output fetch pinned by its
checksum, the fetches are gathered into a vendor directory (as
``importCargoLock`` does), and the package derivation builds the source
offline against that directory with the resolved toolchain. Git
dependencies are fetched at their locked commit, vendored the same way
and registered as source replacements in the build's cargo config.

Planning never builds anything. The result is a content-addressed
description: the same source, lock and toolchain always give the same
.drv path, and changing any of them gives a different one.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from flk.store_path import check_name, make_text_store_path, split_store_path
from flkpkgs.drv import Package, drv
from flkpkgs.errors import ConfigError, LockFileInvalid
from flkpkgs.fetchurl import fetchurl
from flkpkgs.lockfile import LockEntry, LockFile, validate
from flkpkgs.source import SourceTree
from flkpkgs.systems import System
from flkpkgs.toolchain import Toolchain

logger = logging.getLogger(__name__)

DEPENDENCY_TABLES = ("dependencies", "dev-dependencies", "build-dependencies")

VENDOR_SCRIPT = """\
set -e
mkdir -p "$out"
for spec in $crateSpecs; do
  tarball=${spec%%=*}
  checksum=${spec#*=}
  name=${tarball##*-crate-}
  dir="$out/${name%.tar.gz}"
  mkdir -p "$dir"
  tar -xzf "$tarball" -C "$dir" --strip-components=1
  printf '{"files":{},"package":"%s"}' "$checksum" > "$dir/.cargo-checksum.json"
done
for spec in $gitCrates; do
  src=${spec%%=*}
  rest=${spec#*=}
  name=${rest%%=*}
  version=${rest#*=}
  manifest=$(grep -rlE --include=Cargo.toml "^name = \\"$name\\"$" "$src" | head -n 1)
  if [ -z "$manifest" ]; then
    echo "no crate $name in $src" >&2
    exit 1
  fi
  dir="$out/$name-$version"
  cp -r "$(dirname "$manifest")" "$dir"
  chmod -R u+w "$dir"
  printf '{"files":{},"package":null}' > "$dir/.cargo-checksum.json"
done
cp "$cargoLock" "$out/Cargo.lock"
"""

BUILD_SCRIPT = """\
set -e
cp -r "$src" ./source
chmod -R u+w ./source
cd ./source
mkdir -p .cargo
cat > .cargo/config.toml <<EOF
[source.crates-io]
replace-with = "vendored-sources"
[source.vendored-sources]
directory = "$cargoDeps"
EOF
printf '%s' "$cargoGitSources" >> .cargo/config.toml
export CARGO_HOME="$PWD/.cargo-home" RUSTC
"$CARGO" build --frozen --offline --profile "$cargoBuildType"
mkdir -p "$out/bin"
for p in $programs; do
  cp "target/$cargoBuildType/$p" "$out/bin/"
done
"""


@dataclass(frozen=True)
class PackageDerivation:
    """A planned package build and what it will produce."""

    pname: str
    version: str
    package: Package
    toolchain: Toolchain
    source: SourceTree
    lock: LockFile
    programs: tuple[str, ...]
    vendor: Package

    @property
    def drv_path(self) -> str:
        return self.package.drv_path

    @property
    def out(self) -> str:
        return self.package.out

    @property
    def content_address(self) -> str:
        return split_store_path(self.package.drv_path)[0]

    @property
    def system(self) -> System:
        return self.toolchain.system

    @property
    def main_program(self) -> str | None:
        if self.pname in self.programs:
            return self.pname
        return self.programs[0] if self.programs else None

    def program_path(self, name: str) -> str:
        return f"{self.out}/bin/{name}"

    def __str__(self) -> str:
        return self.out


def manifest_dependencies(manifest: Mapping) -> set[str]:
    """Crate names a Cargo.toml depends on, renames resolved."""
    tables = [manifest, *manifest.get("target", {}).values()]
    names = set()
    for table in tables:
        for key in DEPENDENCY_TABLES:
            for dep, spec in table.get(key, {}).items():
                if isinstance(spec, Mapping) and "package" in spec:
                    dep = spec["package"]
                names.add(dep)
    return names


def manifest_programs(source: SourceTree) -> tuple[str, ...]:
    """Binaries cargo would build: ``[[bin]]`` targets plus auto-discovered ones."""
    manifest = source.manifest
    if not manifest or "package" not in manifest:
        return ()
    package = manifest["package"]
    names = [b["name"] for b in manifest.get("bin", []) if isinstance(b, Mapping) and "name" in b]
    if package.get("autobins", True):
        if source.exists("src/main.rs") and "name" in package:
            names.append(package["name"])
        src_dir = source.tree.get("src")
        bin_dir = src_dir.get("bin") if isinstance(src_dir, Mapping) else None
        if isinstance(bin_dir, Mapping):
            names += [f[:-3] for f in sorted(bin_dir) if f.endswith(".rs")]
    return tuple(dict.fromkeys(names))


def check_manifest(source: SourceTree, lock: LockFile) -> None:
    """The manifest and the lock must agree on which crates exist."""
    manifest = source.manifest
    if manifest is None:
        return
    locked = lock.names()
    package = manifest.get("package", {})
    if not isinstance(package, Mapping):
        raise LockFileInvalid("Cargo.toml [package] is not a table")
    if "package" in manifest and not isinstance(package.get("name"), str):
        raise LockFileInvalid("Cargo.toml [package] has no name")
    if "name" in package and package["name"] not in locked:
        raise LockFileInvalid(f"package {package['name']!r} is missing from the lock file")
    missing = sorted(manifest_dependencies(manifest) - locked)
    if missing:
        raise LockFileInvalid(f"dependencies missing from the lock file: {', '.join(missing)}")


def _git_parts(entry: LockEntry):
    """``git+https://github.com/o/r?rev=abc#abc`` → (url, (kind, value) | None, commit)."""
    url = urlparse(entry.source.removeprefix("git+"))
    if url.scheme not in ("https", "http", "ssh") or not url.fragment:
        raise LockFileInvalid(f"unsupported git source for {entry.key}: {entry.source}")
    query = parse_qs(url.query)
    ref = next(((kind, query[kind][0]) for kind in ("rev", "tag", "branch") if kind in query), None)
    return url._replace(query="", fragment=""), ref, url.fragment


def _git_fetch(entry: LockEntry, output_hashes: Mapping[str, str]) -> Package:
    if entry.key not in output_hashes:
        raise LockFileInvalid(f"git dependency {entry.key} needs an entry in output_hashes")
    url, _, commit = _git_parts(entry)
    if url.hostname != "github.com":
        raise LockFileInvalid(f"unsupported git source for {entry.key}: {entry.source}")
    repo = url.path.removesuffix(".git").strip("/")
    try:
        return fetchurl(
            f"{entry.name}-{entry.version}",
            f"https://github.com/{repo}/archive/{commit}.tar.gz",
            output_hashes[entry.key],
            unpack=True,
        )
    except ValueError as e:
        raise LockFileInvalid(f"bad output hash for git dependency {entry.key}: {e}") from e


def git_source_config(entries: Iterable[LockEntry]) -> str:
    """``.cargo/config.toml`` tables pointing each git source at the vendor directory."""
    tables: dict[str, list[str]] = {}
    for entry in entries:
        url, ref, _ = _git_parts(entry)
        key = f"git+{url.geturl()}" + (f"?{ref[0]}={ref[1]}" if ref else "")
        lines = [f"[source.{json.dumps(key)}]", f"git = {json.dumps(url.geturl())}"]
        if ref:
            lines.append(f"{ref[0]} = {json.dumps(ref[1])}")
        lines.append('replace-with = "vendored-sources"')
        tables.setdefault(key, lines)
    return "".join("\n".join(lines) + "\n" for lines in tables.values())


def _store_name(name: str, what: str) -> str:
    try:
        return check_name(name)
    except ValueError as e:
        raise ConfigError(f"invalid {what}: {e}") from e


def plan(
    source: SourceTree,
    lock: LockFile,
    toolchain: Toolchain,
    *,
    name: str | None = None,
    version: str | None = None,
    system: System | str | None = None,
    build_type: str = "release",
    allow_multiple_versions: bool = False,
    output_hashes: Mapping[str, str] | None = None,
) -> PackageDerivation:
    """Describe the build of ``source`` against ``lock`` with ``toolchain``.

    Raises LockFileInvalid when the lock is inconsistent or disagrees
    with the manifest, ConfigError when the package or source name cannot
    name a store path, SystemMismatch when ``system`` is given and differs
    from the toolchain's.
    """
    if system is not None:
        toolchain.check_system(system)
    lock = validate(lock, allow_multiple_versions=allow_multiple_versions)
    check_manifest(source, lock)

    package_meta = (source.manifest or {}).get("package", {})
    pname = name or package_meta.get("name") or source.name
    version = version if version is not None else package_meta.get("version", "")
    if not isinstance(version, str):
        # version.workspace = true
        version = ""
    package_name = _store_name(f"{pname}-{version}" if version else pname, "package name")
    vendor_name = _store_name(f"{pname}-vendor", "package name")
    _store_name(source.name, "source name")
    programs = manifest_programs(source)
    platform = str(toolchain.system)

    registry = lock.registry_entries()
    try:
        crates = [
            fetchurl(f"crate-{e.name}-{e.version}.tar.gz", e.download_url(), e.checksum)
            for e in registry
        ]
    except ValueError as e:
        raise LockFileInvalid(f"cannot fetch locked crate: {e}") from e
    git = lock.git_entries()
    git_sources = [_git_fetch(e, output_hashes or {}) for e in git]
    lock_path = make_text_store_path("Cargo.lock", lock.text.encode())

    vendor = drv(
        name=vendor_name,
        builder="/bin/sh",
        system=platform,
        args=["-c", VENDOR_SCRIPT],
        deps=crates + git_sources,
        srcs=[lock_path],
        env={
            "cargoLock": lock_path,
            "crateSpecs": " ".join(f"{c}={e.checksum}" for c, e in zip(crates, registry)),
            "gitCrates": " ".join(f"{g}={e.name}={e.version}" for g, e in zip(git_sources, git)),
        },
    )

    package = drv(
        name=package_name,
        builder="/bin/sh",
        system=platform,
        args=["-c", BUILD_SCRIPT],
        deps=[toolchain.package, vendor],
        srcs=[source.store_path, lock_path],
        env={
            "CARGO": toolchain.build_tool,
            "RUSTC": toolchain.compiler,
            "NIX_MAIN_PROGRAM": pname if pname in programs else "",
            "cargoBuildType": build_type,
            "cargoDeps": str(vendor),
            "cargoGitSources": git_source_config(git),
            "cargoLock": lock_path,
            "pname": pname,
            "programs": " ".join(programs),
            "src": source.store_path,
            "version": version,
        },
    )
    logger.debug("%s: planned %s (%d crates, %d git) -> %s",
                 platform, package.name, len(crates), len(git_sources), package.drv_path)
    return PackageDerivation(
        pname=pname,
        version=version,
        package=package,
        toolchain=toolchain,
        source=source,
        lock=lock,
        programs=programs,
        vendor=vendor,
    )
