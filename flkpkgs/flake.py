"""Per-system evaluation of a flake.

The whole pipeline for one system::

    compose(base, overlays) ─▶ resolve(channel) ─┬─▶ plan(src, lock) ─▶ wrap()
                                                  └─▶ assemble(dev tools)

Systems are evaluated concurrently and share nothing but immutable
inputs (the source tree and lock file, read once). A failure is recorded
against the branch and system that hit it; every other branch and system
still produces its outputs.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType

from flkpkgs.app import AppRef, wrap
from flkpkgs.cargo import PackageDerivation, plan
from flkpkgs.config import FlakeConfig
from flkpkgs.dev_shell import DevShell, assemble
from flkpkgs.errors import ConfigError, FlakeError
from flkpkgs.index import PackageIndex
from flkpkgs.lockfile import LockFile, load_lock_file
from flkpkgs.overlay import compose
from flkpkgs.source import SourceTree
from flkpkgs.systems import System, each_system, enumerate_systems
from flkpkgs.toolchain import Toolchain, resolve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Inputs:
    """The flake's file inputs, loaded once and shared read-only."""

    source: SourceTree
    lock: LockFile | None
    lock_error: FlakeError | None = None

    @classmethod
    def load(cls, config: FlakeConfig) -> Inputs:
        try:
            source = SourceTree.from_path(config.src, name=config.name or "source")
        except FileNotFoundError as e:
            raise ConfigError(str(e)) from e
        try:
            return cls(source, load_lock_file(config.lock_file))
        except FlakeError as e:
            return cls(source, None, e)


@dataclass(frozen=True)
class SystemOutputs:
    system: System
    index: PackageIndex | None = None
    toolchain: Toolchain | None = None
    package: PackageDerivation | None = None
    app: AppRef | None = None
    dev_shell: DevShell | None = None
    errors: Mapping[str, FlakeError] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "errors", MappingProxyType(dict(self.errors)))

    @property
    def ok(self) -> bool:
        return not self.errors

    def error_for(self, stage: str) -> FlakeError | None:
        """The error that kept ``stage`` from producing output, if any.

        Later stages inherit the failure of the stage they depend on.
        """
        chain = {
            "overlay": ("overlay",),
            "toolchain": ("overlay", "toolchain"),
            "package": ("overlay", "toolchain", "package"),
            "app": ("overlay", "toolchain", "package", "app"),
            "shell": ("overlay", "toolchain", "shell"),
        }[stage]
        for s in chain:
            if s in self.errors:
                return self.errors[s]
        return None

    def require(self, stage: str):
        """Return the output of ``stage`` or raise the error that blocked it."""
        error = self.error_for(stage)
        if error is not None:
            raise error
        return {
            "overlay": self.index,
            "toolchain": self.toolchain,
            "package": self.package,
            "app": self.app,
            "shell": self.dev_shell,
        }[stage]


def _package_branch(config: FlakeConfig, inputs: Inputs, toolchain: Toolchain) -> dict:
    result: dict = {"errors": {}}
    if inputs.lock is None:
        result["errors"]["package"] = inputs.lock_error
        return result
    try:
        result["package"] = plan(
            inputs.source, inputs.lock, toolchain,
            name=config.name,
            build_type=config.build_type,
            allow_multiple_versions=config.allow_multiple_versions,
            output_hashes=config.output_hashes,
        )
    except FlakeError as e:
        result["errors"]["package"] = e
        return result
    try:
        result["app"] = wrap(result["package"], config.main_program)
    except FlakeError as e:
        result["errors"]["app"] = e
    return result


def _shell_branch(config: FlakeConfig, index: PackageIndex, toolchain: Toolchain) -> dict:
    try:
        return {"dev_shell": assemble(toolchain, config.dev_tools, index), "errors": {}}
    except FlakeError as e:
        return {"errors": {"shell": e}}


def evaluate_system(config: FlakeConfig, system: System, inputs: Inputs) -> SystemOutputs:
    try:
        index = compose(config.base, config.overlays, system)
    except FlakeError as e:
        return SystemOutputs(system, errors={"overlay": e})
    try:
        toolchain = resolve(index, config.channel, system)
    except FlakeError as e:
        return SystemOutputs(system, index=index, errors={"toolchain": e})

    with ThreadPoolExecutor(max_workers=2) as branches:
        package = branches.submit(_package_branch, config, inputs, toolchain)
        shell = branches.submit(_shell_branch, config, index, toolchain)
        package_result, shell_result = package.result(), shell.result()

    errors = {**package_result.pop("errors"), **shell_result.pop("errors")}
    return SystemOutputs(system, index=index, toolchain=toolchain,
                         errors=errors, **package_result, **shell_result)


def evaluate(
    config: FlakeConfig,
    systems: Iterable[System | str] | None = None,
    inputs: Inputs | None = None,
) -> dict[System, SystemOutputs]:
    """Evaluate every system (default: all the config declares) in parallel."""
    targets = enumerate_systems(config) if systems is None else tuple(System.parse(s) for s in systems)
    if not targets:
        return {}
    inputs = inputs or Inputs.load(config)

    with ThreadPoolExecutor(max_workers=config.jobs) as pool:
        futures = {s: pool.submit(evaluate_system, config, s, inputs) for s in targets}
        results = {s: f.result() for s, f in futures.items()}

    for system, out in results.items():
        for stage, error in out.errors.items():
            logger.warning("%s: %s failed: %s: %s", system, stage, error.kind, error)
    return results


def show(results: Mapping[System, SystemOutputs]) -> dict:
    """Flake-style output tree: ``packages.<system>.default`` and friends."""

    def describe(system: System) -> dict:
        out = results[system]
        tree: dict = {}
        if out.package is not None:
            tree["packages"] = {"default": {"name": out.package.package.name,
                                            "drvPath": out.package.drv_path,
                                            "outPath": out.package.out}}
        if out.app is not None:
            tree["apps"] = {"default": out.app.as_dict()}
        if out.dev_shell is not None:
            tree["devShells"] = {"default": {"packages": [p.name for p in out.dev_shell.packages]}}
        if out.errors:
            tree["errors"] = {stage: f"{e.kind}: {e}" for stage, e in out.errors.items()}
        return tree

    return each_system(sorted(results), describe)
