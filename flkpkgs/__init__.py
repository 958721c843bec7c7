"""flkpkgs — per-system toolchain, package, app and dev shell composition.

    from flkpkgs import FlakeConfig, evaluate

    results = evaluate(FlakeConfig(base=..., systems=["x86_64-linux"]))
    results[System.parse("x86_64-linux")].require("app")
"""

from flkpkgs.app import AppRef, wrap
from flkpkgs.cargo import PackageDerivation, plan
from flkpkgs.config import FlakeConfig, load_config
from flkpkgs.dev_shell import DevShell, ToolRef, assemble
from flkpkgs.drv import Package, drv
from flkpkgs.errors import (
    ConfigError, FlakeError, LockFileInvalid, NoOutputArtifact, OutputNotFound,
    OverlayConflict, RealizationError, SystemMismatch, ToolchainNotFound, ToolUnavailable,
)
from flkpkgs.flake import SystemOutputs, evaluate
from flkpkgs.index import PackageIndex, Source, ToolchainDef, ToolDef
from flkpkgs.lockfile import LockEntry, LockFile, load_lock_file, parse_lock_file
from flkpkgs.overlay import Lazy, Patch, compose
from flkpkgs.realize import BuildRuntime, DaemonRuntime
from flkpkgs.source import SourceTree
from flkpkgs.systems import DEFAULT_SYSTEMS, System, current_system, enumerate_systems
from flkpkgs.toolchain import Toolchain, VersionChannel, resolve

__all__ = [
    "System", "DEFAULT_SYSTEMS", "current_system", "enumerate_systems",
    "PackageIndex", "Source", "ToolDef", "ToolchainDef",
    "compose", "Patch", "Lazy",
    "Toolchain", "VersionChannel", "resolve",
    "LockEntry", "LockFile", "load_lock_file", "parse_lock_file",
    "SourceTree", "PackageDerivation", "plan",
    "AppRef", "wrap",
    "DevShell", "ToolRef", "assemble",
    "FlakeConfig", "load_config", "SystemOutputs", "evaluate",
    "BuildRuntime", "DaemonRuntime",
    "Package", "drv",
    "FlakeError", "ConfigError", "OverlayConflict", "ToolchainNotFound", "SystemMismatch",
    "LockFileInvalid", "NoOutputArtifact", "OutputNotFound", "ToolUnavailable", "RealizationError",
]
