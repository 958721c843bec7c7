"""Flake configuration: the declared inputs, systems, overlays and tools.

Everything the pipeline evaluates comes from one FlakeConfig value that
is passed in explicitly. It can be built in Python or loaded from a
``flake.toml``::

    [flake]
    name = "zola"
    systems = ["x86_64-linux", "aarch64-darwin"]
    channel = "stable"
    src = "."
    lock-file = "Cargo.lock"
    overlays = ["my_overlays:rust_overlay"]
    allow-multiple-versions = true

    [dev-shell]
    tools = ["cargo-watch", "cargo-insta", "rust-analyzer"]

    [toolchains.rust-stable]
    channel = "stable"
    version = "1.78.0"
    [toolchains.rust-stable.sources.x86_64-linux]
    url = "https://static.rust-lang.org/dist/rust-1.78.0-x86_64-unknown-linux-gnu.tar.gz"
    sha256 = "..."

    [tools.cargo-watch]
    version = "8.5.2"

    [output-hashes]
    "some-git-crate 0.1.0" = "sha256-..."

``[toolchains.*]`` and ``[tools.*]`` tables form the base package index;
overlays are ``module:attribute`` references to Python callables.
"""

from __future__ import annotations

import importlib
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from flkpkgs.errors import ConfigError
from flkpkgs.index import Source, ToolchainDef, ToolDef
from flkpkgs.systems import DEFAULT_SYSTEMS, System
from flkpkgs.toolchain import VersionChannel

CONFIG_FILE = "flake.toml"


@dataclass(frozen=True)
class FlakeConfig:
    name: str | None = None
    systems: tuple[System, ...] = DEFAULT_SYSTEMS
    base: Mapping[str, Any] | Callable[[System], Mapping[str, Any]] = field(default_factory=dict)
    overlays: tuple[Callable, ...] = ()
    channel: str = "stable"
    src: Path = Path(".")
    lock_file: Path = Path("Cargo.lock")
    dev_tools: tuple[str, ...] = ()
    main_program: str | None = None
    build_type: str = "release"
    allow_multiple_versions: bool = False
    output_hashes: Mapping[str, str] = field(default_factory=dict)
    jobs: int | None = None

    def __post_init__(self):
        try:
            systems = tuple(System.parse(s) for s in self.systems)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        object.__setattr__(self, "systems", systems)
        object.__setattr__(self, "overlays", tuple(self.overlays))
        object.__setattr__(self, "dev_tools", tuple(self.dev_tools))
        object.__setattr__(self, "src", Path(self.src))
        object.__setattr__(self, "lock_file", Path(self.lock_file))
        if self.jobs is not None and self.jobs < 1:
            raise ConfigError(f"jobs must be positive, got {self.jobs}")
        try:
            VersionChannel.parse(self.channel)
        except (AttributeError, ValueError) as e:
            raise ConfigError(f"invalid channel {self.channel!r}") from e


def _expect(value, kind, where: str):
    if not isinstance(value, kind):
        raise ConfigError(f"{where} must be {getattr(kind, '__name__', kind)}, got {type(value).__name__}")
    return value


def _sources(table: Mapping, where: str) -> dict[str, Source]:
    out = {}
    for system, spec in _expect(table.get("sources", {}), dict, f"{where}.sources").items():
        try:
            System.parse(system)
            out[system] = Source(spec["url"], spec["sha256"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"{where}.sources.{system}: {e}") from e
    return out


def _tool(name: str, table: Mapping, where: str) -> ToolDef:
    _expect(table, dict, where)
    if "version" not in table:
        raise ConfigError(f"{where} has no version")
    try:
        return ToolDef(
            name=name,
            version=str(table["version"]),
            sources=_sources(table, where),
            programs=tuple(table.get("programs", ())),
        )
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from e


def _toolchain(name: str, table: Mapping, where: str) -> ToolchainDef:
    tool = _tool(name, table, where)
    try:
        return ToolchainDef(
            name=tool.name,
            version=tool.version,
            sources=tool.sources,
            programs=tool.programs,
            channel=table.get("channel", "stable"),
            compiler=table.get("compiler", "rustc"),
            linker=table.get("linker", "cc"),
            build_tool=table.get("build-tool", "cargo"),
        )
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from e


def load_object(ref: str) -> Any:
    """Import ``package.module:attr``."""
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"expected 'module:attribute', got {ref!r}")
    try:
        obj = importlib.import_module(module_name)
        for part in attr.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"cannot load {ref}: {e}") from e
    if not callable(obj):
        raise ConfigError(f"{ref} is not callable")
    return obj


def config_from_mapping(data: Mapping, root: Path = Path(".")) -> FlakeConfig:
    flake = _expect(data.get("flake", {}), dict, "[flake]")
    shell = _expect(data.get("dev-shell", {}), dict, "[dev-shell]")

    base: dict[str, Any] = {}
    for name, table in _expect(data.get("toolchains", {}), dict, "[toolchains]").items():
        base[name] = _toolchain(name, table, f"toolchains.{name}")
    for name, table in _expect(data.get("tools", {}), dict, "[tools]").items():
        if name in base:
            raise ConfigError(f"{name} is declared both as a tool and a toolchain")
        base[name] = _tool(name, table, f"tools.{name}")

    kwargs: dict[str, Any] = {}
    if "systems" in flake:
        kwargs["systems"] = tuple(_expect(flake["systems"], list, "flake.systems"))
    if "jobs" in flake:
        kwargs["jobs"] = _expect(flake["jobs"], int, "flake.jobs")
    return FlakeConfig(
        name=flake.get("name"),
        base=base,
        overlays=tuple(load_object(r) for r in _expect(flake.get("overlays", []), list, "flake.overlays")),
        channel=_expect(flake.get("channel", "stable"), str, "flake.channel"),
        src=root / flake.get("src", "."),
        lock_file=root / flake.get("lock-file", "Cargo.lock"),
        dev_tools=tuple(_expect(shell.get("tools", []), list, "dev-shell.tools")),
        main_program=flake.get("main-program"),
        build_type=flake.get("build-type", "release"),
        allow_multiple_versions=bool(flake.get("allow-multiple-versions", False)),
        output_hashes=dict(_expect(data.get("output-hashes", {}), dict, "[output-hashes]")),
        **kwargs,
    )


def load_config(path: str | Path = CONFIG_FILE) -> FlakeConfig:
    """Read ``flake.toml``; relative paths in it are relative to its directory."""
    path = Path(path)
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path} is not valid TOML: {e}") from e
    return config_from_mapping(data, path.parent)
