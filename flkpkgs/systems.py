"""Target platforms and per-system evaluation.

A system is an ``<arch>-<os>`` pair such as ``x86_64-linux``. The
enumerator only ever reads the set of systems from the configuration it
is handed; nothing here inspects the host except ``current_system()``.

``each_system`` is flake-utils' ``eachSystem``: it evaluates a function
per system and transposes ``{system: {attr: value}}`` into
``{attr: {system: value}}``, the shape flake outputs use.
"""

import platform
from collections.abc import Callable, Iterable
from dataclasses import dataclass

KNOWN_ARCHES = ("aarch64", "armv7l", "i686", "powerpc64le", "riscv64", "x86_64")
KNOWN_OSES = ("darwin", "freebsd", "linux")

_MACHINE_ALIASES = {"amd64": "x86_64", "arm64": "aarch64", "x64": "x86_64"}


@dataclass(frozen=True, order=True)
class System:
    arch: str
    os: str

    def __str__(self) -> str:
        return f"{self.arch}-{self.os}"

    @classmethod
    def parse(cls, text: "str | System") -> "System":
        if isinstance(text, System):
            return text
        arch, sep, os_name = text.rpartition("-")
        if not sep or arch not in KNOWN_ARCHES or os_name not in KNOWN_OSES:
            raise ValueError(f"unknown system: {text!r}")
        return cls(arch, os_name)


# flake-utils' defaultSystems
DEFAULT_SYSTEMS = tuple(System.parse(s) for s in (
    "aarch64-linux",
    "aarch64-darwin",
    "x86_64-darwin",
    "x86_64-linux",
))


def enumerate_systems(config=None) -> tuple[System, ...]:
    """Systems to evaluate, in declaration order.

    ``config`` is anything with a ``systems`` attribute (a FlakeConfig);
    without one the default set is used. Duplicates are dropped, an
    empty list stays empty.
    """
    declared = DEFAULT_SYSTEMS if config is None else config.systems
    seen: dict[System, None] = {}
    for s in declared:
        seen.setdefault(System.parse(s), None)
    return tuple(seen)


def current_system() -> System:
    """The host platform, e.g. ``x86_64-linux`` on a typical CI runner."""
    machine = platform.machine().lower()
    return System.parse(f"{_MACHINE_ALIASES.get(machine, machine)}-{platform.system().lower()}")


def each_system(systems: Iterable[System], fn: Callable[[System], dict]) -> dict:
    out: dict = {}
    for system in systems:
        for attr, value in fn(system).items():
            out.setdefault(attr, {})[str(system)] = value
    return out
