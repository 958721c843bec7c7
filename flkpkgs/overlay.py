"""Overlay composition by lazy fixed point.

An overlay is Nix's ``final: prev: { ... }``::

    def rust_overlay(final, prev):
        return {
            "rust-bin": rust_bin_for(prev.system),
            "rustfmt": Patch(lambda old: replace(old, version="1.8.0")),
            "clippy": Lazy(lambda: final["rust-bin"]["stable"]["latest"]),
        }

Overlays are applied in order and the last writer of a name wins. Values
in the returned mapping are taken as-is, except:

  Patch(fn) — rewrite an entry that must already exist in ``prev``
  Lazy(fn)  — compute the entry later, possibly reading ``final``

``prev`` is the set as of the previous overlay and ``final`` the fully
composed one. Both are lazy: nothing is forced until every overlay has
run, then all entries are evaluated and frozen into a PackageIndex, so
the result is a plain value that compares structurally.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from flkpkgs.errors import FlakeError, OverlayConflict
from flkpkgs.index import PackageIndex
from flkpkgs.systems import System

logger = logging.getLogger(__name__)

Overlay = Callable[["LazyIndex", "LazyIndex"], Mapping[str, Any]]


@dataclass(frozen=True)
class Patch:
    fn: Callable[[Any], Any]


@dataclass(frozen=True)
class Lazy:
    fn: Callable[[], Any]


class LazyIndex(Mapping):
    """Name → thunk mapping; each thunk is forced at most once."""

    def __init__(self, system: System, thunks: dict[str, Callable[[], Any]] | None = None):
        self.system = system
        self.thunks = thunks or {}
        self._cache: dict[str, Any] = {}
        self._evaluating: list[str] = []

    def __getitem__(self, name: str) -> Any:
        if name in self._cache:
            return self._cache[name]
        if name not in self.thunks:
            raise KeyError(name)
        if name in self._evaluating:
            cycle = " -> ".join([*self._evaluating[self._evaluating.index(name):], name])
            raise OverlayConflict(f"infinite recursion evaluating {cycle}")
        self._evaluating.append(name)
        try:
            value = self.thunks[name]()
        finally:
            self._evaluating.pop()
        self._cache[name] = value
        return value

    def __contains__(self, name) -> bool:
        return name in self.thunks

    def __iter__(self):
        return iter(self.thunks)

    def __len__(self) -> int:
        return len(self.thunks)


def _layer(name: str, value: Any, prev: LazyIndex) -> Callable[[], Any]:
    if isinstance(value, Patch):
        if name not in prev:
            raise OverlayConflict(f"overlay patches {name!r}, which is not defined")
        return lambda: value.fn(prev[name])
    if isinstance(value, Lazy):
        return value.fn
    return lambda: value


def compose(
    base: Mapping[str, Any] | Callable[[System], Mapping[str, Any]],
    overlays: Sequence[Overlay],
    system: System | str,
) -> PackageIndex:
    """Apply ``overlays`` in order over ``base`` for one system.

    ``base`` is either a mapping or a function of the system (the way
    nixpkgs is imported once per system). Raises OverlayConflict when an
    overlay is malformed or fails while it or a Lazy entry is evaluated;
    overriding an existing name is not an error.
    """
    system = System.parse(system)
    try:
        entries = base(system) if callable(base) else base
    except FlakeError:
        raise
    except Exception as e:
        raise OverlayConflict(f"base index for {system} failed: {type(e).__name__}: {e}") from e
    if not isinstance(entries, Mapping):
        raise OverlayConflict(f"base index for {system} is not a mapping")

    final = LazyIndex(system)
    prev = LazyIndex(system, {name: (lambda v=v: v) for name, v in entries.items()})

    for position, overlay in enumerate(overlays):
        label = getattr(overlay, "__name__", f"overlay #{position}")
        try:
            delta = overlay(final, prev)
        except KeyError as e:
            # reading final outside a Lazy lands here too: it is still empty
            raise OverlayConflict(f"{label} refers to undefined entry {e}") from e
        except FlakeError:
            raise
        except Exception as e:
            raise OverlayConflict(f"{label} failed: {type(e).__name__}: {e}") from e
        if not isinstance(delta, Mapping):
            raise OverlayConflict(f"{label} returned {type(delta).__name__}, expected a mapping")
        bad = [name for name in delta if not isinstance(name, str) or not name]
        if bad:
            raise OverlayConflict(f"{label} defines invalid names: {bad!r}")
        layer = {name: _layer(name, value, prev) for name, value in delta.items()}
        prev = LazyIndex(system, {**prev.thunks, **layer})
        logger.debug("%s: applied %s (%d names)", system, label, len(delta))

    final.thunks = prev.thunks
    forced = {}
    for name in final.thunks:
        try:
            forced[name] = final[name]
        except KeyError as e:
            raise OverlayConflict(f"{name!r} refers to undefined entry {e}") from e
        except FlakeError:
            raise
        except Exception as e:
            raise OverlayConflict(f"{name!r} failed: {type(e).__name__}: {e}") from e
    return PackageIndex(system, forced)
