"""High-level derivation constructor.

``drv()`` turns readable arguments into a Package: a derivation with its
output paths filled in and its own .drv store path computed::

    drv(name="hello", builder="/bin/sh", args=["-c", "echo hi > $out"])

Steps, as in Nix's derivationStrict:
  1. build the derivation with blank output paths
  2. hash it modulo its outputs (inputs replaced by their modular hash)
  3. derive each output path from that hash and fill them in
  4. serialize and address the .drv file as a text store path

Every Package remembers its own modular hash so dependants never have
to walk the graph again.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from flk.derivation import Derivation, DerivationOutput, hash_derivation_modulo, serialize
from flk.store_path import make_fixed_output_path, make_output_path, make_text_store_path


@dataclass(frozen=True)
class Package:
    """A fully resolved derivation.

    ``str(pkg)`` is the default output path, so packages interpolate into
    env values and builder paths the way Nix strings do.
    """

    name: str
    drv: Derivation
    drv_path: str
    outputs: Mapping[str, str]
    modulo_hash: bytes = field(repr=False)
    deps: tuple[Package, ...] = field(default=(), repr=False, compare=False)
    _args: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def out(self) -> str:
        return self.outputs["out"]

    def __str__(self) -> str:
        return self.out

    def __hash__(self) -> int:
        return hash(self.drv_path)

    def override(self, **kw) -> Package:
        """Re-derive with changed arguments, like ``pkg.override`` in Nix."""
        return drv(**{**self._args, **kw})

    def closure(self) -> list[Package]:
        """This package and every transitive dependency, dependencies first."""
        seen: dict[str, Package] = {}

        def visit(pkg: Package) -> None:
            if pkg.drv_path in seen:
                return
            for dep in pkg.deps:
                visit(dep)
            seen[pkg.drv_path] = pkg

        visit(self)
        return list(seen.values())


def drv(
    name: str,
    builder: str,
    system: str = "x86_64-linux",
    args: list[str] | None = None,
    env: Mapping[str, str] | None = None,
    output_names: list[str] | None = None,
    deps: list[Package] | None = None,
    srcs: list[str] | None = None,
    output_hash: bytes | None = None,
    output_hash_mode: str = "flat",
) -> Package:
    """Create a Package with computed output paths and .drv store path.

    Args:
        name:             Store path suffix of the outputs.
        builder:          Executable (or ``builtin:*``) that performs the build.
        system:           Platform the builder runs on.
        args:             Builder arguments.
        env:              Extra environment; standard variables are added.
        output_names:     Outputs to produce (default ``["out"]``).
        deps:             Input derivations; all their outputs are inputs.
        srcs:             Input source store paths.
        output_hash:      Expected SHA-256 of a fixed-output result.
        output_hash_mode: ``"flat"`` or ``"recursive"`` for fixed outputs.
    """
    args = list(args or [])
    env = dict(env or {})
    output_names = list(output_names or ["out"])
    deps = list(deps or [])
    srcs = sorted(set(srcs or []))
    orig_args = dict(
        name=name, builder=builder, system=system, args=args, env=env,
        output_names=output_names, deps=deps, srcs=srcs,
        output_hash=output_hash, output_hash_mode=output_hash_mode,
    )

    input_drvs = {dep.drv_path: sorted(dep.outputs) for dep in deps}
    drv_hashes = {dep.drv_path: dep.modulo_hash for dep in deps}

    full_env = {"name": name, "builder": builder, "system": system, **env}

    if output_hash is not None:
        if output_names != ["out"]:
            raise ValueError("fixed-output derivations have exactly one output")
        recursive = output_hash_mode == "recursive"
        out_path = make_fixed_output_path(name, output_hash, recursive)
        outputs = {"out": DerivationOutput(
            out_path, "r:sha256" if recursive else "sha256", output_hash.hex(),
        )}
        computed = {"out": out_path}
    else:
        blank = Derivation(
            outputs={n: DerivationOutput("") for n in output_names},
            input_drvs=input_drvs,
            input_srcs=srcs,
            platform=system,
            builder=builder,
            args=args,
            env={**full_env, **{n: "" for n in output_names}},
        )
        drv_hash = hash_derivation_modulo(blank, drv_hashes)
        computed = {n: make_output_path(drv_hash, n, name) for n in output_names}
        outputs = {n: DerivationOutput(p) for n, p in computed.items()}

    drv_obj = Derivation(
        outputs=outputs,
        input_drvs=input_drvs,
        input_srcs=srcs,
        platform=system,
        builder=builder,
        args=args,
        env={**full_env, **computed},
    )
    drv_text = serialize(drv_obj)
    refs = sorted(input_drvs) + srcs
    return Package(
        name=name,
        drv=drv_obj,
        drv_path=make_text_store_path(name + ".drv", drv_text.encode(), refs),
        outputs=MappingProxyType(computed),
        modulo_hash=hash_derivation_modulo(drv_obj, drv_hashes, mask_outputs=False),
        deps=tuple(deps),
        _args=MappingProxyType(orig_args),
    )
