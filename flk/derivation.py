"""Derivations and their ATerm (.drv) encoding.

A derivation is the unit of build: which builder to run, with what
arguments and environment, on which platform, depending on which other
derivations and sources, producing which outputs. On disk it is an
ATerm expression::

    Derive([outputs],[inputDrvs],[inputSrcs],"system","builder",[args],[env])

with outputs as ``("name","path","hashAlgo","hash")`` tuples. hashAlgo
and hash are empty except for fixed-output derivations.

See: nix/src/libstore/derivations.cc
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from flk.hash import sha256


@dataclass(frozen=True)
class DerivationOutput:
    path: str
    hash_algo: str = ""
    hash_value: str = ""

    @property
    def is_fixed(self) -> bool:
        return self.hash_algo != ""


@dataclass(frozen=True)
class Derivation:
    """Immutable derivation. Mappings are read-only views, sequences tuples."""

    outputs: Mapping[str, DerivationOutput] = field(default_factory=dict)
    input_drvs: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    input_srcs: tuple[str, ...] = ()
    platform: str = ""
    builder: str = ""
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        freeze = object.__setattr__
        freeze(self, "outputs", MappingProxyType(dict(self.outputs)))
        freeze(self, "input_drvs", MappingProxyType(
            {path: tuple(outs) for path, outs in self.input_drvs.items()}
        ))
        freeze(self, "input_srcs", tuple(self.input_srcs))
        freeze(self, "args", tuple(self.args))
        freeze(self, "env", MappingProxyType(dict(self.env)))

    @property
    def is_fixed_output(self) -> bool:
        return list(self.outputs) == ["out"] and self.outputs["out"].is_fixed


# --- serialization ---

_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t"}
_UNESCAPES = {"n": "\n", "r": "\r", "t": "\t"}


def _q(s: str) -> str:
    return '"' + "".join(_ESCAPES.get(ch, ch) for ch in s) + '"'


def _qlist(items) -> str:
    return "[" + ",".join(_q(s) for s in items) + "]"


def serialize(drv: Derivation) -> str:
    """ATerm text of ``drv``; outputs, inputs and env are sorted."""
    outputs = ",".join(
        f"({_q(name)},{_q(o.path)},{_q(o.hash_algo)},{_q(o.hash_value)})"
        for name, o in sorted(drv.outputs.items())
    )
    input_drvs = ",".join(
        f"({_q(path)},{_qlist(sorted(outs))})"
        for path, outs in sorted(drv.input_drvs.items())
    )
    env = ",".join(f"({_q(k)},{_q(v)})" for k, v in sorted(drv.env.items()))
    return (
        f"Derive([{outputs}],[{input_drvs}],{_qlist(sorted(drv.input_srcs))},"
        f"{_q(drv.platform)},{_q(drv.builder)},{_qlist(drv.args)},[{env}])"
    )


# --- parsing ---

class _Reader:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def peek(self) -> str:
        if self.pos >= len(self.text):
            raise ValueError("unexpected end of derivation")
        return self.text[self.pos]

    def eat(self, token: str) -> None:
        if not self.text.startswith(token, self.pos):
            found = self.text[self.pos:self.pos + len(token)]
            raise ValueError(f"expected {token!r} at offset {self.pos}, found {found!r}")
        self.pos += len(token)

    def string(self) -> str:
        self.eat('"')
        chars: list[str] = []
        while (ch := self.peek()) != '"':
            if ch == "\\":
                self.pos += 1
                ch = _UNESCAPES.get(self.peek(), self.peek())
            chars.append(ch)
            self.pos += 1
        self.pos += 1
        return "".join(chars)

    def sequence(self, item: Callable[[], object]) -> list:
        self.eat("[")
        items = []
        while self.peek() != "]":
            if items:
                self.eat(",")
            items.append(item())
        self.eat("]")
        return items

    def tuple_of(self, *items: Callable[[], object]) -> tuple:
        self.eat("(")
        values = []
        for i, item in enumerate(items):
            if i:
                self.eat(",")
            values.append(item())
        self.eat(")")
        return tuple(values)


def parse(text: str) -> Derivation:
    """Parse ATerm .drv text into a Derivation."""
    r = _Reader(text)
    s = r.string
    r.eat("Derive(")
    outputs = r.sequence(lambda: r.tuple_of(s, s, s, s))
    r.eat(",")
    input_drvs = r.sequence(lambda: r.tuple_of(s, lambda: r.sequence(s)))
    r.eat(",")
    input_srcs = r.sequence(s)
    r.eat(",")
    platform = s()
    r.eat(",")
    builder = s()
    r.eat(",")
    args = r.sequence(s)
    r.eat(",")
    env = r.sequence(lambda: r.tuple_of(s, s))
    r.eat(")")
    if r.pos != len(text):
        raise ValueError(f"trailing data after derivation at offset {r.pos}")
    return Derivation(
        outputs={name: DerivationOutput(path, algo, h) for name, path, algo, h in outputs},
        input_drvs=dict(input_drvs),
        input_srcs=input_srcs,
        platform=platform,
        builder=builder,
        args=args,
        env=dict(env),
    )


def hash_derivation_modulo(
    drv: Derivation,
    drv_hashes: Mapping[str, bytes] | None = None,
    mask_outputs: bool = True,
) -> bytes:
    """Hash a derivation independently of its own output paths.

    Output paths are computed from this hash, yet the derivation records
    them, so they are blanked before hashing (``mask_outputs``). Input
    .drv paths are replaced by their own modular hash, taken from
    ``drv_hashes``, so the result depends on what inputs are rather than
    where they live.

    Fixed-output derivations hash only their declared content hash and
    path: changing how a fetch is performed never moves its result.

    See: nix/src/libstore/derivations.cc — hashDerivationModulo()
    """
    drv_hashes = drv_hashes or {}

    if drv.is_fixed_output:
        o = drv.outputs["out"]
        return sha256(f"fixed:out:{o.hash_algo}:{o.hash_value}:{o.path}".encode())

    inputs = {}
    for path, outs in drv.input_drvs.items():
        if path not in drv_hashes:
            raise ValueError(f"missing hash for input derivation: {path}")
        inputs[drv_hashes[path].hex()] = outs

    masked = replace(drv, input_drvs=inputs)
    if mask_outputs:
        masked = replace(
            masked,
            outputs={n: replace(o, path="") for n, o in drv.outputs.items()},
            env={k: ("" if k in drv.outputs else v) for k, v in drv.env.items()},
        )
    return sha256(serialize(masked).encode())
