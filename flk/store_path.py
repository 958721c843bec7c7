"""Store path computation.

A store path is ``<store>/<hash>-<name>`` where ``<hash>`` is 32 nix32
characters (160 bits). The hash is derived from a fingerprint::

    <type>:sha256:<hex(inner)>:<store>:<name>

which is SHA-256 hashed and XOR-folded down to 20 bytes.

``<type>`` says what kind of object lives at the path:
  "text"          — literal file contents (the .drv files we write)
  "source"        — an imported tree, inner hash = NAR hash
  "output:<name>" — a derivation output, inner hash = hash_derivation_modulo

References are appended to the type as ``:<path>`` in sorted order; no
references means no trailing colon.

See: nix/src/libstore/store-api.cc — makeStorePath()
"""

import re
from pathlib import Path

from flk.hash import compress_hash, nix32_encode, sha256

STORE_DIR = "/nix/store"
HASH_BYTES = 20
HASH_CHARS = 32

_NAME_RE = re.compile(r"^[A-Za-z0-9+\-._?=]+$")


def check_name(name: str) -> str:
    if not name or name.startswith(".") or not _NAME_RE.match(name):
        raise ValueError(f"invalid store path name: {name!r}")
    return name


def make_store_path(type_prefix: str, inner_hash: bytes, name: str) -> str:
    check_name(name)
    fingerprint = f"{type_prefix}:sha256:{inner_hash.hex()}:{STORE_DIR}:{name}"
    digest = compress_hash(sha256(fingerprint.encode()), HASH_BYTES)
    return f"{STORE_DIR}/{nix32_encode(digest)}-{name}"


def _with_refs(kind: str, refs: list[str] | None) -> str:
    return ":".join([kind, *sorted(refs or [])])


def make_text_store_path(name: str, content: bytes, references: list[str] | None = None) -> str:
    """Path for a literal file (``builtins.toFile``). Inner hash is sha256(content)."""
    return make_store_path(_with_refs("text", references), sha256(content), name)


def make_source_store_path(name: str, nar_hash: bytes, references: list[str] | None = None) -> str:
    """Path for an imported source tree. Inner hash is its NAR hash."""
    return make_store_path(_with_refs("source", references), nar_hash, name)


def make_fixed_output_path(name: str, content_hash: bytes, recursive: bool = False) -> str:
    """Path of a fixed-output derivation's result (fetchurl and friends).

    Recursive sha256 outputs are addressed like a source import; flat
    outputs go through an intermediate ``fixed:out:`` descriptor.
    """
    if recursive:
        return make_store_path("source", content_hash, name)
    descriptor = f"fixed:out:sha256:{content_hash.hex()}:"
    return make_store_path("output:out", sha256(descriptor.encode()), name)


def make_output_path(drv_hash: bytes, output_name: str, name: str) -> str:
    """Path for a regular derivation output; non-default outputs get a suffix."""
    path_name = name if output_name == "out" else f"{name}-{output_name}"
    return make_store_path(f"output:{output_name}", drv_hash, path_name)


def path_to_store_path(path: str | Path, name: str | None = None) -> str:
    """Where ``nix-store --add`` would put a local file or directory."""
    from flk.nar import nar_hash

    p = Path(path)
    return make_source_store_path(name or p.name, nar_hash(p))


def split_store_path(path: str) -> tuple[str, str]:
    """Return ``(hash_part, name)`` of a store path."""
    prefix = STORE_DIR + "/"
    if not path.startswith(prefix):
        raise ValueError(f"not in {STORE_DIR}: {path!r}")
    base = path[len(prefix):].split("/", 1)[0]
    hash_part, sep, name = base.partition("-")
    if not sep or len(hash_part) != HASH_CHARS:
        raise ValueError(f"malformed store path: {path!r}")
    return hash_part, name
