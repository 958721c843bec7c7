"""Digest helpers shared by store paths, derivations and lock files.

See: nix/src/libutil/hash.cc — compressHash(), printHash32()
"""

import base64
import hashlib

# Nix's base32 alphabet drops e, o, t and u.
NIX32_CHARS = "0123456789abcdfghijklmnpqrsvwxyz"
_NIX32_VALUES = {c: i for i, c in enumerate(NIX32_CHARS)}


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compress_hash(digest: bytes, size: int) -> bytes:
    """XOR-fold ``digest`` into ``size`` bytes.

    Byte i of the input lands on position i % size, so a 32-byte SHA-256
    folds into the 20 bytes used by store path hashes with every input
    byte contributing.
    """
    folded = bytearray(size)
    for i, b in enumerate(digest):
        folded[i % size] ^= b
    return bytes(folded)


def nix32_encode(data: bytes) -> str:
    """Encode bytes in Nix base32.

    The input is read as one little-endian integer and emitted five bits
    at a time starting from the most significant group, which is why the
    result differs from RFC 4648 even for the same alphabet.
    """
    length = (len(data) * 8 + 4) // 5
    value = int.from_bytes(data, "little")
    return "".join(
        NIX32_CHARS[(value >> (i * 5)) & 0x1F] for i in range(length - 1, -1, -1)
    )


def nix32_decode(text: str) -> bytes:
    size = len(text) * 5 // 8
    value = 0
    for ch in text:
        digit = _NIX32_VALUES.get(ch)
        if digit is None:
            raise ValueError(f"invalid nix32 character: {ch!r}")
        value = (value << 5) | digit
    if value >> (size * 8):
        raise ValueError(f"nix32 string has non-zero padding bits: {text!r}")
    return value.to_bytes(size, "little")


def sri(digest: bytes, algo: str = "sha256") -> str:
    """Subresource-integrity form, e.g. ``sha256-<base64>``."""
    return f"{algo}-{base64.b64encode(digest).decode()}"


def parse_sha256(text: str) -> bytes:
    """Accept a SHA-256 as 64 hex chars, 52 nix32 chars or an SRI string."""
    if text.startswith("sha256-"):
        raw = base64.b64decode(text[len("sha256-"):], validate=True)
    elif len(text) == 64:
        raw = bytes.fromhex(text)
    elif len(text) == 52:
        raw = nix32_decode(text)
    else:
        raise ValueError(f"unrecognised sha256 encoding: {text!r}")
    if len(raw) != 32:
        raise ValueError(f"sha256 digest must be 32 bytes, got {len(raw)}")
    return raw
