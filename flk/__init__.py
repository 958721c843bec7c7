"""Content-addressing primitives: hashes, NAR, store paths, derivations."""
