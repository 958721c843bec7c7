"""Fixed-output fetches. Python equivalent of <nix/fetchurl.nix>.

``builtin:fetchurl`` is implemented inside the daemon, so a fetch needs
no toolchain at all. Being fixed-output, its result path depends only on
the expected hash: mirrors and URLs can change without rebuilding
anything downstream.
"""

from flk.hash import parse_sha256, sri
from flkpkgs.drv import Package, drv

FETCHURL_ENV_BASE = {
    "impureEnvVars": "http_proxy https_proxy ftp_proxy all_proxy no_proxy",
    "preferLocalBuild": "1",
}


def fetchurl(name: str, url: str, sha256: str | bytes, *,
             unpack: bool = False, executable: bool = False) -> Package:
    """Fetch ``url`` and pin it to ``sha256`` (hex, nix32, SRI or raw bytes).

    ``unpack=True`` extracts the archive and hashes the resulting tree
    (recursive mode), like ``fetchzip``.
    """
    digest = sha256 if isinstance(sha256, bytes) else parse_sha256(sha256)
    mode = "recursive" if unpack else "flat"
    return drv(
        name=name,
        builder="builtin:fetchurl",
        system="builtin",
        output_hash=digest,
        output_hash_mode=mode,
        env={
            **FETCHURL_ENV_BASE,
            "executable": "1" if executable else "",
            "outputHash": sri(digest),
            "outputHashAlgo": "",
            "outputHashMode": mode,
            "unpack": "1" if unpack else "",
            "url": url,
            "urls": url,
        },
    )
