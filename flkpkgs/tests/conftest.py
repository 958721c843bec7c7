import pytest

from flkpkgs.index import PackageIndex, ToolchainDef, ToolDef
from flkpkgs.lockfile import parse_lock_file
from flkpkgs.source import SourceTree
from flkpkgs.toolchain import resolve

ITOA_CHECKSUM = "b1a46d1a171d865aa5f83f92695765caa047a9b4cbae2cbf37dbd613a793fd4c"

CARGO_TOML = """\
[package]
name = "hello"
version = "0.1.0"
edition = "2021"

[dependencies]
itoa = "1"
"""

CARGO_LOCK = f"""\
# This file is automatically @generated by Cargo.
# It is not intended for manual editing.
version = 3

[[package]]
name = "hello"
version = "0.1.0"
dependencies = [
 "itoa",
]

[[package]]
name = "itoa"
version = "1.0.11"
source = "registry+https://github.com/rust-lang/crates.io-index"
checksum = "{ITOA_CHECKSUM}"
"""

# itoa locked at two versions
CONFLICTING_LOCK = CARGO_LOCK + """
[[package]]
name = "itoa"
version = "1.0.10"
source = "registry+https://github.com/rust-lang/crates.io-index"
checksum = "49f1f14873335454500d59611f1cf4a4b0f786f9ac11f4312a78e4cf2566695b"
"""

STABLE_A = ToolchainDef(name="rustc", version="1.78.0", channel="stable")

FLAKE_TOML = """\
[flake]
name = "hello"
systems = ["x86_64-linux", "aarch64-darwin"]
channel = "stable"

[dev-shell]
tools = ["cargo-watch"]

[toolchains.rustc]
channel = "stable"
version = "1.78.0"

[tools.cargo-watch]
version = "8.5.2"
"""


@pytest.fixture
def source():
    return SourceTree.from_files({
        "Cargo.toml": CARGO_TOML,
        "src/main.rs": 'fn main() { println!("{}", itoa::Buffer::new().format(42)); }\n',
    }, name="hello")


@pytest.fixture
def lock():
    return parse_lock_file(CARGO_LOCK)


@pytest.fixture
def conflicting_lock():
    return parse_lock_file(CONFLICTING_LOCK)


@pytest.fixture
def index():
    return PackageIndex("x86_64-linux", {
        "rustc": STABLE_A,
        "cargo-watch": ToolDef("cargo-watch", "8.5.2"),
        "rust-analyzer": ToolDef("rust-analyzer", "2024-05-06"),
    })


@pytest.fixture
def toolchain(index):
    return resolve(index, "stable", "x86_64-linux")


@pytest.fixture
def conflicting_lock_text():
    return CONFLICTING_LOCK


@pytest.fixture
def flake_toml_text():
    return FLAKE_TOML


@pytest.fixture
def stable_a():
    return STABLE_A


@pytest.fixture
def project(tmp_path):
    """Factory laying out a buildable crate plus flake.toml; returns the flake.toml path."""

    def write(lock_text=CARGO_LOCK, flake_toml=None, root=tmp_path):
        (root / "src").mkdir(parents=True)
        (root / "src" / "main.rs").write_text("fn main() {}\n")
        (root / "Cargo.toml").write_text(CARGO_TOML)
        (root / "Cargo.lock").write_text(lock_text)
        (root / "flake.toml").write_text(flake_toml or FLAKE_TOML)
        return root / "flake.toml"

    return write
