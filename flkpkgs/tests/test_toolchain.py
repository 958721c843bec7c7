"""Tests for toolchain resolution."""

import pytest

from flkpkgs.errors import SystemMismatch, ToolchainNotFound
from flkpkgs.index import PackageIndex, Source, ToolchainDef
from flkpkgs.systems import System
from flkpkgs.toolchain import VersionChannel, candidates, resolve

LINUX_ONLY = ToolchainDef(
    name="rust-linux", version="1.78.0",
    sources={"x86_64-linux": Source(
        "https://static.rust-lang.org/dist/rust-1.78.0-x86_64-unknown-linux-gnu.tar.gz",
        "0" * 64,
    )},
)


def test_resolve_stable(index, stable_a):
    tc = resolve(index, "stable", "x86_64-linux")
    assert (tc.name, tc.version, tc.channel) == ("rustc", stable_a.version, "stable")
    assert tc.system == System.parse("x86_64-linux")
    assert tc.compiler == f"{tc.package}/bin/rustc"
    assert tc.linker == f"{tc.package}/bin/cc"
    assert tc.build_tool == f"{tc.package}/bin/cargo"
    assert tc.package.drv.platform == "x86_64-linux"


def test_resolve_is_deterministic(index):
    assert resolve(index, "stable", "x86_64-linux") == resolve(index, "stable", "x86_64-linux")


def test_latest_picks_highest_version():
    index = PackageIndex("x86_64-linux", {
        "a": ToolchainDef("rust", "1.9.0"),
        "b": ToolchainDef("rust", "1.10.0"),
        "c": ToolchainDef("rust", "1.80.0", channel="beta"),
    })
    assert resolve(index, "stable", "x86_64-linux").version == "1.10.0"
    assert resolve(index, "stable.1.9.0", "x86_64-linux").version == "1.9.0"
    assert resolve(index, "beta", "x86_64-linux").version == "1.80.0"


def test_nested_sets_are_searched():
    index = PackageIndex("aarch64-darwin", {
        "rust-bin": {"stable": {"1.78.0": ToolchainDef("rust", "1.78.0")}},
    })
    assert resolve(index, "stable", "aarch64-darwin").version == "1.78.0"
    assert len(candidates(index)) == 1


def test_toolchain_with_source_uses_fetch():
    index = PackageIndex("x86_64-linux", {"rust": LINUX_ONLY})
    tc = resolve(index, "stable", "x86_64-linux")
    assert tc.package.drv.builder == "builtin:fetchurl"
    assert tc.package.drv.env["unpack"] == "1"


@pytest.mark.parametrize("channel", ["nightly", "stable.1.0.0"])
def test_missing_channel(index, channel):
    with pytest.raises(ToolchainNotFound) as e:
        resolve(index, channel, "x86_64-linux")
    assert type(e.value) is ToolchainNotFound
    assert e.value.system == System.parse("x86_64-linux")


def test_channel_without_entry_for_system():
    index = PackageIndex("aarch64-darwin", {"rust": LINUX_ONLY})
    with pytest.raises(ToolchainNotFound):
        resolve(index, "stable", "aarch64-darwin")


def test_empty_index():
    with pytest.raises(ToolchainNotFound):
        resolve(PackageIndex("x86_64-linux"), "stable", "x86_64-linux")


def test_index_for_other_system(index):
    with pytest.raises(SystemMismatch):
        resolve(index, "stable", "aarch64-darwin")


def test_check_system(toolchain):
    toolchain.check_system("x86_64-linux")
    with pytest.raises(SystemMismatch):
        toolchain.check_system("aarch64-linux")


def test_identity_includes_system(stable_a):
    linux = resolve(PackageIndex("x86_64-linux", {"rustc": stable_a}), "stable", "x86_64-linux")
    darwin = resolve(PackageIndex("aarch64-darwin", {"rustc": stable_a}), "stable", "aarch64-darwin")
    assert linux.identity != darwin.identity


class TestVersionChannel:
    def test_bare_name_is_latest(self):
        assert VersionChannel.parse("stable") == VersionChannel("stable", "latest")

    def test_pinned(self):
        assert VersionChannel.parse("stable.1.78.0") == VersionChannel("stable", "1.78.0")

    def test_str(self):
        assert str(VersionChannel("nightly", "2024-05-01")) == "nightly.2024-05-01"

    def test_empty(self):
        with pytest.raises(ValueError):
            VersionChannel.parse("")


@pytest.mark.parametrize("channel", ["", "  ", ".1.78.0"])
def test_unparsable_channel_is_not_found(index, channel):
    with pytest.raises(ToolchainNotFound) as e:
        resolve(index, channel, "x86_64-linux")
    assert type(e.value) is ToolchainNotFound
