"""Tests for flkpkgs.systems — parsing, enumeration and per-system transposition."""

import pytest

from flkpkgs.config import FlakeConfig
from flkpkgs.systems import DEFAULT_SYSTEMS, System, current_system, each_system, enumerate_systems


def test_parse_and_str():
    s = System.parse("aarch64-darwin")
    assert (s.arch, s.os) == ("aarch64", "darwin")
    assert str(s) == "aarch64-darwin"
    assert System.parse(s) is s


@pytest.mark.parametrize("text", ["", "x86_64", "sparc-linux", "x86_64-windows", "linux-x86_64"])
def test_parse_rejects_unknown(text):
    with pytest.raises(ValueError, match="unknown system"):
        System.parse(text)


def test_default_systems():
    assert enumerate_systems() == DEFAULT_SYSTEMS
    assert [str(s) for s in DEFAULT_SYSTEMS] == [
        "aarch64-linux", "aarch64-darwin", "x86_64-darwin", "x86_64-linux",
    ]


def test_enumerate_from_config_keeps_order_and_drops_duplicates():
    config = FlakeConfig(systems=["x86_64-linux", "aarch64-darwin", "x86_64-linux"])
    assert [str(s) for s in enumerate_systems(config)] == ["x86_64-linux", "aarch64-darwin"]


def test_enumerate_is_restartable():
    config = FlakeConfig(systems=["x86_64-linux", "aarch64-darwin"])
    assert enumerate_systems(config) == enumerate_systems(config)


def test_empty_systems_is_valid():
    assert enumerate_systems(FlakeConfig(systems=[])) == ()


def test_current_system(monkeypatch):
    monkeypatch.setattr("platform.machine", lambda: "arm64")
    monkeypatch.setattr("platform.system", lambda: "Darwin")
    assert current_system() == System("aarch64", "darwin")


def test_each_system_transposes():
    systems = [System.parse("x86_64-linux"), System.parse("aarch64-darwin")]
    out = each_system(systems, lambda s: {"packages": f"pkg-{s}", "apps": s.os})
    assert out == {
        "packages": {"x86_64-linux": "pkg-x86_64-linux", "aarch64-darwin": "pkg-aarch64-darwin"},
        "apps": {"x86_64-linux": "linux", "aarch64-darwin": "darwin"},
    }
