"""Tests for flkpkgs.drv — derivation construction and output path computation."""

import pytest

from flk.hash import sha256
from flkpkgs.drv import drv
from flkpkgs.fetchurl import fetchurl


def test_drv_produces_store_paths():
    pkg = drv(name="test", builder="/bin/sh", args=["-c", "echo > $out"])
    assert pkg.out.startswith("/nix/store/")
    assert pkg.out.endswith("-test")
    assert pkg.drv_path.endswith("-test.drv")
    assert str(pkg) == pkg.out


def test_drv_deterministic():
    a = drv(name="det", builder="/bin/sh", args=["-c", "echo > $out"])
    b = drv(name="det", builder="/bin/sh", args=["-c", "echo > $out"])
    assert a == b
    assert a.drv_path == b.drv_path


@pytest.mark.parametrize("change", [
    {"name": "other"},
    {"args": ["-c", "echo b > $out"]},
    {"system": "aarch64-darwin"},
    {"env": {"extra": "1"}},
    {"srcs": ["/nix/store/aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa-src"]},
])
def test_any_input_changes_path(change):
    base = dict(name="pkg", builder="/bin/sh", args=["-c", "echo a > $out"])
    assert drv(**base).out != drv(**{**base, **change}).out


def test_env_has_standard_vars():
    pkg = drv(name="test", builder="/bin/sh", system="aarch64-darwin")
    assert pkg.drv.env["name"] == "test"
    assert pkg.drv.env["builder"] == "/bin/sh"
    assert pkg.drv.env["system"] == "aarch64-darwin"
    assert pkg.drv.env["out"] == pkg.out


def test_multiple_outputs():
    pkg = drv(name="lib", builder="/bin/sh", output_names=["out", "dev"])
    assert pkg.outputs["dev"].endswith("-lib-dev")
    assert pkg.drv.env["dev"] == pkg.outputs["dev"]


def test_dep_changes_path():
    dep_a = drv(name="dep", builder="/bin/sh", args=["-c", "echo a > $out"])
    dep_b = drv(name="dep", builder="/bin/sh", args=["-c", "echo b > $out"])
    pkg_a = drv(name="pkg", builder="/bin/sh", deps=[dep_a])
    pkg_b = drv(name="pkg", builder="/bin/sh", deps=[dep_b])
    assert dep_a.drv_path in pkg_a.drv.input_drvs
    assert pkg_a.out != pkg_b.out


def test_fixed_output_path_ignores_url():
    digest = sha256(b"tarball")
    a = fetchurl("src.tar.gz", "https://a.example/src.tar.gz", digest)
    b = fetchurl("src.tar.gz", "https://b.example/src.tar.gz", digest)
    assert a.out == b.out
    assert a.drv_path != b.drv_path
    # dependants see only the fixed output
    assert drv(name="p", builder="/bin/sh", deps=[a]).out == drv(name="p", builder="/bin/sh", deps=[b]).out


def test_fixed_output_has_one_output():
    with pytest.raises(ValueError):
        drv(name="x", builder="builtin:fetchurl", output_hash=sha256(b""), output_names=["out", "dev"])


def test_closure_dependencies_first():
    a = drv(name="a", builder="/bin/sh")
    b = drv(name="b", builder="/bin/sh", deps=[a])
    c = drv(name="c", builder="/bin/sh", deps=[a, b])
    assert [p.name for p in c.closure()] == ["a", "b", "c"]


def test_override():
    pkg = drv(name="hello", builder="/bin/sh", args=["-c", "echo hi > $out"])
    pkg2 = pkg.override(name="world")
    assert pkg2.name == "world"
    assert pkg2.out.endswith("-world")
    assert pkg2.drv.args == pkg.drv.args


def test_package_is_immutable():
    pkg = drv(name="x", builder="/bin/sh")
    with pytest.raises(TypeError):
        pkg.outputs["out"] = "/tmp"
    with pytest.raises(AttributeError):
        pkg.name = "y"
