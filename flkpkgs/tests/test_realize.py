"""Tests for handing plans to the build runtime, with the daemon faked out."""

import pytest

from flk.daemon import NixDaemonError
from flk.nar import nar_hash
from flk.store_path import make_text_store_path
from flkpkgs.cargo import plan
from flkpkgs.dev_shell import assemble
from flkpkgs.drv import drv
from flkpkgs.errors import RealizationError
from flkpkgs.realize import BuildRuntime, DaemonRuntime, write_tree


class FakeDaemon:
    """Stands in for DaemonConnection; records what a realization sends."""

    instances = []

    def __init__(self, socket_path=None, fail_build=False):
        self.socket_path = socket_path
        self.fail_build = fail_build
        self.texts = []
        self.built = []
        FakeDaemon.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        pass

    def is_valid_path(self, path):
        return True

    def add_text_to_store(self, name, content, references=None):
        self.texts.append(name)
        return make_text_store_path(name, content.encode(), references)

    def build_paths(self, paths, build_mode=0):
        if self.fail_build:
            raise NixDaemonError("builder for '/nix/store/x.drv' failed with exit code 1")
        self.built += paths


@pytest.fixture
def fake_daemon(monkeypatch):
    FakeDaemon.instances = []
    monkeypatch.setattr("flkpkgs.realize.DaemonConnection", FakeDaemon)
    return FakeDaemon


def test_write_tree_matches_source_digest(tmp_path, source):
    dest = tmp_path / "src"
    write_tree(source.tree, dest)
    assert (dest / "src" / "main.rs").exists()
    assert nar_hash(dest) == source.digest


def test_realize_package(fake_daemon, source, lock, toolchain):
    pd = plan(source, lock, toolchain)
    assert DaemonRuntime("/tmp/sock").realize(pd) == pd.out
    [conn] = fake_daemon.instances
    assert conn.socket_path == "/tmp/sock"
    assert conn.texts[0] == "Cargo.lock"
    assert "hello-0.1.0.drv" in conn.texts
    assert conn.texts.index("hello-vendor.drv") < conn.texts.index("hello-0.1.0.drv")
    assert conn.built == [f"{pd.drv_path}!out"]


def test_realize_is_repeatable(fake_daemon, source, lock, toolchain):
    pd = plan(source, lock, toolchain)
    runtime = DaemonRuntime()
    assert runtime.realize(pd) == runtime.realize(pd)
    first, second = fake_daemon.instances
    assert first.texts == second.texts


def test_realize_plain_package(fake_daemon):
    pkg = drv(name="multi", builder="/bin/sh", output_names=["out", "dev"])
    DaemonRuntime().realize(pkg)
    assert fake_daemon.instances[0].built == [f"{pkg.drv_path}!dev", f"{pkg.drv_path}!out"]


def test_build_failure(monkeypatch, source, lock, toolchain):
    monkeypatch.setattr("flkpkgs.realize.DaemonConnection",
                        lambda socket_path: FakeDaemon(socket_path, fail_build=True))
    with pytest.raises(RealizationError, match="exit code 1"):
        DaemonRuntime().realize(plan(source, lock, toolchain))


def test_store_path_disagreement(monkeypatch, source, lock, toolchain):
    class Skewed(FakeDaemon):
        def add_text_to_store(self, name, content, references=None):
            return make_text_store_path(name, content.encode())

    monkeypatch.setattr("flkpkgs.realize.DaemonConnection", Skewed)
    with pytest.raises(RealizationError, match="expected"):
        DaemonRuntime().realize(plan(source, lock, toolchain))


def test_realize_shell_builds_every_tool(index, toolchain):
    class Recording(BuildRuntime):
        def __init__(self):
            self.realized = []

        def realize(self, target):
            self.realized.append(target)
            return target.out

    runtime = Recording()
    shell = assemble(toolchain, ["cargo-watch", "rust-analyzer"], index)
    assert runtime.realize_shell(shell) == shell.path_entries
    assert runtime.realized == list(shell.packages)


def test_base_runtime_is_abstract(toolchain):
    with pytest.raises(NotImplementedError):
        BuildRuntime().realize(toolchain.package)
