"""Tests for app references."""

import pytest

from flkpkgs.app import AppRef, wrap
from flkpkgs.cargo import plan
from flkpkgs.errors import NoOutputArtifact, OutputNotFound
from flkpkgs.source import SourceTree


@pytest.fixture
def derivation(source, lock, toolchain):
    return plan(source, lock, toolchain)


def test_wrap_default_is_main_program(derivation):
    app = wrap(derivation)
    assert app == AppRef(derivation, "hello")
    assert app.program_path == f"{derivation.out}/bin/hello"


def test_invocation_is_the_program_itself(derivation):
    app = wrap(derivation, "hello")
    assert app.command(["--version"]) == [derivation.program_path("hello"), "--version"]
    assert app.command() == [derivation.program_path("hello")]


def test_as_dict(derivation):
    assert wrap(derivation).as_dict() == {"type": "app", "program": f"{derivation.out}/bin/hello"}


def test_unknown_output(derivation):
    with pytest.raises(OutputNotFound, match="'nope'.*hello") as e:
        wrap(derivation, "nope")
    assert e.value.name == "nope"


def test_empty_source_has_no_artifact(lock, toolchain):
    derivation = plan(SourceTree.empty(), lock, toolchain)
    with pytest.raises(NoOutputArtifact):
        wrap(derivation)
    with pytest.raises(NoOutputArtifact):
        wrap(derivation, "hello")


def test_secondary_program(lock, toolchain):
    source = SourceTree.from_files({
        "Cargo.toml": '[package]\nname = "hello"\nversion = "0.1.0"\n[dependencies]\nitoa = "1"\n',
        "src/main.rs": "",
        "src/bin/hello-admin.rs": "",
    })
    derivation = plan(source, lock, toolchain)
    assert wrap(derivation).program == "hello"
    assert wrap(derivation, "hello-admin").program_path.endswith("/bin/hello-admin")


def test_empty_name_is_not_the_default(derivation):
    with pytest.raises(OutputNotFound):
        wrap(derivation, "")
