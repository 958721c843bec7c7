"""Tests for .drv ATerm parsing and serialization."""

import pytest

from flk.derivation import Derivation, DerivationOutput, hash_derivation_modulo, parse, serialize
from flk.hash import sha256


MINIMAL_DRV = (
    'Derive('
    '[("out","/nix/store/abc-hello","","")],'
    '[("/nix/store/xyz.drv",["out"])],'
    '["/nix/store/src"],'
    '"x86_64-linux",'
    '"/nix/store/bash",'
    '["--build"],'
    '[("key","value"),("out","/nix/store/abc-hello")]'
    ')'
)


def test_parse_minimal():
    drv = parse(MINIMAL_DRV)
    assert drv.outputs["out"] == DerivationOutput("/nix/store/abc-hello")
    assert dict(drv.input_drvs) == {"/nix/store/xyz.drv": ("out",)}
    assert drv.input_srcs == ("/nix/store/src",)
    assert drv.platform == "x86_64-linux"
    assert drv.builder == "/nix/store/bash"
    assert drv.args == ("--build",)
    assert dict(drv.env) == {"key": "value", "out": "/nix/store/abc-hello"}


def test_serialize_is_exact_inverse():
    assert serialize(parse(MINIMAL_DRV)) == MINIMAL_DRV


def test_serialize_sorted():
    """Outputs and env keys are sorted in serialized form."""
    drv = Derivation(
        outputs={"z": DerivationOutput("pz"), "a": DerivationOutput("pa")},
        env={"z": "1", "a": "2"},
    )
    text = serialize(drv)
    assert text.index('"a"') < text.index('"z"')


def test_escapes_survive():
    drv = Derivation(
        outputs={"out": DerivationOutput("/nix/store/x")},
        env={"script": 'echo "hello\\nworld"\n\tdone'},
    )
    assert parse(serialize(drv)).env["script"] == drv.env["script"]


def test_derivation_is_read_only():
    drv = parse(MINIMAL_DRV)
    with pytest.raises(TypeError):
        drv.env["key"] = "changed"
    with pytest.raises(AttributeError):
        drv.platform = "aarch64-darwin"


def test_parse_rejects_trailing_data():
    with pytest.raises(ValueError, match="trailing data"):
        parse(MINIMAL_DRV + "x")


def test_parse_rejects_truncated():
    with pytest.raises(ValueError):
        parse(MINIMAL_DRV[:40])


def test_hash_derivation_modulo_fixed_output():
    drv = Derivation(outputs={"out": DerivationOutput("/nix/store/x", "sha256", "abc123")})
    assert hash_derivation_modulo(drv) == sha256(b"fixed:out:sha256:abc123:/nix/store/x")


def test_hash_derivation_modulo_ignores_own_output_paths():
    a = Derivation(outputs={"out": DerivationOutput("/nix/store/a")}, env={"out": "/nix/store/a"})
    b = Derivation(outputs={"out": DerivationOutput("/nix/store/b")}, env={"out": "/nix/store/b"})
    assert hash_derivation_modulo(a) == hash_derivation_modulo(b)
    assert hash_derivation_modulo(a, mask_outputs=False) != hash_derivation_modulo(b, mask_outputs=False)


def test_hash_derivation_modulo_needs_input_hashes():
    drv = parse(MINIMAL_DRV)
    with pytest.raises(ValueError, match="missing hash"):
        hash_derivation_modulo(drv)
    h1 = hash_derivation_modulo(drv, {"/nix/store/xyz.drv": sha256(b"one")})
    h2 = hash_derivation_modulo(drv, {"/nix/store/xyz.drv": sha256(b"two")})
    assert h1 != h2
