"""Tests for hash utilities and canonicalization rules."""

import pytest

from meshbuild.kernel.hash_utils import (
    CanonicalizationError,
    cache_relevant_config,
    canonicalize_json,
    hash_service_definition,
    sha256_hex,
)
from meshbuild.kernel.models import MergedConfig


def _config(**overrides):
    data = {
        "name": "app",
        "context": "app",
        "dockerfile": "Dockerfile",
        "sources": {"code": {"url": "U", "ref": "main"}},
        "external_images": {"base": {"name": "python", "tag": "3.12", "build_arg": "BASE"}},
        "dependencies": {"lib": {"build_arg": "LIB_IMAGE"}},
    }
    data.update(overrides)
    return MergedConfig.model_validate(data)


def _hash(config=None, **kwargs):
    args = {
        "service": "app",
        "version": "v1",
        "platform": "debian",
        "config": config or _config(),
        "source_shas": {"code": "abc123"},
        "source_types": {"code": "git"},
    }
    args.update(kwargs)
    return hash_service_definition(**args)


class TestCanonicalizeJson:
    """Tests for canonicalize_json function."""

    def test_nested_dict_sorts_recursively(self):
        """Nested object keys should be sorted recursively."""
        obj = {"z": {"b": 2, "a": 1}, "a": {"d": 4, "c": 3}}
        assert canonicalize_json(obj) == '{"a":{"c":3,"d":4},"z":{"a":1,"b":2}}'

    def test_array_preserves_order(self):
        assert canonicalize_json({"items": [3, 1, 2]}) == '{"items":[3,1,2]}'

    def test_string_normalization_nfc(self):
        """Composed and decomposed forms canonicalize identically."""
        assert canonicalize_json({"t": "caf\u00e9"}) == canonicalize_json({"t": "cafe\u0301"})

    def test_float_banned_hard_error(self):
        with pytest.raises(CanonicalizationError, match="Floats are not allowed"):
            canonicalize_json({"value": 1.0})

    def test_non_json_type_rejected(self):
        with pytest.raises(CanonicalizationError, match="Non-JSON type"):
            canonicalize_json({"value": {1, 2}})

    def test_non_string_keys_rejected(self):
        with pytest.raises(CanonicalizationError, match="keys must be strings"):
            canonicalize_json({1: "x"})


def test_sha256_hex_is_64_lowercase_hex():
    digest = sha256_hex("meshbuild")
    assert len(digest) == 64
    assert digest == digest.lower()
    int(digest, 16)


class TestServiceDefinitionHash:
    def test_is_64_hex_characters(self):
        digest = _hash()
        assert len(digest) == 64
        assert all(c in "0123456789abcdef" for c in digest)

    def test_deterministic(self):
        assert _hash() == _hash()

    def test_source_sha_changes_hash(self):
        assert _hash() != _hash(source_shas={"code": "def456"})

    def test_source_type_changes_hash(self):
        assert _hash() != _hash(source_types={"code": "path"})

    def test_identity_changes_hash(self):
        assert _hash() != _hash(platform="alpine")
        assert _hash() != _hash(version="v2")

    def test_dockerfile_changes_hash(self):
        assert _hash() != _hash(config=_config(dockerfile="Dockerfile.alpine"))

    def test_external_image_tag_changes_hash(self):
        changed = _config(external_images={"base": {"name": "python", "tag": "3.13", "build_arg": "BASE"}})
        assert _hash() != _hash(config=changed)

    def test_dependency_hash_changes_hash(self):
        assert _hash(dependency_hashes={"lib:v1": "a" * 64}) != _hash(dependency_hashes={"lib:v1": "b" * 64})

    def test_context_and_name_do_not_change_hash(self):
        assert _hash() == _hash(config=_config(context="elsewhere", name="renamed"))

    def test_key_order_does_not_change_hash(self):
        a = _config(sources={"x": {"path": "/x"}, "y": {"path": "/y"}})
        b = _config(sources={"y": {"path": "/y"}, "x": {"path": "/x"}})
        assert _hash(config=a, source_shas={}, source_types={}) == _hash(config=b, source_shas={}, source_types={})


def test_cache_relevant_config_excludes_location():
    relevant = cache_relevant_config(_config())
    assert "name" not in relevant
    assert "context" not in relevant
    assert relevant["dependency_build_args"] == {"lib": "LIB_IMAGE"}
    assert relevant["tls"] is None
