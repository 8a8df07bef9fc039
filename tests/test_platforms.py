"""Tests for platform expansion, tag derivation and collision checks."""

import pytest

from meshbuild.codes import ErrorCode
from meshbuild.kernel.errors import CollisionError
from meshbuild.kernel.models import Manifest, PlatformsManifest, VersionSpec
from meshbuild.kernel.platforms import derive_tags, expand, expand_manifest


PLATFORMS = PlatformsManifest.model_validate({
    "default": "debian",
    "platforms": [{"name": "debian", "dockerfile": "D"}, {"name": "alpine", "dockerfile": "A"}],
})


class TestDeriveTags:
    def test_default_platform_gets_bare_and_suffixed(self):
        assert derive_tags("v1", [], False, "debian", True) == ["v1-debian", "v1"]

    def test_non_default_platform_only_suffixed(self):
        assert derive_tags("v1", ["stable"], True, "alpine", False) == [
            "v1-alpine", "stable-alpine", "latest-alpine",
        ]

    def test_default_platform_latest(self):
        tags = derive_tags("v1", ["stable"], True, "debian", True)
        assert set(tags) == {"v1-debian", "v1", "stable-debian", "stable", "latest-debian", "latest"}

    def test_single_platform_only_bare(self):
        assert derive_tags("v1", ["stable"], True, "", False) == ["v1", "stable", "latest"]

    def test_duplicates_removed(self):
        assert derive_tags("v1", ["v1"], False, "", False) == ["v1"]


def test_expand_without_platforms_yields_one_variant():
    spec = VersionSpec(name="v1", overrides={"dockerfile": "D", "platforms": {"x": {"dockerfile": "X"}}})
    variants = expand(spec, None)
    assert len(variants) == 1
    assert variants[0].platform == ""
    assert variants[0].overrides == {"dockerfile": "D"}


def test_expand_one_variant_per_platform_with_scoped_overrides():
    spec = VersionSpec(
        name="v1",
        latest=True,
        overrides={"dockerfile": "D", "platforms": {"alpine": {"dockerfile": "D.alpine"}}},
    )
    variants = {v.platform: v for v in expand(spec, PLATFORMS)}
    assert set(variants) == {"debian", "alpine"}
    assert variants["alpine"].overrides == {"dockerfile": "D.alpine"}
    assert variants["debian"].overrides == {"dockerfile": "D"}
    assert "latest" in variants["debian"].tags
    assert "latest" not in variants["alpine"].tags
    assert "latest-alpine" in variants["alpine"].tags


def test_expand_manifest_applies_defaults():
    manifest = Manifest.model_validate({
        "default": "v1",
        "defaults": {"sources": {"a": {"url": "U", "ref": "main"}}},
        "versions": [{"name": "v1"}, {"name": "v2", "overrides": {"sources": {"a": {"ref": "v2"}}}}],
    })
    variants = {v.version: v for v in expand_manifest("svc", manifest, None)}
    assert variants["v1"].overrides["sources"]["a"] == {"url": "U", "ref": "main"}
    assert variants["v2"].overrides["sources"]["a"] == {"url": "U", "ref": "v2"}


def test_duplicate_version_names_rejected():
    manifest = Manifest.model_validate({"default": "v1", "versions": [{"name": "v1"}, {"name": "v1"}]})
    with pytest.raises(CollisionError) as exc_info:
        expand_manifest("svc", manifest, None)
    assert exc_info.value.code == ErrorCode.DUPLICATE_VERSION
    assert "'v1'" in str(exc_info.value)


def test_duplicate_platform_names_rejected():
    platforms = PlatformsManifest.model_validate({
        "default": "debian",
        "platforms": [{"name": "debian"}, {"name": "debian"}],
    })
    manifest = Manifest.model_validate({"default": "v1", "versions": [{"name": "v1"}]})
    with pytest.raises(CollisionError) as exc_info:
        expand_manifest("svc", manifest, platforms)
    assert exc_info.value.code == ErrorCode.DUPLICATE_PLATFORM


def test_tag_collision_names_every_version():
    manifest = Manifest.model_validate({
        "default": "v1",
        "versions": [
            {"name": "v1", "tags": ["stable"]},
            {"name": "v2", "tags": ["stable"]},
            {"name": "v3", "tags": ["stable", "edge"]},
            {"name": "v4", "tags": ["edge"]},
        ],
    })
    with pytest.raises(CollisionError) as exc_info:
        expand_manifest("svc", manifest, None)
    error = exc_info.value
    assert error.code == ErrorCode.TAG_COLLISION
    assert dict(error.collisions) == {"edge": ["v3", "v4"], "stable": ["v1", "v2", "v3"]}
    assert "v1, v2, v3" in str(error)


def test_custom_tag_matching_another_version_collides():
    manifest = Manifest.model_validate({
        "default": "v1",
        "versions": [{"name": "v1"}, {"name": "v2", "tags": ["v1"]}],
    })
    with pytest.raises(CollisionError, match="'v1' produced by v1, v2"):
        expand_manifest("svc", manifest, None)


def test_same_custom_tag_on_different_platforms_is_fine():
    manifest = Manifest.model_validate({"default": "v1", "versions": [{"name": "v1", "tags": ["stable"]}]})
    variants = expand_manifest("svc", manifest, PLATFORMS)
    assert len(variants) == 2
