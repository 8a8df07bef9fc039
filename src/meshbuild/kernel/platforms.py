"""Platform expansion: one version spec becomes one variant per platform."""

from collections import defaultdict
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from meshbuild.codes import ErrorCode
from meshbuild.kernel.errors import CollisionError
from meshbuild.kernel.models import Manifest, PlatformsManifest, VersionSpec
from meshbuild.kernel.overrides import merge_overrides, platform_scoped


class PlatformVariant(BaseModel):
    """A version spec bound to one platform ('' for single-platform services)."""
    version: str
    platform: str = ""
    latest: bool = False
    tags: List[str] = Field(default_factory=list)
    overrides: Dict[str, Any] = Field(default_factory=dict)


def derive_tags(
    version: str,
    custom_tags: List[str],
    latest: bool,
    platform: str,
    is_default_platform: bool,
) -> List[str]:
    """Derive the final tag set for one (version, platform) variant.

    Every platform gets ``{base}-{platform}`` for the version and for each
    custom tag, plus ``latest-{platform}`` when latest. Only the default
    platform also gets the bare ``{base}`` and ``latest`` tags. Without a
    platform, only bare tags exist.
    """
    tags: List[str] = []
    for base in [version, *custom_tags]:
        if platform:
            tags.append(f"{base}-{platform}")
        if not platform or is_default_platform:
            tags.append(base)
    if latest:
        if platform:
            tags.append(f"latest-{platform}")
        if not platform or is_default_platform:
            tags.append("latest")
    # Deduplicate, keeping first occurrence
    return list(dict.fromkeys(tags))


def expand(
    version_spec: VersionSpec,
    platforms_manifest: Optional[PlatformsManifest],
    default_platform: Optional[str] = None,
) -> List[PlatformVariant]:
    """Expand a version spec into one variant per declared platform.

    version_spec.overrides is expected to already carry the version manifest
    defaults. Each variant's overrides are the generic overrides merged with
    the platform-scoped block for that platform.
    """
    if platforms_manifest is None:
        return [
            PlatformVariant(
                version=version_spec.name,
                platform="",
                latest=version_spec.latest,
                tags=derive_tags(version_spec.name, version_spec.tags, version_spec.latest, "", False),
                overrides=platform_scoped(version_spec.overrides, ""),
            )
        ]

    default = default_platform or platforms_manifest.default
    variants = []
    for platform in platforms_manifest.platforms:
        variants.append(
            PlatformVariant(
                version=version_spec.name,
                platform=platform.name,
                latest=version_spec.latest,
                tags=derive_tags(
                    version_spec.name,
                    version_spec.tags,
                    version_spec.latest,
                    platform.name,
                    platform.name == default,
                ),
                overrides=platform_scoped(version_spec.overrides, platform.name),
            )
        )
    return variants


def resolve_version_spec(manifest: Manifest, version_spec: VersionSpec) -> VersionSpec:
    """Return a copy of version_spec whose overrides carry the manifest defaults."""
    return version_spec.model_copy(
        update={"overrides": merge_overrides(manifest.defaults, version_spec.overrides)}
    )


def expand_manifest(
    service: str,
    manifest: Manifest,
    platforms_manifest: Optional[PlatformsManifest],
) -> List[PlatformVariant]:
    """Expand every version of a manifest and validate the result.

    Raises:
        CollisionError: On duplicate version names, duplicate platform names,
            duplicate (version, platform) composites, or a final tag shared by
            two versions on the same platform.
    """
    validate_unique_names(service, manifest, platforms_manifest)
    variants: List[PlatformVariant] = []
    for version_spec in manifest.versions:
        variants.extend(expand(resolve_version_spec(manifest, version_spec), platforms_manifest))
    validate_expansion(service, variants)
    return variants


def validate_unique_names(
    service: str,
    manifest: Manifest,
    platforms_manifest: Optional[PlatformsManifest],
) -> None:
    """Raise CollisionError when version or platform names repeat."""
    duplicates = _duplicates(manifest.get_version_names())
    if duplicates:
        raise CollisionError(
            service, "version names",
            [(name, [name] * count) for name, count in duplicates],
            code=ErrorCode.DUPLICATE_VERSION,
        )
    if platforms_manifest is not None:
        duplicates = _duplicates(platforms_manifest.get_platform_names())
        if duplicates:
            raise CollisionError(
                service, "platform names",
                [(name, [name] * count) for name, count in duplicates],
                code=ErrorCode.DUPLICATE_PLATFORM,
            )


def validate_expansion(service: str, variants: List[PlatformVariant]) -> None:
    """Check composites and per-platform tags are pairwise unique.

    Every collision is reported, not only the first.
    """
    composites: Dict[str, int] = defaultdict(int)
    for variant in variants:
        composites[f"{variant.version}:{variant.platform}" if variant.platform else variant.version] += 1
    repeated = sorted((name, count) for name, count in composites.items() if count > 1)
    if repeated:
        raise CollisionError(
            service, "version/platform composites",
            [(name, [name] * count) for name, count in repeated],
            code=ErrorCode.DUPLICATE_VERSION,
        )

    owners: Dict[tuple, List[str]] = defaultdict(list)
    for variant in variants:
        for tag in variant.tags:
            owners[(variant.platform, tag)].append(variant.version)

    collisions = []
    for (platform, tag), versions in sorted(owners.items()):
        if len(versions) > 1:
            label = f"{tag} (platform {platform})" if platform else tag
            collisions.append((label, sorted(versions)))
    if collisions:
        raise CollisionError(service, "tags", collisions, code=ErrorCode.TAG_COLLISION)


def _duplicates(names: List[str]) -> List[tuple]:
    counts: Dict[str, int] = defaultdict(int)
    for name in names:
        counts[name] += 1
    return sorted((name, count) for name, count in counts.items() if count > 1)
