"""Dependency resolution: determine a dependency's effective (version, platform).

Decision order for a declaration {service?, version?, single_platform?}:

1. An explicit version whose suffix names one of the dependency's own
   platforms is split into (version, platform). The suffix wins over
   single_platform.
2. Otherwise (explicit or inherited version) with single_platform, the
   platform is empty.
3. Otherwise, when the parent has a platform, it is inherited verbatim,
   unless the dependency has no platform manifest, in which case the
   platform is empty.
4. Otherwise the dependency builds on its own default platform.

A declaration without a version inherits the parent's version; with no
parent version to inherit, resolution fails.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple

from pydantic import BaseModel

from meshbuild.codes import ErrorCode
from meshbuild.kernel.errors import ResolutionError
from meshbuild.kernel.models import DependencyDecl, NodeKey

logger = logging.getLogger(__name__)


class PlatformCatalog(Protocol):
    """What the resolver needs to know about a dependency's platforms."""

    def platform_names(self, service: str) -> Optional[List[str]]:
        """Declared platforms, or None when the service has no platform manifest."""
        ...

    def default_platform(self, service: str) -> str:
        ...


class ResolutionNote(BaseModel):
    """A non-fatal observation made while resolving a dependency."""
    code: ErrorCode
    level: str  # "warning" | "info"
    parent: str
    dependency: str
    message: str


@dataclass
class ResolvedDependency:
    """Resolution outcome for one dependency declaration."""
    key: NodeKey
    build_arg: str
    notes: List[ResolutionNote] = field(default_factory=list)


def split_platform_suffix(version: str, platforms: Optional[List[str]]) -> Optional[Tuple[str, str]]:
    """Split ``{version}-{platform}`` when the suffix is a known platform.

    The longest matching platform name wins. Returns None when no declared
    platform matches or the version part would be empty.
    """
    if not platforms:
        return None
    for platform in sorted(platforms, key=lambda p: (-len(p), p)):
        suffix = f"-{platform}"
        if version.endswith(suffix) and len(version) > len(suffix):
            return version[: -len(suffix)], platform
    return None


def resolve_dependency(
    lookup_key: str,
    decl: DependencyDecl,
    parent: NodeKey,
    parent_has_platforms: bool,
    catalog: PlatformCatalog,
) -> ResolvedDependency:
    """Resolve one dependency declaration against its parent node.

    Args:
        lookup_key: Key the declaration is stored under in the parent's
            dependencies map; used as service name when decl.service is unset.
        decl: The dependency declaration.
        parent: Resolved node key of the parent.
        parent_has_platforms: Whether the parent service is multi-platform.
        catalog: Source of the dependency's platform capability.

    Raises:
        ResolutionError: If no version is declared and the parent has none.
    """
    service = decl.service or lookup_key
    dep_platforms = catalog.platform_names(service)
    notes: List[ResolutionNote] = []

    def note(code: ErrorCode, level: str, message: str) -> None:
        notes.append(ResolutionNote(
            code=code, level=level, parent=str(parent), dependency=lookup_key, message=message,
        ))
        log = logger.warning if level == "warning" else logger.info
        log("%s (dependency '%s' of %s)", message, lookup_key, parent)

    if decl.version:
        split = split_platform_suffix(decl.version, dep_platforms)
        if split is not None:
            if decl.single_platform:
                note(
                    ErrorCode.SUFFIX_OVERRIDES_SINGLE_PLATFORM, "warning",
                    f"Version '{decl.version}' names platform '{split[1]}'; "
                    f"the suffix overrides single_platform",
                )
            return ResolvedDependency(NodeKey(service, split[0], split[1]), decl.build_arg, notes)
        version = decl.version
    elif parent.version:
        version = parent.version
    else:
        raise ResolutionError(
            f"Dependency '{lookup_key}' of {parent} has no 'version' field and its parent "
            f"has no version to inherit; declare 'version' on the dependency"
        )

    if decl.single_platform:
        if dep_platforms is not None:
            note(
                ErrorCode.SINGLE_PLATFORM_ON_MULTI_PLATFORM, "warning",
                f"single_platform is set but service '{service}' has a platform manifest; "
                f"building it without a platform",
            )
        platform = ""
    elif parent_has_platforms and parent.platform:
        if dep_platforms is None:
            note(
                ErrorCode.PLATFORM_NOT_INHERITED, "info",
                f"Service '{service}' has no platform manifest; version '{version}' "
                f"is used for all platforms of the parent",
            )
            platform = ""
        else:
            platform = parent.platform
    else:
        platform = catalog.default_platform(service) if dep_platforms is not None else ""

    return ResolvedDependency(NodeKey(service, version, platform), decl.build_arg, notes)
