"""Error and note code constants for meshbuild.

These constants prevent stringly-typed error codes and ensure
client code matches on the correct codes.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Error, warning and note codes."""

    # Configuration errors
    MISSING_MANIFEST = "MISSING_MANIFEST"
    INVALID_MANIFEST = "INVALID_MANIFEST"
    UNKNOWN_SERVICE = "UNKNOWN_SERVICE"
    UNKNOWN_VERSION = "UNKNOWN_VERSION"
    UNKNOWN_PLATFORM = "UNKNOWN_PLATFORM"
    MISSING_FIELD = "MISSING_FIELD"

    # Resolution errors
    UNRESOLVED_DEPENDENCY = "UNRESOLVED_DEPENDENCY"

    # Graph errors
    CYCLE_DETECTED = "CYCLE_DETECTED"

    # Collision errors
    DUPLICATE_VERSION = "DUPLICATE_VERSION"
    DUPLICATE_PLATFORM = "DUPLICATE_PLATFORM"
    TAG_COLLISION = "TAG_COLLISION"
    IMAGE_REF_COLLISION = "IMAGE_REF_COLLISION"

    # Dep-cache errors
    CACHE_MISS = "CACHE_MISS"
    CACHE_STALE = "CACHE_STALE"
    CACHE_UNREADABLE = "CACHE_UNREADABLE"
    CACHE_CONFLICT = "CACHE_CONFLICT"
    TARBALL_MISSING = "TARBALL_MISSING"

    # Executor errors
    PULL_FAILED = "PULL_FAILED"

    # Notes (non-blocking)
    SUFFIX_OVERRIDES_SINGLE_PLATFORM = "SUFFIX_OVERRIDES_SINGLE_PLATFORM"
    SINGLE_PLATFORM_ON_MULTI_PLATFORM = "SINGLE_PLATFORM_ON_MULTI_PLATFORM"
    PLATFORM_NOT_INHERITED = "PLATFORM_NOT_INHERITED"
