"""Exception taxonomy for the resolution and build-graph engine."""

from typing import List, Optional, Tuple

from meshbuild.codes import ErrorCode


class MeshBuildError(Exception):
    """Base exception for engine errors."""

    code: ErrorCode = ErrorCode.INVALID_MANIFEST

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(message)


class ConfigurationError(MeshBuildError):
    """Raised when a manifest or a required field is malformed or missing."""

    code = ErrorCode.INVALID_MANIFEST


class ResolutionError(MeshBuildError):
    """Raised when a dependency's version or platform cannot be determined."""

    code = ErrorCode.UNRESOLVED_DEPENDENCY


class CycleError(MeshBuildError):
    """Raised when one or more circular dependencies are detected.

    Every cycle is a closed path: the first node is repeated at the end.
    """

    code = ErrorCode.CYCLE_DETECTED

    def __init__(self, cycles: List[List[str]]):
        self.cycles = cycles
        lines = [f"  {' -> '.join(cycle)}" for cycle in cycles]
        noun = "cycle" if len(cycles) == 1 else "cycles"
        super().__init__(
            f"Circular dependencies detected ({len(cycles)} {noun}):\n" + "\n".join(lines)
        )


class CollisionError(MeshBuildError):
    """Raised when version names, platform composites or final tags collide.

    collisions holds (colliding value, owners) pairs, one per offending value.
    """

    code = ErrorCode.TAG_COLLISION

    def __init__(
        self,
        service: str,
        what: str,
        collisions: List[Tuple[str, List[str]]],
        code: Optional[ErrorCode] = None,
    ):
        self.service = service
        self.what = what
        self.collisions = collisions
        details = "; ".join(
            f"'{value}' produced by {', '.join(owners)}" for value, owners in collisions
        )
        super().__init__(f"Duplicate {what} in service '{service}': {details}", code)


class CacheError(MeshBuildError):
    """Raised for unreadable dep-cache manifests, missing tarballs and strict-mode misses."""

    code = ErrorCode.CACHE_UNREADABLE

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        failures: Optional[List[str]] = None,
    ):
        self.failures = failures or []
        super().__init__(message, code)


class PullError(MeshBuildError):
    """Raised when one or more external base images cannot be pulled."""

    code = ErrorCode.PULL_FAILED

    def __init__(self, failures: List[Tuple[str, str]]):
        self.failures = failures
        lines = [f"  {ref}: {reason}" for ref, reason in failures]
        super().__init__(
            f"Failed to pull {len(failures)} external image(s):\n" + "\n".join(lines)
        )
