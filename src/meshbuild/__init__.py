"""meshbuild: configuration resolution and build-graph engine for container image builds."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("meshbuild")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from meshbuild.api import (
    GraphResult,
    ValidationIssue,
    ValidationResult,
    build_order,
    list_services,
    merge_dep_cache_shards,
    plan,
    resolve_graph,
    validate_service,
)
from meshbuild.codes import ErrorCode
from meshbuild.kernel.errors import (
    CacheError,
    CollisionError,
    ConfigurationError,
    CycleError,
    MeshBuildError,
    PullError,
    ResolutionError,
)

__all__ = [
    "__version__",
    "GraphResult",
    "ValidationIssue",
    "ValidationResult",
    "build_order",
    "list_services",
    "merge_dep_cache_shards",
    "plan",
    "resolve_graph",
    "validate_service",
    "ErrorCode",
    "MeshBuildError",
    "ConfigurationError",
    "ResolutionError",
    "CycleError",
    "CollisionError",
    "CacheError",
    "PullError",
]
