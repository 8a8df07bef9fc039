"""Public API for the meshbuild package.

High-level functions that return complete, structured results. Callers
should use these functions instead of importing from _internal.
"""

import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from meshbuild._internal.io.dep_cache_files import DepCacheManager
from meshbuild._internal.io.manifest_files import FileManifestStore
from meshbuild.codes import ErrorCode
from meshbuild.config import MeshBuildSettings
from meshbuild.kernel.dep_cache import DepCacheManifest
from meshbuild.kernel.dependency_resolver import ResolutionNote
from meshbuild.kernel.errors import CycleError, MeshBuildError
from meshbuild.kernel.executor import SourceRevisionResolver
from meshbuild.kernel.graph_builder import BuildGraph, build_graph
from meshbuild.kernel.manifest_store import InMemoryManifestStore, ManifestStore
from meshbuild.kernel.platforms import expand_manifest
from meshbuild.kernel.planner import BuildPlan, PlanOptions, plan_build

ServicesInput = Union[str, os.PathLike, Path, ManifestStore, Dict[str, Dict[str, Any]]]


def _open_store(services: ServicesInput) -> ManifestStore:
    """A fresh store per call, so manifests are cached for one invocation only."""
    if isinstance(services, ManifestStore):
        return services
    if isinstance(services, dict):
        return InMemoryManifestStore(services)
    return FileManifestStore(Path(services))


class GraphResult(BaseModel):
    """Stable result model for a resolved dependency graph."""
    root: str
    nodes: List[str]  # sorted
    edges: List[List[str]]  # sorted [dependent, dependency] pairs
    tags: Dict[str, List[str]] = Field(default_factory=dict)  # node -> final tags
    order: List[str] = Field(default_factory=list)  # build order, when requested
    notes: List[ResolutionNote] = Field(default_factory=list)


class ValidationIssue(BaseModel):
    """A single validation issue (error or warning)."""
    code: str
    message: str
    element_id: Optional[str] = None  # node key or service the issue is about
    cycle_path: Optional[List[str]] = None  # For CYCLE_DETECTED errors


class ValidationResult(BaseModel):
    """Result of validating a service."""
    ok: bool  # True if no errors (warnings don't block)
    errors: List[ValidationIssue]
    warnings: List[ValidationIssue]


def _graph_result(graph: BuildGraph, ordered: bool = False) -> GraphResult:
    return GraphResult(
        root=str(graph.root),
        nodes=sorted(str(node) for node in graph.nodes),
        edges=sorted([str(src), str(dst)] for src, dst in graph.edges),
        tags={str(key): list(node.tags) for key, node in sorted(graph.resolved.items())},
        order=[str(node) for node in graph.build_order()] if ordered else [],
        notes=list(graph.notes),
    )


def list_services(services: ServicesInput) -> List[str]:
    """Sorted names of every service with a base config."""
    return _open_store(services).list_services()


def resolve_graph(
    services: ServicesInput,
    service: str,
    version: Optional[str] = None,
    platform: Optional[str] = None,
    ordered: bool = False,
) -> GraphResult:
    """Resolve the dependency graph of one build target.

    With ordered, the result also carries the build order.

    Raises:
        CycleError: If ordered and the graph is cyclic.
        MeshBuildError: On any configuration or resolution failure.
    """
    return _graph_result(build_graph(_open_store(services), service, version, platform), ordered)


def build_order(
    services: ServicesInput,
    service: str,
    version: Optional[str] = None,
    platform: Optional[str] = None,
) -> List[str]:
    """Node keys of the target's graph, dependencies first.

    Raises:
        CycleError: Listing every cycle in the graph.
        MeshBuildError: On any configuration or resolution failure.
    """
    graph = build_graph(_open_store(services), service, version, platform)
    return [str(node) for node in graph.build_order()]


def plan(
    services: ServicesInput,
    service: str,
    revisions: SourceRevisionResolver,
    version: Optional[str] = None,
    platform: Optional[str] = None,
    settings: Optional[MeshBuildSettings] = None,
    base_dir: Union[str, Path] = ".",
) -> BuildPlan:
    """Build plan (ordered steps with tags, build args and hashes) for one target."""
    settings = settings or MeshBuildSettings()
    graph = build_graph(_open_store(services), service, version, platform)
    options = PlanOptions(registry=settings.registry, latest=settings.latest, extra_tags=settings.extra_tags)
    return plan_build(graph, revisions, options, base_dir)


def _issue(error: MeshBuildError, element_id: Optional[str]) -> ValidationIssue:
    return ValidationIssue(
        code=error.code.value,
        message=str(error),
        element_id=element_id,
        cycle_path=error.cycles[0] if isinstance(error, CycleError) else None,
    )


def validate_service(services: ServicesInput, service: str) -> ValidationResult:
    """Validate a service's manifests and every graph it can be built into.

    Checks manifest structure, version/platform/tag collisions, and resolves
    the graph and build order of every (version, platform) variant. Engine
    errors are reported as issues, never raised.
    """
    store = _open_store(services)
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    try:
        store.load_service_config(service)
        variants = expand_manifest(service, store.load_versions(service), store.load_platforms(service))
    except MeshBuildError as e:
        errors.append(_issue(e, service))
        return ValidationResult(ok=False, errors=errors, warnings=warnings)

    seen_notes = set()
    seen_cycles = set()
    for variant in variants:
        target = f"{service}:{variant.version}" + (f":{variant.platform}" if variant.platform else "")
        try:
            graph = build_graph(store, service, variant.version, variant.platform)
            graph.build_order()
        except CycleError as e:
            for cycle in e.cycles:
                if tuple(cycle) in seen_cycles:
                    continue
                seen_cycles.add(tuple(cycle))
                errors.append(ValidationIssue(
                    code=ErrorCode.CYCLE_DETECTED.value,
                    message=f"Circular dependency: {' -> '.join(cycle)}",
                    element_id=target,
                    cycle_path=cycle,
                ))
            continue
        except MeshBuildError as e:
            errors.append(_issue(e, target))
            continue
        for note in graph.notes:
            marker = (note.code, note.parent, note.dependency)
            if marker in seen_notes:
                continue
            seen_notes.add(marker)
            warnings.append(ValidationIssue(code=note.code.value, message=note.message, element_id=note.parent))

    return ValidationResult(ok=not errors, errors=errors, warnings=warnings)


def merge_dep_cache_shards(
    cache_dir: Union[str, Path],
    owner_service: str,
    shard_dirs: Iterable[Union[str, Path]],
) -> DepCacheManifest:
    """Merge worker shards into the owner's dep-cache and return the merged manifest."""
    return DepCacheManager(cache_dir, owner_service).merge_shards(shard_dirs)
