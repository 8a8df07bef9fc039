"""Build the dependency graph of a requested build target."""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from meshbuild.codes import ErrorCode
from meshbuild.kernel.dependency_resolver import ResolutionNote, resolve_dependency
from meshbuild.kernel.errors import ConfigurationError
from meshbuild.kernel.manifest_store import ManifestStore
from meshbuild.kernel.models import MergedConfig, NodeKey
from meshbuild.kernel.overrides import merge_overrides, platform_scoped
from meshbuild.kernel.platforms import PlatformVariant, expand, expand_manifest, resolve_version_spec
from meshbuild.kernel.toposort import topological_sort

logger = logging.getLogger(__name__)


class ResolvedNode:
    """Merged configuration and platform variant of one node."""

    def __init__(self, key: NodeKey, config: MergedConfig, variant: PlatformVariant):
        self.key = key
        self.config = config
        self.variant = variant

    @property
    def tags(self) -> List[str]:
        return self.variant.tags


class NodeResolver:
    """Compose per-node configuration, memoized by node key.

    One resolver (and so one ConfigCache) is created per graph build and
    discarded with it. Each node is loaded and merged at most once no
    matter how many parents reference it.
    """

    def __init__(self, store: ManifestStore):
        self.store = store
        self.cache: Dict[NodeKey, ResolvedNode] = {}
        self._validated: Set[str] = set()

    def resolve(self, key: NodeKey) -> ResolvedNode:
        if key not in self.cache:
            self.cache[key] = self._compose(key)
        return self.cache[key]

    def _validate_service(self, service: str) -> None:
        if service in self._validated:
            return
        expand_manifest(service, self.store.load_versions(service), self.store.load_platforms(service))
        self._validated.add(service)

    def _compose(self, key: NodeKey) -> ResolvedNode:
        base = self.store.load_service_config(key.service)
        manifest = self.store.load_versions(key.service)
        platforms = self.store.load_platforms(key.service)
        self._validate_service(key.service)

        version_spec = manifest.get_version(key.version)
        if version_spec is None:
            raise ConfigurationError(
                f"Service '{key.service}' has no version '{key.version}' "
                f"(available: {', '.join(manifest.get_version_names())})",
                ErrorCode.UNKNOWN_VERSION,
            )
        version_spec = resolve_version_spec(manifest, version_spec)

        layers = [base.model_dump(exclude_none=True)]
        if platforms is None:
            if key.platform:
                raise ConfigurationError(
                    f"Service '{key.service}' has no platform manifest, "
                    f"cannot build platform '{key.platform}' (node {key})",
                    ErrorCode.UNKNOWN_PLATFORM,
                )
            variant = expand(version_spec, None)[0]
        else:
            # An empty platform on a multi-platform service builds the default platform's layer
            layer_platform = key.platform or platforms.default
            platform_spec = platforms.get_platform(layer_platform)
            if platform_spec is None:
                raise ConfigurationError(
                    f"Service '{key.service}' has no platform '{layer_platform}' "
                    f"(available: {', '.join(platforms.get_platform_names())}; node {key})",
                    ErrorCode.UNKNOWN_PLATFORM,
                )
            platform_layer = merge_overrides(
                platforms.defaults,
                platform_spec.model_dump(exclude_none=True, exclude={"name"}),
            )
            layers.append(platform_layer)
            if key.platform:
                variant = next(v for v in expand(version_spec, platforms) if v.platform == key.platform)
            else:
                variant = expand(version_spec, None)[0]
                variant = variant.model_copy(
                    update={"overrides": platform_scoped(version_spec.overrides, layer_platform)}
                )
        layers.append(variant.overrides)

        composed: Dict = {}
        for layer in layers:
            composed = merge_overrides(composed, layer)

        if not composed.get("dockerfile"):
            raise ConfigurationError(
                f"Node {key} is missing required field 'dockerfile' after merging "
                f"base, platform and version configuration",
                ErrorCode.MISSING_FIELD,
            )
        try:
            config = MergedConfig.model_validate(composed)
        except ValidationError as e:
            raise ConfigurationError(
                f"Node {key} has an invalid merged configuration: {e}",
                ErrorCode.INVALID_MANIFEST,
            ) from e

        logger.debug("Resolved configuration for %s", key)
        return ResolvedNode(key, config, variant)


class BuildGraph:
    """Dependency graph of build nodes.

    Edge (u, v) means u depends on v.
    """

    def __init__(self, root: NodeKey):
        self.root = root
        self.nodes: Set[NodeKey] = set()
        self.edges: Set[Tuple[NodeKey, NodeKey]] = set()
        self.resolved: Dict[NodeKey, ResolvedNode] = {}
        # node -> [(build_arg, dependency)] in declaration order
        self.dependency_args: Dict[NodeKey, List[Tuple[str, NodeKey]]] = defaultdict(list)
        self.notes: List[ResolutionNote] = []

    def add_node(self, node: ResolvedNode) -> None:
        self.nodes.add(node.key)
        self.resolved[node.key] = node

    def add_edge(self, src: NodeKey, dst: NodeKey, build_arg: str) -> None:
        self.edges.add((src, dst))
        self.dependency_args[src].append((build_arg, dst))

    def config(self, node: NodeKey) -> MergedConfig:
        return self.resolved[node].config

    def get_dependencies(self, node: NodeKey) -> Set[NodeKey]:
        """Get direct dependencies of a node."""
        return {dst for src, dst in self.edges if src == node}

    def get_dependents(self, node: NodeKey) -> Set[NodeKey]:
        """Get nodes that depend on this node (reverse edges)."""
        return {src for src, dst in self.edges if dst == node}

    def get_transitive_dependencies(self, node: NodeKey) -> Set[NodeKey]:
        """Get all transitive dependencies (recursive)."""
        visited = set()
        stack = [node]
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            stack.extend(dep for dep in self.get_dependencies(current) if dep not in visited)
        visited.discard(node)
        return visited

    def build_order(self) -> List[NodeKey]:
        """Dependencies before dependents; raises CycleError on cycles."""
        return topological_sort(self.nodes, self.edges)


def build_graph(
    store: ManifestStore,
    service: str,
    version: Optional[str] = None,
    platform: Optional[str] = None,
) -> BuildGraph:
    """Construct the full dependency graph rooted at (service, version, platform).

    version defaults to the manifest's default version; platform defaults to
    the platform manifest's default (or '' for single-platform services).
    Any failure aborts construction; no partial graph is returned.

    Raises:
        ConfigurationError: Missing service, manifest, version or platform.
        ResolutionError: A dependency's version cannot be determined.
        CollisionError: A visited service's manifests collide.
    """
    if not store.service_exists(service):
        raise ConfigurationError(
            f"Service '{service}' not found (known services: {', '.join(store.list_services())})",
            ErrorCode.UNKNOWN_SERVICE,
        )
    if version is None:
        version = store.load_versions(service).default
    if platform is None:
        platform = store.default_platform(service)

    root = NodeKey(service, version, platform)
    resolver = NodeResolver(store)
    graph = BuildGraph(root)

    worklist = [root]
    visited: Set[NodeKey] = set()
    while worklist:
        key = worklist.pop()
        if key in visited:
            continue
        visited.add(key)
        node = resolver.resolve(key)
        graph.add_node(node)
        parent_has_platforms = store.has_platforms(key.service)

        for lookup_key, decl in sorted(node.config.dependencies.items()):
            dep_service = decl.service or lookup_key
            if not store.service_exists(dep_service):
                raise ConfigurationError(
                    f"Dependency '{lookup_key}' of {key} refers to unknown service '{dep_service}'",
                    ErrorCode.UNKNOWN_SERVICE,
                )
            resolved = resolve_dependency(lookup_key, decl, key, parent_has_platforms, store)
            graph.notes.extend(resolved.notes)
            graph.add_edge(key, resolved.key, resolved.build_arg)
            if resolved.key not in visited:
                worklist.append(resolved.key)

    logger.info("Built graph for %s: %d node(s), %d edge(s)", root, len(graph.nodes), len(graph.edges))
    return graph
