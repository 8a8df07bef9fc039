"""Turn an ordered build graph into concrete build steps."""

from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from meshbuild.codes import ErrorCode
from meshbuild.kernel.dependency_resolver import ResolutionNote
from meshbuild.kernel.errors import CollisionError
from meshbuild.kernel.executor import SourceRevisionResolver
from meshbuild.kernel.graph_builder import BuildGraph, ResolvedNode
from meshbuild.kernel.hash_utils import hash_service_definition
from meshbuild.kernel.models import GitSource, MergedConfig, NodeKey, TlsConfig
from meshbuild.kernel.sources import resolve_source_revisions

CACHE_BUST_ARG = "CACHEBUST"


class PlanOptions(BaseModel):
    """Tagging options applied on top of the manifests."""
    registry: str = ""
    latest: bool = True
    extra_tags: List[str] = Field(default_factory=list)


class BuildStep(BaseModel):
    """One node, ready to hand to a build executor."""
    node: str
    service: str
    version: str
    platform: str
    tags: List[str]
    image_refs: List[str]
    primary_ref: str
    build_args: Dict[str, str]
    service_def_hash: str
    config: MergedConfig
    dependencies: List[str] = Field(default_factory=list)
    external_images: List[str] = Field(default_factory=list)


class BuildPlan(BaseModel):
    """Build steps in dependency order."""
    root: str
    steps: List[BuildStep]
    notes: List[ResolutionNote] = Field(default_factory=list)

    def external_images(self) -> List[str]:
        """Unique external image refs across all steps."""
        return sorted({ref for step in self.steps for ref in step.external_images})

    def step(self, node: str) -> Optional[BuildStep]:
        for step in self.steps:
            if step.node == node:
                return step
        return None


def primary_tag(key: NodeKey) -> str:
    return f"{key.version}-{key.platform}" if key.platform else key.version


def image_ref(registry: str, service: str, tag: str) -> str:
    return f"{registry}{service}:{tag}"


def node_tags(node: ResolvedNode, options: PlanOptions) -> List[str]:
    """Final tags of a node after applying latest and extra-tag options."""
    tags = list(node.tags)
    if not options.latest:
        tags = [t for t in tags if t != "latest" and not t.startswith("latest-")]
    platform = node.key.platform
    # The bare version tag is only present on the default platform or without platforms
    bare_allowed = not platform or node.key.version in node.tags
    for extra in options.extra_tags:
        if platform:
            tags.append(f"{extra}-{platform}")
        if bare_allowed:
            tags.append(extra)
    if primary_tag(node.key) not in tags:
        tags.insert(0, primary_tag(node.key))
    return list(dict.fromkeys(tags))


def _arg_name(key: str) -> str:
    return key.upper().replace("-", "_").replace(".", "_")


def source_build_args(config: MergedConfig, source_shas: Dict[str, str]) -> Dict[str, str]:
    args: Dict[str, str] = {}
    for key, source in sorted(config.sources.items()):
        name = _arg_name(key)
        if isinstance(source, GitSource):
            args[f"{name}_URL"] = source.url
            args[f"{name}_REF"] = source.ref
        else:
            args[f"{name}_PATH"] = source.path
        if key in source_shas:
            args[f"{name}_SHA"] = source_shas[key]
    return args


def tls_build_args(service: str, tls: Optional[TlsConfig]) -> Dict[str, str]:
    if tls is None or not tls.enabled:
        return {}
    return {
        "TLS_ENABLED": "true",
        "TLS_MODE": tls.mode,
        "TLS_CERT_NAME": tls.cert_name or service,
    }


def plan_build(
    graph: BuildGraph,
    revisions: SourceRevisionResolver,
    options: Optional[PlanOptions] = None,
    base_dir: Union[str, Path] = ".",
) -> BuildPlan:
    """Plan every node of graph in build order.

    Each node's service-definition hash folds in the hashes of its direct
    dependencies, so a change anywhere below a node changes its hash.

    Raises:
        CycleError: If the graph is cyclic.
        CollisionError: If two nodes would publish the same image ref.
        ConfigurationError: If a path source is missing.
    """
    options = options or PlanOptions()
    hashes: Dict[NodeKey, str] = {}
    primary_refs: Dict[NodeKey, str] = {}
    steps: List[BuildStep] = []

    for key in graph.build_order():
        node = graph.resolved[key]
        config = node.config
        source_shas, source_types = resolve_source_revisions(config, revisions, base_dir)
        dependencies = sorted(graph.get_dependencies(key))
        service_def_hash = hash_service_definition(
            key.service,
            key.version,
            key.platform,
            config,
            source_shas,
            source_types,
            {str(dep): hashes[dep] for dep in dependencies},
        )
        hashes[key] = service_def_hash

        tags = node_tags(node, options)
        refs = [image_ref(options.registry, key.service, tag) for tag in tags]
        primary_refs[key] = image_ref(options.registry, key.service, primary_tag(key))

        build_args: Dict[str, str] = {}
        for image in config.external_images.values():
            build_args[image.build_arg] = image.reference
        for build_arg, dep in graph.dependency_args.get(key, []):
            build_args[build_arg] = primary_refs[dep]
        build_args.update(source_build_args(config, source_shas))
        build_args.update(tls_build_args(key.service, config.tls))
        build_args[CACHE_BUST_ARG] = service_def_hash

        steps.append(BuildStep(
            node=str(key),
            service=key.service,
            version=key.version,
            platform=key.platform,
            tags=tags,
            image_refs=refs,
            primary_ref=primary_refs[key],
            build_args=build_args,
            service_def_hash=service_def_hash,
            config=config,
            dependencies=[str(dep) for dep in dependencies],
            external_images=sorted({image.reference for image in config.external_images.values()}),
        ))

    check_image_refs(graph.root.service, steps)
    return BuildPlan(root=str(graph.root), steps=steps, notes=list(graph.notes))


def check_image_refs(service: str, steps: List[BuildStep]) -> None:
    """Raise CollisionError when one image ref belongs to more than one node.

    An empty-platform node of a multi-platform service carries the same bare
    tags as its default-platform variant, so both cannot share one plan.
    """
    owners: Dict[str, List[str]] = {}
    for step in steps:
        for ref in step.image_refs:
            owners.setdefault(ref, []).append(step.node)
    collisions = sorted((ref, sorted(nodes)) for ref, nodes in owners.items() if len(nodes) > 1)
    if collisions:
        raise CollisionError(service, "image refs", collisions, code=ErrorCode.IMAGE_REF_COLLISION)
