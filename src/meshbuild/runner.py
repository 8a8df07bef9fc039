"""Drive a build plan through a build executor.

The runner owns the run-level policies: external base-image pre-pull,
dep-cache warm-up, per-node skip decisions, dep-cache recording and push.
Nodes are built strictly in plan order, so no node starts before all of
its dependencies have completed.
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from meshbuild._internal.io.dep_cache_files import DepCacheManager, LoadReport
from meshbuild.config import MeshBuildSettings
from meshbuild.kernel.dep_cache import DepCacheManifest, DepCacheMode, decide
from meshbuild.kernel.dependency_resolver import ResolutionNote
from meshbuild.kernel.errors import CacheError, PullError
from meshbuild.kernel.executor import (
    SERVICE_DEF_HASH_LABEL,
    BuildExecutor,
    BuildRequest,
    SourceRevisionResolver,
)
from meshbuild.kernel.graph_builder import build_graph
from meshbuild.kernel.manifest_store import ManifestStore
from meshbuild.kernel.models import NodeKey
from meshbuild.kernel.planner import BuildPlan, BuildStep, PlanOptions, plan_build

logger = logging.getLogger(__name__)


class NodeOutcome(BaseModel):
    node: str
    action: str  # "built" | "skipped"
    image_id: Optional[str] = None
    reason: str


class BuildReport(BaseModel):
    """Result of one build run."""
    root: str
    order: List[str]
    outcomes: List[NodeOutcome] = Field(default_factory=list)
    warmup: LoadReport = Field(default_factory=LoadReport)
    saved_images: List[str] = Field(default_factory=list)
    notes: List[ResolutionNote] = Field(default_factory=list)

    def built(self) -> List[str]:
        return [o.node for o in self.outcomes if o.action == "built"]

    def skipped(self) -> List[str]:
        return [o.node for o in self.outcomes if o.action == "skipped"]


def prepull_external_images(plan: BuildPlan, executor: BuildExecutor) -> None:
    """Pull every external base image before any build starts.

    Raises:
        PullError: Listing every image that failed, after trying all of them.
    """
    failures: List[Tuple[str, str]] = []
    for ref in plan.external_images():
        try:
            executor.pull(ref)
        except Exception as e:
            failures.append((ref, str(e)))
    if failures:
        raise PullError(failures)


class BuildRunner:
    """Builds a service and its dependency graph with dep-cache reuse."""

    def __init__(
        self,
        store: ManifestStore,
        executor: BuildExecutor,
        revisions: SourceRevisionResolver,
        settings: Optional[MeshBuildSettings] = None,
        base_dir: Union[str, Path] = ".",
    ):
        self.store = store
        self.executor = executor
        self.revisions = revisions
        self.settings = settings or MeshBuildSettings()
        self.base_dir = base_dir

    @property
    def mode(self) -> DepCacheMode:
        return self.settings.dep_cache_mode

    def plan(self, service: str, version: Optional[str] = None, platform: Optional[str] = None) -> BuildPlan:
        graph = build_graph(self.store, service, version, platform)
        options = PlanOptions(
            registry=self.settings.registry,
            latest=self.settings.latest,
            extra_tags=self.settings.extra_tags,
        )
        return plan_build(graph, self.revisions, options, self.base_dir)

    def run(self, service: str, version: Optional[str] = None, platform: Optional[str] = None) -> BuildReport:
        """Plan and build service and everything it depends on.

        Raises:
            PullError: External base images could not be pulled.
            CacheError: Strict mode found a missing or stale image.
            MeshBuildError: Any resolution failure from planning.
        """
        plan = self.plan(service, version, platform)
        report = BuildReport(root=plan.root, order=[s.node for s in plan.steps], notes=plan.notes)
        cache = DepCacheManager(self.settings.dep_cache_dir, NodeKey.parse(plan.root).service)

        prepull_external_images(plan, self.executor)
        manifest = self._load_manifest(cache)
        if self.mode != DepCacheMode.OFF:
            report.warmup = self._warm_up(cache, manifest)

        for step in plan.steps:
            report.outcomes.append(self._build_step(step, manifest))

        if self.mode != DepCacheMode.OFF:
            report.saved_images = cache.save_images(manifest, self.executor)
            cache.write_manifest(manifest)
        logger.info(
            "Run for %s finished: %d built, %d skipped",
            plan.root, len(report.built()), len(report.skipped()),
        )
        return report

    def _load_manifest(self, cache: DepCacheManager) -> DepCacheManifest:
        try:
            return cache.load_manifest()
        except CacheError:
            if self.mode == DepCacheMode.STRICT:
                raise
            logger.warning("Ignoring unreadable dep-cache manifest %s", cache.manifest_path, exc_info=True)
            return DepCacheManifest(owner_service=cache.owner_service)

    def _warm_up(self, cache: DepCacheManager, manifest: DepCacheManifest) -> LoadReport:
        """Best-effort load of cached images; failures are reported, never raised."""
        report = LoadReport()
        try:
            report = cache.load_images(manifest, self.executor)
        except Exception as e:
            logger.warning("Dep-cache warm-up failed: %s", e)
            report.failures.append(str(e))
        for failure in report.failures:
            logger.warning("Dep-cache warm-up: %s", failure)
        return report

    def _build_step(self, step: BuildStep, manifest: DepCacheManifest) -> NodeOutcome:
        existing_id = self.executor.image_id(step.primary_ref)
        found_hash = None
        if existing_id is not None:
            found_hash = self.executor.image_label(step.primary_ref, SERVICE_DEF_HASH_LABEL)
        decision = decide(self.mode, step.node, step.service_def_hash, found_hash, existing_id is not None)

        if decision.action == "skip":
            logger.info("Skipping %s: %s", step.node, decision.reason)
            manifest.record(step.node, existing_id, step.image_refs)
            return NodeOutcome(node=step.node, action="skipped", image_id=existing_id, reason=decision.reason)

        logger.info("Building %s: %s", step.node, decision.reason)
        image_id = self.executor.build(BuildRequest(
            node=NodeKey.parse(step.node),
            config=step.config,
            image_refs=step.image_refs,
            build_args=step.build_args,
            cache_bust=step.service_def_hash,
            labels={SERVICE_DEF_HASH_LABEL: step.service_def_hash},
        ))
        manifest.record(step.node, image_id, step.image_refs)
        if self.settings.push:
            for ref in step.image_refs:
                self.executor.push(ref)
        return NodeOutcome(node=step.node, action="built", image_id=image_id, reason=decision.reason)

