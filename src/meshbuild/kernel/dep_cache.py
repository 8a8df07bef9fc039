"""Dep-cache model: content-addressed image cache of one owner service.

nodes maps a node key to the image ID built for it; images maps an image
ID to every ref that points at it. Distinct tags producing a bit-identical
image share one images entry (and one stored tarball).
"""

import json
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from meshbuild._internal.canonical_json import canonical_dumps
from meshbuild.codes import ErrorCode
from meshbuild.kernel.errors import CacheError
from meshbuild.kernel.models import NodeKey

SCHEMA_VERSION = 1


class DepCacheMode(str, Enum):
    """How the dep-cache participates in build decisions."""
    OFF = "off"        # no hash-based skip, always rebuild
    SOFT = "soft"      # hash-based skip, rebuild on miss or stale
    STRICT = "strict"  # hash-based validation only, fail closed on miss or stale


class ImageEntry(BaseModel):
    refs: List[str] = Field(default_factory=list)
    owner_service: str

    model_config = ConfigDict(extra="forbid")


class DepCacheManifest(BaseModel):
    """Dep-cache manifest document."""
    schema_version: int = SCHEMA_VERSION
    owner_service: str
    nodes: Dict[str, str] = Field(default_factory=dict)
    images: Dict[str, ImageEntry] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    def record(self, node: str, image_id: str, refs: List[str]) -> None:
        """Record that node built to image_id, reachable under refs.

        A node rebuilt to a new image takes its refs away from the image it
        replaced; images no node points at any more are dropped.
        """
        previous = self.nodes.get(node)
        self.nodes[node] = image_id
        if previous is not None and previous != image_id and previous in self.images:
            replaced = self.images[previous]
            replaced.refs = sorted(set(replaced.refs) - set(refs))
        entry = self.images.get(image_id)
        if entry is None:
            entry = ImageEntry(owner_service=NodeKey.parse(node).service)
            self.images[image_id] = entry
        entry.refs = sorted(set(entry.refs) | set(refs))
        self.prune()

    def prune(self) -> List[str]:
        """Drop image entries that no node maps to; returns the dropped IDs."""
        live = set(self.nodes.values())
        dropped = sorted(image_id for image_id in self.images if image_id not in live)
        for image_id in dropped:
            del self.images[image_id]
        return dropped

    def image_for(self, node: str) -> Optional[str]:
        return self.nodes.get(node)

    def image_ids(self) -> List[str]:
        return sorted(self.images)

    def to_json(self) -> str:
        return canonical_dumps(self.model_dump())

    @classmethod
    def from_json_bytes(cls, data: bytes, origin: str = "dep-cache manifest") -> "DepCacheManifest":
        """Load a manifest from JSON bytes (pure, no I/O).

        Raises:
            CacheError: If the bytes are not a valid manifest.
        """
        try:
            manifest = cls.model_validate(json.loads(data))
        except (ValueError, ValidationError) as e:
            raise CacheError(f"Unreadable {origin}: {e}", ErrorCode.CACHE_UNREADABLE) from e
        if manifest.schema_version != SCHEMA_VERSION:
            raise CacheError(
                f"Unsupported schema_version {manifest.schema_version} in {origin} "
                f"(expected {SCHEMA_VERSION})",
                ErrorCode.CACHE_UNREADABLE,
            )
        return manifest


def merge_manifests(
    owner_service: str,
    shards: List[DepCacheManifest],
    base: Optional[DepCacheManifest] = None,
) -> DepCacheManifest:
    """Merge this run's shard manifests onto the owner's previous manifest.

    Shards must agree with each other. A node a shard reports replaces the
    mapping base had for it; base nodes no shard touches are kept. Ref lists
    are deduplicated and sorted, so the result does not depend on shard order.

    Raises:
        CacheError: If shards map the same node to different images; every
            conflicting node is listed.
    """
    sources: Dict[str, set] = {}
    refs: Dict[str, set] = {}
    for manifest in shards:
        for node, image_id in manifest.nodes.items():
            sources.setdefault(node, set()).add(image_id)
        for image_id, entry in manifest.images.items():
            refs.setdefault(image_id, set()).update(entry.refs)

    conflicts = sorted(
        f"{node} -> {', '.join(sorted(ids))}" for node, ids in sources.items() if len(ids) > 1
    )
    if conflicts:
        raise CacheError(
            f"Dep-cache shards disagree for {len(conflicts)} node(s) of '{owner_service}': "
            + "; ".join(conflicts),
            ErrorCode.CACHE_CONFLICT,
            failures=conflicts,
        )

    if base is None:
        merged = DepCacheManifest(owner_service=owner_service)
    else:
        merged = base.model_copy(deep=True)
        merged.owner_service = owner_service
    for node, ids in sorted(sources.items()):
        image_id = next(iter(ids))
        merged.record(node, image_id, sorted(refs.get(image_id, ())))
    return merged


class CacheDecision(BaseModel):
    """Whether a node must be built."""
    node: str
    action: Literal["skip", "build"]
    reason: str


def decide(
    mode: DepCacheMode,
    node: str,
    expected_hash: str,
    found_hash: Optional[str],
    image_present: bool,
) -> CacheDecision:
    """Apply the dep-cache mode to one node.

    Args:
        mode: Dep-cache mode.
        node: Node key.
        expected_hash: Service-definition hash computed for this run.
        found_hash: Hash label of the existing image, if any.
        image_present: Whether an image for the node exists locally.

    Raises:
        CacheError: In strict mode, when the image is missing or stale.
    """
    if mode == DepCacheMode.OFF:
        return CacheDecision(node=node, action="build", reason="dep-cache disabled")

    if not image_present:
        if mode == DepCacheMode.STRICT:
            raise CacheError(f"Dep-cache miss for {node} (strict mode)", ErrorCode.CACHE_MISS)
        return CacheDecision(node=node, action="build", reason="no cached image")

    if found_hash != expected_hash:
        if mode == DepCacheMode.STRICT:
            raise CacheError(
                f"Dep-cache image for {node} is stale (strict mode): "
                f"expected hash {expected_hash}, found {found_hash or 'none'}",
                ErrorCode.CACHE_STALE,
            )
        return CacheDecision(node=node, action="build", reason="service definition changed")

    return CacheDecision(node=node, action="skip", reason="service definition unchanged")
