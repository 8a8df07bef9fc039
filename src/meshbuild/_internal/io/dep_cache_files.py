"""On-disk dep-cache of one owner service.

Layout::

    <cache_dir>/<owner>/manifest.json
    <cache_dir>/<owner>/images/<image id>.tar.gz

A shard is a directory with the same layout, produced by one build worker.
"""

import logging
import shutil
from pathlib import Path
from typing import Iterable, List, Union

from pydantic import BaseModel, Field

from meshbuild._internal.canonical_json import write_canonical
from meshbuild.codes import ErrorCode
from meshbuild.kernel.dep_cache import DepCacheManifest, merge_manifests
from meshbuild.kernel.errors import CacheError
from meshbuild.kernel.executor import BuildExecutor

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"
IMAGES_DIRNAME = "images"


def tarball_name(image_id: str) -> str:
    """File name of an image tarball, keyed by image ID."""
    return image_id.replace(":", "_").replace("/", "_") + ".tar.gz"


def read_manifest(path: Path, owner_service: str) -> DepCacheManifest:
    """Read a manifest file; a missing file is an empty manifest.

    Raises:
        CacheError: If the file exists but cannot be read or parsed.
    """
    if not path.exists():
        return DepCacheManifest(owner_service=owner_service)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise CacheError(f"Cannot read dep-cache manifest {path}: {e}", ErrorCode.CACHE_UNREADABLE) from e
    return DepCacheManifest.from_json_bytes(data, origin=str(path))


class LoadReport(BaseModel):
    """Outcome of loading cached images into the local image store."""
    loaded: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failures: List[str] = Field(default_factory=list)


class DepCacheManager:
    """Reads, writes and reconciles the dep-cache of one owner service."""

    def __init__(self, cache_dir: Union[str, Path], owner_service: str):
        self.owner_service = owner_service
        self.root = Path(cache_dir) / owner_service

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILENAME

    @property
    def images_dir(self) -> Path:
        return self.root / IMAGES_DIRNAME

    def tarball_path(self, image_id: str) -> Path:
        return self.images_dir / tarball_name(image_id)

    def load_manifest(self) -> DepCacheManifest:
        return read_manifest(self.manifest_path, self.owner_service)

    def write_manifest(self, manifest: DepCacheManifest) -> None:
        write_canonical(self.manifest_path, manifest.model_dump())

    def save_images(self, manifest: DepCacheManifest, executor: BuildExecutor) -> List[str]:
        """Save each unique image once, skipping images whose tarball already exists.

        Tarballs of images the manifest has dropped are deleted.

        Returns the image IDs that were written.
        """
        saved = []
        for image_id in manifest.image_ids():
            destination = self.tarball_path(image_id)
            if destination.exists():
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            executor.save_image(image_id, manifest.images[image_id].refs, destination)
            saved.append(image_id)
            logger.info("Saved dep-cache image %s to %s", image_id, destination)
        self.remove_stale_tarballs(manifest)
        return saved

    def load_images(self, manifest: DepCacheManifest, executor: BuildExecutor) -> LoadReport:
        """Load every cached image into the local image store.

        Images already present by ID are skipped. A missing tarball is
        recorded as a failure for that image and does not stop the others.
        """
        report = LoadReport()
        for image_id in manifest.image_ids():
            if executor.image_exists(image_id):
                report.skipped.append(image_id)
                continue
            tarball = self.tarball_path(image_id)
            if not tarball.exists():
                logger.warning("Dep-cache tarball missing for image %s: %s", image_id, tarball)
                report.failures.append(f"{ErrorCode.TARBALL_MISSING.value}: {image_id} ({tarball})")
                continue
            executor.load_image(tarball)
            report.loaded.append(image_id)
        return report

    def remove_stale_tarballs(self, manifest: DepCacheManifest) -> List[str]:
        """Delete stored tarballs of images the manifest no longer lists."""
        if not self.images_dir.is_dir():
            return []
        live = {tarball_name(image_id) for image_id in manifest.image_ids()}
        removed = []
        for tarball in sorted(self.images_dir.glob("*.tar.gz")):
            if tarball.name not in live:
                tarball.unlink()
                removed.append(tarball.name)
                logger.info("Removed stale dep-cache tarball %s", tarball)
        return removed

    def merge_shards(self, shard_dirs: Iterable[Union[str, Path]]) -> DepCacheManifest:
        """Merge worker shards into this owner's cache and write the result.

        Shard entries replace the owner's previous mapping for the same node.
        Shard tarballs are moved to the canonical path keyed by image ID; a
        tarball already present there is kept and the shard copy discarded.

        Raises:
            CacheError: On missing or unreadable shard manifests, or
                conflicting node mappings between shards.
        """
        shard_paths = [Path(d) for d in shard_dirs]
        shards = []
        for shard in shard_paths:
            path = shard / MANIFEST_FILENAME
            if not path.is_file():
                raise CacheError(f"Dep-cache shard manifest not found: {path}", ErrorCode.CACHE_UNREADABLE)
            shards.append(read_manifest(path, self.owner_service))
        merged = merge_manifests(self.owner_service, shards, base=self.load_manifest())

        for shard, manifest in zip(shard_paths, shards):
            for image_id in manifest.image_ids():
                source = shard / IMAGES_DIRNAME / tarball_name(image_id)
                if not source.exists() or image_id not in merged.images:
                    continue
                destination = self.tarball_path(image_id)
                if destination.exists():
                    source.unlink()
                    continue
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(source), str(destination))
                logger.debug("Relocated %s to %s", source, destination)

        self.remove_stale_tarballs(merged)
        self.write_manifest(merged)
        logger.info(
            "Merged %d shard(s) into dep-cache of %s: %d node(s), %d image(s)",
            len(shard_paths), self.owner_service, len(merged.nodes), len(merged.images),
        )
        return merged
