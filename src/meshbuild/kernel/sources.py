"""Resolve the revision of every source a node builds from."""

import hashlib
from pathlib import Path
from typing import Dict, Tuple, Union

from meshbuild.codes import ErrorCode
from meshbuild.kernel.errors import ConfigurationError
from meshbuild.kernel.executor import SourceRevisionResolver
from meshbuild.kernel.models import GitSource, MergedConfig


def hash_path_tree(root: Union[str, Path]) -> str:
    """SHA256 over the sorted relative paths and bytes of every file under root."""
    root = Path(root)
    digest = hashlib.sha256()
    if root.is_file():
        digest.update(root.read_bytes())
        return digest.hexdigest()
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        digest.update(path.relative_to(root).as_posix().encode("utf-8"))
        digest.update(b"\0")
        digest.update(path.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()


def resolve_source_revisions(
    config: MergedConfig,
    resolver: SourceRevisionResolver,
    base_dir: Union[str, Path] = ".",
) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Return (source_shas, source_types) for a node's sources.

    Git sources resolve through the injected resolver. Path sources are
    hashed from disk, relative to base_dir when not absolute.

    Raises:
        ConfigurationError: If a path source does not exist.
    """
    shas: Dict[str, str] = {}
    for key, source in sorted(config.sources.items()):
        if isinstance(source, GitSource):
            shas[key] = resolver.resolve(source.url, source.ref)
            continue
        path = Path(source.path)
        if not path.is_absolute():
            path = Path(base_dir) / path
        if not path.exists():
            raise ConfigurationError(
                f"Service '{config.name}': path source '{key}' does not exist: {path}",
                ErrorCode.MISSING_FIELD,
            )
        shas[key] = hash_path_tree(path)
    return shas, config.source_types()
