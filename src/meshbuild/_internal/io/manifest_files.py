"""Load service manifests from a services directory.

Layout for a service S::

    <services_dir>/S.yaml              base config
    <services_dir>/S/versions.yaml     version manifest
    <services_dir>/S/platforms.yaml    platform manifest (optional)

Each document may be YAML (.yaml / .yml) or JSON (.json).
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from meshbuild.codes import ErrorCode
from meshbuild.kernel.errors import ConfigurationError
from meshbuild.kernel.manifest_store import SERVICE_DOCUMENT, ManifestStore

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES = (".yaml", ".yml", ".json")


def load_document(path: Path) -> Any:
    """Parse a YAML or JSON document from disk."""
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix == ".json":
            return json.loads(text)
        return yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot parse {path}: {e}", ErrorCode.INVALID_MANIFEST) from e


def _find_document(directory: Path, stem: str) -> Optional[Path]:
    candidates = [directory / f"{stem}{suffix}" for suffix in DOCUMENT_SUFFIXES]
    found = [p for p in candidates if p.is_file()]
    if len(found) > 1:
        raise ConfigurationError(
            f"Ambiguous manifest: {', '.join(str(p) for p in found)} all exist",
            ErrorCode.INVALID_MANIFEST,
        )
    return found[0] if found else None


class FileManifestStore(ManifestStore):
    """Manifest store reading documents from a services directory."""

    def __init__(self, services_dir: Union[str, Path]):
        super().__init__()
        self.services_dir = Path(services_dir)
        self._service_names: Optional[List[str]] = None

    def list_services(self) -> List[str]:
        if self._service_names is None:
            if not self.services_dir.is_dir():
                raise ConfigurationError(
                    f"Services directory not found: {self.services_dir}",
                    ErrorCode.MISSING_MANIFEST,
                )
            names = {
                p.stem for p in self.services_dir.iterdir()
                if p.is_file() and p.suffix in DOCUMENT_SUFFIXES
            }
            self._service_names = sorted(names)
        return self._service_names

    def read_document(self, service: str, kind: str) -> Optional[Tuple[Dict[str, Any], str]]:
        if kind == SERVICE_DOCUMENT:
            path = _find_document(self.services_dir, service)
        else:
            path = _find_document(self.services_dir / service, kind)
        if path is None:
            return None
        logger.debug("Loading %s document for service %s from %s", kind, service, path)
        return load_document(path), str(path)
