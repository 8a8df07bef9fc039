"""Contracts of the external collaborators the engine drives.

The engine never talks to a container runtime, registry or git server
itself. Callers inject implementations of these protocols.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from meshbuild.kernel.models import MergedConfig, NodeKey

# Image label carrying the service-definition hash of a built image
SERVICE_DEF_HASH_LABEL = "org.meshbuild.service-def-hash"


@dataclass
class BuildRequest:
    """Everything the executor needs to build one node."""
    node: NodeKey
    config: MergedConfig
    image_refs: List[str]
    build_args: Dict[str, str]
    cache_bust: str
    labels: Dict[str, str] = field(default_factory=dict)


class BuildExecutor(Protocol):
    """Container build and registry operations."""

    def image_exists(self, ref: str) -> bool:
        """Whether an image is present locally, by ref or by image ID."""
        ...

    def image_id(self, ref: str) -> Optional[str]:
        """ID of the local image ref points at, or None if absent."""
        ...

    def image_label(self, ref: str, label: str) -> Optional[str]:
        """Value of a label on a local image, or None if image or label is absent."""
        ...

    def build(self, request: BuildRequest) -> str:
        """Build a node and return the resulting image ID."""
        ...

    def pull(self, ref: str) -> None:
        """Pull an image; raises on failure."""
        ...

    def push(self, ref: str) -> None:
        ...

    def save_image(self, image_id: str, refs: List[str], destination: Path) -> None:
        """Write a compressed tarball of an image to destination."""
        ...

    def load_image(self, tarball: Path) -> str:
        """Load a tarball and return the loaded image ID."""
        ...


class SourceRevisionResolver(Protocol):
    """Resolves a git source to the commit SHA its ref points at."""

    def resolve(self, url: str, ref: str) -> str:
        ...
