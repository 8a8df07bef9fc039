"""Manifest store: structural access to a service's manifests.

The store only parses and caches documents. Merging lives in overrides.py
and platforms.py. Graph builds and the dependency resolver receive a store
explicitly; there is no global registry of services.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from meshbuild.codes import ErrorCode
from meshbuild.kernel.errors import ConfigurationError
from meshbuild.kernel.models import Manifest, PlatformsManifest, ServiceConfig

logger = logging.getLogger(__name__)

SERVICE_DOCUMENT = "service"
VERSIONS_DOCUMENT = "versions"
PLATFORMS_DOCUMENT = "platforms"


class ManifestStore(ABC):
    """Lazily loads and memoizes the documents of each service.

    A store instance is meant to live for one graph build; documents read
    once are never re-read by the same instance.
    """

    def __init__(self):
        self._services: Dict[str, ServiceConfig] = {}
        self._versions: Dict[str, Manifest] = {}
        self._platforms: Dict[str, Optional[PlatformsManifest]] = {}

    @abstractmethod
    def list_services(self) -> List[str]:
        """Return the sorted names of every known service."""

    @abstractmethod
    def read_document(self, service: str, kind: str) -> Optional[Tuple[Dict[str, Any], str]]:
        """Return (raw document, origin label) or None if the document does not exist."""

    def service_exists(self, service: str) -> bool:
        return service in self.list_services()

    def load_service_config(self, service: str) -> ServiceConfig:
        """Load the base config of a service.

        Raises:
            ConfigurationError: If the document is missing or malformed, or if it
                lacks a dockerfile while the service has no platform manifest.
        """
        if service not in self._services:
            found = self.read_document(service, SERVICE_DOCUMENT)
            if found is None:
                raise ConfigurationError(
                    f"Service '{service}' not found: no base config document",
                    ErrorCode.UNKNOWN_SERVICE,
                )
            data, origin = found
            config = _parse(ServiceConfig, data, service, origin)
            if config.dockerfile is None and self.load_platforms(service) is None:
                raise ConfigurationError(
                    f"Service '{service}' ({origin}) is missing required field 'dockerfile' "
                    f"(only multi-platform services may omit it)",
                    ErrorCode.MISSING_FIELD,
                )
            self._services[service] = config
        return self._services[service]

    def load_versions(self, service: str) -> Manifest:
        """Load the version manifest of a service.

        Raises:
            ConfigurationError: If the manifest is missing or malformed.
        """
        if service not in self._versions:
            found = self.read_document(service, VERSIONS_DOCUMENT)
            if found is None:
                raise ConfigurationError(
                    f"Service '{service}' has no version manifest",
                    ErrorCode.MISSING_MANIFEST,
                )
            data, origin = found
            self._versions[service] = _parse(Manifest, data, service, origin)
        return self._versions[service]

    def load_platforms(self, service: str) -> Optional[PlatformsManifest]:
        """Load the platform manifest of a service, or None if it has none."""
        if service not in self._platforms:
            found = self.read_document(service, PLATFORMS_DOCUMENT)
            if found is None:
                self._platforms[service] = None
            else:
                data, origin = found
                self._platforms[service] = _parse(PlatformsManifest, data, service, origin)
        return self._platforms[service]

    def has_platforms(self, service: str) -> bool:
        return self.load_platforms(service) is not None

    def platform_names(self, service: str) -> Optional[List[str]]:
        """Declared platform names, or None for a single-platform service."""
        platforms = self.load_platforms(service)
        return platforms.get_platform_names() if platforms is not None else None

    def default_platform(self, service: str) -> str:
        """The default platform name, or '' for a single-platform service."""
        platforms = self.load_platforms(service)
        return platforms.default if platforms is not None else ""


def _parse(model, data: Any, service: str, origin: str):
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Service '{service}': {origin} must contain a mapping, got {type(data).__name__}",
            ErrorCode.INVALID_MANIFEST,
        )
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Service '{service}': invalid {origin}: {e}",
            ErrorCode.INVALID_MANIFEST,
        ) from e


class InMemoryManifestStore(ManifestStore):
    """Manifest store backed by already-parsed documents.

    services maps a service name to a dict with a required ``service`` key
    (base config) and optional ``versions`` / ``platforms`` keys.
    """

    def __init__(self, services: Dict[str, Dict[str, Any]]):
        super().__init__()
        self._documents = copy.deepcopy(services)

    def list_services(self) -> List[str]:
        return sorted(name for name, docs in self._documents.items() if SERVICE_DOCUMENT in docs)

    def read_document(self, service: str, kind: str) -> Optional[Tuple[Dict[str, Any], str]]:
        docs = self._documents.get(service)
        if docs is None or kind not in docs:
            return None
        logger.debug("Loaded %s document for service %s from memory", kind, service)
        return docs[kind], f"{kind} document"
