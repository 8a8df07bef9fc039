"""Pydantic models for service, version and platform manifests."""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Fields that only version manifests may carry; platform entries reject them.
PLATFORM_FORBIDDEN_FIELDS = ("sources", "tls", "repository", "url", "ref", "branch", "commit")


@dataclass(frozen=True, order=True)
class NodeKey:
    """Canonical identity of one build target.

    Wire format is ``service:version`` or ``service:version:platform``.
    """
    service: str
    version: str
    platform: str = ""

    def __str__(self) -> str:
        if self.platform:
            return f"{self.service}:{self.version}:{self.platform}"
        return f"{self.service}:{self.version}"

    @classmethod
    def parse(cls, value: str) -> "NodeKey":
        """Parse a node key from its wire format."""
        parts = value.split(":")
        if len(parts) == 2 and all(parts):
            return cls(parts[0], parts[1])
        if len(parts) == 3 and all(parts):
            return cls(parts[0], parts[1], parts[2])
        raise ValueError(
            f"Invalid node key '{value}': expected 'service:version' or 'service:version:platform'"
        )


class GitSource(BaseModel):
    """A source checked out from a git repository."""
    url: str
    ref: str

    model_config = ConfigDict(extra="forbid")

    @property
    def kind(self) -> str:
        return "git"


class PathSource(BaseModel):
    """A source taken from a local directory."""
    path: str

    model_config = ConfigDict(extra="forbid")

    @property
    def kind(self) -> str:
        return "path"


Source = Union[GitSource, PathSource]


class ExternalImage(BaseModel):
    """A third-party base image consumed through a build argument."""
    name: str
    tag: Optional[str] = None
    build_arg: str

    model_config = ConfigDict(extra="forbid")

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}" if self.tag else self.name


class DependencyDecl(BaseModel):
    """A dependency on another service's image.

    service, when present, is authoritative over the lookup key the
    declaration is stored under.
    """
    service: Optional[str] = None
    version: Optional[str] = None
    single_platform: bool = False
    build_arg: str

    model_config = ConfigDict(extra="forbid")


class TlsConfig(BaseModel):
    """TLS material a service expects at build time."""
    enabled: bool = False
    mode: Literal["ca-only", "ca-and-cert", "cert-only"] = "ca-and-cert"
    cert_name: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class ServiceConfig(BaseModel):
    """Base service config document.

    Sources stay as raw mappings here; they are typed only after all
    override layers have been merged (see MergedConfig).
    """
    name: str
    context: str
    dockerfile: Optional[str] = None
    sources: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    external_images: Dict[str, ExternalImage] = Field(default_factory=dict)
    dependencies: Dict[str, DependencyDecl] = Field(default_factory=dict)
    tls: Optional[TlsConfig] = None

    model_config = ConfigDict(extra="forbid")


class VersionSpec(BaseModel):
    """One entry of a version manifest."""
    name: str
    latest: bool = False
    tags: List[str] = Field(default_factory=list)
    overrides: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or ":" in v:
            raise ValueError(f"Version name '{v}' must be non-empty and must not contain ':'")
        return v


class Manifest(BaseModel):
    """Version manifest document."""
    default: str
    defaults: Dict[str, Any] = Field(default_factory=dict)
    versions: List[VersionSpec]

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def validate_latest_and_default(self) -> "Manifest":
        latest = [v.name for v in self.versions if v.latest]
        if len(latest) > 1:
            raise ValueError(f"At most one version may be marked latest, got: {', '.join(latest)}")
        if self.default not in {v.name for v in self.versions}:
            raise ValueError(f"Default version '{self.default}' is not declared in versions")
        return self

    def get_version(self, name: str) -> Optional[VersionSpec]:
        for version in self.versions:
            if version.name == name:
                return version
        return None

    def get_version_names(self) -> List[str]:
        return [v.name for v in self.versions]


def _reject_forbidden_fields(data: Any, where: str) -> Any:
    if isinstance(data, dict):
        present = [f for f in PLATFORM_FORBIDDEN_FIELDS if f in data]
        if present:
            raise ValueError(
                f"{where} must not declare {', '.join(present)}; "
                f"these belong in the version manifest"
            )
    return data


class PlatformSpec(BaseModel):
    """One entry of a platform manifest.

    dockerfile may be inherited from the manifest's defaults, so it is
    optional at parse time and checked after the defaults merge.
    """
    name: str
    dockerfile: Optional[str] = None
    external_images: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    dependencies: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def reject_version_fields(cls, data: Any) -> Any:
        name = data.get("name", "?") if isinstance(data, dict) else "?"
        return _reject_forbidden_fields(data, f"Platform '{name}'")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or ":" in v:
            raise ValueError(f"Platform name '{v}' must be non-empty and must not contain ':'")
        return v


class PlatformsManifest(BaseModel):
    """Platform manifest document."""
    default: str
    defaults: Dict[str, Any] = Field(default_factory=dict)
    platforms: List[PlatformSpec]

    model_config = ConfigDict(extra="forbid")

    @field_validator("defaults")
    @classmethod
    def reject_version_fields(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return _reject_forbidden_fields(v, "Platform defaults")

    @model_validator(mode="after")
    def validate_default(self) -> "PlatformsManifest":
        if self.default not in {p.name for p in self.platforms}:
            raise ValueError(f"Default platform '{self.default}' is not declared in platforms")
        return self

    def get_platform(self, name: str) -> Optional[PlatformSpec]:
        for platform in self.platforms:
            if platform.name == name:
                return platform
        return None

    def get_platform_names(self) -> List[str]:
        return [p.name for p in self.platforms]


class MergedConfig(BaseModel):
    """Fully composed configuration for one node."""
    name: str
    context: str
    dockerfile: str
    sources: Dict[str, Source] = Field(default_factory=dict)
    external_images: Dict[str, ExternalImage] = Field(default_factory=dict)
    dependencies: Dict[str, DependencyDecl] = Field(default_factory=dict)
    tls: Optional[TlsConfig] = None

    model_config = ConfigDict(extra="forbid")

    def source_types(self) -> Dict[str, str]:
        """Map each source key to 'git' or 'path'."""
        return {key: source.kind for key, source in sorted(self.sources.items())}
