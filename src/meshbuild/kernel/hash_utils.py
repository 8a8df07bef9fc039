"""Hash utilities with explicit canonicalization rules for stable hashing.

Key rules:
- Object keys sorted recursively
- Arrays preserve order
- Floats BANNED (hard validation error)
- Strings normalized to NFC
- Non-JSON types forbidden
"""

import hashlib
import json
import unicodedata
from typing import Any, Dict, Mapping, Optional

from meshbuild.kernel.models import MergedConfig


class CanonicalizationError(ValueError):
    """Raised when an object cannot be canonicalized."""
    pass


def _normalize_string(s: str) -> str:
    """Normalize string to NFC (Unicode Normalization Form Canonical Composition)."""
    return unicodedata.normalize("NFC", s)


def _canonicalize_value(obj: Any, path: str = "") -> Any:
    """Validate and canonicalize a JSON-compatible value."""
    if obj is None or isinstance(obj, bool):
        return obj
    elif isinstance(obj, int):
        return obj
    elif isinstance(obj, float):
        raise CanonicalizationError(
            f"Floats are not allowed in hashed content (at {path}). Use strings instead."
        )
    elif isinstance(obj, str):
        return _normalize_string(obj)
    elif isinstance(obj, dict):
        result = {}
        for key, value in sorted(obj.items()):
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"Dictionary keys must be strings at {path}, got {type(key).__name__}"
                )
            result[_normalize_string(key)] = _canonicalize_value(value, f"{path}.{key}" if path else key)
        return result
    elif isinstance(obj, (list, tuple)):
        return [
            _canonicalize_value(item, f"{path}[{i}]" if path else f"[{i}]")
            for i, item in enumerate(obj)
        ]
    raise CanonicalizationError(
        f"Non-JSON type at {path}: {type(obj).__name__}. "
        f"Only None, bool, int, str, dict, and list are allowed."
    )


def canonicalize_json(obj: Any) -> str:
    """Canonicalize a JSON-serializable object to a stable string representation.

    Raises:
        CanonicalizationError: If object contains floats or non-JSON types
    """
    canonicalized = _canonicalize_value(obj)
    return json.dumps(canonicalized, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def sha256_hex(content: str) -> str:
    """SHA256 of UTF-8 content as 64 lowercase hex characters."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def cache_relevant_config(config: MergedConfig) -> Dict[str, Any]:
    """The subset of a merged config that affects the built image.

    name and context are left out: they locate the build, they do not
    change what it produces.
    """
    return {
        "dockerfile": config.dockerfile,
        "sources": {key: source.model_dump() for key, source in config.sources.items()},
        "external_images": {
            key: {"name": image.name, "tag": image.tag, "build_arg": image.build_arg}
            for key, image in config.external_images.items()
        },
        "dependency_build_args": {key: dep.build_arg for key, dep in config.dependencies.items()},
        "tls": config.tls.model_dump() if config.tls is not None else None,
    }


def hash_service_definition(
    service: str,
    version: str,
    platform: str,
    config: MergedConfig,
    source_shas: Mapping[str, str],
    source_types: Mapping[str, str],
    dependency_hashes: Optional[Mapping[str, str]] = None,
) -> str:
    """Compute the service-definition hash of one node.

    Args:
        service, version, platform: Node identity.
        config: Merged configuration of the node.
        source_shas: Source key -> resolved commit SHA (or tree digest for path sources).
        source_types: Source key -> "git" | "path".
        dependency_hashes: Node key of each direct dependency -> its hash.

    Returns:
        SHA256 as 64 lowercase hex characters (no prefix).
    """
    payload = {
        "service": service,
        "version": version,
        "platform": platform,
        "config": cache_relevant_config(config),
        "source_shas": dict(source_shas),
        "source_types": dict(source_types),
        "dependency_hashes": dict(dependency_hashes or {}),
    }
    return sha256_hex(canonicalize_json(payload))
