"""Override resolution: deep-merge defaults into version and platform overrides.

Merge rules:
- Mappings merge recursively; any other value in the override replaces the default.
- ``sources`` merge per key with a type-aware policy (see merge_source).
- ``platforms`` is a map of platform-scoped overrides; each scope is merged
  with the same algorithm, independently of the others.

All functions are pure: inputs are never mutated and results share no
mutable state with them.
"""

import copy
from typing import Any, Dict, Optional


SOURCES_KEY = "sources"
PLATFORMS_KEY = "platforms"


def _is_path_source(source: Dict[str, Any]) -> bool:
    return "path" in source


def _is_git_source(source: Dict[str, Any]) -> bool:
    return not _is_path_source(source) and ("url" in source or "ref" in source)


def _is_complete_git_source(source: Dict[str, Any]) -> bool:
    return _is_git_source(source) and "url" in source and "ref" in source


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override onto base, returning a new mapping."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def merge_source(default: Optional[Dict[str, Any]], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge one source declaration onto its default.

    A complete git source or a path source replaces the default wholesale.
    A partial git fragment (only url or only ref) merges field by field onto
    a git default. Switching between path and git is always a full replace.
    """
    if default is None:
        return copy.deepcopy(override)
    if _is_path_source(override) or _is_complete_git_source(override):
        return copy.deepcopy(override)
    if _is_git_source(override) and _is_git_source(default):
        merged = copy.deepcopy(default)
        merged.update(copy.deepcopy(override))
        return merged
    return copy.deepcopy(override)


def merge_sources(
    defaults: Optional[Dict[str, Dict[str, Any]]],
    overrides: Optional[Dict[str, Dict[str, Any]]],
) -> Dict[str, Dict[str, Any]]:
    """Merge source maps key by key; keys absent from overrides are inherited verbatim."""
    result = copy.deepcopy(defaults or {})
    for key, source in (overrides or {}).items():
        result[key] = merge_source((defaults or {}).get(key), source)
    return result


def merge_overrides(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Merge a defaults block into an overrides block.

    With empty defaults the result equals the overrides.
    """
    plain_defaults = {k: v for k, v in defaults.items() if k not in (SOURCES_KEY, PLATFORMS_KEY)}
    plain_overrides = {k: v for k, v in overrides.items() if k not in (SOURCES_KEY, PLATFORMS_KEY)}
    result = deep_merge(plain_defaults, plain_overrides)

    if SOURCES_KEY in defaults or SOURCES_KEY in overrides:
        result[SOURCES_KEY] = merge_sources(defaults.get(SOURCES_KEY), overrides.get(SOURCES_KEY))

    if PLATFORMS_KEY in defaults or PLATFORMS_KEY in overrides:
        default_scopes = defaults.get(PLATFORMS_KEY) or {}
        override_scopes = overrides.get(PLATFORMS_KEY) or {}
        result[PLATFORMS_KEY] = {
            name: merge_overrides(default_scopes.get(name) or {}, override_scopes.get(name) or {})
            for name in sorted(set(default_scopes) | set(override_scopes))
        }

    return result


def platform_scoped(overrides: Dict[str, Any], platform: str) -> Dict[str, Any]:
    """Collapse an overrides block onto one platform.

    The generic part of the block is merged with the ``platforms.<platform>``
    scope (the scope wins). The ``platforms`` key itself is dropped.
    """
    generic = {k: v for k, v in overrides.items() if k != PLATFORMS_KEY}
    scope = (overrides.get(PLATFORMS_KEY) or {}).get(platform) if platform else None
    if not scope:
        return copy.deepcopy(generic)
    return merge_overrides(generic, scope)
