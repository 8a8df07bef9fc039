"""Centralized canonical JSON serialization.

Used for every document meshbuild writes (dep-cache manifests, CLI
reports) so that identical content always produces identical bytes.
"""

import json
from pathlib import Path
from typing import Any


def canonical_dumps(obj: Any) -> str:
    """
    Canonical JSON serialization.

    Rules:
    - UTF-8 encoding
    - Sorted keys
    - Stable separators (",", ":")
    - Deterministic list ordering (lists must already be sorted before calling)
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False  # UTF-8 encoding
    )


def write_canonical(path: Path, obj: Any) -> None:
    """Write obj as canonical JSON plus trailing newline, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(canonical_dumps(obj) + "\n", encoding="utf-8")
