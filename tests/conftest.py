"""Pytest configuration for tests.

No sys.path hacks - tests should import from installed meshbuild package.
"""

import os
from pathlib import Path

import pytest
import yaml


class FakeExecutor:
    """In-memory build executor recording every call."""

    def __init__(self):
        self.images = {}  # ref or image id -> image id
        self.labels = {}  # image id -> {label: value}
        self.built = []
        self.pulled = []
        self.pushed = []
        self.saved = []
        self.loaded = []
        self.pull_failures = {}  # ref -> reason
        self._counter = 0

    def image_exists(self, ref):
        return ref in self.images

    def image_id(self, ref):
        return self.images.get(ref)

    def image_label(self, ref, label):
        image_id = self.images.get(ref)
        if image_id is None:
            return None
        return self.labels.get(image_id, {}).get(label)

    def build(self, request):
        self._counter += 1
        image_id = f"sha256:{self._counter:04d}"
        self.built.append(request)
        self.images[image_id] = image_id
        for ref in request.image_refs:
            self.images[ref] = image_id
        self.labels[image_id] = dict(request.labels)
        return image_id

    def pull(self, ref):
        if ref in self.pull_failures:
            raise RuntimeError(self.pull_failures[ref])
        self.pulled.append(ref)

    def push(self, ref):
        self.pushed.append(ref)

    def save_image(self, image_id, refs, destination):
        destination.write_bytes(image_id.encode("utf-8"))
        self.saved.append(image_id)

    def load_image(self, tarball):
        image_id = tarball.read_bytes().decode("utf-8")
        self.images[image_id] = image_id
        self.loaded.append(image_id)
        return image_id


class FakeRevisions:
    """Source revision resolver returning a fixed SHA per (url, ref)."""

    def __init__(self, shas=None):
        self.shas = shas or {}
        self.calls = []

    def resolve(self, url, ref):
        self.calls.append((url, ref))
        return self.shas.get((url, ref), f"sha-{ref}")


def write_services(root: Path, services: dict) -> Path:
    """Lay out in-memory service documents as YAML files under root."""
    root.mkdir(parents=True, exist_ok=True)
    for name, docs in services.items():
        (root / f"{name}.yaml").write_text(yaml.safe_dump(docs["service"]), encoding="utf-8")
        for kind in ("versions", "platforms"):
            if kind in docs:
                (root / name).mkdir(exist_ok=True)
                (root / name / f"{kind}.yaml").write_text(yaml.safe_dump(docs[kind]), encoding="utf-8")
    return root


@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def executor_factory():
    return FakeExecutor


@pytest.fixture
def fake_revisions():
    return FakeRevisions()


@pytest.fixture
def services_dir(tmp_path):
    """Factory writing service documents to tmp_path/services."""
    def _write(services):
        return write_services(tmp_path / "services", services)
    return _write


@pytest.fixture
def mesh_services():
    """A small mesh: app (multi-platform) -> lib (multi-platform), tools (single-platform)."""
    return {
        "app": {
            "service": {
                "name": "app",
                "context": "app",
                "sources": {"code": {"url": "https://git.example/app.git", "ref": "main"}},
                "external_images": {"base": {"name": "python", "tag": "3.12", "build_arg": "BASE_IMAGE"}},
                "dependencies": {
                    "lib": {"build_arg": "LIB_IMAGE"},
                    "tools": {"version": "1.0", "build_arg": "TOOLS_IMAGE"},
                },
            },
            "versions": {
                "default": "v2",
                "versions": [
                    {"name": "v1", "overrides": {"sources": {"code": {"ref": "v1"}}}},
                    {"name": "v2", "latest": True, "tags": ["stable"]},
                ],
            },
            "platforms": {
                "default": "debian",
                "platforms": [
                    {"name": "debian", "dockerfile": "Dockerfile.debian"},
                    {"name": "alpine", "dockerfile": "Dockerfile.alpine"},
                ],
            },
        },
        "lib": {
            "service": {"name": "lib", "context": "lib"},
            "versions": {"default": "v2", "versions": [{"name": "v1"}, {"name": "v2"}]},
            "platforms": {
                "default": "debian",
                "defaults": {"dockerfile": "Dockerfile"},
                "platforms": [{"name": "debian"}, {"name": "alpine", "dockerfile": "Dockerfile.alpine"}],
            },
        },
        "tools": {
            "service": {"name": "tools", "context": "tools", "dockerfile": "Dockerfile"},
            "versions": {"default": "1.0", "versions": [{"name": "1.0"}]},
        },
    }


def pytest_sessionfinish(session, exitstatus):
    """Best-effort cleanup for basetemp on Windows without patching pytest internals."""
    if os.name != "nt":
        return
    basetemp = getattr(session.config.option, "basetemp", None)
    if not basetemp:
        return
    basetemp_path = Path(basetemp)
    if not basetemp_path.exists():
        return
    try:
        import shutil
        shutil.rmtree(basetemp_path)
    except (PermissionError, OSError):
        # If cleanup fails, let it surface as a warning rather than masking errors.
        import warnings
        warnings.warn(f"Could not remove basetemp: {basetemp_path}")
