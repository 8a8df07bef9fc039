"""Tests for manifest stores (in-memory and on-disk)."""

import json

import pytest

from meshbuild.codes import ErrorCode
from meshbuild.kernel.errors import ConfigurationError
from meshbuild._internal.io.manifest_files import FileManifestStore, load_document
from meshbuild.kernel.manifest_store import InMemoryManifestStore


def test_file_store_lists_services(services_dir, mesh_services):
    store = FileManifestStore(services_dir(mesh_services))
    assert store.list_services() == ["app", "lib", "tools"]
    assert store.service_exists("lib")
    assert not store.service_exists("ghost")


def test_file_store_loads_documents(services_dir, mesh_services):
    store = FileManifestStore(services_dir(mesh_services))
    assert store.load_service_config("app").context == "app"
    assert store.load_versions("app").default == "v2"
    assert store.platform_names("app") == ["debian", "alpine"]
    assert store.default_platform("app") == "debian"
    assert store.load_platforms("tools") is None
    assert store.platform_names("tools") is None
    assert store.default_platform("tools") == ""


def test_json_documents_supported(tmp_path):
    root = tmp_path / "services"
    (root / "api").mkdir(parents=True)
    (root / "api.json").write_text(json.dumps({"name": "api", "context": ".", "dockerfile": "D"}))
    (root / "api" / "versions.json").write_text(json.dumps({"default": "v1", "versions": [{"name": "v1"}]}))
    store = FileManifestStore(root)
    assert store.list_services() == ["api"]
    assert store.load_versions("api").get_version_names() == ["v1"]


def test_ambiguous_documents_rejected(tmp_path):
    root = tmp_path / "services"
    root.mkdir()
    (root / "api.yaml").write_text("name: api\ncontext: .\ndockerfile: D\n")
    (root / "api.json").write_text('{"name": "api", "context": ".", "dockerfile": "D"}')
    with pytest.raises(ConfigurationError, match="Ambiguous manifest"):
        FileManifestStore(root).load_service_config("api")


def test_unparseable_document(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("name: [unclosed\n")
    with pytest.raises(ConfigurationError, match="Cannot parse") as exc_info:
        load_document(path)
    assert exc_info.value.code == ErrorCode.INVALID_MANIFEST


def test_missing_services_dir(tmp_path):
    with pytest.raises(ConfigurationError, match="Services directory not found"):
        FileManifestStore(tmp_path / "nope").list_services()


def test_non_mapping_document_rejected(tmp_path):
    root = tmp_path / "services"
    root.mkdir()
    (root / "api.yaml").write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError, match="must contain a mapping") as exc_info:
        FileManifestStore(root).load_service_config("api")
    assert exc_info.value.code == ErrorCode.INVALID_MANIFEST


def test_invalid_document_wraps_validation_error():
    store = InMemoryManifestStore({"api": {"service": {"name": "api", "context": ".", "dockerfile": "D", "bogus": 1}}})
    with pytest.raises(ConfigurationError, match="invalid service document") as exc_info:
        store.load_service_config("api")
    assert exc_info.value.code == ErrorCode.INVALID_MANIFEST


def test_dockerfile_optional_only_with_platforms(mesh_services):
    store = InMemoryManifestStore(mesh_services)
    assert store.load_service_config("lib").dockerfile is None

    store = InMemoryManifestStore({"api": {"service": {"name": "api", "context": "."}}})
    with pytest.raises(ConfigurationError) as exc_info:
        store.load_service_config("api")
    assert exc_info.value.code == ErrorCode.MISSING_FIELD


def test_unknown_service():
    with pytest.raises(ConfigurationError) as exc_info:
        InMemoryManifestStore({}).load_service_config("api")
    assert exc_info.value.code == ErrorCode.UNKNOWN_SERVICE


def test_documents_cached_per_store(mesh_services):
    store = InMemoryManifestStore(mesh_services)
    assert store.load_versions("app") is store.load_versions("app")


def test_in_memory_store_copies_input(mesh_services):
    store = InMemoryManifestStore(mesh_services)
    mesh_services["app"]["versions"]["default"] = "v1"
    assert store.load_versions("app").default == "v2"
