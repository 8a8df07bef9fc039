"""CLI tests."""

import sys

import pytest
import yaml

from meshbuild import api, cli
from meshbuild.kernel.dep_cache import DepCacheManifest
from meshbuild._internal.io.dep_cache_files import DepCacheManager


def _run_cli(args, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["meshbuild"] + args)
    return cli.main()


def test_list_services(monkeypatch, capsys, services_dir, mesh_services):
    root = services_dir(mesh_services)
    _run_cli(["list-services", "--services-dir", str(root)], monkeypatch)
    out = capsys.readouterr().out
    assert "  - app" in out
    assert "Total: 3 service(s)" in out


def test_services_dir_from_environment(monkeypatch, capsys, services_dir, mesh_services):
    root = services_dir(mesh_services)
    monkeypatch.setenv("MESHBUILD_SERVICES_DIR", str(root))
    _run_cli(["list-services"], monkeypatch)
    assert "Total: 3 service(s)" in capsys.readouterr().out


def test_validate_ok(monkeypatch, capsys, services_dir, mesh_services):
    root = services_dir(mesh_services)
    _run_cli(["validate", "app", "--services-dir", str(root)], monkeypatch)
    out = capsys.readouterr().out
    assert "Status: OK" in out
    assert "Errors: 0" in out
    assert "[WARN] PLATFORM_NOT_INHERITED" in out


def test_validate_failure_exits_1(monkeypatch, capsys, services_dir, mesh_services):
    mesh_services["tools"]["versions"]["versions"].append({"name": "2.0", "tags": ["1.0"]})
    root = services_dir(mesh_services)
    with pytest.raises(SystemExit) as excinfo:
        _run_cli(["validate", "tools", "--services-dir", str(root)], monkeypatch)
    assert excinfo.value.code == 1
    captured = capsys.readouterr()
    assert "Status: FAILED" in captured.out
    assert "[ERROR] TAG_COLLISION" in captured.err


def test_plan(monkeypatch, capsys, services_dir, mesh_services):
    root = services_dir(mesh_services)
    _run_cli(["plan", "app", "--platform", "alpine", "--services-dir", str(root)], monkeypatch)
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].strip().startswith("1. lib:v2:alpine")
    assert lines[2].strip().startswith("3. app:v2:alpine")
    assert "[v2-alpine, stable-alpine, latest-alpine]" in lines[2]
    assert any(line.startswith("[INFO]") for line in lines)


def test_plan_builds_graph_once(monkeypatch, capsys, services_dir, mesh_services):
    root = services_dir(mesh_services)
    calls = []
    real_build_graph = api.build_graph

    def counting_build_graph(*args, **kwargs):
        calls.append(args[1])
        return real_build_graph(*args, **kwargs)

    monkeypatch.setattr(api, "build_graph", counting_build_graph)
    _run_cli(["plan", "app", "--services-dir", str(root)], monkeypatch)
    assert calls == ["app"]
    assert "3. app:v2:debian" in capsys.readouterr().out


def test_plan_unknown_service_exits_1(monkeypatch, capsys, services_dir, mesh_services):
    root = services_dir(mesh_services)
    with pytest.raises(SystemExit) as excinfo:
        _run_cli(["plan", "ghost", "--services-dir", str(root)], monkeypatch)
    assert excinfo.value.code == 1
    assert "Error [UNKNOWN_SERVICE]" in capsys.readouterr().err


def test_plan_quiet(monkeypatch, capsys, services_dir, mesh_services):
    root = services_dir(mesh_services)
    _run_cli(["plan", "app", "--quiet", "--services-dir", str(root)], monkeypatch)
    assert capsys.readouterr().out == ""


def test_cache_merge(monkeypatch, capsys, tmp_path):
    shards = []
    for i, refs in enumerate((["r1"], ["r2"])):
        shard = DepCacheManager(tmp_path / f"shard{i}", "app")
        manifest = DepCacheManifest(owner_service="app")
        manifest.record("lib:v1", "sha256:abc", refs)
        shard.write_manifest(manifest)
        shards += ["--shard", str(shard.root)]

    _run_cli(["cache", "merge", "--owner", "app", "--cache-dir", str(tmp_path / "cache")] + shards, monkeypatch)
    out = capsys.readouterr().out
    assert "[OK] Merged 2 shard(s)" in out
    assert "Images: 1" in out
    merged = DepCacheManager(tmp_path / "cache", "app").load_manifest()
    assert merged.images["sha256:abc"].refs == ["r1", "r2"]


def test_cache_merge_conflict_exits_1(monkeypatch, capsys, tmp_path):
    shards = []
    for i, image_id in enumerate(("sha256:a", "sha256:b")):
        shard = DepCacheManager(tmp_path / f"shard{i}", "app")
        manifest = DepCacheManifest(owner_service="app")
        manifest.record("lib:v1", image_id, ["lib:v1"])
        shard.write_manifest(manifest)
        shards += ["--shard", str(shard.root)]
    with pytest.raises(SystemExit) as excinfo:
        _run_cli(["cache", "merge", "--owner", "app", "--cache-dir", str(tmp_path / "cache")] + shards, monkeypatch)
    assert excinfo.value.code == 1
    assert "CACHE_CONFLICT" in capsys.readouterr().err


def test_no_command_prints_help(monkeypatch, capsys):
    with pytest.raises(SystemExit) as excinfo:
        _run_cli([], monkeypatch)
    assert excinfo.value.code == 1
    assert "usage: meshbuild" in capsys.readouterr().out


def test_invalid_manifest_reported(monkeypatch, capsys, tmp_path):
    root = tmp_path / "services"
    (root / "api").mkdir(parents=True)
    (root / "api.yaml").write_text(yaml.safe_dump({"name": "api", "context": ".", "dockerfile": "D"}))
    (root / "api" / "versions.yaml").write_text(yaml.safe_dump({"default": "v2", "versions": [{"name": "v1"}]}))
    with pytest.raises(SystemExit):
        _run_cli(["validate", "api", "--services-dir", str(root)], monkeypatch)
    assert "INVALID_MANIFEST" in capsys.readouterr().err
