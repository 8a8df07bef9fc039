"""meshbuild CLI: inspect services, build order and dep-cache shards."""

import argparse
import logging
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path
from typing import Optional

from pydantic import ValidationError


def main():
    """Main CLI entry point for meshbuild commands."""
    try:
        meshbuild_version = get_version("meshbuild")
    except PackageNotFoundError:
        meshbuild_version = "dev"

    parser = argparse.ArgumentParser(
        prog="meshbuild",
        description="meshbuild: resolve multi-service, multi-platform container build graphs"
    )
    parser.add_argument("--version", action="version", version=f"meshbuild {meshbuild_version}")
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "--services-dir",
        type=Path,
        default=None,
        help="Directory holding service manifests (default: $MESHBUILD_SERVICES_DIR or 'services')"
    )
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "list-services",
        help="List all available services",
        parents=[parent_parser]
    )

    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate a service's manifests and dependency graphs",
        parents=[parent_parser]
    )
    validate_parser.add_argument("service", help="Service name")

    plan_parser = subparsers.add_parser(
        "plan",
        help="Print the build order and final tags of a service's dependency graph",
        parents=[parent_parser]
    )
    plan_parser.add_argument("service", help="Service name")
    plan_parser.add_argument("--version", dest="service_version", default=None, help="Version (default: manifest default)")
    plan_parser.add_argument("--platform", default=None, help="Platform (default: platform manifest default)")

    cache_parser = subparsers.add_parser(
        "cache",
        help="Dep-cache commands"
    )
    cache_subparsers = cache_parser.add_subparsers(dest="cache_command", help="Available cache commands")
    merge_parser = cache_subparsers.add_parser(
        "merge",
        help="Merge worker shards into an owner's dep-cache",
        parents=[parent_parser]
    )
    merge_parser.add_argument("--owner", required=True, help="Owner service of the dep-cache")
    merge_parser.add_argument(
        "--shard",
        dest="shards",
        type=Path,
        action="append",
        required=True,
        help="Shard directory (repeatable)"
    )
    merge_parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Dep-cache root (default: $MESHBUILD_DEP_CACHE_DIR or '.dep-cache')"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)
    if args.command == "cache" and not args.cache_command:
        cache_parser.print_help()
        sys.exit(1)

    # Lazy import: only import the engine when a command runs
    from meshbuild import api
    from meshbuild.config import MeshBuildSettings
    from meshbuild.kernel.errors import MeshBuildError

    try:
        settings = MeshBuildSettings()
    except ValidationError as e:
        print(f"Error: invalid settings: {e}", file=sys.stderr)
        sys.exit(1)
    logging.basicConfig(
        level=logging.ERROR if args.quiet else settings.log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )
    services_dir: Path = args.services_dir or settings.services_dir

    def _say(line: str) -> None:
        if not args.quiet:
            print(line)

    try:
        if args.command == "list-services":
            names = api.list_services(services_dir)
            _say("Available services:")
            for name in names:
                _say(f"  - {name}")
            _say(f"Total: {len(names)} service(s)")

        elif args.command == "validate":
            result = api.validate_service(services_dir, args.service)
            for issue in result.errors:
                print(f"[ERROR] {issue.code}: {issue.message}", file=sys.stderr)
            for issue in result.warnings:
                _say(f"[WARN] {issue.code}: {issue.message}")
            _say(f"  Status: {'OK' if result.ok else 'FAILED'}")
            _say(f"  Errors: {len(result.errors)}")
            _say(f"  Warnings: {len(result.warnings)}")
            if not result.ok:
                sys.exit(1)

        elif args.command == "plan":
            graph = api.resolve_graph(
                services_dir, args.service, args.service_version, args.platform, ordered=True
            )
            for i, node in enumerate(graph.order, start=1):
                _say(f"{i:>3}. {node}  [{', '.join(graph.tags.get(node, []))}]")
            for note in graph.notes:
                _say(f"[{note.level.upper()}] {note.message}")

        elif args.command == "cache":
            cache_dir: Optional[Path] = args.cache_dir or settings.dep_cache_dir
            merged = api.merge_dep_cache_shards(cache_dir, args.owner, args.shards)
            _say(f"[OK] Merged {len(args.shards)} shard(s) into {Path(cache_dir) / args.owner}")
            _say(f"  Nodes: {len(merged.nodes)}")
            _say(f"  Images: {len(merged.images)}")

    except MeshBuildError as e:
        print(f"Error [{e.code.value}]: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
