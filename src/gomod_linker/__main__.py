"""Entry point for `python -m gomod_linker` and the `gomod-linker` CLI script."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from gomod_linker.archive import extract
from gomod_linker.backup import restore_tree
from gomod_linker.canonical import to_canonical_json
from gomod_linker.crosslink import link_dependencies, link_project
from gomod_linker.discovery import discover, find_project_descriptors, locations
from gomod_linker.errors import ConfigError, LinkerError
from gomod_linker.models import ArtifactArchive, RestoreReport, UnpackedArtifact
from gomod_linker.orchestrator import DependencyFolderOrchestrator
from gomod_linker.settings import RuntimeSettings


def parse_artifact(value: str) -> ArtifactArchive:
    """Parse ``ID=ARCHIVE``; a bare path uses the archive file name as ID."""
    artifact_id, sep, archive = value.partition("=")
    if not sep:
        path = Path(value)
        return ArtifactArchive(path.name, path)
    if not artifact_id.strip() or not archive.strip():
        raise ConfigError(f"artifact must look like ID=ARCHIVE, got: {value!r}")
    return ArtifactArchive(artifact_id.strip(), Path(archive.strip()))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cross-link go.mod files of locally unpacked dependency modules")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    start = commands.add_parser("start", help="Unpack dependencies and cross-link go.mod files before a build")
    start.add_argument("--source", type=Path, required=True, help="Project Go source folder")
    start.add_argument("--build-dir", type=Path, required=True, help="Build output folder holding unpacked dependencies")
    start.add_argument(
        "--artifact",
        action="append",
        default=[],
        help="Dependency archive as ID=PATH (repeatable)",
    )
    start.add_argument("--project-id", default="project", help="Identity of the project artifact")

    end = commands.add_parser("end", help="Restore go.mod files after a build")
    end.add_argument("--source", type=Path, required=True, help="Project Go source folder")
    end.add_argument("--build-dir", type=Path, required=True, help="Build output folder holding unpacked dependencies")

    link = commands.add_parser("link", help="Cross-link go.mod files without backups or unpacking")
    link.add_argument("--source", type=Path, required=True, help="Project Go source folder")
    link.add_argument("--deps", type=Path, action="append", default=[], help="Unpacked dependency folder (repeatable)")

    unpack = commands.add_parser("extract", help="Extract one dependency archive")
    unpack.add_argument("--archive", type=Path, required=True, help="Archive to extract")
    unpack.add_argument("--target", type=Path, required=True, help="Target folder")
    unpack.add_argument("--force", action="store_true", help="Delete an existing target folder and extract again")

    restore = commands.add_parser("restore", help="Restore every go.mod backup under a folder")
    restore.add_argument("--source", type=Path, required=True, help="Folder to scan for backups")
    return parser


def run(args: argparse.Namespace) -> int:
    if args.command == "start":
        artifacts = [parse_artifact(value) for value in args.artifact]
        orchestrator = DependencyFolderOrchestrator(
            source_folder=args.source,
            build_dir=args.build_dir,
            project_artifact_id=args.project_id,
            settings=RuntimeSettings.from_env(),
        )
        print(to_canonical_json(orchestrator.on_build_start(artifacts)))
        return 0

    if args.command == "end":
        orchestrator = DependencyFolderOrchestrator(
            source_folder=args.source,
            build_dir=args.build_dir,
            settings=RuntimeSettings.from_env(),
        )
        print(to_canonical_json(orchestrator.on_build_end()))
        return 0

    if args.command == "link":
        dependencies = locations(
            discover(UnpackedArtifact(str(folder), folder) for folder in args.deps)
        )
        dependency_changes = link_dependencies(dependencies)
        project_changes = sum(
            1
            for found in find_project_descriptors("project", args.source)
            if link_project(found.location, dependencies)
        )
        print(f"dependency_changes={dependency_changes}")
        print(f"project_changes={project_changes}")
        return 0

    if args.command == "extract":
        settings = RuntimeSettings.from_env()
        extracted = extract(
            args.archive,
            args.target,
            manifest_name=settings.build_folders_manifest,
            force=args.force,
        )
        print(f"extracted={extracted}")
        return 0

    if args.command == "restore":
        report = RestoreReport(restored_directories=[str(path) for path in restore_tree(args.source)])
        print(to_canonical_json(report))
        return 0

    raise ConfigError(f"unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return run(args)
    except (LinkerError, OSError, ValueError) as exc:
        logging.error("gomod-linker %s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
