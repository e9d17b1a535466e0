"""Build-lifecycle glue around unpacking, cross-linking and go.mod backups.

The host calls ``on_build_start`` before running the Go toolchain and
``on_build_end`` afterwards, or wraps the toolchain run in ``build()`` which
does both and holds the session lock in between when one is needed.
"""

from __future__ import annotations

import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Sequence

from .archive import unpack_artifacts
from .backup import begin_mutation_epoch, restore_tree
from .crosslink import link_dependencies, link_project
from .discovery import discover, find_project_descriptors, locations, read_descriptor
from .errors import ArchiveError
from .models import ArtifactArchive, BuildStartReport, DescriptorLocation, RestoreReport, UnpackedArtifact
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)


def make_os_path_without_duplicates(folders: Iterable[Path]) -> str:
    """Join absolute folder paths with ``os.pathsep``, keeping first occurrences only."""
    seen: set[str] = set()
    parts: list[str] = []
    for folder in folders:
        path = os.path.abspath(folder)
        if path in seen:
            continue
        seen.add(path)
        parts.append(path)
    return os.pathsep.join(parts)


@contextmanager
def _locked_file(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive ``fcntl`` lock on *lock_path* for the duration of the context."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


class DependencyFolderOrchestrator:
    """Runs dependency unpacking and go.mod cross-linking for one module build."""

    def __init__(
        self,
        *,
        source_folder: Path,
        build_dir: Path,
        project_artifact_id: str = "project",
        settings: RuntimeSettings | None = None,
    ) -> None:
        self.source_folder = source_folder
        self.build_dir = build_dir
        self.project_artifact_id = project_artifact_id
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        self.extra_gopath = ""
        self._lock_depth = 0

    @property
    def dependency_temp_folder(self) -> Path:
        return self.settings.dependency_temp_path(self.build_dir)

    @property
    def session_lock_path(self) -> Path:
        return self.settings.session_lock_path

    @contextmanager
    def session_lock(self) -> Iterator[None]:
        """Serialize module-mode builds of a parallel session. Re-entrant per orchestrator."""
        if not self.settings.needs_session_lock or self._lock_depth:
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
            return
        logger.debug("Acquiring session lock %s", self.session_lock_path)
        with _locked_file(self.session_lock_path):
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def on_build_start(self, artifacts: Sequence[ArtifactArchive] = ()) -> BuildStartReport:
        """Unpack dependencies and either cross-link go.mod files or prepare GOPATH.

        Raises:
            ArchiveError: If any archive failed to unpack (after trying all of them).
            FormatError: If a discovered go.mod is malformed.
            FileSystemError: If a backup, restore or write failed.
        """
        settings = self.settings
        report = BuildStartReport(
            module_mode=settings.module_mode,
            scanned=settings.scan_dependencies,
            include_test_dependencies=settings.include_test_dependencies,
        )
        with self.session_lock():
            if settings.module_mode:
                restored = restore_tree(self.source_folder)
                if restored:
                    logger.debug("Restored %d leftover go.mod backups in %s", len(restored), self.source_folder)

            if not settings.scan_dependencies:
                logger.info("Dependency scanning is off")
                return report

            logger.info("Scanning dependencies")
            if not artifacts:
                logger.debug("Dependency artifacts are not found")
                self.extra_gopath = ""
                if settings.module_mode:
                    self._update_report(report, self.preprocess_modules([]))
                return report

            logger.debug("Found dependency artifacts: %s", [artifact.artifact_id for artifact in artifacts])
            target = self.dependency_temp_folder
            logger.debug("Dependencies will be unpacked into folder: %s", target)
            result = unpack_artifacts(
                artifacts,
                target,
                force_clean=settings.force_clean_dependency,
                manifest_name=settings.build_folders_manifest,
            )
            if result.errors:
                first = result.errors[0]
                raise ArchiveError(
                    "; ".join(str(error) for error in result.errors),
                    archive=first.archive,
                    target=first.target,
                )
            report.unpacked_folders = [str(folder) for folder in result.folders]

            if settings.module_mode:
                logger.info("Module mode is activated")
                self._update_report(report, self.preprocess_modules(result.unpacked))
                logger.info("Dependencies are not added into GOPATH because module mode is on")
            else:
                self.extra_gopath = make_os_path_without_duplicates(result.folders)
                logger.debug("Prepared dependency path for GOPATH: %s", self.extra_gopath)
                report.extra_gopath = self.extra_gopath
        return report

    def on_build_end(self) -> RestoreReport:
        report = RestoreReport()
        with self.session_lock():
            if not self.settings.module_mode or not self.source_folder.is_dir():
                return report
            if not self.settings.restore_go_mod:
                logger.debug("Restoring of go.mod from backup is disabled by configuration")
                return report
            logger.debug("Restoring go.mod from backup in source folder: %s", self.source_folder)
            report.restored_directories = [str(path) for path in restore_tree(self.source_folder)]
        return report

    @contextmanager
    def build(self, artifacts: Sequence[ArtifactArchive] = ()) -> Iterator[BuildStartReport]:
        """Run start and end hooks around the body, holding the session lock throughout."""
        with self.session_lock():
            report = self.on_build_start(artifacts)
            try:
                yield report
            finally:
                self.on_build_end()

    # ------------------------------------------------------------------
    # Module processing
    # ------------------------------------------------------------------

    def preprocess_modules(self, unpacked: Sequence[UnpackedArtifact]) -> tuple[int, int, int]:
        """Cross-link dependency go.mod files, then the project's own.

        Returns:
            Dependency descriptors found, dependency descriptors changed, project
            descriptors changed.
        """
        logger.debug("Finding go.mod descriptors in unpacked artifacts")
        dependencies = locations(discover(unpacked))
        logger.debug("Found %d go.mod descriptors", len(dependencies))
        dependency_changes = link_dependencies(dependencies)
        logger.debug("Changed %d go.mod descriptors in unpacked artifacts", dependency_changes)

        project_changes = 0
        for found in find_project_descriptors(self.project_artifact_id, self.source_folder):
            if self._process_project_descriptor(found.location, dependencies):
                project_changes += 1
        return len(dependencies), dependency_changes, project_changes

    @staticmethod
    def _process_project_descriptor(location: DescriptorLocation, dependencies: Sequence[DescriptorLocation]) -> bool:
        begin_mutation_epoch(location.directory)
        # The epoch may have restored an older backup, so read the file again.
        if not location.path.is_file():
            return False
        return link_project(read_descriptor(location.path), dependencies)

    @staticmethod
    def _update_report(report: BuildStartReport, counts: tuple[int, int, int]) -> None:
        found, dependency_changes, project_changes = counts
        report.dependency_descriptors_found = found
        report.dependency_descriptors_changed = dependency_changes
        report.project_descriptors_changed = project_changes
