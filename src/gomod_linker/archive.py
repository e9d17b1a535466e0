"""Unpacking of dependency archives.

An archive may carry a manifest entry (``.MVNGOLANG_BUILD_FOLDERS`` by
default) listing, one per line, the top-level folders that hold its Go
sources. When present, only entries under those folders are extracted, into
``<target>/src`` with the folder prefix removed. Otherwise the whole archive
is extracted into the target.
"""

from __future__ import annotations

import logging
import shutil
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, Sequence

from .errors import ArchiveError
from .models import ArtifactArchive, UnpackedArtifact

logger = logging.getLogger(__name__)

BUILD_FOLDERS_MANIFEST = ".MVNGOLANG_BUILD_FOLDERS"
SOURCE_SUBFOLDER = "src"

_ARCHIVE_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, OSError, UnicodeDecodeError)


def parse_manifest(text: str) -> list[str]:
    """Folder prefixes from manifest text, blank lines ignored, each ending in ``/``."""
    prefixes: list[str] = []
    for line in text.splitlines():
        folder = line.strip().strip("/")
        if folder:
            prefixes.append(folder + "/")
    return prefixes


def rewrite_entry_path(name: str, prefixes: Sequence[str]) -> str | None:
    """Entry path relative to the first matching prefix, or None to skip the entry."""
    for prefix in prefixes:
        if name.startswith(prefix):
            rest = name[len(prefix) :]
            return rest or None
    return None


def unpacked_folder_name(archive: Path) -> str:
    """Archive file name without its last extension."""
    name = archive.name
    stem, dot, _ = name.rpartition(".")
    return stem if dot and stem else name


def _safe_destination(root: Path, relative: str) -> Path:
    parts = PurePosixPath(relative.replace("\\", "/")).parts
    if not parts or any(part == ".." for part in parts) or PurePosixPath(relative).is_absolute():
        raise ValueError(f"unsafe archive entry path: {relative!r}")
    destination = root.joinpath(*parts)
    if root.resolve() not in destination.resolve().parents:
        raise ValueError(f"archive entry escapes target folder: {relative!r}")
    return destination


def _extract_entry(zf: zipfile.ZipFile, info: zipfile.ZipInfo, destination: Path) -> None:
    if info.is_dir():
        destination.mkdir(parents=True, exist_ok=True)
        return
    destination.parent.mkdir(parents=True, exist_ok=True)
    with zf.open(info) as source, destination.open("wb") as target:
        shutil.copyfileobj(source, target)


def _extract_members(zf: zipfile.ZipFile, root: Path, prefixes: Sequence[str] | None) -> int:
    root.mkdir(parents=True, exist_ok=True)
    extracted = 0
    for info in zf.infolist():
        if prefixes is None:
            relative: str | None = info.filename
        else:
            relative = rewrite_entry_path(info.filename, prefixes)
        if not relative:
            continue
        _extract_entry(zf, info, _safe_destination(root, relative))
        extracted += 1
    return extracted


def extract(
    archive: Path,
    target_dir: Path,
    *,
    manifest_name: str = BUILD_FOLDERS_MANIFEST,
    force: bool = False,
) -> bool:
    """Extract *archive* into *target_dir*.

    An existing *target_dir* is kept as is unless *force* is set, in which case
    it is deleted and extracted again.

    Returns:
        True when something was extracted, False when an existing folder was kept.

    Raises:
        ArchiveError: If the archive is unreadable, contains unsafe paths, or its
            manifest lists folders that match no entry. A manifest listing no
            folders at all is not an error and extracts nothing. A partially
            extracted folder is removed.
    """
    if target_dir.is_dir():
        if not force:
            logger.debug("Ignoring dependency unpack because folder exists: %s", target_dir)
            return False
        logger.debug("Forcing dependency folder delete: %s", target_dir)
        try:
            shutil.rmtree(target_dir)
        except OSError as exc:
            raise ArchiveError(
                f"Can't delete dependency folder: {target_dir}", archive=archive, target=target_dir
            ) from exc

    try:
        with zipfile.ZipFile(archive) as zf:
            names = set(zf.namelist())
            if manifest_name in names:
                prefixes = parse_manifest(zf.read(manifest_name).decode("utf-8"))
                source_root = target_dir / SOURCE_SUBFOLDER
                logger.debug("Unpack source folders %s of %s into %s", prefixes, archive, source_root)
                count = _extract_members(zf, source_root, prefixes)
                if prefixes and count == 0:
                    raise ArchiveError(
                        f"Folders listed in {manifest_name} not found in archive '{archive.name}'",
                        archive=archive,
                        target=source_root,
                    )
            else:
                logger.debug("Unpack dependency archive %s into %s", archive, target_dir)
                _extract_members(zf, target_dir, None)
    except ArchiveError:
        shutil.rmtree(target_dir, ignore_errors=True)
        raise
    except (ValueError, *_ARCHIVE_ERRORS) as exc:
        shutil.rmtree(target_dir, ignore_errors=True)
        raise ArchiveError(
            f"Can't unpack dependency archive '{archive.name}' into folder '{target_dir}': {exc}",
            archive=archive,
            target=target_dir,
        ) from exc
    return True


@dataclass
class UnpackResult:
    unpacked: list[UnpackedArtifact] = field(default_factory=list)
    errors: list[ArchiveError] = field(default_factory=list)

    @property
    def folders(self) -> list[Path]:
        return [item.folder for item in self.unpacked]


def unpack_artifacts(
    artifacts: Iterable[ArtifactArchive],
    target_folder: Path,
    *,
    force_clean: bool = False,
    manifest_name: str = BUILD_FOLDERS_MANIFEST,
) -> UnpackResult:
    """Unpack each archive into ``target_folder/<archive base name>``.

    A failing archive is recorded in ``errors`` and the rest of the batch is
    still processed.

    Raises:
        ArchiveError: If *target_folder* cannot be created.
    """
    try:
        target_folder.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ArchiveError(
            f"Can't create folder to unpack dependencies: {target_folder}", target=target_folder
        ) from exc

    result = UnpackResult()
    for artifact in artifacts:
        out_dir = target_folder / unpacked_folder_name(artifact.archive)
        try:
            extract(artifact.archive, out_dir, manifest_name=manifest_name, force=force_clean)
        except ArchiveError as exc:
            logger.error("Failed to unpack %s: %s", artifact.artifact_id, exc)
            result.errors.append(exc)
            continue
        result.unpacked.append(UnpackedArtifact(artifact.artifact_id, out_dir))
    return result
