from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .errors import FileSystemError, FormatError
from .gomod import GO_MOD_FILE_NAME, GoMod
from .models import DescriptorLocation, DiscoveredDescriptor, UnpackedArtifact

logger = logging.getLogger(__name__)


def read_descriptor(path: Path) -> DescriptorLocation:
    """Read and parse one go.mod file.

    Raises:
        FileSystemError: If the file cannot be read or is not UTF-8.
        FormatError: If the content is malformed; the error carries *path*.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise FileSystemError(f"Can't read go.mod file {path}", path=path) from exc
    try:
        descriptor = GoMod.parse(text)
    except FormatError as exc:
        raise exc.with_path(path) from exc
    return DescriptorLocation(descriptor=descriptor, path=path)


def discover(folders: Iterable[UnpackedArtifact]) -> list[DiscoveredDescriptor]:
    """Find and parse every go.mod below each unpacked folder.

    Folders that do not exist are skipped. Within a folder, files are visited
    in sorted path order so that the first-match policy of the cross-linker is
    reproducible.
    """
    result: list[DiscoveredDescriptor] = []
    for unpacked in folders:
        if not unpacked.folder.is_dir():
            logger.debug("Skipping missing dependency folder %s (%s)", unpacked.folder, unpacked.artifact_id)
            continue
        for path in sorted(unpacked.folder.rglob(GO_MOD_FILE_NAME)):
            if not path.is_file():
                continue
            result.append(DiscoveredDescriptor(unpacked.artifact_id, read_descriptor(path)))
    return result


def find_project_descriptors(artifact_id: str, source_folder: Path) -> list[DiscoveredDescriptor]:
    """Descriptors of the project itself; nothing when the source folder is absent."""
    if not source_folder.is_dir():
        logger.debug("Project source folder %s does not exist", source_folder)
        return []
    return discover([UnpackedArtifact(artifact_id, source_folder)])


def locations(found: Iterable[DiscoveredDescriptor]) -> list[DescriptorLocation]:
    return [item.location for item in found]
