from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field

from .gomod import GoMod


@dataclass(frozen=True)
class ArtifactArchive:
    """Resolved dependency artifact: opaque identity plus its packaged archive."""

    artifact_id: str
    archive: Path


@dataclass(frozen=True)
class UnpackedArtifact:
    """Dependency artifact identity and the folder it was extracted into."""

    artifact_id: str
    folder: Path


@dataclass(eq=False)
class DescriptorLocation:
    """A parsed go.mod together with the file it was read from.

    Equality is identity: two locations are the same only if they are the
    same object, so a parsed descriptor is never confused with another
    descriptor that happens to declare the same module.
    """

    descriptor: GoMod
    path: Path

    @property
    def directory(self) -> Path:
        return self.path.parent


@dataclass(frozen=True)
class DiscoveredDescriptor:
    artifact_id: str
    location: DescriptorLocation


class BuildStartReport(BaseModel):
    """Outcome of the build-start hook."""

    module_mode: bool
    scanned: bool
    include_test_dependencies: bool = True
    unpacked_folders: list[str] = Field(default_factory=list)
    dependency_descriptors_found: int = 0
    dependency_descriptors_changed: int = 0
    project_descriptors_changed: int = 0
    extra_gopath: str = ""


class RestoreReport(BaseModel):
    """Directories whose go.mod was reinstated from backup."""

    restored_directories: list[str] = Field(default_factory=list)
