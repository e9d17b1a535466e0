from importlib.metadata import version

from .archive import extract, unpack_artifacts
from .backup import BackupLifecycle, BackupState, begin_mutation_epoch, end_mutation_epoch, restore_tree
from .crosslink import link_dependencies, link_project, replace_links_to_modules
from .discovery import discover, find_project_descriptors
from .errors import ArchiveError, ConfigError, FileSystemError, FormatError, LinkerError
from .gomod import GoMod, ModuleIdentity, ReplaceEntry, RequireEntry
from .models import (
    ArtifactArchive,
    BuildStartReport,
    DescriptorLocation,
    DiscoveredDescriptor,
    RestoreReport,
    UnpackedArtifact,
)
from .orchestrator import DependencyFolderOrchestrator, make_os_path_without_duplicates
from .settings import RuntimeSettings


def get_version() -> str:
    try:
        return version("gomod-linker")
    except Exception:
        return "0.0.0"


__all__ = [
    "ArchiveError",
    "ArtifactArchive",
    "BackupLifecycle",
    "BackupState",
    "BuildStartReport",
    "ConfigError",
    "DependencyFolderOrchestrator",
    "DescriptorLocation",
    "DiscoveredDescriptor",
    "FileSystemError",
    "FormatError",
    "GoMod",
    "LinkerError",
    "ModuleIdentity",
    "ReplaceEntry",
    "RequireEntry",
    "RestoreReport",
    "RuntimeSettings",
    "UnpackedArtifact",
    "begin_mutation_epoch",
    "discover",
    "end_mutation_epoch",
    "extract",
    "find_project_descriptors",
    "get_version",
    "link_dependencies",
    "link_project",
    "make_os_path_without_duplicates",
    "replace_links_to_modules",
    "restore_tree",
    "unpack_artifacts",
]
