"""Synthesis of ``replace`` directives between locally unpacked modules.

A source go.mod that requires a module declared by one of the candidate
descriptors, and does not already replace it, gets a ``replace`` pointing at
the candidate's directory relative to its own. When several candidates
declare the same module the first one in iteration order wins.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Sequence

from .backup import atomic_write_text
from .errors import FileSystemError
from .gomod import ModuleIdentity
from .models import DescriptorLocation

logger = logging.getLogger(__name__)


def relative_module_path(source_dir: Path, target_dir: Path) -> str:
    """Relative path from *source_dir* to *target_dir* usable as a replace target.

    Paths that do not climb out of *source_dir* get a ``./`` prefix, since
    the Go toolchain reads anything else as a module path.

    Raises:
        FileSystemError: If no relative path exists (e.g. different drives).
    """
    try:
        relative = os.path.relpath(os.path.abspath(target_dir), os.path.abspath(source_dir))
    except ValueError as exc:
        raise FileSystemError(
            f"Can't make relative path from {source_dir} to {target_dir}", path=target_dir
        ) from exc
    if relative == os.curdir:
        return relative
    if relative == os.pardir or relative.startswith(os.pardir + os.sep):
        return relative
    return os.curdir + os.sep + relative


def replace_links_to_modules(source: DescriptorLocation, targets: Sequence[DescriptorLocation]) -> bool:
    """Append a replace to *source* for every target module it requires.

    Returns:
        True when at least one directive was appended.
    """
    changed = False
    for target in targets:
        if target is source or target.path == source.path:
            continue
        module = target.descriptor.module
        if module is None:
            continue
        if source.descriptor.has_require_for(module) and not source.descriptor.has_replace_for(module):
            try:
                relative = relative_module_path(source.directory, target.directory)
            except FileSystemError as exc:
                raise FileSystemError(f"Can't link {module.path} in {source.path}: {exc}", path=source.path) from exc
            source.descriptor.add_replace(ModuleIdentity(module.path), ModuleIdentity(relative))
            logger.debug("Linked %s in %s to %s", module.path, source.path, relative)
            changed = True
    return changed


def write_descriptor(location: DescriptorLocation) -> None:
    try:
        atomic_write_text(location.path, location.descriptor.serialize())
    except FileSystemError as exc:
        raise FileSystemError(f"Can't write go.mod file {location.path}", path=location.path) from exc


def link_dependencies(descriptors: Sequence[DescriptorLocation]) -> int:
    """Cross-link every dependency descriptor against all the others.

    Each changed descriptor is written immediately; earlier writes are not
    rolled back if a later one fails.

    Returns:
        Number of descriptors that were changed.
    """
    changes = 0
    for descriptor in descriptors:
        if replace_links_to_modules(descriptor, descriptors):
            write_descriptor(descriptor)
            changes += 1
    return changes


def link_project(project: DescriptorLocation, dependencies: Sequence[DescriptorLocation]) -> bool:
    """Link one project descriptor against the dependency descriptors and persist it."""
    if replace_links_to_modules(project, dependencies):
        write_descriptor(project)
        return True
    return False
