"""Backup/restore of go.mod files around a build.

A directory holding a go.mod is in one of four states, derived only from the
presence of two reserved files next to it:

* the backup ``.#go.mod.mvn.orig`` holds the pristine go.mod text while a
  mutation epoch is open;
* the flag ``.#go.mod.mvn.delete.sum`` records that ``go.sum`` did not exist
  before the epoch, so whatever ``go.sum`` appears meanwhile must be removed
  on restore.

What to do in each state is computed by the pure functions ``plan_begin`` and
``plan_restore``; ``BackupLifecycle`` only snapshots the directory and applies
the planned actions. Every intermediate state an interrupted plan can leave
behind is one that ``plan_restore`` reconciles, including a backup whose live
go.mod has already been deleted.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from .errors import FileSystemError
from .gomod import GO_MOD_FILE_NAME, GO_SUM_FILE_NAME

logger = logging.getLogger(__name__)

BACKUP_FILE_NAME = ".#go.mod.mvn.orig"
DELETE_SUM_FLAG_FILE_NAME = ".#go.mod.mvn.delete.sum"


# ---------------------------------------------------------------------------
# Atomic write helpers
# ---------------------------------------------------------------------------

def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Write *content* to *path* through a temp file renamed into place.

    Raises:
        FileSystemError: If the temp file cannot be written or renamed.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent),
            prefix=f".{path.name}.",
            suffix=".tmp",
        )
    except OSError as exc:
        raise FileSystemError(f"Can't create temporary file for {path}", path=path) from exc
    try:
        with os.fdopen(fd, "wb") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException as exc:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        if isinstance(exc, OSError):
            raise FileSystemError(f"Can't write file {path}", path=path) from exc
        raise


def atomic_write_text(path: Path, content: str) -> None:
    atomic_write_bytes(path, content.encode("utf-8"))


def atomic_copy(source: Path, target: Path) -> None:
    try:
        content = source.read_bytes()
    except OSError as exc:
        raise FileSystemError(f"Can't read file {source}", path=source) from exc
    atomic_write_bytes(target, content)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class BackupState(str, Enum):
    CLEAN = "clean"
    BACKED_UP = "backed_up"
    SUM_ABSENT = "sum_absent"
    BACKED_UP_SUM_ABSENT = "backed_up_sum_absent"

    @classmethod
    def of(cls, *, backup: bool, sum_absent: bool) -> "BackupState":
        if backup and sum_absent:
            return cls.BACKED_UP_SUM_ABSENT
        if backup:
            return cls.BACKED_UP
        if sum_absent:
            return cls.SUM_ABSENT
        return cls.CLEAN

    @property
    def has_backup(self) -> bool:
        return self in (BackupState.BACKED_UP, BackupState.BACKED_UP_SUM_ABSENT)

    @property
    def sum_absent(self) -> bool:
        return self in (BackupState.SUM_ABSENT, BackupState.BACKED_UP_SUM_ABSENT)


class BackupAction(str, Enum):
    DELETE_DESCRIPTOR = "delete_descriptor"
    RESTORE_DESCRIPTOR = "restore_descriptor"
    DELETE_FLAG = "delete_flag"
    DELETE_LOCKFILE = "delete_lockfile"
    CREATE_FLAG = "create_flag"
    BACKUP_DESCRIPTOR = "backup_descriptor"


@dataclass(frozen=True)
class DirectorySnapshot:
    state: BackupState
    descriptor_present: bool
    lockfile_present: bool


def plan_restore(snapshot: DirectorySnapshot) -> tuple[BackupAction, ...]:
    """Actions that return a directory to its pre-epoch content."""
    actions: list[BackupAction] = []
    if snapshot.state.has_backup:
        if snapshot.descriptor_present:
            actions.append(BackupAction.DELETE_DESCRIPTOR)
        actions.append(BackupAction.RESTORE_DESCRIPTOR)
    if snapshot.state.sum_absent:
        actions.append(BackupAction.DELETE_FLAG)
        if snapshot.lockfile_present:
            actions.append(BackupAction.DELETE_LOCKFILE)
    return tuple(actions)


def _plan_fresh_epoch(snapshot: DirectorySnapshot) -> tuple[BackupAction, ...]:
    actions: list[BackupAction] = []
    # The flag goes first so an interrupted epoch never leaves a backup
    # without the information needed to clean up go.sum.
    if not snapshot.lockfile_present and not snapshot.state.sum_absent:
        actions.append(BackupAction.CREATE_FLAG)
    if snapshot.descriptor_present:
        actions.append(BackupAction.BACKUP_DESCRIPTOR)
    return tuple(actions)


def plan_begin(snapshot: DirectorySnapshot) -> tuple[BackupAction, ...]:
    """Actions that open a mutation epoch.

    A backup left over from an epoch that was never closed is restored first,
    then a fresh epoch starts from the restored content.
    """
    if not snapshot.state.has_backup:
        return _plan_fresh_epoch(snapshot)
    restored = replace(
        snapshot,
        state=BackupState.CLEAN,
        descriptor_present=True,
        lockfile_present=snapshot.lockfile_present and not snapshot.state.sum_absent,
    )
    return plan_restore(snapshot) + _plan_fresh_epoch(restored)


# ---------------------------------------------------------------------------
# Filesystem executor
# ---------------------------------------------------------------------------

class BackupLifecycle:
    """Applies backup plans to one directory containing a go.mod."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.descriptor_path = directory / GO_MOD_FILE_NAME
        self.lockfile_path = directory / GO_SUM_FILE_NAME
        self.backup_path = directory / BACKUP_FILE_NAME
        self.flag_path = directory / DELETE_SUM_FLAG_FILE_NAME

    def snapshot(self) -> DirectorySnapshot:
        return DirectorySnapshot(
            state=BackupState.of(
                backup=self.backup_path.is_file(),
                sum_absent=self.flag_path.is_file(),
            ),
            descriptor_present=self.descriptor_path.is_file(),
            lockfile_present=self.lockfile_path.is_file(),
        )

    @property
    def state(self) -> BackupState:
        return self.snapshot().state

    def begin(self) -> BackupState:
        """Open a mutation epoch and return the resulting state."""
        snapshot = self.snapshot()
        if snapshot.state.has_backup:
            logger.debug("Detected unrestored go.mod backup in %s, restoring before new epoch", self.directory)
        self._apply(plan_begin(snapshot))
        return self.state

    def restore(self) -> bool:
        """Close the mutation epoch. Returns False when there was nothing to restore."""
        actions = plan_restore(self.snapshot())
        if not actions:
            return False
        logger.debug("Restoring go.mod in %s: %s", self.directory, ", ".join(action.value for action in actions))
        self._apply(actions)
        return True

    def _apply(self, actions: tuple[BackupAction, ...]) -> None:
        for action in actions:
            if action is BackupAction.DELETE_DESCRIPTOR:
                self._delete(self.descriptor_path)
            elif action is BackupAction.RESTORE_DESCRIPTOR:
                self._rename(self.backup_path, self.descriptor_path)
            elif action is BackupAction.DELETE_FLAG:
                self._delete(self.flag_path)
            elif action is BackupAction.DELETE_LOCKFILE:
                self._delete(self.lockfile_path)
            elif action is BackupAction.CREATE_FLAG:
                self._touch(self.flag_path)
            elif action is BackupAction.BACKUP_DESCRIPTOR:
                atomic_copy(self.descriptor_path, self.backup_path)

    @staticmethod
    def _delete(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise FileSystemError(f"Can't delete file {path}", path=path) from exc

    @staticmethod
    def _rename(source: Path, target: Path) -> None:
        try:
            os.replace(source, target)
        except OSError as exc:
            raise FileSystemError(f"Can't rename backup: {source} -> {target}", path=source) from exc

    @staticmethod
    def _touch(path: Path) -> None:
        try:
            path.touch(exist_ok=True)
        except OSError as exc:
            raise FileSystemError(f"Can't create file {path}", path=path) from exc


def begin_mutation_epoch(directory: Path) -> BackupState:
    return BackupLifecycle(directory).begin()


def end_mutation_epoch(directory: Path) -> bool:
    return BackupLifecycle(directory).restore()


def restore_tree(root: Path) -> list[Path]:
    """Restore every directory under *root* that holds a backup or a go.sum flag.

    A missing *root* is a no-op.
    """
    if not root.is_dir():
        return []
    directories = {
        marker.parent
        for name in (BACKUP_FILE_NAME, DELETE_SUM_FLAG_FILE_NAME)
        for marker in root.rglob(name)
        if marker.is_file()
    }
    logger.debug("Restoring go.mod from backup in %s, detected %d folders", root, len(directories))
    restored: list[Path] = []
    for directory in sorted(directories):
        if end_mutation_epoch(directory):
            restored.append(directory)
    return restored
