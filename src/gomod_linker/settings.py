from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

from .archive import BUILD_FOLDERS_MANIFEST

DEFAULT_DEPENDENCY_TEMP_FOLDER = ".__deps__"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_SESSION_ID_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_.-")


@dataclass(frozen=True)
class RuntimeSettings:
    """Linker settings loaded from environment with fail-fast validation."""

    scan_dependencies: bool = True
    include_test_dependencies: bool = True
    dependency_temp_folder: str = ""
    module_mode: bool = True
    sync_session_if_modules: bool = True
    parallel_session: bool = False
    restore_go_mod: bool = True
    force_clean_dependency: bool = False
    build_folders_manifest: str = BUILD_FOLDERS_MANIFEST
    session_id: str = "default"
    session_lock_dir: str = ""

    @classmethod
    def from_env(cls, env_file: Path | None = None) -> "RuntimeSettings":
        """Read ``GOMOD_LINKER_*`` variables, after loading *env_file* (or ``./.env``) if present."""
        env_path = env_file if env_file is not None else Path.cwd() / ".env"
        if env_path.is_file():
            load_dotenv(env_path)
        return cls(
            scan_dependencies=_get_env_bool("GOMOD_LINKER_SCAN_DEPENDENCIES", default=True),
            include_test_dependencies=_get_env_bool("GOMOD_LINKER_INCLUDE_TEST_DEPENDENCIES", default=True),
            dependency_temp_folder=os.getenv("GOMOD_LINKER_DEPENDENCY_TEMP_FOLDER", ""),
            module_mode=_get_env_bool("GOMOD_LINKER_MODULE_MODE", default=True),
            sync_session_if_modules=_get_env_bool("GOMOD_LINKER_SYNC_SESSION_IF_MODULES", default=True),
            parallel_session=_get_env_bool("GOMOD_LINKER_PARALLEL_SESSION", default=False),
            restore_go_mod=_get_env_bool("GOMOD_LINKER_RESTORE_GO_MOD", default=True),
            force_clean_dependency=_get_env_bool("GOMOD_LINKER_FORCE_CLEAN_DEPENDENCY", default=False),
            build_folders_manifest=os.getenv("GOMOD_LINKER_BUILD_FOLDERS_MANIFEST", BUILD_FOLDERS_MANIFEST),
            session_id=os.getenv("GOMOD_LINKER_SESSION_ID", "default"),
            session_lock_dir=os.getenv("GOMOD_LINKER_SESSION_LOCK_DIR", ""),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        manifest = self.build_folders_manifest.strip()
        if not manifest:
            raise ValueError("GOMOD_LINKER_BUILD_FOLDERS_MANIFEST must be non-empty")
        if "/" in manifest.rstrip("/") or "\\" in manifest:
            raise ValueError(
                f"GOMOD_LINKER_BUILD_FOLDERS_MANIFEST must be a top-level entry name, got: {manifest!r}"
            )

        session_id = self.session_id.strip()
        if not session_id:
            raise ValueError("GOMOD_LINKER_SESSION_ID must be non-empty")
        if not set(session_id) <= _SESSION_ID_CHARS:
            raise ValueError(
                f"GOMOD_LINKER_SESSION_ID may only contain letters, digits, '_', '.', '-', got: {session_id!r}"
            )
        return replace(
            self,
            dependency_temp_folder=self.dependency_temp_folder.strip(),
            build_folders_manifest=manifest,
            session_id=session_id,
            session_lock_dir=self.session_lock_dir.strip(),
        )

    @property
    def needs_session_lock(self) -> bool:
        return self.parallel_session and self.module_mode and self.sync_session_if_modules

    @property
    def session_lock_path(self) -> Path:
        """Lock file shared by every module build of the session, whatever its build folder."""
        lock_dir = Path(self.session_lock_dir) if self.session_lock_dir else Path(tempfile.gettempdir())
        return lock_dir / f"gomod-linker-session-{self.session_id}.lock"

    def dependency_temp_path(self, build_dir: Path) -> Path:
        if not self.dependency_temp_folder:
            return build_dir / DEFAULT_DEPENDENCY_TEMP_FOLDER
        path = Path(self.dependency_temp_folder)
        return path if path.is_absolute() else build_dir / path


def _get_env_bool(name: str, default: bool) -> bool:
    """Parse a boolean environment variable.

    Raises:
        ValueError: If the value is not one of true/false/1/0/yes/no/on/off.
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got: {raw!r}")
