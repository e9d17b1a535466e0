"""Exception hierarchy for go.mod cross-linking.

All package-specific exceptions inherit from ``LinkerError`` so hosts can
catch one type and report the wrapped message.
"""

from __future__ import annotations

from pathlib import Path


class LinkerError(Exception):
    """Base exception for all linker errors."""

    def __init__(self, message: str = "", *, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class FormatError(LinkerError):
    """Malformed go.mod syntax (unbalanced block delimiters)."""

    def __init__(self, message: str = "", *, line: int | None = None, path: Path | str | None = None) -> None:
        super().__init__(message, path=path)
        self.line = line

    def __str__(self) -> str:
        text = super().__str__()
        if self.line is not None:
            text = f"line {self.line}: {text}"
        if self.path is not None:
            text = f"{self.path}: {text}"
        return text

    def with_path(self, path: Path) -> "FormatError":
        return FormatError(self.args[0] if self.args else "", line=self.line, path=path)


class FileSystemError(LinkerError):
    """A create, delete, copy or rename failed."""


class ArchiveError(LinkerError):
    """A dependency archive could not be unpacked."""

    def __init__(
        self,
        message: str = "",
        *,
        archive: Path | str | None = None,
        target: Path | str | None = None,
    ) -> None:
        super().__init__(message, path=archive)
        self.archive = Path(archive) if archive is not None else None
        self.target = Path(target) if target is not None else None


class ConfigError(LinkerError, ValueError):
    """Invalid host or command-line input."""
