"""
Backend abstraction for project file operations.
Tools and the file-apply collaborator go through a Backend so every path is
resolved against, and confined to, the project working directory.
"""

import logging
import os
import pathlib
import shutil
import subprocess
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)


class Backend(ABC):
    """Abstract backend for project file system operations."""

    @property
    @abstractmethod
    def working_directory(self) -> str:
        """Return the working directory path."""

    @abstractmethod
    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        """List entries in a directory. Returns list of {name, type, ext?, size?}."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read file content as text."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write content to a file (create dirs as needed)."""

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check if a file exists."""

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        """Check if a path is a directory."""

    @abstractmethod
    def is_file(self, path: str) -> bool:
        """Check if a path is a file."""

    @abstractmethod
    def file_size(self, path: str) -> int:
        """Get file size in bytes."""

    @abstractmethod
    def remove_file(self, path: str) -> None:
        """Delete a file."""

    @abstractmethod
    def rename_file(self, old_path: str, new_path: str) -> None:
        """Move a file, creating the destination directory if needed."""

    @abstractmethod
    def search(self, pattern: str, path: str, include: Optional[str] = None) -> str:
        """Search for a regex pattern. Returns matching lines as path:line:text."""

    def resolve_path(self, path: str) -> str:
        """Resolve a path relative to the working directory."""
        if os.path.isabs(path):
            return path
        return os.path.normpath(os.path.join(self.working_directory, path))

    def relative_path(self, path: str) -> str:
        """Express a path relative to the working directory (posix separators)."""
        rel = os.path.relpath(self.resolve_path(path), self.working_directory)
        return pathlib.PurePath(rel).as_posix()

    def _ensure_under_working(self, resolved: str) -> None:
        """Raise ValueError if resolved path escapes the working directory. Overridden by backends."""


# ============================================================
# Local Backend
# ============================================================

# Cache ripgrep availability
_HAS_RIPGREP: Optional[bool] = None


def _has_ripgrep() -> bool:
    global _HAS_RIPGREP
    if _HAS_RIPGREP is None:
        _HAS_RIPGREP = shutil.which("rg") is not None
    return _HAS_RIPGREP


class LocalBackend(Backend):
    """Backend that operates on the local filesystem."""

    def __init__(self, working_directory: str = "."):
        self._working_directory = os.path.abspath(working_directory)

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def _ensure_under_working(self, resolved: str) -> None:
        real = os.path.abspath(resolved)
        wd = os.path.abspath(self._working_directory)
        if real != wd and not real.startswith(wd + os.sep):
            raise ValueError(f"Path escapes working directory: {resolved!r}")

    def _full(self, path: str) -> str:
        full = self.resolve_path(path) if path else self._working_directory
        self._ensure_under_working(full)
        return full

    def list_dir(self, path: str) -> List[Dict[str, Any]]:
        full = self._full(path)
        entries = []
        for name in sorted(os.listdir(full)):
            child = os.path.join(full, name)
            if os.path.isdir(child):
                entries.append({"name": name, "type": "directory"})
            elif os.path.isfile(child):
                _, ext = os.path.splitext(name)
                entries.append({
                    "name": name, "type": "file",
                    "ext": ext.lstrip("."),
                    "size": os.path.getsize(child),
                })
        return entries

    def read_file(self, path: str) -> str:
        with open(self._full(path), "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        full = self._full(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(content)

    def file_exists(self, path: str) -> bool:
        return os.path.exists(self._full(path))

    def is_dir(self, path: str) -> bool:
        return os.path.isdir(self._full(path))

    def is_file(self, path: str) -> bool:
        return os.path.isfile(self._full(path))

    def file_size(self, path: str) -> int:
        return os.path.getsize(self._full(path))

    def remove_file(self, path: str) -> None:
        os.remove(self._full(path))

    def rename_file(self, old_path: str, new_path: str) -> None:
        src = self._full(old_path)
        dst = self._full(new_path)
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        os.replace(src, dst)

    def search(self, pattern: str, path: str, include: Optional[str] = None) -> str:
        target = path or "."
        self._full(target)

        if _has_ripgrep():
            cmd = ["rg", "--line-number", "--no-heading", "--color=never", "-m", "100"]
            if include:
                cmd.extend(["--glob", include])
            cmd.extend(["-e", pattern, target])
        else:
            cmd = ["grep", "-rnE", "--color=never"]
            if include:
                cmd.extend(["--include", include])
            cmd.extend(["-e", pattern, target])

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=15, cwd=self._working_directory)
        return result.stdout.strip() if result.stdout else ""
