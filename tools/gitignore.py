""".gitignore-aware filtering helpers."""

import os
import logging
from typing import Dict, Optional, Set

import pathspec

from backend import Backend

logger = logging.getLogger(__name__)

_ALWAYS_SKIP_DIRS: Set[str] = {
    ".git", "node_modules", "__pycache__", ".venv", "venv", "env",
    ".mypy_cache", ".pytest_cache", ".tox", ".eggs",
    "dist", "build", ".gradle", ".idea", ".cache", ".codex-agent",
}

_ALWAYS_SKIP_EXTENSIONS: Set[str] = {
    ".pyc", ".pyo", ".so", ".dylib", ".o", ".a", ".class",
    ".min.js", ".min.css", ".map", ".lock",
}

_gitignore_cache: Dict[str, Optional[pathspec.PathSpec]] = {}


def _load_gitignore(backend: Backend) -> Optional[pathspec.PathSpec]:
    """Load and cache .gitignore patterns for a project root.

    Returns a PathSpec matcher or None if no .gitignore exists.
    """
    root = backend.working_directory
    if root in _gitignore_cache:
        return _gitignore_cache[root]

    spec = None
    try:
        if backend.is_file(".gitignore"):
            content = backend.read_file(".gitignore")
            spec = pathspec.PathSpec.from_lines("gitwildmatch", content.splitlines())
    except (OSError, ValueError) as e:
        logger.debug(f"Failed to parse .gitignore: {e}")

    _gitignore_cache[root] = spec
    return spec


def _is_ignored(rel_path: str, name: str, is_dir: bool,
                gitignore_spec: Optional[pathspec.PathSpec]) -> bool:
    """Check if a path should be ignored based on .gitignore + hardcoded skips."""
    if name in _ALWAYS_SKIP_DIRS and is_dir:
        return True
    if not is_dir:
        _, ext = os.path.splitext(name)
        if ext in _ALWAYS_SKIP_EXTENSIONS:
            return True
    if gitignore_spec:
        check_path = rel_path + "/" if is_dir else rel_path
        if gitignore_spec.match_file(check_path):
            return True
    return False


def invalidate_gitignore_cache(working_directory: Optional[str] = None) -> None:
    """Clear cached .gitignore specs. Call when .gitignore changes."""
    if working_directory:
        _gitignore_cache.pop(working_directory, None)
    else:
        _gitignore_cache.clear()
