"""Search, discovery, and navigation tools."""

import os
import logging
import subprocess
from typing import Any, Dict, Iterator, List, Optional

from backend import Backend, LocalBackend
from tools._common import ToolResult, failure
from tools.gitignore import _load_gitignore, _is_ignored

logger = logging.getLogger(__name__)

_MAX_LIST_ENTRIES = 1000
_MAX_SEARCH_RESULTS = 100
_MAX_SEARCH_FILE_BYTES = 1_000_000


def _walk_files(b: Backend, root: str) -> Iterator[str]:
    """Yield project-relative file paths under root, skipping ignored entries."""
    gi = _load_gitignore(b)
    pending = [root]
    while pending:
        current = pending.pop()
        try:
            entries = b.list_dir(current)
        except OSError:
            continue
        for e in entries:
            name = e["name"]
            is_dir = e["type"] == "directory"
            rel = name if current == "." else f"{current}/{name}"
            if _is_ignored(rel, name, is_dir, gi):
                continue
            if is_dir:
                pending.append(rel)
            else:
                yield rel


def list_files(path: Optional[str] = None, recursive: bool = False,
               backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """List files and directories at a path, respecting .gitignore."""
    try:
        b = backend or LocalBackend(working_directory)
        target = b.relative_path(path or ".")

        if not b.is_dir(target):
            return failure(f"Not a directory: {target}")

        files: List[Dict[str, Any]] = []
        if recursive:
            for rel in sorted(_walk_files(b, target)):
                files.append({"name": os.path.basename(rel), "path": rel, "type": "file",
                              "size": b.file_size(rel)})
                if len(files) >= _MAX_LIST_ENTRIES:
                    break
        else:
            gi = _load_gitignore(b)
            for e in b.list_dir(target):
                name = e["name"]
                is_dir = e["type"] == "directory"
                rel = name if target == "." else f"{target}/{name}"
                if _is_ignored(rel, name, is_dir, gi):
                    continue
                entry: Dict[str, Any] = {"name": name, "path": rel, "type": e["type"]}
                if not is_dir:
                    entry["size"] = e.get("size", 0)
                files.append(entry)

        return ToolResult(ok=True, payload={"path": target, "files": files})
    except (OSError, ValueError) as e:
        return failure(str(e))


def search_in_project(query: str = "", path: Optional[str] = None, caseSensitive: bool = False,
                      maxResults: int = _MAX_SEARCH_RESULTS,
                      backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Plain-text search across project files."""
    if not query:
        return failure("query is required")
    try:
        b = backend or LocalBackend(working_directory)
        root = b.relative_path(path or ".")
        needle = query if caseSensitive else query.lower()
        limit = max(1, min(int(maxResults), _MAX_SEARCH_RESULTS))

        matches: List[Dict[str, Any]] = []
        for rel in sorted(_walk_files(b, root)):
            if b.file_size(rel) > _MAX_SEARCH_FILE_BYTES:
                continue
            for lineno, line in enumerate(b.read_file(rel).splitlines(), 1):
                haystack = line if caseSensitive else line.lower()
                if needle in haystack:
                    matches.append({"path": rel, "line": lineno, "text": line.strip()[:300]})
                    if len(matches) >= limit:
                        return ToolResult(ok=True, payload={"query": query, "matches": matches, "truncated": True})
        return ToolResult(ok=True, payload={"query": query, "matches": matches, "truncated": False})
    except (OSError, ValueError) as e:
        return failure(str(e))


def grep_search(pattern: str = "", path: Optional[str] = None, include: Optional[str] = None,
                backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Regex search using ripgrep (or grep fallback)."""
    if not pattern:
        return failure("pattern is required")
    try:
        b = backend or LocalBackend(working_directory)
        output = b.search(pattern, path or ".", include=include)

        matches: List[Dict[str, Any]] = []
        for raw in output.split("\n") if output else []:
            parts = raw.split(":", 2)
            if len(parts) < 3 or not parts[1].isdigit():
                continue
            matches.append({"path": parts[0].removeprefix("./"), "line": int(parts[1]), "text": parts[2].strip()[:300]})

        truncated = len(matches) > _MAX_SEARCH_RESULTS
        return ToolResult(ok=True, payload={"pattern": pattern, "matches": matches[:_MAX_SEARCH_RESULTS],
                                            "truncated": truncated})
    except subprocess.TimeoutExpired:
        return failure("Search timed out")
    except (OSError, ValueError) as e:
        return failure(str(e))
