"""File reading tool."""

import logging
from typing import Any, Optional

from backend import Backend, LocalBackend
from tools._common import ToolResult, failure

logger = logging.getLogger(__name__)

# Content beyond this many characters is truncated in the tool result
_MAX_READ_CHARS = 200_000


def _require_path(path: str, name: str = "path") -> Optional[ToolResult]:
    """Return an error ToolResult if path is empty/whitespace; else None."""
    if not (path or "").strip():
        return failure(f"{name} is required")
    return None


def read_file(path: str = "", offset: Optional[int] = None, limit: Optional[int] = None,
              backend: Optional[Backend] = None, working_directory: str = ".", **kw: Any) -> ToolResult:
    """Read a text file. offset is 1-based; limit is a line count."""
    err = _require_path(path)
    if err:
        return err
    try:
        b = backend or LocalBackend(working_directory)
        if not b.is_file(path):
            return failure(f"File not found: {path}")

        content = b.read_file(path)
        lines = content.splitlines(keepends=True)
        total_lines = len(lines)

        payload = {"path": b.relative_path(path), "lines": total_lines}
        if offset is not None or limit is not None:
            start = max(int(offset or 1) - 1, 0)
            end = start + int(limit or total_lines)
            content = "".join(lines[start:end])
            payload["offset"] = start + 1

        truncated = len(content) > _MAX_READ_CHARS
        if truncated:
            content = content[:_MAX_READ_CHARS]
        payload["content"] = content
        payload["truncated"] = truncated
        return ToolResult(ok=True, payload=payload)
    except (OSError, ValueError) as e:
        return failure(str(e))
