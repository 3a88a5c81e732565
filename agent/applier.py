"""
File-apply collaborator.
Applies FileChangeProposals through a Backend and renders unified diffs for
review.
"""

import difflib
import logging
import re
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from backend import Backend

from .chat import ApplyResult
from .types import FileChangeProposal, FileOperation

logger = logging.getLogger(__name__)

_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


class PatchError(ValueError):
    pass


def _same_line(a: str, b: str) -> bool:
    return a.rstrip("\r\n") == b.rstrip("\r\n")


def apply_unified_diff(original: str, patch: str) -> str:
    """Apply the hunks of a unified diff to original. Context must match."""
    src = original.splitlines(keepends=True)
    lines = patch.splitlines(keepends=True)
    out: List[str] = []
    pos = 0
    i = 0
    hunks = 0
    while i < len(lines):
        m = _HUNK_RE.match(lines[i])
        i += 1
        if not m:
            continue
        hunks += 1
        start = max(int(m.group(1)) - 1, 0)
        if start < pos:
            raise PatchError(f"Overlapping hunk at line {start + 1}")
        out.extend(src[pos:start])
        pos = start
        while i < len(lines) and not lines[i].startswith("@@"):
            line = lines[i]
            tag, body = line[:1], line[1:]
            if tag in (" ", "-") or line in ("\n", "\r\n"):
                expected = body if tag in (" ", "-") else ""
                if pos >= len(src) or not _same_line(src[pos], expected):
                    raise PatchError(f"Context mismatch at line {pos + 1}")
                if tag != "-":
                    out.append(src[pos])
                pos += 1
            elif tag == "+":
                out.append(body if body.endswith("\n") else body + "\n")
            elif tag != "\\":
                break
            i += 1
    if hunks == 0:
        raise PatchError("No hunks found in patch")
    out.extend(src[pos:])
    return "".join(out)


def splice_lines(original: str, start_line: int, delete_count: int, insert_lines: Sequence[str]) -> str:
    """Replace delete_count lines starting at 1-based start_line with insert_lines."""
    lines = original.splitlines(keepends=True)
    if start_line < 1 or start_line > len(lines) + 1:
        raise ValueError(f"startLine {start_line} out of range (file has {len(lines)} lines)")
    idx = start_line - 1
    if lines and not lines[-1].endswith("\n") and idx + max(delete_count, 0) < len(lines):
        lines[-1] += "\n"
    inserted = [s if s.endswith("\n") else s + "\n" for s in insert_lines]
    lines[idx:idx + max(delete_count, 0)] = inserted
    return "".join(lines)


def unified_diff(old: str, new: str, from_file: str, to_file: str) -> str:
    return "".join(difflib.unified_diff(
        old.splitlines(keepends=True), new.splitlines(keepends=True),
        fromfile=from_file, tofile=to_file,
    ))


class FileChangeApplier:
    """Applies proposals against a project Backend."""

    def __init__(self, backend: Backend):
        self.backend = backend

    def _current(self, path: Optional[str]) -> str:
        if path and self.backend.is_file(path):
            return self.backend.read_file(path)
        return ""

    def resulting_content(self, change: FileChangeProposal, old: str) -> str:
        """Content the target file will have after applying change."""
        op = change.operation
        if op is FileOperation.DELETE:
            return ""
        if op is FileOperation.RENAME:
            return old
        if change.search is not None and change.replace is not None:
            if change.search not in old:
                raise ValueError(f"Search text not found in {change.path}")
            return old.replace(change.search, change.replace, 1)
        if change.start_line is not None and change.insert_lines is not None:
            return splice_lines(old, change.start_line, change.delete_count or 0, change.insert_lines)
        if op is FileOperation.PATCH and change.diff_patch:
            return apply_unified_diff(old, change.diff_patch)
        return change.new_content

    def preview(self, change: FileChangeProposal) -> Tuple[str, str]:
        """(old, new) content pair for review."""
        old = change.old_content or self._current(change.old_path if change.operation is FileOperation.RENAME
                                                    else change.path)
        return old, self.resulting_content(change, old)

    def diff_for(self, change: FileChangeProposal) -> str:
        if change.diff_patch and ("@@ " in change.diff_patch or change.diff_patch.startswith("--- ")):
            return change.diff_patch
        old, new = self.preview(change)
        op = change.operation
        if op is FileOperation.CREATE:
            return unified_diff("", new, "/dev/null", f"b/{change.path}")
        if op is FileOperation.DELETE:
            return unified_diff(old, "", f"a/{change.path}", "/dev/null")
        if op is FileOperation.RENAME:
            return unified_diff(old, new, f"a/{change.old_path}", f"b/{change.new_path}")
        return unified_diff(old, new, f"a/{change.path}", f"b/{change.path}")

    def enrich(self, change: FileChangeProposal) -> FileChangeProposal:
        """Fill old_content from disk and a diff for display. Best effort."""
        if change.operation is FileOperation.CREATE:
            old = ""
        else:
            old = change.old_content or self._current(
                change.old_path if change.operation is FileOperation.RENAME else change.path)
        try:
            diff = change.diff_patch or self.diff_for(change)
        except (OSError, ValueError) as e:
            logger.debug(f"No diff for {change.display_path}: {e}")
            diff = change.diff_patch
        return replace(change, old_content=old, diff_patch=diff)

    def _apply_one(self, change: FileChangeProposal) -> ApplyResult:
        op = change.operation
        b = self.backend
        if op is FileOperation.RENAME:
            if not b.is_file(change.old_path):
                return ApplyResult(change, False, f"File not found: {change.old_path}")
            if b.file_exists(change.new_path):
                return ApplyResult(change, False, f"Target already exists: {change.new_path}")
            b.rename_file(change.old_path, change.new_path)
            return ApplyResult(change, True, f"Renamed {change.old_path} -> {change.new_path}")

        if op is FileOperation.DELETE:
            if not b.is_file(change.path):
                return ApplyResult(change, False, f"File not found: {change.path}")
            old = b.read_file(change.path)
            b.remove_file(change.path)
            return ApplyResult(change, True, f"Deleted {change.path}",
                               unified_diff(old, "", f"a/{change.path}", "/dev/null"))

        exists = b.is_file(change.path)
        if op is not FileOperation.CREATE and not exists:
            return ApplyResult(change, False, f"File not found: {change.path}")
        if op is FileOperation.CREATE and exists:
            logger.warning(f"createFile overwrites existing {change.path}")
        old = b.read_file(change.path) if exists else ""
        new = self.resulting_content(change, old)
        b.write_file(change.path, new)
        verb = "Created" if op is FileOperation.CREATE else "Updated"
        return ApplyResult(change, True, f"{verb} {change.path}",
                           unified_diff(old, new, f"a/{change.path}", f"b/{change.path}"))

    def apply(self, changes: Sequence[FileChangeProposal]) -> List[ApplyResult]:
        """Apply changes in order. Each result reports its own success."""
        results = []
        for change in changes:
            try:
                result = self._apply_one(change)
            except (OSError, ValueError) as e:
                result = ApplyResult(change, False, str(e))
            if result.success:
                logger.info(result.message)
            else:
                logger.warning(f"Failed to apply {change.operation.value} {change.display_path}: {result.message}")
            results.append(result)
        return results
