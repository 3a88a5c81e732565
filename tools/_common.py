"""Shared types for the tools package."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ToolResult:
    """Result from executing a tool"""
    ok: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape sent back to the model: {"ok": bool, ...tool payload}."""
        out: Dict[str, Any] = {"ok": self.ok}
        out.update(self.payload)
        if self.error is not None:
            out["error"] = self.error
        return out


def failure(error: str) -> ToolResult:
    return ToolResult(ok=False, error=error)
