"""Tool execution dispatch."""

import logging
from typing import Any, Dict, Optional

from backend import Backend
from tools._common import ToolResult
from tools.schemas import TOOL_NAME_NORMALIZE, TOOL_IMPLEMENTATIONS

logger = logging.getLogger(__name__)


def normalize_tool_name(name: str) -> str:
    return TOOL_NAME_NORMALIZE.get(name, name)


def execute_tool(
    name: str,
    inputs: Optional[Dict[str, Any]],
    working_directory: str = ".",
    backend: Optional[Backend] = None,
) -> Dict[str, Any]:
    """Execute a tool by name and return its normalised {"ok": bool, ...} result.

    Never raises: unknown tools, bad arguments and tool exceptions all come
    back as {"ok": False, "error": ...} so a batch result stays well-formed.
    """
    name = normalize_tool_name(name)
    impl = TOOL_IMPLEMENTATIONS.get(name)
    if not impl:
        return ToolResult(ok=False, error=f"Unknown tool: {name}").to_dict()
    if inputs is not None and not isinstance(inputs, dict):
        return ToolResult(ok=False, error=f"Invalid arguments for {name}: expected an object").to_dict()
    kwargs = dict(inputs or {}, working_directory=working_directory, backend=backend)
    try:
        return impl(**kwargs).to_dict()
    except TypeError as e:
        return ToolResult(ok=False, error=f"Invalid arguments for {name}: {e}").to_dict()
    except Exception as e:
        logger.exception(f"Tool execution error: {name}")
        return ToolResult(ok=False, error=f"Tool error: {e}").to_dict()
