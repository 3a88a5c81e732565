"""
Tool definitions and implementations for the coding agent.
Each tool has a schema (rendered into the system prompt) and an implementation function.
Tools use a Backend abstraction for file operations.
"""

from tools._common import ToolResult  # noqa: F401
from tools.gitignore import (  # noqa: F401
    _load_gitignore,
    _is_ignored,
    invalidate_gitignore_cache,
)
from tools.file_ops import read_file  # noqa: F401
from tools.search_ops import list_files, search_in_project, grep_search  # noqa: F401
from tools.schemas import (  # noqa: F401
    TOOL_DEFINITIONS,
    TOOL_NAME_NORMALIZE,
    TOOL_IMPLEMENTATIONS,
    PATH_TOOLS,
)
from tools.dispatch import execute_tool, normalize_tool_name  # noqa: F401
