"""Tool schema definitions and dispatch maps.

The model requests tools in text, as a JSON array of {"name", "args"}
objects, so these definitions are rendered into the system prompt rather
than sent as native function-calling tools.
"""

from typing import Any, Dict, List

from tools.file_ops import read_file
from tools.search_ops import list_files, search_in_project, grep_search


TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "listFiles",
        "description": "List files and directories at a path in the project. Respects .gitignore.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path relative to the project root (default: '.')"},
                "recursive": {"type": "boolean", "description": "List every file below path (default: false)"},
            },
        },
    },
    {
        "name": "readFile",
        "description": "Read the contents of a text file in the project.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the project root"},
                "offset": {"type": "integer", "description": "1-based line to start reading from"},
                "limit": {"type": "integer", "description": "Number of lines to read"},
            },
            "required": ["path"],
        },
    },
    {
        "name": "searchInProject",
        "description": "Find lines containing a plain-text query across project files.",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Text to look for"},
                "path": {"type": "string", "description": "Directory to search (default: '.')"},
                "caseSensitive": {"type": "boolean", "description": "Match case exactly (default: false)"},
                "maxResults": {"type": "integer", "description": "Maximum matches to return (default/max: 100)"},
            },
            "required": ["query"],
        },
    },
    {
        "name": "grepSearch",
        "description": "Search project files with a regular expression (ripgrep syntax).",
        "input_schema": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regular expression"},
                "path": {"type": "string", "description": "Directory or file to search (default: '.')"},
                "include": {"type": "string", "description": "Glob filter, e.g. '*.py'"},
            },
            "required": ["pattern"],
        },
    },
]

# Aliases models commonly emit for the same tools
TOOL_NAME_NORMALIZE: Dict[str, str] = {
    "list_files": "listFiles",
    "list_directory": "listFiles",
    "read_file": "readFile",
    "search": "searchInProject",
    "search_in_project": "searchInProject",
    "grep": "grepSearch",
    "grep_search": "grepSearch",
}

TOOL_IMPLEMENTATIONS = {
    "listFiles": list_files,
    "readFile": read_file,
    "searchInProject": search_in_project,
    "grepSearch": grep_search,
}

# Tools whose "path" argument names the file or folder they touch
PATH_TOOLS = frozenset({"listFiles", "readFile", "searchInProject", "grepSearch"})
