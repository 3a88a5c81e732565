"""
Prompt architecture and system prompt composition.
Holds the modular prompt fragments and the helpers that build step and
continuation prompts.
"""

import json
from typing import Any, Dict, Optional

from tools import TOOL_DEFINITIONS

from .types import PlanStep


# Tool names for system prompt so the agent always knows what it can call
AVAILABLE_TOOL_NAMES = ", ".join(t["name"] for t in TOOL_DEFINITIONS)


# ============================================================
# Modular Prompt Architecture
# ============================================================

_MOD_IDENTITY = """You are an expert software engineer working inside a code editor connected to the user's project. You can inspect the project with tools and propose file changes that the editor applies for you.

You investigate before acting and never guess when you can check. Read files before proposing edits to them."""

_MOD_TOOL_PROTOCOL = """<tool_protocol>
To use tools, reply with ONLY a fenced JSON array of calls and nothing else:
```json
[{{"name": "readFile", "args": {{"path": "src/main.py"}}}}]
```
Independent calls in one array run in parallel. Results come back as:
```json
{{"action": "tool_result", "results": [{{"toolName": "readFile", "result": {{"ok": true, "content": "..."}}}}]}}
```
Results are in the same order as your calls. A result with "ok": false carries an "error".

Available tools: {tool_names}
{tool_docs}
</tool_protocol>"""

_MOD_FILE_OPERATIONS = """<file_operations>
To change files, reply with a fenced JSON object:
```json
{{"action": "file_operation", "explanation": "why", "operations": [
  {{"type": "createFile", "path": "a.py", "content": "..."}},
  {{"type": "updateFile", "path": "b.py", "content": "full new content"}},
  {{"type": "searchAndReplace", "path": "c.py", "search": "exact old text", "replace": "new text"}},
  {{"type": "modifyLines", "path": "d.py", "startLine": 10, "deleteCount": 2, "insertLines": ["x = 1"]}},
  {{"type": "renameFile", "oldPath": "old.py", "newPath": "new.py"}},
  {{"type": "deleteFile", "path": "e.py"}},
  {{"type": "patchFile", "path": "f.py", "diffPatch": "unified diff"}}
]}}
```
</file_operations>"""

_MOD_PLANNING = """<planning>
For work that spans several files or steps, first reply with a plan:
```json
{{"action": "plan", "goal": "one line", "steps": [{{"id": "s1", "title": "what this step does", "kind": "file"}}]}}
```
Each step is then executed on its own and answered with a file_operation object.
</planning>"""

_MOD_AGENT_MODE = """<agent_mode>
File changes you propose are applied immediately without review. Be precise.
</agent_mode>"""

_MOD_ANSWERING = """<answering>
When no tool or file change is needed, answer in plain prose.
</answering>"""


def _render_tool_docs() -> str:
    lines = []
    for tool in TOOL_DEFINITIONS:
        props = tool["input_schema"].get("properties", {})
        required = set(tool["input_schema"].get("required", []))
        params = ", ".join(f"{name}{'' if name in required else '?'}" for name in props)
        lines.append(f"- {tool['name']}({params}): {tool['description']}")
    return "\n".join(lines)


def compose_system_prompt(agent_mode: bool = False, working_directory: Optional[str] = None) -> str:
    """Assemble the system prompt from the modules."""
    parts = [
        _MOD_IDENTITY,
        _MOD_TOOL_PROTOCOL.format(tool_names=AVAILABLE_TOOL_NAMES, tool_docs=_render_tool_docs()),
        _MOD_FILE_OPERATIONS.format(),
        _MOD_PLANNING.format(),
    ]
    if agent_mode:
        parts.append(_MOD_AGENT_MODE)
    parts.append(_MOD_ANSWERING)
    if working_directory:
        parts.append(f"Project root: {working_directory}")
    return "\n\n".join(parts)


def build_step_prompt(step: PlanStep, index: int, total: int, goal: Optional[str] = None) -> str:
    header = f"Execute step {index} of {total} of the plan"
    if goal:
        header += f" for: {goal}"
    return (
        f"{header}\n"
        f"Step {step.step_id} ({step.kind}): {step.description}\n\n"
        "Reply with a file_operation JSON object for this step only. "
        "Use tools first if you need to read files."
    )


def build_continuation_payload(results: list) -> Dict[str, Any]:
    return {"action": "tool_result", "results": results}


def wrap_continuation(payload: Dict[str, Any]) -> str:
    """Continuation text as sent back to the model: the payload in a json fence."""
    return "```json\n" + json.dumps(payload, ensure_ascii=False) + "\n```\n"
