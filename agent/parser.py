"""
Response parsing.
Turns a completed model response (prose, a bare JSON value, or prose with
fenced JSON) into a ParsedResponse with tool calls, a plan or file changes.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .types import (
    FileChangeProposal,
    FileOperation,
    ParsedResponse,
    PlanStep,
    ToolCall,
)

logger = logging.getLogger(__name__)

# ```json ... ``` (or an unlabeled fence). An unterminated final fence is accepted.
_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z0-9_-]*)[ \t]*\r?\n(.*?)(?:```|\Z)", re.DOTALL)

_DECODER = json.JSONDecoder()

# Operation names models emit, lower-cased with underscores removed
_OPERATION_ALIASES: Dict[str, FileOperation] = {
    "create": FileOperation.CREATE,
    "createfile": FileOperation.CREATE,
    "update": FileOperation.UPDATE,
    "updatefile": FileOperation.UPDATE,
    "smartupdate": FileOperation.UPDATE,
    "searchandreplace": FileOperation.UPDATE,
    "modifylines": FileOperation.UPDATE,
    "delete": FileOperation.DELETE,
    "deletefile": FileOperation.DELETE,
    "rename": FileOperation.RENAME,
    "renamefile": FileOperation.RENAME,
    "patch": FileOperation.PATCH,
    "patchfile": FileOperation.PATCH,
}


def _operation_for(name: Any) -> Optional[FileOperation]:
    if not isinstance(name, str):
        return None
    return _OPERATION_ALIASES.get(name.strip().lower().replace("_", ""))


def _fenced_blocks(text: str) -> List[Tuple[str, Tuple[int, int]]]:
    """Return (content, span) for fenced blocks that look like JSON."""
    blocks = []
    for m in _FENCE_RE.finditer(text):
        lang, body = m.group(1).lower(), m.group(2).strip()
        if lang in ("json", "") and body[:1] in ("{", "["):
            blocks.append((body, m.span()))
    return blocks


def _first_json_span(text: str) -> Optional[Tuple[Any, Tuple[int, int]]]:
    """Find the first balanced {...} or [...] span that decodes as JSON."""
    idx = 0
    while True:
        starts = [i for i in (text.find("{", idx), text.find("[", idx)) if i != -1]
        if not starts:
            return None
        start = min(starts)
        try:
            value, end = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            idx = start + 1
            continue
        if isinstance(value, (dict, list)):
            return value, (start, end)
        idx = start + 1


def _load_candidates(text: str) -> Tuple[List[Any], str]:
    """Decode JSON candidates from text. Returns (values, prose outside them)."""
    values: List[Any] = []
    spans: List[Tuple[int, int]] = []

    for body, span in _fenced_blocks(text):
        try:
            values.append(json.loads(body))
            spans.append(span)
        except json.JSONDecodeError:
            found = _first_json_span(body)
            if found is not None:
                values.append(found[0])
                spans.append(span)

    if not values:
        stripped = text.strip()
        try:
            values.append(json.loads(stripped))
            spans.append((0, len(text)))
        except json.JSONDecodeError:
            found = _first_json_span(text)
            if found is not None:
                values.append(found[0])
                spans.append(found[1])

    prose_parts = []
    cursor = 0
    for start, end in sorted(spans):
        prose_parts.append(text[cursor:start])
        cursor = end
    prose_parts.append(text[cursor:])
    return values, "".join(prose_parts).strip()


# ----------------------------------------------------------------------
# Shape classification
# ----------------------------------------------------------------------

def _coerce_args(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _tool_call(item: Dict[str, Any]) -> ToolCall:
    args = item.get("args", item.get("arguments", item.get("parameters")))
    return ToolCall(name=str(item["name"]), args=_coerce_args(args))


def _is_tool_call_item(item: Any) -> bool:
    return (isinstance(item, dict) and isinstance(item.get("name"), str) and bool(item["name"])
            and ("args" in item or "arguments" in item))


def _extract_tool_calls(value: Any) -> List[ToolCall]:
    if isinstance(value, list):
        if value and all(_is_tool_call_item(v) for v in value):
            return [_tool_call(v) for v in value]
        return []
    if isinstance(value, dict):
        calls = value.get("tool_calls", value.get("toolCalls"))
        if isinstance(calls, list) and calls and all(_is_tool_call_item(v) for v in calls):
            return [_tool_call(v) for v in calls]
        if _is_tool_call_item(value) and not _operation_for(value["name"]):
            return [_tool_call(value)]
    return []


def _extract_plan(value: Any) -> List[PlanStep]:
    if not isinstance(value, dict) or not isinstance(value.get("steps"), list):
        return []
    steps = []
    for i, raw in enumerate(value["steps"], 1):
        if isinstance(raw, dict):
            step_id = str(raw.get("id") or f"s{i}")
            title = raw.get("title") or raw.get("description") or f"Step {i}"
            kind = raw.get("kind") or "file"
        else:
            step_id, title, kind = f"s{i}", str(raw), "file"
        steps.append(PlanStep(step_id=step_id, description=str(title), kind=str(kind)))
    return steps


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _proposals_from_op(op: Dict[str, Any], type_key: str) -> List[FileChangeProposal]:
    raw_type = op.get(type_key)
    operation = _operation_for(raw_type)
    if operation is None:
        logger.debug(f"Ignoring unrecognised file operation: {raw_type!r}")
        return []
    path = op.get("path") or ""

    hunks = op.get("modifyLines")
    if isinstance(hunks, list):
        expanded = []
        for h in hunks:
            if isinstance(h, dict) and isinstance(h.get("search"), str) and isinstance(h.get("replace"), str):
                try:
                    expanded.append(FileChangeProposal(
                        operation=FileOperation.UPDATE, path=path, search=h["search"], replace=h["replace"],
                    ))
                except ValueError as e:
                    logger.warning(f"Skipping invalid modifyLines hunk: {e}")
        return expanded

    content = op.get("content", op.get("newContent", ""))
    insert_lines = op.get("insertLines")
    try:
        return [FileChangeProposal(
            operation=operation,
            path=path,
            old_path=op.get("oldPath") or None,
            new_path=op.get("newPath") or None,
            new_content="" if operation is FileOperation.DELETE else str(content or ""),
            diff_patch=op.get("diffPatch") or op.get("patch") or None,
            search=op.get("search", op.get("searchPattern")),
            replace=op.get("replace", op.get("replaceWith")),
            start_line=_int_or_none(op.get("startLine")),
            delete_count=_int_or_none(op.get("deleteCount")),
            insert_lines=tuple(str(x) for x in insert_lines) if isinstance(insert_lines, list) else None,
        )]
    except ValueError as e:
        logger.warning(f"Skipping invalid file operation {raw_type!r}: {e}")
        return []


def _extract_file_changes(value: Any) -> Tuple[List[FileChangeProposal], Optional[str]]:
    """Return (proposals, action name) for a file-operation shaped value."""
    if not isinstance(value, dict):
        return [], None
    operations = value.get("operations")
    action = value.get("action")
    if isinstance(operations, list):
        changes: List[FileChangeProposal] = []
        for op in operations:
            if isinstance(op, dict):
                changes.extend(_proposals_from_op(op, "type" if "type" in op else "action"))
        return changes, action if isinstance(action, str) else "file_operation"
    if _operation_for(action):
        return _proposals_from_op(value, "action"), action
    if _operation_for(value.get("type")):
        return _proposals_from_op(value, "type"), value["type"]
    if isinstance(action, str) and "file" in action.lower():
        files = value.get("files") or value.get("changes")
        changes = []
        if isinstance(files, list):
            for op in files:
                if isinstance(op, dict):
                    changes.extend(_proposals_from_op(op, "type" if "type" in op else "action"))
        return changes, action
    return [], None


def _raw_events(raw: str) -> List[Any]:
    """Decode the JSON payloads of a raw event stream, in order."""
    events = []
    idx = 0
    while True:
        starts = [i for i in (raw.find("{", idx), raw.find("[", idx)) if i != -1]
        if not starts:
            return events
        start = min(starts)
        try:
            value, idx = _DECODER.raw_decode(raw, start)
        except json.JSONDecodeError:
            idx = start + 1
            continue
        events.append(value)


def _index_of(item: Dict[str, Any]) -> int:
    index = item.get("index", 0)
    return index if isinstance(index, int) else 0


def _streamed_tool_calls(events: List[Any]) -> List[ToolCall]:
    """Assemble tool calls sent as structured stream events.

    Covers chat-completion `tool_calls` deltas, whose arguments arrive in
    pieces keyed by index, and `tool_use` content blocks followed by
    `input_json_delta` pieces.
    """
    names: Dict[Tuple[str, int], str] = {}
    pieces: Dict[Tuple[str, int], List[str]] = {}

    def _open(key: Tuple[str, int], name: Any) -> None:
        if key not in names:
            names[key] = ""
            pieces[key] = []
        if isinstance(name, str) and name:
            names[key] = name

    for event in events:
        if not isinstance(event, dict):
            continue
        choices = event.get("choices")
        for choice in choices if isinstance(choices, list) else []:
            delta = (choice.get("delta") or choice.get("message") or {}) if isinstance(choice, dict) else {}
            calls = delta.get("tool_calls") if isinstance(delta, dict) else None
            for call in calls if isinstance(calls, list) else []:
                if not isinstance(call, dict):
                    continue
                function = call.get("function")
                if not isinstance(function, dict):
                    continue
                key = ("choice", _index_of(call))
                _open(key, function.get("name"))
                arguments = function.get("arguments")
                if isinstance(arguments, str):
                    pieces[key].append(arguments)
                elif isinstance(arguments, dict):
                    pieces[key].append(json.dumps(arguments))

        event_type = event.get("type")
        if event_type == "content_block_start":
            block = event.get("content_block") or {}
            if isinstance(block, dict) and block.get("type") == "tool_use":
                key = ("block", _index_of(event))
                _open(key, block.get("name"))
                if isinstance(block.get("input"), dict) and block["input"]:
                    pieces[key].append(json.dumps(block["input"]))
        elif event_type == "content_block_delta":
            delta = event.get("delta") or {}
            key = ("block", _index_of(event))
            if key in names and isinstance(delta, dict) and delta.get("type") == "input_json_delta":
                pieces[key].append(str(delta.get("partial_json", "")))

    return [ToolCall(name=name, args=_coerce_args("".join(pieces[key]))) for key, name in names.items() if name]


def _from_raw_stream(text: str, raw: str, thinking: str) -> Optional[ParsedResponse]:
    """Recover tool calls that only the raw event stream carries."""
    if not raw or raw == text:
        return None
    try:
        calls = _streamed_tool_calls(_raw_events(raw))
    except (ValueError, RecursionError) as e:
        logger.warning(f"Raw stream parsing failed: {e}")
        return None
    if not calls:
        return None
    logger.info(f"Recovered {len(calls)} tool calls from the raw stream")
    return ParsedResponse(action="tool_call", explanation=text, raw_response=raw, content=text,
                          tool_calls=tuple(calls), thinking=thinking)


def _text_field(value: Any, *keys: str) -> Optional[str]:
    if isinstance(value, dict):
        for key in keys:
            if isinstance(value.get(key), str) and value[key].strip():
                return value[key]
    return None


def parse_response(text: Optional[str], raw_response: Optional[str] = None, thinking: str = "") -> ParsedResponse:
    """Parse model output. Never raises.

    Precedence when several shapes are present: tool calls, then a plan,
    then file changes. When the visible text carries no structure, tool
    calls are looked for in raw_response, the concatenated raw stream
    events. Output with no recoverable structure comes back with
    is_valid=False and the original text as the explanation.
    """
    text = text or ""
    raw = raw_response if raw_response is not None else text
    try:
        values, prose = _load_candidates(text)
    except (ValueError, RecursionError) as e:
        logger.warning(f"Response parsing failed: {e}")
        values, prose = [], text

    if not values:
        return (_from_raw_stream(text, raw, thinking)
                or ParsedResponse(explanation=text, raw_response=raw, content=text, is_valid=False,
                                  thinking=thinking))

    tool_calls: List[ToolCall] = []
    plan_steps: List[PlanStep] = []
    file_changes: List[FileChangeProposal] = []
    plan_value = file_action = None
    explanation = None

    for value in values:
        tool_calls.extend(_extract_tool_calls(value))
        steps = _extract_plan(value)
        if steps:
            plan_steps.extend(steps)
            plan_value = plan_value or value
        changes, action = _extract_file_changes(value)
        if action:
            file_changes.extend(changes)
            file_action = file_action or action
        explanation = explanation or _text_field(value, "explanation", "message")

    if tool_calls:
        return ParsedResponse(action="tool_call", explanation=explanation or prose, raw_response=raw,
                              content=text, tool_calls=tuple(tool_calls), thinking=thinking)
    if plan_steps:
        summary = explanation or _text_field(plan_value, "goal") or "Plan"
        return ParsedResponse(action="plan", explanation=summary, raw_response=raw, content=text,
                              plan_steps=tuple(plan_steps), thinking=thinking)
    if file_action:
        return ParsedResponse(action=file_action, explanation=explanation or prose, raw_response=raw,
                              content=text, file_changes=tuple(file_changes), thinking=thinking)
    return (_from_raw_stream(text, raw, thinking)
            or ParsedResponse(action="json_response", explanation=explanation or text,
                              raw_response=raw, content=text, thinking=thinking))
