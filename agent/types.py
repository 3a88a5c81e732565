"""
Core data types shared by providers, the response parser and the orchestrator.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class FileOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RENAME = "rename"
    PATCH = "patch"


class ToolStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    ACCEPTED = "accepted"
    DISCARDED = "discarded"
    FAILED = "failed"


@dataclass(frozen=True)
class ModelCapabilities:
    supports_thinking: bool = False
    # Backend cannot hold multi-turn context; history is windowed for it
    single_round: bool = False
    context_window: int = 128000
    max_output_tokens: int = 8192


@dataclass(frozen=True)
class ModelInfo:
    model_id: str
    display_name: str
    provider: str
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelInfo":
        """Build from an AVAILABLE_MODELS style entry."""
        return cls(
            model_id=data["id"],
            display_name=data.get("name", data["id"]),
            provider=data.get("provider", "openai"),
            capabilities=ModelCapabilities(
                supports_thinking=data.get("supports_thinking", False),
                single_round=data.get("single_round", False),
                context_window=data.get("context_window", 128000),
                max_output_tokens=data.get("max_output_tokens", 8192),
            ),
        )


@dataclass(frozen=True)
class FileChangeProposal:
    """A single proposed edit to a project file."""
    operation: FileOperation
    path: str = ""
    old_path: Optional[str] = None
    new_path: Optional[str] = None
    old_content: str = ""
    new_content: str = ""
    diff_patch: Optional[str] = None
    # Targeted edit hints: exact search/replace, or a line-range splice
    search: Optional[str] = None
    replace: Optional[str] = None
    start_line: Optional[int] = None
    delete_count: Optional[int] = None
    insert_lines: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if not isinstance(self.operation, FileOperation):
            object.__setattr__(self, "operation", FileOperation(self.operation))
        if self.operation is FileOperation.RENAME:
            if not (self.old_path and self.new_path):
                raise ValueError("rename requires both old_path and new_path")
            if not self.path:
                object.__setattr__(self, "path", self.new_path)
        elif not self.path:
            raise ValueError(f"{self.operation.value} requires a path")
        if self.operation is FileOperation.CREATE and self.old_content:
            raise ValueError("create must not carry old_content")
        if self.operation is FileOperation.DELETE and self.new_content:
            raise ValueError("delete must not carry new_content")

    @property
    def display_path(self) -> str:
        if self.operation is FileOperation.RENAME:
            return f"{self.old_path} -> {self.new_path}"
        return self.path

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"operation": self.operation.value, "path": self.path}
        for key in ("old_path", "new_path", "diff_patch", "search", "replace", "start_line", "delete_count"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.old_content:
            data["old_content"] = self.old_content
        if self.new_content:
            data["new_content"] = self.new_content
        if self.insert_lines is not None:
            data["insert_lines"] = list(self.insert_lines)
        return data


@dataclass(frozen=True)
class ToolCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolUsage:
    """Display record for one tool invocation. Status changes produce new records."""
    tool_name: str
    args_json: str = "{}"
    status: ToolStatus = ToolStatus.PENDING
    result_json: Optional[str] = None
    duration_ms: Optional[int] = None
    file_path: Optional[str] = None


@dataclass(frozen=True)
class PlanStep:
    step_id: str
    description: str
    kind: str = "file"
    status: StepStatus = StepStatus.PENDING
    file_changes: Tuple[FileChangeProposal, ...] = ()


@dataclass(frozen=True)
class ParsedResponse:
    """Structured view of one completed model response."""
    action: Optional[str] = None
    explanation: str = ""
    raw_response: str = ""
    # Visible answer text. raw_response holds the payload of every stream event
    content: str = ""
    file_changes: Tuple[FileChangeProposal, ...] = ()
    plan_steps: Tuple[PlanStep, ...] = ()
    tool_calls: Tuple[ToolCall, ...] = ()
    is_valid: bool = True
    thinking: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def has_plan(self) -> bool:
        return bool(self.plan_steps)

    @property
    def has_file_changes(self) -> bool:
        return bool(self.file_changes)


@dataclass(frozen=True)
class Request:
    """One submission to a provider. A new one is built per prompt or continuation."""
    model: ModelInfo
    message: str
    history: Tuple[Dict[str, str], ...] = ()
    thinking_enabled: bool = False
    continuation_depth: int = 0
    system_prompt: str = ""
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def messages(self) -> list:
        """History followed by the new user message, in wire order."""
        return [dict(m) for m in self.history] + [{"role": "user", "content": self.message}]


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    COMPLETE = "complete"
    STREAMING = "streaming"
    RUNNING_TOOLS = "running_tools"
    ERROR = "error"
    PENDING_REVIEW = "pending_review"
    APPLIED = "applied"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class ChatMessage:
    """A message as handed to the chat UI."""
    sender: Sender
    content: str = ""
    thinking_content: str = ""
    model_name: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    raw_response: Optional[str] = None
    file_changes: Tuple[FileChangeProposal, ...] = ()
    plan_steps: Tuple[PlanStep, ...] = ()
    tool_usages: Tuple[ToolUsage, ...] = ()
    status: MessageStatus = MessageStatus.COMPLETE
    retry_prompt: Optional[str] = None
