"""
Collaborator interfaces the orchestrator talks to: the chat UI and the
file-apply layer.
"""

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .types import ChatMessage, FileChangeProposal


class ChatUI(Protocol):
    def add_message(self, message: ChatMessage) -> int: ...

    def update_message(self, position: int, message: ChatMessage) -> None: ...

    def get_message_at(self, position: int) -> Optional[ChatMessage]: ...

    def hide_thinking_message(self) -> None: ...


@dataclass(frozen=True)
class ApplyResult:
    change: FileChangeProposal
    success: bool
    message: str = ""
    diff: str = ""


class FileApplier(Protocol):
    def apply(self, changes: Sequence[FileChangeProposal]) -> List[ApplyResult]: ...


class MessageList:
    """In-memory ChatUI. Used headless and in tests."""

    def __init__(self):
        self.messages: List[ChatMessage] = []
        self.thinking_hidden = 0

    def add_message(self, message: ChatMessage) -> int:
        self.messages.append(message)
        return len(self.messages) - 1

    def update_message(self, position: int, message: ChatMessage) -> None:
        self.messages[position] = message

    def get_message_at(self, position: int) -> Optional[ChatMessage]:
        if 0 <= position < len(self.messages):
            return self.messages[position]
        return None

    def hide_thinking_message(self) -> None:
        self.thinking_hidden += 1
