"""
Agent package - streaming agent pipeline.

This package contains the core agent functionality split into logical modules:
- types: request, response and chat data types
- events: StreamEvent variants (Started, Delta, Usage, Error, Completed)
- parser: turns model output into tool calls, plans or file changes
- prompts: system prompt modules, step and continuation prompts
- history: transcript and history windowing
- chat: ChatUI / FileApplier collaborator interfaces
- dispatcher: UI-thread delivery boundary
- applier: file-apply collaborator over a Backend
- tool_coordinator: concurrent tool batches and continuation payloads
- plan: step-by-step plan execution
- orchestrator: ConversationOrchestrator, the agent loop
"""

# Core classes and data types
from .orchestrator import ConversationOrchestrator
from .types import (
    ChatMessage,
    FileChangeProposal,
    FileOperation,
    MessageStatus,
    ModelCapabilities,
    ModelInfo,
    ParsedResponse,
    PlanStep,
    Request,
    Sender,
    StepStatus,
    ToolCall,
    ToolStatus,
    ToolUsage,
)
from .events import Completed, Delta, Error, Started, StreamEvent, Usage

# Collaborators
from .chat import ApplyResult, ChatUI, FileApplier, MessageList
from .dispatcher import InlineDispatcher, UiDispatcher
from .applier import FileChangeApplier, PatchError

# Pipeline components
from .parser import parse_response
from .tool_coordinator import ToolAttempt, ToolExecutionCoordinator
from .plan import PlanError, PlanExecutor, PlanState
from .history import Transcript, window_history

__all__ = [
    # Main orchestrator
    "ConversationOrchestrator",

    # Data types
    "ChatMessage",
    "FileChangeProposal",
    "FileOperation",
    "MessageStatus",
    "ModelCapabilities",
    "ModelInfo",
    "ParsedResponse",
    "PlanStep",
    "Request",
    "Sender",
    "StepStatus",
    "ToolCall",
    "ToolStatus",
    "ToolUsage",

    # Stream events
    "Completed",
    "Delta",
    "Error",
    "Started",
    "StreamEvent",
    "Usage",

    # Collaborators
    "ApplyResult",
    "ChatUI",
    "FileApplier",
    "MessageList",
    "InlineDispatcher",
    "UiDispatcher",
    "FileChangeApplier",
    "PatchError",

    # Pipeline components
    "parse_response",
    "ToolAttempt",
    "ToolExecutionCoordinator",
    "PlanError",
    "PlanExecutor",
    "PlanState",
    "Transcript",
    "window_history",
]
