"""
Conversation orchestration.
Drives the agent loop: sends prompts through a provider, renders streaming
output into placeholder messages, dispatches parsed responses to the tool
coordinator or plan executor, and feeds tool results back to the model until
it produces a final answer.

Provider callbacks arrive on stream threads and are re-posted to the UI
dispatcher; every piece of conversation state below is touched only there.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from backend import Backend

from .chat import ApplyResult, ChatUI, FileApplier
from .history import DEFAULT_HISTORY_WINDOW, Transcript, window_history
from .plan import PlanExecutor, PlanState
from .prompts import compose_system_prompt, wrap_continuation
from .tool_coordinator import ToolExecutionCoordinator
from .types import ChatMessage, MessageStatus, ModelInfo, ParsedResponse, Request, Sender

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_CONTINUATIONS = 25


class ConversationOrchestrator:
    def __init__(
        self,
        provider: Any,
        ui: ChatUI,
        dispatcher: Any,
        model: ModelInfo,
        applier: FileApplier,
        backend: Optional[Backend] = None,
        agent_mode: bool = False,
        thinking_enabled: bool = False,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        max_tool_continuations: int = DEFAULT_MAX_TOOL_CONTINUATIONS,
        tool_max_workers: int = 4,
        system_prompt: Optional[str] = None,
        transcript: Optional[Transcript] = None,
    ):
        self.provider = provider
        self.ui = ui
        self.dispatcher = dispatcher
        self.model = model
        self.applier = applier
        self.agent_mode = agent_mode
        self.thinking_enabled = thinking_enabled
        self.history_window = history_window
        self.max_tool_continuations = max_tool_continuations
        self.system_prompt = system_prompt if system_prompt is not None else compose_system_prompt(
            agent_mode, backend.working_directory if backend else None)
        self.transcript = transcript if transcript is not None else Transcript()

        self.tool_coordinator = ToolExecutionCoordinator(
            ui, dispatcher, backend, self._handle_tool_continuation, max_workers=tool_max_workers)
        self.plan_executor = PlanExecutor(
            self._send_step_prompt, applier, agent_mode=agent_mode, on_change=self._render_plan)

        # Correlation state
        self._streaming_position: Optional[int] = None
        self._tools_position: Optional[int] = None
        self._plan_position: Optional[int] = None
        self._step_position: Optional[int] = None
        self._active_request_id: Optional[str] = None
        self._last_prompt: Optional[str] = None
        self._depth = 0
        self._tools_pending = False
        self._last_plan_state = PlanState.NOT_STARTED

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def continuation_depth(self) -> int:
        return self._depth

    @property
    def last_prompt(self) -> Optional[str]:
        return self._last_prompt

    @property
    def active_request_id(self) -> Optional[str]:
        return self._active_request_id

    @property
    def is_busy(self) -> bool:
        return self._active_request_id is not None or self._tools_pending

    def _suppress_streaming(self) -> bool:
        return self.agent_mode and self.plan_executor.is_executing

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send_prompt(self, prompt: str) -> Request:
        """Start a new user turn. Resets the continuation depth."""
        if self.is_busy:
            self.cancel()
        self._depth = 0
        self._last_prompt = prompt
        self.ui.add_message(ChatMessage(sender=Sender.USER, content=prompt))
        return self._submit(prompt)

    def retry(self) -> Optional[Request]:
        """Resend the last user prompt without adding a new user message."""
        if not self._last_prompt:
            return None
        if self.is_busy:
            self.cancel()
        self._depth = 0
        return self._submit(self._last_prompt, record=False)

    def _submit(self, message: str, record: bool = True) -> Request:
        history = self.transcript.snapshot()
        if not record and history and history[-1] == {"role": "user", "content": message}:
            history = history[:-1]
        request = Request(
            model=self.model,
            message=message,
            history=window_history(history, self.model, self.history_window),
            thinking_enabled=self.thinking_enabled and self.model.capabilities.supports_thinking,
            continuation_depth=self._depth,
            system_prompt=self.system_prompt,
        )
        if record:
            self.transcript.add("user", message)
        self._active_request_id = request.request_id
        logger.info(f"Sending request {request.request_id} (depth {self._depth}, "
                    f"{len(request.history)} history messages)")
        self.provider.send_message_streaming(request, self)
        return request

    def _send_step_prompt(self, prompt: str) -> None:
        self._depth = 0
        self._last_prompt = prompt
        self._submit(prompt)

    def cancel(self) -> None:
        """Cancel the in-flight request. Running tools finish; their results are dropped."""
        if self._active_request_id is not None:
            self.provider.cancel_streaming(self._active_request_id)
            self._active_request_id = None
        self._tools_pending = False
        for pos in {p for p in (self._streaming_position, self._tools_position) if p is not None}:
            message = self.ui.get_message_at(pos)
            if message is not None:
                content = message.content if message.content and message.status is MessageStatus.STREAMING else ""
                self.ui.update_message(pos, replace(
                    message, content=(content + "\n\n" if content else "") + "Cancelled.",
                    status=MessageStatus.COMPLETE))
        self._streaming_position = None
        self._tools_position = None
        self.plan_executor.halt()

    # ------------------------------------------------------------------
    # StreamListener (called on stream threads)
    # ------------------------------------------------------------------

    def on_stream_started(self, request_id: str) -> None:
        self.dispatcher.post(lambda: self._handle_started(request_id))

    def on_stream_partial_update(self, request_id: str, accumulated_text: str, is_thinking: bool) -> None:
        self.dispatcher.post(lambda: self._handle_partial(request_id, accumulated_text, is_thinking))

    def on_stream_completed(self, request_id: str, response: ParsedResponse) -> None:
        self.dispatcher.post(lambda: self._handle_completed(request_id, response))

    def on_stream_error(self, request_id: str, message: str, cause: Optional[BaseException]) -> None:
        self.dispatcher.post(lambda: self._handle_error(request_id, message))

    # ------------------------------------------------------------------
    # UI-thread handlers
    # ------------------------------------------------------------------

    def _is_current(self, request_id: str) -> bool:
        if request_id != self._active_request_id:
            logger.debug(f"Ignoring event for stale request {request_id}")
            return False
        return True

    def _handle_started(self, request_id: str) -> None:
        if not self._is_current(request_id):
            return
        if self._suppress_streaming():
            self.ui.hide_thinking_message()
            self._streaming_position = None
            return
        if self._tools_position is not None and self.ui.get_message_at(self._tools_position) is not None:
            self._streaming_position = self._tools_position
            return
        self._streaming_position = self.ui.add_message(ChatMessage(
            sender=Sender.ASSISTANT, model_name=self.model.display_name, status=MessageStatus.STREAMING))

    def _handle_partial(self, request_id: str, text: str, is_thinking: bool) -> None:
        if not self._is_current(request_id) or self._suppress_streaming() or self._streaming_position is None:
            return
        message = self.ui.get_message_at(self._streaming_position)
        if message is None:
            return
        if is_thinking:
            message = replace(message, thinking_content=text)
        else:
            message = replace(message, content=text, status=MessageStatus.STREAMING)
        self.ui.update_message(self._streaming_position, message)

    def _place_final(self, message: ChatMessage) -> int:
        """Replace the tools placeholder, else the streaming one, else add."""
        target = self._tools_position if self._tools_position is not None else self._streaming_position
        self._tools_position = None
        self._streaming_position = None
        if target is not None and self.ui.get_message_at(target) is not None:
            self.ui.update_message(target, message)
            return target
        return self.ui.add_message(message)

    def _handle_completed(self, request_id: str, response: ParsedResponse) -> None:
        if not self._is_current(request_id):
            return
        self._active_request_id = None
        self.transcript.add("assistant", response.content or response.explanation)

        executing_plan = self.plan_executor.is_executing
        if self._suppress_streaming():
            self.ui.hide_thinking_message()
            self._streaming_position = None

        if response.tool_calls:
            self._tools_position = self.tool_coordinator.display_running_tools(
                response.tool_calls, self.model.display_name, response.raw_response,
                position=self._streaming_position)
            self._streaming_position = None
            self._tools_pending = True
            self.tool_coordinator.execute_tools(response.tool_calls, self._tools_position)
            return

        file_changes = tuple(self._enrich(c) for c in response.file_changes)

        if executing_plan:
            self._show_step_result(response, file_changes)
            position = self._step_position
            self.plan_executor.on_step_execution_result(file_changes, response.raw_response, response.explanation)
            if self.agent_mode and file_changes:
                self._show_apply_results(position, self.plan_executor.last_results)
            return

        has_actions = bool(file_changes or response.plan_steps)
        message = ChatMessage(
            sender=Sender.ASSISTANT,
            content=response.explanation,
            thinking_content=response.thinking,
            model_name=self.model.display_name,
            raw_response=response.raw_response,
            file_changes=file_changes,
            plan_steps=response.plan_steps,
            tool_usages=self.tool_coordinator.last_tool_usages,
            status=MessageStatus.PENDING_REVIEW if has_actions else MessageStatus.COMPLETE,
        )
        position = self._place_final(message)
        # Attached to this message; must not show up again on the next one
        self.tool_coordinator.last_tool_usages = ()

        if self.agent_mode and file_changes:
            self.accept_actions(position)
        elif self.agent_mode and response.plan_steps:
            self.accept_plan(position)

    def _show_step_result(self, response: ParsedResponse, file_changes: tuple) -> None:
        message = ChatMessage(
            sender=Sender.ASSISTANT,
            content=response.explanation,
            model_name=self.model.display_name,
            raw_response=response.raw_response,
            file_changes=file_changes,
            tool_usages=self.tool_coordinator.last_tool_usages,
            status=MessageStatus.COMPLETE if self.agent_mode else MessageStatus.PENDING_REVIEW,
        )
        self.tool_coordinator.last_tool_usages = ()
        if self._suppress_streaming() and self._tools_position is None:
            self._step_position = self.ui.add_message(message)
        else:
            self._step_position = self._place_final(message)

    def _enrich(self, change):
        enrich = getattr(self.applier, "enrich", None)
        return enrich(change) if enrich is not None else change

    def _handle_error(self, request_id: str, message: str) -> None:
        if not self._is_current(request_id):
            return
        self._active_request_id = None
        logger.error(f"Request {request_id} failed: {message}")
        self.plan_executor.halt()
        text = f"Error: {message or 'Unknown error'}"
        position = self._streaming_position if self._streaming_position is not None else self._tools_position
        self._streaming_position = None
        self._tools_position = None
        existing = self.ui.get_message_at(position) if position is not None else None
        if existing is not None:
            self.ui.update_message(position, replace(
                existing, content=text, thinking_content="", tool_usages=(),
                status=MessageStatus.ERROR, retry_prompt=self._last_prompt))
        else:
            self._notice(text, MessageStatus.ERROR)

    def _notice(self, text: str, status: MessageStatus = MessageStatus.COMPLETE) -> int:
        return self.ui.add_message(ChatMessage(sender=Sender.SYSTEM, content=text, model_name="System",
                                               status=status))

    def _handle_tool_continuation(self, payload: Dict[str, Any]) -> None:
        if not self._tools_pending:
            logger.info("Dropping tool results for a cancelled request")
            return
        self._tools_pending = False
        if self._depth >= self.max_tool_continuations:
            logger.warning(f"Tool continuation limit reached ({self.max_tool_continuations})")
            notice = (f"Stopped after {self.max_tool_continuations} rounds of tool calls. "
                      "Send a new message to continue.")
            position = self._tools_position
            self._tools_position = None
            existing = self.ui.get_message_at(position) if position is not None else None
            if existing is not None:
                self.ui.update_message(position, replace(existing, content=notice, status=MessageStatus.COMPLETE))
            else:
                self._notice(notice)
            self.plan_executor.halt()
            return
        self._depth += 1
        self._submit(wrap_continuation(payload))

    # ------------------------------------------------------------------
    # Review actions
    # ------------------------------------------------------------------

    def accept_actions(self, position: int) -> List[ApplyResult]:
        message = self.ui.get_message_at(position)
        if message is None or not message.file_changes:
            return []
        results = self.applier.apply(message.file_changes)
        self._show_apply_results(position, results)
        return results

    def _show_apply_results(self, position: Optional[int], results: List[ApplyResult]) -> None:
        """Mark a message applied, or errored with one line per failed change."""
        message = self.ui.get_message_at(position) if position is not None else None
        if message is None:
            return
        failures = [r for r in results if not r.success]
        content = message.content
        if failures:
            content = (content + "\n\n" if content else "") + "\n".join(
                f"Failed: {r.change.display_path}: {r.message}" for r in failures)
        self.ui.update_message(position, replace(
            message, content=content, status=MessageStatus.ERROR if failures else MessageStatus.APPLIED))

    def discard_actions(self, position: int) -> None:
        message = self.ui.get_message_at(position)
        if message is not None:
            self.ui.update_message(position, replace(message, status=MessageStatus.DISCARDED))

    def accept_plan(self, position: int) -> None:
        message = self.ui.get_message_at(position)
        if message is None or not message.plan_steps:
            return
        self._plan_position = position
        self._last_plan_state = PlanState.NOT_STARTED
        self.plan_executor.start(message.plan_steps, goal=message.content or None)

    def discard_plan(self, position: int) -> None:
        message = self.ui.get_message_at(position)
        if message is not None:
            self.ui.update_message(position, replace(message, status=MessageStatus.DISCARDED))

    def accept_step(self) -> List[ApplyResult]:
        position = self._step_position
        results = self.plan_executor.accept_step()
        self._show_apply_results(position, results)
        return results

    def discard_step(self) -> None:
        position = self._step_position
        self.plan_executor.discard_step()
        if position is not None:
            message = self.ui.get_message_at(position)
            if message is not None:
                self.ui.update_message(position, replace(message, status=MessageStatus.DISCARDED))

    def _render_plan(self, executor: PlanExecutor) -> None:
        if self._plan_position is not None:
            message = self.ui.get_message_at(self._plan_position)
            if message is not None:
                status = MessageStatus.APPLIED if executor.state is PlanState.COMPLETED else message.status
                self.ui.update_message(self._plan_position, replace(
                    message, plan_steps=executor.steps, status=status))
        if executor.state is not self._last_plan_state:
            self._last_plan_state = executor.state
            if executor.state is PlanState.COMPLETED:
                self._notice("Plan completed.")
            elif executor.state is PlanState.HALTED:
                self._notice("Plan halted.")
