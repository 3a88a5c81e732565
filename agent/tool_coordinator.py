"""
Tool execution coordination.
Runs a batch of model-requested tool calls concurrently, keeps the
"Running tools..." message current, and hands the ordered results back as a
tool_result continuation.
"""

import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from backend import Backend
from tools import PATH_TOOLS, execute_tool

from .chat import ChatUI
from .prompts import build_continuation_payload
from .types import ChatMessage, MessageStatus, Sender, ToolCall, ToolStatus, ToolUsage

logger = logging.getLogger(__name__)

ToolExecutor = Callable[..., Dict[str, Any]]


@dataclass(frozen=True)
class ToolAttempt:
    """Outcome of one call. Built by the worker; never mutated."""
    index: int
    call: ToolCall
    result: Dict[str, Any]
    duration_ms: int

    @property
    def ok(self) -> bool:
        return bool(self.result.get("ok"))


def _path_of(call: ToolCall) -> Optional[str]:
    for key in ("path", "oldPath"):
        value = call.args.get(key)
        if isinstance(value, str) and value:
            return value
    return "." if call.name in PATH_TOOLS else None


class ToolExecutionCoordinator:
    def __init__(
        self,
        ui: ChatUI,
        dispatcher: Any,
        backend: Optional[Backend],
        continuation: Callable[[Dict[str, Any]], None],
        max_workers: int = 4,
        executor: ToolExecutor = execute_tool,
    ):
        self.ui = ui
        self.dispatcher = dispatcher
        self.backend = backend
        self.continuation = continuation
        self.max_workers = max(1, max_workers)
        self._execute = executor
        self.last_tool_usages: Tuple[ToolUsage, ...] = ()
        self._position: Optional[int] = None
        self._batch = 0

    def display_running_tools(self, calls: Sequence[ToolCall], model_name: Optional[str] = None,
                              raw_response: Optional[str] = None, position: Optional[int] = None) -> int:
        """Show the "Running tools..." placeholder listing each call. UI thread only.

        With position, the existing message there (normally the streaming
        placeholder) becomes the tools message; otherwise one is added.
        """
        usages = []
        for call in calls:
            usage = ToolUsage(tool_name=call.name, args_json=json.dumps(call.args, ensure_ascii=False),
                              file_path=_path_of(call))
            usages.append(replace(usage, status=ToolStatus.RUNNING))
        self.last_tool_usages = tuple(usages)
        message = ChatMessage(
            sender=Sender.ASSISTANT,
            content="Running tools...",
            model_name=model_name,
            raw_response=raw_response,
            tool_usages=self.last_tool_usages,
            status=MessageStatus.RUNNING_TOOLS,
        )
        if position is not None and self.ui.get_message_at(position) is not None:
            self.ui.update_message(position, message)
            self._position = position
        else:
            self._position = self.ui.add_message(message)
        return self._position

    def _attempt(self, index: int, call: ToolCall) -> ToolAttempt:
        start = time.monotonic()
        try:
            result = self._execute(call.name, call.args,
                                   working_directory=self.backend.working_directory if self.backend else ".",
                                   backend=self.backend)
        except Exception as e:
            logger.exception(f"Tool execution error: {call.name}")
            result = {"ok": False, "error": f"Tool error: {e}"}
        if not isinstance(result, dict) or "ok" not in result:
            result = {"ok": False, "error": f"Malformed result from {call.name}"}
        return ToolAttempt(index, call, result, int((time.monotonic() - start) * 1000))

    def _record(self, batch: int, position: Optional[int], attempt: ToolAttempt) -> None:
        """Publish one finished call as a new ToolUsage record. UI thread only."""
        if batch != self._batch or attempt.index >= len(self.last_tool_usages):
            return
        usages = list(self.last_tool_usages)
        usages[attempt.index] = replace(
            usages[attempt.index],
            status=ToolStatus.COMPLETED if attempt.ok else ToolStatus.FAILED,
            result_json=json.dumps(attempt.result, ensure_ascii=False, default=str),
            duration_ms=attempt.duration_ms,
        )
        self.last_tool_usages = tuple(usages)
        if position is not None:
            message = self.ui.get_message_at(position)
            if message is not None:
                self.ui.update_message(position, replace(message, tool_usages=self.last_tool_usages))

    def _deliver(self, batch: int, payload: Dict[str, Any]) -> None:
        if batch != self._batch:
            logger.info(f"Dropping results of superseded tool batch {batch}")
            return
        self.continuation(payload)

    def execute_tools(self, calls: Sequence[ToolCall], position: Optional[int] = None) -> "Future[Dict[str, Any]]":
        """Run calls off the UI thread.

        Results are aggregated only after every worker has finished, in
        request order. The payload goes to the continuation callback on the
        UI thread and also resolves the returned future.
        """
        self._batch += 1
        batch = self._batch
        position = position if position is not None else self._position
        calls = list(calls)
        done: "Future[Dict[str, Any]]" = Future()

        def _run():
            attempts: List[ToolAttempt] = []
            try:
                with ThreadPoolExecutor(max_workers=min(len(calls), self.max_workers) or 1,
                                        thread_name_prefix="tool") as pool:
                    futures = [pool.submit(self._attempt, i, call) for i, call in enumerate(calls)]
                    for fut in as_completed(futures):
                        attempt = fut.result()
                        attempts.append(attempt)
                        self.dispatcher.post(lambda a=attempt: self._record(batch, position, a))
                attempts.sort(key=lambda a: a.index)
                payload = build_continuation_payload(
                    [{"toolName": a.call.name, "result": a.result} for a in attempts]
                )
                failed = sum(1 for a in attempts if not a.ok)
                logger.info(f"Tool batch finished: {len(attempts)} calls, {failed} failed")
            except Exception as e:
                logger.exception("Tool batch failed")
                done.set_exception(e)
                return
            try:
                if calls:
                    self.dispatcher.post(lambda: self._deliver(batch, payload))
            finally:
                done.set_result(payload)

        threading.Thread(target=_run, name=f"tools-{batch}", daemon=True).start()
        return done
