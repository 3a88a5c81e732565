"""
Tests for concurrent tool execution and tool_result aggregation.
"""

import random
import threading
import time

from agent import (
    ChatMessage,
    InlineDispatcher,
    MessageList,
    MessageStatus,
    Sender,
    ToolCall,
    ToolExecutionCoordinator,
    ToolStatus,
)
from backend import LocalBackend


def _coordinator(executor, continuation=None, ui=None, max_workers=4):
    received = []
    coordinator = ToolExecutionCoordinator(
        ui or MessageList(), InlineDispatcher(), None,
        continuation or received.append, max_workers=max_workers, executor=executor)
    return coordinator, received


def test_results_keep_request_order_under_random_latency():
    def executor(name, args, working_directory=".", backend=None):
        time.sleep(random.uniform(0, 0.05))
        return {"ok": True, "n": args["n"]}

    calls = [ToolCall("readFile", {"n": i}) for i in range(8)]
    coordinator, received = _coordinator(executor)
    position = coordinator.display_running_tools(calls)
    payload = coordinator.execute_tools(calls, position).result(timeout=10)

    assert payload["action"] == "tool_result"
    assert [r["result"]["n"] for r in payload["results"]] == list(range(8))
    assert [r["toolName"] for r in payload["results"]] == ["readFile"] * 8
    assert received == [payload]


def test_calls_run_concurrently():
    barrier = threading.Barrier(3, timeout=5)

    def executor(name, args, working_directory=".", backend=None):
        barrier.wait()
        return {"ok": True}

    calls = [ToolCall("listFiles", {}) for _ in range(3)]
    coordinator, _ = _coordinator(executor, max_workers=3)
    payload = coordinator.execute_tools(calls).result(timeout=10)
    assert all(r["result"]["ok"] for r in payload["results"])


def test_partial_failure_is_reported_per_call():
    def executor(name, args, working_directory=".", backend=None):
        if name == "explode":
            raise RuntimeError("kaboom")
        if name == "bad":
            return "not a dict"
        return {"ok": True}

    calls = [ToolCall("readFile", {}), ToolCall("explode", {}), ToolCall("bad", {})]
    ui = MessageList()
    coordinator, _ = _coordinator(executor, ui=ui)
    position = coordinator.display_running_tools(calls, "Model", "raw")
    payload = coordinator.execute_tools(calls, position).result(timeout=10)

    results = [r["result"] for r in payload["results"]]
    assert results[0] == {"ok": True}
    assert results[1] == {"ok": False, "error": "Tool error: kaboom"}
    assert results[2]["ok"] is False

    message = ui.get_message_at(position)
    assert message.status is MessageStatus.RUNNING_TOOLS
    assert [u.status for u in message.tool_usages] == [ToolStatus.COMPLETED, ToolStatus.FAILED, ToolStatus.FAILED]
    assert all(u.duration_ms is not None for u in message.tool_usages)


def test_display_running_tools_reuses_position():
    ui = MessageList()
    coordinator, _ = _coordinator(lambda *a, **k: {"ok": True}, ui=ui)
    placeholder = ui.add_message(ChatMessage(sender=Sender.ASSISTANT, status=MessageStatus.STREAMING))
    position = coordinator.display_running_tools([ToolCall("readFile", {"path": "a.py"})], position=placeholder)
    assert position == placeholder
    assert len(ui.messages) == 1
    message = ui.messages[0]
    assert message.content == "Running tools..."
    assert message.tool_usages[0].status is ToolStatus.RUNNING
    assert message.tool_usages[0].file_path == "a.py"


def test_list_files_payload_through_real_tools(tmp_path):
    (tmp_path / "one.py").write_text("x = 1\n")
    received = []
    coordinator = ToolExecutionCoordinator(MessageList(), InlineDispatcher(), LocalBackend(str(tmp_path)),
                                           received.append)
    payload = coordinator.execute_tools([ToolCall("listFiles", {"path": "."})]).result(timeout=10)
    result = payload["results"][0]
    assert result["toolName"] == "listFiles"
    assert result["result"]["ok"] is True
    assert [f["name"] for f in result["result"]["files"]] == ["one.py"]
