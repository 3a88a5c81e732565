"""
Tests for the conversation loop: streaming placeholders, tool continuations,
file-change review, plans, errors and cancellation.
"""

import json
import threading
import time

import pytest

from agent import (
    ConversationOrchestrator,
    FileChangeApplier,
    InlineDispatcher,
    MessageList,
    MessageStatus,
    ModelCapabilities,
    ModelInfo,
    Sender,
    Transcript,
    parse_response,
)
from backend import LocalBackend

MODEL = ModelInfo("test-model", "Test Model", "openai", ModelCapabilities(supports_thinking=True))


class FakeProvider:
    """Records requests; tests drive the listener callbacks by hand."""

    def __init__(self):
        self.requests = []
        self.listeners = []
        self.cancelled = []

    def send_message_streaming(self, request, listener):
        self.requests.append(request)
        self.listeners.append(listener)

    def cancel_streaming(self, request_id):
        self.cancelled.append(request_id)

    def respond(self, text, index=-1, chunks=None):
        request, listener = self.requests[index], self.listeners[index]
        listener.on_stream_started(request.request_id)
        acc = ""
        for chunk in chunks or [text]:
            acc += chunk
            listener.on_stream_partial_update(request.request_id, acc, False)
        listener.on_stream_completed(request.request_id, parse_response(text, raw_response=text))


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.01)


def _fence(value):
    return "```json\n" + json.dumps(value) + "\n```"


def _file_op(*operations, explanation="Changes"):
    return _fence({"action": "file_operation", "explanation": explanation, "operations": list(operations)})


@pytest.fixture
def project(tmp_path):
    (tmp_path / "main.py").write_text("print('hi')\n")
    return tmp_path


def _orchestrator(project, model=MODEL, **kwargs):
    provider = FakeProvider()
    ui = MessageList()
    backend = LocalBackend(str(project))
    orch = ConversationOrchestrator(provider, ui, InlineDispatcher(), model, FileChangeApplier(backend),
                                    backend=backend, **kwargs)
    return orch, provider, ui


def _assistant(ui):
    return [m for m in ui.messages if m.sender is Sender.ASSISTANT]


def _notices(ui):
    return [m.content for m in ui.messages if m.sender is Sender.SYSTEM]


def test_prose_reply_reuses_streaming_placeholder(project):
    orch, provider, ui = _orchestrator(project)
    orch.send_prompt("hello")
    provider.respond("Hello world", chunks=["Hello", " world"])

    assert ui.messages[0].sender is Sender.USER
    assistant = _assistant(ui)
    assert len(assistant) == 1
    assert assistant[0].content == "Hello world"
    assert assistant[0].status is MessageStatus.COMPLETE
    assert orch.transcript.snapshot() == (
        {"role": "user", "content": "hello"}, {"role": "assistant", "content": "Hello world"})
    assert not orch.is_busy


def test_request_carries_system_prompt_and_thinking(project):
    orch, provider, _ = _orchestrator(project, thinking_enabled=True)
    orch.send_prompt("hello")
    request = provider.requests[0]
    assert request.thinking_enabled
    assert "listFiles" in request.system_prompt
    assert request.continuation_depth == 0


def test_tool_calls_feed_results_back(project):
    orch, provider, ui = _orchestrator(project)
    orch.send_prompt("what files are there?")
    provider.respond("Checking.\n" + _fence([{"name": "listFiles", "args": {"path": "."}}]))

    _wait_for(lambda: len(provider.requests) == 2)
    continuation = provider.requests[1]
    assert continuation.message.startswith("```json\n")
    payload = json.loads(continuation.message.strip().strip("`").removeprefix("json"))
    assert payload["action"] == "tool_result"
    assert payload["results"][0]["toolName"] == "listFiles"
    assert payload["results"][0]["result"]["files"][0]["name"] == "main.py"
    assert continuation.continuation_depth == 1
    assert orch.continuation_depth == 1

    provider.respond("There is one file: main.py")
    assistant = _assistant(ui)
    assert len(assistant) == 1
    assert assistant[0].content == "There is one file: main.py"
    assert assistant[0].tool_usages[0].tool_name == "listFiles"
    assert not orch.is_busy


def test_tool_calls_win_over_file_changes(project):
    orch, provider, ui = _orchestrator(project, agent_mode=True)
    orch.send_prompt("go")
    provider.respond(_file_op({"type": "createFile", "path": "x.py", "content": "x"}) + "\n" +
                     _fence([{"name": "readFile", "args": {"path": "main.py"}}]))
    _wait_for(lambda: len(provider.requests) == 2)
    assert not (project / "x.py").exists()


def test_continuation_limit_stops_the_loop(project):
    orch, provider, ui = _orchestrator(project, max_tool_continuations=1)
    tool_reply = _fence([{"name": "readFile", "args": {"path": "main.py"}}])
    orch.send_prompt("loop")
    provider.respond(tool_reply)
    _wait_for(lambda: len(provider.requests) == 2)
    provider.respond(tool_reply)

    _wait_for(lambda: any(m.content.startswith("Stopped after 1") for m in ui.messages))
    time.sleep(0.05)
    assert len(provider.requests) == 2
    assert not orch.is_busy


def test_file_changes_wait_for_review(project):
    orch, provider, ui = _orchestrator(project)
    orch.send_prompt("add a file")
    provider.respond(_file_op({"type": "createFile", "path": "new.py", "content": "x = 1\n"}))

    position = len(ui.messages) - 1
    message = ui.messages[position]
    assert message.status is MessageStatus.PENDING_REVIEW
    assert message.file_changes[0].diff_patch.startswith("--- /dev/null")
    assert not (project / "new.py").exists()

    results = orch.accept_actions(position)
    assert results[0].success
    assert (project / "new.py").read_text() == "x = 1\n"
    assert ui.messages[position].status is MessageStatus.APPLIED


def test_discard_leaves_files_alone(project):
    orch, provider, ui = _orchestrator(project)
    orch.send_prompt("delete main")
    provider.respond(_file_op({"type": "deleteFile", "path": "main.py"}))
    position = len(ui.messages) - 1
    orch.discard_actions(position)
    assert ui.messages[position].status is MessageStatus.DISCARDED
    assert (project / "main.py").exists()


def test_agent_mode_applies_immediately(project):
    orch, provider, ui = _orchestrator(project, agent_mode=True)
    orch.send_prompt("update")
    provider.respond(_file_op({"type": "searchAndReplace", "path": "main.py", "search": "hi", "replace": "bye"}))
    assert (project / "main.py").read_text() == "print('bye')\n"
    assert _assistant(ui)[-1].status is MessageStatus.APPLIED


def test_failed_apply_marks_message_error(project):
    orch, provider, ui = _orchestrator(project, agent_mode=True)
    orch.send_prompt("update")
    provider.respond(_file_op({"type": "updateFile", "path": "missing.py", "content": "x"}))
    message = _assistant(ui)[-1]
    assert message.status is MessageStatus.ERROR
    assert "Failed: missing.py" in message.content


def test_plan_runs_steps_after_review(project):
    orch, provider, ui = _orchestrator(project)
    orch.send_prompt("do two things")
    provider.respond(_fence({"action": "plan", "goal": "Two files", "steps": [{"id": "s1", "title": "First"}]}))

    plan_position = len(ui.messages) - 1
    assert ui.messages[plan_position].status is MessageStatus.PENDING_REVIEW
    assert len(provider.requests) == 1

    orch.accept_plan(plan_position)
    assert len(provider.requests) == 2
    assert "step 1 of 1" in provider.requests[1].message

    provider.respond(_file_op({"type": "createFile", "path": "one.py", "content": "1\n"}))
    step_message = _assistant(ui)[-1]
    assert step_message.status is MessageStatus.PENDING_REVIEW
    assert not (project / "one.py").exists()

    orch.accept_step()
    assert (project / "one.py").exists()
    assert ui.messages[plan_position].status is MessageStatus.APPLIED
    assert "Plan completed." in _notices(ui)


def test_agent_mode_runs_plan_without_review(project):
    orch, provider, ui = _orchestrator(project, agent_mode=True)
    orch.send_prompt("plan it")
    provider.respond(_fence({"action": "plan", "steps": ["Only step"]}))
    assert len(provider.requests) == 2

    provider.respond(_file_op({"type": "createFile", "path": "auto.py", "content": "a\n"}))
    assert (project / "auto.py").exists()
    assert ui.thinking_hidden >= 1
    assert "Plan completed." in _notices(ui)


def test_stream_error_replaces_placeholder_and_retry(project):
    orch, provider, ui = _orchestrator(project)
    orch.send_prompt("hi")
    request = provider.requests[0]
    provider.listeners[0].on_stream_started(request.request_id)
    provider.listeners[0].on_stream_error(request.request_id, "HTTP 500: down", None)

    message = _assistant(ui)[-1]
    assert message.status is MessageStatus.ERROR
    assert message.content == "Error: HTTP 500: down"
    assert message.retry_prompt == "hi"
    assert not orch.is_busy

    orch.retry()
    assert len(provider.requests) == 2
    assert provider.requests[1].message == "hi"
    assert provider.requests[1].history == ()
    assert sum(1 for m in ui.messages if m.sender is Sender.USER) == 1


def test_error_before_start_adds_notice(project):
    orch, provider, ui = _orchestrator(project)
    orch.send_prompt("hi")
    provider.listeners[0].on_stream_error(provider.requests[0].request_id, "Connection failed", None)
    assert ui.messages[-1].sender is Sender.SYSTEM
    assert ui.messages[-1].status is MessageStatus.ERROR


def test_cancel_marks_message_and_ignores_late_events(project):
    orch, provider, ui = _orchestrator(project)
    orch.send_prompt("long task")
    request = provider.requests[0]
    listener = provider.listeners[0]
    listener.on_stream_started(request.request_id)
    listener.on_stream_partial_update(request.request_id, "Working", False)

    orch.cancel()
    assert provider.cancelled == [request.request_id]
    message = _assistant(ui)[-1]
    assert message.content == "Working\n\nCancelled."
    assert not orch.is_busy

    listener.on_stream_completed(request.request_id, parse_response("late answer"))
    assert _assistant(ui)[-1].content == "Working\n\nCancelled."
    assert len(orch.transcript) == 1


def test_history_window_for_single_round_models(project):
    single = ModelInfo("small", "Small", "openai", ModelCapabilities(single_round=True))
    past = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"} for i in range(5)]
    orch, provider, _ = _orchestrator(project, model=single, history_window=2, transcript=Transcript(past))
    orch.send_prompt("next")
    assert provider.requests[0].history == tuple(past[-2:])

    orch, provider, _ = _orchestrator(project, history_window=2, transcript=Transcript(past))
    orch.send_prompt("next")
    assert provider.requests[0].history == tuple(past)


def test_cancel_while_tools_run_drops_results(project):
    orch, provider, ui = _orchestrator(project)
    release = threading.Event()

    def slow_tool(name, args, working_directory=".", backend=None):
        release.wait(5)
        return {"ok": True}

    orch.tool_coordinator._execute = slow_tool
    orch.send_prompt("look")
    provider.respond(_fence([{"name": "readFile", "args": {"path": "main.py"}}]))
    assert orch.is_busy

    orch.cancel()
    assert _assistant(ui)[-1].content == "Cancelled."
    release.set()
    time.sleep(0.2)
    assert len(provider.requests) == 1
    assert not orch.is_busy


def test_transcript_records_visible_text_not_raw_stream(project):
    orch, provider, ui = _orchestrator(project)
    orch.send_prompt("hi")
    request, listener = provider.requests[0], provider.listeners[0]
    raw = json.dumps({"choices": [{"delta": {"content": "Hello"}}]})
    listener.on_stream_completed(request.request_id, parse_response("Hello", raw_response=raw))

    assert orch.transcript.snapshot()[-1] == {"role": "assistant", "content": "Hello"}
    assert _assistant(ui)[-1].raw_response == raw


def test_agent_mode_failed_step_shows_which_change_failed(project):
    orch, provider, ui = _orchestrator(project, agent_mode=True)
    orch.send_prompt("plan it")
    provider.respond(_fence({"action": "plan", "steps": ["Edit missing file", "Never runs"]}))
    provider.respond(_file_op({"type": "updateFile", "path": "missing.py", "content": "x"}, explanation="Editing"))

    step = _assistant(ui)[-1]
    assert step.status is MessageStatus.ERROR
    assert step.content.startswith("Editing\n\nFailed: missing.py")
    assert "Plan halted." in _notices(ui)
    assert len(provider.requests) == 2
