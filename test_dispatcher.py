"""
Tests for the UI-thread dispatchers.
"""

import threading

from agent import InlineDispatcher, UiDispatcher


def test_posted_callables_run_only_when_drained():
    dispatcher = UiDispatcher()
    ran = []
    dispatcher.post(lambda: ran.append(1))
    dispatcher.post(lambda: ran.append(2))
    assert ran == []
    assert dispatcher.run_pending() == 2
    assert ran == [1, 2]
    assert dispatcher.run_pending() == 0


def test_failing_callback_does_not_stop_the_drain():
    dispatcher = UiDispatcher()
    ran = []

    def boom():
        raise RuntimeError("boom")

    dispatcher.post(boom)
    dispatcher.post(lambda: ran.append("after"))
    assert dispatcher.run_pending() == 2
    assert ran == ["after"]


def test_run_until_drains_work_posted_from_other_threads():
    dispatcher = UiDispatcher()
    seen = []
    ui_thread = threading.current_thread()

    def worker():
        for i in range(3):
            dispatcher.post(lambda i=i: seen.append((i, threading.current_thread() is ui_thread)))

    threading.Thread(target=worker).start()
    assert dispatcher.run_until(lambda: len(seen) == 3, timeout=5)
    assert seen == [(0, True), (1, True), (2, True)]


def test_run_until_times_out():
    assert not UiDispatcher().run_until(lambda: False, timeout=0.1, poll=0.02)


def test_inline_dispatcher_runs_immediately():
    ran = []
    InlineDispatcher().post(lambda: ran.append(1))
    assert ran == [1]
