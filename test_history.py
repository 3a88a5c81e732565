"""
Tests for the transcript and history windowing.
"""

import threading

from agent import ModelCapabilities, ModelInfo, Transcript, window_history

SINGLE = ModelInfo("s", "S", "openai", ModelCapabilities(single_round=True))
MULTI = ModelInfo("m", "M", "openai")


def _history(n):
    return [{"role": "user", "content": str(i)} for i in range(n)]


def test_single_round_models_get_recent_window():
    assert window_history(_history(20), SINGLE, 12) == tuple(_history(20)[-12:])
    assert window_history(_history(3), SINGLE, 12) == tuple(_history(3))


def test_multi_turn_models_get_full_history():
    assert len(window_history(_history(20), MULTI, 12)) == 20


def test_zero_window_disables_trimming():
    assert len(window_history(_history(20), SINGLE, 0)) == 20


def test_transcript_skips_empty_and_snapshots_are_copies():
    transcript = Transcript()
    transcript.add("user", "hi")
    transcript.add("assistant", "")
    snap = transcript.snapshot()
    snap[0]["content"] = "changed"
    assert transcript.snapshot() == ({"role": "user", "content": "hi"},)
    transcript.clear()
    assert len(transcript) == 0


def test_transcript_concurrent_adds():
    transcript = Transcript()

    def add_many():
        for i in range(200):
            transcript.add("user", str(i))

    threads = [threading.Thread(target=add_many) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(transcript) == 800
