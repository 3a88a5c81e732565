"""
Conversation transcript and history windowing.
"""

import threading
from typing import Dict, List, Sequence, Tuple

from .types import ModelInfo

DEFAULT_HISTORY_WINDOW = 12


def window_history(history: Sequence[Dict[str, str]], model: ModelInfo,
                   window: int = DEFAULT_HISTORY_WINDOW) -> Tuple[Dict[str, str], ...]:
    """History as sent to a model.

    Single-round models get the last `window` messages so they keep some
    context; multi-turn models get the full history unmodified.
    """
    if model.capabilities.single_round and window > 0 and len(history) > window:
        return tuple(history[-window:])
    return tuple(history)


class Transcript:
    """Ordered role/content log of a session. Safe to read from any thread."""

    def __init__(self, messages: Sequence[Dict[str, str]] = ()):
        self._lock = threading.Lock()
        self._messages: List[Dict[str, str]] = [dict(m) for m in messages]

    def add(self, role: str, content: str) -> None:
        if not content:
            return
        with self._lock:
            self._messages.append({"role": role, "content": content})

    def snapshot(self) -> Tuple[Dict[str, str], ...]:
        with self._lock:
            return tuple(dict(m) for m in self._messages)

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
