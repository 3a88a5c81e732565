"""
Session persistence for Codex Agent.
Stores the conversation transcript as JSON files so a chat can be resumed,
with support for multiple named sessions per project.
"""

import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

SESSION_VERSION = 1


@dataclass
class Session:
    """A persisted chat session."""
    session_id: str = ""
    version: int = SESSION_VERSION
    name: str = "default"
    working_directory: str = ""
    model_id: str = ""
    agent_mode: bool = False
    created_at: str = ""
    updated_at: str = ""
    history: List[Dict[str, str]] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        """Count user messages in history."""
        return sum(1 for m in self.history if m.get("role") == "user")


def _slugify(name: str) -> str:
    """Turn a session name into a safe filename component."""
    s = name.lower().strip()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    s = s.strip("-")[:50]
    return s or "default"


def _dir_hash(working_directory: str) -> str:
    """Deterministic short hash of a working directory path."""
    return hashlib.sha256(os.path.abspath(working_directory).encode()).hexdigest()[:12]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _auto_name(first_prompt: str) -> str:
    """Generate a session name from the first user prompt."""
    words = first_prompt.strip().split()
    name = " ".join(words[:6])
    if len(words) > 6:
        name += "..."
    return name or "default"


class SessionStore:
    """
    Manages session files on disk.

    File layout:  {base_dir}/{dir_hash}_{slug}.json
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        os.makedirs(self.base_dir, exist_ok=True)

    def save(self, session: Session) -> str:
        """Save a session to disk atomically. Returns the file path."""
        if not session.session_id:
            session.session_id = self._make_id(session.working_directory, session.name)
        session.updated_at = _now_iso()
        if not session.created_at:
            session.created_at = session.updated_at

        path = self._path_for(session.session_id)
        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(asdict(session), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
            logger.info(f"Session saved: {path}")
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return path

    def load(self, session_id: str) -> Optional[Session]:
        path = self._path_for(session_id)
        if not os.path.exists(path):
            return None
        return self._read_file(path)

    def delete(self, session_id: str) -> bool:
        """Delete a session file. Returns True if deleted."""
        path = self._path_for(session_id)
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Session deleted: {path}")
            return True
        return False

    def list_sessions(self, working_directory: str) -> List[Session]:
        """All sessions for a working directory, newest first."""
        prefix = _dir_hash(working_directory) + "_"
        sessions: List[Session] = []
        for fname in os.listdir(self.base_dir):
            if fname.startswith(prefix) and fname.endswith(".json"):
                sess = self._read_file(os.path.join(self.base_dir, fname))
                if sess:
                    sessions.append(sess)
        sessions.sort(key=lambda s: s.updated_at or "", reverse=True)
        return sessions

    def get_latest(self, working_directory: str) -> Optional[Session]:
        sessions = self.list_sessions(working_directory)
        return sessions[0] if sessions else None

    def find_by_name(self, working_directory: str, name: str) -> Optional[Session]:
        """Find a session by name (case-insensitive) for a working directory."""
        name_lower = name.lower().strip()
        for sess in self.list_sessions(working_directory):
            if sess.name.lower().strip() == name_lower:
                return sess
        return None

    def create_session(self, working_directory: str, model_id: str, name: str = "default",
                       agent_mode: bool = False) -> Session:
        """Create a new empty session (not yet saved)."""
        return Session(
            session_id=self._make_id(working_directory, name),
            name=name,
            working_directory=os.path.abspath(working_directory),
            model_id=model_id,
            agent_mode=agent_mode,
            created_at=_now_iso(),
            updated_at=_now_iso(),
        )

    def rename(self, session: Session, new_name: str) -> Session:
        """Rename a session (writes the new file, removes the old one)."""
        old_id = session.session_id
        old_path = self._path_for(old_id)
        session.name = new_name
        session.session_id = self._make_id(session.working_directory, new_name)
        self.save(session)
        if old_id != session.session_id and os.path.exists(old_path):
            os.remove(old_path)
        return session

    def auto_name_session(self, session: Session, first_prompt: str) -> Session:
        """Name a still-'default' session after the first user prompt."""
        if session.name == "default":
            return self.rename(session, _auto_name(first_prompt))
        return session

    def _make_id(self, working_directory: str, name: str) -> str:
        return f"{_dir_hash(working_directory)}_{_slugify(name)}"

    def _path_for(self, session_id: str) -> str:
        return os.path.join(self.base_dir, f"{session_id}.json")

    def _read_file(self, path: str) -> Optional[Session]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read session {path}: {e}")
            return None
        history = [m for m in data.get("history", [])
                   if isinstance(m, dict) and isinstance(m.get("content"), str)]
        return Session(
            session_id=data.get("session_id", ""),
            version=data.get("version", SESSION_VERSION),
            name=data.get("name", "default"),
            working_directory=data.get("working_directory", ""),
            model_id=data.get("model_id", ""),
            agent_mode=bool(data.get("agent_mode", False)),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
            history=history,
        )
