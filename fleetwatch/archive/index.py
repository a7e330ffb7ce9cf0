"""
Reading the per-agent session indexes.

Layout under the agents directory:

    <agents_dir>/<agentId>/sessions/sessions.json
    <agents_dir>/<agentId>/sessions/<sessionId>.jsonl

`sessions.json` maps session keys (`agent:<agentId>:main`,
`agent:<agentId>:subagent:<n>`) to {sessionId, sessionFile, updatedAt, displayName}.
"""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass
class IndexEntry:
    key: str
    agent_id: str
    session_id: Optional[str]
    transcript_path: Path
    updated_at: Optional[int]      # epoch milliseconds
    display_name: Optional[str]
    origin_label: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.origin_label or self.key.split(":")[-1] or "unknown"


def sessions_dir(agents_dir: Path, agent_id: str) -> Path:
    return Path(agents_dir) / agent_id / "sessions"


def list_agent_ids(agents_dir: Path) -> list[str]:
    """Agent subdirectories, sorted. A missing directory yields []."""
    try:
        return sorted(p.name for p in Path(agents_dir).iterdir() if p.is_dir())
    except OSError:
        return []


def _as_ms(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _resolve_transcript(sess_dir: Path, raw: dict) -> Optional[Path]:
    session_file = raw.get("sessionFile")
    if isinstance(session_file, str) and session_file:
        path = Path(session_file).expanduser()
        return path if path.is_absolute() else sess_dir / path
    session_id = raw.get("sessionId")
    if isinstance(session_id, str) and session_id:
        return sess_dir / f"{session_id}.jsonl"
    return None


def read_session_index(agents_dir: Path, agent_id: str) -> list[IndexEntry]:
    """Parse one agent's sessions.json. Missing or malformed files yield []."""
    sess_dir = sessions_dir(agents_dir, agent_id)
    index_path = sess_dir / "sessions.json"
    try:
        with open(index_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return []
    except (OSError, ValueError) as e:
        logger.debug(f"Skipping unreadable session index {index_path}: {e}")
        return []
    if not isinstance(data, dict):
        return []

    entries = []
    for key, raw in data.items():
        if not isinstance(raw, dict):
            continue
        transcript = _resolve_transcript(sess_dir, raw)
        if transcript is None:
            continue
        origin = raw.get("origin")
        entries.append(IndexEntry(
            key=key,
            agent_id=agent_id,
            session_id=raw.get("sessionId"),
            transcript_path=transcript,
            updated_at=_as_ms(raw.get("updatedAt")),
            display_name=raw.get("displayName"),
            origin_label=origin.get("label") if isinstance(origin, dict) else None,
        ))
    return entries


def iter_index(agents_dir: Path) -> Iterator[IndexEntry]:
    for agent_id in list_agent_ids(agents_dir):
        yield from read_session_index(agents_dir, agent_id)


def find_entry(agents_dir: Path, session_key: str) -> Optional[IndexEntry]:
    for agent_id in list_agent_ids(agents_dir):
        for entry in read_session_index(agents_dir, agent_id):
            if entry.key == session_key:
                return entry
    return None
