"""
Read-only view of an agent's workspace: persona and task files, installed
skills and recent daily memory notes, combined with its live state.

Every file read is capped; missing or unreadable files come back as None.
"""
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fleetwatch.models import LogicalAgent

MAX_FILE_BYTES = 8192
MAX_NOTE_BYTES = 4096
RECENT_NOTES = 3
TRUNCATED_MARK = "\n\n...(truncated)"

# wire name -> file at the workspace root
WORKSPACE_FILES = {
    "soul": "SOUL.md",
    "identity": "IDENTITY.md",
    "memory": "MEMORY.md",
    "tasks": "TASKS.md",
    "tools": "TOOLS.md",
    "heartbeat": "HEARTBEAT.md",
    "agents": "AGENTS.md",
    "user": "USER.md",
    "activeWork": "ACTIVE_WORK.md",
    "bootstrap": "BOOTSTRAP.md",
}

_DAILY_NOTE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}\.md$")
_SKILL_DESC_RE = re.compile(r"description:\s*(.+)")


def read_capped(path: Path, limit: int = MAX_FILE_BYTES) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read(limit + 1)
    except OSError:
        return None
    if len(content) > limit:
        return content[:limit] + TRUNCATED_MARK
    return content


def _mtime_iso(stat) -> str:
    return datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()


def list_skills(workspace: Path) -> list[dict]:
    skills = []
    try:
        entries = sorted(p for p in (workspace / "skills").iterdir() if p.is_dir())
    except OSError:
        return []
    for skill_dir in entries:
        content = read_capped(skill_dir / "SKILL.md")
        m = _SKILL_DESC_RE.search(content) if content else None
        skills.append({"name": skill_dir.name, "description": m.group(1).strip() if m else None})
    return skills


def list_memory_files(workspace: Path) -> list[dict]:
    """Markdown and JSON files under memory/, newest first."""
    files = []
    try:
        entries = list((workspace / "memory").iterdir())
    except OSError:
        return []
    for path in entries:
        if path.suffix not in (".md", ".json") or not path.is_file():
            continue
        try:
            stat = path.stat()
        except OSError:
            continue
        files.append((stat.st_mtime, {"name": path.name, "size": stat.st_size, "modified": _mtime_iso(stat)}))
    files.sort(key=lambda f: f[0], reverse=True)
    return [f for _, f in files]


def get_agent_detail(agent: LogicalAgent, live_state: Optional[dict] = None) -> dict:
    workspace = Path(agent.workspace).expanduser() if agent.workspace else None
    memory_files = list_memory_files(workspace) if workspace else []
    daily = [f for f in memory_files if _DAILY_NOTE_RE.match(f["name"])][:RECENT_NOTES]
    recent_notes = [{**f, "content": read_capped(workspace / "memory" / f["name"], MAX_NOTE_BYTES)} for f in daily]

    files = {name: (read_capped(workspace / filename) if workspace else None) for name, filename in WORKSPACE_FILES.items()}
    return {
        "id": agent.id,
        # Never includes the token
        "config": {
            "id": agent.id,
            "gatewayAgentId": agent.gateway_agent_id,
            "name": agent.name,
            "emoji": agent.emoji,
            "host": agent.host,
            "port": agent.port,
            "workspace": agent.workspace,
            "machine": agent.machine,
        },
        "workspace": {"path": str(workspace) if workspace else None, **files},
        "skills": list_skills(workspace) if workspace else [],
        "memoryFiles": memory_files,
        "recentNotes": recent_notes,
        "live": live_state or {},
    }
