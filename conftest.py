"""
Shared fixtures for the FleetWatch test suite.

Nothing here starts a real gateway or HTTP server: archive tests build a
throwaway agents directory under tmp_path, and link tests drive GatewayLink
through an in-memory socket.
"""
import json
from pathlib import Path
from typing import Optional

import pytest

from fleetwatch.models import FleetConfig, LogicalAgent


# ─────────────────────────────────────────────
# Fleet builders
# ─────────────────────────────────────────────

def build_agent(
    agent_id: str,
    host: str = "10.0.0.1",
    port: int = 18789,
    token: str = "tok-aaaaaaaaaaaa",
    gateway_agent_id: Optional[str] = None,
    **extra,
) -> LogicalAgent:
    return LogicalAgent(
        id=agent_id,
        gateway_agent_id=gateway_agent_id or agent_id,
        name=extra.pop("name", agent_id.capitalize()),
        emoji=extra.pop("emoji", None),
        host=host,
        port=port,
        token=token,
        **extra,
    )


@pytest.fixture
def make_agent():
    return build_agent


@pytest.fixture
def make_fleet():
    def _make(*agents: LogicalAgent, poll_interval: float = 15, host_metrics_interval: float = 30) -> FleetConfig:
        return FleetConfig(agents=list(agents), poll_interval=poll_interval, host_metrics_interval=host_metrics_interval)
    return _make


# ─────────────────────────────────────────────
# In-memory WebSocket
# ─────────────────────────────────────────────

class FakeWebSocket:
    """Stands in for aiohttp.ClientWebSocketResponse: records outgoing frames."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self.close_code: Optional[int] = None

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True

    def requests(self, method: Optional[str] = None) -> list[dict]:
        return [f for f in self.sent if f.get("type") == "req" and (method is None or f.get("method") == method)]


@pytest.fixture
def fake_ws():
    return FakeWebSocket()


# ─────────────────────────────────────────────
# Session archive on disk
# ─────────────────────────────────────────────

class ArchiveBuilder:
    """Writes <root>/<agentId>/sessions/{sessions.json,<sessionId>.jsonl}."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._indexes: dict[str, dict] = {}

    def sessions_dir(self, agent_id: str) -> Path:
        path = self.root / agent_id / "sessions"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def add_session(
        self,
        agent_id: str,
        key: str,
        session_id: str,
        lines: list,
        updated_at: int = 0,
        display_name: Optional[str] = None,
    ) -> Path:
        sess_dir = self.sessions_dir(agent_id)
        entry = {"sessionId": session_id, "updatedAt": updated_at}
        if display_name:
            entry["displayName"] = display_name
        self._indexes.setdefault(agent_id, {})[key] = entry
        with open(sess_dir / "sessions.json", "w", encoding="utf-8") as f:
            json.dump(self._indexes[agent_id], f)
        return self.write_transcript(agent_id, f"{session_id}.jsonl", lines)

    def write_transcript(self, agent_id: str, filename: str, lines: list) -> Path:
        path = self.sessions_dir(agent_id) / filename
        with open(path, "w", encoding="utf-8") as f:
            for line in lines:
                f.write(line if isinstance(line, str) else json.dumps(line))
                f.write("\n")
        return path


@pytest.fixture
def archive(tmp_path):
    return ArchiveBuilder(tmp_path / "agents")


def message(role: str, timestamp: Optional[str], cost: float = 0.0, input_tokens: int = 0, output_tokens: int = 0,
            cache_read: int = 0, content=None, **extra) -> dict:
    msg = {
        "role": role,
        "content": content if content is not None else [{"type": "text", "text": f"{role} says hi"}],
        "usage": {
            "input": input_tokens,
            "output": output_tokens,
            "cacheRead": cache_read,
            "cacheWrite": 0,
            "cost": {"total": cost},
        },
        **extra,
    }
    record = {"type": "message", "message": msg}
    if timestamp is not None:
        record["timestamp"] = timestamp
    return record


@pytest.fixture
def make_message():
    return message
