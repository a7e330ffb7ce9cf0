"""
Data models (dataclasses) for FleetWatch.
These are plain Python objects shared by the collector, the archive analyzer and the API layer.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Optional, Any


@dataclass(frozen=True)
class GatewayKey:
    """Identity of one physical gateway connection."""
    host: str
    port: int
    token: str = field(repr=False)

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}"

    @property
    def label(self) -> str:
        # Safe for logs: never print the full token
        return f"{self.host}:{self.port}:{self.token[:8]}"


@dataclass(frozen=True)
class LogicalAgent:
    id: str
    gateway_agent_id: str   # agent id as the gateway knows it (session key segment)
    name: str
    emoji: Optional[str]
    host: str
    port: int
    token: str = field(repr=False)
    workspace: Optional[str] = None
    machine: Optional[str] = None

    @property
    def key(self) -> GatewayKey:
        return GatewayKey(self.host, self.port, self.token)


@dataclass
class FleetConfig:
    agents: list[LogicalAgent]
    poll_interval: float           # seconds
    host_metrics_interval: float   # seconds


class UnknownStateField(ValueError):
    """Raised when a merge names a field that AgentState does not have."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"AgentState has no field '{name}'")


@dataclass
class AgentState:
    """
    Live view of one logical agent.

    Identity fields are fixed at creation; everything else starts empty and is
    merged field-by-field by handshakes, poll rounds and unsolicited events.
    """
    id: str
    gateway_agent_id: str
    name: str
    emoji: Optional[str] = None
    machine: Optional[str] = None
    online: bool = False
    last_seen: Optional[int] = None     # epoch milliseconds
    health: Optional[dict] = None
    sessions: Optional[Any] = None
    usage: Optional[dict] = None
    heartbeat: Optional[Any] = None
    presence: Optional[Any] = None
    channels: Optional[Any] = None
    cron: Optional[Any] = None
    error: Optional[str] = None

    MERGEABLE = frozenset({
        "online", "last_seen", "health", "sessions", "usage",
        "heartbeat", "presence", "channels", "cron", "error",
    })

    @classmethod
    def for_agent(cls, agent: LogicalAgent) -> "AgentState":
        return cls(
            id=agent.id,
            gateway_agent_id=agent.gateway_agent_id,
            name=agent.name,
            emoji=agent.emoji,
            machine=agent.machine,
        )

    def merge(self, **changes: Any) -> None:
        for name in changes:
            if name not in self.MERGEABLE:
                raise UnknownStateField(name)
        for name, value in changes.items():
            setattr(self, name, value)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gatewayAgentId": self.gateway_agent_id,
            "name": self.name,
            "emoji": self.emoji,
            "machine": self.machine,
            "online": self.online,
            "lastSeen": self.last_seen,
            "health": self.health,
            "sessions": self.sessions,
            "usage": self.usage,
            "heartbeat": self.heartbeat,
            "presence": self.presence,
            "channels": self.channels,
            "cron": self.cron,
            "error": self.error,
        }


@dataclass
class PendingRequest:
    id: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


@dataclass
class HostMetrics:
    ts: int
    hostname: str
    load_avg: list[float]
    memory: dict          # {total, used, available} in bytes
    disk: dict            # {total, used} in bytes
    uptime: int           # seconds

    def to_dict(self) -> dict:
        return {
            "ts": self.ts,
            "hostname": self.hostname,
            "loadAvg": self.load_avg,
            "memory": self.memory,
            "disk": self.disk,
            "uptime": self.uptime,
        }


@dataclass
class SessionRecord:
    key: str
    agent_id: str
    session_id: Optional[str]
    label: str
    model: str
    cost: float = 0.0
    tokens: int = 0
    message_count: int = 0              # user-authored messages ("api calls")
    start_time: Optional[str] = None    # ISO timestamps as written in the transcript
    end_time: Optional[str] = None
    updated_at: Optional[int] = None    # epoch milliseconds from sessions.json
    is_main: bool = True
    parent_key: Optional[str] = None
    agent_name: Optional[str] = None
    agent_emoji: Optional[str] = None


@dataclass
class DelegationNode:
    session: SessionRecord
    children: list["DelegationNode"] = field(default_factory=list)

    def to_dict(self) -> dict:
        s = self.session
        return {
            "key": s.key,
            "agentId": s.agent_id,
            "agentName": s.agent_name or s.agent_id,
            "agentEmoji": s.agent_emoji or "🤖",
            "sessionId": s.session_id,
            "label": s.label,
            "model": s.model,
            "cost": s.cost,
            "tokens": s.tokens,
            "messageCount": s.message_count,
            "startTime": s.start_time,
            "endTime": s.end_time,
            "updatedAt": s.updated_at,
            "isMain": s.is_main,
            "parentKey": s.parent_key,
            "children": [c.to_dict() for c in self.children],
        }
