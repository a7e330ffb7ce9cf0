"""
Per-logical-agent state records.

Gateway RPCs answer for the whole gateway, not for one agent. When several
logical agents share a gateway, each poll result is split by the agent's
`gateway_agent_id` where the payload allows it:

- health:   full payload, plus the matching `agents[]` entry under `_agentHealth`
- sessions: only items whose key starts with `agent:<gatewayAgentId>:`
- usage:    full payload, flagged `shared` when more than one agent uses the link
- heartbeat, channels, cron: the same gateway-wide payload for every agent
"""
import logging
import time
from typing import Any, Iterable, Optional

from fleetwatch.collector.broadcaster import AgentUpdate, EventBroadcaster
from fleetwatch.models import AgentState, LogicalAgent

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def split_health(health: Any, agent_key: str) -> Any:
    if not isinstance(health, dict):
        return health
    out = dict(health)
    agents = health.get("agents")
    if isinstance(agents, list):
        match = next(
            (a for a in agents if isinstance(a, dict) and a.get("agentId") == agent_key),
            None,
        )
        if match is not None:
            out["_agentHealth"] = match
    return out


def _session_belongs(item: Any, prefix: str) -> bool:
    key = item.get("key") if isinstance(item, dict) else None
    return isinstance(key, str) and key.startswith(prefix)


def split_sessions(sessions: Any, agent_key: str) -> Any:
    prefix = f"agent:{agent_key}:"
    if isinstance(sessions, list):
        return [s for s in sessions if _session_belongs(s, prefix)]
    if isinstance(sessions, dict) and isinstance(sessions.get("sessions"), list):
        out = dict(sessions)
        out["sessions"] = [s for s in sessions["sessions"] if _session_belongs(s, prefix)]
        return out
    return sessions


def split_poll_results(agent: LogicalAgent, results: dict, shared: bool) -> dict:
    """Compute the partial state one agent receives from one poll round.

    Fields whose RPC returned None are left out so the previous value survives.
    """
    agent_key = agent.gateway_agent_id
    update: dict[str, Any] = {}

    if results.get("health") is not None:
        update["health"] = split_health(results["health"], agent_key)
    if results.get("sessions") is not None:
        update["sessions"] = split_sessions(results["sessions"], agent_key)
    usage = results.get("usage")
    if usage is not None:
        update["usage"] = {**usage, "shared": shared} if isinstance(usage, dict) else usage
    # Not split per agent: the gateway does not tag these with an agent id
    for name in ("heartbeat", "channels", "cron"):
        if results.get(name) is not None:
            update[name] = results[name]
    return update


class AgentStateStore:
    def __init__(self, broadcaster: EventBroadcaster) -> None:
        self._broadcaster = broadcaster
        self._records: dict[str, AgentState] = {}
        self.last_change: int = now_ms()

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, agent_id: str) -> Optional[AgentState]:
        return self._records.get(agent_id)

    def records(self) -> dict[str, AgentState]:
        return dict(self._records)

    def ensure(self, agent: LogicalAgent) -> AgentState:
        """Create the empty record for a newly configured agent; keep an existing one."""
        record = self._records.get(agent.id)
        if record is None:
            record = AgentState.for_agent(agent)
            self._records[agent.id] = record
            self.last_change = now_ms()
        return record

    def remove(self, agent_id: str) -> bool:
        if self._records.pop(agent_id, None) is None:
            return False
        self.last_change = now_ms()
        self._broadcaster.publish(AgentUpdate(id=agent_id, state=None, removed=True))
        return True

    def merge(self, agent_id: str, **fields: Any) -> Optional[AgentState]:
        record = self._records.get(agent_id)
        if record is None:
            # Agent was removed by a reload while a poll round was in flight
            logger.debug(f"Ignoring update for unknown agent '{agent_id}'")
            return None
        record.merge(**fields)
        self.last_change = now_ms()
        self._broadcaster.publish(AgentUpdate(id=agent_id, state=record.to_dict()))
        return record

    def merge_all(self, agents: Iterable[LogicalAgent], **fields: Any) -> None:
        for agent in agents:
            self.merge(agent.id, **fields)

    def apply_poll(self, agents: list[LogicalAgent], results: dict) -> None:
        shared = len(agents) > 1
        for agent in agents:
            update = split_poll_results(agent, results, shared)
            self.merge(agent.id, last_seen=now_ms(), **update)
