"""
Gateway telemetry collector.

The Collector is the single owner of all live state: configured agents, one
GatewayLink per distinct (host, port, token), one AgentState per agent, the
request tracker and the latest host metrics. Everything runs on one asyncio
event loop, so mutations never interleave mid-update.
"""
import asyncio
import logging
import os
from typing import Any, Callable, Optional

import psutil

from fleetwatch.collector.broadcaster import EventBroadcaster, HostMetricsUpdate, Subscription
from fleetwatch.collector.host_metrics import read_host_metrics
from fleetwatch.collector.scheduler import PollScheduler, poll_gateway
from fleetwatch.collector.state_store import AgentStateStore, now_ms
from fleetwatch.config import FIRST_POLL_DELAY, ConfigError, load_fleet_config
from fleetwatch.gateway.link import CONNECTED, GatewayLink
from fleetwatch.gateway.requests import RequestTracker
from fleetwatch.models import FleetConfig, GatewayKey, HostMetrics, LogicalAgent

logger = logging.getLogger(__name__)


class Collector:
    def __init__(
        self,
        config_path: Optional[str | os.PathLike] = None,
        metrics_reader: Callable[[], HostMetrics] = read_host_metrics,
    ) -> None:
        self.config_path = config_path
        self.fleet: Optional[FleetConfig] = None
        self.agents: dict[str, LogicalAgent] = {}
        self.links: dict[GatewayKey, GatewayLink] = {}
        self.tracker = RequestTracker()
        self.broadcaster = EventBroadcaster()
        self.store = AgentStateStore(self.broadcaster)
        self.host_metrics: dict[str, Any] = {}
        self._metrics_reader = metrics_reader
        self._scheduler: Optional[PollScheduler] = None
        self._inflight: set[asyncio.Future] = set()
        self._started = False

    # ─────────────────────────────────────────────
    # Configuration
    # ─────────────────────────────────────────────

    def load_config(self, fleet: Optional[FleetConfig] = None) -> None:
        """Apply a fleet config, reading `config_path` when none is given. Raises ConfigError."""
        if fleet is None:
            if self.config_path is None:
                raise ConfigError("<none>", "no agents config path set")
            fleet = load_fleet_config(self.config_path)
        self.apply_config(fleet)

    def reload(self) -> bool:
        """Re-read the agents file. On failure the current configuration stays in effect."""
        try:
            self.load_config()
        except ConfigError as e:
            logger.error(f"Config reload failed, keeping previous config: {e}")
            return False
        return True

    def apply_config(self, fleet: FleetConfig) -> None:
        current_ids = {a.id for a in fleet.agents}

        for agent_id in list(self.agents):
            if agent_id not in current_ids:
                del self.agents[agent_id]
                self.store.remove(agent_id)
                logger.info(f"Agent removed: {agent_id}")

        for link in self.links.values():
            link.agents = []

        new_links = []
        for agent in fleet.agents:
            self.agents[agent.id] = agent
            link = self.links.get(agent.key)
            if link is None:
                link = GatewayLink(agent.key, self.tracker, self._on_link_status, self._on_link_event)
                self.links[agent.key] = link
                new_links.append(link)
            link.agents.append(agent)
            self.store.ensure(agent)

        for key, link in list(self.links.items()):
            if not link.agents:
                del self.links[key]
                if self._started:
                    self._spawn(link.close())
                logger.info(f"[{key.label}] gateway no longer referenced, dropped")

        self.fleet = fleet
        logger.info(f"Config loaded: {len(self.agents)} agent(s) on {len(self.links)} gateway(s)")

        if self._started:
            for link in new_links:
                link.connect()

    # ─────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────

    def start(self) -> None:
        if self._started:
            return
        if self.fleet is None:
            self.load_config()
        self._started = True
        for link in self.links.values():
            link.connect()
        self._scheduler = PollScheduler(
            poll_round=self.poll_all,
            sample_host=self.collect_host_metrics,
            poll_interval=self.fleet.poll_interval,
            host_metrics_interval=self.fleet.host_metrics_interval,
        )
        self._scheduler.start()

    async def stop(self) -> None:
        self._started = False
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None
        for link in self.links.values():
            await link.close()
        for task in list(self._inflight):
            task.cancel()
        await asyncio.gather(*self._inflight, return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Future) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task failed: {type(exc).__name__}: {exc}", exc_info=exc)

    # ─────────────────────────────────────────────
    # Read side
    # ─────────────────────────────────────────────

    def get_snapshot(self) -> dict:
        ts = max(self.store.last_change, self.host_metrics.get("ts", 0))
        return {
            "ts": ts,
            "agents": {aid: rec.to_dict() for aid, rec in self.store.records().items()},
            "host": self.host_metrics,
        }

    def get_agent_state(self, agent_id: str) -> Optional[dict]:
        record = self.store.get(agent_id)
        return record.to_dict() if record is not None else None

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription:
        return self.broadcaster.subscribe(maxsize)

    def link_for(self, agent_id: str) -> Optional[GatewayLink]:
        agent = self.agents.get(agent_id)
        return self.links.get(agent.key) if agent is not None else None

    def get_gateways(self) -> list[dict]:
        """Per-link connection state and the last raw poll results, for debugging."""
        return [
            {
                "gateway": link.key.label,
                "state": link.state,
                "agents": [a.id for a in link.agents],
                "rawData": link.raw_data,
            }
            for link in self.links.values()
        ]

    # ─────────────────────────────────────────────
    # Link callbacks
    # ─────────────────────────────────────────────

    def _on_link_status(self, link: GatewayLink, state: str, error: Optional[str], snapshot: Optional[dict]) -> None:
        if state == CONNECTED:
            self.store.merge_all(link.agents, online=True, error=None, last_seen=now_ms(), health=snapshot)
            asyncio.get_running_loop().call_later(FIRST_POLL_DELAY, self._poll_link_soon, link)
        elif error is not None:
            self.store.merge_all(link.agents, online=False, error=error)

    def _on_link_event(self, link: GatewayLink, event: str, payload: Any) -> None:
        # Gateway events carry no agent id: every agent on the link gets them
        if event == "health":
            self.store.merge_all(link.agents, health=payload, last_seen=now_ms())
        elif event == "presence":
            presence = payload.get("presence") if isinstance(payload, dict) else None
            self.store.merge_all(link.agents, presence=presence, last_seen=now_ms())
        elif event == "tick":
            self.store.merge_all(link.agents, last_seen=now_ms())

    # ─────────────────────────────────────────────
    # Polling
    # ─────────────────────────────────────────────

    def poll_all(self) -> None:
        for link in self.links.values():
            self._poll_link_soon(link)

    def _poll_link_soon(self, link: GatewayLink) -> None:
        if self.links.get(link.key) is not link or not link.connected:
            return
        self._spawn(self.poll_link(link))

    async def poll_link(self, link: GatewayLink) -> None:
        results = await poll_gateway(link)
        link.raw_data = results
        self.store.apply_poll(link.agents, results)

    def collect_host_metrics(self) -> None:
        try:
            metrics = self._metrics_reader()
        except (OSError, psutil.Error) as e:
            logger.debug(f"Host metrics unavailable: {e}")
            return
        self.host_metrics = metrics.to_dict()
        self.broadcaster.publish(HostMetricsUpdate(metrics=self.host_metrics))
