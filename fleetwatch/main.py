"""
FleetWatch main entry point.

Starts a FastAPI HTTP server that:
  1. Runs the gateway telemetry collector for the lifetime of the app
  2. Exposes the live snapshot and an SSE stream of agent / host updates at /api/stream
  3. Answers session archive queries (sessions, traces, delegation trees, usage)
"""
import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from fleetwatch import __version__
from fleetwatch.archive import get_delegation_traces, get_session_trace, get_usage_report, list_sessions
from fleetwatch.archive.analyzer import days_to_cutoff
from fleetwatch.collector import Collector
from fleetwatch.config import (
    AGENTS_CONFIG_PATH,
    AGENTS_DIR,
    HOST,
    HOST_METRICS_INTERVAL,
    POLL_INTERVAL,
    PORT,
    ConfigError,
    save_fleet_config,
)
from fleetwatch.discover import discover_agents
from fleetwatch.models import FleetConfig
from fleetwatch.workspace import get_agent_detail

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("fleetwatch")


class ReloadResult(BaseModel):
    ok: bool
    agents: int
    gateways: int


class HealthStatus(BaseModel):
    status: str
    service: str
    agents: int


# Idle SSE connections get a comment line this often so proxies keep them open
SSE_KEEPALIVE_SECONDS = 15


def _ensure_agents_file(path: str) -> None:
    if os.path.exists(path):
        return
    logger.info(f"{path} not found, auto-discovering agents...")
    discovered = discover_agents()
    save_fleet_config(path, discovered)
    logger.info(f"Created {path} with {len(discovered['agents'])} agent(s)")


def _load_or_empty(collector: Collector) -> None:
    try:
        collector.load_config()
    except ConfigError as e:
        # Keep serving archive queries even without live agents
        logger.error(f"{e}; starting with no live agents")
        collector.apply_config(FleetConfig(agents=[], poll_interval=POLL_INTERVAL, host_metrics_interval=HOST_METRICS_INTERVAL))


def create_app(
    collector: Optional[Collector] = None,
    agents_dir: Optional[Path] = None,
    start_collector: bool = True,
) -> FastAPI:
    collector = collector or Collector(AGENTS_CONFIG_PATH)
    agents_dir = Path(agents_dir or AGENTS_DIR)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_collector:
            if collector.fleet is None and collector.config_path is not None:
                _ensure_agents_file(str(collector.config_path))
                _load_or_empty(collector)
            collector.start()
            logger.info(f"FleetWatch running at http://{HOST}:{PORT}")
        yield
        if start_collector:
            await collector.stop()

    app = FastAPI(
        title="FleetWatch",
        description="Live gateway telemetry and session archive analysis for agent fleets.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.collector = collector
    app.state.agents_dir = agents_dir

    def agent_info() -> dict:
        # Archive directories are named by the gateway's agent id
        info = {}
        for agent in collector.agents.values():
            meta = {"name": agent.name, "emoji": agent.emoji}
            info[agent.gateway_agent_id] = meta
            info[agent.id] = meta
        return info

    # ─────────────────────────────────────────────
    # Live state
    # ─────────────────────────────────────────────

    @app.get("/api/snapshot")
    async def api_snapshot():
        return collector.get_snapshot()

    @app.get("/api/agents")
    async def api_agents():
        return collector.get_snapshot()["agents"]

    @app.get("/api/agents/{agent_id}")
    async def api_agent(agent_id: str):
        state = collector.get_agent_state(agent_id)
        if state is None:
            raise HTTPException(status_code=404, detail="agent not found")
        return state

    @app.get("/api/agents/{agent_id}/detail")
    async def api_agent_detail(agent_id: str):
        agent = collector.agents.get(agent_id)
        if agent is None:
            raise HTTPException(status_code=404, detail="agent not found")
        return await asyncio.to_thread(get_agent_detail, agent, collector.get_agent_state(agent_id))

    @app.get("/api/gateways")
    async def api_gateways():
        return collector.get_gateways()

    @app.get("/api/host")
    async def api_host():
        return collector.host_metrics

    @app.post("/api/reload", response_model=ReloadResult)
    async def api_reload():
        ok = collector.reload()
        return ReloadResult(ok=ok, agents=len(collector.agents), gateways=len(collector.links))

    @app.get("/api/stream")
    async def api_stream(request: Request):
        """
        SSE stream: one `snapshot` event, then every agent/host update.
        A subscriber that falls too far behind is dropped and the stream ends;
        the client reconnects and receives a fresh snapshot.
        """
        sub = collector.subscribe()

        async def event_generator():
            try:
                yield f"data: {json.dumps({'type': 'snapshot', 'data': collector.get_snapshot()})}\n\n"
                while not sub.closed:
                    if await request.is_disconnected():
                        break
                    try:
                        event = await asyncio.wait_for(sub.__anext__(), timeout=SSE_KEEPALIVE_SECONDS)
                    except asyncio.TimeoutError:
                        yield ": keepalive\n\n"
                        continue
                    except StopAsyncIteration:
                        break
                    yield f"data: {json.dumps(event.to_dict())}\n\n"
            finally:
                sub.close()

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    # ─────────────────────────────────────────────
    # Session archive (synchronous file scans, run off the event loop)
    # ─────────────────────────────────────────────

    @app.get("/api/sessions")
    async def api_sessions():
        return await asyncio.to_thread(list_sessions, agents_dir, agent_info())

    @app.get("/api/session/{session_key}/trace")
    async def api_session_trace(session_key: str):
        result = await asyncio.to_thread(get_session_trace, session_key, agents_dir)
        if result is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return result

    @app.get("/api/traces")
    async def api_traces(days: Optional[float] = None):
        try:
            cutoff = days_to_cutoff(days, int(time.time() * 1000))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return await asyncio.to_thread(get_delegation_traces, agents_dir, cutoff, agent_info())

    @app.get("/api/analytics")
    async def api_analytics(range_str: str = Query("7", alias="range"), agent: str = "all"):
        try:
            return await asyncio.to_thread(get_usage_report, agents_dir, range_str, agent)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    # ─────────────────────────────────────────────
    # Health check
    # ─────────────────────────────────────────────

    @app.get("/health", response_model=HealthStatus)
    async def health():
        return HealthStatus(status="ok", service="FleetWatch", agents=len(collector.agents))

    return app


app = create_app()


# ─────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run("fleetwatch.main:app", host=HOST, port=PORT)
