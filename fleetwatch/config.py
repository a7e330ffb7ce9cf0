"""
FleetWatch Configuration
"""
import math
import os
import json
from pathlib import Path
from typing import Any

from fleetwatch import __version__
from fleetwatch.models import FleetConfig, LogicalAgent

# Project root
BASE_DIR = Path(__file__).resolve().parent.parent

config_data = {}
_config_file = BASE_DIR / "data" / "config.json"
if _config_file.exists():
    try:
        with open(_config_file, "r", encoding="utf-8") as _f:
            config_data = json.load(_f)
    except Exception:
        pass

# HTTP server - default to localhost only, the API is unauthenticated
HOST = os.getenv("FLEETWATCH_HOST", config_data.get("HOST", "127.0.0.1"))
PORT = int(os.getenv("FLEETWATCH_PORT", config_data.get("PORT", "3100")))

# Agents file: list of logical agents and the gateway each one sits behind
AGENTS_CONFIG_PATH = os.getenv(
    "FLEETWATCH_AGENTS_CONFIG",
    config_data.get("AGENTS_CONFIG_PATH", str(BASE_DIR / "data" / "agents.json")),
)

# Local gateway state: openclaw.json and the per-agent session archives
OPENCLAW_DIR = Path(os.getenv("FLEETWATCH_OPENCLAW_DIR", config_data.get("OPENCLAW_DIR", str(Path.home() / ".openclaw"))))
AGENTS_DIR = Path(os.getenv("FLEETWATCH_AGENTS_DIR", config_data.get("AGENTS_DIR", str(OPENCLAW_DIR / "agents"))))

# Poll cadence (seconds). Overridden per agents file by pollIntervalMs / hostMetricsIntervalMs.
POLL_INTERVAL = float(os.getenv("FLEETWATCH_POLL_INTERVAL", config_data.get("POLL_INTERVAL", "15")))
HOST_METRICS_INTERVAL = float(os.getenv("FLEETWATCH_HOST_METRICS_INTERVAL", config_data.get("HOST_METRICS_INTERVAL", "30")))

# Gateway protocol timings (seconds). Reconnect is a fixed delay, no backoff.
RPC_TIMEOUT = 10.0
RECONNECT_DELAY = 10.0
FIRST_POLL_DELAY = 0.5

# Per-subscriber event queue bound; an overflowing subscriber is dropped
SUBSCRIBER_QUEUE_SIZE = int(os.getenv("FLEETWATCH_SUBSCRIBER_QUEUE", config_data.get("SUBSCRIBER_QUEUE_SIZE", "256")))

# Handshake identity sent in the connect request
PROTOCOL_VERSION = 3
CLIENT_ID = "fleetwatch-probe"
CLIENT_VERSION = __version__
CLIENT_MODE = "backend"

# The six RPCs issued per connected gateway on every poll round
POLL_METHODS = (
    ("health", {}),
    ("sessions.list", {"activeMinutes": 1440, "limit": 50}),
    ("usage.cost", {"days": 7}),
    ("last-heartbeat", {}),
    ("channels.status", {}),
    ("cron.list", {}),
)


class ConfigError(Exception):
    """Raised when the agents file cannot be read or is structurally invalid."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid agents config {path}: {reason}")


def _agent_from_dict(path: str, index: int, raw: Any) -> LogicalAgent:
    if not isinstance(raw, dict):
        raise ConfigError(path, f"agents[{index}] is not an object")
    missing = [k for k in ("id", "host", "port", "token") if raw.get(k) in (None, "")]
    if missing:
        raise ConfigError(path, f"agents[{index}] missing {', '.join(missing)}")
    try:
        port = int(raw["port"])
    except (TypeError, ValueError):
        raise ConfigError(path, f"agents[{index}] has non-numeric port {raw['port']!r}")
    agent_id = str(raw["id"])
    return LogicalAgent(
        id=agent_id,
        gateway_agent_id=str(raw.get("gatewayAgentId") or agent_id),
        name=raw.get("name") or agent_id,
        emoji=raw.get("emoji"),
        host=str(raw["host"]),
        port=port,
        token=str(raw["token"]),
        workspace=raw.get("workspace"),
        machine=raw.get("machine"),
    )


def _interval_seconds(path: str, data: dict, name: str, default: float) -> float:
    value = data.get(name)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise ConfigError(path, f"{name} must be a positive number of milliseconds, got {value!r}")
    return value / 1000


def parse_fleet_config(data: Any, path: str = "<memory>") -> FleetConfig:
    """Build a FleetConfig from the decoded agents file."""
    if not isinstance(data, dict) or not isinstance(data.get("agents"), list):
        raise ConfigError(path, "expected an object with an 'agents' list")
    agents = [_agent_from_dict(path, i, raw) for i, raw in enumerate(data["agents"])]

    seen = set()
    for agent in agents:
        if agent.id in seen:
            raise ConfigError(path, f"duplicate agent id '{agent.id}'")
        seen.add(agent.id)

    return FleetConfig(
        agents=agents,
        poll_interval=_interval_seconds(path, data, "pollIntervalMs", POLL_INTERVAL),
        host_metrics_interval=_interval_seconds(path, data, "hostMetricsIntervalMs", HOST_METRICS_INTERVAL),
    )


def load_fleet_config(path: str | os.PathLike) -> FleetConfig:
    """Read and validate the agents file. Raises ConfigError."""
    path = str(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(path, f"cannot read file ({e.strerror or e})")
    except json.JSONDecodeError as e:
        raise ConfigError(path, f"invalid JSON ({e.msg} at line {e.lineno})")
    return parse_fleet_config(data, path)


def save_fleet_config(path: str | os.PathLike, data: dict) -> None:
    config_file = Path(path)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
