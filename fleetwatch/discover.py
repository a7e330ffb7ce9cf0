"""
Auto-discovery of agents from the local gateway config (~/.openclaw/openclaw.json).

Used when no agents file exists yet. Reads the loopback port and auth token of
the gateway, the agent list with their workspaces, and picks up a display name
from SOUL.md and an emoji from IDENTITY.md when the workspace has them.
"""
import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

from fleetwatch.config import HOST_METRICS_INTERVAL, OPENCLAW_DIR, POLL_INTERVAL

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_PORT = 18789
DEFAULT_EMOJI = "🤖"

_NAME_RE = re.compile(r"You are (\w+)", re.IGNORECASE)
_EMOJI_RE = re.compile(r"\*\*Emoji:\*\*\s*(.+)")


def _empty_result() -> dict:
    return {
        "agents": [],
        "pollIntervalMs": int(POLL_INTERVAL * 1000),
        "hostMetricsIntervalMs": int(HOST_METRICS_INTERVAL * 1000),
    }


def _read_head(path: Path, limit: int = 500) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read(limit)
    except OSError:
        return None


def _name_from_soul(workspace: Path) -> Optional[str]:
    soul = _read_head(workspace / "SOUL.md")
    m = _NAME_RE.search(soul) if soul else None
    return m.group(1) if m else None


def _emoji_from_identity(workspace: Path) -> Optional[str]:
    identity = _read_head(workspace / "IDENTITY.md")
    m = _EMOJI_RE.search(identity) if identity else None
    if not m:
        return None
    emoji = m.group(1).strip()
    # Template placeholders look like "*(pick one)*"
    if emoji and len(emoji) <= 4 and not emoji.startswith("*"):
        return emoji
    return None


def _dig(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def discover_agents(openclaw_dir: Optional[Path] = None) -> dict:
    """Build an agents-file dict from the local gateway config. Never raises."""
    openclaw_dir = Path(openclaw_dir or OPENCLAW_DIR)
    config_path = openclaw_dir / "openclaw.json"
    if not config_path.exists():
        logger.info(f"No {config_path} found; create the agents file manually")
        return _empty_result()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return _empty_result()

    port = _dig(config, "gateway", "loopback", "port") or DEFAULT_GATEWAY_PORT
    token = _dig(config, "gateway", "auth", "token") or ""
    if not token:
        logger.warning("No gateway auth token found in config")
        return _empty_result()
    logger.info(f"Gateway: 127.0.0.1:{port}")

    agents_config = config.get("agents") if isinstance(config.get("agents"), dict) else {}
    default_workspace = Path(_dig(agents_config, "defaults", "workspace") or Path.home() / "clawd").expanduser()
    # Older gateway versions keep the list under "agents", newer under "list"
    agent_list = agents_config.get("agents") or agents_config.get("list") or []

    discovered = []
    for agent_cfg in agent_list:
        if not isinstance(agent_cfg, dict) or not agent_cfg.get("id"):
            continue
        agent_id = str(agent_cfg["id"])
        workspace = Path(agent_cfg.get("workspace") or default_workspace).expanduser()
        name = _name_from_soul(workspace) or agent_cfg.get("name") or agent_id.capitalize()
        emoji = _emoji_from_identity(workspace) or DEFAULT_EMOJI
        discovered.append({
            "id": agent_id,
            "gatewayAgentId": agent_id,
            "name": name,
            "emoji": emoji,
            "host": "127.0.0.1",
            "port": port,
            "token": token,
            "workspace": str(workspace),
        })
        logger.info(f"  {emoji} {name} ({agent_id}) -> {workspace}")

    if not discovered:
        # Fall back to one agent per archive directory
        agents_dir = openclaw_dir / "agents"
        try:
            subdirs = sorted(p.name for p in agents_dir.iterdir() if p.is_dir())
        except OSError:
            subdirs = []
        for agent_id in subdirs:
            workspace = default_workspace if agent_id == "main" else default_workspace.parent / "clawd-agents" / agent_id
            discovered.append({
                "id": agent_id,
                "gatewayAgentId": agent_id,
                "name": agent_id.capitalize(),
                "emoji": DEFAULT_EMOJI,
                "host": "127.0.0.1",
                "port": port,
                "token": token,
                "workspace": str(workspace),
            })
            logger.info(f"  {DEFAULT_EMOJI} {agent_id} (directory scan)")

    logger.info(f"Discovered {len(discovered)} agent(s)")
    result = _empty_result()
    result["agents"] = discovered
    return result
