"""
Cost and token usage report across every transcript in the archive.

Unlike the delegation view this reads transcript files directly (not through
sessions.json), so sessions that were dropped from the index still count.
Deleted and archived transcripts (`*.deleted.*`, `*.archived.*`) are ignored.
"""
import math
import time
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fleetwatch.archive.index import list_agent_ids, sessions_dir
from fleetwatch.archive.transcript import iter_messages, short_model


TOP_SESSIONS = 20


def _bucket() -> dict:
    return {"cost": 0.0, "tokens": 0, "inputTokens": 0, "outputTokens": 0, "cacheReadTokens": 0, "cacheWriteTokens": 0}


def _add(bucket: dict, usage) -> None:
    bucket["cost"] += usage.cost
    bucket["tokens"] += usage.tokens
    bucket["inputTokens"] += usage.input
    bucket["outputTokens"] += usage.output
    bucket["cacheReadTokens"] += usage.cache_read
    bucket["cacheWriteTokens"] += usage.cache_write


def _transcripts(agent_sessions_dir: Path) -> list[Path]:
    try:
        return sorted(
            p for p in agent_sessions_dir.iterdir()
            if p.name.endswith(".jsonl") and ".deleted." not in p.name and ".archived." not in p.name
        )
    except OSError:
        return []


def parse_range(range_str: str) -> Optional[float]:
    """'7' -> 7.0 days, 'all' -> None. Raises ValueError on anything else."""
    if range_str == "all":
        return None
    days = float(range_str)
    if days <= 0 or not math.isfinite(days * 86400000):
        raise ValueError(f"range must be positive, got {range_str!r}")
    return days


def get_usage_report(agents_dir: Path, range_str: str = "7", agent_filter: str = "all", now_ms: Optional[int] = None) -> dict:
    days = parse_range(range_str)
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    cutoff = now_ms - int(days * 86400000) if days is not None else None

    totals = _bucket()
    api_calls = 0
    by_agent: dict[str, dict] = defaultdict(_bucket)
    by_date: dict[str, dict] = defaultdict(_bucket)
    by_model: dict[str, dict] = defaultdict(_bucket)
    sessions = []

    agent_ids = list_agent_ids(agents_dir)
    if agent_filter != "all":
        agent_ids = [a for a in agent_ids if a == agent_filter]

    for agent_id in agent_ids:
        for path in _transcripts(sessions_dir(agents_dir, agent_id)):
            try:
                if cutoff is not None and path.stat().st_mtime * 1000 < cutoff:
                    continue
            except OSError:
                continue

            session = _bucket()
            for rec in iter_messages(path, cutoff):
                _add(session, rec.usage)
                if rec.role == "user":
                    api_calls += 1
                if rec.ts_ms is not None:
                    day = datetime.fromtimestamp(rec.ts_ms / 1000, tz=timezone.utc).date().isoformat()
                    _add(by_date[day], rec.usage)
                if rec.model:
                    _add(by_model[short_model(rec.model)], rec.usage)

            for key, value in session.items():
                totals[key] += value
            agent_bucket = by_agent[agent_id]
            for key, value in session.items():
                agent_bucket[key] += value
            if session["cost"] > 0 or session["tokens"] > 0:
                sessions.append({
                    "agentId": agent_id,
                    "sessionId": path.name[: -len(".jsonl")],
                    "cost": session["cost"],
                    "tokens": session["tokens"],
                })

    input_tokens = totals["inputTokens"]
    cache_read = totals["cacheReadTokens"]
    cache_hit_rate = cache_read / (input_tokens + cache_read) * 100 if input_tokens > 0 else 0
    avg_per_call = round(totals["tokens"] / api_calls) if api_calls > 0 else 0

    return {
        "range": range_str,
        "agentFilter": agent_filter,
        "totalCost": round(totals["cost"], 4),
        "totalTokens": totals["tokens"],
        "inputTokens": input_tokens,
        "outputTokens": totals["outputTokens"],
        "cacheReadTokens": cache_read,
        "cacheWriteTokens": totals["cacheWriteTokens"],
        "apiCalls": api_calls,
        "cacheHitRate": round(cache_hit_rate, 1),
        "avgTokensPerCall": avg_per_call,
        "byAgent": sorted(({"agentId": a, **b} for a, b in by_agent.items()), key=lambda x: x["cost"], reverse=True),
        "overTime": sorted(({"date": d, **b} for d, b in by_date.items()), key=lambda x: x["date"]),
        "byModel": sorted(({"model": m, **b} for m, b in by_model.items()), key=lambda x: x["tokens"], reverse=True),
        "topSessions": sorted(sessions, key=lambda s: s["cost"], reverse=True)[:TOP_SESSIONS],
    }
