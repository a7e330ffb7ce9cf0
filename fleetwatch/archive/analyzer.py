"""
Session archive queries: session listing, per-session waterfall traces and
parent/child delegation forests.

Every call rescans the archive; nothing is cached between calls and nothing is
shared with the live collector. Unreadable files and malformed lines are
skipped, and a missing archive yields empty results.
"""
import logging
import math
from pathlib import Path
from typing import Mapping, Optional

from fleetwatch.archive.index import IndexEntry, find_entry, iter_index
from fleetwatch.archive.transcript import iter_messages, short_model, summarize_transcript
from fleetwatch.models import DelegationNode, SessionRecord

logger = logging.getLogger(__name__)

# agent id -> {"name": ..., "emoji": ...}; usually built from the collector snapshot
AgentInfo = Mapping[str, Mapping[str, Optional[str]]]

DEFAULT_EMOJI = "🤖"


def _agent_meta(agent_info: Optional[AgentInfo], agent_id: str) -> tuple[str, str]:
    info = (agent_info or {}).get(agent_id) or {}
    return info.get("name") or agent_id, info.get("emoji") or DEFAULT_EMOJI


# ─────────────────────────────────────────────
# Session listing
# ─────────────────────────────────────────────

def list_sessions(agents_dir: Path, agent_info: Optional[AgentInfo] = None) -> list[dict]:
    sessions = []
    for entry in iter_index(agents_dir):
        name, emoji = _agent_meta(agent_info, entry.agent_id)
        sessions.append({
            "key": entry.key,
            "agentId": entry.agent_id,
            "agentName": name,
            "agentEmoji": emoji,
            "sessionId": entry.session_id,
            "displayName": entry.display_name or entry.key.split(":")[-1] or entry.key,
            "updatedAt": entry.updated_at,
            "sessionFile": str(entry.transcript_path),
        })
    sessions.sort(key=lambda s: s["updatedAt"] or 0, reverse=True)
    return sessions


# ─────────────────────────────────────────────
# Waterfall trace for one session
# ─────────────────────────────────────────────

def _content_summary(content) -> dict:
    text = ""
    tool_calls = []
    has_thinking = False
    content_types = []
    for item in content if isinstance(content, list) else []:
        if not isinstance(item, dict):
            continue
        kind = item.get("type")
        if kind == "text":
            text += item.get("text") or ""
        elif kind == "toolCall":
            tool_calls.append({"name": item.get("name"), "arguments": item.get("arguments"), "id": item.get("id")})
            if "toolCall" not in content_types:
                content_types.append("toolCall")
        elif kind == "thinking":
            has_thinking = True
            if "thinking" not in content_types:
                content_types.append("thinking")
    if text and "text" not in content_types:
        content_types.append("text")
    return {"text": text, "toolCalls": tool_calls, "hasThinking": has_thinking, "contentTypes": content_types}


def get_session_trace(session_key: str, agents_dir: Path) -> Optional[dict]:
    """Per-message timeline of one session, or None when the key or transcript is unknown."""
    entry = find_entry(agents_dir, session_key)
    if entry is None or not entry.transcript_path.is_file():
        return None

    trace = []
    total_cost = 0.0
    total_tokens = total_input = total_output = total_cache = 0
    for rec in iter_messages(entry.transcript_path):
        summary = _content_summary(rec.message.get("content"))
        u = rec.usage
        total_cost += u.cost
        total_tokens += u.tokens
        total_input += u.input
        total_output += u.output
        total_cache += u.cache_read
        trace.append({
            "timestamp": rec.timestamp,
            "role": rec.role,
            "contentTypes": summary["contentTypes"],
            "toolCalls": summary["toolCalls"],
            "hasThinking": summary["hasThinking"],
            "textPreview": summary["text"][:200],
            "fullText": summary["text"],
            "model": short_model(rec.model),
            "stopReason": rec.message.get("stopReason") or "",
            "usage": {"input": u.input, "output": u.output, "cacheRead": u.cache_read, "total": u.tokens},
            "cost": u.cost,
            "_ts": rec.ts_ms,
        })

    # Duration of a step is the gap to the next message; the last one has none
    for current, following in zip(trace, trace[1:]):
        if current["_ts"] is not None and following["_ts"] is not None:
            current["duration"] = following["_ts"] - current["_ts"]
        else:
            current["duration"] = 0
    if trace:
        trace[-1]["duration"] = 0

    start = (trace[0]["_ts"] or 0) if trace else 0
    end = (trace[-1]["_ts"] or 0) if trace else 0
    for step in trace:
        del step["_ts"]

    return {
        "sessionKey": session_key,
        "agentId": entry.agent_id,
        "trace": trace,
        "summary": {
            "totalCost": total_cost,
            "totalTokens": total_tokens,
            "totalInput": total_input,
            "totalOutput": total_output,
            "totalCacheRead": total_cache,
            "messageCount": len(trace),
            "totalDuration": end - start,
            "startTime": start,
            "endTime": end,
        },
    }


# ─────────────────────────────────────────────
# Delegation forest
# ─────────────────────────────────────────────

def parent_key_for(key: str) -> Optional[str]:
    """`agent:<id>:subagent:<n>` -> `agent:<id>:main`; None for keys without a subagent segment."""
    if ":subagent:" not in key:
        return None
    parts = key.split(":")
    if len(parts) < 4:
        return None
    return f"{parts[0]}:{parts[1]}:main"


def is_root_key(key: str) -> bool:
    return key.endswith(":main") or ":subagent:" not in key


def build_session_record(entry: IndexEntry, since_ms: Optional[int] = None, agent_info: Optional[AgentInfo] = None) -> SessionRecord:
    totals = summarize_transcript(entry.transcript_path, since_ms)
    name, emoji = _agent_meta(agent_info, entry.agent_id)
    root = is_root_key(entry.key)
    return SessionRecord(
        key=entry.key,
        agent_id=entry.agent_id,
        session_id=entry.session_id,
        label=entry.label,
        model=short_model(totals.model),
        cost=totals.cost,
        tokens=totals.tokens,
        message_count=totals.user_messages,
        start_time=totals.start_ts,
        end_time=totals.end_ts,
        updated_at=entry.updated_at,
        is_main=root,
        parent_key=None if root else parent_key_for(entry.key),
        agent_name=name,
        agent_emoji=emoji,
    )


def build_forest(records: list[SessionRecord]) -> list[DelegationNode]:
    """Attach subagent sessions to their parent; roots sorted most recently updated first."""
    nodes = {r.key: DelegationNode(session=r) for r in records}
    roots = []
    for node in nodes.values():
        s = node.session
        parent = nodes.get(s.parent_key) if not s.is_main and s.parent_key else None
        if parent is not None and parent is not node:
            parent.children.append(node)
        else:
            # Mains, and subagents whose parent is missing (orphans)
            roots.append(node)
    roots.sort(key=lambda n: n.session.updated_at or 0, reverse=True)
    return roots


def summarize_forest(roots: list[DelegationNode], total_sessions: int) -> dict:
    total_subagents = 0
    total_cost = 0.0
    max_depth = 0
    stack = [(root, 1) for root in roots]
    while stack:
        node, depth = stack.pop()
        max_depth = max(max_depth, depth)
        total_cost += node.session.cost
        if not node.session.is_main:
            total_subagents += 1
        stack.extend((child, depth + 1) for child in node.children)
    return {
        "totalSessions": total_sessions,
        "totalSubagents": total_subagents,
        "totalCost": round(total_cost, 4),
        "maxDepth": max_depth,
    }


def get_delegation_traces(
    agents_dir: Path,
    since_ms: Optional[int] = None,
    agent_info: Optional[AgentInfo] = None,
) -> dict:
    """
    Rebuild main -> subagent trees for every agent in the archive.

    `since_ms` excludes messages older than the cutoff from the cost and token
    totals; sessions themselves are always listed.
    """
    records = [build_session_record(e, since_ms, agent_info) for e in iter_index(agents_dir)]
    # sessions.json keys are unique per agent, and keys embed the agent id
    unique = list({r.key: r for r in records}.values())
    roots = build_forest(unique)
    return {
        "traces": [root.to_dict() for root in roots],
        "summary": summarize_forest(roots, len(unique)),
    }


def days_to_cutoff(days: Optional[float], now_ms: int) -> Optional[int]:
    """Epoch-ms cutoff `days` before `now_ms`. Raises ValueError unless days is finite and positive."""
    if days is None:
        return None
    if days <= 0 or not math.isfinite(days * 86400000):
        raise ValueError(f"days must be a positive number, got {days!r}")
    return now_ms - int(days * 86400000)

