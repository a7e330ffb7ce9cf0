"""
Streaming reader for session transcripts (newline-delimited JSON).

Only two record kinds matter here:
  {"type": "model_change", "modelId": ...}
  {"type": "message", "timestamp": ..., "message": {"role", "content", "usage", "stopReason"}}
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

_MODEL_PREFIXES = ("anthropic/", "openai/")


def short_model(model_id: Optional[str]) -> str:
    if not model_id:
        return "unknown"
    for prefix in _MODEL_PREFIXES:
        model_id = model_id.replace(prefix, "")
    return model_id


def parse_timestamp(value: Any) -> Optional[int]:
    """ISO-8601 string or epoch milliseconds to epoch milliseconds; None if unparseable."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return None


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0
    return value if isinstance(value, (int, float)) else 0


@dataclass
class Usage:
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    cost: float = 0.0

    @property
    def tokens(self) -> int:
        # cacheWrite is reported separately and not part of the token total
        return self.input + self.output + self.cache_read

    @classmethod
    def from_message(cls, message: dict) -> "Usage":
        usage = message.get("usage")
        if not isinstance(usage, dict):
            return cls()
        cost = usage.get("cost")
        return cls(
            input=int(_number(usage.get("input"))),
            output=int(_number(usage.get("output"))),
            cache_read=int(_number(usage.get("cacheRead"))),
            cache_write=int(_number(usage.get("cacheWrite"))),
            cost=float(_number(cost.get("total"))) if isinstance(cost, dict) else 0.0,
        )


@dataclass
class MessageRecord:
    timestamp: Any            # as written in the file
    ts_ms: Optional[int]
    role: Optional[str]
    model: Optional[str]      # model in effect when the message was written
    usage: Usage
    message: dict


def iter_records(path: Path) -> Iterator[dict]:
    """Yield each JSON object line. Malformed lines are skipped; an unreadable file yields nothing."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except ValueError:
                    logger.debug(f"{path}:{lineno}: skipping malformed line")
                    continue
                if isinstance(record, dict):
                    yield record
    except OSError as e:
        logger.debug(f"Skipping unreadable transcript {path}: {e}")


def iter_messages(path: Path, since_ms: Optional[int] = None) -> Iterator[MessageRecord]:
    """
    Yield message records with the model in effect at that point.

    Messages timestamped before `since_ms` are skipped, but the scan goes on:
    later lines may still fall inside the window. Messages without a timestamp
    are always kept.
    """
    model = None
    for record in iter_records(path):
        kind = record.get("type")
        if kind == "model_change":
            if record.get("modelId"):
                model = record["modelId"]
            continue
        if kind != "message":
            continue
        message = record.get("message")
        if not isinstance(message, dict):
            continue
        timestamp = record.get("timestamp") or message.get("timestamp")
        ts_ms = parse_timestamp(timestamp)
        if since_ms is not None and ts_ms is not None and ts_ms < since_ms:
            continue
        yield MessageRecord(
            timestamp=timestamp,
            ts_ms=ts_ms,
            role=message.get("role"),
            model=model,
            usage=Usage.from_message(message),
            message=message,
        )


@dataclass
class TranscriptTotals:
    cost: float = 0.0
    tokens: int = 0
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    user_messages: int = 0
    messages: int = 0
    model: Optional[str] = None
    start_ts: Any = None
    end_ts: Any = None
    _start_ms: Optional[int] = None
    _end_ms: Optional[int] = None

    def add(self, rec: MessageRecord) -> None:
        u = rec.usage
        self.cost += u.cost
        self.tokens += u.tokens
        self.input += u.input
        self.output += u.output
        self.cache_read += u.cache_read
        self.cache_write += u.cache_write
        self.messages += 1
        if rec.role == "user":
            self.user_messages += 1
        if rec.model:
            self.model = rec.model
        if rec.ts_ms is not None:
            if self._start_ms is None or rec.ts_ms < self._start_ms:
                self._start_ms, self.start_ts = rec.ts_ms, rec.timestamp
            if self._end_ms is None or rec.ts_ms > self._end_ms:
                self._end_ms, self.end_ts = rec.ts_ms, rec.timestamp


def summarize_transcript(path: Path, since_ms: Optional[int] = None) -> TranscriptTotals:
    totals = TranscriptTotals()
    for rec in iter_messages(path, since_ms):
        totals.add(rec)
    return totals
