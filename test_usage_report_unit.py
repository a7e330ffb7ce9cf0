"""
Unit tests for the archive-wide usage report (totals, breakdowns, range filter).
"""
import os
import time
from datetime import datetime, timedelta, timezone

import pytest

from fleetwatch.archive.usage import get_usage_report, parse_range


def _iso(days_ago: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days_ago)).isoformat().replace("+00:00", "Z")


def _day(ts: str) -> str:
    return datetime.fromisoformat(ts.replace("Z", "+00:00")).date().isoformat()


@pytest.fixture
def usage_archive(archive, make_message):
    recent = _iso(1)
    archive.write_transcript("alice", "s1.jsonl", [
        {"type": "model_change", "modelId": "anthropic/claude-sonnet"},
        make_message("user", recent, input_tokens=0),
        make_message("assistant", recent, cost=0.30, input_tokens=100, output_tokens=50, cache_read=300),
        make_message("assistant", _iso(10), cost=5.00, input_tokens=1000),
    ])
    archive.write_transcript("alice", "s2.deleted.2026-01-01.jsonl", [
        make_message("assistant", recent, cost=99.0),
    ])
    archive.write_transcript("bob", "b1.jsonl", [
        {"type": "model_change", "modelId": "openai/gpt-5"},
        make_message("user", recent),
        make_message("assistant", recent, cost=0.10, input_tokens=100, output_tokens=10),
    ])
    return archive, recent


class TestParseRange:
    def test_values(self):
        assert parse_range("7") == 7.0
        assert parse_range("0.5") == 0.5
        assert parse_range("all") is None

    @pytest.mark.parametrize("bad", ["", "week", "-3", "0", "inf", "nan", "1e308"])
    def test_invalid(self, bad):
        with pytest.raises(ValueError):
            parse_range(bad)


def test_report_last_week(usage_archive):
    archive, recent = usage_archive
    report = get_usage_report(archive.root, "7")

    assert report["range"] == "7"
    assert report["agentFilter"] == "all"
    assert report["totalCost"] == 0.4
    assert report["inputTokens"] == 200
    assert report["outputTokens"] == 60
    assert report["cacheReadTokens"] == 300
    assert report["totalTokens"] == 560
    assert report["apiCalls"] == 2
    assert report["avgTokensPerCall"] == 280
    assert report["cacheHitRate"] == 60.0

    assert [a["agentId"] for a in report["byAgent"]] == ["alice", "bob"]
    assert [m["model"] for m in report["byModel"]] == ["claude-sonnet", "gpt-5"]
    assert [d["date"] for d in report["overTime"]] == [_day(recent)]
    assert [s["sessionId"] for s in report["topSessions"]] == ["s1", "b1"]


def test_report_all_time_includes_old_messages(usage_archive):
    archive, _ = usage_archive
    report = get_usage_report(archive.root, "all")
    assert report["totalCost"] == 5.4
    assert len(report["overTime"]) == 2


def test_deleted_transcripts_ignored(usage_archive):
    archive, _ = usage_archive
    report = get_usage_report(archive.root, "all")
    assert all(s["cost"] < 99 for s in report["topSessions"])


def test_agent_filter(usage_archive):
    archive, _ = usage_archive
    report = get_usage_report(archive.root, "7", agent_filter="bob")
    assert report["agentFilter"] == "bob"
    assert report["totalCost"] == 0.1
    assert [a["agentId"] for a in report["byAgent"]] == ["bob"]


def test_old_files_skipped_by_mtime(archive, make_message):
    path = archive.write_transcript("alice", "old.jsonl", [make_message("assistant", None, cost=1.0)])
    old = time.time() - 30 * 86400
    os.utime(path, (old, old))
    assert get_usage_report(archive.root, "7")["totalCost"] == 0
    assert get_usage_report(archive.root, "all")["totalCost"] == 1.0


def test_empty_archive(tmp_path):
    report = get_usage_report(tmp_path / "missing", "7")
    assert report["totalCost"] == 0
    assert report["apiCalls"] == 0
    assert report["cacheHitRate"] == 0
    assert report["avgTokensPerCall"] == 0
    assert report["byAgent"] == []
    assert report["topSessions"] == []
