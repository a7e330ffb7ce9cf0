"""
HTTP API tests using FastAPI's TestClient.
The collector is never started: no gateway connections are made.
"""
import pytest
from fastapi.testclient import TestClient

from fleetwatch.collector import Collector
from fleetwatch.main import create_app
from fleetwatch.models import HostMetrics


def _metrics():
    return HostMetrics(ts=1, hostname="api-host", load_avg=[1.0, 1.0, 1.0],
                       memory={"total": 1, "used": 1, "available": 0}, disk={"total": 1, "used": 1}, uptime=1)


@pytest.fixture
def client(archive, make_agent, make_fleet, make_message):
    archive.add_session("alice", "agent:alice:main", "m1", [
        make_message("user", "2026-01-01T00:00:00Z"),
        make_message("assistant", "2026-01-01T00:00:03Z", cost=0.25, input_tokens=10),
    ], updated_at=10)
    archive.add_session("alice", "agent:alice:subagent:1", "s1", [
        make_message("assistant", "2026-01-01T00:00:04Z", cost=0.05),
    ], updated_at=20)

    collector = Collector(metrics_reader=_metrics)
    collector.load_config(make_fleet(make_agent("alice", name="Alice", emoji="🦊"), make_agent("bob")))
    collector.collect_host_metrics()
    app = create_app(collector=collector, agents_dir=archive.root, start_collector=False)
    with TestClient(app) as c:
        yield c


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "FleetWatch", "agents": 2}


def test_snapshot(client):
    data = client.get("/api/snapshot").json()
    assert set(data["agents"]) == {"alice", "bob"}
    assert data["host"]["hostname"] == "api-host"
    assert data["ts"] >= 1


def test_agents(client):
    agents = client.get("/api/agents").json()
    assert agents["alice"]["emoji"] == "🦊"
    assert agents["bob"]["online"] is False


def test_agent_by_id(client):
    resp = client.get("/api/agents/alice")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Alice"
    assert client.get("/api/agents/nobody").status_code == 404


def test_host(client):
    assert client.get("/api/host").json()["loadAvg"] == [1.0, 1.0, 1.0]


def test_sessions(client):
    sessions = client.get("/api/sessions").json()
    assert [s["key"] for s in sessions] == ["agent:alice:subagent:1", "agent:alice:main"]
    assert sessions[0]["agentName"] == "Alice"


def test_session_trace(client):
    resp = client.get("/api/session/agent:alice:main/trace")
    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"]["messageCount"] == 2
    assert body["summary"]["totalDuration"] == 3000
    assert client.get("/api/session/agent:alice:nope/trace").status_code == 404


def test_traces(client):
    body = client.get("/api/traces").json()
    assert len(body["traces"]) == 1
    root = body["traces"][0]
    assert root["agentEmoji"] == "🦊"
    assert [c["key"] for c in root["children"]] == ["agent:alice:subagent:1"]
    assert body["summary"]["totalCost"] == 0.3


def test_analytics_all_time(client):
    body = client.get("/api/analytics", params={"range": "all"}).json()
    assert body["totalCost"] == 0.3
    assert body["apiCalls"] == 1


def test_analytics_bad_range(client):
    assert client.get("/api/analytics", params={"range": "forever"}).status_code == 400
    assert client.get("/api/analytics", params={"range": "inf"}).status_code == 400


@pytest.mark.parametrize("days", ["inf", "nan", "-1", "0"])
def test_traces_bad_days(client, days):
    assert client.get("/api/traces", params={"days": days}).status_code == 400


def test_traces_with_days(client):
    assert client.get("/api/traces", params={"days": "30"}).status_code == 200


def test_reload_without_config_file(client):
    resp = client.post("/api/reload")
    assert resp.status_code == 200
    assert resp.json() == {"ok": False, "agents": 2, "gateways": 1}


def test_gateways(client):
    gateways = client.get("/api/gateways").json()
    assert len(gateways) == 1
    assert gateways[0]["agents"] == ["alice", "bob"]
    assert gateways[0]["state"] == "disconnected"
    assert gateways[0]["rawData"] == {}


def test_agent_detail_without_workspace(client):
    resp = client.get("/api/agents/bob/detail")
    assert resp.status_code == 200
    body = resp.json()
    assert body["id"] == "bob"
    assert "token" not in body["config"]
    assert body["workspace"]["path"] is None
    assert body["workspace"]["soul"] is None
    assert body["skills"] == []
    assert body["live"]["online"] is False
    assert client.get("/api/agents/nobody/detail").status_code == 404


def test_agent_detail_reads_workspace(tmp_path, archive, make_agent, make_fleet):
    workspace = tmp_path / "ws"
    workspace.mkdir()
    (workspace / "SOUL.md").write_text("# Carol\n", encoding="utf-8")
    collector = Collector(metrics_reader=_metrics)
    collector.load_config(make_fleet(make_agent("carol", workspace=str(workspace))))
    app = create_app(collector=collector, agents_dir=archive.root, start_collector=False)
    with TestClient(app) as c:
        body = c.get("/api/agents/carol/detail").json()
    assert body["workspace"]["path"] == str(workspace)
    assert body["workspace"]["soul"] == "# Carol\n"
    assert body["workspace"]["tasks"] is None
