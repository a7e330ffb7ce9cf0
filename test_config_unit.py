"""
Unit tests for agents-file parsing and local agent discovery.
"""
import json

import pytest

import fleetwatch.config as config_mod
from fleetwatch.config import ConfigError, load_fleet_config, parse_fleet_config, save_fleet_config
from fleetwatch.discover import discover_agents


def _agent(**overrides):
    data = {"id": "alice", "host": "127.0.0.1", "port": 18789, "token": "t0k3n-abcdefgh"}
    data.update(overrides)
    return data


# ─────────────────────────────────────────────
# parse_fleet_config / load_fleet_config
# ─────────────────────────────────────────────

class TestParseFleetConfig:
    def test_minimal_agent_defaults(self):
        fleet = parse_fleet_config({"agents": [_agent()]})
        agent = fleet.agents[0]
        assert agent.id == "alice"
        assert agent.gateway_agent_id == "alice"
        assert agent.name == "alice"
        assert agent.emoji is None
        assert fleet.poll_interval == config_mod.POLL_INTERVAL
        assert fleet.host_metrics_interval == config_mod.HOST_METRICS_INTERVAL

    def test_full_agent(self):
        fleet = parse_fleet_config({
            "agents": [_agent(id="a-prod", gatewayAgentId="main", name="Alice", emoji="🦊", machine="m1", port="19000")],
            "pollIntervalMs": 5000,
            "hostMetricsIntervalMs": 60000,
        })
        agent = fleet.agents[0]
        assert agent.gateway_agent_id == "main"
        assert agent.port == 19000
        assert agent.machine == "m1"
        assert fleet.poll_interval == 5
        assert fleet.host_metrics_interval == 60

    def test_missing_required_field(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_fleet_config({"agents": [_agent(token="")]}, path="agents.json")
        assert exc_info.value.path == "agents.json"
        assert "token" in exc_info.value.reason

    def test_duplicate_ids(self):
        with pytest.raises(ConfigError, match="duplicate"):
            parse_fleet_config({"agents": [_agent(), _agent(host="10.0.0.2")]})

    def test_bad_port(self):
        with pytest.raises(ConfigError, match="port"):
            parse_fleet_config({"agents": [_agent(port="http")]})

    @pytest.mark.parametrize("field", ["pollIntervalMs", "hostMetricsIntervalMs"])
    @pytest.mark.parametrize("value", ["15000", -5, 0, True, float("nan"), float("inf")])
    def test_bad_interval(self, field, value):
        with pytest.raises(ConfigError, match=field):
            parse_fleet_config({"agents": [_agent()], field: value})

    def test_interval_accepts_float_ms(self):
        fleet = parse_fleet_config({"agents": [_agent()], "pollIntervalMs": 2500.0})
        assert fleet.poll_interval == 2.5

    @pytest.mark.parametrize("data", [[], {"agents": {}}, {"agents": ["alice"]}, None])
    def test_wrong_shape(self, data):
        with pytest.raises(ConfigError):
            parse_fleet_config(data)


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="cannot read"):
        load_fleet_config(tmp_path / "nope.json")


def test_load_invalid_json(tmp_path):
    path = tmp_path / "agents.json"
    path.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid JSON"):
        load_fleet_config(path)


def test_save_then_load(tmp_path):
    path = tmp_path / "nested" / "agents.json"
    save_fleet_config(path, {"agents": [_agent(emoji="🦊")]})
    fleet = load_fleet_config(path)
    assert fleet.agents[0].emoji == "🦊"


# ─────────────────────────────────────────────
# discover_agents
# ─────────────────────────────────────────────

def _write_openclaw(root, config):
    root.mkdir(parents=True, exist_ok=True)
    (root / "openclaw.json").write_text(json.dumps(config), encoding="utf-8")


def test_discover_from_agent_list(tmp_path):
    ws = tmp_path / "ws-nova"
    ws.mkdir()
    (ws / "SOUL.md").write_text("# Soul\nYou are Nova, a careful assistant.\n", encoding="utf-8")
    (ws / "IDENTITY.md").write_text("- **Emoji:** 🦊\n", encoding="utf-8")
    plain = tmp_path / "ws-plain"
    plain.mkdir()
    (plain / "IDENTITY.md").write_text("- **Emoji:** *(pick something)*\n", encoding="utf-8")

    openclaw = tmp_path / ".openclaw"
    _write_openclaw(openclaw, {
        "gateway": {"loopback": {"port": 19001}, "auth": {"token": "secret-token"}},
        "agents": {"list": [
            {"id": "main", "workspace": str(ws)},
            {"id": "scout", "name": "Scout", "workspace": str(plain)},
            {"name": "no id, skipped"},
        ]},
    })

    result = discover_agents(openclaw)
    agents = result["agents"]
    assert [a["id"] for a in agents] == ["main", "scout"]
    assert agents[0]["name"] == "Nova"
    assert agents[0]["emoji"] == "🦊"
    assert agents[1]["name"] == "Scout"
    assert agents[1]["emoji"] == "🤖"
    assert all(a["port"] == 19001 and a["token"] == "secret-token" for a in agents)
    # The discovered file must be loadable as-is
    assert [a.id for a in parse_fleet_config(result).agents] == ["main", "scout"]


def test_discover_falls_back_to_directory_scan(tmp_path):
    openclaw = tmp_path / ".openclaw"
    _write_openclaw(openclaw, {"gateway": {"auth": {"token": "tok"}}})
    (openclaw / "agents" / "main").mkdir(parents=True)
    (openclaw / "agents" / "helper").mkdir(parents=True)

    agents = discover_agents(openclaw)["agents"]
    assert [a["id"] for a in agents] == ["helper", "main"]
    assert agents[0]["name"] == "Helper"
    assert agents[0]["port"] == 18789


def test_discover_without_token(tmp_path):
    openclaw = tmp_path / ".openclaw"
    _write_openclaw(openclaw, {"gateway": {"loopback": {"port": 1}}})
    assert discover_agents(openclaw)["agents"] == []


def test_discover_without_config(tmp_path):
    result = discover_agents(tmp_path / "missing")
    assert result["agents"] == []
    assert result["pollIntervalMs"] == int(config_mod.POLL_INTERVAL * 1000)
