"""
Unit tests for host metrics sampling and the poll scheduler.
"""
import asyncio
from collections import namedtuple

import psutil
import pytest

import fleetwatch.collector.host_metrics as host_mod
from fleetwatch.collector import Collector
from fleetwatch.collector.host_metrics import read_host_metrics
from fleetwatch.collector.scheduler import PollScheduler

_VMem = namedtuple("_VMem", "total available used")
_Disk = namedtuple("_Disk", "total used")


def test_read_host_metrics_live():
    data = read_host_metrics().to_dict()
    assert data["memory"]["total"] > 0
    assert data["memory"]["total"] >= data["memory"]["available"]
    assert data["disk"]["total"] > 0
    assert data["uptime"] >= 0
    assert len(data["loadAvg"]) == 3
    assert data["hostname"]


def test_read_host_metrics_from_psutil(monkeypatch):
    monkeypatch.setattr(host_mod.psutil, "getloadavg", lambda: (0.123, 0.5, 1.0))
    monkeypatch.setattr(host_mod.psutil, "virtual_memory", lambda: _VMem(total=2048, available=512, used=1536))
    monkeypatch.setattr(host_mod.psutil, "disk_usage", lambda path: _Disk(total=100, used=40))
    monkeypatch.setattr(host_mod.psutil, "boot_time", lambda: 1000.0)
    monkeypatch.setattr(host_mod.time, "time", lambda: 4600.5)

    data = read_host_metrics(disk_path="/data").to_dict()
    assert data["loadAvg"] == [0.12, 0.5, 1.0]
    assert data["memory"] == {"total": 2048, "used": 1536, "available": 512}
    assert data["disk"] == {"total": 100, "used": 40}
    assert data["uptime"] == 3600
    assert data["ts"] == 4600500


def test_psutil_failure_keeps_previous_sample(monkeypatch, make_agent, make_fleet):
    c = Collector()
    c.load_config(make_fleet(make_agent("alice")))
    c.collect_host_metrics()
    previous = c.host_metrics
    assert previous["hostname"]

    def denied():
        raise psutil.AccessDenied()

    monkeypatch.setattr(host_mod.psutil, "virtual_memory", denied)
    c.collect_host_metrics()
    assert c.host_metrics is previous


@pytest.mark.asyncio
async def test_scheduler_survives_failing_cycle():
    polls = []
    samples = []

    def poll_round():
        polls.append(1)
        if len(polls) == 1:
            raise RuntimeError("boom")

    scheduler = PollScheduler(poll_round, lambda: samples.append(1), poll_interval=0.02, host_metrics_interval=10)
    scheduler.start()
    try:
        await asyncio.sleep(0.15)
    finally:
        await scheduler.stop()

    # Host metrics fire once immediately, agent polls keep going after the failure
    assert samples == [1]
    assert len(polls) >= 3
    assert not scheduler.running
