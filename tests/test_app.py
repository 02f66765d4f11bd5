"""
API tests using FastAPI's TestClient.

The client is created without entering its context, so the startup hook
(real network scan, metrics server) does not run; a scheduler with fake
discovery/fetch is bound instead.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

import dashboard_api
from app import app
from averages import ConfigKey
from config import MonitorConfig
from poller import PollScheduler
from scanner import Device


DEVICE = Device("10.0.0.2", "bitaxe-a", "aa:aa")


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def scheduler(make_info):
    s = PollScheduler(
        MonitorConfig(rescan_delay_s=60.0),
        discover=lambda: [DEVICE],
        fetch=lambda ip, t: make_info(hostname="bitaxe-a", hardware_id="aa:aa"),
    )
    s.rescan()
    dashboard_api.set_scheduler(s)
    yield s
    dashboard_api.set_scheduler(None)
    s.stop()


def test_503_without_scheduler(client):
    dashboard_api.set_scheduler(None)
    assert client.get("/api/monitor/devices").status_code == 503


def test_devices(client, scheduler):
    for t in scheduler.poll_once():
        t.join(timeout=5.0)

    body = client.get("/api/monitor/devices").json()

    assert body["count"] == 1
    device = body["devices"][0]
    assert device["address"] == "10.0.0.2"
    assert device["hardwareId"] == "aa:aa"
    assert device["info"]["hash_rate"] == 510.0
    assert device["lastPoll"] is not None


def test_live_averages(client, scheduler):
    for t in scheduler.poll_once():
        t.join(timeout=5.0)

    rows = client.get("/api/monitor/live").json()["averages"]

    assert len(rows) == 1
    assert rows[0]["hardware_id"] == "aa:aa"
    assert rows[0]["sample_count"] == 1
    # reading live averages must not consume them
    assert scheduler.store.sample_count(ConfigKey("aa:aa", 400, 1150)) == 1


def test_persisted_averages(client, scheduler, temp_db):
    scheduler.on_flush = temp_db.upsert_average
    for t in scheduler.poll_once():
        t.join(timeout=5.0)
    scheduler.flush()

    body = client.get("/api/monitor/averages", params={"hardware_id": "AA:AA"}).json()

    assert body["count"] == 1
    assert body["averages"][0]["hostname"] == "bitaxe-a"


def test_rescan_request(client, scheduler):
    assert client.post("/api/monitor/rescan", json={"delay_s": 30}).json()["delayS"] == 30
    assert client.get("/api/monitor/status").json()["rescanPending"] is True


def test_rescan_rejects_bad_delay(client, scheduler):
    assert client.post("/api/monitor/rescan", json={"delay_s": -1}).status_code == 422


def test_status(client, scheduler):
    body = client.get("/api/monitor/status").json()
    assert body["deviceCount"] == 1
    assert body["discoveryCount"] == 1
    assert body["config"]["pollIntervalS"] == 10.0


@patch("dashboard_api.scan_network")
def test_adhoc_scan(mock_scan, client):
    mock_scan.return_value = [DEVICE]

    body = client.post("/api/monitor/scan", json={"cidr": "10.0.0.0/29", "timeout_s": 0.5}).json()

    assert body["count"] == 1
    assert body["found"][0] == {"ip": "10.0.0.2", "hostname": "bitaxe-a", "hardwareId": "aa:aa"}
    mock_scan.assert_called_once_with(networks=["10.0.0.0/29"], timeout_s=0.5, max_hosts=512)


def test_adhoc_scan_limits(client):
    assert client.post("/api/monitor/scan", json={"cidr": "bogus"}).status_code == 400
    assert client.post("/api/monitor/scan", json={"cidr": "10.0.0.0/16", "limit": 256}).status_code == 400
    assert client.post("/api/monitor/scan", json={"cidr": "fd00::/120"}).status_code == 400


def test_live_averages_ignore_zero_core_samples(client, make_info):
    s = PollScheduler(
        MonitorConfig(rescan_delay_s=60.0),
        discover=lambda: [DEVICE],
        fetch=lambda ip, t: make_info(hostname="bitaxe-a", hardware_id="aa:aa", small_core_count=0),
    )
    s.rescan()
    dashboard_api.set_scheduler(s)
    try:
        for t in s.poll_once():
            t.join(timeout=5.0)
        r = client.get("/api/monitor/live")
        assert r.status_code == 200
        assert r.json()["averages"] == []
    finally:
        dashboard_api.set_scheduler(None)
        s.stop()
