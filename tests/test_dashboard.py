"""
Tests for the Grafana dashboard generator.
"""

import json

from dashboard import create_dashboard, generate_dashboard
from scanner import Device


DEVICES = [
    Device("10.0.0.4", "bitaxe-c", "cc"),
    Device("10.0.0.2", "bitaxe-a", "aa"),
    Device("10.0.0.3", "bitaxe-b", "bb"),
]


def test_one_panel_per_host_in_two_columns():
    panels = generate_dashboard(DEVICES)["panels"]

    assert [p["title"] for p in panels] == [
        "Hash Rate - bitaxe-a",
        "Hash Rate - bitaxe-b",
        "Hash Rate - bitaxe-c",
    ]
    assert [(p["gridPos"]["x"], p["gridPos"]["y"]) for p in panels] == [(0, 0), (12, 0), (0, 6)]
    assert panels[0]["targets"][0]["expr"] == 'avg_over_time(hash_rate{hostname="bitaxe-a"}[20m])'
    assert panels[0]["targets"][1]["expr"] == 'expected_hash_rate{hostname="bitaxe-a"}'


def test_empty_inventory():
    assert generate_dashboard([])["panels"] == []


def test_create_dashboard_skips_existing_file(tmp_path):
    path = tmp_path / "dashboards" / "hashrate.json"

    assert create_dashboard(DEVICES, str(path)) is True
    first = path.read_text()
    assert len(json.loads(first)["panels"]) == 3

    assert create_dashboard(DEVICES[:1], str(path)) is False
    assert path.read_text() == first
