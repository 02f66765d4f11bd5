# dashboard.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List
import json
import logging
import os
import uuid

from scanner import Device


logger = logging.getLogger(__name__)

# Must match the UID of the Prometheus datasource provisioned in Grafana.
DATASOURCE_UID = "cebm7402f3ncwf"

PANEL_WIDTH = 12
PANEL_HEIGHT = 6


def _panel(hostname: str, x: int, y: int) -> Dict[str, Any]:
    return {
        "title": f"Hash Rate - {hostname}",
        "type": "timeseries",
        "gridPos": {"x": x, "y": y, "w": PANEL_WIDTH, "h": PANEL_HEIGHT},
        "datasource": {"type": "prometheus", "uid": DATASOURCE_UID},
        "targets": [
            {
                "expr": f'avg_over_time(hash_rate{{hostname="{hostname}"}}[20m])',
                "legendFormat": "Hash Rate Gh/s",
                "refId": "A",
            },
            {
                "expr": f'expected_hash_rate{{hostname="{hostname}"}}',
                "legendFormat": "Expected",
                "refId": "B",
            },
        ],
    }


def generate_dashboard(devices: Iterable[Device]) -> Dict[str, Any]:
    """One hash rate panel per hostname, laid out two per row."""
    hostnames = sorted({d.hostname for d in devices if d.hostname})
    panels: List[Dict[str, Any]] = []
    for i, hostname in enumerate(hostnames):
        x = 0 if i % 2 == 0 else PANEL_WIDTH
        y = (i // 2) * PANEL_HEIGHT
        panels.append(_panel(hostname, x, y))

    return {
        "uid": str(uuid.uuid4()),
        "title": "Bitaxe Hash Rate",
        "timezone": "browser",
        "schemaVersion": 39,
        "refresh": "10s",
        "time": {"from": "now-6h", "to": "now"},
        "panels": panels,
    }


def create_dashboard(devices: Iterable[Device], path: str) -> bool:
    """
    Write the dashboard JSON to `path` unless it already exists.
    Returns True when a file was written.
    """
    if os.path.exists(path):
        logger.info("Dashboard %s already exists, skipping", path)
        return False

    dashboard = generate_dashboard(devices)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w") as f:
        json.dump(dashboard, f, indent=2)
    logger.info("Wrote dashboard with %d panels to %s", len(dashboard["panels"]), path)
    return True
