"""
Bitaxe Fleet Monitor - Test Configuration

Shared fixtures: snapshot factory, temporary SQLite database.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import db  # noqa: E402
from telemetry import TelemetrySnapshot  # noqa: E402


BASE_INFO = dict(
    hostname="bitaxe1",
    hardware_id="aa:bb:cc:dd:ee:01",
    frequency=400,
    core_voltage=1150,
    hash_rate=510.0,
    power=11.0,
    temperature=60.0,
    vr_temperature=48.0,
    shares_accepted=100,
    shares_rejected=1,
    small_core_count=1276,
    asic_count=1,
)


@pytest.fixture
def make_info():
    """Build a TelemetrySnapshot from the 400 MHz Gamma baseline plus overrides."""
    def _make(**overrides):
        fields = dict(BASE_INFO)
        fields.update(overrides)
        return TelemetrySnapshot(**fields)
    return _make


@pytest.fixture
def temp_db(tmp_path):
    original = db.DB_PATH
    db.configure(str(tmp_path / "averages.db"))
    db.init_db()
    yield db
    db.DB_PATH = original
