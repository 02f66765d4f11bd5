"""
Unit tests for the Prometheus exporter.
"""

import pytest
from prometheus_client import CollectorRegistry

from metrics import PrometheusExporter


@pytest.fixture
def exporter():
    return PrometheusExporter(CollectorRegistry())


def _value(exporter, name, hostname="bitaxe1"):
    return exporter.registry.get_sample_value(name, {"hostname": hostname})


class TestMeasure:

    def test_gauges(self, exporter, make_info):
        exporter.measure("bitaxe1", make_info())

        assert _value(exporter, "hash_rate") == 510.0
        assert _value(exporter, "expected_hash_rate") == 510.0
        assert _value(exporter, "frequency") == 400.0
        assert _value(exporter, "core_voltage") == 1150.0
        assert _value(exporter, "power") == 11.0
        assert _value(exporter, "asic_temperature_celsius") == 60.0
        assert _value(exporter, "vr_temperature_celsius") == 48.0
        assert _value(exporter, "efficiency") == pytest.approx(11 / 0.51)
        assert _value(exporter, "expected_efficiency") == pytest.approx(11 / 0.51)

    def test_efficiency_skipped_while_ramping_up(self, exporter, make_info):
        exporter.measure("bitaxe1", make_info(hash_rate=0.0))
        assert _value(exporter, "hash_rate") == 0.0
        assert _value(exporter, "efficiency") is None

    def test_share_counters_follow_deltas(self, exporter, make_info):
        exporter.measure("bitaxe1", make_info(shares_accepted=100, shares_rejected=1))
        assert _value(exporter, "shares_accepted_total") is None

        exporter.measure("bitaxe1", make_info(shares_accepted=105, shares_rejected=3))
        assert _value(exporter, "shares_accepted_total") == 5.0
        assert _value(exporter, "shares_rejected_total") == 2.0

        # device rebooted: totals restart from zero
        exporter.measure("bitaxe1", make_info(shares_accepted=2, shares_rejected=0))
        assert _value(exporter, "shares_accepted_total") == 5.0

        exporter.measure("bitaxe1", make_info(shares_accepted=4, shares_rejected=0))
        assert _value(exporter, "shares_accepted_total") == 7.0

    def test_devices_tracked_separately(self, exporter, make_info):
        exporter.measure("bitaxe1", make_info(hardware_id="aa", shares_accepted=10))
        exporter.measure("bitaxe2", make_info(hostname="bitaxe2", hardware_id="bb", shares_accepted=50))
        exporter.measure("bitaxe1", make_info(hardware_id="aa", shares_accepted=11))

        assert _value(exporter, "shares_accepted_total") == 1.0
        assert _value(exporter, "shares_accepted_total", "bitaxe2") is None
