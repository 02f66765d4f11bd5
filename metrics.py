# metrics.py
from __future__ import annotations

from typing import Dict, Optional
import logging
import math
import threading

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

import scoring
from telemetry import TelemetrySnapshot


logger = logging.getLogger(__name__)

DEFAULT_METRICS_PORT = 8077


class PrometheusExporter:
    """
    Per-device gauges plus share counters, labelled by hostname.

    Share totals reported by the device are cumulative; the counters are
    advanced by the delta since the previous poll of the same device.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        labels = ["hostname"]

        def gauge(name: str, doc: str) -> Gauge:
            return Gauge(name, doc, labels, registry=self.registry)

        self.core_voltage = gauge("core_voltage", "Voltage of the ASIC core in mV")
        self.efficiency = gauge("efficiency", "Efficiency of the ASIC in J/Th")
        self.expected_efficiency = gauge("expected_efficiency", "Expected efficiency of the ASIC in J/Th")
        self.frequency = gauge("frequency", "Frequency of the ASIC in MHz")
        self.hash_rate = gauge("hash_rate", "Current hash rate as Gh/s")
        self.expected_hash_rate = gauge("expected_hash_rate", "Expected hash rate as Gh/s")
        self.power = gauge("power", "Power consumption in Watts")
        self.temp = gauge("asic_temperature_celsius", "Current temperature of the ASIC.")
        self.vr_temp = gauge("vr_temperature_celsius", "Current temperature of the voltage regulator.")

        # prometheus_client appends _total to counter names on exposition.
        self.shares_accepted = Counter("shares_accepted", "Number of shares accepted", labels, registry=self.registry)
        self.shares_rejected = Counter("shares_rejected", "Number of shares rejected", labels, registry=self.registry)

        self._shares_lock = threading.Lock()
        self._last_accepted: Dict[str, int] = {}
        self._last_rejected: Dict[str, int] = {}
        self._server_started = False

    def start(self, port: int = DEFAULT_METRICS_PORT) -> None:
        if self._server_started:
            return
        logger.info("Starting metrics server on port %d", port)
        start_http_server(port, registry=self.registry)
        self._server_started = True

    def measure(self, hostname: str, info: TelemetrySnapshot) -> None:
        self.core_voltage.labels(hostname).set(info.core_voltage)
        self.hash_rate.labels(hostname).set(info.hash_rate)
        self.expected_hash_rate.labels(hostname).set(scoring.expected_hash_rate(info))
        self.frequency.labels(hostname).set(info.frequency)
        self.power.labels(hostname).set(info.power)
        self.temp.labels(hostname).set(info.temperature)
        self.vr_temp.labels(hostname).set(info.vr_temperature)

        # A ramping-up device reports 0 GH/s; leave the efficiency gauges alone then.
        eff = scoring.efficiency(info)
        if math.isfinite(eff):
            self.efficiency.labels(hostname).set(eff)
        exp_eff = scoring.expected_efficiency(info)
        if math.isfinite(exp_eff):
            self.expected_efficiency.labels(hostname).set(exp_eff)

        device_id = info.hardware_id or hostname
        with self._shares_lock:
            self._advance(self.shares_accepted, self._last_accepted, device_id, hostname, info.shares_accepted)
            self._advance(self.shares_rejected, self._last_rejected, device_id, hostname, info.shares_rejected)

    @staticmethod
    def _advance(counter: Counter, last: Dict[str, int], device_id: str, hostname: str, total: int) -> None:
        prev = last.get(device_id)
        last[device_id] = total
        # first sighting is only a baseline; a drop means the device rebooted
        if prev is None or total <= prev:
            return
        counter.labels(hostname).inc(total - prev)
