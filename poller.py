# poller.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import math
import threading
import time

from averages import AverageStore, ConfigKey, NormalizedAverage
from config import MonitorConfig
from scanner import Device, Fetcher, scan_network
from scoring import compute_scores, is_ramping_up
from telemetry import TelemetrySnapshot, fetch_system_info


logger = logging.getLogger(__name__)

Discoverer = Callable[[], List[Device]]
MeasureHook = Callable[[str, TelemetrySnapshot], None]
FlushHook = Callable[[NormalizedAverage], None]


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PollScheduler:
    """
    The monitor's control loop.

    A single coordinating thread owns four independent triggers:
      - poll tick: fetch every known device, one worker thread each
      - discovery tick: re-scan the network and replace the inventory
      - forced rescan: same as a discovery tick, requested (with a delay)
        by a poll worker whose device stopped answering
      - flush tick: average and reset the store, hand each average to on_flush

    Discovery runs on the coordinating thread itself, so no poll tick can
    fire while the inventory is being replaced; the poll timer restarts once
    the new inventory is in place. Workers from an earlier tick may still be
    finishing and accumulate into the store after the tick boundary.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        store: Optional[AverageStore] = None,
        discover: Optional[Discoverer] = None,
        fetch: Optional[Fetcher] = None,
        on_measure: Optional[MeasureHook] = None,
        on_flush: Optional[FlushHook] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or MonitorConfig()
        self.store = store if store is not None else AverageStore()
        self._discover = discover or self._scan
        self._fetch = fetch or fetch_system_info
        self.on_measure = on_measure
        self.on_flush = on_flush
        self._clock = clock

        self._devices: Tuple[Device, ...] = ()
        self._latest: Dict[str, Dict[str, Any]] = {}

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._rescan_requested = threading.Event()
        self._rescan_timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

        self.polling_paused = False
        self.last_discovery: Optional[str] = None
        self.last_poll: Optional[str] = None
        self.last_flush: Optional[str] = None
        self.discovery_count = 0
        self.poll_count = 0
        self.flush_count = 0

    # --- public API ---

    @property
    def devices(self) -> List[Device]:
        with self._lock:
            return list(self._devices)

    def start(self, initial_discovery: bool = True) -> None:
        if self._thread:
            raise RuntimeError("Scheduler already started")
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            kwargs={"initial_discovery": initial_discovery},
            name="poll-scheduler",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self._wake.set()
        with self._lock:
            if self._rescan_timer is not None:
                self._rescan_timer.cancel()
                self._rescan_timer = None
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

    def request_rescan(self, delay_s: Optional[float] = None) -> None:
        """
        Ask the loop for an out-of-band discovery after `delay_s` seconds
        (config.rescan_delay_s by default). Requests made while one is
        already pending are merged into it.
        """
        delay = self.config.rescan_delay_s if delay_s is None else delay_s
        if delay <= 0:
            self._signal_rescan()
            return
        with self._lock:
            if self._rescan_timer is not None or self._stop.is_set():
                return
            timer = threading.Timer(delay, self._signal_rescan)
            timer.daemon = True
            self._rescan_timer = timer
        timer.start()

    def latest(self) -> Dict[str, Dict[str, Any]]:
        """Last valid snapshot per device key, with the time it was taken."""
        with self._lock:
            return {k: dict(v) for k, v in self._latest.items()}

    def status(self) -> Dict[str, Any]:
        with self._lock:
            timer_pending = self._rescan_timer is not None
        return {
            "running": bool(self._thread and self._thread.is_alive()),
            "pollingPaused": self.polling_paused,
            "deviceCount": len(self.devices),
            "trackedConfigs": len(self.store),
            "rescanPending": self._rescan_requested.is_set() or timer_pending,
            "lastDiscovery": self.last_discovery,
            "lastPoll": self.last_poll,
            "lastFlush": self.last_flush,
            "discoveryCount": self.discovery_count,
            "pollCount": self.poll_count,
            "flushCount": self.flush_count,
            "config": {
                "pollIntervalS": self.config.poll_interval_s,
                "discoveryIntervalS": self.config.discovery_interval_s,
                "flushIntervalS": self.config.flush_interval_s,
                "rescanDelayS": self.config.rescan_delay_s,
                "probeTimeoutS": self.config.probe_timeout_s,
            },
        }

    # --- triggers ---

    def rescan(self, reason: str = "scheduled") -> List[Device]:
        """
        Run discovery and replace the inventory. Accumulators of devices
        that disappeared are left alone so their averages survive a dropout.
        On a discovery error the previous inventory is kept.
        """
        # this scan covers any delayed request still waiting
        with self._lock:
            if self._rescan_timer is not None:
                self._rescan_timer.cancel()
                self._rescan_timer = None
        self.polling_paused = True
        logger.info("Network scan (%s)", reason)
        try:
            devices = self._discover()
        except Exception:
            logger.exception("Network scan failed; keeping %d known devices", len(self.devices))
            return self.devices
        finally:
            self.polling_paused = False

        with self._lock:
            self._devices = tuple(devices)
        self.last_discovery = _utcnow_iso()
        self.discovery_count += 1
        logger.info("Found %d devices", len(devices))
        return list(devices)

    def poll_once(self) -> List[threading.Thread]:
        """Start one worker per known device; returns the workers without waiting."""
        workers: List[threading.Thread] = []
        for device in self.devices:
            t = threading.Thread(
                target=self._poll_device,
                args=(device,),
                name=f"poll-{device.address}",
                daemon=True,
            )
            t.start()
            workers.append(t)
        self.last_poll = _utcnow_iso()
        self.poll_count += 1
        return workers

    def flush(self) -> Dict[ConfigKey, NormalizedAverage]:
        averages = self.store.flush_all()
        if averages:
            logger.info("Flushing %d averages", len(averages))
        for avg in averages.values():
            logger.debug(
                "%s %dMHz %dmV: H %.2f GH/s E %.2f J/TH T %.1f °C score %.3f (n=%d)",
                avg.hostname, avg.frequency, avg.core_voltage,
                avg.hash_rate, avg.efficiency, avg.temperature, avg.score, avg.sample_count,
            )
            if self.on_flush is None:
                continue
            try:
                self.on_flush(avg)
            except Exception:
                # not retried; the next window produces a fresh average
                logger.exception("Failed to store average for %s", avg.hostname or avg.hardware_id)
        self.last_flush = _utcnow_iso()
        self.flush_count += 1
        return averages

    # --- workers ---

    def _poll_device(self, device: Device) -> None:
        try:
            info = self._fetch(device.address, self.config.probe_timeout_s)
        except Exception:
            logger.exception("Fetch from %s raised", device.address)
            info = TelemetrySnapshot.empty()

        if not info.valid:
            logger.warning("Device %s (%s) not responding", device.hostname, device.address)
            self.request_rescan()
            return

        with self._lock:
            self._latest[device.key] = {
                "device": device,
                "snapshot": info,
                "polledAt": _utcnow_iso(),
            }

        if self.on_measure is not None:
            try:
                self.on_measure(device.hostname, info)
            except Exception:
                logger.exception("Failed to export metrics for %s", device.hostname)

        if is_ramping_up(info):
            logger.debug(
                "%s still ramping up (%.1f °C, %.1f GH/s); sample not scored",
                device.hostname, info.temperature, info.hash_rate,
            )
            return

        scores = compute_scores(info, self.config.weights)
        if not all(math.isfinite(v) for v in (
            scores.temperature, scores.hash_rate, scores.efficiency,
            scores.composite, scores.efficiency_value,
        )):
            logger.debug(
                "%s: non-finite score (%dMHz, %d cores x %d ASICs); sample not accumulated",
                device.hostname, info.frequency, info.small_core_count, info.asic_count,
            )
            return

        key = ConfigKey.for_snapshot(info, fallback_id=device.key)
        count = self.store.increment(key, info, scores)
        logger.debug(
            "%s: %dMHz %dmV score T %.3f H %.3f E %.3f -> %.3f (n=%d)",
            device.hostname, info.frequency, info.core_voltage,
            scores.temperature, scores.hash_rate, scores.efficiency, scores.composite, count,
        )

    # --- loop ---

    def _scan(self) -> List[Device]:
        cfg = self.config
        return scan_network(
            networks=cfg.scan_networks or None,
            prefix=cfg.scan_prefix,
            timeout_s=cfg.probe_timeout_s,
            fetch=self._fetch,
            max_hosts=cfg.max_hosts,
        )

    def _signal_rescan(self) -> None:
        with self._lock:
            self._rescan_timer = None
        self._rescan_requested.set()
        self._wake.set()

    def _run(self, initial_discovery: bool = True) -> None:
        cfg = self.config
        if initial_discovery:
            self.rescan("startup")

        now = self._clock()
        next_poll = now + cfg.poll_interval_s
        next_discovery = now + cfg.discovery_interval_s
        next_flush = now + cfg.flush_interval_s
        logger.info("Starting main loop")

        while not self._stop.is_set():
            timeout = max(0.0, min(next_poll, next_discovery, next_flush) - self._clock())
            self._wake.wait(timeout)
            self._wake.clear()
            if self._stop.is_set():
                break

            try:
                now = self._clock()
                forced = self._rescan_requested.is_set()
                due = now >= next_discovery
                if forced or due:
                    self.rescan("scheduled" if due else "forced")
                    # requests raised while scanning are covered by this scan
                    self._rescan_requested.clear()
                    now = self._clock()
                    if due:
                        next_discovery = now + cfg.discovery_interval_s
                    next_poll = now + cfg.poll_interval_s

                if now >= next_poll:
                    self.poll_once()
                    next_poll = now + cfg.poll_interval_s

                if now >= next_flush:
                    self.flush()
                    next_flush = now + cfg.flush_interval_s
            except Exception:
                logger.exception("Main loop iteration failed")
                self._stop.wait(1.0)

        logger.info("Main loop stopped")
