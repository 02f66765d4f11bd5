# averages.py
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, NamedTuple, Optional
import threading

from scoring import Scores
from telemetry import TelemetrySnapshot


class ConfigKey(NamedTuple):
    """A device at one operating point (frequency in MHz, core voltage in mV)."""

    hardware_id: str
    frequency: int
    core_voltage: int

    @classmethod
    def for_snapshot(cls, info: TelemetrySnapshot, fallback_id: str = "") -> "ConfigKey":
        return cls(info.hardware_id or fallback_id, info.frequency, info.core_voltage)


@dataclass
class Accumulator:
    hostname: str = ""
    sum_temperature_score: float = 0.0
    sum_hash_rate_score: float = 0.0
    sum_efficiency_score: float = 0.0
    sum_score: float = 0.0
    sum_efficiency: float = 0.0
    sum_hash_rate: float = 0.0
    sum_temperature: float = 0.0
    sample_count: int = 0

    def add(self, info: TelemetrySnapshot, scores: Scores) -> None:
        self.hostname = info.hostname or self.hostname
        self.sum_temperature_score += scores.temperature
        self.sum_hash_rate_score += scores.hash_rate
        self.sum_efficiency_score += scores.efficiency
        self.sum_score += scores.composite
        self.sum_efficiency += scores.efficiency_value
        self.sum_hash_rate += info.hash_rate
        self.sum_temperature += info.temperature
        self.sample_count += 1

    def average(self, key: ConfigKey, updated_at: Optional[str] = None) -> "NormalizedAverage":
        n = self.sample_count
        return NormalizedAverage(
            hardware_id=key.hardware_id,
            frequency=key.frequency,
            core_voltage=key.core_voltage,
            hostname=self.hostname,
            temperature_score=self.sum_temperature_score / n,
            hash_rate_score=self.sum_hash_rate_score / n,
            efficiency_score=self.sum_efficiency_score / n,
            score=self.sum_score / n,
            efficiency=self.sum_efficiency / n,
            hash_rate=self.sum_hash_rate / n,
            temperature=self.sum_temperature / n,
            sample_count=n,
            updated_at=updated_at or datetime.now(timezone.utc).isoformat(),
        )


@dataclass(frozen=True)
class NormalizedAverage:
    hardware_id: str
    frequency: int
    core_voltage: int
    hostname: str
    temperature_score: float
    hash_rate_score: float
    efficiency_score: float
    score: float
    efficiency: float
    hash_rate: float
    temperature: float
    sample_count: int
    updated_at: str

    @property
    def key(self) -> ConfigKey:
        return ConfigKey(self.hardware_id, self.frequency, self.core_voltage)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AverageStore:
    """
    Running averages per ConfigKey, shared by every poll worker.

    One lock covers the whole map, so an increment is never seen half-applied
    and flush_all can average and reset without racing a concurrent sample.
    """

    def __init__(self) -> None:
        self._accumulators: Dict[ConfigKey, Accumulator] = {}
        self._lock = threading.Lock()

    def increment(self, key: ConfigKey, info: TelemetrySnapshot, scores: Scores) -> int:
        """Add one sample; returns the accumulator's sample count afterwards."""
        with self._lock:
            acc = self._accumulators.get(key)
            if acc is None:
                acc = self._accumulators[key] = Accumulator(hostname=info.hostname)
            acc.add(info, scores)
            return acc.sample_count

    def flush_all(self) -> Dict[ConfigKey, NormalizedAverage]:
        """
        Average and reset every accumulator that has samples.
        Empty accumulators are skipped, so an immediate second flush returns {}.
        """
        now = datetime.now(timezone.utc).isoformat()
        out: Dict[ConfigKey, NormalizedAverage] = {}
        with self._lock:
            for key, acc in list(self._accumulators.items()):
                if acc.sample_count == 0:
                    continue
                out[key] = acc.average(key, updated_at=now)
                self._accumulators[key] = Accumulator(hostname=acc.hostname)
        return out

    def snapshot(self) -> Dict[ConfigKey, NormalizedAverage]:
        """Current running averages, without resetting anything."""
        with self._lock:
            return {
                key: acc.average(key)
                for key, acc in self._accumulators.items()
                if acc.sample_count > 0
            }

    def sample_count(self, key: ConfigKey) -> int:
        with self._lock:
            acc = self._accumulators.get(key)
            return acc.sample_count if acc else 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._accumulators)
