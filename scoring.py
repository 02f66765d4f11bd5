# scoring.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import math

from config import ScoreWeights
from telemetry import TelemetrySnapshot


# Reference ASIC temperature in °C; a chip running at exactly this scores 1.0.
REFERENCE_TEMP_C = 65.0


def _div(a: float, b: float) -> float:
    # IEEE semantics instead of ZeroDivisionError; callers filter non-finite values.
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def expected_hash_rate(info: TelemetrySnapshot) -> float:
    """Expected GH/s from frequency (MHz) x small cores x ASIC count."""
    return float(math.floor(info.frequency * (info.small_core_count * info.asic_count) / 1000.0))


def hash_rate_score(info: TelemetrySnapshot) -> float:
    score = _div(info.hash_rate, expected_hash_rate(info))
    if math.isnan(score):
        return 0.0
    return max(0.0, score)


def temperature_score(info: TelemetrySnapshot) -> float:
    return _div(REFERENCE_TEMP_C, info.temperature)


def efficiency(info: TelemetrySnapshot) -> float:
    """J/TH at the measured hash rate."""
    return _div(info.power, info.hash_rate / 1000.0)


def expected_efficiency(info: TelemetrySnapshot) -> float:
    """J/TH the device would reach at its expected hash rate."""
    return _div(info.power, expected_hash_rate(info) / 1000.0)


def efficiency_score(info: TelemetrySnapshot) -> float:
    return _div(expected_efficiency(info), efficiency(info))


def is_ramping_up(info: TelemetrySnapshot) -> bool:
    """
    A freshly booted device reports zero temperature or hash rate for a while.
    Such samples must not be scored: the temperature and efficiency ratios
    divide by those readings.
    """
    return info.temperature < 1 or info.hash_rate < 1


@dataclass(frozen=True)
class Scores:
    temperature: float
    hash_rate: float
    efficiency: float
    composite: float
    # raw J/TH, accumulated next to the scores
    efficiency_value: float


def compute_scores(info: TelemetrySnapshot, weights: Optional[ScoreWeights] = None) -> Scores:
    w = weights or ScoreWeights()
    t = temperature_score(info)
    h = hash_rate_score(info)
    e = efficiency_score(info)
    return Scores(
        temperature=t,
        hash_rate=h,
        efficiency=e,
        composite=t * w.temperature + h * w.hash_rate + e * w.efficiency,
        efficiency_value=efficiency(info),
    )
