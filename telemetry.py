# telemetry.py
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional
import logging
import math

import requests


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 2.0
SYSTEM_INFO_PATH = "/api/system/info"


@dataclass(frozen=True)
class TelemetrySnapshot:
    """One poll of a device's /api/system/info. An empty hostname marks a non-responsive device."""

    hostname: str = ""
    hardware_id: str = ""
    frequency: int = 0
    core_voltage: int = 0
    hash_rate: float = 0.0
    power: float = 0.0
    temperature: float = 0.0
    vr_temperature: float = 0.0
    shares_accepted: int = 0
    shares_rejected: int = 0
    small_core_count: int = 0
    asic_count: int = 0

    @property
    def valid(self) -> bool:
        return bool(self.hostname)

    @classmethod
    def empty(cls) -> "TelemetrySnapshot":
        return cls()

    @classmethod
    def from_json(cls, data: Any) -> "TelemetrySnapshot":
        """
        Map an AxeOS system info payload onto a snapshot.
        Raises ValueError/TypeError on malformed payloads; fetch_system_info
        turns those into the empty snapshot.
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")

        hostname = data.get("hostname") or ""
        hardware_id = data.get("macAddr") or ""
        if not isinstance(hostname, str) or not isinstance(hardware_id, str):
            raise TypeError("hostname and macAddr must be strings")

        return cls(
            hostname=hostname.strip(),
            hardware_id=hardware_id.strip().lower(),
            frequency=_as_int(data.get("frequency")),
            core_voltage=_as_int(data.get("coreVoltage")),
            hash_rate=_as_float(data.get("hashRate")),
            power=_as_float(data.get("power")),
            temperature=_as_float(data.get("temp")),
            vr_temperature=_as_float(data.get("vrTemp")),
            shares_accepted=_as_int(data.get("sharesAccepted")),
            shares_rejected=_as_int(data.get("sharesRejected")),
            small_core_count=_as_int(data.get("smallCoreCount")),
            asic_count=_as_int(data.get("asicCount")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_float(v: Any) -> float:
    if v is None:
        return 0.0
    if isinstance(v, bool):
        raise TypeError("boolean is not a numeric reading")
    f = float(v)
    if not math.isfinite(f):
        raise ValueError(f"non-finite reading: {v!r}")
    return f


def _as_int(v: Any) -> int:
    # Some firmwares report integer settings as floats ("frequency": 525.0).
    return int(_as_float(v))


def fetch_system_info(
    address: str,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    session: Optional[requests.Session] = None,
) -> TelemetrySnapshot:
    """
    GET http://<address>/api/system/info and parse it.
    Never raises: any transport error, timeout or malformed body yields the
    empty snapshot, so callers branch on `snapshot.valid`.
    """
    url = f"http://{address}{SYSTEM_INFO_PATH}"
    getter = session.get if session is not None else requests.get
    try:
        r = getter(url, timeout=timeout_s)
        r.raise_for_status()
        return TelemetrySnapshot.from_json(r.json())
    except requests.RequestException as e:
        logger.debug("No response from %s: %s", address, e)
    except (ValueError, TypeError, OverflowError) as e:
        logger.debug("Malformed system info from %s: %s", address, e)
    return TelemetrySnapshot.empty()
