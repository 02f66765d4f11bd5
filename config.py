# config.py
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Tuple
import ipaddress
import os


ENV_PREFIX = "BITAXE_"


@dataclass(frozen=True)
class ScoreWeights:
    temperature: float = 0.1
    hash_rate: float = 0.6
    efficiency: float = 0.3


@dataclass(frozen=True)
class MonitorConfig:
    poll_interval_s: float = 10.0
    discovery_interval_s: float = 600.0
    flush_interval_s: float = 30.0
    rescan_delay_s: float = 30.0
    probe_timeout_s: float = 2.0

    metrics_port: int = 8077
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    db_path: str = os.path.join("data", "averages.db")
    dashboard_path: str = os.path.join("grafana", "dashboards", "hashrate.json")

    # Empty = derive networks from the local interfaces.
    scan_networks: Tuple[str, ...] = ()
    # Prefix applied to each interface address; /24 scans x.y.z.1-254.
    scan_prefix: int = 24
    max_hosts: int = 1024

    weights: ScoreWeights = field(default_factory=ScoreWeights)

    def __post_init__(self) -> None:
        for name in (
            "poll_interval_s",
            "discovery_interval_s",
            "flush_interval_s",
            "probe_timeout_s",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.rescan_delay_s < 0:
            raise ValueError(f"rescan_delay_s must not be negative, got {self.rescan_delay_s}")
        if not 8 <= self.scan_prefix <= 30:
            raise ValueError(f"scan_prefix must be between 8 and 30, got {self.scan_prefix}")
        for cidr in self.scan_networks:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError as e:
                raise ValueError(f"Invalid CIDR in scan_networks: {cidr}") from e

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MonitorConfig":
        """
        Build a config from BITAXE_* environment variables, e.g.
        BITAXE_POLL_INTERVAL_S=5 or BITAXE_SCAN_NETWORKS=192.168.1.0/24,10.0.0.0/24.
        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        kwargs: Dict[str, Any] = {}

        for f in fields(cls):
            if f.name == "weights":
                continue
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            try:
                if f.name == "scan_networks":
                    kwargs[f.name] = tuple(p.strip() for p in raw.split(",") if p.strip())
                elif f.name in ("metrics_port", "api_port", "max_hosts", "scan_prefix"):
                    kwargs[f.name] = int(raw)
                elif f.name.endswith("_s"):
                    kwargs[f.name] = float(raw)
                else:
                    kwargs[f.name] = raw
            except ValueError as e:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from e

        weights: Dict[str, float] = {}
        for f in fields(ScoreWeights):
            raw = env.get(f"{ENV_PREFIX}WEIGHT_{f.name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            try:
                weights[f.name] = float(raw)
            except ValueError as e:
                raise ValueError(f"Invalid score weight for {f.name}: {raw!r}") from e
        if weights:
            kwargs["weights"] = ScoreWeights(**weights)

        return cls(**kwargs)
