# dashboard_api.py
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
import ipaddress

import db
from poller import PollScheduler
from scanner import scan_network

router = APIRouter(prefix="/api/monitor", tags=["monitor"])

# Bound by app.py at startup.
_scheduler: Optional[PollScheduler] = None


def set_scheduler(scheduler: Optional[PollScheduler]) -> None:
    global _scheduler
    _scheduler = scheduler


def _require_scheduler() -> PollScheduler:
    if _scheduler is None:
        raise HTTPException(status_code=503, detail="Monitor is not running")
    return _scheduler


class RescanPayload(BaseModel):
    delay_s: float = Field(0.0, ge=0.0, le=3600.0, description="Seconds to wait before scanning")


class ScanPayload(BaseModel):
    cidr: str = Field(..., description="CIDR, e.g. 192.168.10.0/24")
    timeout_s: float = Field(2.0, ge=0.2, le=10.0)
    limit: int = Field(512, ge=1, le=2048)


@router.get("/status")
def api_status():
    return _require_scheduler().status()


@router.get("/devices")
def api_list_devices():
    """Current inventory, with the last valid snapshot of each device if any."""
    scheduler = _require_scheduler()
    latest = scheduler.latest()
    out: List[Dict[str, Any]] = []
    for d in scheduler.devices:
        entry: Dict[str, Any] = {
            "address": d.address,
            "hostname": d.hostname,
            "hardwareId": d.hardware_id,
            "lastPoll": None,
            "info": None,
        }
        seen = latest.get(d.key)
        if seen:
            entry["lastPoll"] = seen["polledAt"]
            entry["info"] = seen["snapshot"].to_dict()
        out.append(entry)
    return {"devices": out, "count": len(out)}


@router.get("/live")
def api_live_averages():
    """Running averages of the current flush window (not yet persisted)."""
    scheduler = _require_scheduler()
    rows = [avg.to_dict() for avg in scheduler.store.snapshot().values()]
    rows.sort(key=lambda r: (r["hardware_id"], -r["score"]))
    return {"averages": rows}


@router.get("/averages")
def api_list_averages(hardware_id: Optional[str] = Query(None)):
    """Persisted averages per operating point, best score first."""
    rows = db.list_averages(hardware_id.strip().lower() if hardware_id else None)
    return {"averages": rows, "count": len(rows)}


@router.post("/rescan")
def api_rescan(payload: Optional[RescanPayload] = None):
    scheduler = _require_scheduler()
    delay = payload.delay_s if payload else 0.0
    scheduler.request_rescan(delay_s=delay)
    return {"status": "rescan_requested", "delayS": delay}


@router.post("/scan")
def api_scan(payload: ScanPayload):
    """
    Scan a CIDR for devices that respond to /api/system/info.
    Returns what was found; the monitored inventory is not changed.
    """
    try:
        net = ipaddress.ip_network(payload.cidr, strict=False)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid CIDR: {payload.cidr}") from e
    if net.version != 4:
        raise HTTPException(status_code=400, detail="Only IPv4 networks can be scanned")

    host_count = max(0, net.num_addresses - 2) if net.prefixlen < 31 else net.num_addresses
    if host_count > payload.limit:
        raise HTTPException(
            status_code=400,
            detail=f"Refusing to scan {host_count} hosts (limit {payload.limit}). Use a smaller CIDR or raise limit.",
        )

    found = scan_network(networks=[str(net)], timeout_s=float(payload.timeout_s), max_hosts=payload.limit)
    return {
        "cidr": payload.cidr,
        "found": [
            {"ip": d.address, "hostname": d.hostname, "hardwareId": d.hardware_id}
            for d in found
        ],
        "count": len(found),
    }
