# app.py
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
import logging
import os

import db
import dashboard_api
from config import MonitorConfig
from dashboard import create_dashboard
from metrics import PrometheusExporter
from poller import PollScheduler


logger = logging.getLogger(__name__)

app = FastAPI(title="Bitaxe Fleet Monitor")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(dashboard_api.router)

# the running monitor, if any
scheduler: Optional[PollScheduler] = None


def build_scheduler(config: MonitorConfig) -> PollScheduler:
    db.configure(config.db_path)
    db.init_db()

    exporter = PrometheusExporter()
    try:
        exporter.start(config.metrics_port)
    except OSError:
        logger.exception("Could not start metrics server on port %d", config.metrics_port)

    return PollScheduler(
        config,
        on_measure=exporter.measure,
        on_flush=db.upsert_average,
    )


@app.on_event("startup")
def on_startup():
    global scheduler
    config = MonitorConfig.from_env()
    scheduler = build_scheduler(config)

    devices = scheduler.rescan("startup")
    try:
        create_dashboard(devices, config.dashboard_path)
    except OSError:
        logger.exception("Could not write dashboard to %s", config.dashboard_path)

    scheduler.start(initial_discovery=False)
    dashboard_api.set_scheduler(scheduler)


@app.on_event("shutdown")
def on_shutdown():
    global scheduler
    dashboard_api.set_scheduler(None)
    if scheduler is not None:
        scheduler.stop(timeout=5.0)
        scheduler = None


@app.get("/", include_in_schema=False)
def root():
    return {"service": "bitaxe-fleet-monitor", "api": dashboard_api.router.prefix}


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("BITAXE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = MonitorConfig.from_env()
    uvicorn.run(app, host=config.api_host, port=config.api_port)


if __name__ == "__main__":
    main()
