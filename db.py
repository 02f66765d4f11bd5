# db.py
from __future__ import annotations

from typing import Any, Dict, List, Optional
import os
import sqlite3

from averages import NormalizedAverage


# Resolve relative paths against this file (not the process CWD).
_BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DB_PATH = os.path.join(_BASE_DIR, "data", "averages.db")


def configure(path: str) -> None:
    global DB_PATH
    DB_PATH = path if os.path.isabs(path) else os.path.join(_BASE_DIR, path)


def _get_conn() -> sqlite3.Connection:
    os.makedirs(os.path.dirname(DB_PATH) or ".", exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS config_averages (
            hardware_id TEXT NOT NULL,
            frequency INTEGER NOT NULL,
            core_voltage INTEGER NOT NULL,
            hostname TEXT,
            updated_at TEXT NOT NULL,
            hash_rate REAL,
            efficiency REAL,
            temperature REAL,
            hash_rate_score REAL,
            efficiency_score REAL,
            temperature_score REAL,
            score REAL,
            sample_count INTEGER NOT NULL DEFAULT 0,
            PRIMARY KEY (hardware_id, frequency, core_voltage)
        );
        """
    )
    conn.commit()
    conn.close()


def upsert_average(avg: NormalizedAverage) -> None:
    """
    Store the latest average for one operating point. The row is replaced,
    not merged: each flush window stands on its own.
    """
    conn = _get_conn()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO config_averages (
            hardware_id, frequency, core_voltage, hostname, updated_at,
            hash_rate, efficiency, temperature,
            hash_rate_score, efficiency_score, temperature_score, score,
            sample_count
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(hardware_id, frequency, core_voltage) DO UPDATE SET
            hostname=excluded.hostname,
            updated_at=excluded.updated_at,
            hash_rate=excluded.hash_rate,
            efficiency=excluded.efficiency,
            temperature=excluded.temperature,
            hash_rate_score=excluded.hash_rate_score,
            efficiency_score=excluded.efficiency_score,
            temperature_score=excluded.temperature_score,
            score=excluded.score,
            sample_count=excluded.sample_count;
        """,
        (
            avg.hardware_id,
            avg.frequency,
            avg.core_voltage,
            avg.hostname,
            avg.updated_at,
            avg.hash_rate,
            avg.efficiency,
            avg.temperature,
            avg.hash_rate_score,
            avg.efficiency_score,
            avg.temperature_score,
            avg.score,
            avg.sample_count,
        ),
    )
    conn.commit()
    conn.close()


def list_averages(hardware_id: Optional[str] = None) -> List[Dict[str, Any]]:
    conn = _get_conn()
    cur = conn.cursor()
    if hardware_id:
        cur.execute(
            """
            SELECT * FROM config_averages
            WHERE hardware_id = ?
            ORDER BY score DESC;
            """,
            (hardware_id,),
        )
    else:
        cur.execute(
            """
            SELECT * FROM config_averages
            ORDER BY hardware_id ASC, score DESC;
            """
        )
    rows = cur.fetchall()
    conn.close()
    return [dict(r) for r in rows]
