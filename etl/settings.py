"""
settings.py
-----------
Runtime configuration for the ER encounter analytics.

Everything is read from environment variables with sensible defaults so the
analysis runs with a plain `python -m etl.pipeline`.
"""

import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

# ---------------------------
# Paths
# ---------------------------
ENCOUNTERS_CSV = os.getenv("ENCOUNTERS_CSV", "data/hospital_er.csv")
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "output")

# Set EXPORT_CSV=1 to also write every query result as CSV next to the charts
EXPORT_CSV = os.getenv("EXPORT_CSV", "0") == "1"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SCHEMA_SQL = Path(__file__).resolve().parent / "schema.sql"


def get_engine() -> Engine:
    """Return a fresh in-memory SQLite engine.

    StaticPool keeps a single connection alive, so the table loaded by one
    call is visible to every later query (and across Streamlit threads).
    """
    return create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
