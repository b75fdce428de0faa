from __future__ import annotations

import time
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from bomabnb.database import engine


def check_database_health() -> Dict[str, Any]:
    """Run a trivial query against the store and report UP or DEGRADED."""
    started = time.perf_counter()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return {"status": "DEGRADED", "database": engine.dialect.name, "detail": str(exc)}
    return {
        "status": "UP",
        "database": engine.dialect.name,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
    }
