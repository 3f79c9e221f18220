import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import event
from sqlalchemy.exc import ArgumentError
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool

from infraguard.shared.core.config import get_settings
from infraguard.shared.core.exceptions import ConfigurationError

logger = structlog.get_logger()

SLOW_QUERY_THRESHOLD_SECONDS = 0.2
MEMORY_LOCATIONS = {":memory:", "memory", ""}


@dataclass(slots=True)
class EngineRuntime:
    engine: AsyncEngine
    effective_url: str
    # True when every session rides on one shared DBAPI connection.
    shared_connection: bool


def normalize_location(location: str | Path) -> str:
    """
    Turn a store location into an async SQLAlchemy URL.

    Accepts full URLs (sync drivers are upgraded to their async variant) or a
    filesystem path, which maps to an aiosqlite database file.
    """
    raw = str(location).strip()
    if raw in MEMORY_LOCATIONS:
        return "sqlite+aiosqlite:///:memory:"
    if "://" not in raw:
        return f"sqlite+aiosqlite:///{raw}"
    if raw.startswith("postgresql://"):
        return raw.replace("postgresql://", "postgresql+asyncpg://", 1)
    if raw.startswith("sqlite://"):
        return raw.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return raw


def _is_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return False
    database = parsed.database or ""
    return (
        database in ("", ":memory:")
        or database.startswith("file::memory:")
        or parsed.query.get("mode") == "memory"
    )


def _build_pool_config(effective_url: str, echo: bool) -> dict[str, Any]:
    pool_config: dict[str, Any] = {"echo": echo}
    if _is_memory_sqlite(effective_url):
        # An in-memory database only exists on the connection that created it.
        pool_config["poolclass"] = StaticPool
        pool_config["connect_args"] = {"check_same_thread": False}
    else:
        settings = get_settings()
        pool_config.update(
            {
                "poolclass": AsyncAdaptedQueuePool,
                "pool_size": settings.DB_POOL_SIZE,
                "max_overflow": settings.DB_MAX_OVERFLOW,
                "pool_timeout": settings.DB_POOL_TIMEOUT,
            }
        )
        if not effective_url.startswith("sqlite"):
            pool_config["pool_pre_ping"] = True
    return pool_config


def before_cursor_execute(
    conn: Connection,
    _cursor: Any,
    _statement: str,
    _parameters: Any,
    _context: Any,
    _executemany: bool,
) -> None:
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


def after_cursor_execute(
    conn: Connection,
    _cursor: Any,
    statement: str,
    _parameters: Any,
    _context: Any,
    _executemany: bool,
) -> None:
    start_times = conn.info.get("query_start_time")
    if not start_times:
        return
    elapsed = time.perf_counter() - start_times.pop(-1)
    if elapsed > SLOW_QUERY_THRESHOLD_SECONDS:
        logger.warning(
            "slow_query_detected",
            duration_seconds=round(elapsed, 3),
            statement=statement[:200],
        )


def build_engine(location: str | Path, echo: bool = False) -> EngineRuntime:
    effective_url = normalize_location(location)
    try:
        engine = create_async_engine(
            effective_url, **_build_pool_config(effective_url, echo)
        )
    except (ArgumentError, ImportError) as exc:
        raise ConfigurationError(
            f"Invalid store location: {exc}",
            details={"location": str(location)},
        ) from exc

    event.listen(engine.sync_engine, "before_cursor_execute", before_cursor_execute)
    event.listen(engine.sync_engine, "after_cursor_execute", after_cursor_execute)

    logger.info(
        "store_engine_created",
        dialect=engine.dialect.name,
        url=engine.url.render_as_string(hide_password=True),
    )
    return EngineRuntime(
        engine=engine,
        effective_url=effective_url,
        shared_connection=_is_memory_sqlite(effective_url),
    )
