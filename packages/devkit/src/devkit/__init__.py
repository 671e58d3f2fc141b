"""Common runtime devkit for service infrastructure concerns."""

from devkit.config import ServiceSettings, load_settings
from devkit.db import (
    AsyncDatabaseManager,
    Base,
    configure_alembic_connection,
    create_all_tables,
    create_async_engine,
    create_schema_if_not_exists,
    create_session_factory,
    is_postgres_dsn,
    is_transient_db_error,
    is_unique_violation,
    load_database_url,
    normalize_postgres_dsn,
)
from devkit.observability import configure_logging, configure_otel, configure_probe_access_log_filter
from devkit.redis import AsyncRedisManager, create_redis_client, create_revoked_session_store
from devkit.retry import backoff_delay, run_with_retry
from devkit.timezone import configure_wib_timezone, now_wib, now_wib_iso, parse_iso_datetime

__all__ = [
    "AsyncDatabaseManager",
    "AsyncRedisManager",
    "Base",
    "ServiceSettings",
    "backoff_delay",
    "configure_alembic_connection",
    "configure_logging",
    "configure_otel",
    "configure_probe_access_log_filter",
    "configure_wib_timezone",
    "create_all_tables",
    "create_async_engine",
    "create_redis_client",
    "create_revoked_session_store",
    "create_schema_if_not_exists",
    "create_session_factory",
    "is_postgres_dsn",
    "is_transient_db_error",
    "is_unique_violation",
    "load_database_url",
    "load_settings",
    "normalize_postgres_dsn",
    "now_wib",
    "now_wib_iso",
    "parse_iso_datetime",
    "run_with_retry",
]
