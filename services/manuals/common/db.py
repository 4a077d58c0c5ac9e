"""
PostgreSQL connection pool factory.

The pool is created explicitly by whoever runs a job (CLI command, API
startup) and handed to ManualStore; nothing here is a process-wide singleton.
Every store call borrows one connection for its own duration:

    async with pool.connection() as conn:   # acquire
        ...                                 # use (commit on clean exit)
                                            # release
"""

import logging
import re

from psycopg.conninfo import make_conninfo
from psycopg_pool import AsyncConnectionPool

from common.config import Settings, mask_url

logger = logging.getLogger("db")

# Hosted providers that refuse plain-text connections
_SSL_HOSTS = re.compile(r"@(.*\.)?(supabase\.co|neon\.tech|render\.com)", re.IGNORECASE)


def _has_pg_fields(settings: Settings) -> bool:
    return bool(settings.pg_host or settings.pg_user or settings.pg_password or settings.pg_database)


def build_conninfo(settings: Settings) -> str:
    """
    Build a libpq connection string.

    Explicit PG* fields take precedence over DATABASE_URL so a local export can
    point somewhere else without editing the URL.
    """
    if settings.database_url and not _has_pg_fields(settings):
        url = settings.database_url
        if "sslmode=" not in url.lower() and _SSL_HOSTS.search(url):
            return make_conninfo(url, sslmode="require")
        return url

    params = {
        "host": settings.pg_host or "127.0.0.1",
        "port": settings.pg_port,
        "user": settings.pg_user or "postgres",
        "password": settings.pg_password or "postgres",
        "dbname": settings.pg_database or "postgres",
    }
    if settings.pg_ssl:
        params["sslmode"] = "require"
    return make_conninfo("", **params)


def create_pool(settings: Settings) -> AsyncConnectionPool:
    """
    Return an unopened pool; open it with `async with create_pool(s) as pool`
    or `await pool.open()`.
    """
    conninfo = build_conninfo(settings)
    logger.info(
        "Postgres pool max=%s target=%s",
        settings.pg_pool_max,
        mask_url(settings.database_url) if settings.database_url and not _has_pg_fields(settings)
        else settings.pg_host or "127.0.0.1",
    )
    return AsyncConnectionPool(
        conninfo,
        min_size=1,
        max_size=max(1, settings.pg_pool_max),
        open=False,
    )
