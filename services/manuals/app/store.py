"""
Persistence for the manuals table (PostgreSQL via psycopg 3).

ManualStore receives an injected AsyncConnectionPool; every method borrows a
connection for its own duration only (acquire / use / release), commits on a
clean exit and lets any database error propagate to the caller. A run that
cannot persist must stop instead of carrying on with unsaved state.

Column names stay as the table has always had them (name_jp/name_en,
pdf_local_path); the mapping to CatalogRecord happens in record_from_row().
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .models import CatalogRecord, Suggestion

logger = logging.getLogger("store")

SCHEMA_SQL = """
CREATE SCHEMA IF NOT EXISTS {schema};

CREATE TABLE IF NOT EXISTS {table} (
  manual_id INTEGER PRIMARY KEY,
  detail_path TEXT,
  detail_url TEXT,
  pdf_url TEXT UNIQUE,
  pdf_local_path TEXT,
  name_jp TEXT,
  name_en TEXT,
  grade TEXT,
  release_date DATE,
  release_date_text TEXT,
  image_url TEXT,
  storage_bucket TEXT,
  storage_path TEXT,
  storage_public_url TEXT,
  storage_size_bytes BIGINT,
  storage_uploaded_at TIMESTAMPTZ,
  created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_manuals_release_date ON {table} (release_date);
CREATE INDEX IF NOT EXISTS idx_manuals_grade ON {table} (grade);
"""

# pdf_local_path is deliberately absent: only the downloader writes it.
UPSERT_SQL = """
INSERT INTO {table} (
  manual_id, detail_path, detail_url, pdf_url, name_jp, name_en,
  grade, release_date, release_date_text, image_url
) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (manual_id) DO UPDATE SET
  detail_path = EXCLUDED.detail_path,
  detail_url = EXCLUDED.detail_url,
  pdf_url = EXCLUDED.pdf_url,
  name_jp = EXCLUDED.name_jp,
  name_en = EXCLUDED.name_en,
  grade = EXCLUDED.grade,
  release_date = EXCLUDED.release_date,
  release_date_text = EXCLUDED.release_date_text,
  image_url = EXCLUDED.image_url,
  updated_at = now()
"""

SET_LOCAL_PATH_SQL = "UPDATE {table} SET pdf_local_path = %s, updated_at = now() WHERE manual_id = %s"

RECORD_COLUMNS = (
    "manual_id, detail_path, detail_url, pdf_url, pdf_local_path, name_jp, name_en, "
    "grade, release_date, release_date_text, image_url"
)

EXPORT_COLUMNS = (
    "manual_id",
    "detail_path",
    "detail_url",
    "pdf_url",
    "pdf_local_path",
    "name_jp",
    "name_en",
    "grade",
    "release_date",
    "release_date_text",
    "image_url",
    "storage_bucket",
    "storage_path",
    "storage_public_url",
    "storage_size_bytes",
    "storage_uploaded_at",
    "created_at",
    "updated_at",
)

# Every search token must hit one of these (AND of ORs)
TOKEN_MATCH_SQL = "(name_en ILIKE %s OR name_jp ILIKE %s OR (grade || ' ' || name_en) ILIKE %s)"
NEWEST_FIRST_SQL = "ORDER BY COALESCE(release_date, DATE '1900-01-01') DESC, manual_id DESC"

SEARCH_MAX = 25
SUGGEST_MAX = 20
SUGGEST_TOKENS = 5


def record_from_row(row: Dict[str, Any]) -> CatalogRecord:
    return CatalogRecord(
        id=row["manual_id"],
        detail_path=row.get("detail_path"),
        detail_url=row.get("detail_url"),
        pdf_url=row["pdf_url"],
        name_native=row.get("name_jp"),
        name_foreign=row.get("name_en"),
        grade=row.get("grade"),
        release_date=row.get("release_date"),
        release_date_text=row.get("release_date_text"),
        image_url=row.get("image_url"),
        local_path=row.get("pdf_local_path"),
    )


def tokenize(query: str, max_tokens: Optional[int] = None) -> List[str]:
    tokens = [t for t in (query or "").split() if t]
    return tokens[:max_tokens] if max_tokens else tokens


def suggestion_label(row: Dict[str, Any]) -> str:
    grade = f"{row['grade']} " if row.get("grade") else ""
    name = row.get("name_en") or row.get("name_jp") or "Manual"
    return f"{grade}{name} [{row['manual_id']}]"


def _clamp(value: int, upper: int) -> int:
    return max(1, min(upper, int(value)))


class ManualStore:
    def __init__(self, pool: AsyncConnectionPool, schema: str = "bandai"):
        self.pool = pool
        self.schema = schema
        self._table = sql.Identifier(schema, "manuals")

    def _q(self, template: str) -> sql.Composed:
        return sql.SQL(template).format(table=self._table, schema=sql.Identifier(self.schema))

    # -------------------------------------------------------------------------
    # Low-level helpers: one pooled connection per call
    # -------------------------------------------------------------------------
    async def _execute(self, query: sql.Composable, params: Optional[Sequence[Any]] = None) -> int:
        async with self.pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return cur.rowcount

    async def _fetchall(self, query: sql.Composable, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------
    async def init_schema(self) -> None:
        await self._execute(self._q(SCHEMA_SQL))
        logger.info("schema %s ready", self.schema)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    async def upsert(self, record: CatalogRecord) -> None:
        """Insert or update by manual_id. Safe to repeat with identical input."""
        await self._execute(
            self._q(UPSERT_SQL),
            (
                record.id,
                record.detail_path,
                record.detail_url,
                record.pdf_url,
                record.name_native,
                record.name_foreign,
                record.grade,
                record.release_date,
                record.release_date_text,
                record.image_url,
            ),
        )

    async def set_local_path(self, manual_id: int, local_path: str) -> None:
        await self._execute(self._q(SET_LOCAL_PATH_SQL), (local_path, manual_id))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    async def select_for_download(
        self,
        *,
        only_missing: bool = True,
        grades: Sequence[str] = (),
        ids: Sequence[int] = (),
        limit: Optional[int] = None,
    ) -> List[CatalogRecord]:
        clauses = ["pdf_url IS NOT NULL"]
        params: List[Any] = []
        if only_missing:
            clauses.append("(pdf_local_path IS NULL OR pdf_local_path = %s)")
            params.append("")
        if grades:
            clauses.append("grade = ANY(%s)")
            params.append(list(grades))
        if ids:
            clauses.append("manual_id = ANY(%s)")
            params.append(list(ids))

        template = f"SELECT {RECORD_COLUMNS} FROM {{table}} WHERE {' AND '.join(clauses)} ORDER BY manual_id ASC"
        if limit:
            template += " LIMIT %s"
            params.append(int(limit))
        rows = await self._fetchall(self._q(template), params)
        return [record_from_row(r) for r in rows]

    async def get_by_id(self, manual_id: int) -> Optional[CatalogRecord]:
        rows = await self._fetchall(
            self._q(f"SELECT {RECORD_COLUMNS} FROM {{table}} WHERE manual_id = %s"), (manual_id,)
        )
        return record_from_row(rows[0]) if rows else None

    async def search(self, query: str, grade: Optional[str] = None, limit: int = 5) -> List[CatalogRecord]:
        """
        Every whitespace token must appear (case-insensitive) in the English
        name, the Japanese name or "grade + English name"; newest first.
        """
        clauses: List[str] = []
        params: List[Any] = []
        for token in tokenize(query):
            clauses.append(TOKEN_MATCH_SQL)
            params.extend([f"%{token}%"] * 3)
        if grade:
            clauses.append("grade = %s")
            params.append(grade)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(_clamp(limit, SEARCH_MAX))
        rows = await self._fetchall(
            self._q(f"SELECT {RECORD_COLUMNS} FROM {{table}} {where} {NEWEST_FIRST_SQL} LIMIT %s"), params
        )
        return [record_from_row(r) for r in rows]

    async def suggest(self, query: str, limit: int = SUGGEST_MAX) -> List[Suggestion]:
        tokens = tokenize(query, SUGGEST_TOKENS)
        if not tokens:
            return []
        params: List[Any] = []
        for token in tokens:
            params.extend([f"%{token}%"] * 3)
        params.append(_clamp(limit, SUGGEST_MAX))
        where = " AND ".join([TOKEN_MATCH_SQL] * len(tokens))
        rows = await self._fetchall(
            self._q(f"SELECT manual_id, name_en, name_jp, grade FROM {{table}} WHERE {where} {NEWEST_FIRST_SQL} LIMIT %s"),
            params,
        )
        return [Suggestion(name=suggestion_label(r), value=str(r["manual_id"])) for r in rows]

    async def count(self) -> int:
        rows = await self._fetchall(self._q("SELECT count(*) AS n FROM {table}"))
        return int(rows[0]["n"]) if rows else 0

    async def iter_batches(self, batch_size: int = 1000) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Walk the whole table by primary key (keyset pagination), yielding raw
        rows with every column, batch_size at a time.
        """
        columns = ", ".join(EXPORT_COLUMNS)
        after_id: Optional[int] = None
        while True:
            if after_id is None:
                rows = await self._fetchall(
                    self._q(f"SELECT {columns} FROM {{table}} ORDER BY manual_id ASC LIMIT %s"), (batch_size,)
                )
            else:
                rows = await self._fetchall(
                    self._q(f"SELECT {columns} FROM {{table}} WHERE manual_id > %s ORDER BY manual_id ASC LIMIT %s"),
                    (after_id, batch_size),
                )
            if not rows:
                return
            yield rows
            after_id = rows[-1]["manual_id"]
