from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

import psycopg
import structlog
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from menu_digitalizer.core.config import settings
from menu_digitalizer.core.errors import PersistenceError
from menu_digitalizer.db.pool import get_pool
from menu_digitalizer.sessions.base import MenuSessionAdapter, MenuSessionRecord

logger = structlog.get_logger(__name__)

_COLUMNS = """
    id::text AS id,
    user_id,
    restaurant_name,
    menu_data,
    image_urls,
    created_at,
    updated_at
"""


class PostgresMenuSessions(MenuSessionAdapter):
    def __init__(
        self,
        dsn: str | None = None,
        pool: ConnectionPool | None = None,
    ) -> None:
        self._pool: ConnectionPool | None = pool
        self._use_shared_pool = pool is None and dsn is None
        self._tables_ensured = False
        if dsn is not None and pool is None:
            self._pool = ConnectionPool(
                conninfo=dsn,
                min_size=1,
                max_size=1,
                kwargs={"row_factory": dict_row},
                check=ConnectionPool.check_connection,
                open=True,
            )

    @property
    def pool(self) -> ConnectionPool:
        if self._pool is None:
            if self._use_shared_pool:
                self._pool = get_pool()
            else:
                raise RuntimeError("Database pool not initialized")
        if settings.db_auto_create and not self._tables_ensured:
            self._tables_ensured = True
            self._ensure_tables()
        return self._pool

    def save(
        self,
        user_id: str,
        menu_data: dict[str, Any],
        restaurant_name: str | None,
        image_url: str | None = None,
    ) -> MenuSessionRecord:
        row = self._fetch_one(
            f"""
            INSERT INTO menu_sessions (user_id, restaurant_name, menu_data, image_urls)
            VALUES (%(user_id)s, %(restaurant_name)s, %(menu_data)s, %(image_urls)s::text[])
            RETURNING {_COLUMNS}
            """,
            {
                "user_id": user_id,
                "restaurant_name": restaurant_name,
                "menu_data": Json(menu_data),
                "image_urls": [image_url] if image_url else [],
            },
        )
        return MenuSessionRecord(**row)

    def list(self, user_id: str) -> list[MenuSessionRecord]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM menu_sessions
                WHERE user_id = %(user_id)s
                ORDER BY created_at DESC
                """,
                {"user_id": user_id},
            )
            rows = cur.fetchall()
        return [MenuSessionRecord(**row) for row in rows]

    def get(self, user_id: str, session_id: str) -> MenuSessionRecord | None:
        row = self._fetch_one(
            f"""
            SELECT {_COLUMNS}
            FROM menu_sessions
            WHERE id::text = %(session_id)s AND user_id = %(user_id)s
            """,
            {"session_id": session_id, "user_id": user_id},
        )
        return MenuSessionRecord(**row) if row else None

    def update(
        self,
        user_id: str,
        session_id: str,
        *,
        menu_data: dict[str, Any] | None = None,
        restaurant_name: str | None = None,
    ) -> MenuSessionRecord | None:
        updates = ["updated_at = NOW()"]
        params: dict[str, Any] = {"session_id": session_id, "user_id": user_id}

        if menu_data is not None:
            updates.append("menu_data = %(menu_data)s")
            params["menu_data"] = Json(menu_data)

        if restaurant_name is not None:
            updates.append("restaurant_name = %(restaurant_name)s")
            params["restaurant_name"] = restaurant_name

        row = self._fetch_one(
            f"""
            UPDATE menu_sessions
            SET {", ".join(updates)}
            WHERE id::text = %(session_id)s AND user_id = %(user_id)s
            RETURNING {_COLUMNS}
            """,
            params,
        )
        return MenuSessionRecord(**row) if row else None

    def delete(self, user_id: str, session_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                DELETE FROM menu_sessions
                WHERE id::text = %(session_id)s AND user_id = %(user_id)s
                """,
                {"session_id": session_id, "user_id": user_id},
            )
            deleted = cur.rowcount > 0
        return deleted

    def _fetch_one(self, query: str, params: dict[str, Any]) -> dict[str, Any] | None:
        with self._cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return row

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
        except psycopg.Error as exc:
            logger.error("menu_sessions_query_failed", error=str(exc))
            raise PersistenceError(str(exc)) from exc

    def _ensure_tables(self) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS menu_sessions (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id TEXT NOT NULL,
                    restaurant_name TEXT,
                    menu_data JSONB NOT NULL,
                    image_urls TEXT[] NOT NULL DEFAULT '{}',
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS menu_sessions_user_created_idx
                ON menu_sessions (user_id, created_at DESC)
                """
            )
