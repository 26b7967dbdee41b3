from __future__ import annotations

import sqlite3
from typing import Optional

from domain.models import Binding
from domain.repositories import BindingRepository


class SqliteBindingRepository(BindingRepository):
    """
    SQLite-backed implementation of `BindingRepository`.

    Stores one row per linked user in `telegram_bindings`. `user_id` is the
    primary key and `chat_id` is UNIQUE, so the mapping stays one-to-one
    even if two processes write at the same time.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _get_transaction_connection(self) -> sqlite3.Connection:
        # Autocommit mode, so BEGIN IMMEDIATE can take the write lock before
        # the first read of a check-and-write.
        conn = sqlite3.connect(self._db_path, isolation_level=None, timeout=10)
        conn.execute("BEGIN IMMEDIATE")
        return conn

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS telegram_bindings (
                    user_id TEXT PRIMARY KEY,
                    chat_id TEXT NOT NULL UNIQUE,
                    display_name TEXT
                )
                """
            )
            conn.commit()

    @staticmethod
    def _to_domain(row: tuple) -> Binding:
        return Binding(user_id=str(row[0]), chat_id=str(row[1]), display_name=row[2])

    def _fetch_one(self, conn: sqlite3.Connection, column: str, value: str) -> Optional[Binding]:
        cur = conn.execute(
            f"SELECT user_id, chat_id, display_name FROM telegram_bindings WHERE {column} = ?",
            (value,),
        )
        row = cur.fetchone()
        if not row:
            return None
        return self._to_domain(row)

    def get_for_user(self, user_id: str) -> Optional[Binding]:
        with self._get_connection() as conn:
            return self._fetch_one(conn, "user_id", user_id)

    def get_for_chat(self, chat_id: str) -> Optional[Binding]:
        with self._get_connection() as conn:
            return self._fetch_one(conn, "chat_id", chat_id)

    def claim(self, binding: Binding) -> Optional[str]:
        conn = self._get_transaction_connection()
        try:
            owner = self._fetch_one(conn, "chat_id", binding.chat_id)
            if owner is not None and owner.user_id != binding.user_id:
                conn.execute("ROLLBACK")
                return owner.user_id

            conn.execute(
                """
                INSERT INTO telegram_bindings (user_id, chat_id, display_name)
                VALUES (?, ?, ?)
                ON CONFLICT (user_id)
                DO UPDATE SET chat_id = excluded.chat_id,
                              display_name = excluded.display_name
                """,
                (binding.user_id, binding.chat_id, binding.display_name),
            )
            conn.execute("COMMIT")
            return None
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _remove(self, column: str, value: str) -> Optional[Binding]:
        conn = self._get_transaction_connection()
        try:
            existing = self._fetch_one(conn, column, value)
            if existing is not None:
                conn.execute(f"DELETE FROM telegram_bindings WHERE {column} = ?", (value,))
            conn.execute("COMMIT")
            return existing
        except sqlite3.Error:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def remove_for_user(self, user_id: str) -> Optional[Binding]:
        return self._remove("user_id", user_id)

    def remove_for_chat(self, chat_id: str) -> Optional[Binding]:
        return self._remove("chat_id", chat_id)
