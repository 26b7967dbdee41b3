from __future__ import annotations

from typing import Optional

import psycopg2
from psycopg2 import errors

from domain.models import Binding
from domain.repositories import BindingRepository

CLAIM_ATTEMPTS = 3


class PostgresBindingRepository(BindingRepository):
    """
    Postgres-backed implementation of `BindingRepository`.

    Uses a `telegram_bindings` table keyed by `user_id` with a UNIQUE
    `chat_id`. `claim` is a single upsert: a chat held by someone else
    surfaces as a unique violation, which is rolled back and reported as a
    conflict instead of overwriting the other user's binding.
    """

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        self._ensure_table()

    def _get_connection(self):
        return psycopg2.connect(**self._db_params)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
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
    def _to_domain(row) -> Binding:
        return Binding(user_id=str(row[0]), chat_id=str(row[1]), display_name=row[2])

    def _get_by(self, column: str, value: str) -> Optional[Binding]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT user_id, chat_id, display_name
                    FROM telegram_bindings
                    WHERE {column} = %s
                    """,
                    (value,),
                )
                row = cur.fetchone()
                if not row:
                    return None
                return self._to_domain(row)

    def get_for_user(self, user_id: str) -> Optional[Binding]:
        return self._get_by("user_id", user_id)

    def get_for_chat(self, chat_id: str) -> Optional[Binding]:
        return self._get_by("chat_id", chat_id)

    def claim(self, binding: Binding) -> Optional[str]:
        for _ in range(CLAIM_ATTEMPTS):
            conn = self._get_connection()
            try:
                with conn.cursor() as cur:
                    try:
                        cur.execute(
                            """
                            INSERT INTO telegram_bindings (user_id, chat_id, display_name)
                            VALUES (%s, %s, %s)
                            ON CONFLICT (user_id)
                            DO UPDATE SET chat_id = EXCLUDED.chat_id,
                                          display_name = EXCLUDED.display_name
                            """,
                            (binding.user_id, binding.chat_id, binding.display_name),
                        )
                    except errors.UniqueViolation:
                        conn.rollback()
                        cur.execute(
                            "SELECT user_id FROM telegram_bindings WHERE chat_id = %s",
                            (binding.chat_id,),
                        )
                        row = cur.fetchone()
                        conn.rollback()
                        if row:
                            return str(row[0])
                        # The holder unlinked in the meantime; try again.
                        continue
                conn.commit()
                return None
            finally:
                conn.close()

        raise RuntimeError(f"Could not claim chat {binding.chat_id} for user {binding.user_id}")

    def _delete_by(self, column: str, value: str) -> Optional[Binding]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    DELETE FROM telegram_bindings
                    WHERE {column} = %s
                    RETURNING user_id, chat_id, display_name
                    """,
                    (value,),
                )
                row = cur.fetchone()
                conn.commit()
                if not row:
                    return None
                return self._to_domain(row)

    def remove_for_user(self, user_id: str) -> Optional[Binding]:
        return self._delete_by("user_id", user_id)

    def remove_for_chat(self, chat_id: str) -> Optional[Binding]:
        return self._delete_by("chat_id", chat_id)
