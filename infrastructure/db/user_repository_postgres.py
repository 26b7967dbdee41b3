from __future__ import annotations

from typing import Optional

import psycopg2

from domain.models import User
from domain.repositories import UserRepository


class PostgresUserRepository(UserRepository):
    """
    Postgres-backed implementation of `UserRepository`.

    Reads names from the tracker's existing `users` table; the bot never
    changes user records apart from `add_user`, used for seeding.
    """

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params

    def _get_connection(self):
        return psycopg2.connect(**self._db_params)

    @staticmethod
    def _to_domain(row) -> User:
        return User(id=str(row[0]).strip(), full_name=row[1])

    def get_user(self, user_id: str) -> Optional[User]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT id, full_name FROM users WHERE id = %s", (user_id,))
                row = cur.fetchone()
                if not row:
                    return None
                return self._to_domain(row)

    def add_user(self, user: User) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO users (id, full_name)
                    VALUES (%s, %s)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    (user.id, user.full_name),
                )
                conn.commit()
