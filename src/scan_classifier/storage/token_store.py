"""
OAuth token persistence.

Google Drive refresh tokens are kept in a small SQLite database keyed by the
Google account e-mail address of the tenant.
"""

from __future__ import annotations

import sqlite3
from contextlib import closing
from dataclasses import dataclass
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS oauth_tokens (
    user_id TEXT PRIMARY KEY,
    refresh_token TEXT NOT NULL,
    token_type TEXT NOT NULL
)
"""

UPSERT_SQL = """
INSERT INTO oauth_tokens (user_id, refresh_token, token_type)
VALUES (?, ?, ?)
ON CONFLICT(user_id) DO UPDATE SET
    refresh_token = excluded.refresh_token,
    token_type = excluded.token_type
"""


@dataclass(frozen=True)
class StoredToken:
    refresh_token: str
    token_type: str = "Bearer"


class TokenStore:
    """SQLite-backed refresh token store; opens a connection per call."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _connect(self) -> sqlite3.Connection:
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=30)
        conn.execute(CREATE_TABLE_SQL)
        return conn

    def save(self, user_id: str, refresh_token: str, token_type: str = "Bearer") -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(UPSERT_SQL, (user_id, refresh_token, token_type))
        log.info("Saved OAuth token", user_id=user_id)

    def get(self, user_id: str) -> StoredToken | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT refresh_token, token_type FROM oauth_tokens WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return StoredToken(refresh_token=row[0], token_type=row[1])
