"""Per-user credential mapping stores: (user_id, cred_type) → n8n credential ID.

Two implementations of the CredentialStore contract:

  InMemoryCredentialStore  — process-local dict, for tests and the CLI.
  PostgresCredentialStore  — psycopg AsyncConnectionPool backed; upserts into
                             credential_mappings (unique on user_id, cred_type).

Only IDs are stored. Secrets never leave n8n.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger("n8n_draft_agent.credentials.store")


@runtime_checkable
class CredentialStore(Protocol):
    async def get(self, user_id: str, cred_type: str) -> str | None: ...

    async def set(self, user_id: str, cred_type: str, credential_id: str) -> None: ...


class InMemoryCredentialStore:
    """Dict-backed CredentialStore."""

    def __init__(self, initial: dict[tuple[str, str], str] | None = None) -> None:
        self._data: dict[tuple[str, str], str] = dict(initial or {})

    async def get(self, user_id: str, cred_type: str) -> str | None:
        return self._data.get((user_id, cred_type))

    async def set(self, user_id: str, cred_type: str, credential_id: str) -> None:
        self._data[(user_id, cred_type)] = credential_id


# ---------------------------------------------------------------------------
# Postgres
# ---------------------------------------------------------------------------

_DDL = """
CREATE TABLE IF NOT EXISTS credential_mappings (
    user_id            TEXT        NOT NULL,
    cred_type          TEXT        NOT NULL,
    n8n_credential_id  TEXT        NOT NULL,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (user_id, cred_type)
)
"""

_GET = """
SELECT n8n_credential_id
  FROM credential_mappings
 WHERE user_id = %s
   AND cred_type = %s
 LIMIT 1
"""

_PUT = """
INSERT INTO credential_mappings (user_id, cred_type, n8n_credential_id)
VALUES (%s, %s, %s)
ON CONFLICT (user_id, cred_type) DO UPDATE SET
    n8n_credential_id = EXCLUDED.n8n_credential_id,
    updated_at        = now()
"""


class PostgresCredentialStore:
    """Postgres-backed CredentialStore.

    Constructed with a psycopg AsyncConnectionPool opened with
    row_factory=dict_row. Call setup() once at startup.
    """

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    @classmethod
    async def open(cls, dsn: str, min_size: int = 1, max_size: int = 5) -> PostgresCredentialStore:
        """Open a dedicated pool for the store and run setup().

        Requires: pip install 'n8n-draft-agent[postgres]'
        """
        from psycopg.rows import dict_row
        from psycopg_pool import AsyncConnectionPool

        pool = AsyncConnectionPool(
            conninfo=dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"autocommit": True, "row_factory": dict_row},
            open=False,
        )
        await pool.open()
        store = cls(pool)
        await store.setup()
        return store

    async def close(self) -> None:
        await self._pool.close()

    async def setup(self) -> None:
        """Execute DDL (IF NOT EXISTS). Safe to call on every startup."""
        async with self._pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(_DDL)
        logger.info("[CredentialStore] DDL setup complete")

    async def get(self, user_id: str, cred_type: str) -> str | None:
        async with self._pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(_GET, (user_id, cred_type))
                row = await cur.fetchone()
        return row["n8n_credential_id"] if row else None

    async def set(self, user_id: str, cred_type: str, credential_id: str) -> None:
        async with self._pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(_PUT, (user_id, cred_type, credential_id))
