"""
PostgreSQL connection helper for prompt-lab.

A Database is built once at process start and passed explicitly to the
result store. Uses psycopg's async connections so that many evaluations can
persist results concurrently without blocking the event loop.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import psycopg
from loguru import logger


class Database:
    """
    Shared handle on the results database.

    Usage:
        db = Database(settings.POSTGRES_DSN)
        async with db.connection() as conn:
            await conn.execute("SELECT 1")

    Each ``connection()`` block commits on success, rolls back on error and
    closes the connection on exit.
    """

    def __init__(self, dsn: str):
        self.dsn = dsn

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        try:
            conn = await psycopg.AsyncConnection.connect(self.dsn)
            logger.debug("Connected to PostgreSQL")
        except Exception as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise

        async with conn:
            yield conn
