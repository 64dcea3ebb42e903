"""Postgres advisory lock context manager and decorator.

Uses PostgreSQL advisory locks (pg_try_advisory_lock / pg_advisory_unlock) so that a
named job only runs in one process at a time. On other databases (SQLite in tests and
local development) there is nothing to coordinate with and the lock is always granted.
"""
from __future__ import annotations

import hashlib
from contextlib import contextmanager
from typing import Generator
from sqlalchemy import text
from .. import db


def _job_key(job_id: str) -> int:
    # stable signed 64-bit key from the job id
    h = hashlib.sha256(job_id.encode("utf-8")).digest()
    return int.from_bytes(h[:8], byteorder="big", signed=True)


@contextmanager
def pg_try_advisory_lock(job_id: str) -> Generator[bool, None, None]:
    """Try to acquire the advisory lock for job_id. Yields True if acquired.

    Usage:
        with pg_try_advisory_lock('sweep_leftover_resources') as locked:
            if not locked:
                return
            ...
    """
    if db.engine.dialect.name != "postgresql":
        yield True
        return
    key = _job_key(job_id)
    conn = db.engine.connect()
    locked = False
    try:
        locked = bool(conn.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": key}).scalar())
        yield locked
    finally:
        if locked:
            conn.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": key})
        conn.close()

