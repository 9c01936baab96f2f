"""
SQLite access shared by the account and scan record stores.

Every store operation opens its own connection and runs inside a single
transaction, so request handlers running on different threads never share a
connection and never observe a partial write.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
  id TEXT PRIMARY KEY,
  email TEXT UNIQUE NOT NULL,
  name TEXT NOT NULL,
  password_hash TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS scans (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  file_name TEXT NOT NULL,
  file_type TEXT NOT NULL
    CHECK (file_type IN ('image/jpeg', 'image/png', 'image/webp', 'application/pdf')),
  blob_name TEXT UNIQUE NOT NULL,
  file_size INTEGER NOT NULL CHECK (file_size >= 0),
  analysis_date TEXT NOT NULL,
  quality_score INTEGER NOT NULL CHECK (quality_score BETWEEN 0 AND 100),
  freshness TEXT NOT NULL CHECK (freshness IN ('Excellent', 'Good', 'Fair', 'Poor')),
  nutritional_value TEXT NOT NULL CHECK (nutritional_value IN ('High', 'Medium', 'Low')),
  recommendations TEXT NOT NULL,
  warnings TEXT NOT NULL,
  processing_time INTEGER NOT NULL CHECK (processing_time >= 0),
  model_version TEXT NOT NULL,
  confidence REAL NOT NULL CHECK (confidence BETWEEN 0 AND 1),
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_scans_owner_recent ON scans (user_id, created_at DESC, id DESC);
CREATE INDEX IF NOT EXISTS idx_scans_owner_score ON scans (user_id, quality_score);
CREATE INDEX IF NOT EXISTS idx_scans_owner_freshness ON scans (user_id, freshness);
"""


class Database:
  """Opens SQLite connections against a single database file."""

  def __init__(self, path: Union[str, Path], timeout: float = 10.0) -> None:
    self.path = Path(path)
    self.timeout = timeout

  def connect(self) -> sqlite3.Connection:
    """Return a SQLite connection with row access by name."""
    self.path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(self.path, timeout=self.timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn

  @contextmanager
  def transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """
    Yield a connection whose work is committed on success and rolled back on error.

    ``immediate`` takes the write lock up front, for read-then-write sequences
    that must not interleave with other writers.
    """
    conn = self.connect()
    try:
      with conn:
        if immediate:
          conn.execute("BEGIN IMMEDIATE")
        yield conn
    finally:
      conn.close()

  def initialise(self) -> None:
    """Ensure the tables and indexes exist."""
    conn = self.connect()
    try:
      conn.executescript(SCHEMA)
    finally:
      conn.close()
    logger.info("SQLite schema ready at %s", self.path)


__all__ = ["Database"]
