"""SQLite record store.

Proposals and votes live in two tables holding the JSON record alongside a
few indexed columns for lookups.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..errors.exceptions import StorageError
from .base import Record, RecordStore


@dataclass
class DatabaseConfig:
    """Database configuration."""

    database_path: str = "lunadao.db"
    connection_timeout: float = 30.0
    synchronous: str = "NORMAL"  # OFF, NORMAL, FULL
    journal_mode: str = "WAL"  # DELETE, TRUNCATE, PERSIST, MEMORY, WAL, OFF


class SQLiteRecordStore(RecordStore):
    """SQLite-backed record store."""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._logger = logging.getLogger(__name__)

        if self.config.database_path != ":memory:":
            Path(self.config.database_path).parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> None:
        """Establish SQLite database connection."""
        with self._lock:
            if self._connection is not None:
                return

            try:
                self._connection = sqlite3.connect(
                    self.config.database_path,
                    timeout=self.config.connection_timeout,
                    check_same_thread=False,
                )
                self._connection.execute(f"PRAGMA synchronous = {self.config.synchronous}")
                if self.config.database_path != ":memory:":
                    self._connection.execute(
                        f"PRAGMA journal_mode = {self.config.journal_mode}"
                    )
                self._create_tables()
                self._logger.info(
                    "Connected to SQLite database: %s", self.config.database_path
                )
            except sqlite3.Error as e:
                self._connection = None
                raise StorageError(
                    f"Failed to connect to database: {e}",
                    storage_type="sqlite",
                    operation="connect",
                    cause=e,
                ) from e

    def close(self) -> None:
        """Close SQLite database connection."""
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.close()
                    self._logger.info("Disconnected from SQLite database")
                except sqlite3.Error as e:
                    self._logger.error("Error closing database connection: %s", e)
                finally:
                    self._connection = None

    def _create_tables(self) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS proposals (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                proposer TEXT NOT NULL,
                payload TEXT NOT NULL,  -- JSON
                updated_at REAL NOT NULL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS votes (
                id TEXT PRIMARY KEY,
                proposal_id TEXT NOT NULL,
                voter TEXT NOT NULL,
                payload TEXT NOT NULL,  -- JSON
                timestamp REAL NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_proposals_status ON proposals(status)",
            "CREATE INDEX IF NOT EXISTS idx_votes_proposal ON votes(proposal_id)",
        ]
        for sql in statements:
            self._connection.execute(sql)
        self._connection.commit()

    def _execute(self, operation: str, sql: str, params: tuple = ()) -> List[tuple]:
        with self._lock:
            if self._connection is None:
                self.connect()
            try:
                cursor = self._connection.execute(sql, params)
                rows = cursor.fetchall()
                self._connection.commit()
                return rows
            except sqlite3.Error as e:
                raise StorageError(
                    f"Query execution failed: {e}",
                    storage_type="sqlite",
                    operation=operation,
                    cause=e,
                ) from e

    @staticmethod
    def _dumps(operation: str, record: Record) -> str:
        try:
            return json.dumps(record, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"Record is not JSON serializable: {e}",
                storage_type="sqlite",
                operation=operation,
                cause=e,
            ) from e

    def save_proposal(self, record: Record) -> None:
        payload = self._dumps("save_proposal", record)
        self._execute(
            "save_proposal",
            "INSERT OR REPLACE INTO proposals (id, status, proposer, payload, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                record["id"],
                record["status"],
                record["proposer"],
                payload,
                record["updated_at"],
            ),
        )

    def save_vote(self, record: Record) -> None:
        payload = self._dumps("save_vote", record)
        self._execute(
            "save_vote",
            "INSERT OR REPLACE INTO votes (id, proposal_id, voter, payload, timestamp) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                record["vote_id"],
                record["proposal_id"],
                record["voter_address"],
                payload,
                record["timestamp"],
            ),
        )

    def delete_vote(self, vote_id: str) -> None:
        self._execute("delete_vote", "DELETE FROM votes WHERE id = ?", (vote_id,))

    def get_proposal(self, proposal_id: str) -> Optional[Record]:
        rows = self._execute(
            "get_proposal", "SELECT payload FROM proposals WHERE id = ?", (proposal_id,)
        )
        return json.loads(rows[0][0]) if rows else None

    def get_vote(self, vote_id: str) -> Optional[Record]:
        rows = self._execute("get_vote", "SELECT payload FROM votes WHERE id = ?", (vote_id,))
        return json.loads(rows[0][0]) if rows else None

    def load_proposals(self) -> List[Record]:
        rows = self._execute(
            "load_proposals", "SELECT payload FROM proposals ORDER BY updated_at"
        )
        return [json.loads(row[0]) for row in rows]

    def load_votes(self) -> List[Record]:
        rows = self._execute("load_votes", "SELECT payload FROM votes ORDER BY timestamp")
        return [json.loads(row[0]) for row in rows]

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self
