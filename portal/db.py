"""
portal/db.py - SQLite storage for tournament documents.

All queries go through TournamentDB. One instance per server lifetime,
backed by a single SQLite file (or :memory: for tests). The connection is
opened lazily on first use and closed by the server's shutdown hook.
Tournaments are stored as JSON documents alongside a few indexed columns.
"""

import json
import logging
import sqlite3
import threading
from typing import Any

from bracketchain.errors import PersistenceError, ValidationError
from bracketchain.models import Tournament

logger = logging.getLogger(__name__)


class TournamentDB:
    """Thin wrapper around SQLite for tournament storage."""

    def __init__(self, path: str = "tournaments.db"):
        self.path = path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                conn = sqlite3.connect(self.path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                _create_tables(conn)
            except sqlite3.Error as e:
                raise PersistenceError(f"Could not open database {self.path}: {e}")
            self._conn = conn
            logger.info(f"Opened tournament database at {self.path}")
        return self._conn

    def _execute(self, sql: str, params: tuple = (), commit: bool = False) -> list[sqlite3.Row]:
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(sql, params).fetchall()
                if commit:
                    conn.commit()
                return rows
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceError(f"Database error: {e}")

    def health_check(self) -> bool:
        try:
            self._execute("SELECT 1")
            return True
        except PersistenceError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Closed tournament database")

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    def insert_tournament(self, tournament: Tournament) -> None:
        doc = tournament.to_dict()
        self._execute(
            "INSERT INTO tournaments (id, name, creator, status, escrow_id, doc, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                tournament.id,
                tournament.name,
                tournament.creator,
                tournament.status.value,
                tournament.escrow_id,
                json.dumps(doc),
                doc["createdAt"],
                doc["updatedAt"],
            ),
            commit=True,
        )

    def save_tournament(self, tournament: Tournament) -> None:
        """Overwrite an existing tournament document."""
        doc = tournament.to_dict()
        self._execute(
            "UPDATE tournaments SET name = ?, status = ?, escrow_id = ?, doc = ?, updated_at = ? "
            "WHERE id = ?",
            (
                tournament.name,
                tournament.status.value,
                tournament.escrow_id,
                json.dumps(doc),
                doc["updatedAt"],
                tournament.id,
            ),
            commit=True,
        )

    def get_tournament(self, tournament_id: str) -> Tournament | None:
        rows = self._execute("SELECT doc FROM tournaments WHERE id = ?", (tournament_id,))
        if not rows:
            return None
        return _load(rows[0]["doc"])

    def list_tournaments(self, status: str | None = None) -> list[Tournament]:
        """All tournaments, newest first."""
        if status is not None:
            rows = self._execute(
                "SELECT doc FROM tournaments WHERE status = ? ORDER BY created_at DESC", (status,)
            )
        else:
            rows = self._execute("SELECT doc FROM tournaments ORDER BY created_at DESC")
        return [_load(r["doc"]) for r in rows]

    def count_tournaments(self) -> int:
        return self._execute("SELECT COUNT(*) AS n FROM tournaments")[0]["n"]


def _create_tables(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS tournaments (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            creator TEXT NOT NULL,
            status TEXT NOT NULL,
            escrow_id INTEGER,
            doc TEXT NOT NULL,
            created_at TEXT,
            updated_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_tournaments_status ON tournaments(status);
        """
    )


def _load(raw: str) -> Tournament:
    try:
        data: dict[str, Any] = json.loads(raw)
        return Tournament.from_dict(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise PersistenceError(f"Corrupt tournament document: {e}")
