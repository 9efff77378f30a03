"""Audit Ledger.

Append-only, hash-chained event log plus the terminal transaction log. The
transaction log doubles as the 30-day per-rail history the scorer reads.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Dict, List, Optional

from flowrail.ledger.models import (
    ChainValidationResult,
    EventType,
    LedgerEntry,
    TransactionLogEntry,
    TransactionStatus,
)
from flowrail.registry.ports import TransactionHistoryRepository


logger = logging.getLogger(__name__)


class TransactionLogSink(ABC):
    """Receives the terminal outcome of every payment intent."""

    @abstractmethod
    def append(self, entry: TransactionLogEntry) -> None:
        """Record a terminal outcome."""


class AuditLedger(TransactionLogSink, TransactionHistoryRepository):
    """
    Immutable Audit Ledger with hash-chaining.

    Features:
    - Append-only design (no updates/deletes)
    - Each event links to the previous one via hash
    - Chain validation recomputes hashes and detects tampering
    - SQLite storage (in-memory by default)
    - Per-user transaction history and per-rail success counts
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the audit ledger.

        Args:
            db_path: Path to SQLite database. If None, uses in-memory DB.
        """
        self.db_path = db_path or ":memory:"
        self._lock = threading.RLock()

        # Keep persistent connection for in-memory DBs
        self._conn: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)

        self._init_db()
        self._last_hash: str = self._get_last_hash()

        logger.info(f"Audit Ledger initialized: {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn:
            return self._conn
        return sqlite3.connect(self.db_path)

    def _close_connection(self, conn: sqlite3.Connection) -> None:
        """Close connection if not persistent."""
        if conn is not self._conn:
            conn.close()

    def log_event(
        self,
        event_type: EventType,
        payload: dict,
        user_id: Optional[str] = None,
        intent_id: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Append an audit event linked to the previous entry's hash.

        Args:
            event_type: Type of event
            payload: JSON-serializable event data
            user_id: User who triggered the event
            intent_id: Related payment intent

        Returns:
            The created LedgerEntry
        """
        with self._lock:
            entry = LedgerEntry(
                event_type=event_type,
                payload=payload,
                previous_hash=self._last_hash,
                user_id=user_id,
                intent_id=intent_id,
            )
            self._store_entry(entry)
            self._last_hash = entry.hash

        logger.debug(f"Ledger append: {event_type.value} [{entry.entry_id}]")
        return entry

    def append(self, entry: TransactionLogEntry) -> None:
        """Record a terminal transaction outcome and audit it."""
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                """INSERT INTO transactions
                   (intent_id, user_id, rail_used, amount, currency, status, timestamp, note, reference)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.intent_id,
                    entry.user_id,
                    entry.rail_used,
                    entry.amount,
                    entry.currency,
                    entry.status.value,
                    entry.timestamp.isoformat(),
                    entry.note,
                    entry.reference,
                ),
            )
            conn.commit()
            self._close_connection(conn)

            self.log_event(
                EventType.TRANSACTION_LOGGED,
                payload=entry.model_dump(mode="json"),
                user_id=entry.user_id,
                intent_id=entry.intent_id,
            )

        logger.info(
            f"Transaction {entry.intent_id}: {entry.status.value} "
            f"via {entry.rail_used or '-'} ({entry.currency} {entry.amount:.2f})"
        )

    def recent_by_rail(self, user_id: str, days: int = 30) -> Dict[str, int]:
        """Successful transactions per rail within the last ``days`` days."""
        since = (datetime.now(UTC) - timedelta(days=days)).isoformat()
        with self._lock:
            conn = self._get_connection()
            rows = conn.execute(
                """SELECT rail_used, COUNT(*) FROM transactions
                   WHERE user_id = ? AND status = ? AND timestamp >= ? AND rail_used IS NOT NULL
                   GROUP BY rail_used""",
                (user_id, TransactionStatus.SUCCESS.value, since),
            ).fetchall()
            self._close_connection(conn)
        return {rail_id: count for rail_id, count in rows}

    def get_transactions(self, user_id: str, limit: int = 50) -> List[TransactionLogEntry]:
        """Most recent transactions for a user, newest first."""
        with self._lock:
            conn = self._get_connection()
            rows = conn.execute(
                """SELECT intent_id, user_id, rail_used, amount, currency, status, timestamp, note, reference
                   FROM transactions WHERE user_id = ? ORDER BY seq DESC LIMIT ?""",
                (user_id, limit),
            ).fetchall()
            self._close_connection(conn)

        return [
            TransactionLogEntry(
                intent_id=row[0],
                user_id=row[1],
                rail_used=row[2],
                amount=row[3],
                currency=row[4],
                status=TransactionStatus(row[5]),
                timestamp=datetime.fromisoformat(row[6]),
                note=row[7],
                reference=row[8],
            )
            for row in rows
        ]

    def get_entries_by_intent(self, intent_id: str) -> List[LedgerEntry]:
        """All audit events for an intent, in append order."""
        return self._select_entries("WHERE intent_id = ? ORDER BY seq ASC", (intent_id,))

    def get_recent_entries(self, limit: int = 20) -> List[LedgerEntry]:
        return self._select_entries("ORDER BY seq DESC LIMIT ?", (limit,))

    def get_entry_count(self) -> int:
        with self._lock:
            conn = self._get_connection()
            count = conn.execute("SELECT COUNT(*) FROM ledger").fetchone()[0]
            self._close_connection(conn)
        return count

    def validate_chain(self) -> ChainValidationResult:
        """
        Validate the entire hash chain.

        Recomputes every entry's hash and checks that each ``previous_hash``
        matches the recomputed hash of the entry before it.
        """
        rows = self._select_rows("ORDER BY seq ASC", ())
        if not rows:
            return ChainValidationResult(is_valid=True, total_entries=0)

        entries = [self._row_to_entry(row) for row in rows]
        stored_hashes = [row[5] for row in rows]

        if entries[0].previous_hash != "genesis":
            return ChainValidationResult(
                is_valid=False,
                total_entries=len(entries),
                broken_at=0,
                error_message="First entry doesn't have genesis hash",
            )

        for i, entry in enumerate(entries):
            if entry.hash != stored_hashes[i]:
                return ChainValidationResult(
                    is_valid=False,
                    total_entries=len(entries),
                    broken_at=i,
                    error_message=f"Entry {i} content does not match its stored hash",
                )
            if i > 0 and entry.previous_hash != stored_hashes[i - 1]:
                return ChainValidationResult(
                    is_valid=False,
                    total_entries=len(entries),
                    broken_at=i,
                    error_message=f"Chain broken at entry {i}: expected {stored_hashes[i - 1]}, got {entry.previous_hash}",
                )

        logger.info(f"Chain validation passed: {len(entries)} entries")
        return ChainValidationResult(is_valid=True, total_entries=len(entries))

    def _init_db(self) -> None:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ledger (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                entry_id TEXT UNIQUE NOT NULL,
                timestamp TEXT NOT NULL,
                event_type TEXT NOT NULL,
                payload TEXT NOT NULL,
                previous_hash TEXT NOT NULL,
                hash TEXT NOT NULL,
                user_id TEXT,
                intent_id TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                intent_id TEXT NOT NULL,
                user_id TEXT,
                rail_used TEXT,
                amount REAL NOT NULL,
                currency TEXT NOT NULL,
                status TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                note TEXT,
                reference TEXT
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_ledger_intent ON ledger(intent_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tx_user ON transactions(user_id, timestamp)")

        conn.commit()
        self._close_connection(conn)

    def _store_entry(self, entry: LedgerEntry) -> None:
        conn = self._get_connection()
        conn.execute(
            """INSERT INTO ledger
               (entry_id, timestamp, event_type, payload, previous_hash, hash, user_id, intent_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                entry.entry_id,
                entry.timestamp.isoformat(),
                entry.event_type.value,
                json.dumps(entry.payload, default=str),
                entry.previous_hash,
                entry.hash,
                entry.user_id,
                entry.intent_id,
            ),
        )
        conn.commit()
        self._close_connection(conn)

    def _get_last_hash(self) -> str:
        """Hash of the last entry, or 'genesis' if empty."""
        rows = self._select_rows("ORDER BY seq DESC LIMIT 1", ())
        if rows:
            return rows[0][5]
        return "genesis"

    def _select_rows(self, clause: str, params: tuple) -> List[tuple]:
        with self._lock:
            conn = self._get_connection()
            rows = conn.execute(
                "SELECT seq, entry_id, timestamp, event_type, payload, hash, previous_hash, user_id, intent_id "
                f"FROM ledger {clause}",
                params,
            ).fetchall()
            self._close_connection(conn)
        return rows

    def _select_entries(self, clause: str, params: tuple) -> List[LedgerEntry]:
        return [self._row_to_entry(row) for row in self._select_rows(clause, params)]

    def _row_to_entry(self, row: tuple) -> LedgerEntry:
        return LedgerEntry(
            entry_id=row[1],
            timestamp=datetime.fromisoformat(row[2]),
            event_type=EventType(row[3]),
            payload=json.loads(row[4]),
            previous_hash=row[6],
            user_id=row[7],
            intent_id=row[8],
        )

    def close(self) -> None:
        """Close persistent connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
