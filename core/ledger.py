"""
Claim Ledger

Append-only SQLite record of every claim session.  One row is written per
account per session, whatever the outcome, and rows are never updated.

Duplicate rewards are kept out of the totals at read time rather than at
write time: several rows for the same account on the same day are accepted,
and every aggregating read skips a ``failed`` row when the same account has a
``success`` row on the same UTC calendar day.  The maintenance operations
``delete_superseded_failures`` and ``delete_failed`` physically remove such
rows and are idempotent.
"""

import json
import logging
import os
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DB_FILE = os.path.join(os.path.dirname(__file__), "..", "claim_ledger.db")

_COLUMNS = (
    "id, account_id, website_user_id, status, items_claimed, error, "
    "claimed_at, run_id, metadata"
)

# A failed row is superseded when the same account succeeded the same UTC day
_SUPERSEDED_CLAUSE = """
    a.status = 'failed' AND EXISTS (
        SELECT 1 FROM claim_attempts s
        WHERE s.account_id = a.account_id
          AND s.status = 'success'
          AND DATE(s.claimed_at) = DATE(a.claimed_at)
    )
"""


class ClaimStatus(str, Enum):
    """Outcome of a claim session."""
    SUCCESS = "success"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width ISO-8601 UTC text, so string order equals time order."""
    return _as_utc(value).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class ClaimAttempt:
    """
    The outcome of one account's claim session.

    Invariants checked on construction:
        * a ``failed`` attempt has no items and a non-empty ``error``;
        * ``claimed_at`` is timezone-aware UTC.

    Instances are immutable; there is no update path in the ledger either.
    """
    account_id: str
    website_user_id: str
    status: ClaimStatus
    items_claimed: Tuple[str, ...] = ()
    error: Optional[str] = None
    claimed_at: datetime = field(default_factory=_utcnow)
    run_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        object.__setattr__(self, "status", ClaimStatus(self.status))
        object.__setattr__(self, "items_claimed", tuple(self.items_claimed))
        object.__setattr__(self, "claimed_at", _as_utc(self.claimed_at))
        if self.status == ClaimStatus.FAILED:
            if self.items_claimed:
                raise ValueError("a failed attempt cannot carry claimed items")
            if not self.error:
                raise ValueError("a failed attempt requires an error message")

    @classmethod
    def success(
        cls,
        account_id: str,
        website_user_id: str,
        items: Sequence[str],
        **kwargs: Any,
    ) -> "ClaimAttempt":
        return cls(
            account_id=account_id,
            website_user_id=website_user_id,
            status=ClaimStatus.SUCCESS,
            items_claimed=tuple(items),
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        account_id: str,
        website_user_id: str,
        error: str,
        **kwargs: Any,
    ) -> "ClaimAttempt":
        return cls(
            account_id=account_id,
            website_user_id=website_user_id,
            status=ClaimStatus.FAILED,
            error=error,
            **kwargs,
        )

    @property
    def succeeded(self) -> bool:
        return self.status == ClaimStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "website_user_id": self.website_user_id,
            "status": self.status.value,
            "items_claimed": list(self.items_claimed),
            "error": self.error,
            "claimed_at": format_timestamp(self.claimed_at),
            "run_id": self.run_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ClaimAttempt":
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            website_user_id=row["website_user_id"],
            status=ClaimStatus(row["status"]),
            items_claimed=tuple(json.loads(row["items_claimed"] or "[]")),
            error=row["error"],
            claimed_at=datetime.fromisoformat(row["claimed_at"]),
            run_id=row["run_id"],
            metadata=json.loads(row["metadata"] or "{}"),
        )


class ClaimLedger:
    """
    SQLite-backed store of :class:`ClaimAttempt` rows.

    A fresh connection is opened per call, so one ledger may be used from
    any coroutine without locking.  Writes log and re-raise on error; reads
    log and return an empty result.
    """

    def __init__(self, db_path: str = DB_FILE):
        """
        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = db_path
        self._init_database()
        logger.info(f"ClaimLedger initialized with database: {db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self):
        """Create the schema if it doesn't exist."""
        dirpath = os.path.dirname(self.db_path)
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)
        try:
            conn = self._connect()
            try:
                cursor = conn.cursor()
                # No uniqueness on account + day: retries append new rows
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS claim_attempts (
                        id TEXT PRIMARY KEY,
                        account_id TEXT NOT NULL,
                        website_user_id TEXT NOT NULL,
                        status TEXT NOT NULL
                            CHECK (status IN ('success', 'failed')),
                        items_claimed TEXT NOT NULL DEFAULT '[]',
                        error TEXT,
                        claimed_at TEXT NOT NULL,
                        run_id TEXT,
                        metadata TEXT NOT NULL DEFAULT '{}'
                    )
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_claims_account
                    ON claim_attempts(account_id)
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_claims_claimed_at
                    ON claim_attempts(claimed_at)
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_claims_status
                    ON claim_attempts(status)
                """)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize claim ledger: {e}")
            raise

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record(self, attempt: ClaimAttempt) -> str:
        """
        Append one attempt.

        Args:
            attempt: The session outcome to persist.

        Returns:
            The attempt id.

        Raises:
            sqlite3.Error: If the insert fails (also logged).
        """
        row = attempt.to_dict()
        try:
            conn = self._connect()
            try:
                conn.execute(
                    f"INSERT INTO claim_attempts ({_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        row["id"], row["account_id"], row["website_user_id"],
                        row["status"], json.dumps(row["items_claimed"]),
                        row["error"], row["claimed_at"], row["run_id"],
                        json.dumps(row["metadata"], default=str),
                    ),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(
                f"Failed to record claim for {attempt.account_id}: {e}"
            )
            raise

        if attempt.succeeded:
            logger.info(
                f"Claim recorded: {attempt.account_id} | success | "
                f"{len(attempt.items_claimed)} item(s)"
            )
        else:
            logger.info(
                f"Claim recorded: {attempt.account_id} | failed | "
                f"{attempt.error}"
            )
        return attempt.id

    def delete_superseded_failures(self) -> int:
        """
        Delete failed rows that share account and UTC day with a success.

        Returns:
            Number of rows removed (0 on a second run).
        """
        try:
            conn = self._connect()
            try:
                cursor = conn.execute(
                    "DELETE FROM claim_attempts WHERE id IN ("
                    f"SELECT a.id FROM claim_attempts a WHERE {_SUPERSEDED_CLAUSE}"
                    ")"
                )
                removed = cursor.rowcount
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to delete superseded failures: {e}")
            raise
        logger.info(f"🧹 Removed {removed} superseded failed claim(s)")
        return removed

    def delete_failed(self, account_id: Optional[str] = None) -> int:
        """
        Remove every failed row, optionally for one account only.

        Returns:
            Number of rows removed.
        """
        sql = "DELETE FROM claim_attempts WHERE status = 'failed'"
        params: Tuple[Any, ...] = ()
        if account_id is not None:
            sql += " AND account_id = ?"
            params = (account_id,)
        try:
            conn = self._connect()
            try:
                cursor = conn.execute(sql, params)
                removed = cursor.rowcount
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to delete failed claims: {e}")
            raise
        logger.info(f"🧹 Removed {removed} failed claim(s)")
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[ClaimAttempt]:
        try:
            conn = self._connect()
            try:
                rows = conn.execute(sql, tuple(params)).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Claim ledger query failed: {e}")
            return []
        return [ClaimAttempt.from_row(row) for row in rows]

    def get_attempt(self, attempt_id: str) -> Optional[ClaimAttempt]:
        rows = self._query(
            f"SELECT {_COLUMNS} FROM claim_attempts WHERE id = ?",
            (attempt_id,),
        )
        return rows[0] if rows else None

    def get_history(
        self,
        account_id: Optional[str] = None,
        status: Optional[ClaimStatus] = None,
        limit: int = 50,
    ) -> List[ClaimAttempt]:
        """Raw rows, newest first, including superseded failures."""
        clauses = []
        params: List[Any] = []
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(ClaimStatus(status).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        return self._query(
            f"SELECT {_COLUMNS} FROM claim_attempts {where} "
            "ORDER BY claimed_at DESC LIMIT ?",
            params,
        )

    def find_superseded_failures(
        self, account_id: Optional[str] = None
    ) -> List[ClaimAttempt]:
        """Failed rows that a same-day success makes redundant."""
        sql = (
            f"SELECT {_COLUMNS} FROM claim_attempts a "
            f"WHERE {_SUPERSEDED_CLAUSE}"
        )
        params: List[Any] = []
        if account_id is not None:
            sql += " AND a.account_id = ?"
            params.append(account_id)
        return self._query(sql + " ORDER BY a.claimed_at", params)

    def countable_attempts(
        self,
        account_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[ClaimAttempt]:
        """
        Rows that aggregate views may count.

        Superseded failures are excluded here, which keeps totals correct
        even before maintenance has run.
        """
        sql = (
            f"SELECT {_COLUMNS} FROM claim_attempts a "
            f"WHERE NOT ({_SUPERSEDED_CLAUSE})"
        )
        params: List[Any] = []
        if account_id is not None:
            sql += " AND a.account_id = ?"
            params.append(account_id)
        if since is not None:
            sql += " AND a.claimed_at >= ?"
            params.append(format_timestamp(since))
        return self._query(sql + " ORDER BY a.claimed_at", params)

    def count_attempts(self, status: Optional[ClaimStatus] = None) -> int:
        sql = "SELECT COUNT(*) FROM claim_attempts"
        params: Tuple[Any, ...] = ()
        if status is not None:
            sql += " WHERE status = ?"
            params = (ClaimStatus(status).value,)
        try:
            conn = self._connect()
            try:
                (count,) = conn.execute(sql, params).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error(f"Failed to count claim attempts: {e}")
            return 0
        return count

    def claim_stats(self, days: Optional[int] = None) -> Dict[str, Any]:
        """
        Per-status counts and item totals over deduplicated rows.

        Args:
            days: Restrict to the last *days* days; ``None`` means all time.

        Returns:
            ``{"success": {"count", "items"}, "failed": {"count", "items"},
            "total_attempts", "total_items", "unique_accounts"}``
        """
        since = _utcnow() - timedelta(days=days) if days is not None else None
        attempts = self.countable_attempts(since=since)

        stats: Dict[str, Any] = {
            status.value: {"count": 0, "items": 0} for status in ClaimStatus
        }
        accounts = set()
        for attempt in attempts:
            bucket = stats[attempt.status.value]
            bucket["count"] += 1
            bucket["items"] += len(attempt.items_claimed)
            accounts.add(attempt.account_id)

        stats["total_attempts"] = len(attempts)
        stats["total_items"] = sum(
            stats[status.value]["items"] for status in ClaimStatus
        )
        stats["unique_accounts"] = len(accounts)
        return stats

    def account_totals(self, account_id: str, days: int = 7) -> Dict[str, Any]:
        """Deduplicated success/failure/item totals for one account."""
        since = _utcnow() - timedelta(days=days)
        attempts = self.countable_attempts(account_id=account_id, since=since)
        successes = [a for a in attempts if a.succeeded]
        return {
            "account_id": account_id,
            "days": days,
            "successes": len(successes),
            "failures": len(attempts) - len(successes),
            "items_claimed": sum(len(a.items_claimed) for a in successes),
            "last_claimed_at": (
                format_timestamp(attempts[-1].claimed_at) if attempts else None
            ),
        }
