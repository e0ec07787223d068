import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence, Any

from ..schemas import ClientQuotaRecord, QuotaTier

Row = sqlite3.Row

SCHEMA_VERSION = 1


DDL = """
-- 1) Quota records (one per client identifier)
CREATE TABLE IF NOT EXISTS quota_records (
  client_id               TEXT PRIMARY KEY,
  last_request_timestamp  TEXT NOT NULL,
  requests_made           INTEGER NOT NULL DEFAULT 0 CHECK (requests_made >= 0),
  tier                    TEXT NOT NULL DEFAULT 'free' CHECK (tier IN ('free','pro')),
  created_at              TEXT NOT NULL DEFAULT (datetime('now')),
  updated_at              TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TRIGGER IF NOT EXISTS quota_records_update_ts
AFTER UPDATE ON quota_records
BEGIN
  UPDATE quota_records SET updated_at = datetime('now') WHERE client_id = NEW.client_id;
END;

-- Indexes
CREATE INDEX IF NOT EXISTS idx_quota_tier_last ON quota_records(tier, last_request_timestamp);
"""


def _to_text(moment: datetime) -> str:
    # Stored as UTC so that text comparison orders instants correctly.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_text(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _row_to_record(row: Row) -> ClientQuotaRecord:
    return ClientQuotaRecord(
        client_id=row["client_id"],
        last_request_timestamp=_from_text(row["last_request_timestamp"]),
        requests_made=row["requests_made"],
        tier=QuotaTier(row["tier"]),
    )


class StorageService:
    def __init__(self, db_path: str, busy_timeout: float = 5.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        # Initialize the schema using a temporary connection
        conn = self._connect()
        self._ensure_schema_with_connection(conn)
        conn.close()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, check_same_thread=False)
        conn.execute("PRAGMA journal_mode = WAL;")
        conn.execute("PRAGMA synchronous = NORMAL;")
        conn.row_factory = sqlite3.Row
        return conn

    @property
    def connection(self) -> sqlite3.Connection:
        """Get a thread-local connection to the database."""
        if getattr(self._local, "connection", None) is None:
            self._local.connection = self._connect()
            self._local.in_transaction = False
            with self._connections_lock:
                self._connections.append(self._local.connection)
        return self._local.connection

    # ---------- internal ----------
    def _ensure_schema_with_connection(self, conn: sqlite3.Connection) -> None:
        """Ensure schema exists using the provided connection."""
        cur = conn.execute("PRAGMA user_version;")
        version = cur.fetchone()[0]
        if version < 1:
            conn.executescript(DDL)
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
            conn.commit()
        # Future migrations can go here (if version < 2: ...)

    def close(self) -> None:
        """Close every connection opened by this service."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local = threading.local()

    def _one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        cur = self.connection.execute(sql, params)
        return cur.fetchone()

    def _all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        cur = self.connection.execute(sql, params)
        return cur.fetchall()

    def _commit(self) -> None:
        if not self._local.in_transaction:
            self.connection.commit()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed reads and writes under sqlite's write lock.

        ``BEGIN IMMEDIATE`` takes the reserved lock up front, so a second
        writer blocks (up to ``busy_timeout``) until this block commits.
        """
        conn = self.connection
        if self._local.in_transaction:
            yield
            return
        conn.execute("BEGIN IMMEDIATE")
        self._local.in_transaction = True
        try:
            yield
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()
        finally:
            self._local.in_transaction = False

    # ---------- quota records ----------
    def get_quota_record(self, client_id: str) -> Optional[ClientQuotaRecord]:
        row = self._one("SELECT * FROM quota_records WHERE client_id = ?", (client_id,))
        if row:
            return _row_to_record(row)
        return None

    def save_quota_record(self, record: ClientQuotaRecord) -> None:
        self.connection.execute(
            """
            INSERT INTO quota_records (client_id, last_request_timestamp, requests_made, tier)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(client_id) DO UPDATE SET
              last_request_timestamp = excluded.last_request_timestamp,
              requests_made = excluded.requests_made,
              tier = excluded.tier
            """,
            (record.client_id, _to_text(record.last_request_timestamp), record.requests_made, record.tier.value)
        )
        self._commit()

    def set_client_tier(self, client_id: str, tier: QuotaTier, now: Optional[datetime] = None) -> None:
        """Set the tier of a client, creating an empty record when needed."""
        now = now or datetime.now(timezone.utc)
        self.connection.execute(
            """
            INSERT INTO quota_records (client_id, last_request_timestamp, requests_made, tier)
            VALUES (?, ?, 0, ?)
            ON CONFLICT(client_id) DO UPDATE SET tier = excluded.tier
            """,
            (client_id, _to_text(now), tier.value)
        )
        self._commit()

    def list_quota_records(self) -> List[ClientQuotaRecord]:
        rows = self._all("SELECT * FROM quota_records ORDER BY client_id ASC")
        return [_row_to_record(row) for row in rows]

    def delete_quota_record(self, client_id: str) -> None:
        self.connection.execute("DELETE FROM quota_records WHERE client_id = ?", (client_id,))
        self._commit()

    def purge_quota_records(self, tier: QuotaTier, older_than: datetime) -> int:
        """Delete records of ``tier`` whose last accepted request precedes ``older_than``."""
        cur = self.connection.execute(
            "DELETE FROM quota_records WHERE tier = ? AND last_request_timestamp < ?",
            (tier.value, _to_text(older_than))
        )
        self._commit()
        return cur.rowcount
