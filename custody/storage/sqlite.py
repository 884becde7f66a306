import os
import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from custody.core.types import Asset, Transfer
from . import StorageBackend

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class SQLiteStorage(StorageBackend):
    """SQLite persistent storage for custody ledgers."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get("CUSTODY_DB_PATH")
            db_path = env_path if env_path else Path.cwd() / "custody.db"

        if str(db_path) == MEMORY:
            self.db_path: Optional[Path] = None
        else:
            self.db_path = Path(db_path)
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._connect()

    def _connect(self):
        conn_str = str(self.db_path) if self.db_path else MEMORY
        # Shared across the service's worker threads; every use goes through self._lock
        self._conn = sqlite3.connect(conn_str, isolation_level=None, check_same_thread=False)
        if self.db_path:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._create_schema()
        logger.debug("Opened custody storage at %s", conn_str)

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS assets (
                id              INTEGER PRIMARY KEY,
                name            TEXT    NOT NULL,
                description     TEXT    NOT NULL,
                metadata_hash   TEXT,
                current_owner   TEXT    NOT NULL,
                creator         TEXT    NOT NULL,
                created_at      TEXT    NOT NULL,
                active          INTEGER NOT NULL,
                transfer_count  INTEGER NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS transfers (
                asset_id        INTEGER NOT NULL REFERENCES assets(id),
                sequence        INTEGER NOT NULL,
                from_owner      TEXT,
                to_owner        TEXT    NOT NULL,
                timestamp       TEXT    NOT NULL,
                notes           TEXT    NOT NULL,
                fingerprint     TEXT    NOT NULL,
                PRIMARY KEY (asset_id, sequence)
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS owner_assets (
                owner           TEXT    NOT NULL,
                asset_id        INTEGER NOT NULL REFERENCES assets(id),
                PRIMARY KEY (owner, asset_id)
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key             TEXT    PRIMARY KEY,
                value           TEXT    NOT NULL
            )
        """)
        self.conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_owner_asset ON owner_assets(asset_id)")
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_transfer_parties ON transfers(to_owner)")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self.conn
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    # ── writes ─────────────────────────────────────────────────

    def _insert_transfer(self, conn: sqlite3.Connection, t: Transfer) -> None:
        conn.execute("""
            INSERT INTO transfers
            (asset_id, sequence, from_owner, to_owner, timestamp, notes, fingerprint)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (t.asset_id, t.sequence, t.from_owner, t.to_owner, t.timestamp, t.notes, t.fingerprint))

    def record_creation(self, asset: Asset, genesis: Transfer) -> None:
        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO assets
                (id, name, description, metadata_hash, current_owner, creator,
                 created_at, active, transfer_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                asset.id, asset.name, asset.description, asset.metadata_hash,
                asset.current_owner, asset.creator, asset.created_at,
                int(asset.active), asset.transfer_count
            ))
            self._insert_transfer(conn, genesis)
            conn.execute(
                "INSERT INTO owner_assets (owner, asset_id) VALUES (?, ?)",
                (asset.current_owner, asset.id)
            )

    def record_transfer(self, asset: Asset, transfer: Transfer, previous_owner: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE assets SET current_owner = ?, transfer_count = ? WHERE id = ?",
                (asset.current_owner, asset.transfer_count, asset.id)
            )
            self._insert_transfer(conn, transfer)
            cursor = conn.execute(
                "DELETE FROM owner_assets WHERE owner = ? AND asset_id = ?",
                (previous_owner, asset.id)
            )
            if cursor.rowcount != 1:
                raise sqlite3.IntegrityError(
                    f"Asset {asset.id} not indexed under '{previous_owner}' in storage"
                )
            conn.execute(
                "INSERT INTO owner_assets (owner, asset_id) VALUES (?, ?)",
                (asset.current_owner, asset.id)
            )

    def record_deactivation(self, asset: Asset) -> None:
        with self._transaction() as conn:
            conn.execute("UPDATE assets SET active = ? WHERE id = ?", (int(asset.active), asset.id))

    def set_meta(self, key: str, value: str) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO meta (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value)
            )

    # ── reads ──────────────────────────────────────────────────

    def get_meta(self, key: str) -> Optional[str]:
        with self._lock:
            row = self.conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def load_assets(self) -> List[Asset]:
        with self._lock:
            rows = self.conn.execute("""
                SELECT id, name, description, metadata_hash, current_owner, creator,
                       created_at, active, transfer_count
                FROM assets ORDER BY id ASC
            """).fetchall()

        return [
            Asset(
                id=aid,
                name=name,
                description=desc,
                metadata_hash=mhash,
                current_owner=owner,
                creator=creator,
                created_at=created,
                active=bool(active),
                transfer_count=count,
            )
            for aid, name, desc, mhash, owner, creator, created, active, count in rows
        ]

    def load_transfers(self, asset_id: int) -> List[Transfer]:
        with self._lock:
            rows = self.conn.execute("""
                SELECT sequence, from_owner, to_owner, timestamp, notes, fingerprint
                FROM transfers WHERE asset_id = ? ORDER BY sequence ASC
            """, (asset_id,)).fetchall()

        return [
            Transfer(
                asset_id=asset_id,
                sequence=seq,
                from_owner=sender,
                to_owner=receiver,
                timestamp=ts,
                notes=notes,
                fingerprint=fp,
            )
            for seq, sender, receiver, ts, notes, fp in rows
        ]

    def load_owner_index(self) -> List[Tuple[str, int]]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT owner, asset_id FROM owner_assets ORDER BY asset_id ASC"
            ).fetchall()
        return [(owner, aid) for owner, aid in rows]

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
