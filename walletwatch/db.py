"""SQLite state management for walletwatch.

Manages the tracked-wallet registry, per-wallet dedup metadata, the bounded
transaction log, and poll run state. All database operations are async
(aiosqlite).

Schema:
  - wallets: tracked wallet registry
  - wallet_meta: per-wallet watermarks + recent hash window, keyed by (address, chain)
  - transaction_log: de-duplicated transactions, newest = highest seq, capped
  - run_state: small key/value store (last_run, ...)
  - poll_lock: lease row guarding against overlapping poll cycles
  - service_errors: last error per explorer service
"""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from walletwatch.chains import get_chain, normalize_address
from walletwatch.exceptions import DatabaseError, WalletExistsError, WalletNotFoundError
from walletwatch.models import RECENT_HASHES_CAP, LogEntry, Wallet, WalletMeta

DEFAULT_DB_PATH = Path.home() / ".walletwatch" / "walletwatch.db"
DEFAULT_LOG_CAP = 200

POLL_LOCK_NAME = "poll"

# SQL schema, applied on connect if tables don't exist
_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS wallets (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    id               TEXT NOT NULL UNIQUE,
    address          TEXT NOT NULL,
    chain            TEXT NOT NULL CHECK (chain IN ('ETH', 'BSC', 'SOL')),
    label            TEXT NOT NULL DEFAULT '',
    message_template TEXT,
    added_at         TEXT NOT NULL,
    UNIQUE(address, chain)
);

CREATE TABLE IF NOT EXISTS wallet_meta (
    address           TEXT NOT NULL,
    chain             TEXT NOT NULL,
    last_native_block INTEGER NOT NULL DEFAULT 0,
    last_token_block  INTEGER NOT NULL DEFAULT 0,
    recent_hashes     TEXT NOT NULL DEFAULT '[]',
    updated_at        TEXT NOT NULL,
    PRIMARY KEY (address, chain)
);

CREATE TABLE IF NOT EXISTS transaction_log (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    id           TEXT NOT NULL UNIQUE,
    wallet_id    TEXT NOT NULL,
    label        TEXT NOT NULL DEFAULT '',
    chain        TEXT NOT NULL,
    category     TEXT NOT NULL DEFAULT 'native',
    tx_hash      TEXT NOT NULL,
    direction    TEXT NOT NULL CHECK (direction IN ('in', 'out')),
    amount       TEXT NOT NULL,
    token        TEXT NOT NULL DEFAULT '',
    from_addr    TEXT NOT NULL DEFAULT '',
    to_addr      TEXT NOT NULL DEFAULT '',
    timestamp    INTEGER NOT NULL,
    block_number INTEGER NOT NULL DEFAULT 0,
    explorer_url TEXT NOT NULL DEFAULT '',
    message      TEXT NOT NULL DEFAULT '',
    recorded_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS run_state (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS poll_lock (
    name        TEXT PRIMARY KEY,
    token       TEXT NOT NULL,
    acquired_at REAL NOT NULL,
    expires_at  REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS service_errors (
    service     TEXT PRIMARY KEY,
    message     TEXT NOT NULL,
    recorded_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_wallets_chain ON wallets(chain);
CREATE INDEX IF NOT EXISTS idx_log_chain ON transaction_log(chain);
CREATE INDEX IF NOT EXISTS idx_log_wallet ON transaction_log(wallet_id);
"""

SCHEMA_VERSION = 1

_LOG_COLUMNS = (
    "id, wallet_id, label, chain, category, tx_hash, direction, amount, token, "
    "from_addr, to_addr, timestamp, block_number, explorer_url, message, recorded_at"
)


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def new_wallet_id() -> str:
    return f"wallet_{uuid.uuid4().hex}"


def new_log_id() -> str:
    return f"log_{uuid.uuid4().hex}"


class Database:
    """
    Async SQLite database manager for walletwatch.

    Usage:
        db = Database(":memory:")
        await db.connect()
        wallets = await db.list_wallets()
        await db.close()

    Or as async context manager:
        async with Database(path) as db:
            ...
    """

    def __init__(self, db_path: str = str(DEFAULT_DB_PATH), log_cap: int = DEFAULT_LOG_CAP) -> None:
        self.db_path = db_path
        self.log_cap = log_cap
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open DB connection and run schema migrations."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._apply_schema()
        except Exception as e:
            raise DatabaseError(f"Failed to connect to database: {e}") from e

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ──────────────────────────────────────────────────────────
    # Wallet management
    # ──────────────────────────────────────────────────────────

    async def add_wallet(
        self,
        address: str,
        chain: str,
        label: str = "",
        message_template: str = "",
        wallet_id: str | None = None,
    ) -> Wallet:
        """
        Add a wallet to the tracking registry.

        Normalises the address for the chain and assigns a fresh id when none
        is supplied. Raises InvalidAddressError / UnsupportedChainError for bad
        input and WalletExistsError if the address+chain combo already exists.
        """
        assert self._conn is not None
        chain = get_chain(chain).code
        address = normalize_address(chain, address)
        wallet = Wallet(
            id=wallet_id or new_wallet_id(),
            address=address,
            chain=chain,
            label=(label or "").strip(),
            message_template=message_template or "",
            added_at=_now_iso(),
        )

        try:
            await self._conn.execute(
                """
                INSERT INTO wallets (id, address, chain, label, message_template, added_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    wallet.id,
                    wallet.address,
                    wallet.chain,
                    wallet.label,
                    wallet.message_template,
                    wallet.added_at,
                ),
            )
            await self._conn.commit()
        except aiosqlite.IntegrityError as e:
            await self._conn.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise WalletExistsError(
                    f"Address {address} on {chain} is already tracked",
                    details={"address": address, "chain": chain},
                ) from e
            raise DatabaseError(f"Failed to add wallet: {e}") from e

        return wallet

    async def list_wallets(self, chain: str | None = None) -> list[Wallet]:
        """List tracked wallets in storage (insertion) order."""
        assert self._conn is not None

        query = "SELECT * FROM wallets"
        params: list[Any] = []
        if chain:
            query += " WHERE chain = ?"
            params.append(chain.upper())
        query += " ORDER BY seq ASC"

        wallets = []
        async with self._conn.execute(query, params) as cursor:
            async for row in cursor:
                wallets.append(_row_to_wallet(row))
        return wallets

    async def get_wallet(self, address: str, chain: str) -> Wallet:
        """
        Get a wallet by address and chain.

        Raises WalletNotFoundError if not found.
        """
        assert self._conn is not None
        spec = get_chain(chain)
        address = spec.normalize_address(address)

        async with self._conn.execute(
            "SELECT * FROM wallets WHERE address = ? AND chain = ?",
            (address, spec.code),
        ) as cursor:
            row = await cursor.fetchone()

        if not row:
            raise WalletNotFoundError(
                f"Wallet {address} on {spec.code} not found",
                details={"address": address, "chain": spec.code},
            )
        return _row_to_wallet(row)

    async def update_wallet(
        self,
        address: str,
        chain: str,
        label: str | None = None,
        message_template: str | None = None,
    ) -> Wallet:
        """
        Edit a wallet's label and/or message template.

        Watermark metadata is left untouched. Returns the updated wallet.
        """
        assert self._conn is not None
        wallet = await self.get_wallet(address, chain)
        if label is not None:
            wallet.label = label.strip()
        if message_template is not None:
            wallet.message_template = message_template

        await self._conn.execute(
            "UPDATE wallets SET label = ?, message_template = ? WHERE id = ?",
            (wallet.label, wallet.message_template, wallet.id),
        )
        await self._conn.commit()
        return wallet

    async def remove_wallet(self, address: str, chain: str) -> dict[str, Any]:
        """
        Delete a wallet together with its dedup metadata.

        Both rows go in one transaction so no orphaned metadata survives.
        Logged transactions are history and are kept.
        """
        assert self._conn is not None
        wallet = await self.get_wallet(address, chain)

        try:
            await self._conn.execute("DELETE FROM wallets WHERE id = ?", (wallet.id,))
            await self._conn.execute(
                "DELETE FROM wallet_meta WHERE address = ? AND chain = ?",
                (wallet.address, wallet.chain),
            )
            await self._conn.commit()
        except aiosqlite.Error as e:
            await self._conn.rollback()
            raise DatabaseError(f"Failed to remove wallet: {e}") from e

        return {
            "status": "removed",
            "id": wallet.id,
            "address": wallet.address,
            "chain": wallet.chain,
        }

    # ──────────────────────────────────────────────────────────
    # Wallet metadata (watermarks + recent hashes)
    # ──────────────────────────────────────────────────────────

    async def get_wallet_meta(self, address: str, chain: str) -> WalletMeta:
        """Return stored metadata, or fresh metadata if none exists yet."""
        assert self._conn is not None
        spec = get_chain(chain)
        async with self._conn.execute(
            "SELECT * FROM wallet_meta WHERE address = ? AND chain = ?",
            (spec.normalize_address(address), spec.code),
        ) as cursor:
            row = await cursor.fetchone()

        if not row:
            return WalletMeta()

        try:
            hashes = json.loads(row["recent_hashes"] or "[]")
        except json.JSONDecodeError:
            hashes = []
        if not isinstance(hashes, list):
            hashes = []

        return WalletMeta(
            last_native_block=int(row["last_native_block"] or 0),
            last_token_block=int(row["last_token_block"] or 0),
            recent_hashes=[str(h) for h in hashes][-RECENT_HASHES_CAP:],
        )

    async def set_wallet_meta(self, address: str, chain: str, meta: WalletMeta) -> None:
        """Persist metadata for a wallet."""
        assert self._conn is not None
        await self._write_meta(address, chain, meta)
        await self._conn.commit()

    async def remove_wallet_meta(self, address: str, chain: str) -> None:
        assert self._conn is not None
        spec = get_chain(chain)
        await self._conn.execute(
            "DELETE FROM wallet_meta WHERE address = ? AND chain = ?",
            (spec.normalize_address(address), spec.code),
        )
        await self._conn.commit()

    async def record_transactions(
        self,
        wallet: Wallet,
        entries: list[LogEntry],
        meta: WalletMeta,
    ) -> None:
        """
        Append log entries and store the advanced metadata in one transaction.

        Entries are inserted in the given order, so the last one becomes the
        newest. The watermark is never persisted without its log entries.
        """
        assert self._conn is not None
        try:
            for entry in entries:
                await self._insert_log(entry)
            if entries:
                await self._prune_log()
            await self._write_meta(wallet.address, wallet.chain, meta)
            await self._conn.commit()
        except aiosqlite.Error as e:
            await self._conn.rollback()
            raise DatabaseError(f"Failed to record transactions: {e}") from e

    # ──────────────────────────────────────────────────────────
    # Transaction log
    # ──────────────────────────────────────────────────────────

    async def append_log(self, entry: LogEntry) -> None:
        """Insert one entry at the front of the log and enforce the cap."""
        assert self._conn is not None
        await self._insert_log(entry)
        await self._prune_log()
        await self._conn.commit()

    async def list_logs(self, limit: int = 50, chain: str | None = None) -> list[LogEntry]:
        """Return up to `limit` entries, newest first."""
        assert self._conn is not None
        query = f"SELECT {_LOG_COLUMNS} FROM transaction_log"
        params: list[Any] = []
        if chain:
            query += " WHERE chain = ?"
            params.append(chain.upper())
        query += " ORDER BY seq DESC LIMIT ?"
        params.append(limit)

        entries = []
        async with self._conn.execute(query, params) as cursor:
            async for row in cursor:
                entries.append(_row_to_log_entry(row))
        return entries

    async def count_logs(self) -> int:
        assert self._conn is not None
        async with self._conn.execute("SELECT COUNT(*) AS cnt FROM transaction_log") as cursor:
            row = await cursor.fetchone()
        return int(row["cnt"]) if row else 0

    async def clear_logs(self) -> int:
        """Truncate the log. Returns number of entries deleted."""
        assert self._conn is not None
        async with self._conn.execute("DELETE FROM transaction_log") as cursor:
            deleted = cursor.rowcount
        await self._conn.commit()
        return deleted

    # ──────────────────────────────────────────────────────────
    # Poll run state
    # ──────────────────────────────────────────────────────────

    async def get_state(self, key: str, default: str | None = None) -> str | None:
        assert self._conn is not None
        async with self._conn.execute(
            "SELECT value FROM run_state WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
        return row["value"] if row else default

    async def set_state(self, key: str, value: str) -> None:
        assert self._conn is not None
        await self._conn.execute(
            "INSERT OR REPLACE INTO run_state (key, value) VALUES (?, ?)",
            (key, value),
        )
        await self._conn.commit()

    async def get_last_run(self) -> int:
        value = await self.get_state("last_run", "0")
        try:
            return int(float(value or 0))
        except ValueError:
            return 0

    async def set_last_run(self, unix_time: int) -> None:
        await self.set_state("last_run", str(int(unix_time)))

    async def acquire_lock(
        self,
        token: str,
        ttl_seconds: float,
        now: float | None = None,
        name: str = POLL_LOCK_NAME,
    ) -> bool:
        """
        Try to take the named lease. Returns True if `token` now holds it.

        An expired lease is taken over; a live one held by another token is
        left alone.
        """
        assert self._conn is not None
        now = time.time() if now is None else now
        await self._conn.execute(
            "DELETE FROM poll_lock WHERE name = ? AND expires_at <= ?",
            (name, now),
        )
        async with self._conn.execute(
            """
            INSERT OR IGNORE INTO poll_lock (name, token, acquired_at, expires_at)
            VALUES (?, ?, ?, ?)
            """,
            (name, token, now, now + ttl_seconds),
        ) as cursor:
            acquired = cursor.rowcount == 1
        await self._conn.commit()
        return acquired

    async def refresh_lock(
        self,
        token: str,
        ttl_seconds: float,
        now: float | None = None,
        name: str = POLL_LOCK_NAME,
    ) -> bool:
        """Extend a lease still held by `token`. Returns False if it was lost."""
        assert self._conn is not None
        now = time.time() if now is None else now
        async with self._conn.execute(
            "UPDATE poll_lock SET expires_at = ? WHERE name = ? AND token = ?",
            (now + ttl_seconds, name, token),
        ) as cursor:
            refreshed = cursor.rowcount == 1
        await self._conn.commit()
        return refreshed

    async def release_lock(self, token: str, name: str = POLL_LOCK_NAME) -> None:
        """Drop the lease if `token` still holds it."""
        assert self._conn is not None
        await self._conn.execute(
            "DELETE FROM poll_lock WHERE name = ? AND token = ?",
            (name, token),
        )
        await self._conn.commit()

    async def get_lock(self, name: str = POLL_LOCK_NAME) -> dict[str, Any] | None:
        assert self._conn is not None
        async with self._conn.execute(
            "SELECT * FROM poll_lock WHERE name = ?", (name,)
        ) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def record_service_error(
        self, service: str, message: str, now: float | None = None
    ) -> None:
        assert self._conn is not None
        await self._conn.execute(
            """
            INSERT OR REPLACE INTO service_errors (service, message, recorded_at)
            VALUES (?, ?, ?)
            """,
            (service, message, time.time() if now is None else now),
        )
        await self._conn.commit()

    async def clear_service_error(self, service: str) -> None:
        assert self._conn is not None
        await self._conn.execute("DELETE FROM service_errors WHERE service = ?", (service,))
        await self._conn.commit()

    async def list_service_errors(self) -> dict[str, dict[str, Any]]:
        assert self._conn is not None
        errors: dict[str, dict[str, Any]] = {}
        async with self._conn.execute(
            "SELECT * FROM service_errors ORDER BY service"
        ) as cursor:
            async for row in cursor:
                errors[row["service"]] = {
                    "message": row["message"],
                    "recorded_at": row["recorded_at"],
                }
        return errors

    async def prune_service_errors(self, active_services: set[str]) -> int:
        """Drop errors for services no tracked wallet uses. Returns number deleted."""
        assert self._conn is not None
        errors = await self.list_service_errors()
        stale = [s for s in errors if s not in active_services]
        for service in stale:
            await self._conn.execute("DELETE FROM service_errors WHERE service = ?", (service,))
        if stale:
            await self._conn.commit()
        return len(stale)

    # ──────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────

    async def _apply_schema(self) -> None:
        """Apply schema migrations idempotently."""
        assert self._conn is not None
        await self._conn.executescript(_SCHEMA)
        await self._conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        await self._conn.commit()

    async def _write_meta(self, address: str, chain: str, meta: WalletMeta) -> None:
        assert self._conn is not None
        spec = get_chain(chain)
        await self._conn.execute(
            """
            INSERT OR REPLACE INTO wallet_meta
            (address, chain, last_native_block, last_token_block, recent_hashes, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                spec.normalize_address(address),
                spec.code,
                int(meta.last_native_block),
                int(meta.last_token_block),
                json.dumps(meta.recent_hashes[-RECENT_HASHES_CAP:]),
                _now_iso(),
            ),
        )

    async def _insert_log(self, entry: LogEntry) -> None:
        assert self._conn is not None
        await self._conn.execute(
            f"""
            INSERT INTO transaction_log ({_LOG_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id or new_log_id(),
                entry.wallet_id,
                entry.label,
                entry.chain,
                entry.category,
                entry.tx_hash,
                entry.direction,
                entry.amount,
                entry.token,
                entry.from_addr,
                entry.to_addr,
                int(entry.timestamp),
                int(entry.block_number),
                entry.explorer_url,
                entry.message,
                _now_iso(),
            ),
        )

    async def _prune_log(self) -> None:
        assert self._conn is not None
        await self._conn.execute(
            """
            DELETE FROM transaction_log WHERE seq NOT IN (
                SELECT seq FROM transaction_log ORDER BY seq DESC LIMIT ?
            )
            """,
            (self.log_cap,),
        )


def _row_to_wallet(row: aiosqlite.Row) -> Wallet:
    return Wallet(
        id=row["id"],
        address=row["address"],
        chain=row["chain"],
        label=row["label"] or "",
        message_template=row["message_template"] or "",
        added_at=row["added_at"],
    )


def _row_to_log_entry(row: aiosqlite.Row) -> LogEntry:
    return LogEntry(
        id=row["id"],
        wallet_id=row["wallet_id"],
        label=row["label"],
        chain=row["chain"],
        category=row["category"],
        tx_hash=row["tx_hash"],
        direction=row["direction"],
        amount=row["amount"],
        token=row["token"],
        from_addr=row["from_addr"],
        to_addr=row["to_addr"],
        timestamp=int(row["timestamp"]),
        block_number=int(row["block_number"]),
        explorer_url=row["explorer_url"],
        message=row["message"],
    )
