"""
Shared data models for walletwatch.

These dataclasses are the canonical data shapes used across all modules:
fetchers produce TransactionRecords, the engine turns accepted ones into
LogEntries, the database stores Wallets, WalletMeta and LogEntries, and the
CLI renders their dicts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from walletwatch.chains import NATIVE, TOKEN

# Dedup window size per wallet
RECENT_HASHES_CAP = 50


@dataclass
class Wallet:
    """A tracked wallet."""

    id: str                 # "wallet_<hex>"
    address: str
    chain: str              # "ETH" | "BSC" | "SOL"
    label: str = ""
    message_template: str = ""      # "" = use the global default template
    added_at: str = ""      # ISO8601 UTC

    def short_address(self) -> str:
        """Return truncated address for display: 0xd8dA...6045"""
        if len(self.address) > 12:
            return f"{self.address[:6]}...{self.address[-4:]}"
        return self.address

    def display_name(self) -> str:
        """Return label if set, otherwise the full address."""
        return self.label if self.label else self.address

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WalletMeta:
    """
    Per-wallet dedup state, stored apart from the wallet row.

    Watermarks are the highest block already processed per transaction
    category; recent_hashes is the bounded window of processed hashes that
    disambiguates transactions sharing a watermark block.
    """

    last_native_block: int = 0
    last_token_block: int = 0
    recent_hashes: list[str] = field(default_factory=list)

    def watermark(self, category: str) -> int:
        return self.last_token_block if category == TOKEN else self.last_native_block

    def raise_watermark(self, category: str, block: int) -> None:
        """Advance the category watermark; never lowers it."""
        if category == TOKEN:
            self.last_token_block = max(self.last_token_block, block)
        else:
            self.last_native_block = max(self.last_native_block, block)

    def remember_hash(self, tx_hash: str) -> None:
        """Add a hash to the window, evicting the oldest beyond the cap."""
        if tx_hash in self.recent_hashes:
            return
        self.recent_hashes.append(tx_hash)
        if len(self.recent_hashes) > RECENT_HASHES_CAP:
            del self.recent_hashes[: len(self.recent_hashes) - RECENT_HASHES_CAP]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TransactionRecord:
    """A single explorer transaction, normalised across chains and shapes."""

    tx_hash: str
    chain: str
    block_number: int
    timestamp: int          # Unix seconds
    from_addr: str          # normalised per chain
    to_addr: str
    amount: str             # decimal string, exact
    token_symbol: str
    explorer_url: str
    category: str = NATIVE  # "native" | "token"


@dataclass
class LogEntry:
    """One recorded, de-duplicated transaction. Never mutated once stored."""

    id: str                 # "log_<hex>"
    wallet_id: str
    label: str
    chain: str
    category: str
    tx_hash: str
    direction: str          # "in" | "out"
    amount: str
    token: str
    from_addr: str
    to_addr: str
    timestamp: int
    explorer_url: str
    block_number: int = 0
    message: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PollSummary:
    """Aggregate outcome of one poll invocation."""

    status: str             # "completed" | "skipped_locked" | "lock_lost"
    started_at: int
    finished_at: int = 0
    manual: bool = False
    wallets_total: int = 0
    wallets_checked: int = 0
    wallets_skipped: int = 0
    wallets_failed: int = 0
    new_transactions: int = 0
    alerts_sent: int = 0
    errors: dict[str, str] = field(default_factory=dict)    # service → last message

    def to_dict(self) -> dict:
        return asdict(self)
