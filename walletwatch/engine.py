"""
Poll engine: one pass over all tracked wallets.

State machine:
    IDLE → LOCK_ACQUIRING → RUNNING → COMMITTING → IDLE
                          ↘ SKIPPED_LOCKED → IDLE
                                     ↘ (lease lost) → IDLE

A poll cycle holds the SQLite lease row for its whole duration, so a second
invocation (scheduler double-fire, manual trigger racing the scheduler, a
second process on the same DB) is a no-op. The lease is re-checked before
every wallet commit; once it has expired or been taken over, the cycle stops
without committing anything further and without touching last_run.

Wallets are processed in storage order; each wallet's new log entries and
advanced watermarks are committed in one transaction before its alerts go
out. A failing wallet (fetch or commit) is recorded against its explorer
service and skipped; the cycle carries on.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Callable

from walletwatch.alert import dispatch_alert, render_message, resolve_template
from walletwatch.chains import get_chain, services_for_chains
from walletwatch.config import WalletwatchConfig
from walletwatch.db import Database, new_log_id
from walletwatch.exceptions import LockLostError, MissingAPIKeyError, WalletwatchError
from walletwatch.fetchers import get_fetcher
from walletwatch.fetchers.base import ExplorerClient
from walletwatch.log import bind_context, clear_context, get_logger
from walletwatch.models import LogEntry, PollSummary, TransactionRecord, Wallet, WalletMeta

logger = get_logger(__name__)

STATUS_COMPLETED = "completed"
STATUS_SKIPPED_LOCKED = "skipped_locked"
STATUS_LOCK_LOST = "lock_lost"


class PollState(str, Enum):
    IDLE = "idle"
    LOCK_ACQUIRING = "lock_acquiring"
    RUNNING = "running"
    COMMITTING = "committing"
    SKIPPED_LOCKED = "skipped_locked"


def select_new_transactions(
    meta: WalletMeta,
    candidates: list[TransactionRecord],
    category: str,
) -> list[TransactionRecord]:
    """
    Pick the candidates not seen before and advance `meta` past them.

    A candidate is new iff its hash is not in the recent-hash window and its
    block is not lower than the category watermark. Accepted hashes go into
    the window immediately, so duplicates within one batch are caught too.
    Candidates are expected in ascending block order.
    """
    accepted = []
    for tx in candidates:
        if not tx.tx_hash or tx.tx_hash in meta.recent_hashes:
            continue
        if tx.block_number < meta.watermark(category):
            continue
        meta.remember_hash(tx.tx_hash)
        meta.raise_watermark(category, tx.block_number)
        accepted.append(tx)
    return accepted


def build_log_entry(
    wallet: Wallet,
    tx: TransactionRecord,
    config: WalletwatchConfig,
    now: int | None = None,
) -> LogEntry:
    """
    Turn an accepted transaction into a log entry with its rendered message.

    `now` stands in for a missing explorer timestamp; defaults to the
    current time.
    """
    if now is None:
        now = int(time.time())
    entry = LogEntry(
        id=new_log_id(),
        wallet_id=wallet.id,
        label=wallet.label,
        chain=wallet.chain,
        category=tx.category,
        tx_hash=tx.tx_hash,
        direction="in" if tx.to_addr == wallet.address else "out",
        amount=tx.amount,
        token=tx.token_symbol,
        from_addr=tx.from_addr,
        to_addr=tx.to_addr,
        timestamp=tx.timestamp or now,
        explorer_url=tx.explorer_url,
        block_number=tx.block_number,
    )
    entry.message = render_message(resolve_template(wallet, config), wallet, entry)
    return entry


class PollEngine:
    """
    Orchestrates poll cycles over the wallet registry.

    Args:
        db: Open Database
        config: Loaded config (API keys, webhook, interval, lock TTL)
        fetcher_factory: (chain, config) → ExplorerClient; swapped out in tests
        clock: Returns unix seconds
    """

    def __init__(
        self,
        db: Database,
        config: WalletwatchConfig,
        fetcher_factory: Callable[[str, WalletwatchConfig], ExplorerClient] = get_fetcher,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.config = config
        self.state = PollState.IDLE
        self._fetcher_factory = fetcher_factory
        self._clock = clock

    async def maybe_poll(self) -> PollSummary | None:
        """Run a cycle only if the poll interval has elapsed since the last one."""
        last_run = await self.db.get_last_run()
        if self._clock() - last_run < self.config.poll.interval_seconds:
            return None
        return await self.poll()

    async def poll(self, manual: bool = False) -> PollSummary:
        """
        Run one poll cycle.

        Returns a summary with status "skipped_locked" and no side effects if
        another cycle holds the lease.
        """
        token = uuid.uuid4().hex
        ttl = self.config.poll.lock_ttl_seconds
        summary = PollSummary(
            status=STATUS_COMPLETED,
            started_at=int(self._clock()),
            manual=manual,
        )

        self.state = PollState.LOCK_ACQUIRING
        if not await self.db.acquire_lock(token, ttl, now=self._clock()):
            self.state = PollState.SKIPPED_LOCKED
            logger.info("poll_skipped_locked", manual=manual)
            summary.status = STATUS_SKIPPED_LOCKED
            summary.finished_at = int(self._clock())
            self.state = PollState.IDLE
            return summary

        bind_context(poll_id=token[:12])
        try:
            self.state = PollState.RUNNING
            wallets = await self.db.list_wallets()
            summary.wallets_total = len(wallets)
            logger.info("poll_cycle_started", wallets=len(wallets), manual=manual)

            fetchers: dict[str, ExplorerClient] = {}
            try:
                for wallet in wallets:
                    await self._poll_wallet(wallet, token, fetchers, summary)
                    await self._hold_lease(token)
            except LockLostError:
                logger.warning("poll_lock_lost", checked=summary.wallets_checked)
                summary.status = STATUS_LOCK_LOST
                return summary
            finally:
                for fetcher in fetchers.values():
                    await fetcher.close()

            self.state = PollState.COMMITTING
            await self.db.set_last_run(int(self._clock()))
            await self.db.prune_service_errors(services_for_chains({w.chain for w in wallets}))
            errors = await self.db.list_service_errors()
            summary.errors = {service: e["message"] for service, e in errors.items()}
        finally:
            await self.db.release_lock(token)
            self.state = PollState.IDLE
            summary.finished_at = int(self._clock())
            logger.info(
                "poll_cycle_finished",
                checked=summary.wallets_checked,
                skipped=summary.wallets_skipped,
                failed=summary.wallets_failed,
                new_transactions=summary.new_transactions,
                alerts_sent=summary.alerts_sent,
            )
            clear_context()

        return summary

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    def _fetcher_for(self, chain: str, fetchers: dict[str, ExplorerClient]) -> ExplorerClient:
        if chain not in fetchers:
            fetchers[chain] = self._fetcher_factory(chain, self.config)
        return fetchers[chain]

    async def _hold_lease(self, token: str) -> None:
        """Extend the lease; raise LockLostError if it is no longer ours."""
        ttl = self.config.poll.lock_ttl_seconds
        if not await self.db.refresh_lock(token, ttl, now=self._clock()):
            raise LockLostError("Poll lease expired or was taken over", details={"token": token[:12]})

    async def _poll_wallet(
        self,
        wallet: Wallet,
        token: str,
        fetchers: dict[str, ExplorerClient],
        summary: PollSummary,
    ) -> None:
        spec = get_chain(wallet.chain)
        log = logger.bind(wallet_id=wallet.id, chain=wallet.chain)

        try:
            fetcher = self._fetcher_for(spec.code, fetchers)
            meta = await self.db.get_wallet_meta(wallet.address, wallet.chain)
            accepted: list[TransactionRecord] = []
            for category in spec.categories:
                candidates = await fetcher.fetch_transactions(
                    wallet.address,
                    category,
                    start_block=meta.watermark(category),
                )
                accepted.extend(select_new_transactions(meta, candidates, category))
        except MissingAPIKeyError as e:
            log.debug("wallet_skipped_missing_key", service=e.service)
            summary.wallets_skipped += 1
            return
        except WalletwatchError as e:
            await self._record_failure(spec.service, e.message, summary)
            log.warning("wallet_poll_failed", service=spec.service, error=e.error_code, message=e.message)
            return
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            await self._record_failure(spec.service, message, summary)
            log.exception("wallet_poll_crashed", service=spec.service)
            return

        await self._hold_lease(token)

        try:
            now = int(self._clock())
            entries = [build_log_entry(wallet, tx, self.config, now=now) for tx in accepted]
            await self.db.record_transactions(wallet, entries, meta)
            await self.db.clear_service_error(spec.service)
        except WalletwatchError as e:
            await self._record_failure(spec.service, e.message, summary)
            log.warning("wallet_commit_failed", service=spec.service, error=e.error_code, message=e.message)
            return
        except Exception as e:
            await self._record_failure(spec.service, f"{type(e).__name__}: {e}", summary)
            log.exception("wallet_commit_crashed", service=spec.service)
            return

        summary.wallets_checked += 1
        summary.new_transactions += len(entries)
        if entries:
            log.info("wallet_new_transactions", count=len(entries))

        for entry in entries:
            try:
                status = await dispatch_alert(wallet, entry, self.config)
            except Exception:
                log.exception("alert_dispatch_crashed", tx_hash=entry.tx_hash)
                continue
            if status is not None and 200 <= status < 300:
                summary.alerts_sent += 1

    async def _record_failure(self, service: str, message: str, summary: PollSummary) -> None:
        summary.wallets_failed += 1
        await self.db.record_service_error(service, message, now=self._clock())


def summarize(summary: PollSummary) -> dict[str, Any]:
    """Aggregate counts for display; no per-wallet detail."""
    return {
        "status": summary.status,
        "wallets": summary.wallets_total,
        "checked": summary.wallets_checked,
        "skipped": summary.wallets_skipped,
        "failed": summary.wallets_failed,
        "new_transactions": summary.new_transactions,
        "alerts_sent": summary.alerts_sent,
        "errors": dict(summary.errors),
    }
