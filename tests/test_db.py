"""Tests for walletwatch/db.py — SQLite state management."""

from __future__ import annotations

import pytest

from walletwatch.db import Database, new_log_id
from walletwatch.exceptions import (
    InvalidAddressError,
    UnsupportedChainError,
    WalletExistsError,
    WalletNotFoundError,
)
from walletwatch.models import LogEntry, WalletMeta

ETH_ADDR = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
ETH_ADDR_2 = "0x28c6c06298d514db089934071355e5743bf21d60"
SOL_ADDR = "vines1vzrYbzLMRdu58ou5XTby4qAqVRLmqo36NKPTg"


def make_entry(n: int, chain: str = "ETH", wallet_id: str = "wallet_x") -> LogEntry:
    return LogEntry(
        id=new_log_id(),
        wallet_id=wallet_id,
        label="Hot",
        chain=chain,
        category="native",
        tx_hash=f"0x{n:064x}",
        direction="in",
        amount="1.5",
        token="ETH",
        from_addr=ETH_ADDR_2,
        to_addr=ETH_ADDR,
        timestamp=1_700_000_000 + n,
        explorer_url=f"https://etherscan.io/tx/0x{n:064x}",
        block_number=n,
        message=f"tx {n}",
    )


# ── Schema / connection ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_connect_creates_schema(db: Database) -> None:
    assert await db.list_wallets() == []
    assert await db.count_logs() == 0


@pytest.mark.asyncio
async def test_context_manager(tmp_path) -> None:
    db_path = str(tmp_path / "nested" / "test.db")
    async with Database(db_path) as db:
        await db.add_wallet(ETH_ADDR, "ETH")
    async with Database(db_path) as db:
        assert len(await db.list_wallets()) == 1


# ── Wallet CRUD ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_add_wallet_normalises_and_assigns_id(db: Database) -> None:
    wallet = await db.add_wallet(ETH_ADDR.upper().replace("0X", "0x"), "eth", "  Whale #1 ")
    assert wallet.address == ETH_ADDR
    assert wallet.chain == "ETH"
    assert wallet.label == "Whale #1"
    assert wallet.id.startswith("wallet_")
    assert len(wallet.id) == len("wallet_") + 32
    assert wallet.added_at


@pytest.mark.asyncio
async def test_add_wallet_keeps_supplied_id(db: Database) -> None:
    wallet = await db.add_wallet(ETH_ADDR, "ETH", wallet_id="wallet_fixed")
    assert wallet.id == "wallet_fixed"


@pytest.mark.asyncio
async def test_add_sol_wallet_keeps_case(db: Database) -> None:
    wallet = await db.add_wallet(SOL_ADDR, "SOL")
    assert wallet.address == SOL_ADDR
    assert (await db.get_wallet(SOL_ADDR, "sol")).id == wallet.id


@pytest.mark.asyncio
async def test_add_wallet_rejects_bad_input(db: Database) -> None:
    with pytest.raises(InvalidAddressError):
        await db.add_wallet("", "ETH")
    with pytest.raises(InvalidAddressError):
        await db.add_wallet("0x1234", "BSC")
    with pytest.raises(UnsupportedChainError):
        await db.add_wallet(ETH_ADDR, "BTC")
    assert await db.list_wallets() == []


@pytest.mark.asyncio
async def test_add_duplicate_wallet(db: Database) -> None:
    await db.add_wallet(ETH_ADDR, "ETH")
    with pytest.raises(WalletExistsError):
        await db.add_wallet(ETH_ADDR.replace("d8da", "D8DA"), "ETH")


@pytest.mark.asyncio
async def test_same_address_on_two_chains(db: Database) -> None:
    await db.add_wallet(ETH_ADDR, "ETH")
    await db.add_wallet(ETH_ADDR, "BSC")
    assert len(await db.list_wallets()) == 2
    assert len(await db.list_wallets(chain="bsc")) == 1


@pytest.mark.asyncio
async def test_list_wallets_in_insertion_order(db: Database) -> None:
    await db.add_wallet(ETH_ADDR_2, "ETH", "second-address-first")
    await db.add_wallet(ETH_ADDR, "ETH", "first-address-second")
    await db.add_wallet(SOL_ADDR, "SOL")
    wallets = await db.list_wallets()
    assert [w.address for w in wallets] == [ETH_ADDR_2, ETH_ADDR, SOL_ADDR]
    assert all(w.message_template == "" for w in wallets)


@pytest.mark.asyncio
async def test_get_wallet_not_found(db: Database) -> None:
    with pytest.raises(WalletNotFoundError):
        await db.get_wallet(ETH_ADDR, "ETH")


@pytest.mark.asyncio
async def test_update_wallet_keeps_meta(db: Database) -> None:
    await db.add_wallet(ETH_ADDR, "ETH", "Old")
    await db.set_wallet_meta(ETH_ADDR, "ETH", WalletMeta(last_native_block=500, recent_hashes=["0xa"]))

    updated = await db.update_wallet(ETH_ADDR, "ETH", label="New", message_template="{hash}")
    assert updated.label == "New"
    assert updated.message_template == "{hash}"

    stored = await db.get_wallet(ETH_ADDR, "ETH")
    assert stored.label == "New"
    meta = await db.get_wallet_meta(ETH_ADDR, "ETH")
    assert meta.last_native_block == 500
    assert meta.recent_hashes == ["0xa"]


@pytest.mark.asyncio
async def test_update_wallet_partial(db: Database) -> None:
    await db.add_wallet(ETH_ADDR, "ETH", "Keep", message_template="custom")
    updated = await db.update_wallet(ETH_ADDR, "ETH", message_template="")
    assert updated.label == "Keep"
    assert updated.message_template == ""


@pytest.mark.asyncio
async def test_remove_wallet_removes_meta(db: Database) -> None:
    wallet = await db.add_wallet(ETH_ADDR, "ETH")
    await db.set_wallet_meta(ETH_ADDR, "ETH", WalletMeta(last_native_block=7, recent_hashes=["0xa"]))

    result = await db.remove_wallet(ETH_ADDR, "ETH")
    assert result["status"] == "removed"
    assert result["id"] == wallet.id
    assert await db.list_wallets() == []
    assert await db.get_wallet_meta(ETH_ADDR, "ETH") == WalletMeta()


@pytest.mark.asyncio
async def test_remove_missing_wallet(db: Database) -> None:
    with pytest.raises(WalletNotFoundError):
        await db.remove_wallet(ETH_ADDR, "ETH")


@pytest.mark.asyncio
async def test_readd_after_remove_starts_fresh(db: Database) -> None:
    first = await db.add_wallet(ETH_ADDR, "ETH")
    await db.set_wallet_meta(ETH_ADDR, "ETH", WalletMeta(last_native_block=99, last_token_block=98))
    await db.remove_wallet(ETH_ADDR, "ETH")

    second = await db.add_wallet(ETH_ADDR, "ETH")
    assert second.id != first.id
    meta = await db.get_wallet_meta(ETH_ADDR, "ETH")
    assert meta.last_native_block == 0
    assert meta.last_token_block == 0
    assert meta.recent_hashes == []


# ── Wallet metadata ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_meta_round_trip_and_remove(db: Database) -> None:
    meta = WalletMeta(last_native_block=10, last_token_block=20, recent_hashes=["0xa", "0xb"])
    await db.set_wallet_meta(ETH_ADDR, "ETH", meta)
    assert await db.get_wallet_meta(ETH_ADDR, "ETH") == meta

    await db.remove_wallet_meta(ETH_ADDR, "ETH")
    assert await db.get_wallet_meta(ETH_ADDR, "ETH") == WalletMeta()


@pytest.mark.asyncio
async def test_meta_keyed_by_chain(db: Database) -> None:
    await db.set_wallet_meta(ETH_ADDR, "ETH", WalletMeta(last_native_block=10))
    assert (await db.get_wallet_meta(ETH_ADDR, "BSC")).last_native_block == 0


# ── Transaction log ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_log_newest_first(db: Database) -> None:
    for n in range(3):
        await db.append_log(make_entry(n))
    logs = await db.list_logs()
    assert [e.block_number for e in logs] == [2, 1, 0]
    assert logs[0].message == "tx 2"


@pytest.mark.asyncio
async def test_log_cap_enforced() -> None:
    async with Database(":memory:", log_cap=5) as db:
        for n in range(12):
            await db.append_log(make_entry(n))
        assert await db.count_logs() == 5
        logs = await db.list_logs(limit=100)
        assert [e.block_number for e in logs] == [11, 10, 9, 8, 7]


@pytest.mark.asyncio
async def test_default_cap_is_200(db: Database) -> None:
    for n in range(205):
        await db.append_log(make_entry(n))
    assert await db.count_logs() == 200
    assert (await db.list_logs(limit=1))[0].block_number == 204


@pytest.mark.asyncio
async def test_list_logs_limit_and_chain(db: Database) -> None:
    await db.append_log(make_entry(1, chain="ETH"))
    await db.append_log(make_entry(2, chain="BSC"))
    await db.append_log(make_entry(3, chain="ETH"))
    assert len(await db.list_logs(limit=2)) == 2
    assert [e.block_number for e in await db.list_logs(chain="eth")] == [3, 1]


@pytest.mark.asyncio
async def test_clear_logs(db: Database) -> None:
    for n in range(4):
        await db.append_log(make_entry(n))
    assert await db.clear_logs() == 4
    assert await db.list_logs() == []


@pytest.mark.asyncio
async def test_record_transactions_writes_log_and_meta(db: Database) -> None:
    wallet = await db.add_wallet(ETH_ADDR, "ETH")
    meta = WalletMeta(last_native_block=3, recent_hashes=["0x1", "0x3"])
    await db.record_transactions(wallet, [make_entry(1), make_entry(3)], meta)

    assert [e.block_number for e in await db.list_logs()] == [3, 1]
    assert await db.get_wallet_meta(ETH_ADDR, "ETH") == meta


@pytest.mark.asyncio
async def test_record_transactions_without_entries_creates_meta(db: Database) -> None:
    wallet = await db.add_wallet(ETH_ADDR, "ETH")
    await db.record_transactions(wallet, [], WalletMeta(last_native_block=42))
    assert (await db.get_wallet_meta(ETH_ADDR, "ETH")).last_native_block == 42
    assert await db.count_logs() == 0


# ── Run state / lock / service errors ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_last_run_defaults_to_zero(db: Database) -> None:
    assert await db.get_last_run() == 0
    await db.set_last_run(1_700_000_000)
    assert await db.get_last_run() == 1_700_000_000


@pytest.mark.asyncio
async def test_lock_exclusive_until_released(db: Database) -> None:
    assert await db.acquire_lock("a", 60, now=1000.0) is True
    assert await db.acquire_lock("b", 60, now=1010.0) is False
    assert (await db.get_lock())["token"] == "a"

    await db.release_lock("b")  # not the holder: no effect
    assert (await db.get_lock())["token"] == "a"

    await db.release_lock("a")
    assert await db.get_lock() is None
    assert await db.acquire_lock("b", 60, now=1020.0) is True


@pytest.mark.asyncio
async def test_expired_lock_is_taken_over(db: Database) -> None:
    assert await db.acquire_lock("a", 60, now=1000.0) is True
    assert await db.acquire_lock("b", 60, now=1061.0) is True
    assert (await db.get_lock())["token"] == "b"
    assert await db.refresh_lock("a", 60, now=1062.0) is False


@pytest.mark.asyncio
async def test_refresh_lock_extends_lease(db: Database) -> None:
    await db.acquire_lock("a", 60, now=1000.0)
    assert await db.refresh_lock("a", 60, now=1050.0) is True
    assert await db.acquire_lock("b", 60, now=1100.0) is False
    assert (await db.get_lock())["expires_at"] == 1110.0


@pytest.mark.asyncio
async def test_service_errors(db: Database) -> None:
    await db.record_service_error("etherscan", "timeout", now=1.0)
    await db.record_service_error("solscan", "HTTP 502", now=2.0)
    await db.record_service_error("etherscan", "rate limited", now=3.0)

    errors = await db.list_service_errors()
    assert errors["etherscan"] == {"message": "rate limited", "recorded_at": 3.0}
    assert set(errors) == {"etherscan", "solscan"}

    await db.clear_service_error("solscan")
    assert set(await db.list_service_errors()) == {"etherscan"}


@pytest.mark.asyncio
async def test_prune_service_errors(db: Database) -> None:
    await db.record_service_error("etherscan", "x")
    await db.record_service_error("bscscan", "y")
    assert await db.prune_service_errors({"etherscan"}) == 1
    assert set(await db.list_service_errors()) == {"etherscan"}
