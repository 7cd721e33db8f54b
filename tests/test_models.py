"""Tests for walletwatch/models.py."""

from __future__ import annotations

from walletwatch.chains import NATIVE, TOKEN
from walletwatch.models import RECENT_HASHES_CAP, PollSummary, Wallet, WalletMeta


def make_wallet(label: str = "") -> Wallet:
    return Wallet(
        id="wallet_abc",
        address="0xd8da6bf26964af9d7eed9e03e53415d37aa96045",
        chain="ETH",
        label=label,
    )


def test_wallet_display_name_falls_back_to_address() -> None:
    assert make_wallet("Hot").display_name() == "Hot"
    assert make_wallet().display_name() == "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"


def test_wallet_short_address() -> None:
    assert make_wallet().short_address() == "0xd8da...6045"


def test_wallet_to_dict() -> None:
    d = make_wallet("Hot").to_dict()
    assert d["id"] == "wallet_abc"
    assert d["message_template"] == ""


def test_meta_watermarks_are_per_category() -> None:
    meta = WalletMeta(last_native_block=10, last_token_block=20)
    assert meta.watermark(NATIVE) == 10
    assert meta.watermark(TOKEN) == 20


def test_meta_watermark_never_lowers() -> None:
    meta = WalletMeta(last_native_block=100)
    meta.raise_watermark(NATIVE, 90)
    assert meta.last_native_block == 100
    meta.raise_watermark(NATIVE, 105)
    assert meta.last_native_block == 105
    assert meta.last_token_block == 0


def test_meta_hash_window_capped_oldest_first() -> None:
    meta = WalletMeta()
    for i in range(RECENT_HASHES_CAP + 5):
        meta.remember_hash(f"0x{i}")
    assert len(meta.recent_hashes) == RECENT_HASHES_CAP
    assert meta.recent_hashes[0] == "0x5"
    assert meta.recent_hashes[-1] == f"0x{RECENT_HASHES_CAP + 4}"


def test_meta_remember_hash_no_duplicates() -> None:
    meta = WalletMeta()
    meta.remember_hash("0xa")
    meta.remember_hash("0xa")
    assert meta.recent_hashes == ["0xa"]


def test_poll_summary_defaults() -> None:
    s = PollSummary(status="completed", started_at=1)
    assert s.to_dict()["errors"] == {}
    assert s.new_transactions == 0
