"""Tests for walletwatch/output.py — output formatting."""

from __future__ import annotations

import csv
import io
import json
from typing import Any

import pytest

from walletwatch.output import (
    format_csv,
    format_json,
    format_jsonl,
    format_output,
    format_table,
    mask_api_key,
)

# ── Fixtures ──────────────────────────────────────────────────────────────────


def make_wallet_list() -> dict[str, Any]:
    return {
        "count": 2,
        "wallets": [
            {
                "id": "wallet_1",
                "address": "0xd8da6bf26964af9d7eed9e03e53415d37aa96045",
                "chain": "ETH",
                "label": "Vitalik",
                "message_template": "",
                "added_at": "2026-02-22T12:00:00+00:00",
            },
            {
                "id": "wallet_2",
                "address": "vines1vzrYbzLMRdu58ou5XTby4qAqVRLmqo36NKPTg",
                "chain": "SOL",
                "label": "",
                "message_template": "{amount} {token}",
                "added_at": "2026-02-22T12:05:00+00:00",
            },
        ],
    }


def make_log_list() -> dict[str, Any]:
    return {
        "count": 1,
        "logs": [
            {
                "id": "log_1",
                "wallet_id": "wallet_1",
                "label": "Vitalik",
                "chain": "ETH",
                "category": "native",
                "tx_hash": "0x" + "ab" * 32,
                "direction": "in",
                "amount": "1.5",
                "token": "ETH",
                "from_addr": "0x28c6c06298d514db089934071355e5743bf21d60",
                "to_addr": "0xd8da6bf26964af9d7eed9e03e53415d37aa96045",
                "timestamp": 1706906640,
                "explorer_url": "https://etherscan.io/tx/0x" + "ab" * 32,
                "block_number": 19000000,
                "message": "New ETH transaction",
            }
        ],
    }


def make_poll_summary(status: str = "completed") -> dict[str, Any]:
    return {
        "status": status,
        "wallets": 2,
        "checked": 1,
        "skipped": 0,
        "failed": 1,
        "new_transactions": 3,
        "alerts_sent": 3,
        "errors": {"etherscan": "etherscan rate limit exceeded"},
    }


# ── JSON / JSONL ──────────────────────────────────────────────────────────────


def test_format_json_indent() -> None:
    out = format_json({"a": 1})
    assert out == '{\n  "a": 1\n}'


def test_format_json_keeps_unicode() -> None:
    assert "Kölsch" in format_json({"label": "Kölsch"})


def test_format_jsonl_one_row_per_wallet() -> None:
    lines = format_jsonl(make_wallet_list()).splitlines()
    assert len(lines) == 2
    assert json.loads(lines[1])["chain"] == "SOL"


def test_format_jsonl_plain_dict_single_line() -> None:
    out = format_jsonl(make_poll_summary())
    assert "\n" not in out
    assert json.loads(out)["new_transactions"] == 3


# ── CSV ───────────────────────────────────────────────────────────────────────


def test_format_csv_logs() -> None:
    rows = list(csv.DictReader(io.StringIO(format_csv(make_log_list()))))
    assert len(rows) == 1
    assert rows[0]["amount"] == "1.5"
    assert rows[0]["direction"] == "in"


def test_format_csv_non_tabular() -> None:
    rows = list(csv.reader(io.StringIO(format_csv({"status": "cleared", "deleted": 4}))))
    assert rows[0] == ["value"]
    assert json.loads(rows[1][0]) == {"status": "cleared", "deleted": 4}


# ── Table ─────────────────────────────────────────────────────────────────────


def test_format_table_wallets() -> None:
    out = format_table(make_wallet_list())
    assert "Tracked Wallets" in out
    assert "Vitalik" in out
    assert "custom" in out
    assert "Total:" in out


def test_format_table_logs() -> None:
    out = format_table(make_log_list())
    assert "Transaction Log" in out
    assert "1.5" in out
    assert "2024-02-02" in out


def test_format_table_poll_summary() -> None:
    out = format_table(make_poll_summary())
    assert "New transactions: 3" in out
    assert "Explorer Errors" in out
    assert "etherscan" in out


def test_format_table_skipped_poll() -> None:
    out = format_table(make_poll_summary(status="skipped_locked"))
    assert "skipped" in out


def test_format_table_lock_lost_poll() -> None:
    out = format_table(make_poll_summary(status="lock_lost"))
    assert "lease lost" in out
    assert "Wallets:" in out


def test_format_table_status() -> None:
    out = format_table(
        {
            "last_run": 0,
            "interval_seconds": 300,
            "lock": None,
            "wallets": 2,
            "log_entries": 5,
            "errors": {},
        }
    )
    assert "never" in out
    assert "free" in out


def test_format_table_fallback_json() -> None:
    out = format_table({"status": "removed", "id": "wallet_1"})
    assert "removed" in out


# ── Routing ───────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("fmt", ["json", "JSON", "jsonl", "table", "csv"])
def test_format_output_routes(fmt: str) -> None:
    assert format_output(make_wallet_list(), fmt)


def test_format_output_unknown() -> None:
    with pytest.raises(ValueError):
        format_output({}, "xml")


def test_mask_api_key() -> None:
    assert mask_api_key("abcdefg123") == "abcd****"
    assert mask_api_key("") == "****"
    assert mask_api_key("abc") == "****"
