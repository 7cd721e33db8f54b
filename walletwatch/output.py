"""Output format routing for walletwatch.

Converts result dicts to the requested format: json, jsonl, table, csv.

Design rules:
- JSON: 2-space indent, utf-8
- JSONL: one JSON object per line, no trailing whitespace
- Table: Rich-formatted, green=received, red=sent
- CSV: RFC 4180, header row always present

All functions return strings. The caller writes to stdout.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

VALID_FORMATS = {"json", "jsonl", "table", "csv"}

# Keys whose list payload is the row set for jsonl/csv output
_ROW_KEYS = ("wallets", "logs")


def format_output(data: Any, fmt: str) -> str:
    """
    Format data for stdout output.

    Raises:
        ValueError: If fmt is not a recognised format.
    """
    fmt = fmt.lower()
    if fmt not in VALID_FORMATS:
        raise ValueError(f"Unknown format {fmt!r}. Valid: {sorted(VALID_FORMATS)}")

    if fmt == "jsonl":
        return format_jsonl(data)
    elif fmt == "table":
        return format_table(data)
    elif fmt == "csv":
        return format_csv(data)
    return format_json(data)


# ── JSON ─────────────────────────────────────────────────────────────────────


def format_json(data: Any) -> str:
    """Pretty-print data as JSON (2-space indent)."""
    return json.dumps(data, indent=2, ensure_ascii=False)


def format_jsonl(data: Any) -> str:
    """One JSON object per row for wallet/log lists, else a single line."""
    rows = _rows_of(data)
    if rows is None:
        return json.dumps(data, ensure_ascii=False)
    return "\n".join(json.dumps(row, ensure_ascii=False) for row in rows)


# ── Table ────────────────────────────────────────────────────────────────────


def format_table(data: Any) -> str:
    """
    Format as a Rich terminal table.

    Handles wallet lists, transaction logs, poll summaries and status; any
    other dict is pretty-printed as JSON.
    """
    buf = io.StringIO()
    console = Console(file=buf, highlight=False, markup=True, width=140)

    if isinstance(data, dict) and "wallets" in data:
        _render_wallet_table(console, data)
    elif isinstance(data, dict) and "logs" in data:
        _render_log_table(console, data)
    elif isinstance(data, dict) and "new_transactions" in data:
        _render_poll_summary(console, data)
    elif isinstance(data, dict) and "last_run" in data:
        _render_status(console, data)
    else:
        console.print_json(json.dumps(data))

    return buf.getvalue()


def _short(value: str, head: int = 8, tail: int = 6) -> str:
    if len(value) > head + tail + 2:
        return f"{value[:head]}…{value[-tail:]}"
    return value


def _fmt_time(unix: Any) -> str:
    try:
        unix = int(unix)
    except (TypeError, ValueError):
        return "—"
    if unix <= 0:
        return "never"
    return datetime.fromtimestamp(unix, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _render_wallet_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(title="Tracked Wallets", show_header=True, header_style="bold blue")
    table.add_column("Address", style="cyan")
    table.add_column("Chain", justify="center")
    table.add_column("Label")
    table.add_column("Template")
    table.add_column("Added At")

    for w in data.get("wallets", []):
        table.add_row(
            _short(w.get("address", ""), 10, 6),
            w.get("chain", ""),
            w.get("label", "") or "—",
            "custom" if w.get("message_template") else "default",
            str(w.get("added_at", ""))[:19],
        )

    console.print(table)
    console.print(f"Total: [bold]{data.get('count', len(data.get('wallets', [])))}[/bold] wallets")


def _render_log_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(title="Transaction Log", show_header=True, header_style="bold blue")
    table.add_column("Time")
    table.add_column("Chain", justify="center")
    table.add_column("Wallet")
    table.add_column("Dir", justify="center")
    table.add_column("Amount", justify="right")
    table.add_column("Token")
    table.add_column("Hash", style="cyan", no_wrap=True)

    for e in data.get("logs", []):
        direction = e.get("direction", "")
        table.add_row(
            _fmt_time(e.get("timestamp")),
            e.get("chain", ""),
            e.get("label", "") or _short(e.get("to_addr", "")),
            Text(direction, style="green" if direction == "in" else "red"),
            e.get("amount", ""),
            e.get("token", ""),
            _short(e.get("tx_hash", ""), 10, 6),
        )

    console.print(table)
    console.print(f"Entries: [bold]{data.get('count', len(data.get('logs', [])))}[/bold]")


def _render_poll_summary(console: Console, data: dict[str, Any]) -> None:
    if data.get("status") == "skipped_locked":
        console.print("[yellow]Another poll cycle is running; skipped.[/yellow]")
        return
    if data.get("status") == "lock_lost":
        console.print("[yellow]Poll lease lost mid-cycle; stopped early.[/yellow]")
    console.print(
        f"Wallets: [bold]{data.get('wallets', 0)}[/bold]  "
        f"Checked: [bold green]{data.get('checked', 0)}[/bold green]  "
        f"Skipped: [bold]{data.get('skipped', 0)}[/bold]  "
        f"Failed: [bold red]{data.get('failed', 0)}[/bold red]  "
        f"New transactions: [bold]{data.get('new_transactions', 0)}[/bold]  "
        f"Alerts sent: [bold]{data.get('alerts_sent', 0)}[/bold]"
    )
    _render_errors(console, data.get("errors") or {})


def _render_status(console: Console, data: dict[str, Any]) -> None:
    console.print(f"Last run: [bold]{_fmt_time(data.get('last_run'))}[/bold]")
    console.print(f"Poll interval: [bold]{data.get('interval_seconds', '—')}s[/bold]")
    lock = data.get("lock")
    if lock:
        console.print(f"Lock held until: [bold yellow]{_fmt_time(lock.get('expires_at'))}[/bold yellow]")
    else:
        console.print("Lock: [green]free[/green]")
    console.print(f"Wallets: [bold]{data.get('wallets', 0)}[/bold]  Log entries: [bold]{data.get('log_entries', 0)}[/bold]")
    _render_errors(console, data.get("errors") or {})


def _render_errors(console: Console, errors: dict[str, Any]) -> None:
    if not errors:
        return
    table = Table(title="Explorer Errors", header_style="bold red")
    table.add_column("Service")
    table.add_column("Message")
    for service, err in errors.items():
        message = err.get("message", "") if isinstance(err, dict) else str(err)
        table.add_row(service, message)
    console.print(table)


# ── CSV ──────────────────────────────────────────────────────────────────────


def format_csv(data: Any) -> str:
    """Format as CSV with a header row."""
    buf = io.StringIO()
    writer = csv.writer(buf)

    rows = _rows_of(data)
    if not rows:
        writer.writerow(["value"])
        writer.writerow([json.dumps(data)])
        return buf.getvalue()

    headers = list(rows[0].keys())
    writer.writerow(headers)
    for row in rows:
        writer.writerow([row.get(h, "") for h in headers])
    return buf.getvalue()


def _rows_of(data: Any) -> list[dict[str, Any]] | None:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in _ROW_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
    return None


# ── Utility ──────────────────────────────────────────────────────────────────


def mask_api_key(key: str) -> str:
    """
    Mask an API key for safe display.

    'abcdefg123' → 'abcd****'
    '' → '****'
    """
    if not key or len(key) <= 4:
        return "****"
    return key[:4] + "****"
