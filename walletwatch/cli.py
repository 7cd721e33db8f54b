"""Click CLI entry point for walletwatch.

All commands are thin orchestration wrappers — business logic lives in
config, db, fetchers, engine, alert, scheduler and output modules.

Exit codes:
  0 — success
  1 — usage error
  2 — explorer API error, rate limit
  3 — network error
  4 — data error (invalid address, wallet not found, duplicate wallet)
  5 — config error
  6 — database error
  130 — `run` interrupted
"""

from __future__ import annotations

import asyncio
import json
import shutil
import sys
import time
from pathlib import Path
from typing import Any

import click

from walletwatch import __version__
from walletwatch.chains import SUPPORTED_CHAINS
from walletwatch.config import (
    WalletwatchConfig,
    fallback_config,
    get_default_config_path,
    load_config,
    load_file_config,
    save_config,
    validate_config,
)
from walletwatch.db import Database
from walletwatch.engine import PollEngine, summarize
from walletwatch.exceptions import WalletwatchError
from walletwatch.log import configure_logging, get_logger
from walletwatch.output import format_output, mask_api_key

logger = get_logger(__name__)

FORMATS = ["json", "jsonl", "table", "csv"]


# ── Error handler ─────────────────────────────────────────────────────────────


def _output_error(err: WalletwatchError | Exception) -> None:
    """Write error JSON to stderr."""
    if isinstance(err, WalletwatchError):
        payload = err.to_dict()
        exit_code = err.exit_code
    else:
        payload = {"error": "unknown_error", "message": str(err), "details": {}}
        exit_code = 1
    sys.stderr.write(json.dumps(payload) + "\n")
    sys.stderr.flush()
    sys.exit(exit_code)


def _usage_error(message: str) -> None:
    sys.stderr.write(json.dumps({"error": "cli_error", "message": message}) + "\n")
    sys.exit(1)


def _db_from_config(config: WalletwatchConfig) -> Database:
    """Create a Database instance from config."""
    db_path = config.database.path
    if db_path and db_path != ":memory:":
        db_path = str(Path(db_path).expanduser())
    return Database(db_path, log_cap=config.database.log_cap)


def _config_path(ctx: click.Context) -> Path:
    provided = ctx.obj.get("config_path")
    return Path(provided).expanduser() if provided else get_default_config_path()


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    envvar="WALLETWATCH_CONFIG_PATH",
    default=None,
    help="Config file path (default: ~/.walletwatch/config.toml)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(FORMATS),
    default="json",
    show_default=True,
    help="Output format",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, output_format: str) -> None:
    """walletwatch — multi-chain wallet watcher with webhook alerts."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except WalletwatchError as e:
        # On config errors, use defaults (so config init still works)
        sys.stderr.write(json.dumps(e.to_dict()) + "\n")
        config = fallback_config()

    log_file = Path(config.logging.file).expanduser() if config.logging.file else None
    configure_logging(config.logging.level, log_file)

    ctx.obj["config"] = config
    ctx.obj["format"] = output_format
    ctx.obj["config_path"] = config_path


# ── Wallet commands ───────────────────────────────────────────────────────────


@cli.group()
def wallet() -> None:
    """Manage tracked wallets."""


_chain_option = click.option(
    "--chain",
    required=True,
    type=click.Choice(SUPPORTED_CHAINS, case_sensitive=False),
    help="Chain",
)


@wallet.command("add")
@click.argument("address")
@_chain_option
@click.option("--label", default="", help="Human-readable label")
@click.option("--message", "message_template", default="", help="Custom alert template")
@click.pass_context
def wallet_add(
    ctx: click.Context,
    address: str,
    chain: str,
    label: str,
    message_template: str,
) -> None:
    """Start tracking a wallet."""
    config: WalletwatchConfig = ctx.obj["config"]

    async def _run() -> None:
        async with _db_from_config(config) as db:
            added = await db.add_wallet(address, chain, label, message_template)
            logger.info("wallet_added", wallet_id=added.id, chain=added.chain)
            click.echo(format_output({"status": "added", "wallet": added.to_dict()}, "json"))

    try:
        asyncio.run(_run())
    except WalletwatchError as e:
        _output_error(e)


@wallet.command("list")
@click.option("--chain", type=click.Choice(SUPPORTED_CHAINS, case_sensitive=False), default=None)
@click.pass_context
def wallet_list(ctx: click.Context, chain: str | None) -> None:
    """List all tracked wallets."""
    config: WalletwatchConfig = ctx.obj["config"]
    fmt = ctx.obj.get("format", "json")

    async def _run() -> None:
        async with _db_from_config(config) as db:
            wallets = await db.list_wallets(chain=chain)
            result = {
                "count": len(wallets),
                "wallets": [w.to_dict() for w in wallets],
            }
            click.echo(format_output(result, fmt))

    try:
        asyncio.run(_run())
    except WalletwatchError as e:
        _output_error(e)


@wallet.command("update")
@click.argument("address")
@_chain_option
@click.option("--label", default=None, help="New label")
@click.option("--message", "message_template", default=None, help="New alert template ('' resets)")
@click.pass_context
def wallet_update(
    ctx: click.Context,
    address: str,
    chain: str,
    label: str | None,
    message_template: str | None,
) -> None:
    """Edit a wallet's label or alert template (keeps its watermarks)."""
    config: WalletwatchConfig = ctx.obj["config"]

    if label is None and message_template is None:
        _usage_error("Provide --label and/or --message")

    async def _run() -> None:
        async with _db_from_config(config) as db:
            updated = await db.update_wallet(address, chain, label, message_template)
            click.echo(format_output({"status": "updated", "wallet": updated.to_dict()}, "json"))

    try:
        asyncio.run(_run())
    except WalletwatchError as e:
        _output_error(e)


@wallet.command("remove")
@click.argument("address")
@_chain_option
@click.pass_context
def wallet_remove(ctx: click.Context, address: str, chain: str) -> None:
    """Stop tracking a wallet and forget its dedup state."""
    config: WalletwatchConfig = ctx.obj["config"]

    async def _run() -> None:
        async with _db_from_config(config) as db:
            result = await db.remove_wallet(address, chain)
            logger.info("wallet_removed", wallet_id=result["id"], chain=result["chain"])
            click.echo(format_output(result, "json"))

    try:
        asyncio.run(_run())
    except WalletwatchError as e:
        _output_error(e)


# ── Log commands ──────────────────────────────────────────────────────────────


@cli.group("logs")
def logs_group() -> None:
    """View or clear the transaction log."""


@logs_group.command("list")
@click.option("--limit", default=50, type=click.IntRange(1, 10_000), show_default=True)
@click.option("--chain", type=click.Choice(SUPPORTED_CHAINS, case_sensitive=False), default=None)
@click.pass_context
def logs_list(ctx: click.Context, limit: int, chain: str | None) -> None:
    """Show recorded transactions, newest first."""
    config: WalletwatchConfig = ctx.obj["config"]
    fmt = ctx.obj.get("format", "json")

    async def _run() -> None:
        async with _db_from_config(config) as db:
            entries = await db.list_logs(limit=limit, chain=chain)
            result = {"count": len(entries), "logs": [e.to_dict() for e in entries]}
            click.echo(format_output(result, fmt))

    try:
        asyncio.run(_run())
    except WalletwatchError as e:
        _output_error(e)


@logs_group.command("clear")
@click.pass_context
def logs_clear(ctx: click.Context) -> None:
    """Delete every log entry."""
    config: WalletwatchConfig = ctx.obj["config"]

    async def _run() -> None:
        async with _db_from_config(config) as db:
            deleted = await db.clear_logs()
            click.echo(format_output({"status": "cleared", "deleted": deleted}, "json"))

    try:
        asyncio.run(_run())
    except WalletwatchError as e:
        _output_error(e)


# ── Poll commands ─────────────────────────────────────────────────────────────


@cli.command("poll")
@click.option("--if-due", is_flag=True, help="Only poll if the interval has elapsed")
@click.pass_context
def poll_command(ctx: click.Context, if_due: bool) -> None:
    """Run one poll cycle now and print aggregate counts."""
    config: WalletwatchConfig = ctx.obj["config"]
    fmt = ctx.obj.get("format", "json")

    async def _run() -> dict[str, Any]:
        async with _db_from_config(config) as db:
            engine = PollEngine(db, config)
            if if_due:
                summary = await engine.maybe_poll()
                if summary is None:
                    last_run = await db.get_last_run()
                    return {
                        "status": "not_due",
                        "next_due_in": max(
                            0, last_run + config.poll.interval_seconds - int(time.time())
                        ),
                    }
            else:
                summary = await engine.poll(manual=True)
            return summarize(summary)

    try:
        result = asyncio.run(_run())
        click.echo(format_output(result, fmt))
    except WalletwatchError as e:
        _output_error(e)


@cli.command("run")
@click.pass_context
def run_command(ctx: click.Context) -> None:
    """Poll on the configured interval until interrupted."""
    from walletwatch.scheduler import PollScheduler

    config: WalletwatchConfig = ctx.obj["config"]
    config_path = ctx.obj.get("config_path")

    async def _run() -> None:
        async with _db_from_config(config) as db:
            engine = PollEngine(db, config)
            scheduler = PollScheduler(engine, config_loader=lambda: load_config(config_path))
            scheduler.start()
            try:
                await asyncio.Event().wait()
            finally:
                scheduler.shutdown()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        sys.exit(130)
    except WalletwatchError as e:
        _output_error(e)


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """Show last run, lock holder and recent explorer errors."""
    config: WalletwatchConfig = ctx.obj["config"]
    fmt = ctx.obj.get("format", "json")

    async def _run() -> dict[str, Any]:
        async with _db_from_config(config) as db:
            lock = await db.get_lock()
            if lock and lock["expires_at"] <= time.time():
                lock = None
            return {
                "last_run": await db.get_last_run(),
                "interval_seconds": config.poll.interval_seconds,
                "lock": lock,
                "wallets": len(await db.list_wallets()),
                "log_entries": await db.count_logs(),
                "errors": await db.list_service_errors(),
            }

    try:
        result = asyncio.run(_run())
        click.echo(format_output(result, fmt))
    except WalletwatchError as e:
        _output_error(e)


# ── Config commands ───────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Manage walletwatch configuration."""


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing config")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Initialize default config at ~/.walletwatch/config.toml."""
    config_path = _config_path(ctx)

    if config_path.exists() and not force:
        click.echo(
            json.dumps(
                {
                    "status": "already_exists",
                    "config_path": str(config_path),
                    "hint": "Use --force to reinitialize",
                }
            )
        )
        return

    status = "initialized"
    backup = None

    if config_path.exists() and force:
        backup = str(config_path) + ".bak"
        shutil.copy2(config_path, backup)
        status = "reinitialized"

    save_config(WalletwatchConfig(), str(config_path))

    result: dict[str, Any] = {
        "status": status,
        "config_path": str(config_path),
    }
    if backup:
        result["backup"] = backup
    click.echo(json.dumps(result))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a config value by dotted key path (e.g. api.etherscan_api_key).

    Edits the stored file only; environment overrides are not persisted and
    an unreadable file is left untouched.
    """
    path = str(_config_path(ctx))
    try:
        config = load_file_config(path)
    except WalletwatchError as e:
        _output_error(e)

    parts = key.split(".", 1)
    if len(parts) != 2:
        _usage_error(f"Key must be in form section.key, got: {key!r}")

    section_name, field_name = parts
    section = getattr(config, section_name, None)
    if section is None or not hasattr(section, field_name):
        sys.stderr.write(
            json.dumps(
                {
                    "error": "config_invalid",
                    "message": f"Unknown config key: {key!r}",
                }
            )
            + "\n"
        )
        sys.exit(5)

    # Type-coerce
    current = getattr(section, field_name)
    try:
        if isinstance(current, int):
            typed_value: Any = int(value)
        elif isinstance(current, float):
            typed_value = float(value)
        else:
            typed_value = value
        setattr(section, field_name, typed_value)
    except (ValueError, TypeError) as e:
        sys.stderr.write(json.dumps({"error": "config_invalid", "message": str(e)}) + "\n")
        sys.exit(5)

    try:
        validate_config(config)
    except WalletwatchError as e:
        _output_error(e)

    save_config(config, path)

    # Mask API keys in response
    display_value = (
        mask_api_key(str(typed_value)) if "api_key" in field_name.lower() else typed_value
    )
    click.echo(json.dumps({"status": "updated", "key": key, "value": display_value}))


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration (API keys masked)."""
    config: WalletwatchConfig = ctx.obj["config"]

    result = {
        "config_path": str(_config_path(ctx)),
        "api": {
            "etherscan_api_key": mask_api_key(config.api.etherscan_api_key),
            "bscscan_api_key": mask_api_key(config.api.bscscan_api_key),
            "solscan_api_key": mask_api_key(config.api.solscan_api_key),
            "timeout_seconds": config.api.timeout_seconds,
            "page_size": config.api.page_size,
        },
        "alert": {
            "webhook_url": config.alert.webhook_url,
            "default_message_template": config.alert.default_message_template,
            "timeout_seconds": config.alert.timeout_seconds,
        },
        "poll": {
            "interval_seconds": config.poll.interval_seconds,
            "lock_ttl_seconds": config.poll.lock_ttl_seconds,
        },
        "database": {
            "path": config.database.path,
            "log_cap": config.database.log_cap,
        },
        "logging": {
            "level": config.logging.level,
            "file": config.logging.file,
        },
    }

    click.echo(format_output(result, "json"))


if __name__ == "__main__":
    cli()
