"""Alert message rendering and webhook delivery.

Renders a wallet's message template against a logged transaction and posts
it to the configured webhook as a Discord-style `{"content": ...}` body.
Delivery is best-effort: the transaction log is the durable record, so a
failed POST is logged and never retried or raised.
"""

from __future__ import annotations

import re
from typing import Any

import httpx

from walletwatch.config import WalletwatchConfig
from walletwatch.log import get_logger
from walletwatch.models import LogEntry, Wallet

logger = get_logger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z]+)\}")

_DIRECTION_WORDS = {"in": "received", "out": "sent"}


def resolve_template(wallet: Wallet, config: WalletwatchConfig) -> str:
    """Return the wallet's own template if set, else the global default."""
    if wallet.message_template and wallet.message_template.strip():
        return wallet.message_template
    return config.alert.default_message_template


def template_values(wallet: Wallet, entry: LogEntry) -> dict[str, str]:
    """Placeholder name → substituted text."""
    return {
        "label": wallet.display_name(),
        "address": wallet.address,
        "chain": entry.chain.upper(),
        "hash": entry.tx_hash,
        "amount": entry.amount,
        "token": entry.token,
        "direction": _DIRECTION_WORDS.get(entry.direction, entry.direction),
        "from": entry.from_addr,
        "to": entry.to_addr,
        "txUrl": entry.explorer_url,
        "explorerUrl": entry.explorer_url,
        "type": entry.category,
    }


def render_message(template: str, wallet: Wallet, entry: LogEntry) -> str:
    """
    Substitute `{placeholder}` tokens in `template`.

    Matching is literal and case-sensitive; unknown placeholders are left
    untouched. Substituted values are never re-scanned.
    """
    values = template_values(wallet, entry)

    def _sub(match: re.Match) -> str:
        return values.get(match.group(1), match.group(0))

    return _PLACEHOLDER_RE.sub(_sub, template or "")


def build_webhook_payload(message: str) -> dict[str, Any]:
    return {"content": message}


async def dispatch_alert(
    wallet: Wallet,
    entry: LogEntry,
    config: WalletwatchConfig,
) -> int | None:
    """
    Post the rendered alert for `entry` to the webhook URL.

    Returns HTTP status code, or None if nothing was sent or delivery failed.
    """
    if not config.alert.webhook_url:
        return None

    message = entry.message or render_message(resolve_template(wallet, config), wallet, entry)
    if not message.strip():
        logger.debug("webhook_skipped_empty_message", tx_hash=entry.tx_hash)
        return None

    try:
        async with httpx.AsyncClient(timeout=config.alert.timeout_seconds) as client:
            resp = await client.post(
                config.alert.webhook_url,
                json=build_webhook_payload(message),
            )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(
            "webhook_delivery_failed",
            tx_hash=entry.tx_hash,
            error=str(e) or type(e).__name__,
        )
        return None

    if resp.is_success:
        logger.info("webhook_delivered", tx_hash=entry.tx_hash, status=resp.status_code)
    else:
        logger.warning(
            "webhook_delivery_failed",
            tx_hash=entry.tx_hash,
            status=resp.status_code,
        )
    return resp.status_code
