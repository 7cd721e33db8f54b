"""
Solana fetcher — Solscan public API client.

API: GET https://public-api.solscan.io/account/transactions?address=..&limit=..
Auth: optional API token sent in a `token` header.

Solscan has no block-range filter, so every call returns the newest `limit`
transactions and the engine's watermark (the slot) filters out old ones.
Amounts are reported in lamports (9 decimals). Solana addresses and
signatures are base58 and therefore kept case-sensitive.
"""

from __future__ import annotations

from typing import Any

import httpx

from walletwatch.chains import NATIVE, ChainSpec, get_chain
from walletwatch.exceptions import (
    ConnectionFailedError,
    ExplorerAPIError,
    HTTPStatusError,
    InvalidAddressError,
    InvalidAPIKeyError,
    MalformedResponseError,
    NetworkTimeoutError,
    NoDataError,
    RateLimitError,
)
from walletwatch.fetchers.base import TokenBucket, extract_transaction_list, sort_ascending
from walletwatch.formatting import format_units
from walletwatch.models import TransactionRecord

TRANSACTIONS_PATH = "/account/transactions"

PAGE_SIZE = 20


def _first(raw: dict[str, Any], *keys: str) -> Any:
    """Return the first present, non-empty value among `keys`."""
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


class SolscanClient:
    """Async Solscan client for native SOL transactions."""

    def __init__(
        self,
        chain: str | ChainSpec = "SOL",
        api_key: str = "",
        timeout: float = 20.0,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self.chain = chain if isinstance(chain, ChainSpec) else get_chain(chain)
        self.service = self.chain.service
        self._page_size = page_size
        headers = {"token": api_key} if api_key else {}
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers)
        self._rate_limiter = TokenBucket()

    async def fetch_transactions(
        self,
        address: str,
        category: str = NATIVE,
        start_block: int = 0,
    ) -> list[TransactionRecord]:
        """
        Fetch the newest page of transactions for `address`, oldest first.

        `start_block` is accepted for protocol compatibility; Solscan cannot
        filter by slot.
        """
        if category != NATIVE:
            raise ValueError(f"Solscan supports only native transactions, got {category!r}")
        address = self._checked_address(address)
        try:
            rows = await self._request(address, self._page_size)
        except NoDataError:
            return []

        records = []
        for raw in rows:
            t = self._parse_tx(raw)
            if t:
                records.append(t)
        return sort_ascending(records)

    async def fetch_latest(self, address: str) -> TransactionRecord | None:
        address = self._checked_address(address)
        try:
            rows = await self._request(address, 1)
        except NoDataError:
            return None
        for raw in rows:
            t = self._parse_tx(raw)
            if t:
                return t
        return None

    def validate_address(self, address: str) -> bool:
        return self.chain.is_valid_address(address)

    async def close(self) -> None:
        await self._client.aclose()

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    def _checked_address(self, address: str) -> str:
        if not self.validate_address(address):
            raise InvalidAddressError(
                f"Invalid SOL address: {address!r}. Must be base58, 32-44 chars.",
                details={"address": address, "chain": self.chain.code},
            )
        return self.chain.normalize_address(address)

    async def _request(self, address: str, limit: int) -> list[dict[str, Any]]:
        await self._rate_limiter.acquire()
        try:
            resp = await self._client.get(
                self.chain.api_base + TRANSACTIONS_PATH,
                params={"address": address, "limit": limit},
            )
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError(f"Solscan timeout: {e}", service=self.service) from e
        except httpx.HTTPError as e:
            raise ConnectionFailedError(f"Cannot connect to Solscan: {e}", service=self.service) from e

        if resp.status_code == 429:
            raise RateLimitError("Solscan rate limit exceeded", service=self.service)
        if resp.status_code in (401, 403):
            raise InvalidAPIKeyError("Solscan API token was rejected", service=self.service)
        if not resp.is_success:
            raise HTTPStatusError(
                f"Solscan returned HTTP {resp.status_code}",
                service=self.service,
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError("Solscan returned a non-JSON body", service=self.service) from e

        if isinstance(data, dict) and data.get("success") is False:
            errors = data.get("errors")
            message = (
                errors.get("message") if isinstance(errors, dict) else None
            ) or data.get("message") or "unknown"
            raise ExplorerAPIError(f"Solscan error: {message}", service=self.service)

        rows = extract_transaction_list(data)
        if rows is None:
            raise MalformedResponseError(
                "Solscan response has no transaction list", service=self.service
            )
        if not rows:
            raise NoDataError("Solscan: no transactions", service=self.service)
        return rows

    def _parse_tx(self, raw: dict[str, Any]) -> TransactionRecord | None:
        try:
            tx_hash = self.chain.normalize_hash(
                str(_first(raw, "txHash", "signature", "tx_hash", "hash") or "")
            )
            if not tx_hash:
                return None
            if str(raw.get("status", "")).lower() in ("fail", "failed"):
                return None

            signers = raw.get("signer")
            from_addr = _first(raw, "src", "from")
            if from_addr is None and isinstance(signers, list) and signers:
                from_addr = signers[0]

            return TransactionRecord(
                tx_hash=tx_hash,
                chain=self.chain.code,
                block_number=int(_first(raw, "slot", "block_number", "blockNumber") or 0),
                timestamp=int(_first(raw, "blockTime", "block_time", "timestamp") or 0),
                from_addr=self.chain.normalize_address(str(from_addr or "")),
                to_addr=self.chain.normalize_address(str(_first(raw, "dst", "to") or "")),
                amount=format_units(_first(raw, "lamport", "amount") or "0", self.chain.native_decimals),
                token_symbol=self.chain.native_symbol,
                explorer_url=self.chain.tx_url(tx_hash),
                category=NATIVE,
            )
        except (KeyError, ValueError, TypeError):
            return None
