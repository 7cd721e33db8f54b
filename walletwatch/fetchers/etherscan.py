"""
Etherscan-family fetcher: Etherscan (ETH) and BscScan (BSC).

Both explorers share the same account API, so one client serves both chains;
the ChainSpec decides base URL, native symbol and explorer link.

API docs: https://docs.etherscan.io/api-endpoints/accounts
Rate limit: 5 calls/sec on free tier.

Design decisions:
- Uses async httpx for all HTTP calls.
- Implements token bucket rate limiting (5 req/sec).
- Native transfers (action=txlist) and token transfers (action=tokentx) are
  separate categories with separate watermarks, fetched by separate calls.
- A wallet with no watermark yet gets only its newest page; after that each
  call resumes at the watermark block (inclusive) so same-block siblings are
  seen, paging forward while whole pages sit on that block.
"""

from __future__ import annotations

from typing import Any

import httpx

from walletwatch.chains import NATIVE, TOKEN, ChainSpec, get_chain
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

# Etherscan's "no upper bound" block
END_BLOCK = 99_999_999

# Default page size; Etherscan allows up to 10000
PAGE_SIZE = 100

# Upper bound on pages followed in one catch-up call
MAX_CATCH_UP_PAGES = 10

_ACTIONS = {NATIVE: "txlist", TOKEN: "tokentx"}


class EtherscanClient:
    """
    Async Etherscan/BscScan API client.

    Fetches normal transactions and ERC-20/BEP-20 token transfers.
    Rate-limited to 5 calls/sec (free tier).
    """

    def __init__(
        self,
        chain: str | ChainSpec = "ETH",
        api_key: str = "",
        timeout: float = 20.0,
        page_size: int = PAGE_SIZE,
    ) -> None:
        self.chain = chain if isinstance(chain, ChainSpec) else get_chain(chain)
        self.service = self.chain.service
        self._api_key = api_key
        self._page_size = page_size
        self._client = httpx.AsyncClient(timeout=timeout)
        self._rate_limiter = TokenBucket()

    async def fetch_transactions(
        self,
        address: str,
        category: str = NATIVE,
        start_block: int = 0,
    ) -> list[TransactionRecord]:
        """
        Fetch `category` transactions for `address` from `start_block` on.

        One page normally; a catch-up call follows further pages while a full
        page has not got past `start_block`. Sorted by block number ascending.
        """
        address = self._checked_address(address)
        action = _ACTIONS.get(category)
        if action is None:
            raise ValueError(f"Unknown transaction category: {category!r}")

        params: dict[str, Any] = {
            "module": "account",
            "action": action,
            "address": address,
            "endblock": END_BLOCK,
            "page": 1,
            "offset": self._page_size,
        }
        if start_block > 0:
            params["startblock"] = start_block
            params["sort"] = "asc"
            rows = await self._catch_up_rows(params, start_block)
        else:
            params["startblock"] = 0
            params["sort"] = "desc"
            try:
                rows = await self._request(params)
            except NoDataError:
                return []

        records = []
        for raw in rows:
            t = self._parse_tx(raw, category)
            if t:
                records.append(t)
        return sort_ascending(records)

    async def fetch_latest(self, address: str) -> TransactionRecord | None:
        """Most recent native transaction for `address` (page size 1)."""
        address = self._checked_address(address)
        params = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "endblock": END_BLOCK,
            "sort": "desc",
            "page": 1,
            "offset": 1,
        }
        try:
            rows = await self._request(params)
        except NoDataError:
            return None

        for raw in rows:
            t = self._parse_tx(raw, NATIVE)
            if t:
                return t
        return None

    def validate_address(self, address: str) -> bool:
        """Validate address format. No API call required."""
        return self.chain.is_valid_address(address)

    async def close(self) -> None:
        await self._client.aclose()

    # ──────────────────────────────────────────────────────────────
    # Private helpers
    # ──────────────────────────────────────────────────────────────

    def _checked_address(self, address: str) -> str:
        if not self.validate_address(address):
            raise InvalidAddressError(
                f"Invalid {self.chain.code} address: {address!r}. Must be 0x + 40 hex chars.",
                details={"address": address, "chain": self.chain.code},
            )
        return self.chain.normalize_address(address)

    async def _catch_up_rows(self, params: dict[str, Any], start_block: int) -> list[dict[str, Any]]:
        """Ascending pages from `start_block` until one reaches a later block."""
        rows: list[dict[str, Any]] = []
        for page in range(1, MAX_CATCH_UP_PAGES + 1):
            params["page"] = page
            try:
                batch = await self._request(params)
            except NoDataError:
                break
            rows.extend(batch)
            if len(batch) < self._page_size:
                break
            if any(_block_of(raw) > start_block for raw in batch):
                break
        return rows

    async def _request(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        """GET the account endpoint and return the raw transaction rows."""
        name = self.chain.name
        await self._rate_limiter.acquire()
        try:
            resp = await self._client.get(
                self.chain.api_base,
                params={**params, "apikey": self._api_key},
            )
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError(f"{name} explorer timeout: {e}", service=self.service) from e
        except httpx.HTTPError as e:
            raise ConnectionFailedError(
                f"Cannot connect to {name} explorer: {e}", service=self.service
            ) from e

        if resp.status_code == 429:
            raise RateLimitError(f"{self.service} rate limit exceeded", service=self.service)
        if not resp.is_success:
            raise HTTPStatusError(
                f"{self.service} returned HTTP {resp.status_code}",
                service=self.service,
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"{self.service} returned a non-JSON body", service=self.service
            ) from e

        if isinstance(data, dict) and str(data.get("status", "")) == "0":
            self._raise_for_status_zero(data)

        rows = extract_transaction_list(data)
        if rows is None:
            raise MalformedResponseError(
                f"{self.service} response has no transaction list", service=self.service
            )
        if not rows:
            raise NoDataError(f"{self.service}: no transactions", service=self.service)
        return rows

    def _raise_for_status_zero(self, data: dict[str, Any]) -> None:
        """Classify a status=0 payload. Returns only if the result is a list."""
        msg = str(data.get("message", ""))
        result = data.get("result", "")

        if "Invalid API Key" in str(result) or "Missing/Invalid API Key" in msg:
            raise InvalidAPIKeyError(f"{self.service} API key is invalid", service=self.service)
        if "rate limit" in str(result).lower():
            raise RateLimitError(f"{self.service} rate limit exceeded", service=self.service)
        if msg == "No transactions found" or result == []:
            raise NoDataError(f"{self.service}: no transactions", service=self.service)
        if not isinstance(result, list):
            raise ExplorerAPIError(
                f"{self.service} error: {result or msg or 'unknown'}", service=self.service
            )

    def _parse_tx(self, raw: dict[str, Any], category: str) -> TransactionRecord | None:
        """Parse a native or token transfer row. Returns None for unusable rows."""
        try:
            tx_hash = self.chain.normalize_hash(str(raw.get("hash") or ""))
            if not tx_hash:
                return None
            # Skip failed transactions
            if category == NATIVE and str(raw.get("isError", "0")) == "1":
                return None

            if category == TOKEN:
                decimals = int(raw.get("tokenDecimal") or 18)
                symbol = str(raw.get("tokenSymbol") or "")
            else:
                decimals = self.chain.native_decimals
                symbol = self.chain.native_symbol

            return TransactionRecord(
                tx_hash=tx_hash,
                chain=self.chain.code,
                block_number=int(raw.get("blockNumber") or 0),
                timestamp=int(raw.get("timeStamp") or 0),
                from_addr=self.chain.normalize_address(str(raw.get("from") or "")),
                to_addr=self.chain.normalize_address(str(raw.get("to") or "")),
                amount=format_units(raw.get("value", "0"), decimals),
                token_symbol=symbol,
                explorer_url=self.chain.tx_url(tx_hash),
                category=category,
            )
        except (KeyError, ValueError, TypeError):
            return None


def _block_of(raw: dict[str, Any]) -> int:
    try:
        return int(raw.get("blockNumber") or 0)
    except (AttributeError, ValueError, TypeError):
        return 0
