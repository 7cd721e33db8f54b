"""Base explorer-client protocol, rate limiter and response-shape extraction."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Protocol, runtime_checkable

from walletwatch.chains import NATIVE
from walletwatch.models import TransactionRecord

# Rate limit: 5 calls per second (Etherscan free tier)
RATE_LIMIT_CALLS = 5
RATE_LIMIT_PERIOD = 1.0  # seconds


@runtime_checkable
class ExplorerClient(Protocol):
    """
    Protocol that all explorer clients must implement.

    Clients are responsible for:
    - Making API calls to a block-explorer service
    - Rate limiting
    - Recognising the response shapes the service produces
    - Normalising rows into TransactionRecord format
    - Classifying failures into typed exceptions

    Clients are NOT responsible for:
    - Deciding which transactions are new (that's engine.py)
    - Alerting (that's alert.py)
    - Persistence (that's db.py)
    """

    async def fetch_transactions(
        self,
        address: str,
        category: str = NATIVE,
        start_block: int = 0,
    ) -> list[TransactionRecord]:
        """
        Fetch transactions for `address` in one category.

        With start_block == 0 the newest page is returned; otherwise the page
        starting just below start_block. Either way the result is sorted by
        block number ascending. Returns an empty list when the explorer
        reports no transactions (not an error).

        Raises:
            InvalidAddressError: Address is malformed for this chain
            InvalidAPIKeyError: API key rejected by the explorer
            RateLimitError: Explorer rate limit hit
            TransportError: Timeout, connection failure, non-2xx status
            MalformedResponseError: Body is not JSON or holds no transaction list
            ExplorerAPIError: Payload carried an explicit error
        """
        ...

    async def fetch_latest(self, address: str) -> TransactionRecord | None:
        """Return the single most recent native transaction, or None."""
        ...

    def validate_address(self, address: str) -> bool:
        """
        Validate that an address is well-formed for this chain.

        Does NOT make any network calls.
        """
        ...

    async def close(self) -> None:
        ...


class TokenBucket:
    """Simple token bucket rate limiter."""

    def __init__(self, calls: int = RATE_LIMIT_CALLS, period: float = RATE_LIMIT_PERIOD) -> None:
        self._calls = calls
        self._period = period
        self._tokens: float = float(calls)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_refill
            # Refill tokens proportional to elapsed time
            refill = (elapsed / self._period) * self._calls
            self._tokens = min(self._calls, self._tokens + refill)
            self._last_refill = now

            if self._tokens < 1:
                wait = (1 - self._tokens) * (self._period / self._calls)
                await asyncio.sleep(wait)
                self._tokens = 0
            else:
                self._tokens -= 1


# ──────────────────────────────────────────────────────────────
# Response-shape extraction
# ──────────────────────────────────────────────────────────────


def _nested(payload: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(payload, dict):
            return None
        payload = payload.get(key)
    return payload


# Tried in order; the first one that yields a list wins.
#   1. bare list
#   2. legacy Etherscan {status, message, result: [...]}
#   3. Solscan v2 {success, data: [...]}
#   4. wrapped {data: {transactions|items: [...]}}
#   5. flat {transactions|items: [...]}
EXTRACTION_STRATEGIES: list[tuple[str, Callable[[Any], Any]]] = [
    ("list", lambda p: p),
    ("result", lambda p: _nested(p, "result")),
    ("data", lambda p: _nested(p, "data")),
    ("data.transactions", lambda p: _nested(p, "data", "transactions")),
    ("data.items", lambda p: _nested(p, "data", "items")),
    ("transactions", lambda p: _nested(p, "transactions")),
    ("items", lambda p: _nested(p, "items")),
]


def extract_transaction_list(payload: Any) -> list[dict[str, Any]] | None:
    """
    Find the transaction array in an explorer payload.

    Returns the list of dict rows (non-dict entries dropped), or None when no
    strategy applies.
    """
    for _name, strategy in EXTRACTION_STRATEGIES:
        found = strategy(payload)
        if isinstance(found, list):
            return [row for row in found if isinstance(row, dict)]
    return None


def sort_ascending(records: list[TransactionRecord]) -> list[TransactionRecord]:
    """Order records oldest first (block, then timestamp). Stable for ties."""
    return sorted(records, key=lambda r: (r.block_number, r.timestamp))
