"""
Explorer-client layer for walletwatch.

Provides a factory function `get_fetcher()` that returns the explorer client
for a chain. All clients implement ExplorerClient.

Usage:
    from walletwatch.fetchers import get_fetcher
    fetcher = get_fetcher("ETH", config)
    txns = await fetcher.fetch_transactions(address, "native", start_block=0)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from walletwatch.chains import get_chain
from walletwatch.exceptions import MissingAPIKeyError
from walletwatch.fetchers.base import ExplorerClient

if TYPE_CHECKING:
    from walletwatch.config import WalletwatchConfig

# Services that refuse requests without a key. Solscan's public API does not.
KEY_REQUIRED_SERVICES = {"etherscan", "bscscan"}


def get_fetcher(chain: str, config: WalletwatchConfig) -> ExplorerClient:
    """
    Factory: return the configured explorer client for `chain`.

    Raises:
        UnsupportedChainError: Unknown chain identifier
        MissingAPIKeyError: The chain's explorer needs a key and none is set
    """
    spec = get_chain(chain)
    api_key = config.api.key_for(spec.service)

    if spec.service in KEY_REQUIRED_SERVICES and not api_key:
        raise MissingAPIKeyError(
            f"No {spec.service} API key configured for {spec.code} wallets",
            service=spec.service,
        )

    if spec.code == "SOL":
        from walletwatch.fetchers.solscan import SolscanClient

        return SolscanClient(
            spec,
            api_key=api_key,
            timeout=config.api.timeout_seconds,
            page_size=config.api.page_size,
        )

    from walletwatch.fetchers.etherscan import EtherscanClient

    return EtherscanClient(
        spec,
        api_key=api_key,
        timeout=config.api.timeout_seconds,
        page_size=config.api.page_size,
    )
