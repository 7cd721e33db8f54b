"""Per-chain constants: explorer service, endpoints, units, address format."""

from __future__ import annotations

import re
from dataclasses import dataclass

from walletwatch.exceptions import InvalidAddressError, UnsupportedChainError

# Transaction categories with independent watermarks
NATIVE = "native"
TOKEN = "token"

EVM_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
SOL_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


@dataclass(frozen=True)
class ChainSpec:
    """Static description of one supported chain."""

    code: str                   # "ETH" | "BSC" | "SOL"
    name: str
    service: str                # explorer service slot, also the API key name
    api_base: str
    native_symbol: str
    native_decimals: int
    tx_url_template: str
    categories: tuple[str, ...]
    case_sensitive: bool = False

    def tx_url(self, tx_hash: str) -> str:
        return self.tx_url_template.format(hash=tx_hash)

    def normalize_address(self, address: str) -> str:
        address = (address or "").strip()
        return address if self.case_sensitive else address.lower()

    def normalize_hash(self, tx_hash: str) -> str:
        tx_hash = (tx_hash or "").strip()
        return tx_hash if self.case_sensitive else tx_hash.lower()

    def is_valid_address(self, address: str) -> bool:
        pattern = SOL_ADDRESS_RE if self.case_sensitive else EVM_ADDRESS_RE
        return bool(pattern.match(self.normalize_address(address)))


CHAINS: dict[str, ChainSpec] = {
    "ETH": ChainSpec(
        code="ETH",
        name="Ethereum",
        service="etherscan",
        api_base="https://api.etherscan.io/api",
        native_symbol="ETH",
        native_decimals=18,
        tx_url_template="https://etherscan.io/tx/{hash}",
        categories=(NATIVE, TOKEN),
    ),
    "BSC": ChainSpec(
        code="BSC",
        name="BNB Smart Chain",
        service="bscscan",
        api_base="https://api.bscscan.com/api",
        native_symbol="BNB",
        native_decimals=18,
        tx_url_template="https://bscscan.com/tx/{hash}",
        categories=(NATIVE, TOKEN),
    ),
    "SOL": ChainSpec(
        code="SOL",
        name="Solana",
        service="solscan",
        api_base="https://public-api.solscan.io",
        native_symbol="SOL",
        native_decimals=9,
        tx_url_template="https://solscan.io/tx/{hash}",
        categories=(NATIVE,),
        case_sensitive=True,
    ),
}

SUPPORTED_CHAINS = tuple(CHAINS)


def get_chain(chain: str) -> ChainSpec:
    """Look up a chain by code (case-insensitive)."""
    spec = CHAINS.get((chain or "").strip().upper())
    if spec is None:
        raise UnsupportedChainError(
            f"Unsupported chain: {chain!r}. Supported: {list(SUPPORTED_CHAINS)}",
            details={"chain": chain},
        )
    return spec


def normalize_address(chain: str, address: str) -> str:
    """
    Normalise and validate an address for storage or comparison.

    Raises InvalidAddressError for empty or malformed addresses and
    UnsupportedChainError for unknown chains.
    """
    spec = get_chain(chain)
    if not (address or "").strip():
        raise InvalidAddressError("Address must not be empty", details={"chain": spec.code})
    normalized = spec.normalize_address(address)
    if not spec.is_valid_address(normalized):
        raise InvalidAddressError(
            f"Invalid {spec.code} address: {address!r}",
            details={"address": address, "chain": spec.code},
        )
    return normalized


def services_for_chains(chains: set[str] | list[str]) -> set[str]:
    """Explorer service slots used by the given chain codes."""
    return {CHAINS[c].service for c in chains if c in CHAINS}
