"""Pytest fixtures shared across all walletwatch tests."""

from __future__ import annotations

import logging

import pytest
import pytest_asyncio
import structlog

from walletwatch.config import (
    AlertConfig,
    APIConfig,
    DatabaseConfig,
    PollConfig,
    WalletwatchConfig,
)
from walletwatch.db import Database


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's WALLETWATCH_* environment out of tests."""
    for name in (
        "WALLETWATCH_CONFIG_PATH",
        "WALLETWATCH_ETHERSCAN_API_KEY",
        "WALLETWATCH_BSCSCAN_API_KEY",
        "WALLETWATCH_SOLSCAN_API_KEY",
        "WALLETWATCH_WEBHOOK_URL",
        "WALLETWATCH_POLL_INTERVAL",
        "WALLETWATCH_DB_PATH",
        "WALLETWATCH_LOG_LEVEL",
        "WALLETWATCH_LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging() calls made by CLI tests."""
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


# ── Config fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def sample_config() -> WalletwatchConfig:
    """Minimal valid WalletwatchConfig for tests."""
    return WalletwatchConfig(
        api=APIConfig(
            etherscan_api_key="test_etherscan_key_12345",
            bscscan_api_key="test_bscscan_key_12345",
            solscan_api_key="",
        ),
        alert=AlertConfig(webhook_url=""),
        poll=PollConfig(interval_seconds=300, lock_ttl_seconds=60),
        database=DatabaseConfig(path=":memory:", log_cap=200),
    )


@pytest.fixture
def sample_config_with_webhook(sample_config: WalletwatchConfig) -> WalletwatchConfig:
    """Config with a webhook URL set."""
    sample_config.alert.webhook_url = "https://hooks.example.com/wallet"
    return sample_config


# ── DB fixtures ───────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db() -> Database:
    """Fresh in-memory database for each test."""
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()


# ── Addresses ─────────────────────────────────────────────────────────────────


ETH_ADDR_1 = "0xd8da6bf26964af9d7eed9e03e53415d37aa96045"
ETH_ADDR_2 = "0x28c6c06298d514db089934071355e5743bf21d60"
SOL_ADDR = "vines1vzrYbzLMRdu58ou5XTby4qAqVRLmqo36NKPTg"


@pytest.fixture
def eth_addr() -> str:
    return ETH_ADDR_1


@pytest.fixture
def eth_addr_2() -> str:
    return ETH_ADDR_2


@pytest.fixture
def sol_addr() -> str:
    return SOL_ADDR
