"""walletwatch — multi-chain wallet transaction watcher with webhook alerts."""

__version__ = "0.1.0"
