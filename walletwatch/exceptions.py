"""
Custom exception hierarchy for walletwatch.

Each exception maps to a specific CLI exit code and JSON error_code field.
cli.py catches all WalletwatchError subclasses and formats them as JSON output.
The poll engine catches them per wallet and records them against the
explorer service that raised them.

Exit code mapping:
  1 — WalletwatchError (generic CLI error)
  2 — ExplorerError (explorer API error, rate limit, malformed payload)
  3 — TransportError (timeout, connection refused, non-2xx status)
  4 — DataError (invalid address, wallet not found)
  5 — ConfigError (missing/malformed config, missing or rejected API key)
  6 — DatabaseError (SQLite failure)
"""


class WalletwatchError(Exception):
    """Base exception for all walletwatch errors."""

    exit_code: int = 1
    error_code: str = "unknown_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(WalletwatchError):
    """Config file is missing, malformed, or lacks a required value."""

    exit_code = 5
    error_code = "config_error"


class ConfigInvalidError(ConfigError):
    """Config file exists but contains invalid TOML or invalid values."""

    error_code = "config_invalid"


class MissingAPIKeyError(ConfigError):
    """No API key configured for the explorer a wallet's chain needs."""

    error_code = "missing_api_key"

    def __init__(self, message: str, service: str = "") -> None:
        super().__init__(message, details={"service": service})
        self.service = service


class InvalidAPIKeyError(ConfigError):
    """Explorer rejected the configured API key."""

    error_code = "invalid_api_key"

    def __init__(self, message: str, service: str = "") -> None:
        super().__init__(message, details={"service": service})
        self.service = service


class ExplorerError(WalletwatchError):
    """A block-explorer call failed."""

    exit_code = 2
    error_code = "explorer_error"

    def __init__(self, message: str, service: str = "", details: dict | None = None) -> None:
        merged = {"service": service}
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.service = service


class TransportError(ExplorerError):
    """Network-level failure talking to an explorer."""

    exit_code = 3
    error_code = "transport_error"


class NetworkTimeoutError(TransportError):
    """Request timed out."""

    error_code = "network_timeout"


class ConnectionFailedError(TransportError):
    """Could not connect to API endpoint."""

    error_code = "connection_failed"


class HTTPStatusError(TransportError):
    """Explorer answered with a non-2xx HTTP status."""

    error_code = "http_status"

    def __init__(self, message: str, service: str = "", status_code: int = 0) -> None:
        super().__init__(message, service=service, details={"status_code": status_code})
        self.status_code = status_code


class MalformedResponseError(ExplorerError):
    """Explorer returned a body that is not JSON or has no transaction list."""

    error_code = "malformed_response"


class ExplorerAPIError(ExplorerError):
    """Explorer payload carried an explicit error code or message."""

    error_code = "api_error"


class RateLimitError(ExplorerAPIError):
    """API rate limit exceeded."""

    error_code = "rate_limited"

    def __init__(self, message: str, service: str = "", retry_after: int = 60) -> None:
        super().__init__(message, service=service, details={"retry_after_seconds": retry_after})
        self.retry_after = retry_after


class NoDataError(ExplorerError):
    """Explorer explicitly reported no transactions. Not a failure."""

    error_code = "no_transactions"


class DataError(WalletwatchError):
    """Data validation or not-found error."""

    exit_code = 4
    error_code = "data_error"


class InvalidAddressError(DataError):
    """Address is empty or its format is invalid for the given chain."""

    error_code = "invalid_address"


class UnsupportedChainError(DataError):
    """Chain identifier is not one walletwatch can poll."""

    error_code = "unsupported_chain"


class WalletNotFoundError(DataError):
    """Wallet address is not in the tracked wallet list."""

    error_code = "wallet_not_found"


class WalletExistsError(DataError):
    """Wallet is already in the tracked list (on wallet add)."""

    error_code = "wallet_exists"


class DatabaseError(WalletwatchError):
    """SQLite operation failed."""

    exit_code = 6
    error_code = "db_error"


class LockLostError(DatabaseError):
    """Poll lease expired or was taken over by another process mid-cycle."""

    error_code = "lock_lost"
