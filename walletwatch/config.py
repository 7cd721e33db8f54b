"""
Config loading for walletwatch.

Sources (in precedence order, highest first):
  1. Environment variables (WALLETWATCH_*)
  2. ~/.walletwatch/config.toml
  3. Built-in defaults

The file is read and written as a whole unit. Defaults are merged in on every
read so fields added in later versions are backfilled without touching the
values already stored.

Usage:
    from walletwatch.config import load_config
    config = load_config()
    print(config.api.etherscan_api_key)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import toml

from walletwatch.exceptions import ConfigInvalidError

# Default config directory and file
DEFAULT_CONFIG_DIR = Path.home() / ".walletwatch"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"

DEFAULT_MESSAGE_TEMPLATE = (
    "New {chain} transaction for {label}: {direction} {amount} {token}. Hash: {hash}"
)

# Allowed poll cadence, seconds
MIN_POLL_INTERVAL = 60
MAX_POLL_INTERVAL = 3600

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}

# Environment variable → config key mapping
# Format: (env_var_name, dotted_config_path, type_converter)
_ENV_OVERRIDES: list[tuple[str, str, type]] = [
    ("WALLETWATCH_ETHERSCAN_API_KEY", "api.etherscan_api_key", str),
    ("WALLETWATCH_BSCSCAN_API_KEY", "api.bscscan_api_key", str),
    ("WALLETWATCH_SOLSCAN_API_KEY", "api.solscan_api_key", str),
    ("WALLETWATCH_WEBHOOK_URL", "alert.webhook_url", str),
    ("WALLETWATCH_POLL_INTERVAL", "poll.interval_seconds", int),
    ("WALLETWATCH_DB_PATH", "database.path", str),
    ("WALLETWATCH_LOG_LEVEL", "logging.level", str),
    ("WALLETWATCH_LOG_FILE", "logging.file", str),
]


@dataclass
class APIConfig:
    """Explorer API keys and request settings."""

    etherscan_api_key: str = ""
    bscscan_api_key: str = ""
    solscan_api_key: str = ""
    timeout_seconds: float = 20.0
    page_size: int = 100

    def key_for(self, service: str) -> str:
        return getattr(self, f"{service}_api_key", "")


@dataclass
class AlertConfig:
    """Webhook delivery configuration."""

    webhook_url: str = ""
    default_message_template: str = DEFAULT_MESSAGE_TEMPLATE
    timeout_seconds: float = 10.0


@dataclass
class PollConfig:
    """Poll cadence and cycle locking."""

    interval_seconds: int = 300
    lock_ttl_seconds: int = 60


@dataclass
class DatabaseConfig:
    """SQLite state store configuration."""

    path: str = str(DEFAULT_CONFIG_DIR / "walletwatch.db")
    log_cap: int = 200


@dataclass
class LoggingConfig:
    """structlog output configuration."""

    level: str = "INFO"
    file: str = ""


@dataclass
class WalletwatchConfig:
    """Full configuration object. Passed via Click context to all commands."""

    api: APIConfig = field(default_factory=APIConfig)
    alert: AlertConfig = field(default_factory=AlertConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def clamp_interval(seconds: int) -> int:
    """Clamp a poll interval into [MIN_POLL_INTERVAL, MAX_POLL_INTERVAL]."""
    return max(MIN_POLL_INTERVAL, min(MAX_POLL_INTERVAL, int(seconds)))


def load_config(path: str | None = None) -> WalletwatchConfig:
    """
    Load configuration from TOML file + environment variable overrides.

    Args:
        path: Override config file path. If None, uses WALLETWATCH_CONFIG_PATH
              env var or default (~/.walletwatch/config.toml).

    Returns:
        WalletwatchConfig with all values resolved. A missing file yields the
        built-in defaults.

    Raises:
        ConfigInvalidError: Config file exists but is invalid TOML or values.
    """
    config = load_file_config(path)
    _apply_env_overrides(config)
    validate_config(config)
    return config


def load_file_config(path: str | None = None) -> WalletwatchConfig:
    """
    Load only what is stored on disk, without environment overrides.

    This is the base `config set` edits, so values supplied through
    WALLETWATCH_* variables are never written back to the file.
    """
    config_path = _resolve_config_path(path)

    raw: dict = {}
    if config_path.exists():
        try:
            raw = toml.load(str(config_path))
        except toml.TomlDecodeError as e:
            raise ConfigInvalidError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        config = _dict_to_config(raw)
    except (ValueError, TypeError, AttributeError) as e:
        raise ConfigInvalidError(f"Invalid value in {config_path}: {e}") from e
    validate_config(config)

    return config


def validate_config(config: WalletwatchConfig) -> None:
    """Validate and normalise config values. Raises ConfigInvalidError on invalid values."""
    config.poll.interval_seconds = clamp_interval(config.poll.interval_seconds)

    config.logging.level = config.logging.level.upper()
    if config.logging.level not in VALID_LOG_LEVELS:
        raise ConfigInvalidError(
            f"logging.level must be one of {sorted(VALID_LOG_LEVELS)}, "
            f"got {config.logging.level!r}"
        )
    if config.poll.lock_ttl_seconds <= 0:
        raise ConfigInvalidError(
            f"poll.lock_ttl_seconds must be positive, got {config.poll.lock_ttl_seconds}"
        )
    if config.database.log_cap <= 0:
        raise ConfigInvalidError(
            f"database.log_cap must be positive, got {config.database.log_cap}"
        )
    if not 1 <= config.api.page_size <= 10_000:
        raise ConfigInvalidError(
            f"api.page_size must be 1–10000, got {config.api.page_size}"
        )


def save_config(config: WalletwatchConfig, path: str | None = None) -> Path:
    """
    Serialize WalletwatchConfig to TOML and write to disk.

    Returns the path where config was written.
    """
    config_path = _resolve_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "api": {
            "etherscan_api_key": config.api.etherscan_api_key,
            "bscscan_api_key": config.api.bscscan_api_key,
            "solscan_api_key": config.api.solscan_api_key,
            "timeout_seconds": config.api.timeout_seconds,
            "page_size": config.api.page_size,
        },
        "alert": {
            "webhook_url": config.alert.webhook_url,
            "default_message_template": config.alert.default_message_template,
            "timeout_seconds": config.alert.timeout_seconds,
        },
        "poll": {
            "interval_seconds": clamp_interval(config.poll.interval_seconds),
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

    with open(config_path, "w") as f:
        toml.dump(data, f)

    return config_path


def fallback_config() -> WalletwatchConfig:
    """
    Defaults used when the config file cannot be loaded.

    Environment overrides still apply so WALLETWATCH_DB_PATH and API keys are
    honoured; if they are invalid too, the bare defaults are returned.
    """
    config = WalletwatchConfig()
    try:
        _apply_env_overrides(config)
        validate_config(config)
    except ConfigInvalidError:
        return WalletwatchConfig()
    return config


def get_default_config_path() -> Path:
    """Return the default config file path."""
    return DEFAULT_CONFIG_PATH


# ──────────────────────────────────────────────────────────────
# Private helpers
# ──────────────────────────────────────────────────────────────


def _resolve_config_path(path: str | None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get("WALLETWATCH_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def _dict_to_config(raw: dict) -> WalletwatchConfig:
    """Build WalletwatchConfig from raw TOML dict, applying defaults for missing keys."""
    config = WalletwatchConfig()
    defaults = WalletwatchConfig()

    api = raw.get("api", {})
    config.api.etherscan_api_key = str(api.get("etherscan_api_key", ""))
    config.api.bscscan_api_key = str(api.get("bscscan_api_key", ""))
    config.api.solscan_api_key = str(api.get("solscan_api_key", ""))
    config.api.timeout_seconds = float(api.get("timeout_seconds", defaults.api.timeout_seconds))
    config.api.page_size = int(api.get("page_size", defaults.api.page_size))

    alert = raw.get("alert", {})
    config.alert.webhook_url = str(alert.get("webhook_url", ""))
    config.alert.default_message_template = str(
        alert.get("default_message_template", DEFAULT_MESSAGE_TEMPLATE)
    )
    config.alert.timeout_seconds = float(
        alert.get("timeout_seconds", defaults.alert.timeout_seconds)
    )

    poll = raw.get("poll", {})
    config.poll.interval_seconds = int(poll.get("interval_seconds", defaults.poll.interval_seconds))
    config.poll.lock_ttl_seconds = int(poll.get("lock_ttl_seconds", defaults.poll.lock_ttl_seconds))

    db = raw.get("database", {})
    config.database.path = str(db.get("path", defaults.database.path))
    config.database.log_cap = int(db.get("log_cap", defaults.database.log_cap))

    logging_section = raw.get("logging", {})
    config.logging.level = str(logging_section.get("level", "INFO"))
    config.logging.file = str(logging_section.get("file", ""))

    return config


def _apply_env_overrides(config: WalletwatchConfig) -> None:
    """Apply environment variable overrides to a loaded config."""
    for env_var, dotted_key, converter in _ENV_OVERRIDES:
        val = os.environ.get(env_var)
        if val is None:
            continue
        section, key = dotted_key.split(".", 1)
        section_obj = getattr(config, section)
        try:
            setattr(section_obj, key, converter(val))
        except (ValueError, TypeError) as e:
            raise ConfigInvalidError(
                f"Invalid value for {env_var}={val!r}: {e}"
            ) from e
