"""
config.py - Position Reconciliation Configuration

Central configuration for the reconciliation job:
- Ledger and RPC locations
- Chain read concurrency, timeouts and retries
- Run deadline and failure policy
- Logging

Environment variables override defaults (a .env file next to this module
is loaded first and never overrides the shell):
- DATABASE_URL / RECON_DATABASE_URL, RPC_URL / RECON_RPC_URL
- RECON_MAX_CONCURRENCY, RECON_FETCH_TIMEOUT, RECON_FETCH_RETRIES
- RECON_DEADLINE, RECON_BLOCK_TAG, RECON_FAIL_FAST
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import httpx
from dotenv import load_dotenv

from core.exceptions import ConfigurationError

load_dotenv(Path(__file__).parent / ".env", override=False)

_config_logger = logging.getLogger(__name__)

NAMED_BLOCK_TAGS = ("latest", "safe", "finalized", "pending", "earliest")


def _env(*names: str, default: Optional[str] = None) -> Optional[str]:
    """First non-empty value among the given env vars."""
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip() != "":
            return value.strip()
    return default


class ReconConfig:
    """
    Defaults for the reconciliation job, read from the environment.

    Values are read at call time through env() so tests and the CLI see
    the current environment.
    """

    SYSTEM_NAME: str = "Position Reconciliation"
    VERSION: str = "1.0.0"

    # ═══════════════════════════════════════════════════════════════
    # LOCATORS (required, no defaults)
    # ═══════════════════════════════════════════════════════════════
    DATABASE_URL_VARS = ("RECON_DATABASE_URL", "DATABASE_URL")
    RPC_URL_VARS = ("RECON_RPC_URL", "RPC_URL")

    # ═══════════════════════════════════════════════════════════════
    # LEDGER
    # ═══════════════════════════════════════════════════════════════
    TRADE_TABLE: str = "IndexedTrade"

    # ═══════════════════════════════════════════════════════════════
    # CHAIN READS
    # ═══════════════════════════════════════════════════════════════
    MAX_CONCURRENCY: int = 8          # Positions read from chain at once
    FETCH_TIMEOUT: float = 10.0       # Seconds per attempt
    FETCH_RETRIES: int = 3            # Extra attempts after a failure
    RETRY_DELAY: float = 0.5          # First backoff (seconds)
    RETRY_BACKOFF: float = 2.0        # Backoff multiplier
    BLOCK_TAG: str = "latest"

    # ═══════════════════════════════════════════════════════════════
    # RUN POLICY
    # ═══════════════════════════════════════════════════════════════
    DEADLINE: float = 0.0             # Seconds; 0 disables
    FAIL_FAST: bool = False           # Abort on first exhausted chain read

    # ═══════════════════════════════════════════════════════════════
    # LOGGING
    # ═══════════════════════════════════════════════════════════════
    LOG_LEVEL: str = "INFO"
    DEBUG_LOG: Optional[str] = None

    @classmethod
    def env(cls) -> Dict[str, Optional[str]]:
        """Raw environment values, keyed by setting name."""
        return {
            "database_url": _env(*cls.DATABASE_URL_VARS),
            "rpc_url": _env(*cls.RPC_URL_VARS),
            "trade_table": _env("RECON_TRADE_TABLE"),
            "max_concurrency": _env("RECON_MAX_CONCURRENCY"),
            "fetch_timeout": _env("RECON_FETCH_TIMEOUT"),
            "fetch_retries": _env("RECON_FETCH_RETRIES"),
            "retry_delay": _env("RECON_RETRY_DELAY"),
            "retry_backoff": _env("RECON_RETRY_BACKOFF"),
            "block_tag": _env("RECON_BLOCK_TAG"),
            "deadline": _env("RECON_DEADLINE"),
            "fail_fast": _env("RECON_FAIL_FAST"),
            "log_level": _env("RECON_LOG_LEVEL"),
            "debug_log": _env("RECON_DEBUG_LOG"),
        }


@dataclass(frozen=True)
class ReconSettings:
    """Validated settings for one run."""
    database_url: str
    rpc_url: Optional[str]
    trade_table: str = ReconConfig.TRADE_TABLE
    max_concurrency: int = ReconConfig.MAX_CONCURRENCY
    fetch_timeout: float = ReconConfig.FETCH_TIMEOUT
    fetch_retries: int = ReconConfig.FETCH_RETRIES
    retry_delay: float = ReconConfig.RETRY_DELAY
    retry_backoff: float = ReconConfig.RETRY_BACKOFF
    block_tag: Union[str, int] = ReconConfig.BLOCK_TAG
    deadline: float = ReconConfig.DEADLINE
    fail_fast: bool = ReconConfig.FAIL_FAST
    log_level: str = ReconConfig.LOG_LEVEL
    debug_log: Optional[str] = ReconConfig.DEBUG_LOG

    def reconciler_options(self) -> Dict[str, Any]:
        """Keyword arguments for PositionReconciler."""
        return {
            "max_concurrent": self.max_concurrency,
            "fetch_timeout": self.fetch_timeout,
            "max_retries": self.fetch_retries,
            "retry_delay": self.retry_delay,
            "retry_backoff": self.retry_backoff,
            "fail_fast": self.fail_fast,
        }

    def redacted(self) -> Dict[str, Any]:
        """Settings safe to log (credentials stripped from locators)."""
        return {
            "database": self.database_url.split("@")[-1],
            "rpc": (self.rpc_url or "").split("@")[-1],
            "max_concurrency": self.max_concurrency,
            "fetch_timeout": self.fetch_timeout,
            "fetch_retries": self.fetch_retries,
            "block_tag": self.block_tag,
            "deadline": self.deadline,
            "fail_fast": self.fail_fast,
        }


def _convert(key: str, value: Any, cast: Callable, check: Callable[[Any], bool], rule: str):
    try:
        converted = cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be {rule}", config_key=key, actual_value=value, cause=e)
    if not check(converted):
        raise ConfigurationError(f"{key} must be {rule}", config_key=key, actual_value=value)
    return converted


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(value)


def validate_rpc_url(value: Any) -> str:
    """An http(s) endpoint with a host; anything else is a configuration error."""
    rule = "RPC_URL must be an http(s) URL with a host"
    try:
        text = str(value).strip()
        url = httpx.URL(text)
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise ConfigurationError(rule, config_key="rpc_url", actual_value=value, cause=e)
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(rule, config_key="rpc_url", actual_value=value)
    return text


def parse_block_tag(value: Any) -> Union[str, int]:
    """A named tag, or a non-negative block number (decimal or 0x-hex)."""
    if isinstance(value, bool):
        raise ConfigurationError("block_tag must be a named tag or block number",
                                 config_key="block_tag", actual_value=value)
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip().lower()
        if text in NAMED_BLOCK_TAGS:
            return text
        try:
            number = int(text, 16) if text.startswith("0x") else int(text)
        except ValueError as e:
            raise ConfigurationError(
                f"block_tag must be one of {', '.join(NAMED_BLOCK_TAGS)} or a block number",
                config_key="block_tag", actual_value=value, cause=e
            )
    if number < 0:
        raise ConfigurationError("block_tag block number must be >= 0",
                                 config_key="block_tag", actual_value=value)
    return number


def load_settings(require_rpc: bool = True, **overrides: Any) -> ReconSettings:
    """
    Merge overrides (None = unset) over the environment and validate.

    Args:
        require_rpc: Whether a missing RPC locator is fatal
        **overrides: ReconSettings fields, e.g. from CLI options

    Raises:
        ConfigurationError: missing locator or invalid value
    """
    unknown = set(overrides) - set(ReconSettings.__dataclass_fields__)
    if unknown:
        raise ConfigurationError(f"Unknown settings: {', '.join(sorted(unknown))}")

    raw = ReconConfig.env()
    for key, value in overrides.items():
        if value is not None:
            raw[key] = value

    if not raw.get("database_url"):
        raise ConfigurationError(
            "DATABASE_URL is required (ledger data source)", config_key="DATABASE_URL"
        )
    if require_rpc and not raw.get("rpc_url"):
        raise ConfigurationError(
            "RPC_URL is required (chain RPC endpoint)", config_key="RPC_URL"
        )

    def pick(key: str, default: Any) -> Any:
        value = raw.get(key)
        return default if value is None else value

    settings = ReconSettings(
        database_url=str(raw["database_url"]),
        rpc_url=validate_rpc_url(raw["rpc_url"]) if raw.get("rpc_url") else None,
        trade_table=str(pick("trade_table", ReconConfig.TRADE_TABLE)),
        max_concurrency=_convert("max_concurrency", pick("max_concurrency", ReconConfig.MAX_CONCURRENCY),
                                 int, lambda v: v >= 1, "an integer >= 1"),
        fetch_timeout=_convert("fetch_timeout", pick("fetch_timeout", ReconConfig.FETCH_TIMEOUT),
                               float, lambda v: v > 0, "a number > 0"),
        fetch_retries=_convert("fetch_retries", pick("fetch_retries", ReconConfig.FETCH_RETRIES),
                               int, lambda v: v >= 0, "an integer >= 0"),
        retry_delay=_convert("retry_delay", pick("retry_delay", ReconConfig.RETRY_DELAY),
                             float, lambda v: v >= 0, "a number >= 0"),
        retry_backoff=_convert("retry_backoff", pick("retry_backoff", ReconConfig.RETRY_BACKOFF),
                               float, lambda v: v >= 1, "a number >= 1"),
        block_tag=parse_block_tag(pick("block_tag", ReconConfig.BLOCK_TAG)),
        deadline=_convert("deadline", pick("deadline", ReconConfig.DEADLINE),
                          float, lambda v: v >= 0, "a number >= 0"),
        fail_fast=_convert("fail_fast", pick("fail_fast", ReconConfig.FAIL_FAST),
                           _to_bool, lambda v: True, "a boolean"),
        log_level=str(pick("log_level", ReconConfig.LOG_LEVEL)).upper(),
        debug_log=pick("debug_log", ReconConfig.DEBUG_LOG),
    )

    if settings.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigurationError("log_level must be a logging level name",
                                 config_key="log_level", actual_value=settings.log_level)

    _config_logger.debug(f"Settings loaded: {settings.redacted()}")
    return settings
