"""
core/exceptions.py - Reconciliation Exceptions

Exception hierarchy for the position reconciliation run.

Features:
- Error codes for programmatic handling
- Rich error context
- Serializable for logging and JSON reports
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(Enum):
    """Standard error codes for reconciliation runs."""
    # Chain errors (1xx)
    CHAIN_READ_FAILED = "E101"
    RUN_CANCELLED = "E102"

    # Ledger errors (3xx)
    LEDGER_UNAVAILABLE = "E301"
    TRADE_INVALID = "E303"

    # System errors (5xx)
    CONFIGURATION_ERROR = "E503"
    INTERNAL_ERROR = "E504"


@dataclass
class ErrorContext:
    """Rich context for errors."""
    error_code: ErrorCode
    timestamp: datetime = field(default_factory=datetime.now)
    market_address: Optional[str] = None
    wallet_address: Optional[str] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error_code': self.error_code.value,
            'timestamp': self.timestamp.isoformat(),
            'market_address': self.market_address,
            'wallet_address': self.wallet_address,
            **self.additional_data
        }


class ReconciliationError(Exception):
    """Base exception for all reconciliation errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or ErrorContext(error_code=error_code)
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'error_code': self.error_code.value,
            'context': self.context.to_dict() if self.context else None
        }


# ============================================================================
# Fatal Errors
# ============================================================================

class ConfigurationError(ReconciliationError):
    """Required configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        config_key: str = "",
        actual_value: Any = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            message,
            ErrorCode.CONFIGURATION_ERROR,
            ErrorContext(
                error_code=ErrorCode.CONFIGURATION_ERROR,
                additional_data={
                    'config_key': config_key,
                    'actual_value': None if actual_value is None else str(actual_value)
                }
            ),
            cause
        )
        self.config_key = config_key


class LedgerReadError(ReconciliationError):
    """The trade ledger could not be enumerated."""

    def __init__(
        self,
        message: str = "Failed to read trade ledger",
        source: str = "",
        cause: Optional[Exception] = None
    ):
        super().__init__(
            message,
            ErrorCode.LEDGER_UNAVAILABLE,
            ErrorContext(
                error_code=ErrorCode.LEDGER_UNAVAILABLE,
                additional_data={'source': source}
            ),
            cause
        )
        self.source = source


class MalformedTradeError(ReconciliationError):
    """A ledger row failed validation and cannot be aggregated."""

    def __init__(
        self,
        field: str,
        value: Any,
        reason: str,
        insertion_id: Any = None,
        cause: Optional[Exception] = None
    ):
        where = f" (trade id={insertion_id})" if insertion_id is not None else ""
        super().__init__(
            f"Malformed trade{where}: {field}={value!r} {reason}",
            ErrorCode.TRADE_INVALID,
            ErrorContext(
                error_code=ErrorCode.TRADE_INVALID,
                additional_data={
                    'field': field,
                    'value': str(value),
                    'reason': reason,
                    'insertion_id': None if insertion_id is None else str(insertion_id)
                }
            ),
            cause
        )
        self.field = field
        self.value = value
        self.reason = reason
        self.insertion_id = insertion_id


# ============================================================================
# Recoverable / Run Errors
# ============================================================================

class ChainReadError(ReconciliationError):
    """On-chain read failed (RPC, transport or decoding)."""

    def __init__(
        self,
        message: str,
        market_address: str = "",
        wallet_address: str = "",
        attempts: int = 1,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            message,
            ErrorCode.CHAIN_READ_FAILED,
            ErrorContext(
                error_code=ErrorCode.CHAIN_READ_FAILED,
                market_address=market_address or None,
                wallet_address=wallet_address or None,
                additional_data={'attempts': attempts}
            ),
            cause
        )
        self.market_address = market_address
        self.wallet_address = wallet_address
        self.attempts = attempts


class ReconciliationCancelledError(ReconciliationError):
    """Run was cancelled or exceeded its deadline before a report existed."""

    def __init__(
        self,
        reason: str = "cancelled",
        deadline_seconds: Optional[float] = None,
        cause: Optional[Exception] = None
    ):
        message = f"Reconciliation aborted: {reason}"
        if deadline_seconds:
            message += f" (deadline {deadline_seconds}s)"
        super().__init__(
            message,
            ErrorCode.RUN_CANCELLED,
            ErrorContext(
                error_code=ErrorCode.RUN_CANCELLED,
                additional_data={'reason': reason, 'deadline_seconds': deadline_seconds}
            ),
            cause
        )
        self.reason = reason
        self.deadline_seconds = deadline_seconds
