"""
core - Core infrastructure for the reconciliation job

Modules:
- exceptions: Error hierarchy and error codes
- bulkhead: Bounded, timeout-protected concurrency
- timeout: Run deadline and cancellation
- logging_config: Console and debug-file logging
"""

from .exceptions import (
    ErrorCode,
    ErrorContext,
    ReconciliationError,
    ConfigurationError,
    LedgerReadError,
    MalformedTradeError,
    ChainReadError,
    ReconciliationCancelledError,
)

# Bulkhead pattern
from .bulkhead import (
    BulkheadConfig,
    BulkheadMetrics,
    Bulkhead,
    BulkheadError,
    BulkheadTimeoutError,
)

# Deadline / cancellation
from .timeout import run_with_deadline

# Logging
from .logging_config import (
    MainFormatter,
    DebugFormatter,
    setup_logging,
)

__all__ = [
    # Exceptions
    'ErrorCode',
    'ErrorContext',
    'ReconciliationError',
    'ConfigurationError',
    'LedgerReadError',
    'MalformedTradeError',
    'ChainReadError',
    'ReconciliationCancelledError',

    # Bulkhead pattern
    'BulkheadConfig',
    'BulkheadMetrics',
    'Bulkhead',
    'BulkheadError',
    'BulkheadTimeoutError',

    # Deadline / cancellation
    'run_with_deadline',

    # Logging
    'MainFormatter',
    'DebugFormatter',
    'setup_logging',
]
