"""
reconciliation - Position Reconciliation Module

Replays the off-chain trade ledger into per-position share balances and
verifies them against the market contracts.
"""

from .models import (
    TradeAction,
    TradeSide,
    PositionKey,
    TradeRecord,
    PositionState,
    ChainShares,
    Mismatch,
    FailedCheck,
    ReconciliationReport,
)
from .ledger_replayer import LedgerReplayer, parse_trade, parse_amount, replay
from .trade_log import TradeLogReader, SqlTradeLogReader, InMemoryTradeLogReader
from .chain_state import ChainStateFetcher, JsonRpcChainStateFetcher, StaticChainStateFetcher
from .position_reconciler import PositionReconciler, run_reconciliation
from .reporter import ExitCode, MismatchReporter, exit_code_for, exit_status, format_lines

__all__ = [
    # Models
    'TradeAction',
    'TradeSide',
    'PositionKey',
    'TradeRecord',
    'PositionState',
    'ChainShares',
    'Mismatch',
    'FailedCheck',
    'ReconciliationReport',

    # Ledger
    'LedgerReplayer',
    'parse_trade',
    'parse_amount',
    'replay',
    'TradeLogReader',
    'SqlTradeLogReader',
    'InMemoryTradeLogReader',

    # Chain
    'ChainStateFetcher',
    'JsonRpcChainStateFetcher',
    'StaticChainStateFetcher',

    # Reconciliation
    'PositionReconciler',
    'run_reconciliation',

    # Reporting
    'ExitCode',
    'MismatchReporter',
    'exit_status',
    'exit_code_for',
    'format_lines',
]
