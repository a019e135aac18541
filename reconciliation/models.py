"""
reconciliation/models.py - Ledger and Reconciliation Data Model

Trade records as read from the ledger, the derived per-position balances
and the findings produced when those balances are checked on-chain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Tuple


class TradeAction(Enum):
    """Direction of a trade."""
    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        return 1 if self is TradeAction.BUY else -1


class TradeSide(Enum):
    """Outcome a trade's shares belong to."""
    YES = "YES"
    NO = "NO"


class PositionKey(NamedTuple):
    """(market, wallet) identity of one position, lower-cased."""
    market_address: str
    wallet_address: str

    @classmethod
    def of(cls, market_address: str, wallet_address: str) -> "PositionKey":
        return cls(market_address.strip().lower(), wallet_address.strip().lower())

    def __str__(self) -> str:
        return f"{self.market_address}:{self.wallet_address}"


@dataclass(frozen=True)
class TradeRecord:
    """One immutable ledger entry."""
    market_address: str
    wallet_address: str
    action: TradeAction
    side: TradeSide
    amount: int
    block_number: int
    insertion_id: Any

    @property
    def key(self) -> PositionKey:
        return PositionKey.of(self.market_address, self.wallet_address)

    @property
    def order_key(self) -> Tuple[int, Any]:
        return (self.block_number, self.insertion_id)

    @property
    def signed_amount(self) -> int:
        return self.action.sign * self.amount


@dataclass
class PositionState:
    """Derived YES/NO share balances for one position."""
    yes_shares: int = 0
    no_shares: int = 0

    def apply(self, trade: TradeRecord) -> None:
        delta = trade.signed_amount
        if trade.side is TradeSide.YES:
            self.yes_shares += delta
        else:
            self.no_shares += delta

    def as_pair(self) -> Tuple[int, int]:
        return (self.yes_shares, self.no_shares)


class ChainShares(NamedTuple):
    """Authoritative on-chain share balances."""
    yes_shares: int
    no_shares: int


@dataclass(frozen=True)
class Mismatch:
    """Derived balances that disagree with the chain."""
    key: PositionKey
    expected_yes: int
    expected_no: int
    onchain_yes: int
    onchain_no: int

    @property
    def yes_matches(self) -> bool:
        return self.expected_yes == self.onchain_yes

    @property
    def no_matches(self) -> bool:
        return self.expected_no == self.onchain_no

    def to_dict(self) -> Dict[str, Any]:
        # Share counts are unbounded integers; strings keep them exact in JSON.
        return {
            'market_address': self.key.market_address,
            'wallet_address': self.key.wallet_address,
            'expected_yes': str(self.expected_yes),
            'onchain_yes': str(self.onchain_yes),
            'expected_no': str(self.expected_no),
            'onchain_no': str(self.onchain_no),
        }


@dataclass(frozen=True)
class FailedCheck:
    """A position whose on-chain state could not be read."""
    key: PositionKey
    expected_yes: int
    expected_no: int
    error: str
    attempts: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'market_address': self.key.market_address,
            'wallet_address': self.key.wallet_address,
            'expected_yes': str(self.expected_yes),
            'expected_no': str(self.expected_no),
            'error': self.error,
            'attempts': self.attempts,
        }


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation run."""
    checked: int
    mismatches: List[Mismatch] = field(default_factory=list)
    failures: List[FailedCheck] = field(default_factory=list)
    verified: List[PositionKey] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    elapsed_ms: float = 0.0

    @property
    def has_mismatches(self) -> bool:
        return len(self.mismatches) > 0

    @property
    def has_failures(self) -> bool:
        return len(self.failures) > 0

    @property
    def passed(self) -> bool:
        return not self.has_mismatches and not self.has_failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'passed': self.passed,
            'checked': self.checked,
            'verified_count': len(self.verified),
            'mismatch_count': len(self.mismatches),
            'failure_count': len(self.failures),
            'elapsed_ms': self.elapsed_ms,
            'mismatches': [m.to_dict() for m in self.mismatches],
            'failures': [f.to_dict() for f in self.failures],
        }
