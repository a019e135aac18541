"""
reconciliation/ledger_replayer.py - Deterministic Ledger Replay

Folds the ordered trade log into per-position YES/NO share balances.

Each BUY credits and each SELL debits the traded side of the
(market, wallet) position it belongs to. Arithmetic is exact integer
arithmetic throughout; amounts arrive as decimal strings and are
validated before any delta is applied.

Usage:
    trades = [parse_trade(**row) for row in rows]
    positions = LedgerReplayer().replay(trades)
"""

import logging
import re
import time
from typing import Any, Dict, Iterable, Optional

from eth_utils import is_address

from core.exceptions import MalformedTradeError
from reconciliation.models import (
    PositionKey,
    PositionState,
    TradeAction,
    TradeRecord,
    TradeSide,
)

logger = logging.getLogger(__name__)

_DECIMAL_INT = re.compile(r"[0-9]+")

# Share balances are uint256 on-chain
MAX_AMOUNT = 2**256 - 1
_MAX_AMOUNT_DIGITS = len(str(MAX_AMOUNT))


def parse_amount(value: Any, insertion_id: Any = None) -> int:
    """Parse a non-negative decimal integer amount without coercion."""
    if isinstance(value, bool):
        raise MalformedTradeError("amount", value, "is not an integer", insertion_id)
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith("-") and _DECIMAL_INT.fullmatch(text[1:]):
            raise MalformedTradeError("amount", value, "is negative", insertion_id)
        if not _DECIMAL_INT.fullmatch(text):
            raise MalformedTradeError("amount", value, "is not a decimal integer", insertion_id)
        if len(text.lstrip("0")) > _MAX_AMOUNT_DIGITS:
            raise MalformedTradeError("amount", f"{text[:20]}...", "is too large", insertion_id)
        amount = int(text)
    else:
        raise MalformedTradeError("amount", value, "is not a decimal integer", insertion_id)

    if amount < 0:
        raise MalformedTradeError("amount", value, "is negative", insertion_id)
    if amount > MAX_AMOUNT:
        raise MalformedTradeError("amount", value, "is too large", insertion_id)
    return amount


def _parse_enum(enum_cls, field: str, value: Any, insertion_id: Any):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = "|".join(m.value for m in enum_cls)
        raise MalformedTradeError(field, value, f"is not one of {allowed}", insertion_id, e)


def _parse_address(field: str, value: Any, insertion_id: Any) -> str:
    if not isinstance(value, str) or not is_address(value.strip().lower()):
        raise MalformedTradeError(field, value, "is not a hex address", insertion_id)
    return value.strip().lower()


def _parse_block(value: Any, insertion_id: Any) -> int:
    if isinstance(value, bool):
        raise MalformedTradeError("block_number", value, "is not an integer", insertion_id)
    try:
        block = int(value)
    except (TypeError, ValueError) as e:
        raise MalformedTradeError("block_number", value, "is not an integer", insertion_id, e)
    if block < 0:
        raise MalformedTradeError("block_number", value, "is negative", insertion_id)
    return block


def parse_trade(
    market_address: Any,
    wallet_address: Any,
    action: Any,
    side: Any,
    amount: Any,
    block_number: Any,
    insertion_id: Any,
) -> TradeRecord:
    """
    Validate one raw ledger row into a TradeRecord.

    Raises:
        MalformedTradeError: on a bad address, enum value, amount or block.
    """
    if insertion_id is None:
        raise MalformedTradeError("insertion_id", None, "is missing")

    return TradeRecord(
        market_address=_parse_address("market_address", market_address, insertion_id),
        wallet_address=_parse_address("wallet_address", wallet_address, insertion_id),
        action=_parse_enum(TradeAction, "action", action, insertion_id),
        side=_parse_enum(TradeSide, "side", side, insertion_id),
        amount=parse_amount(amount, insertion_id),
        block_number=_parse_block(block_number, insertion_id),
        insertion_id=insertion_id,
    )


class LedgerReplayer:
    """
    Replays trade records into derived positions.

    The replayer owns the position map for the duration of a fold and
    hands it over only once the whole log has been applied.
    """

    def __init__(self):
        self.trades_replayed: int = 0
        self.last_order_key: Optional[tuple] = None
        self.elapsed_ms: float = 0.0

    def replay(self, trades: Iterable[TradeRecord]) -> Dict[PositionKey, PositionState]:
        """
        Fold trades into positions, ordered by (block_number, insertion_id).

        Returns:
            Mapping of PositionKey -> PositionState sorted by key.
        """
        start = time.perf_counter()
        ordered = sorted(trades, key=lambda t: t.order_key)

        positions: Dict[PositionKey, PositionState] = {}
        previous = None
        for trade in ordered:
            if trade.order_key == previous:
                raise MalformedTradeError(
                    "insertion_id", trade.insertion_id,
                    f"duplicates ordering key {trade.order_key}", trade.insertion_id
                )
            previous = trade.order_key

            state = positions.get(trade.key)
            if state is None:
                state = positions[trade.key] = PositionState()
            state.apply(trade)

        self.trades_replayed = len(ordered)
        self.last_order_key = previous
        self.elapsed_ms = (time.perf_counter() - start) * 1000

        logger.info(
            f"Replayed {len(ordered)} trades into {len(positions)} positions "
            f"({self.elapsed_ms:.1f}ms)"
        )
        return dict(sorted(positions.items()))


def replay(trades: Iterable[TradeRecord]) -> Dict[PositionKey, PositionState]:
    """Replay trades with a fresh LedgerReplayer."""
    return LedgerReplayer().replay(trades)
