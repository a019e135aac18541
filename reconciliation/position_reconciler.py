"""
reconciliation/position_reconciler.py - Position Reconciliation

Cross-checks positions derived from the trade ledger against the share
balances held by the market contracts, to detect:
- YES share mismatches
- NO share mismatches
- Positions whose on-chain state could not be read

Chain reads fan out across positions through a bounded bulkhead and are
retried with backoff on transient failure. The report is ordered by
position key regardless of completion order.

Usage:
    reconciler = PositionReconciler(fetcher, max_concurrent=8)
    report = await reconciler.reconcile(positions)
    if not report.passed:
        # Mismatches or failed checks
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Mapping, Optional, Union

from core.bulkhead import Bulkhead, BulkheadConfig, BulkheadTimeoutError
from core.exceptions import ChainReadError
from core.timeout import run_with_deadline
from reconciliation.chain_state import ChainStateFetcher
from reconciliation.ledger_replayer import LedgerReplayer
from reconciliation.models import (
    ChainShares,
    FailedCheck,
    Mismatch,
    PositionKey,
    PositionState,
    ReconciliationReport,
)
from reconciliation.trade_log import TradeLogReader
from utils.decorators import retry_on_exception

logger = logging.getLogger(__name__)

CheckOutcome = Union[PositionKey, Mismatch, FailedCheck]


class PositionReconciler:
    """
    Reconciles derived positions with on-chain share balances.

    Features:
    - Bounded concurrent chain reads (bulkhead)
    - Per-read timeout and retry with exponential backoff
    - Per-position failure isolation, or fail-fast on request
    - Deterministic, key-sorted report
    """

    def __init__(
        self,
        fetcher: ChainStateFetcher,
        max_concurrent: int = 8,
        fetch_timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        retry_backoff: float = 2.0,
        fail_fast: bool = False,
    ):
        """
        Initialize position reconciler.

        Args:
            fetcher: Chain state fetcher (read-only)
            max_concurrent: Positions read from chain at once
            fetch_timeout: Seconds allowed per chain read attempt
            max_retries: Extra attempts after a failed chain read
            retry_delay: Initial delay between attempts (seconds)
            retry_backoff: Delay multiplier per attempt
            fail_fast: Abort the whole run on the first exhausted read
        """
        self.fetcher = fetcher
        self.max_retries = max_retries
        self.fail_fast = fail_fast
        self.bulkhead = Bulkhead(
            "chain_reads",
            BulkheadConfig(max_concurrent=max_concurrent, timeout=fetch_timeout),
        )
        self._fetch_with_retry = retry_on_exception(
            max_retries=max_retries,
            exceptions=(ChainReadError, BulkheadTimeoutError),
            delay=retry_delay,
            backoff=retry_backoff,
        )(self._fetch_once)

        self.last_report: Optional[ReconciliationReport] = None

    async def _fetch_once(self, key: PositionKey) -> ChainShares:
        yes_shares, no_shares = await self.bulkhead.execute(self.fetcher.fetch(key))
        for value in (yes_shares, no_shares):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ChainReadError(
                    f"Chain returned non-integer shares for {key}: {value!r}",
                    key.market_address, key.wallet_address
                )
        return ChainShares(yes_shares, no_shares)

    async def _check(self, key: PositionKey, expected: PositionState) -> CheckOutcome:
        attempts = self.max_retries + 1
        try:
            onchain = await self._fetch_with_retry(key)
        except BulkheadTimeoutError as e:
            error = ChainReadError(
                f"Chain read timed out for {key}: {e}",
                key.market_address, key.wallet_address, attempts, cause=e
            )
            return self._failed(key, expected, error)
        except ChainReadError as e:
            e.attempts = attempts
            e.context.additional_data['attempts'] = attempts
            return self._failed(key, expected, e)

        if expected.as_pair() == tuple(onchain):
            return key

        mismatch = Mismatch(
            key=key,
            expected_yes=expected.yes_shares,
            expected_no=expected.no_shares,
            onchain_yes=onchain.yes_shares,
            onchain_no=onchain.no_shares,
        )
        logger.warning(
            f"RECONCILE: {key} mismatch "
            f"yes expected={mismatch.expected_yes} onchain={mismatch.onchain_yes} "
            f"no expected={mismatch.expected_no} onchain={mismatch.onchain_no}"
        )
        return mismatch

    def _failed(self, key: PositionKey, expected: PositionState, error: ChainReadError) -> FailedCheck:
        if self.fail_fast:
            raise error
        logger.error(f"RECONCILE: {key} chain read failed after {error.attempts} attempts: {error.message}")
        return FailedCheck(
            key=key,
            expected_yes=expected.yes_shares,
            expected_no=expected.no_shares,
            error=error.message,
            attempts=error.attempts,
        )

    async def reconcile(self, positions: Mapping[PositionKey, PositionState]) -> ReconciliationReport:
        """
        Check every derived position against the chain.

        Args:
            positions: Derived positions; read, never modified

        Returns:
            ReconciliationReport with mismatches and failed checks sorted by key

        Raises:
            ChainReadError: only in fail-fast mode
        """
        started_at = datetime.now()
        start = time.perf_counter()

        keys = sorted(positions)
        logger.info(
            f"Reconciling {len(keys)} positions "
            f"(max {self.bulkhead.config.max_concurrent} concurrent)"
        )

        tasks = [asyncio.ensure_future(self._check(key, positions[key])) for key in keys]
        try:
            outcomes = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        report = ReconciliationReport(checked=len(keys), timestamp=started_at)
        for outcome in outcomes:
            if isinstance(outcome, Mismatch):
                report.mismatches.append(outcome)
            elif isinstance(outcome, FailedCheck):
                report.failures.append(outcome)
            else:
                report.verified.append(outcome)

        report.mismatches.sort(key=lambda m: m.key)
        report.failures.sort(key=lambda f: f.key)
        report.verified.sort()
        report.elapsed_ms = (time.perf_counter() - start) * 1000

        if report.passed:
            logger.info(f"Reconciliation OK: {report.checked} positions ({report.elapsed_ms:.1f}ms)")
        else:
            logger.warning(
                f"Reconciliation found {len(report.mismatches)} mismatches "
                f"and {len(report.failures)} failed checks in {report.checked} positions"
            )

        self.last_report = report
        return report


async def run_reconciliation(
    reader: TradeLogReader,
    fetcher: ChainStateFetcher,
    deadline: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
    **reconciler_options,
) -> ReconciliationReport:
    """
    Read the ledger, replay it and reconcile the result against the chain.

    Reader and fetcher are opened and closed within this call. If the
    deadline passes or cancel_event is set, in-flight reads are abandoned
    and no report is returned.

    Raises:
        LedgerReadError, MalformedTradeError: ledger problems (fatal)
        ReconciliationCancelledError: deadline exceeded or cancelled
        ChainReadError: only with fail_fast=True
    """
    async def _run() -> ReconciliationReport:
        async with reader:
            trades = await reader.read_trades()
        positions = LedgerReplayer().replay(trades)

        async with fetcher:
            reconciler = PositionReconciler(fetcher, **reconciler_options)
            return await reconciler.reconcile(positions)

    return await run_with_deadline(_run(), deadline, cancel_event, "reconciliation")

