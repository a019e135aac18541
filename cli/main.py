"""
cli/main.py - Position Reconciliation Command Line Interface

Provides command-line tools for:
- Reconciling ledger-derived positions against on-chain share balances
- Inspecting the positions the ledger replays to

Usage:
    python -m cli.main reconcile --database-url postgresql://... --rpc-url http://127.0.0.1:8545
    python -m cli.main reconcile --block 19000000 --json report.json
    python -m cli.main replay --database-url file:./dev.db

Exit codes:
    0 clean, 1 mismatches or failed checks, 2 configuration error,
    3 ledger error, 4 cancelled or deadline exceeded, 5 fail-fast chain error
"""

import asyncio
import functools
import logging
import signal
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from config import ReconConfig, ReconSettings, load_settings
from core.exceptions import ReconciliationError
from core.logging_config import setup_logging
from reconciliation.chain_state import JsonRpcChainStateFetcher
from reconciliation.ledger_replayer import LedgerReplayer
from reconciliation.position_reconciler import run_reconciliation
from reconciliation.reporter import ExitCode, MismatchReporter, exit_code_for
from reconciliation.trade_log import SqlTradeLogReader

logger = logging.getLogger(__name__)

console = Console(highlight=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, soft_wrap=True)


def handle_errors(f):
    """Decorator mapping run-ending errors onto exit codes."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context()
        try:
            return f(*args, **kwargs)
        except ReconciliationError as e:
            logger.debug(f"Run aborted: {e.to_dict()}")
            err_console.print(f"[red]{escape(str(e))}[/red]")
            ctx.exit(int(exit_code_for(e)))
        except KeyboardInterrupt:
            err_console.print("[yellow]Interrupted[/yellow]")
            ctx.exit(int(ExitCode.CANCELLED))
    return wrapper


async def _run_with_signals(settings: ReconSettings, reader, fetcher):
    """Run reconciliation; SIGINT/SIGTERM cancel it instead of killing the loop."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows, or not running in the main thread
            pass

    try:
        return await run_reconciliation(
            reader,
            fetcher,
            deadline=settings.deadline or None,
            cancel_event=cancel_event,
            **settings.reconciler_options(),
        )
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


@click.group()
@click.version_option(version=ReconConfig.VERSION, prog_name=ReconConfig.SYSTEM_NAME)
def cli():
    """Position Reconciliation - Command Line Interface"""
    pass


# ============================================================================
# Reconcile
# ============================================================================

@cli.command()
@click.option('--database-url', help='Ledger database URL (default: $DATABASE_URL)')
@click.option('--rpc-url', help='JSON-RPC endpoint (default: $RPC_URL)')
@click.option('--table', 'trade_table', help='Trade table name (default: IndexedTrade)')
@click.option('--max-concurrency', '-c', type=int, help='Positions read from chain at once')
@click.option('--timeout', 'fetch_timeout', type=float, help='Seconds per chain read attempt')
@click.option('--retries', 'fetch_retries', type=int, help='Extra attempts after a failed chain read')
@click.option('--retry-delay', type=float, help='Initial retry backoff (seconds)')
@click.option('--deadline', type=float, help='Abort the whole run after N seconds (0 = none)')
@click.option('--block', 'block_tag', help='Block tag or number to read chain state at')
@click.option('--fail-fast/--no-fail-fast', default=None, help='Abort on the first exhausted chain read')
@click.option('--json', 'json_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Also write the report as JSON')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
@click.option('--debug-log', type=click.Path(dir_okay=False), help='Verbose rotating log file')
@handle_errors
def reconcile(json_path: Optional[Path], **options):
    """Check ledger-derived positions against on-chain share balances."""
    settings = load_settings(**options)
    setup_logging(settings.log_level, settings.debug_log)
    logger.info(f"Starting reconciliation: {settings.redacted()}")

    reader = SqlTradeLogReader(settings.database_url, table_name=settings.trade_table)
    fetcher = JsonRpcChainStateFetcher(
        settings.rpc_url,
        block_tag=settings.block_tag,
        timeout=settings.fetch_timeout,
    )
    report = asyncio.run(_run_with_signals(settings, reader, fetcher))

    reporter = MismatchReporter(console=console, json_path=json_path)
    status = reporter.report(report)
    click.get_current_context().exit(int(status))


# ============================================================================
# Replay
# ============================================================================

async def _replay(reader: SqlTradeLogReader):
    async with reader:
        trades = await reader.read_trades()
    replayer = LedgerReplayer()
    return replayer, replayer.replay(trades)


@cli.command()
@click.option('--database-url', help='Ledger database URL (default: $DATABASE_URL)')
@click.option('--table', 'trade_table', help='Trade table name (default: IndexedTrade)')
@click.option('--market', help='Only show positions in this market')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
@handle_errors
def replay(database_url: Optional[str], trade_table: Optional[str],
           market: Optional[str], log_level: Optional[str]):
    """Show the positions the trade ledger replays to (no chain reads)."""
    settings = load_settings(
        require_rpc=False,
        database_url=database_url,
        trade_table=trade_table,
        log_level=log_level,
    )
    setup_logging(settings.log_level, settings.debug_log)

    reader = SqlTradeLogReader(settings.database_url, table_name=settings.trade_table)
    replayer, positions = asyncio.run(_replay(reader))

    if market:
        positions = {k: v for k, v in positions.items() if k.market_address == market.strip().lower()}

    console.print(Panel.fit("[bold blue]Derived Positions[/bold blue]"))
    if positions:
        table = Table()
        table.add_column("Market", style="cyan", no_wrap=True)
        table.add_column("Wallet", no_wrap=True)
        table.add_column("YES", justify="right")
        table.add_column("NO", justify="right")
        for key, state in positions.items():
            table.add_row(key.market_address, key.wallet_address,
                          str(state.yes_shares), str(state.no_shares))
        console.print(table)
    else:
        console.print("[yellow]No positions found.[/yellow]")

    console.print(
        f"Replayed {replayer.trades_replayed} trades into {len(positions)} positions",
        soft_wrap=True,
    )


# ============================================================================
# Main Entry Point
# ============================================================================

def main():
    """Main entry point."""
    cli()


if __name__ == '__main__':
    main()
