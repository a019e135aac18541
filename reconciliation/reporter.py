"""
reconciliation/reporter.py - Mismatch Reporter

Renders a ReconciliationReport for humans and decides the process exit
status for automation (CI gating).

Output format (one summary line, then one line per finding):
    Reconciliation failed. Checked 3 positions, mismatches: 1, failed checks: 0
    MISMATCH <market> | <wallet> | YES expected=7 onchain=7 | NO expected=5 onchain=4
"""

import json
import logging
from enum import IntEnum
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.markup import escape

from core.exceptions import (
    ChainReadError,
    ConfigurationError,
    LedgerReadError,
    MalformedTradeError,
    ReconciliationCancelledError,
    ReconciliationError,
)
from reconciliation.models import ReconciliationReport

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """Process exit codes."""
    OK = 0
    FINDINGS = 1          # Mismatches or failed checks
    CONFIG_ERROR = 2
    LEDGER_ERROR = 3
    CANCELLED = 4
    CHAIN_ERROR = 5       # Fail-fast chain read failure
    INTERNAL_ERROR = 6


def summary_line(report: ReconciliationReport) -> str:
    if report.passed:
        return f"Reconciliation passed. Checked {report.checked} positions."
    return (
        f"Reconciliation failed. Checked {report.checked} positions, "
        f"mismatches: {len(report.mismatches)}, failed checks: {len(report.failures)}"
    )


def format_lines(report: ReconciliationReport) -> List[str]:
    """Plain-text report lines in emit order."""
    lines = [summary_line(report)]
    for m in report.mismatches:
        lines.append(" | ".join([
            f"MISMATCH {m.key.market_address}",
            m.key.wallet_address,
            f"YES expected={m.expected_yes} onchain={m.onchain_yes}",
            f"NO expected={m.expected_no} onchain={m.onchain_no}",
        ]))
    for f in report.failures:
        lines.append(" | ".join([
            f"FAILED {f.key.market_address}",
            f.key.wallet_address,
            f"YES expected={f.expected_yes}",
            f"NO expected={f.expected_no}",
            f"error after {f.attempts} attempts: {f.error}",
        ]))
    return lines


def exit_status(report: ReconciliationReport) -> ExitCode:
    return ExitCode.OK if report.passed else ExitCode.FINDINGS


def exit_code_for(error: ReconciliationError) -> ExitCode:
    """Exit status for a run that ended without a report."""
    if isinstance(error, ConfigurationError):
        return ExitCode.CONFIG_ERROR
    if isinstance(error, (LedgerReadError, MalformedTradeError)):
        return ExitCode.LEDGER_ERROR
    if isinstance(error, ReconciliationCancelledError):
        return ExitCode.CANCELLED
    if isinstance(error, ChainReadError):
        return ExitCode.CHAIN_ERROR
    return ExitCode.INTERNAL_ERROR


class MismatchReporter:
    """
    Writes the report to a console and, optionally, as JSON to a file.

    Example:
        reporter = MismatchReporter(json_path=Path("recon.json"))
        sys.exit(reporter.report(report))
    """

    def __init__(self, console: Optional[Console] = None, json_path: Optional[Path] = None):
        self.console = console or Console(highlight=False, soft_wrap=True)
        self.json_path = Path(json_path) if json_path else None

    def report(self, result: ReconciliationReport) -> ExitCode:
        """Emit the report and return the exit status it implies."""
        lines = format_lines(result)
        color = "green" if result.passed else "red"
        self.console.print(f"[bold {color}]{escape(lines[0])}[/bold {color}]", soft_wrap=True)
        for line in lines[1:]:
            self.console.print(escape(line), soft_wrap=True)

        if self.json_path:
            self.write_json(result)

        return exit_status(result)

    def write_json(self, result: ReconciliationReport):
        self.json_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.json_path, 'w') as f:
            json.dump(result.to_dict(), f, indent=2)
            f.write('\n')
        logger.info(f"Report written to {self.json_path}")
