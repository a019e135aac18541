import io
import json

from rich.console import Console

from conftest import MARKET_A, MARKET_B, WALLET_1, WALLET_2
from core.exceptions import (
    ChainReadError,
    ConfigurationError,
    LedgerReadError,
    MalformedTradeError,
    ReconciliationCancelledError,
    ReconciliationError,
)
from reconciliation.models import FailedCheck, Mismatch, PositionKey, ReconciliationReport
from reconciliation.reporter import ExitCode, MismatchReporter, exit_code_for, format_lines

KEY_A = PositionKey(MARKET_A, WALLET_1)
KEY_B = PositionKey(MARKET_B, WALLET_2)


def _console():
    buffer = io.StringIO()
    return Console(file=buffer, width=80, highlight=False, soft_wrap=True), buffer


def _report_with_findings():
    return ReconciliationReport(
        checked=3,
        mismatches=[Mismatch(KEY_A, expected_yes=7, expected_no=5, onchain_yes=7, onchain_no=4)],
        failures=[FailedCheck(KEY_B, expected_yes=1, expected_no=0, error="rpc down", attempts=4)],
        verified=[PositionKey(MARKET_B, WALLET_1)],
    )


def test_format_lines_for_clean_run():
    lines = format_lines(ReconciliationReport(checked=2))

    assert lines == ["Reconciliation passed. Checked 2 positions."]


def test_format_lines_with_mismatch_and_failure():
    lines = format_lines(_report_with_findings())

    assert lines[0] == "Reconciliation failed. Checked 3 positions, mismatches: 1, failed checks: 1"
    assert lines[1] == (
        f"MISMATCH {MARKET_A} | {WALLET_1} | YES expected=7 onchain=7 | NO expected=5 onchain=4"
    )
    assert lines[2] == (
        f"FAILED {MARKET_B} | {WALLET_2} | YES expected=1 | NO expected=0 | "
        f"error after 4 attempts: rpc down"
    )


def test_reporter_prints_one_line_per_finding():
    console, buffer = _console()

    status = MismatchReporter(console=console).report(_report_with_findings())

    output = buffer.getvalue().splitlines()
    assert status == ExitCode.FINDINGS
    assert output == format_lines(_report_with_findings())


def test_reporter_returns_ok_for_clean_run():
    console, buffer = _console()

    status = MismatchReporter(console=console).report(ReconciliationReport(checked=1, verified=[KEY_A]))

    assert status == ExitCode.OK
    assert "passed" in buffer.getvalue()


def test_reporter_writes_json(tmp_path):
    console, _ = _console()
    json_path = tmp_path / "out" / "report.json"
    huge = 2**200

    report = ReconciliationReport(
        checked=1,
        mismatches=[Mismatch(KEY_A, expected_yes=huge, expected_no=0, onchain_yes=0, onchain_no=0)],
    )
    MismatchReporter(console=console, json_path=json_path).report(report)

    data = json.loads(json_path.read_text())
    assert data["passed"] is False
    assert data["mismatch_count"] == 1
    assert data["mismatches"][0]["expected_yes"] == str(huge)
    assert data["mismatches"][0]["market_address"] == MARKET_A


def test_failures_alone_fail_the_run():
    report = ReconciliationReport(
        checked=1,
        failures=[FailedCheck(KEY_A, 0, 0, "timeout", 4)],
    )

    assert report.passed is False
    assert report.has_failures is True
    assert report.has_mismatches is False


def test_exit_code_for_errors():
    assert exit_code_for(ConfigurationError("missing")) == ExitCode.CONFIG_ERROR
    assert exit_code_for(LedgerReadError()) == ExitCode.LEDGER_ERROR
    assert exit_code_for(MalformedTradeError("amount", "-1", "is negative")) == ExitCode.LEDGER_ERROR
    assert exit_code_for(ReconciliationCancelledError("deadline exceeded", 5)) == ExitCode.CANCELLED
    assert exit_code_for(ChainReadError("down")) == ExitCode.CHAIN_ERROR
    assert exit_code_for(ReconciliationError("other")) == ExitCode.INTERNAL_ERROR
