import json
import sqlite3
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

import cli.main as cli_main
from cli.main import cli
from conftest import MARKET_A, MARKET_B, WALLET_1
from core.exceptions import (
    ChainReadError,
    LedgerReadError,
    MalformedTradeError,
    ReconciliationCancelledError,
)
from reconciliation.models import Mismatch, PositionKey, ReconciliationReport

KEY = PositionKey(MARKET_A, WALLET_1)


@pytest.fixture
def runner(recon_env):
    recon_env.setattr(cli_main, "setup_logging", MagicMock())
    return CliRunner()


@pytest.fixture
def configured(recon_env):
    recon_env.setenv("DATABASE_URL", "sqlite:///ledger.db")
    recon_env.setenv("RPC_URL", "http://127.0.0.1:8545")
    return recon_env


def _patch_run(monkeypatch, **kwargs):
    run = AsyncMock(**kwargs)
    monkeypatch.setattr(cli_main, "run_reconciliation", run)
    return run


class TestReconcileCommand:

    def test_missing_database_url_exits_2(self, runner):
        result = runner.invoke(cli, ["reconcile", "--rpc-url", "http://127.0.0.1:8545"])

        assert result.exit_code == 2
        assert "E503" in result.output
        assert "DATABASE_URL" in result.output

    def test_missing_rpc_url_exits_2(self, runner, recon_env):
        recon_env.setenv("DATABASE_URL", "sqlite:///ledger.db")

        result = runner.invoke(cli, ["reconcile"])

        assert result.exit_code == 2
        assert "RPC_URL" in result.output

    def test_unparseable_rpc_url_exits_2(self, runner, configured):
        run = _patch_run(configured, return_value=ReconciliationReport(checked=0))

        result = runner.invoke(cli, ["reconcile", "--rpc-url", "http://[::1"])

        assert result.exit_code == 2
        assert "E503" in result.output
        run.assert_not_awaited()

    def test_invalid_block_exits_2(self, runner, configured):
        run = _patch_run(configured, return_value=ReconciliationReport(checked=0))

        result = runner.invoke(cli, ["reconcile", "--block", "yesterday"])

        assert result.exit_code == 2
        run.assert_not_awaited()

    def test_clean_run_exits_0(self, runner, configured):
        _patch_run(configured, return_value=ReconciliationReport(checked=4, verified=[KEY]))

        result = runner.invoke(cli, ["reconcile"])

        assert result.exit_code == 0
        assert "Reconciliation passed. Checked 4 positions." in result.output

    def test_mismatch_exits_1(self, runner, configured):
        report = ReconciliationReport(
            checked=1,
            mismatches=[Mismatch(KEY, expected_yes=7, expected_no=0, onchain_yes=5, onchain_no=0)],
        )
        _patch_run(configured, return_value=report)

        result = runner.invoke(cli, ["reconcile"])

        assert result.exit_code == 1
        assert "Reconciliation failed. Checked 1 positions, mismatches: 1" in result.output
        assert f"MISMATCH {MARKET_A} | {WALLET_1} | YES expected=7 onchain=5" in result.output

    def test_options_reach_the_reconciler(self, runner, configured):
        run = _patch_run(configured, return_value=ReconciliationReport(checked=0))

        result = runner.invoke(cli, [
            "reconcile", "-c", "3", "--retries", "1", "--deadline", "30", "--fail-fast",
        ])

        assert result.exit_code == 0
        kwargs = run.await_args.kwargs
        assert kwargs["max_concurrent"] == 3
        assert kwargs["max_retries"] == 1
        assert kwargs["fail_fast"] is True
        assert kwargs["deadline"] == 30.0
        assert kwargs["cancel_event"] is not None

    def test_json_report(self, runner, configured, tmp_path):
        _patch_run(configured, return_value=ReconciliationReport(checked=2))
        json_path = tmp_path / "report.json"

        result = runner.invoke(cli, ["reconcile", "--json", str(json_path)])

        assert result.exit_code == 0
        assert json.loads(json_path.read_text())["checked"] == 2

    @pytest.mark.parametrize("error,code", [
        (LedgerReadError("db down"), 3),
        (MalformedTradeError("side", "MAYBE", "is not one of YES|NO", 12), 3),
        (ReconciliationCancelledError("deadline exceeded", 1.0), 4),
        (ChainReadError("node unreachable", MARKET_A, WALLET_1, 4), 5),
    ])
    def test_fatal_errors_map_to_exit_codes(self, runner, configured, tmp_path, error, code):
        _patch_run(configured, side_effect=error)
        json_path = tmp_path / "report.json"

        result = runner.invoke(cli, ["reconcile", "--json", str(json_path)])

        assert result.exit_code == code
        assert error.error_code.value in result.output
        assert "Reconciliation passed" not in result.output
        assert not json_path.exists()


class TestReplayCommand:

    def _ledger(self, path):
        conn = sqlite3.connect(path)
        conn.execute(
            'CREATE TABLE "IndexedTrade" ("id" INTEGER PRIMARY KEY, "marketAddress" TEXT, '
            '"walletAddress" TEXT, "action" TEXT, "side" TEXT, "amount" TEXT, "blockNumber" INTEGER)'
        )
        conn.executemany(
            'INSERT INTO "IndexedTrade" VALUES (?, ?, ?, ?, ?, ?, ?)',
            [
                (1, MARKET_A, WALLET_1, "BUY", "YES", "10", 1),
                (2, MARKET_A, WALLET_1, "SELL", "YES", "3", 2),
                (3, MARKET_B, WALLET_1, "BUY", "NO", "5", 3),
            ],
        )
        conn.commit()
        conn.close()

    def test_replay_needs_no_rpc(self, runner, tmp_path):
        db_path = tmp_path / "ledger.db"
        self._ledger(db_path)

        result = runner.invoke(cli, ["replay", "--database-url", f"file:{db_path}"])

        assert result.exit_code == 0
        assert "Replayed 3 trades into 2 positions" in result.output

    def test_replay_market_filter(self, runner, tmp_path):
        db_path = tmp_path / "ledger.db"
        self._ledger(db_path)

        result = runner.invoke(cli, [
            "replay", "--database-url", f"file:{db_path}", "--market", MARKET_B.upper().replace("0X", "0x"),
        ])

        assert result.exit_code == 0
        assert "into 1 positions" in result.output

    def test_replay_missing_table_exits_3(self, runner, tmp_path):
        db_path = tmp_path / "empty.db"
        sqlite3.connect(db_path).close()

        result = runner.invoke(cli, ["replay", "--database-url", f"file:{db_path}"])

        assert result.exit_code == 3
        assert "E301" in result.output


def test_version(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "1.0.0" in result.output
