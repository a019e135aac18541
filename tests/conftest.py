# tests/conftest.py - Pytest configuration and fixtures

import itertools

import pytest
from unittest.mock import AsyncMock, MagicMock

from reconciliation.chain_state import ChainStateFetcher
from reconciliation.ledger_replayer import parse_trade
from reconciliation.models import ChainShares

# Addresses are lower-case hex so they read back unchanged after normalisation
MARKET_A = "0x" + "a1" * 20
MARKET_B = "0x" + "b2" * 20
WALLET_1 = "0x" + "11" * 20
WALLET_2 = "0x" + "22" * 20


@pytest.fixture
def make_trade():
    """Factory for validated TradeRecords with increasing insertion ids."""
    ids = itertools.count(1)

    def _make(action, side, amount, market=MARKET_A, wallet=WALLET_1, block=1, insertion_id=None):
        return parse_trade(
            market_address=market,
            wallet_address=wallet,
            action=action,
            side=side,
            amount=str(amount),
            block_number=block,
            insertion_id=next(ids) if insertion_id is None else insertion_id,
        )
    return _make


# Mock fixtures
@pytest.fixture
def mock_fetcher():
    """Mock chain state fetcher; every position reads as (0, 0) unless overridden."""
    fetcher = MagicMock(spec=ChainStateFetcher)
    fetcher.fetch = AsyncMock(return_value=ChainShares(0, 0))
    fetcher.__aenter__ = AsyncMock(return_value=fetcher)
    fetcher.__aexit__ = AsyncMock(return_value=False)
    return fetcher


@pytest.fixture
def recon_env(monkeypatch):
    """Clear every reconciliation env var so tests see only what they set."""
    for name in (
        "DATABASE_URL", "RECON_DATABASE_URL", "RPC_URL", "RECON_RPC_URL",
        "RECON_TRADE_TABLE", "RECON_MAX_CONCURRENCY", "RECON_FETCH_TIMEOUT",
        "RECON_FETCH_RETRIES", "RECON_RETRY_DELAY", "RECON_RETRY_BACKOFF",
        "RECON_BLOCK_TAG", "RECON_DEADLINE", "RECON_FAIL_FAST",
        "RECON_LOG_LEVEL", "RECON_DEBUG_LOG",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# Configure pytest
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "asyncio: async tests")
    config.addinivalue_line("markers", "integration: tests that use a real SQLite file")
