"""
reconciliation/trade_log.py - Trade Log Readers

Readers that enumerate the indexed trade ledger in its total order
(block number, then insertion id). The SQL reader targets the indexer's
`IndexedTrade` table through SQLAlchemy 2.0 async, on PostgreSQL (asyncpg)
or SQLite (aiosqlite).

Readers are async context managers; connections live only for the
duration of one run.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import column, select, table
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from core.exceptions import ConfigurationError, LedgerReadError
from reconciliation.ledger_replayer import parse_trade
from reconciliation.models import TradeRecord

logger = logging.getLogger(__name__)

DEFAULT_TRADE_TABLE = "IndexedTrade"

# Column name in the ledger -> parse_trade() argument
_COLUMNS = (
    ("marketAddress", "market_address"),
    ("walletAddress", "wallet_address"),
    ("action", "action"),
    ("side", "side"),
    ("amount", "amount"),
    ("blockNumber", "block_number"),
    ("id", "insertion_id"),
)


def normalize_database_url(database_url: str) -> Tuple[str, Optional[str]]:
    """
    Map a ledger locator onto an async SQLAlchemy URL.

    Accepts plain `postgresql://` / `postgres://` URLs (optionally with a
    `schema` query parameter), `sqlite:///` URLs and `file:` paths.

    Returns:
        (async_url, schema)
    """
    raw = (database_url or "").strip()
    if not raw:
        raise ConfigurationError("Ledger database URL is empty", config_key="DATABASE_URL")

    if raw.startswith("file:"):
        raw = "sqlite:///" + raw[len("file:"):]

    try:
        url = make_url(raw)
    except ArgumentError as e:
        raise ConfigurationError(
            f"Unparseable ledger database URL: {e}", config_key="DATABASE_URL", cause=e
        )

    schema = url.query.get("schema")
    if isinstance(schema, tuple):
        schema = schema[-1]
    if schema is not None:
        url = url.difference_update_query(["schema"])

    driver = url.drivername
    if driver in ("postgresql", "postgres"):
        url = url.set(drivername="postgresql+asyncpg")
    elif driver == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")

    return url.render_as_string(hide_password=False), schema


class TradeLogReader(ABC):
    """Enumerates all trades for a run, in ledger order."""

    @abstractmethod
    async def connect(self):
        """Acquire whatever the reader needs to read."""
        pass

    @abstractmethod
    async def disconnect(self):
        """Release resources acquired by connect()."""
        pass

    @abstractmethod
    async def read_trades(self) -> List[TradeRecord]:
        """Return every trade ordered by (block_number, insertion_id)."""
        pass

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False


class SqlTradeLogReader(TradeLogReader):
    """Reads the indexed trade table through an async SQLAlchemy engine."""

    def __init__(
        self,
        database_url: str,
        table_name: str = DEFAULT_TRADE_TABLE,
        schema: Optional[str] = None,
        echo: bool = False,
    ):
        self.url, url_schema = normalize_database_url(database_url)
        self.schema = schema or url_schema
        self.table_name = table_name
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None

    @property
    def source(self) -> str:
        # Never log credentials
        return self.url.split("@")[-1]

    def _table(self):
        return table(
            self.table_name,
            *(column(name) for name, _ in _COLUMNS),
            schema=self.schema,
        )

    async def connect(self):
        if self._engine is not None:
            return
        try:
            self._engine = create_async_engine(self.url, echo=self.echo, pool_pre_ping=True)
        except (ArgumentError, ImportError) as e:
            raise ConfigurationError(
                f"Cannot create ledger engine: {e}", config_key="DATABASE_URL", cause=e
            )
        logger.info(f"Ledger engine created: {self.source}")

    async def disconnect(self):
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.debug("Ledger engine disposed")

    async def read_trades(self) -> List[TradeRecord]:
        if self._engine is None:
            await self.connect()

        trades_table = self._table()
        stmt = select(*trades_table.c).order_by(
            trades_table.c.blockNumber.asc(),
            trades_table.c.id.asc(),
        )

        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(stmt)
                rows = result.mappings().all()
        except (SQLAlchemyError, OSError) as e:
            raise LedgerReadError(
                f"Cannot read trades from {self.table_name}: {e}",
                source=self.source,
                cause=e,
            )

        logger.debug(f"Fetched {len(rows)} ledger rows from {self.table_name}")
        return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_record(row: Mapping[str, Any]) -> TradeRecord:
        return parse_trade(**{arg: row[name] for name, arg in _COLUMNS})


class InMemoryTradeLogReader(TradeLogReader):
    """Serves an already-loaded trade list, ordered like the SQL reader."""

    def __init__(self, trades: Iterable[TradeRecord]):
        self._trades = list(trades)

    async def connect(self):
        pass

    async def disconnect(self):
        pass

    async def read_trades(self) -> List[TradeRecord]:
        return sorted(self._trades, key=lambda t: t.order_key)
