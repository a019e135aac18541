"""
reconciliation/chain_state.py - On-Chain Position Reads

Read-only access to the prediction market contracts' share ledgers.
For one (market, wallet) key the fetcher returns the contract's
`yesShares(wallet)` and `noShares(wallet)` values; the two eth_calls are
issued concurrently.

Features:
- JSON-RPC 2.0 over httpx.AsyncClient (one client per run)
- ABI encoding/decoding via eth-abi
- Optional pinned block tag for a consistent chain snapshot
- Every transport, RPC or decoding failure surfaces as ChainReadError
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, Union

import httpx
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from core.exceptions import ChainReadError
from reconciliation.models import ChainShares, PositionKey

logger = logging.getLogger(__name__)

YES_SHARES_SELECTOR = function_signature_to_4byte_selector("yesShares(address)")
NO_SHARES_SELECTOR = function_signature_to_4byte_selector("noShares(address)")

BlockTag = Union[str, int]


def encode_share_call(selector: bytes, wallet_address: str) -> str:
    """Calldata for a `<getter>(address)` view call."""
    return "0x" + (selector + encode(["address"], [wallet_address])).hex()


def decode_uint256(result: str) -> int:
    """Decode an eth_call hex result holding a single uint256."""
    if not isinstance(result, str) or not result.startswith("0x"):
        raise ValueError(f"eth_call result is not hex: {result!r}")
    payload = result[2:]
    # An account without code answers with empty return data.
    if not payload:
        return 0
    (value,) = decode(["uint256"], bytes.fromhex(payload))
    return value


def format_block_tag(block_tag: BlockTag) -> str:
    if isinstance(block_tag, int):
        return hex(block_tag)
    return block_tag


class ChainStateFetcher(ABC):
    """Looks up authoritative share balances for a position key."""

    @abstractmethod
    async def fetch(self, key: PositionKey) -> ChainShares:
        """
        Return (yes_shares, no_shares) held on-chain for the key.

        Raises:
            ChainReadError: on RPC or transport failure.
        """
        pass

    async def open(self):
        pass

    async def close(self):
        pass

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False


class JsonRpcChainStateFetcher(ChainStateFetcher):
    """
    Reads share balances with eth_call against a JSON-RPC endpoint.

    Example:
        async with JsonRpcChainStateFetcher("http://127.0.0.1:8545") as fetcher:
            shares = await fetcher.fetch(PositionKey.of(market, wallet))
    """

    def __init__(
        self,
        rpc_url: str,
        block_tag: BlockTag = "latest",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.block_tag = format_block_tag(block_tag)
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    async def open(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
            logger.debug(f"RPC client opened for {self.rpc_url} at block {self.block_tag}")

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.debug("RPC client closed")

    async def fetch(self, key: PositionKey) -> ChainShares:
        yes_shares, no_shares = await asyncio.gather(
            self._read_shares(key, YES_SHARES_SELECTOR, "yesShares"),
            self._read_shares(key, NO_SHARES_SELECTOR, "noShares"),
        )
        return ChainShares(yes_shares, no_shares)

    async def _read_shares(self, key: PositionKey, selector: bytes, getter: str) -> int:
        call = {"to": key.market_address, "data": encode_share_call(selector, key.wallet_address)}
        result = await self._rpc(key, "eth_call", [call, self.block_tag])
        try:
            return decode_uint256(result)
        except (ValueError, DecodingError) as e:
            raise ChainReadError(
                f"{getter} returned undecodable data for {key}: {e}",
                key.market_address, key.wallet_address, cause=e
            )

    async def _rpc(self, key: PositionKey, method: str, params: list):
        if self._client is None:
            await self.open()

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        try:
            resp = await self._client.post(self.rpc_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ChainReadError(
                f"RPC request failed ({method}) for {key}: {e}",
                key.market_address, key.wallet_address, cause=e
            )
        except ValueError as e:
            raise ChainReadError(
                f"RPC response is not JSON ({method}) for {key}",
                key.market_address, key.wallet_address, cause=e
            )

        if not isinstance(data, dict):
            raise ChainReadError(
                f"RPC response has unexpected shape ({method}) for {key}",
                key.market_address, key.wallet_address
            )
        if data.get("error"):
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ChainReadError(
                f"RPC error ({method}) for {key}: {message}",
                key.market_address, key.wallet_address
            )
        if "result" not in data:
            raise ChainReadError(
                f"RPC response missing result ({method}) for {key}",
                key.market_address, key.wallet_address
            )
        return data["result"]


class StaticChainStateFetcher(ChainStateFetcher):
    """Serves balances from a fixed mapping; unknown keys read as (0, 0)."""

    def __init__(self, shares: Dict[PositionKey, Tuple[int, int]]):
        self._shares = {PositionKey.of(*k): ChainShares(*v) for k, v in shares.items()}

    async def fetch(self, key: PositionKey) -> ChainShares:
        return self._shares.get(key, ChainShares(0, 0))
