"""
Thin adapter over solana-py's AsyncClient.

Exposes only the calls the toolkit needs and turns every transport or RPC
failure into TransportError, so callers can tell retryable failures apart
from on-chain rejections (which arrive as a non-null ``err`` in a
Confirmation, never as an exception).
"""

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.account import Account
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from .errors import TransportError
from .log import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 10.0

_TRANSPORT_FAILURES = (
    SolanaRpcException,
    RPCException,
    UnconfirmedTxError,
    TransactionExpiredBlockheightExceededError,
    asyncio.TimeoutError,
    OSError,
)


@dataclass(frozen=True)
class BlockhashInfo:
    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class Confirmation:
    """Result of a confirmation poll. ``err`` is the ledger's rejection payload, if any."""

    signature: Signature
    slot: Optional[int] = None
    err: Any = None

    @property
    def rejected(self) -> bool:
        return self.err is not None


def _transport_errors(func):
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except _TRANSPORT_FAILURES as e:
            raise TransportError(f"{func.__name__} failed on {self.endpoint}: {e}", endpoint=self.endpoint) from e
    return wrapper


class LedgerClient:
    """Ledger client bound to one endpoint."""

    def __init__(self, endpoint: str, commitment: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT):
        self.endpoint = endpoint
        self.commitment = commitment
        self._client = AsyncClient(endpoint, commitment=commitment, timeout=timeout)

    def __repr__(self) -> str:
        return f"LedgerClient({self.endpoint!r})"

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.close()

    @_transport_errors
    async def get_latest_blockhash(self, commitment: Optional[str] = None) -> BlockhashInfo:
        resp = await self._client.get_latest_blockhash(commitment)
        return BlockhashInfo(
            blockhash=resp.value.blockhash,
            last_valid_block_height=resp.value.last_valid_block_height,
        )

    @_transport_errors
    async def get_slot(self, commitment: Optional[str] = None) -> int:
        resp = await self._client.get_slot(commitment)
        return resp.value

    @_transport_errors
    async def send_raw_transaction(
        self,
        payload: bytes,
        skip_preflight: bool = False,
        preflight_commitment: Optional[str] = None,
    ) -> Signature:
        opts = TxOpts(
            skip_preflight=skip_preflight,
            skip_confirmation=True,
            preflight_commitment=preflight_commitment or self.commitment or "finalized",
        )
        resp = await self._client.send_raw_transaction(payload, opts=opts)
        logger.debug("Sent %d bytes to %s: %s", len(payload), self.endpoint, resp.value)
        return resp.value

    @_transport_errors
    async def confirm_transaction(
        self,
        signature: Signature,
        commitment: Optional[str] = None,
        last_valid_block_height: Optional[int] = None,
    ) -> Confirmation:
        if last_valid_block_height is None:
            latest = await self._client.get_latest_blockhash(commitment)
            last_valid_block_height = latest.value.last_valid_block_height

        resp = await self._client.confirm_transaction(
            signature,
            commitment,
            sleep_seconds=0.5,
            last_valid_block_height=last_valid_block_height,
        )
        status = resp.value[0] if resp.value else None
        if status is None:
            raise TransportError(f"No status for {signature} on {self.endpoint}", endpoint=self.endpoint)
        return Confirmation(signature=signature, slot=status.slot, err=status.err)

    @_transport_errors
    async def get_account_info(self, address: Pubkey) -> Optional[Account]:
        resp = await self._client.get_account_info(address)
        return resp.value

    @_transport_errors
    async def request_airdrop(self, address: Pubkey, lamports: int) -> Signature:
        resp = await self._client.request_airdrop(address, lamports)
        return resp.value
