"""
ingestion/rpc/ledger.py

LedgerClient: the async RPC surface the keeper consumes.

Everything above this module talks to a LedgerClient, never to
solana-py directly, so the selector / oracle / executor can be driven
by a scripted fake in tests.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.models import TxOpts
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockhashAnchor:
    """Transaction validity anchor: recent blockhash + last block height it is accepted at."""
    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of a dry run."""
    err: Optional[str] = None
    logs: List[str] = field(default_factory=list)
    units_consumed: int = 0

    @property
    def success(self) -> bool:
        return self.err is None


class LedgerClient(Protocol):
    """
    Live session against one RPC endpoint.

    Every call may raise (transport or ledger-reported error).
    """
    url: str

    async def get_height(self) -> int:
        ...

    async def get_account(self, address: Pubkey) -> Optional[bytes]:
        """Raw account data, or None if the account does not exist."""
        ...

    async def get_latest_blockhash(self) -> BlockhashAnchor:
        ...

    async def estimate_fee(self, message: Message) -> Optional[int]:
        """Fee in lamports, or None if the node cannot price the message."""
        ...

    async def simulate(self, message: Message) -> SimulationResult:
        ...

    async def submit(self, raw_tx: bytes) -> str:
        """Send a signed, serialized transaction. Returns the signature."""
        ...

    async def close(self) -> None:
        ...


class SolanaLedgerClient:
    """LedgerClient backed by solana-py's AsyncClient."""

    def __init__(
        self,
        url: str,
        commitment: str = "confirmed",
        timeout_seconds: float = 10.0,
    ):
        self.url = url
        self._commitment = Commitment(commitment)
        self._client = AsyncClient(url, commitment=self._commitment, timeout=timeout_seconds)

    @classmethod
    def connect(cls, url: str, commitment: str = "confirmed", timeout_seconds: float = 10.0) -> "SolanaLedgerClient":
        return cls(url, commitment=commitment, timeout_seconds=timeout_seconds)

    async def get_height(self) -> int:
        resp = await self._client.get_slot(self._commitment)
        return int(resp.value)

    async def get_account(self, address: Pubkey) -> Optional[bytes]:
        resp = await self._client.get_account_info(address, commitment=self._commitment)
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def get_latest_blockhash(self) -> BlockhashAnchor:
        resp = await self._client.get_latest_blockhash(self._commitment)
        return BlockhashAnchor(
            blockhash=resp.value.blockhash,
            last_valid_block_height=int(resp.value.last_valid_block_height),
        )

    async def estimate_fee(self, message: Message) -> Optional[int]:
        resp = await self._client.get_fee_for_message(message, commitment=self._commitment)
        return resp.value

    async def simulate(self, message: Message) -> SimulationResult:
        # Unsigned dry run: signatures are not verified
        tx = Transaction.new_unsigned(message)
        resp = await self._client.simulate_transaction(tx, sig_verify=False, commitment=self._commitment)
        value = resp.value
        return SimulationResult(
            err=str(value.err) if value.err is not None else None,
            logs=list(value.logs or []),
            units_consumed=int(value.units_consumed or 0),
        )

    async def submit(self, raw_tx: bytes) -> str:
        opts = TxOpts(preflight_commitment=self._commitment)
        resp = await self._client.send_raw_transaction(raw_tx, opts=opts)
        return str(resp.value)

    async def close(self) -> None:
        await self._client.close()

    def __repr__(self) -> str:
        return f"SolanaLedgerClient({self.url!r})"
