"""ingestion/freshness.py - Slab Freshness Check

Decides whether the Percolator slab needs a keeper crank.

Architecture:
- `is_stale()`: Pure function (slots -> verdict)
- `SlabDecoder`: Injected account-bytes -> slots decoding
- `FreshnessOracle`: Impure class for the actual RPC reads

HARD RULES:
1. Purity separation: threshold logic is pure, reads are impure.
2. Fail-safe: unreadable accounts -> stale (a missed crank costs more
   than a wasted attempt, and the fee guard bounds the waste).
3. No caching: every check reads fresh state.
"""

from __future__ import annotations

import asyncio
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Protocol

from solders.pubkey import Pubkey

from ingestion.rpc.ledger import LedgerClient

logger = logging.getLogger(__name__)

U64_LE = struct.Struct("<Q")


@dataclass(frozen=True)
class FreshnessVerdict:
    """Snapshot of one freshness poll."""
    stale: bool
    observed_slot: int  # Network slot at poll time
    reference_slot: int  # Oracle's reference slot
    last_crank_slot: int = 0  # Slab's last refresh slot

    @classmethod
    def unreadable(cls) -> "FreshnessVerdict":
        return cls(stale=True, observed_slot=0, reference_slot=0, last_crank_slot=0)

    @property
    def age_slots(self) -> int:
        return max(0, self.observed_slot - self.last_crank_slot)


@dataclass(frozen=True)
class SlotReading:
    """Decoded slot fields."""
    last_crank_slot: int
    reference_slot: int


class SlabDecoder(Protocol):
    """
    Extracts slot fields from raw account data.

    Pre: `slab_data` / `oracle_data` are the raw bytes of the slab and
         oracle accounts.
    Post: returns two non-negative integers; raises ValueError if the
          bytes cannot be decoded.
    """

    def decode(self, slab_data: bytes, oracle_data: bytes) -> SlotReading:
        ...


class OffsetSlotDecoder:
    """Reads little-endian u64 slots at fixed byte offsets.

    Offsets come from the operator (config); none are assumed here.
    """

    def __init__(self, slab_offset: int, oracle_offset: int):
        if slab_offset < 0 or oracle_offset < 0:
            raise ValueError("offsets must be non-negative")
        self.slab_offset = slab_offset
        self.oracle_offset = oracle_offset

    def decode(self, slab_data: bytes, oracle_data: bytes) -> SlotReading:
        return SlotReading(
            last_crank_slot=self._read_u64(slab_data, self.slab_offset, "slab"),
            reference_slot=self._read_u64(oracle_data, self.oracle_offset, "oracle"),
        )

    @staticmethod
    def _read_u64(data: bytes, offset: int, name: str) -> int:
        end = offset + U64_LE.size
        if len(data) < end:
            raise ValueError(f"{name} account too short: {len(data)} bytes, need {end}")
        return U64_LE.unpack_from(data, offset)[0]


def is_stale(current_slot: int, last_crank_slot: int, max_staleness_slots: int) -> bool:
    """Pure threshold check: more than `max_staleness_slots` old => stale."""
    return current_slot - last_crank_slot > max_staleness_slots


class FreshnessOracle:
    """Polls slab + oracle accounts and applies the staleness threshold.

    Height read errors propagate (connection-level problem, the caller
    should re-select its connection). Account read or decode problems
    are absorbed into a conservative stale verdict.
    """

    def __init__(
        self,
        slab: Pubkey,
        oracle: Pubkey,
        decoder: SlabDecoder,
        max_staleness_slots: int = 15,
    ):
        self.slab = slab
        self.oracle = oracle
        self.decoder = decoder
        self.max_staleness_slots = max_staleness_slots

    async def check(self, connection: LedgerClient) -> FreshnessVerdict:
        current_slot = await connection.get_height()

        oracle_data, slab_data = await asyncio.gather(
            connection.get_account(self.oracle),
            connection.get_account(self.slab),
            return_exceptions=True,
        )

        problem = self._account_problem("oracle", oracle_data) or self._account_problem("slab", slab_data)
        if problem:
            logger.warning(f"[freshness] Error checking slab freshness: {problem}")
            return FreshnessVerdict.unreadable()

        try:
            reading = self.decoder.decode(slab_data, oracle_data)
        except (ValueError, struct.error) as e:
            logger.warning(f"[freshness] Could not decode slot fields: {e}")
            return FreshnessVerdict.unreadable()

        stale = is_stale(current_slot, reading.last_crank_slot, self.max_staleness_slots)
        verdict = FreshnessVerdict(
            stale=stale,
            observed_slot=current_slot,
            reference_slot=reading.reference_slot,
            last_crank_slot=reading.last_crank_slot,
        )
        logger.debug(
            f"[freshness] slot={current_slot} last_crank={reading.last_crank_slot} "
            f"oracle={reading.reference_slot} stale={stale}"
        )
        return verdict

    @staticmethod
    def _account_problem(name: str, result: object) -> Optional[str]:
        if isinstance(result, BaseException):
            return f"could not fetch {name} account: {result}"
        if result is None:
            return f"{name} account not found"
        return None
