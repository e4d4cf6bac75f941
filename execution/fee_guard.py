"""execution/fee_guard.py

Gas cost guardrail for the crank transaction.

A veto is a deliberate cost-avoidance decision, not an error: the
executor exits cleanly without retrying or counting a failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from solders.message import Message

from ingestion.rpc.ledger import LedgerClient

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


@dataclass(frozen=True)
class FeeEstimate:
    """Priced message vs. the configured ceiling."""
    lamports: int
    ceiling_lamports: int

    @property
    def vetoed(self) -> bool:
        return self.lamports > self.ceiling_lamports


class FeeGuard:
    """Prices a prepared message and vetoes it above `max_fee_lamports`."""

    def __init__(self, max_fee_lamports: int = 5_000_000):
        self.max_fee_lamports = max_fee_lamports

    async def estimate(self, connection: LedgerClient, message: Message) -> Optional[FeeEstimate]:
        """Estimate the fee for an unsent message.

        Returns:
            FeeEstimate, or None if the node could not price the message
            (e.g. blockhash unknown to it yet).

        Raises:
            Whatever the connection raises; the executor classifies it.
        """
        lamports = await connection.estimate_fee(message)
        if lamports is None:
            logger.info("[fee_guard] Fee unavailable for message, proceeding without guard")
            return None

        estimate = FeeEstimate(lamports=int(lamports), ceiling_lamports=self.max_fee_lamports)
        if estimate.vetoed:
            logger.warning(
                f"[fee_guard] Gas cost too high ({estimate.lamports} lamports, "
                f"{estimate.lamports / LAMPORTS_PER_SOL:.6f} SOL). "
                f"Max allowed: {self.max_fee_lamports}. Skipping execution."
            )
        return estimate
