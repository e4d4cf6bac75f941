"""execution/crank_executor.py

Keeper crank execution with retry, backoff and blockhash recovery.

Per invocation: BUILD -> FEE_CHECK -> SIMULATE -> SUBMIT, strictly in
order, retried from BUILD on failure up to `max_attempts`.

HARD RULES:
- Fresh blockhash every attempt (never reused across attempts)
- Never submit what simulation says will revert
- Fee veto is a clean exit: no retry, no failure count
- execute() never raises; the scheduler must keep running
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from execution.fee_guard import FeeGuard
from execution.transaction_builder import build_crank_message, sign_crank_transaction
from ingestion.rpc.failover import ConnectionSelector, NoHealthyEndpointError
from ingestion.rpc.ledger import LedgerClient
from monitoring.alerts import ALERT_CRITICAL, compose_crank_failure_alert
from monitoring.metrics import CrankMetrics

logger = logging.getLogger(__name__)

# Error signals meaning "validity anchor no longer accepted"
BLOCKHASH_EXPIRY_MARKERS = (
    "blockhashnotfound",
    "blockhash not found",
    "block height exceeded",
    "blockheightexceeded",
)

Sleep = Callable[[float], Awaitable[None]]
AlertSink = Callable[[str, str], object]


class CrankOutcome(Enum):
    """Terminal result of one execute() invocation."""
    SUCCESS = "success"
    FEE_VETOED = "fee_vetoed"
    SIMULATION_FAILED = "simulation_failed"
    EXHAUSTED = "exhausted"


@dataclass
class CrankAttempt:
    """
    Retry state of one invocation. Discarded when execute() returns.

    Attributes:
        index: Attempts already made
        delay_seconds: Backoff before the next attempt
        consecutive_expiry: Blockhash-expiry failures in a row
    """
    index: int = 0
    delay_seconds: float = 1.0
    consecutive_expiry: int = 0


def is_blockhash_expired(error: BaseException) -> bool:
    text = f"{type(error).__name__}: {error}".lower()
    return any(marker in text for marker in BLOCKHASH_EXPIRY_MARKERS)


class CrankExecutor:
    """Builds, prices, simulates and submits the keeper crank."""

    def __init__(
        self,
        *,
        signer: Keypair,
        program_id: Pubkey,
        slab: Pubkey,
        oracle: Pubkey,
        selector: ConnectionSelector,
        fee_guard: FeeGuard,
        metrics: CrankMetrics,
        max_attempts: int = 5,
        base_delay_seconds: float = 1.0,
        expiry_threshold: int = 3,
        penalty_pause_seconds: float = 30.0,
        alert: Optional[AlertSink] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.signer = signer
        self.program_id = program_id
        self.slab = slab
        self.oracle = oracle
        self.selector = selector
        self.fee_guard = fee_guard
        self.metrics = metrics
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.expiry_threshold = expiry_threshold
        self.penalty_pause_seconds = penalty_pause_seconds
        self._alert = alert
        self._sleep = sleep

    async def execute(self, connection: LedgerClient) -> CrankOutcome:
        """Run one crank invocation to a terminal outcome.

        Args:
            connection: Connection to start with; replaced through the
                selector between retries.

        Returns:
            CrankOutcome (never raises for ledger / transport errors).
        """
        attempt = CrankAttempt(delay_seconds=self.base_delay_seconds)
        last_error = ""

        while attempt.index < self.max_attempts:
            try:
                return await self._attempt(connection, attempt)
            except Exception as e:
                last_error = str(e) or type(e).__name__
                connection = await self._on_attempt_failed(attempt, e, connection)

        logger.critical(
            f"[crank] CRITICAL ERROR: Failed to execute crank instruction after "
            f"{self.max_attempts} attempts with exponential backoff."
        )
        logger.info(self.metrics.summary())
        await self._send_alert(compose_crank_failure_alert(self.max_attempts, self.metrics.to_dict(), last_error))
        return CrankOutcome.EXHAUSTED

    async def _attempt(self, connection: LedgerClient, attempt: CrankAttempt) -> CrankOutcome:
        logger.info(f"[crank] Constructing keeper-crank instruction (attempt {attempt.index + 1}/{self.max_attempts})...")

        # BUILD
        anchor = await connection.get_latest_blockhash()
        slot = await connection.get_height()
        message = build_crank_message(
            self.program_id, self.signer.pubkey(), self.slab, self.oracle, anchor,
        )

        # FEE_CHECK
        estimate = await self.fee_guard.estimate(connection, message)
        if estimate is not None and estimate.vetoed:
            return CrankOutcome.FEE_VETOED

        # SIMULATE
        sim = await connection.simulate(message)
        if not sim.success:
            logger.error(f"[crank] Simulation failed: {sim.err}. Skipping execution to save base fees.")
            for line in sim.logs[-5:]:
                logger.debug(f"[crank]   {line}")
            self.metrics.record_failure()
            logger.info(self.metrics.summary())
            return CrankOutcome.SIMULATION_FAILED

        # SUBMIT
        tx = sign_crank_transaction(message, self.signer, anchor)
        signature = await connection.submit(bytes(tx))
        logger.info(f"[crank] Success! Crank Tx: {signature}")

        self.metrics.record_success(slot)
        logger.info(self.metrics.summary())
        return CrankOutcome.SUCCESS

    async def _on_attempt_failed(
        self,
        attempt: CrankAttempt,
        error: Exception,
        connection: LedgerClient,
    ) -> LedgerClient:
        logger.warning(f"[crank] Crank execution failed: {error}")

        if is_blockhash_expired(error):
            attempt.consecutive_expiry += 1
            self.metrics.set_blockhash_streak(attempt.consecutive_expiry)
            if attempt.consecutive_expiry >= self.expiry_threshold:
                logger.critical(
                    f"[crank] CRITICAL WARNING: Repeated blockhash expiration. Network may be congested. "
                    f"Taking {self.penalty_pause_seconds:g}s penalty pause..."
                )
                await self._sleep(self.penalty_pause_seconds)
                attempt.consecutive_expiry = 0
                self.metrics.set_blockhash_streak(0)
        else:
            attempt.consecutive_expiry = 0
            self.metrics.set_blockhash_streak(0)

        self.metrics.record_failure()
        attempt.index += 1
        if attempt.index >= self.max_attempts:
            return connection

        logger.info(f"[crank] Exponential backoff. Retrying in {attempt.delay_seconds:g}s...")
        await self._sleep(attempt.delay_seconds)
        attempt.delay_seconds *= 2

        # Refresh connection in case it dropped
        try:
            return await self.selector.acquire()
        except NoHealthyEndpointError as e:
            logger.error(f"[crank] Could not re-acquire connection, keeping current one: {e}")
            return connection

    async def _send_alert(self, text: str) -> None:
        if self._alert is None:
            return
        try:
            await asyncio.to_thread(self._alert, text, ALERT_CRITICAL)
        except Exception as e:
            logger.error(f"[crank] Alert delivery failed: {e}")
