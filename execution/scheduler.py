"""
Crank Scheduler

Top-level keeper loop: poll freshness, crank when stale, sleep, repeat.

HARD RULES:
- At most one crank invocation in flight (awaited before the next poll)
- Any error inside an iteration is absorbed; the loop re-selects its
  connection and keeps going
- Graceful shutdown on signals (between iterations)
"""

import asyncio
import logging
import signal
from typing import Awaitable, Callable, Optional

from execution.crank_executor import CrankExecutor, CrankOutcome
from ingestion.freshness import FreshnessOracle
from ingestion.rpc.failover import ConnectionSelector, NoHealthyEndpointError
from ingestion.rpc.ledger import LedgerClient
from monitoring.metrics import CrankMetrics, MetricsReporter

logger = logging.getLogger(__name__)


class CrankScheduler:
    """
    Cooperative keeper loop.

    Usage:
        scheduler = CrankScheduler(
            selector=selector,
            oracle=oracle,
            executor=executor,
            metrics=metrics,
            poll_interval_seconds=5.0,
        )

        await scheduler.start()  # Runs until shutdown
    """

    def __init__(
        self,
        selector: ConnectionSelector,
        oracle: FreshnessOracle,
        executor: CrankExecutor,
        metrics: CrankMetrics,
        reporter: Optional[MetricsReporter] = None,
        poll_interval_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the scheduler.

        Args:
            selector: Endpoint failover, source of connections
            oracle: Slab freshness check
            executor: Crank executor
            metrics: Shared crank counters
            reporter: Optional periodic metrics reporter
            poll_interval_seconds: Sleep between iterations
            sleep: Awaitable sleep (injectable for tests)
        """
        self.selector = selector
        self.oracle = oracle
        self.executor = executor
        self.metrics = metrics
        self.reporter = reporter
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep

        self._connection: Optional[LedgerClient] = None
        self._running = False
        self._shutdown_requested = False
        self._iterations = 0

    @property
    def connection(self) -> Optional[LedgerClient]:
        return self._connection

    @property
    def is_running(self) -> bool:
        """Check if the loop is running."""
        return self._running

    @property
    def iterations(self) -> int:
        return self._iterations

    async def _connect_until_ready(self) -> None:
        """Startup acquisition: retry every poll interval until an endpoint answers."""
        while not self._shutdown_requested:
            try:
                self._connection = await self.selector.acquire()
                return
            except NoHealthyEndpointError as e:
                logger.error(f"[scheduler] No RPC endpoint available at startup: {e}")
                await self._sleep(self.poll_interval_seconds)

    async def _reacquire(self) -> None:
        try:
            self._connection = await self.selector.acquire()
        except NoHealthyEndpointError as e:
            logger.error(f"[scheduler] Reconnect failed, will retry next iteration: {e}")

    async def run_once(self) -> Optional[CrankOutcome]:
        """One poll (+ crank if stale).

        Returns:
            The crank outcome, or None if no crank was attempted.
        """
        if self._connection is None:
            await self._reacquire()
            if self._connection is None:
                return None

        try:
            verdict = await self.oracle.check(self._connection)

            if not verdict.stale:
                logger.debug(f"[scheduler] Slab fresh at slot {verdict.observed_slot}. Sleeping...")
                return None

            logger.info(
                f"[scheduler] Slab is STALE at slot {verdict.observed_slot} "
                f"(oracle at {verdict.reference_slot}, last crank {verdict.last_crank_slot}). Triggering crank..."
            )
            outcome = await self.executor.execute(self._connection)

            # Executor may have failed over mid-invocation
            if self.selector.active is not None:
                self._connection = self.selector.active
            return outcome

        except Exception as e:
            logger.error(f"[scheduler] Loop execution error: {e}")
            await self._reacquire()
            return None

    async def run(self, max_iterations: Optional[int] = None) -> None:
        """Main keeper loop.

        Args:
            max_iterations: Stop after this many iterations (None = forever).
        """
        self._running = True
        logger.info("[scheduler] Starting crank loop...")

        try:
            await self._connect_until_ready()

            while not self._shutdown_requested:
                await self.run_once()
                self._iterations += 1

                if self.reporter is not None:
                    self.reporter.maybe_report()

                if max_iterations is not None and self._iterations >= max_iterations:
                    break

                await self._sleep(self.poll_interval_seconds)
        finally:
            self._running = False
            logger.info("[scheduler] Crank loop stopped")

    async def start(self) -> None:
        """Install signal handlers and run forever."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._on_shutdown)
            except NotImplementedError:
                # Windows event loops
                pass

        try:
            await self.run()
        finally:
            await self.selector.close()
            if self.reporter is not None:
                self.reporter.report()

    def _on_shutdown(self) -> None:
        """Handle shutdown signal."""
        logger.info("[scheduler] Shutdown signal received")
        self._shutdown_requested = True

    def stop(self) -> None:
        """Request a graceful stop after the current iteration."""
        logger.info("[scheduler] Stopping...")
        self._shutdown_requested = True
