#!/usr/bin/env python3
"""ops/crank_bot.py

Percolator slab crank keeper entrypoint.

Usage:
    crank-bot [--config keeper.yaml] [--log-level INFO] [--once]

Startup is two-phase:
1. Init (fallible): config, key material, addresses, account layout.
   Any error here exits the process with status 1.
2. Loop: the scheduler, which absorbs every polling / execution error.

Environment:
    CRANK_KEYPAIR_JSON | CRANK_KEYPAIR_PATH   crank signer (required)
    PERCOLATOR_PROGRAM_ID, PERCOLATOR_SLAB, ORACLE_ACCOUNT (required)
    SLAB_LAST_CRANK_OFFSET, ORACLE_SLOT_OFFSET (required unless in --config)
    PRIMARY_RPC_URL, FALLBACK_RPC_URL, CRANK_CHECK_INTERVAL_MS, ...
"""

from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional

from solders.keypair import Keypair

from config.keeper_config import ConfigError, KeeperConfig, load_keeper_config
from config.wallet import WalletError, load_crank_keypair, parse_pubkey
from execution.crank_executor import CrankExecutor
from execution.fee_guard import FeeGuard
from execution.scheduler import CrankScheduler
from ingestion.freshness import FreshnessOracle, OffsetSlotDecoder
from ingestion.rpc.failover import ConnectionSelector
from ingestion.rpc.ledger import SolanaLedgerClient
from monitoring.alerts import TelegramBot
from monitoring.metrics import CrankMetrics, MetricsReporter

logger = logging.getLogger("crank_bot")


@dataclass
class Keeper:
    """Wired keeper components."""
    config: KeeperConfig
    selector: ConnectionSelector
    oracle: FreshnessOracle
    executor: CrankExecutor
    metrics: CrankMetrics
    reporter: MetricsReporter
    scheduler: CrankScheduler


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Percolator slab crank keeper")
    parser.add_argument("--config", type=str, default=None, help="Optional keeper YAML (env vars override it)")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level [default: INFO]")
    parser.add_argument("--once", action="store_true", help="Run a single poll/crank iteration and exit")
    return parser.parse_args(argv)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )


def build_keeper(config: KeeperConfig, keypair: Keypair) -> Keeper:
    """Wire all keeper components from a validated config.

    Raises:
        ConfigError: If an address or the account layout is invalid.
    """
    program_id = parse_pubkey("program_id", config.program_id)
    slab = parse_pubkey("slab_address", config.slab_address)
    oracle = parse_pubkey("oracle_address", config.oracle_address)

    if config.slab_last_crank_offset is None or config.oracle_slot_offset is None:
        raise ConfigError(
            "slab_last_crank_offset and oracle_slot_offset are required "
            "(byte offsets of the u64 slot fields)"
        )

    connect = functools.partial(
        SolanaLedgerClient.connect,
        commitment=config.commitment,
        timeout_seconds=config.rpc_timeout_seconds,
    )
    selector = ConnectionSelector(
        config.endpoints,
        connect=connect,
        probe_timeout_seconds=config.probe_timeout_seconds,
    )
    freshness = FreshnessOracle(
        slab=slab,
        oracle=oracle,
        decoder=OffsetSlotDecoder(config.slab_last_crank_offset, config.oracle_slot_offset),
        max_staleness_slots=config.max_staleness_slots,
    )

    metrics = CrankMetrics()
    reporter = MetricsReporter(
        metrics,
        interval_seconds=config.metrics_report_interval_seconds,
        csv_path=config.metrics_csv_path,
    )

    alert = TelegramBot.from_env().send_message if config.alerts_enabled else None

    executor = CrankExecutor(
        signer=keypair,
        program_id=program_id,
        slab=slab,
        oracle=oracle,
        selector=selector,
        fee_guard=FeeGuard(config.max_fee_lamports),
        metrics=metrics,
        max_attempts=config.max_attempts,
        base_delay_seconds=config.retry_base_delay_seconds,
        expiry_threshold=config.blockhash_expiry_threshold,
        penalty_pause_seconds=config.blockhash_penalty_seconds,
        alert=alert,
    )
    scheduler = CrankScheduler(
        selector=selector,
        oracle=freshness,
        executor=executor,
        metrics=metrics,
        reporter=reporter,
        poll_interval_seconds=config.poll_interval_seconds,
    )

    return Keeper(
        config=config,
        selector=selector,
        oracle=freshness,
        executor=executor,
        metrics=metrics,
        reporter=reporter,
        scheduler=scheduler,
    )


async def _run(keeper: Keeper, once: bool) -> None:
    if once:
        try:
            await keeper.scheduler.run(max_iterations=1)
        finally:
            await keeper.selector.close()
            keeper.reporter.report()
    else:
        await keeper.scheduler.start()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    # Phase 1: fallible init
    try:
        config = load_keeper_config(args.config)
        keypair = load_crank_keypair()
        keeper = build_keeper(config, keypair)
    except (ConfigError, WalletError) as e:
        logger.critical(f"[crank_bot] Startup failed: {e}")
        return 1

    logger.info("[crank_bot] Starting Sakura Crank Bot Service...")
    logger.info(f"[crank_bot] Crank wallet: {keypair.pubkey()}")
    logger.info(f"[crank_bot] Endpoints: {', '.join(config.endpoints)}")

    # Phase 2: loop
    try:
        asyncio.run(_run(keeper, args.once))
    except KeyboardInterrupt:
        logger.info("[crank_bot] Interrupted by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
