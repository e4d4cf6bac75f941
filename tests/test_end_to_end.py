"""Scheduler + oracle + executor wired together against one fake ledger."""
import struct

from conftest import FakeLedger, SleepRecorder, StaticSelector, run
from execution.crank_executor import CrankExecutor
from execution.fee_guard import FeeGuard
from execution.scheduler import CrankScheduler
from ingestion.freshness import FreshnessOracle, OffsetSlotDecoder
from monitoring.metrics import CrankMetrics


def slot_account(slot: int) -> bytes:
    return struct.pack("<Q", slot) + bytes(56)


def build(ledger, signer, addresses, sleep):
    metrics = CrankMetrics()
    selector = StaticSelector({ledger.url: ledger})
    oracle = FreshnessOracle(
        slab=addresses["slab"],
        oracle=addresses["oracle"],
        decoder=OffsetSlotDecoder(slab_offset=0, oracle_offset=0),
        max_staleness_slots=15,
    )
    executor = CrankExecutor(
        signer=signer,
        program_id=addresses["program_id"],
        slab=addresses["slab"],
        oracle=addresses["oracle"],
        selector=selector,
        fee_guard=FeeGuard(5_000_000),
        metrics=metrics,
        max_attempts=5,
        sleep=sleep,
    )
    scheduler = CrankScheduler(
        selector=selector,
        oracle=oracle,
        executor=executor,
        metrics=metrics,
        poll_interval_seconds=5.0,
        sleep=sleep,
    )
    return scheduler, metrics


def stale_ledger(addresses, **kwargs):
    return FakeLedger(
        height=1000,
        accounts={addresses["slab"]: slot_account(900), addresses["oracle"]: slot_account(998)},
        **kwargs,
    )


def test_scenario_a_stale_slab_cranked_on_first_attempt(signer, addresses):
    sleep = SleepRecorder()
    ledger = stale_ledger(addresses, fee=1000)
    scheduler, metrics = build(ledger, signer, addresses, sleep)

    run(scheduler.run(max_iterations=1))

    assert metrics.success_count == 1
    assert metrics.failure_count == 0
    assert metrics.last_success_slot == 1000
    assert len(ledger.submitted) == 1


def test_scenario_b_fee_above_ceiling_changes_nothing(signer, addresses):
    sleep = SleepRecorder()
    ledger = stale_ledger(addresses, fee=6_000_000)
    scheduler, metrics = build(ledger, signer, addresses, sleep)

    run(scheduler.run(max_iterations=1))

    assert metrics.to_dict() == CrankMetrics().to_dict()
    assert ledger.submitted == []


def test_scenario_c_repeated_expiry_pauses_once_and_exhausts(signer, addresses):
    sleep = SleepRecorder()
    expired = [RuntimeError("BlockhashNotFound") for _ in range(5)]
    ledger = stale_ledger(addresses, errors={"submit": expired})
    scheduler, metrics = build(ledger, signer, addresses, sleep)

    run(scheduler.run(max_iterations=1))

    assert sleep.delays.count(30.0) == 1
    assert metrics.failure_count == 5
    assert metrics.success_count == 0
    assert scheduler.iterations == 1


def test_fresh_slab_is_left_alone(signer, addresses):
    sleep = SleepRecorder()
    ledger = FakeLedger(
        height=1000,
        accounts={addresses["slab"]: slot_account(995), addresses["oracle"]: slot_account(999)},
    )
    scheduler, metrics = build(ledger, signer, addresses, sleep)

    run(scheduler.run(max_iterations=3))

    assert "submit" not in ledger.calls
    assert metrics.to_dict() == CrankMetrics().to_dict()
