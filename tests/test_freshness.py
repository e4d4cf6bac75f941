import struct

import pytest
from solders.pubkey import Pubkey

from conftest import FakeLedger, run
from ingestion.freshness import (
    FreshnessOracle,
    FreshnessVerdict,
    OffsetSlotDecoder,
    SlotReading,
    is_stale,
)

SLAB = Pubkey.new_unique()
ORACLE = Pubkey.new_unique()


def account_with_slot(slot: int, offset: int, size: int = 128) -> bytes:
    data = bytearray(size)
    struct.pack_into("<Q", data, offset, slot)
    return bytes(data)


def make_oracle(threshold: int = 15) -> FreshnessOracle:
    return FreshnessOracle(
        slab=SLAB,
        oracle=ORACLE,
        decoder=OffsetSlotDecoder(slab_offset=104, oracle_offset=8),
        max_staleness_slots=threshold,
    )


@pytest.mark.parametrize(
    "current, last, expected",
    [
        (1000, 1000, False),
        (1015, 1000, False),  # exactly at threshold
        (1016, 1000, True),
        (1000, 0, True),
    ],
)
def test_is_stale_threshold(current, last, expected):
    assert is_stale(current, last, 15) is expected


def test_fresh_slab():
    ledger = FakeLedger(height=1010, accounts={
        SLAB: account_with_slot(1000, 104),
        ORACLE: account_with_slot(1008, 8),
    })

    verdict = run(make_oracle().check(ledger))

    assert verdict == FreshnessVerdict(stale=False, observed_slot=1010, reference_slot=1008, last_crank_slot=1000)
    assert verdict.age_slots == 10


def test_stale_slab():
    ledger = FakeLedger(height=1100, accounts={
        SLAB: account_with_slot(1000, 104),
        ORACLE: account_with_slot(1095, 8),
    })

    verdict = run(make_oracle().check(ledger))

    assert verdict.stale
    assert verdict.observed_slot == 1100
    assert verdict.reference_slot == 1095


def test_missing_account_is_treated_as_stale():
    ledger = FakeLedger(height=1100, accounts={ORACLE: account_with_slot(1095, 8)})

    verdict = run(make_oracle().check(ledger))

    assert verdict == FreshnessVerdict.unreadable()
    assert verdict.stale and verdict.observed_slot == 0 and verdict.reference_slot == 0


def test_account_fetch_error_is_treated_as_stale():
    ledger = FakeLedger(
        height=1100,
        accounts={SLAB: account_with_slot(1099, 104), ORACLE: account_with_slot(1099, 8)},
        errors={"get_account": [ConnectionError("reset")]},
    )

    verdict = run(make_oracle().check(ledger))

    assert verdict.stale
    assert verdict.observed_slot == 0


def test_undecodable_account_is_treated_as_stale():
    ledger = FakeLedger(height=1100, accounts={SLAB: b"\x00" * 16, ORACLE: account_with_slot(1099, 8)})

    assert run(make_oracle().check(ledger)).stale


def test_height_error_propagates():
    ledger = FakeLedger(errors={"get_height": [ConnectionError("rpc down")]})

    with pytest.raises(ConnectionError):
        run(make_oracle().check(ledger))


def test_uses_injected_decoder():
    class FixedDecoder:
        def decode(self, slab_data, oracle_data):
            return SlotReading(last_crank_slot=500, reference_slot=510)

    oracle = FreshnessOracle(slab=SLAB, oracle=ORACLE, decoder=FixedDecoder(), max_staleness_slots=15)
    ledger = FakeLedger(height=520, accounts={SLAB: b"x", ORACLE: b"y"})

    verdict = run(oracle.check(ledger))

    assert verdict.stale
    assert verdict.last_crank_slot == 500


def test_offset_decoder_reads_little_endian_u64():
    decoder = OffsetSlotDecoder(slab_offset=0, oracle_offset=4)
    slab = (123456789).to_bytes(8, "little")
    oracle = b"\xff" * 4 + (42).to_bytes(8, "little")

    assert decoder.decode(slab, oracle) == SlotReading(last_crank_slot=123456789, reference_slot=42)


def test_offset_decoder_rejects_short_data():
    decoder = OffsetSlotDecoder(slab_offset=8, oracle_offset=0)
    with pytest.raises(ValueError):
        decoder.decode(b"\x00" * 10, b"\x00" * 8)


def test_offset_decoder_rejects_negative_offsets():
    with pytest.raises(ValueError):
        OffsetSlotDecoder(slab_offset=-1, oracle_offset=0)
