import asyncio
from typing import Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from execution.crank_executor import CrankExecutor
from execution.fee_guard import FeeGuard
from ingestion.rpc.failover import ConnectionSelector
from ingestion.rpc.ledger import BlockhashAnchor, SimulationResult
from monitoring.metrics import CrankMetrics


class FakeLedger:
    """Scripted LedgerClient.

    `errors` maps a method name to a list of exceptions raised by
    successive calls of that method; once the list is empty calls succeed.
    """

    def __init__(
        self,
        url: str = "http://primary",
        height: int = 1000,
        accounts: Optional[Dict[Pubkey, Optional[bytes]]] = None,
        fee: Optional[int] = 1000,
        sim_err: Optional[str] = None,
        errors: Optional[Dict[str, List[Exception]]] = None,
    ):
        self.url = url
        self.height = height
        self.accounts = accounts or {}
        self.fee = fee
        self.sim_err = sim_err
        self.errors = {k: list(v) for k, v in (errors or {}).items()}
        self.calls: List[str] = []
        self.submitted: List[bytes] = []
        self.blockhashes: List[Hash] = []
        self.closed = False

    def _maybe_fail(self, method: str) -> None:
        self.calls.append(method)
        pending = self.errors.get(method)
        if pending:
            raise pending.pop(0)

    async def get_height(self) -> int:
        self._maybe_fail("get_height")
        return self.height

    async def get_account(self, address: Pubkey) -> Optional[bytes]:
        self._maybe_fail("get_account")
        return self.accounts.get(address)

    async def get_latest_blockhash(self) -> BlockhashAnchor:
        self._maybe_fail("get_latest_blockhash")
        blockhash = Hash.new_unique()
        self.blockhashes.append(blockhash)
        return BlockhashAnchor(blockhash=blockhash, last_valid_block_height=self.height + 150)

    async def estimate_fee(self, message) -> Optional[int]:
        self._maybe_fail("estimate_fee")
        return self.fee

    async def simulate(self, message) -> SimulationResult:
        self._maybe_fail("simulate")
        return SimulationResult(err=self.sim_err, logs=["Program log: keeper_crank"])

    async def submit(self, raw_tx: bytes) -> str:
        self._maybe_fail("submit")
        self.submitted.append(raw_tx)
        return "5igNaTuRe"

    async def close(self) -> None:
        self.closed = True


class SleepRecorder:
    """Async sleep stand-in that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class StaticSelector(ConnectionSelector):
    """Selector whose endpoints are FakeLedgers keyed by URL."""

    def __init__(self, ledgers: Dict[str, FakeLedger]):
        super().__init__(list(ledgers), connect=lambda url: ledgers[url], probe_timeout_seconds=1.0)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def metrics() -> CrankMetrics:
    return CrankMetrics()


@pytest.fixture
def signer() -> Keypair:
    return Keypair()


@pytest.fixture
def addresses():
    return {
        "program_id": Pubkey.new_unique(),
        "slab": Pubkey.new_unique(),
        "oracle": Pubkey.new_unique(),
    }


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def make_executor(signer, addresses, metrics, sleep):
    def factory(selector_ledgers=None, max_fee_lamports=5_000_000, max_attempts=5, alert=None):
        ledgers = selector_ledgers or {"http://primary": FakeLedger()}
        return CrankExecutor(
            signer=signer,
            program_id=addresses["program_id"],
            slab=addresses["slab"],
            oracle=addresses["oracle"],
            selector=StaticSelector(ledgers),
            fee_guard=FeeGuard(max_fee_lamports),
            metrics=metrics,
            max_attempts=max_attempts,
            base_delay_seconds=1.0,
            expiry_threshold=3,
            penalty_pause_seconds=30.0,
            alert=alert,
            sleep=sleep,
        )

    return factory
