import hashlib
import logging
import os
import pathlib
import sys

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import charity_ledger`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from charity_ledger.config import LedgerConfig  # noqa: E402
from charity_ledger.keys import Keypair  # noqa: E402
from charity_ledger.observability import ROOT_LOGGER  # noqa: E402
from charity_ledger.program import CharityProgram  # noqa: E402
from charity_ledger.runtime import ManualClock, Runtime  # noqa: E402


SOL = 1_000_000_000


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: long randomized property runs (skipped unless CHARITY_LEDGER_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('CHARITY_LEDGER_RUN_SLOW')
    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set CHARITY_LEDGER_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _reset_ledger_logging():
    """Drop handlers installed by configure_logging so streams don't leak across tests."""
    yield
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.propagate = True
    root.setLevel(logging.NOTSET)


def keypair_for(name: str) -> Keypair:
    """Deterministic test keypair."""
    return Keypair.from_seed(hashlib.sha256(f"test-wallet:{name}".encode()).digest())


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(1_700_000_000)


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig()


@pytest.fixture
def small_reserve_config() -> LedgerConfig:
    """Reserve low enough for the sub-SOL balances used in scenarios."""
    return LedgerConfig(min_reserve=100_000)


@pytest.fixture
def runtime(clock, config) -> Runtime:
    return Runtime(clock=clock, config=config)


@pytest.fixture
def program(runtime) -> CharityProgram:
    return CharityProgram(runtime)


@pytest.fixture
def small_runtime(clock, small_reserve_config) -> Runtime:
    return Runtime(clock=clock, config=small_reserve_config)


@pytest.fixture
def small_program(small_runtime) -> CharityProgram:
    return CharityProgram(small_runtime)


@pytest.fixture
def wallet(runtime):
    """Factory: ``wallet("alice", lamports)`` returns a funded keypair."""
    def make(name: str, lamports: int = 10 * SOL, rt: Runtime = None) -> Keypair:
        kp = keypair_for(name)
        if lamports:
            (rt or runtime).airdrop(kp.address, lamports)
        return kp
    return make


@pytest.fixture
def alice(wallet) -> Keypair:
    return wallet("alice")


@pytest.fixture
def bob(wallet) -> Keypair:
    return wallet("bob")


@pytest.fixture
def carol(wallet) -> Keypair:
    return wallet("carol")


@pytest.fixture
def charity(program, alice):
    """A live charity owned by alice."""
    return program.create_charity(alice.address, "Water Fund", "Clean water for all")
