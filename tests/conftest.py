import os
import pathlib
import sys
from typing import Callable, List, Optional, Tuple

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import stakereg`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from stakereg.core.adjudicator import Adjudicator, AdjudicatorDirectory, Delegation  # noqa: E402
from stakereg.core.config import ConfigManager, RegistryParameters  # noqa: E402
from stakereg.core.events import Event, EventBus  # noqa: E402
from stakereg.core.ledger import LedgerClock, OperatorLedger, Registration, registration_message  # noqa: E402
from stakereg.core.vault import CollateralVault  # noqa: E402
from stakereg.signing import Ed25519Gateway, KeyPair  # noqa: E402


OPERATOR = "0x" + "11" * 20
CHALLENGER = "0x" + "22" * 20
STRANGER = "0x" + "33" * 20
ADJUDICATOR = "0x" + "aa" * 20

ETH = 10**18
GWEI = 10**9
WINDOW = 100
DELAY = 150
REGISTRATION_DOMAIN = b"stakereg/registration/v1"
GENESIS_TIME = 1_700_000_000


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests, e.g. pure-Python BLS pairings (skipped unless STAKEREG_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: List[pytest.Item]) -> None:
    run_slow = _env_flag('STAKEREG_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set STAKEREG_RUN_SLOW=1 to enable'))


# =============================================================================
# Adjudicators used across the suite
# =============================================================================

class StaticAdjudicator(Adjudicator):
    """Returns a fixed verdict and records what it was asked."""

    def __init__(self, slash_gwei: int = 0, reward_gwei: int = 0, domain: bytes = b"test/adjudicator/v1"):
        self.verdict: object = (slash_gwei, reward_gwei)
        self.domain = domain
        self.calls: List[Tuple[Delegation, bytes]] = []

    def domain_separator(self) -> bytes:
        return self.domain

    def slash(self, delegation: Delegation, evidence: bytes) -> Tuple[int, int]:
        self.calls.append((delegation, evidence))
        return self.verdict  # type: ignore[return-value]


class RejectingAdjudicator(StaticAdjudicator):
    """Finds no fault in any evidence."""

    def slash(self, delegation: Delegation, evidence: bytes) -> Tuple[int, int]:
        self.calls.append((delegation, evidence))
        raise RuntimeError("no fault")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def params() -> RegistryParameters:
    return RegistryParameters(
        min_collateral_wei=ETH // 10,
        fraud_proof_window=WINDOW,
        min_unregistration_delay=WINDOW,
        registration_domain=REGISTRATION_DOMAIN,
    )


@pytest.fixture
def gateway() -> Ed25519Gateway:
    return Ed25519Gateway()


@pytest.fixture
def clock() -> LedgerClock:
    return LedgerClock(height=1000, timestamp=GENESIS_TIME, seconds_per_block=12)


@pytest.fixture
def vault() -> CollateralVault:
    return CollateralVault()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(bus: EventBus) -> List[Event]:
    seen: List[Event] = []
    bus.subscribe()(seen.append)
    return seen


@pytest.fixture
def ledger(params, gateway, vault, clock, bus) -> OperatorLedger:
    return OperatorLedger(params, gateway, vault=vault, clock=clock, event_bus=bus)


@pytest.fixture
def keys(gateway) -> List[KeyPair]:
    return [gateway.generate_keypair(bytes([i + 1]) * 32) for i in range(4)]


@pytest.fixture
def make_batch(gateway, keys) -> Callable[..., List[Registration]]:
    """Sign one registration per key; `bad` lists indexes to sign over the wrong terms."""

    def _make(
        address: str = OPERATOR,
        delay: int = DELAY,
        bad: Tuple[int, ...] = (),
        count: Optional[int] = None,
    ) -> List[Registration]:
        good_msg = registration_message(address, delay)
        bad_msg = registration_message(address, delay + 1)
        regs = []
        for i, kp in enumerate(keys[: count or len(keys)]):
            msg = bad_msg if i in bad else good_msg
            regs.append(Registration(kp.public_key, gateway.sign(msg, kp.secret_key, REGISTRATION_DOMAIN)))
        return regs

    return _make


@pytest.fixture
def adjudicator() -> StaticAdjudicator:
    return StaticAdjudicator(slash_gwei=GWEI // 10, reward_gwei=GWEI // 20)


@pytest.fixture
def directory(adjudicator) -> AdjudicatorDirectory:
    d = AdjudicatorDirectory()
    d.register(ADJUDICATOR, adjudicator)
    return d


@pytest.fixture
def fresh_config():
    ConfigManager.reset()
    yield ConfigManager()
    ConfigManager.reset()
