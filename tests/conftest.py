import pytest

from vrf_raffle.blockchain.mocks import InMemoryLedger, MockVRFCoordinator
from vrf_raffle.lottery.engine import Raffle
from vrf_raffle.lottery.event_manager import MemoryStore
from vrf_raffle.lottery.models import RoundConfig

ENTRANCE_FEE = 100
INTERVAL = 30
KEY_HASH = "0x474e34a077df58807dbe9c96d3c009b23b3c6d0cce433e59bbf5b34f823bc56c"
BASE_FEE = 25 * 10**16
GAS_PRICE_LINK = 10**9
CALLBACK_GAS_LIMIT = 500000


class FakeClock:
    """Controllable replacement for the wall clock."""

    def __init__(self, start: int = 1_700_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class FailingCoordinator:
    def __init__(self) -> None:
        self.calls = 0

    async def request_random_words(self, *args, **kwargs):
        self.calls += 1
        raise RuntimeError("subscription not funded")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def coordinator():
    return MockVRFCoordinator(base_fee=BASE_FEE, gas_price_link=GAS_PRICE_LINK)


@pytest.fixture
def subscription_id(coordinator):
    sub_id = coordinator.create_subscription()
    coordinator.fund_subscription(sub_id, 100 * 10**18)
    return sub_id


@pytest.fixture
def round_config(subscription_id):
    return RoundConfig(
        entrance_fee=ENTRANCE_FEE,
        interval=INTERVAL,
        key_hash=KEY_HASH,
        subscription_id=subscription_id,
        callback_gas_limit=CALLBACK_GAS_LIMIT,
    )


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def raffle(round_config, coordinator, subscription_id, ledger, store, clock):
    raffle = Raffle(round_config, coordinator, ledger, store=store, clock=clock)
    coordinator.add_consumer(subscription_id, raffle)
    return raffle


@pytest.fixture
def elapse(clock):
    def _elapse(seconds: int = INTERVAL + 1) -> None:
        clock.advance(seconds)

    return _elapse


@pytest.fixture
def enter_players(raffle):
    async def _enter(*players, amount=ENTRANCE_FEE):
        for player in players:
            await raffle.enter_raffle(player, amount)

    return _enter
