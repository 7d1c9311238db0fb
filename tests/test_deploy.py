import pytest

from vrf_raffle.blockchain.client import BlockchainClient
from vrf_raffle.blockchain.deploy import deploy_raffle
from vrf_raffle.blockchain.mocks import InMemoryLedger, MockVRFCoordinator
from vrf_raffle.blockchain.watcher import FulfillmentWatcher
from vrf_raffle.lottery.models import RafflePhase

LOCAL_CONFIG = {
    "network": {"name": "hardhat", "chain_id": 31337},
    "raffle": {"entrance_fee_wei": 100, "interval": 30},
}


@pytest.fixture
async def deployment(clock):
    deployment = await deploy_raffle(LOCAL_CONFIG, clock=clock)
    yield deployment
    await deployment.close()


async def test_local_deployment_uses_mocks(deployment):
    assert isinstance(deployment.coordinator, MockVRFCoordinator)
    assert isinstance(deployment.settlement, InMemoryLedger)
    assert deployment.network == "hardhat"
    assert deployment.blockchain_client is None

    subscription = deployment.coordinator.get_subscription(deployment.subscription_id)
    assert subscription.balance == 2 * 10**18
    assert deployment.raffle in subscription.consumers
    assert deployment.raffle.config.subscription_id == deployment.subscription_id
    assert deployment.raffle.entrance_fee == 100


async def test_local_deployment_runs_a_full_round(deployment, clock):
    raffle = deployment.raffle
    coordinator = deployment.coordinator

    await raffle.enter_raffle("0xA", 100)
    await raffle.enter_raffle("0xB", 100)
    clock.advance(31)
    request_id = await raffle.perform_upkeep()

    assert await coordinator.fulfill_random_words(request_id, raffle)

    winner = raffle.recent_winner
    assert winner in ("0xA", "0xB")
    assert deployment.settlement.balance_of(winner) == 200
    assert raffle.raffle_state == RafflePhase.OPEN
    assert raffle.number_of_players == 0

    payment = 25 * 10**16 + 500000 * 10**9
    remaining = coordinator.get_subscription(deployment.subscription_id).balance
    assert remaining == 2 * 10**18 - payment


async def test_live_deployment_watches_for_fulfillments(monkeypatch):
    async def skip_rpc(self):
        return None

    monkeypatch.setattr(BlockchainClient, "initialize", skip_rpc)
    config = {"network": {"chain_id": 11155111}, "vrf": {"subscription_id": 42}}

    deployment = await deploy_raffle(config)

    assert deployment.network == "sepolia"
    assert deployment.coordinator is deployment.blockchain_client
    assert isinstance(deployment.fulfillment_watcher, FulfillmentWatcher)
    assert deployment.fulfillment_watcher.client is deployment.blockchain_client
    assert deployment.raffle.config.subscription_id == 42
    await deployment.close()
