import asyncio

import pytest
from web3 import Web3

from vrf_raffle.blockchain.mocks import (
    InMemoryLedger,
    InsufficientBalance,
    InvalidConsumer,
    InvalidSubscription,
    MockVRFCoordinator,
    MockVRFError,
    NonexistentRequest,
)
from vrf_raffle.lottery.engine import Raffle
from vrf_raffle.lottery.errors import RandomnessRequestFailed
from vrf_raffle.lottery.models import RafflePhase

from tests.conftest import BASE_FEE, CALLBACK_GAS_LIMIT, ENTRANCE_FEE, GAS_PRICE_LINK, KEY_HASH


async def _request(coordinator, sub_id, consumer, num_words=1):
    return await coordinator.request_random_words(
        KEY_HASH, sub_id, 3, CALLBACK_GAS_LIMIT, num_words, consumer=consumer
    )


def test_subscription_lifecycle(coordinator):
    first = coordinator.create_subscription("deployer")
    second = coordinator.create_subscription("deployer")
    coordinator.fund_subscription(first, 2 * 10**18)

    assert (first, second) == (1, 2)
    assert coordinator.get_subscription(first).balance == 2 * 10**18
    assert coordinator.events[0] == ("SubscriptionCreated", {"subId": 1, "owner": "deployer"})
    assert coordinator.events[-1] == (
        "SubscriptionFunded",
        {"subId": 1, "oldBalance": 0, "newBalance": 2 * 10**18},
    )


def test_funding_unknown_subscription(coordinator):
    with pytest.raises(InvalidSubscription):
        coordinator.fund_subscription(7, 1)


async def test_request_ids_start_at_one(coordinator, subscription_id, raffle):
    assert await _request(coordinator, subscription_id, raffle) == 1
    assert await _request(coordinator, subscription_id, raffle) == 2
    assert coordinator.last_request_id == 2


async def test_request_on_unknown_subscription(coordinator, raffle):
    with pytest.raises(InvalidSubscription):
        await _request(coordinator, 99, raffle)


async def test_request_requires_registered_consumer(coordinator, subscription_id, round_config, ledger):
    stranger = Raffle(round_config, coordinator, ledger)

    with pytest.raises(InvalidConsumer):
        await _request(coordinator, subscription_id, stranger)
    with pytest.raises(InvalidConsumer):
        await _request(coordinator, subscription_id, None)

    assert coordinator.last_request_id == 0


async def test_raffle_without_consumer_registration_cannot_draw(coordinator, round_config, ledger, clock):
    raffle = Raffle(round_config, coordinator, ledger, clock=clock)
    await raffle.enter_raffle("A", ENTRANCE_FEE)
    clock.advance(round_config.interval + 1)

    with pytest.raises(RandomnessRequestFailed) as excinfo:
        await raffle.perform_upkeep()

    assert isinstance(excinfo.value.__cause__, InvalidConsumer)
    assert raffle.raffle_state == RafflePhase.OPEN


async def test_fulfil_can_only_be_called_after_a_request(coordinator, raffle):
    for request_id in (0, 1):
        with pytest.raises(NonexistentRequest):
            await coordinator.fulfill_random_words(request_id, raffle)


async def test_fulfil_requires_registered_consumer(coordinator, subscription_id, round_config, ledger, raffle):
    request_id = await _request(coordinator, subscription_id, raffle)
    stranger = Raffle(round_config, coordinator, ledger)

    with pytest.raises(InvalidConsumer):
        await coordinator.fulfill_random_words(request_id, stranger)

    assert coordinator.has_request(request_id)


async def test_fulfil_charges_subscription(round_config, ledger):
    coordinator = MockVRFCoordinator(base_fee=BASE_FEE, gas_price_link=GAS_PRICE_LINK)
    sub_id = coordinator.create_subscription()
    coordinator.fund_subscription(sub_id, BASE_FEE)
    raffle = Raffle(round_config, coordinator, ledger)
    coordinator.add_consumer(sub_id, raffle)
    request_id = await _request(coordinator, sub_id, raffle)

    with pytest.raises(InsufficientBalance):
        await coordinator.fulfill_random_words(request_id, raffle)

    assert coordinator.has_request(request_id)
    assert coordinator.get_subscription(sub_id).balance == BASE_FEE


async def test_fulfil_rejects_wrong_word_count(coordinator, subscription_id, raffle):
    request_id = await _request(coordinator, subscription_id, raffle)

    with pytest.raises(MockVRFError):
        await coordinator.fulfill_random_words(request_id, raffle, words=[1, 2])


def test_derived_words_are_keccak_of_request_and_index():
    words = MockVRFCoordinator.derive_words(5, 2)

    assert len(words) == 2
    assert words[0] == int.from_bytes(Web3.keccak((5).to_bytes(32, "big") + (0).to_bytes(32, "big")), "big")
    assert words == MockVRFCoordinator.derive_words(5, 2)
    assert words[0] != words[1]


def test_add_consumer_is_idempotent(coordinator, subscription_id, raffle):
    coordinator.add_consumer(subscription_id, raffle)

    assert coordinator.get_subscription(subscription_id).consumers == [raffle]


async def test_auto_fulfilment_delivers_to_consumer(round_config, ledger, store, clock):
    coordinator = MockVRFCoordinator(base_fee=BASE_FEE, gas_price_link=GAS_PRICE_LINK, auto_fulfill_delay=0)
    sub_id = coordinator.create_subscription()
    coordinator.fund_subscription(sub_id, 10**19)
    raffle = Raffle(round_config, coordinator, ledger, store=store, clock=clock)
    coordinator.add_consumer(sub_id, raffle)
    await raffle.enter_raffle("A", ENTRANCE_FEE)
    clock.advance(round_config.interval + 1)

    await raffle.perform_upkeep()
    for _ in range(10):
        await asyncio.sleep(0.01)
        if raffle.raffle_state == RafflePhase.OPEN:
            break

    assert raffle.raffle_state == RafflePhase.OPEN
    assert raffle.recent_winner == "A"
    await coordinator.close()


async def test_ledger_transfer_requires_treasury_funds():
    ledger = InMemoryLedger()
    ledger.deposit(ledger.treasury, 50)

    assert await ledger.transfer("A", 100) is False
    assert await ledger.transfer("A", 50) is True
    assert ledger.balance_of("A") == 50
    assert ledger.balance_of(ledger.treasury) == 0


def test_ledger_rejects_negative_deposit():
    with pytest.raises(ValueError):
        InMemoryLedger().deposit("A", -1)
