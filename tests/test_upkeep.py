import itertools

import pytest

from vrf_raffle.lottery import upkeep
from vrf_raffle.lottery.models import RafflePhase, RoundConfig, RoundState

from tests.conftest import ENTRANCE_FEE, INTERVAL, KEY_HASH

CONFIG = RoundConfig(
    entrance_fee=ENTRANCE_FEE,
    interval=INTERVAL,
    key_hash=KEY_HASH,
    subscription_id=1,
    callback_gas_limit=500000,
)
LAST_DRAW = 1_000


@pytest.mark.parametrize(
    "is_open,time_passed,has_players,has_balance",
    list(itertools.product([True, False], repeat=4)),
)
def test_upkeep_needed_only_when_every_condition_holds(is_open, time_passed, has_players, has_balance):
    state = RoundState(
        last_timestamp=LAST_DRAW,
        phase=RafflePhase.OPEN if is_open else RafflePhase.CALCULATING,
        players=["A"] if has_players else [],
    )
    now = LAST_DRAW + INTERVAL + (1 if time_passed else 0)
    pot = ENTRANCE_FEE if has_balance else 0

    check = upkeep.check_upkeep(state, CONFIG, now, pot)

    assert check.upkeep_needed == (is_open and time_passed and has_players and has_balance)
    assert upkeep.should_draw(state, CONFIG, now, pot) == check.upkeep_needed
    assert (check.is_open, check.time_passed, check.has_players, check.has_balance) == (
        is_open,
        time_passed,
        has_players,
        has_balance,
    )


def test_interval_must_be_strictly_exceeded():
    state = RoundState(last_timestamp=LAST_DRAW, players=["A"])

    assert not upkeep.should_draw(state, CONFIG, LAST_DRAW + INTERVAL, ENTRANCE_FEE)
    assert upkeep.should_draw(state, CONFIG, LAST_DRAW + INTERVAL + 1, ENTRANCE_FEE)


def test_probe_does_not_mutate_state():
    state = RoundState(last_timestamp=LAST_DRAW, players=["A", "B"], pot=200)

    upkeep.check_upkeep(state, CONFIG, LAST_DRAW + 100, 200)

    assert state == RoundState(last_timestamp=LAST_DRAW, players=["A", "B"], pot=200)


def test_returns_false_if_people_havent_sent_any_eth(raffle, elapse):
    elapse()

    check = raffle.check_upkeep()

    assert not check.upkeep_needed
    assert check.player_count == 0
    assert check.balance == 0


async def test_returns_false_if_raffle_isnt_open(raffle, enter_players, elapse):
    await enter_players("A")
    elapse()
    await raffle.perform_upkeep()

    check = raffle.check_upkeep()

    assert raffle.raffle_state == RafflePhase.CALCULATING
    assert not check.upkeep_needed
    assert check.phase == RafflePhase.CALCULATING


async def test_returns_false_if_enough_time_hasnt_passed(raffle, enter_players, elapse):
    await enter_players("A")
    elapse(INTERVAL - 5)

    assert not raffle.check_upkeep().upkeep_needed


async def test_returns_true_if_time_passed_has_players_eth_and_is_open(raffle, enter_players, elapse):
    await enter_players("A")
    elapse()

    check = raffle.check_upkeep()

    assert check.upkeep_needed
    assert check.to_dict() == {
        "upkeepNeeded": True,
        "isOpen": True,
        "timePassed": True,
        "hasPlayers": True,
        "hasBalance": True,
        "balance": ENTRANCE_FEE,
        "playerCount": 1,
        "phase": "OPEN",
    }


async def test_check_upkeep_accepts_explicit_time(raffle, enter_players, clock):
    await enter_players("A")

    assert not raffle.check_upkeep(now=clock.now).upkeep_needed
    assert raffle.check_upkeep(now=clock.now + INTERVAL + 1).upkeep_needed
