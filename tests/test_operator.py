import asyncio

from vrf_raffle.lottery.engine import Raffle
from vrf_raffle.lottery.models import RafflePhase
from vrf_raffle.lottery.operator import UpkeepOperator

from tests.conftest import ENTRANCE_FEE, FailingCoordinator


async def test_run_once_does_nothing_when_upkeep_not_needed(raffle):
    operator = UpkeepOperator(raffle, {})

    assert await operator.run_once() is None
    assert operator.status.checks == 1
    assert operator.status.draws_requested == 0
    assert raffle.raffle_state == RafflePhase.OPEN


async def test_run_once_starts_a_draw_when_due(raffle, enter_players, elapse):
    operator = UpkeepOperator(raffle, {"operator": {"check_interval": 5}})
    await enter_players("A", "B")
    elapse()

    request_id = await operator.run_once()

    assert request_id == raffle.pending_request.request_id
    assert raffle.raffle_state == RafflePhase.CALCULATING
    assert operator.get_status()["drawsRequested"] == 1
    assert operator.get_status()["lastRequestId"] == request_id
    assert await operator.run_once() is None


async def test_run_once_survives_failed_randomness_request(round_config, ledger, store, clock):
    raffle = Raffle(round_config, FailingCoordinator(), ledger, store=store, clock=clock)
    operator = UpkeepOperator(raffle, {})
    await raffle.enter_raffle("A", ENTRANCE_FEE)
    clock.advance(round_config.interval + 1)

    assert await operator.run_once() is None
    assert operator.status.consecutive_failures == 1
    assert raffle.raffle_state == RafflePhase.OPEN


async def test_loop_requests_exactly_one_draw(raffle, enter_players, elapse):
    operator = UpkeepOperator(raffle, {"operator": {"check_interval": 0.01}})
    await enter_players("A")
    elapse()

    await operator.start()
    await asyncio.sleep(0.05)
    await operator.stop()

    assert operator.status.checks >= 2
    assert operator.status.draws_requested == 1
    assert operator.get_status()["status"] == "stopped"
